"""WSGI entrypoint: REST API only.

The relay lives in ``config.asgi``. Events published from a WSGI worker find
no connections in its (empty) channel registry and are dropped.
"""

from django.core.wsgi import get_wsgi_application

from config.settings import use_default_settings

use_default_settings()

application = get_wsgi_application()
