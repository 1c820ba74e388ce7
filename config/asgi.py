"""ASGI entrypoint: the Socket.IO relay mounted in front of Django.

Requests under ``settings.SOCKETIO_PATH`` (Engine.IO polling and WebSocket
upgrades) go to the relay; everything else falls through to Django.
"""

from django.core.asgi import get_asgi_application

from config.settings import use_default_settings

use_default_settings()

# Django must be set up before the relay imports models.
django_application = get_asgi_application()

from django.conf import settings  # noqa: E402
from socketio import ASGIApp  # noqa: E402

from alumni_portal.realtime.handlers import sio  # noqa: E402

application = ASGIApp(
    sio,
    other_asgi_app=django_application,
    socketio_path=settings.SOCKETIO_PATH,
)
