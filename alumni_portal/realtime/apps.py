from django.apps import AppConfig
from django.utils.translation import gettext_lazy as _


class RealtimeConfig(AppConfig):
    name = "alumni_portal.realtime"
    verbose_name = _("Realtime")

    def ready(self):
        # Registers every inbound event handler on the Socket.IO server.
        from alumni_portal.realtime import handlers  # noqa: F401, PLC0415
