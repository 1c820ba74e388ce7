import os


def use_default_settings() -> str:
    """Pick the settings module for entrypoints started without one.

    ``BUILD_ENV=local`` selects local settings; anything else is production.
    An explicit ``DJANGO_SETTINGS_MODULE`` (pytest's ``--ds`` included) wins.
    """
    build_env = os.environ.get("BUILD_ENV", "production").lower()
    module = (
        "config.settings.local" if build_env == "local" else "config.settings.production"
    )
    return os.environ.setdefault("DJANGO_SETTINGS_MODULE", module)
