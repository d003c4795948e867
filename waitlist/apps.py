# waitlist/apps.py
from django.apps import AppConfig


class WaitlistConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "waitlist"

    def ready(self):
        # Import signal handlers so Django registers them at startup
        import waitlist.signals  # noqa: F401
