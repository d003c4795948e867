# booking/apps.py
from django.apps import AppConfig


class BookingConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "booking"

    def ready(self):
        # Availability cache invalidation on working-hours/service edits
        import booking.receivers  # noqa: F401
