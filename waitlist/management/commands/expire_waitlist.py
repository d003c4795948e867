"""
expire_waitlist.py
------------------
Mark WAITING entries whose desired range has already ended as EXPIRED.

Usage:
    python manage.py expire_waitlist
    python manage.py expire_waitlist --staff 3

Promotion also expires stale entries for the staff/service it touches; this
command sweeps everything else (run it from cron).
"""

from django.core.management.base import BaseCommand

from waitlist.services import get_waitlist_manager


class Command(BaseCommand):
    help = "Expire waitlist entries whose desired time range is in the past."

    def add_arguments(self, parser):
        parser.add_argument("--staff", type=int, help="Only expire entries for this staff id.")

    def handle(self, *args, **options):
        filters = {}
        if options.get("staff"):
            filters["staff_id"] = options["staff"]
        count = get_waitlist_manager().expire_stale(**filters)
        self.stdout.write(self.style.SUCCESS(f"Expired {count} waitlist entr{'y' if count == 1 else 'ies'}."))
