"""
seed_demo.py
------------
Seeds (creates or updates) a demo business: staff, weekly hours, services and
a couple of customers. Safe to run repeatedly; rows are upserted by name/email.

Usage:
    python manage.py seed_demo
    python manage.py seed_demo --timezone Europe/Berlin
"""

from datetime import time
from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db import transaction

from booking.models import Business, Customer, Service, Staff
from booking.services.availability_index import AvailabilityIndex
from staff.models import WorkingHours


BUSINESS_NAME = "Demo Studio"

CATALOG = [
    {"name": "Haircut",          "duration_minutes": 30, "buffer_minutes": 10, "price": Decimal("35.00")},
    {"name": "Colour",           "duration_minutes": 90, "buffer_minutes": 15, "price": Decimal("95.00")},
    {"name": "Beard Trim",       "duration_minutes": 20, "buffer_minutes": 5,  "price": Decimal("20.00")},
    {"name": "Consultation",     "duration_minutes": 15, "buffer_minutes": 0,  "price": None},
]

STAFF = [
    {"name": "Alex Rivera", "email": "alex@example.com", "services": ["Haircut", "Beard Trim", "Consultation"]},
    {"name": "Sam Chen",    "email": "sam@example.com",  "services": ["Haircut", "Colour", "Consultation"]},
]

# Mon-Fri 09:00-12:00 and 13:00-17:00, Sat 10:00-14:00
WEEKLY_HOURS = [(day, time(9), time(12)) for day in range(5)]
WEEKLY_HOURS += [(day, time(13), time(17)) for day in range(5)]
WEEKLY_HOURS += [(5, time(10), time(14))]

CUSTOMERS = [
    {"name": "Jordan Lee",  "email": "jordan@example.com", "phone": "5550100"},
    {"name": "Taylor Kim",  "email": "taylor@example.com", "phone": "5550101"},
]


class Command(BaseCommand):
    help = "Seed or update a demo business with staff, hours, services and customers."

    def add_arguments(self, parser):
        parser.add_argument("--timezone", default="UTC", help="IANA timezone for the business and its staff.")

    @transaction.atomic
    def handle(self, *args, **options):
        tz = options["timezone"]
        business, _ = Business.objects.update_or_create(name=BUSINESS_NAME, defaults={"timezone": tz})

        services = {}
        for item in CATALOG:
            svc, _ = Service.objects.update_or_create(
                business=business,
                name=item["name"],
                defaults={
                    "duration_minutes": item["duration_minutes"],
                    "buffer_minutes": item["buffer_minutes"],
                    "price": item["price"],
                    "active": True,
                },
            )
            services[svc.name] = svc

        for item in STAFF:
            member, _ = Staff.objects.update_or_create(
                business=business,
                email=item["email"],
                defaults={"name": item["name"], "timezone": tz, "active": True},
            )
            member.services.set([services[name] for name in item["services"]])
            WorkingHours.objects.filter(staff=member).delete()
            WorkingHours.objects.bulk_create(
                WorkingHours(staff=member, weekday=day, start_time=start, end_time=end)
                for day, start, end in WEEKLY_HOURS
            )
            AvailabilityIndex().invalidate_staff(member.pk)

        for item in CUSTOMERS:
            Customer.objects.update_or_create(
                business=business,
                email=item["email"],
                defaults={"name": item["name"], "phone": item["phone"]},
            )

        self.stdout.write(self.style.SUCCESS(
            f"Seed complete. Business id={business.pk} with {len(STAFF)} staff, "
            f"{len(CATALOG)} services, {len(CUSTOMERS)} customers."
        ))
