# booking/tests/base.py
#
# Shared fixtures for the scheduling tests.
#
# - FIXED_NOW / MONDAY: a pinned clock for generator, horizon and manager tests
#   (2030-03-04 is a Monday; the clock sits on the Friday before).
# - live_day(): a date a week out for tests that go through the default
#   managers (API, signal receivers), which run on the system clock.
#
from datetime import date, datetime, time, timedelta, timezone as dt_timezone
from zoneinfo import ZoneInfo

from django.conf import settings
from django.core.cache import caches
from django.test import override_settings
from django.utils import timezone

from booking.models import Business, Customer, Service, Staff
from booking.services.clock import FixedClock
from staff.models import WorkingHours

UTC = dt_timezone.utc
FIXED_NOW = datetime(2030, 3, 1, 12, 0, tzinfo=UTC)
MONDAY = date(2030, 3, 4)


def engine_settings(**overrides):
    """settings.SCHEDULING with some keys replaced, for override_settings()."""
    return {**settings.SCHEDULING, **overrides}


SYNC_EVENTS = engine_settings(ASYNC_EVENTS=False)


def at(day: date, hour: int, minute: int = 0, tz=UTC) -> datetime:
    return datetime.combine(day, time(hour, minute), tzinfo=tz)


def live_day(days_ahead: int = 7) -> date:
    return timezone.now().astimezone(UTC).date() + timedelta(days=days_ahead)


def clear_caches():
    # sqlite reuses ids between tests, so cached projections must not survive
    for alias in settings.CACHES:
        caches[alias].clear()


class SchedulingFixtures:
    """
    Mixin for TestCase/TransactionTestCase:
    one business, a 30 min + 10 min buffer service, a UTC staff member open
    09:00-12:00 every day, and two customers.
    """

    staff_timezone = "UTC"
    # promotion runs inline unless a test class opts into the worker pool
    scheduling_overrides = {"ASYNC_EVENTS": False}

    def setUp(self):
        super().setUp()
        engine = override_settings(SCHEDULING=engine_settings(**self.scheduling_overrides))
        engine.enable()
        self.addCleanup(engine.disable)
        clear_caches()
        self.clock = FixedClock(FIXED_NOW)
        self.business = Business.objects.create(name="Studio", timezone=self.staff_timezone)
        self.service = self.make_service(self.business)
        self.staff = self.make_staff(self.business, [self.service], tz=self.staff_timezone)
        self.open_every_day(self.staff, time(9), time(12))
        self.customer = Customer.objects.create(business=self.business, name="Ada", email="ada@example.com")
        self.other_customer = Customer.objects.create(business=self.business, name="Grace", email="grace@example.com")

    @staticmethod
    def make_service(business, name="Haircut", duration=30, buffer=10, **extra):
        return Service.objects.create(
            business=business,
            name=name,
            duration_minutes=duration,
            buffer_minutes=buffer,
            **extra,
        )

    @staticmethod
    def make_staff(business, services, name="Alex", email=None, tz="UTC"):
        member = Staff.objects.create(
            business=business,
            name=name,
            email=email or f"{name.lower()}@example.com",
            timezone=tz,
        )
        member.services.set(services)
        return member

    @staticmethod
    def open_every_day(staff, start, end):
        for weekday in range(7):
            WorkingHours.objects.create(staff=staff, weekday=weekday, start_time=start, end_time=end)

    def local(self, day, hour, minute=0):
        return at(day, hour, minute, tz=ZoneInfo(self.staff.timezone))
