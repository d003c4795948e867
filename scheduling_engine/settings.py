# scheduling_engine/settings.py
#
# Purpose:
# - Django settings for the appointment scheduling engine.
#
# Configuration sources:
# - Environment variables (optionally loaded from a .env file at the repo root).
# - Engine tunables are grouped in the SCHEDULING dict and read through
#   booking.conf.engine_setting() so tests can override them per test.
#
import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

load_dotenv(dotenv_path=BASE_DIR / ".env")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


SECRET_KEY = os.getenv("SECRET_KEY", "insecure-dev-key-change-in-production")
DEBUG = _env_bool("DEBUG", True)
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "*").split(",") if h.strip()]

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "booking.apps.BookingConfig",
    "staff.apps.StaffConfig",
    "waitlist.apps.WaitlistConfig",
    "notifications.apps.NotificationsConfig",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
]

ROOT_URLCONF = "scheduling_engine.urls"
WSGI_APPLICATION = "scheduling_engine.wsgi.application"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

# -------------------------
# Database
# -------------------------
# SQLite (default): IMMEDIATE transactions plus a busy timeout make concurrent
# writers queue on the database lock instead of failing with "database is locked".
# The busy timeout defaults to the scheduling lock timeout; booking scopes cap
# it at SCHEDULING["LOCK_TIMEOUT_SECONDS"] and turn the failure into BusyError.
# PostgreSQL is used when POSTGRES_DB is set; select_for_update() on the staff
# row then serializes bookings across processes as well.
if os.getenv("POSTGRES_DB"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.getenv("POSTGRES_DB"),
            "USER": os.getenv("POSTGRES_USER", "postgres"),
            "PASSWORD": os.getenv("POSTGRES_PASSWORD", ""),
            "HOST": os.getenv("POSTGRES_HOST", "localhost"),
            "PORT": os.getenv("POSTGRES_PORT", "5432"),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": os.getenv("SQLITE_PATH", str(BASE_DIR / "db.sqlite3")),
            "OPTIONS": {
                "transaction_mode": "IMMEDIATE",
                "timeout": float(os.getenv("SQLITE_TIMEOUT", os.getenv("SCHEDULING_LOCK_TIMEOUT", "5"))),
            },
            # File-backed test database so worker threads share committed data.
            "TEST": {"NAME": str(BASE_DIR / "test_db.sqlite3")},
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# -------------------------
# Time
# -------------------------
# All persisted instants are aware and stored in UTC; staff-local arithmetic
# happens in booking.services with the staff member's own timezone.
LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

# -------------------------
# Cache (availability projections)
# -------------------------
CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "default",
    },
    "availability": {
        "BACKEND": os.getenv(
            "AVAILABILITY_CACHE_BACKEND",
            "django.core.cache.backends.locmem.LocMemCache",
        ),
        "LOCATION": os.getenv("AVAILABILITY_CACHE_LOCATION", "availability"),
    },
}

# -------------------------
# Email (notifications)
# -------------------------
EMAIL_BACKEND = os.getenv("EMAIL_BACKEND", "django.core.mail.backends.console.EmailBackend")
EMAIL_HOST = os.getenv("EMAIL_HOST", "localhost")
EMAIL_PORT = int(os.getenv("EMAIL_PORT", "25"))
EMAIL_HOST_USER = os.getenv("EMAIL_HOST_USER", "")
EMAIL_HOST_PASSWORD = os.getenv("EMAIL_HOST_PASSWORD", "")
EMAIL_USE_TLS = _env_bool("EMAIL_USE_TLS", False)
DEFAULT_FROM_EMAIL = os.getenv("DEFAULT_FROM_EMAIL", "no-reply@scheduling.local")

# -------------------------
# REST framework
# -------------------------
# Callers are authenticated and authorized upstream; operations are scoped by
# the business identifier in each request.
REST_FRAMEWORK = {
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.AllowAny"],
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "EXCEPTION_HANDLER": "booking.api_errors.scheduling_exception_handler",
}

# -------------------------
# Scheduling engine
# -------------------------
SCHEDULING = {
    # Bounded wait for the per-staff serialization scope before BusyError.
    "LOCK_TIMEOUT_SECONDS": float(os.getenv("SCHEDULING_LOCK_TIMEOUT", "5")),
    # Run waitlist promotion on a background pool instead of the caller's thread.
    "ASYNC_EVENTS": _env_bool("SCHEDULING_ASYNC_EVENTS", True),
    "WAITLIST_WORKERS": int(os.getenv("SCHEDULING_WAITLIST_WORKERS", "2")),
    "AVAILABILITY_CACHE_ALIAS": "availability",
    "AVAILABILITY_CACHE_TTL": int(os.getenv("SCHEDULING_AVAILABILITY_TTL", "300")),
    "MAX_RECURRENCE_OCCURRENCES": int(os.getenv("SCHEDULING_MAX_OCCURRENCES", "52")),
    "MAX_QUERY_DAYS": int(os.getenv("SCHEDULING_MAX_QUERY_DAYS", "62")),
}

# -------------------------
# Logging
# -------------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if DEBUG else "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
    "loggers": {
        "booking": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "staff": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "waitlist": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "notifications": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}
