"""
Test settings for the promotions engine
Fast, isolated testing environment.
"""

from .base import *  # noqa: F403

# ===============================================================================
# TEST FLAGS
# ===============================================================================

DEBUG = False

# ===============================================================================
# TEST DATABASE (In-memory for speed)
# ===============================================================================

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
        "OPTIONS": {
            "timeout": 20,
        },
    }
}

# ===============================================================================
# TEST CACHE (Local memory, cleared per test)
# ===============================================================================

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "test-cache",
    }
}

# ===============================================================================
# TASK QUEUE (Synchronous)
# ===============================================================================

Q_CLUSTER = {
    **Q_CLUSTER_BASE,  # noqa: F405
    "workers": 1,
    "sync": True,
}

# ===============================================================================
# DISABLE MIGRATIONS FOR FASTER TESTS
# ===============================================================================


class DisableMigrations:
    def __contains__(self, item: str) -> bool:
        return True

    def __getitem__(self, item: str) -> None:
        return None


MIGRATION_MODULES = DisableMigrations()

# ===============================================================================
# ENGINE (deterministic defaults plus a known administrator)
# ===============================================================================

PROMOTIONS_ENGINE = {
    **PROMOTIONS_ENGINE,  # noqa: F405
    "CROSS_GIFT_POLICY": "auto",
    "ADMIN_IDENTITIES": ["admin"],
}

# ===============================================================================
# LOGGING (Minimal for tests)
# ===============================================================================

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
        },
        "null": {
            "class": "logging.NullHandler",
        },
    },
    "loggers": {
        "apps.promotions.signals": {
            "handlers": ["console"],
            "level": "WARNING",
            "propagate": False,
        },
        "apps.promotions.index": {
            "handlers": ["console"],
            "level": "WARNING",
            "propagate": False,
        },
    },
    "root": {
        "handlers": ["null"],
        "level": "CRITICAL",
    },
}
