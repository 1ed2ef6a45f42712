"""
Django settings for the promotions engine - Base Configuration
Discount combination, buy-N-get-M matching and cart pricing.
"""

import os
from pathlib import Path
from typing import Any

# ===============================================================================
# CORE DJANGO SETTINGS
# ===============================================================================

BASE_DIR = Path(__file__).resolve().parent.parent.parent

# Application definition
DJANGO_APPS: list[str] = [
    'django.contrib.auth',
    'django.contrib.contenttypes',
]

THIRD_PARTY_APPS: list[str] = [
    'rest_framework',
    'django_q',
]

LOCAL_APPS: list[str] = [
    'apps.promotions',  # 🎁 Discount rules, promotions & reverse index
]

INSTALLED_APPS: list[str] = DJANGO_APPS + THIRD_PARTY_APPS + LOCAL_APPS

MIDDLEWARE: list[str] = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
]

# ===============================================================================
# DATABASE CONFIGURATION
# ===============================================================================

if os.environ.get('DB_NAME'):
    DATABASES: dict[str, dict[str, Any]] = {
        'default': {
            'ENGINE': 'django.db.backends.postgresql',
            'NAME': os.environ.get('DB_NAME'),
            'USER': os.environ.get('DB_USER', 'promotions'),
            'PASSWORD': os.environ.get('DB_PASSWORD', 'development_password'),
            'HOST': os.environ.get('DB_HOST', 'localhost'),
            'PORT': os.environ.get('DB_PORT', '5432'),
            'CONN_MAX_AGE': 60,  # Database connection pooling
            'OPTIONS': {
                'application_name': 'promotions_engine',
            },
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / 'db.sqlite3',
        }
    }

# ===============================================================================
# INTERNATIONALIZATION & LOCALIZATION
# ===============================================================================

LANGUAGE_CODE = 'en-us'
TIME_ZONE = os.environ.get('TIME_ZONE', 'UTC')
USE_I18N = True
USE_TZ = True

# ===============================================================================
# CACHE CONFIGURATION
# ===============================================================================

# Locks for index rebuilds and the expiry sweep live in the default cache,
# so every worker must share it outside of local development.
REDIS_URL = os.environ.get('REDIS_URL')

if REDIS_URL:
    CACHES = {
        'default': {
            'BACKEND': 'django.core.cache.backends.redis.RedisCache',
            'LOCATION': REDIS_URL,
            'KEY_PREFIX': 'promotions',
        }
    }
else:
    CACHES = {
        'default': {
            'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
            'LOCATION': 'promotions-cache',
        }
    }

# ===============================================================================
# DJANGO REST FRAMEWORK
# ===============================================================================

REST_FRAMEWORK = {
    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
    ],
    'DEFAULT_PARSER_CLASSES': [
        'rest_framework.parsers.JSONParser',
    ],
    'COERCE_DECIMAL_TO_STRING': False,
}

# ===============================================================================
# DJANGO-Q2 TASK QUEUE
# ===============================================================================

Q_CLUSTER_BASE = {
    "name": "promotions-cluster",
    "timeout": 300,  # 5 minutes
    "retry": 600,  # 10 minutes retry delay
    "save_limit": 1000,  # Keep last 1000 task results
    "catch_up": False,  # Don't run missed scheduled tasks
    "orm": "default",  # Database broker
    "bulk": 10,  # Process 10 jobs at once
    "queue_limit": 100,  # Max 100 jobs in queue
}

# Default production configuration (overridden in environment-specific settings)
Q_CLUSTER = {
    **Q_CLUSTER_BASE,
    "workers": 2,  # 2 worker processes
    "recycle": 500,  # Restart workers after 500 tasks
    "sync": False,  # Async execution
}

# ===============================================================================
# PROMOTIONS ENGINE
# ===============================================================================

# Keys left out fall back to apps.promotions.conf.ENGINE_DEFAULTS
PROMOTIONS_ENGINE: dict[str, Any] = {
    'CROSS_GIFT_POLICY': os.environ.get('PROMOTIONS_CROSS_GIFT_POLICY', 'auto'),
    'EXCLUDED_VERIFICATION_STATUSES': ['disputed'],
    'REJECT_SAME_CATEGORY': False,
    'CATEGORY_CONFLICTS': [['voucher', 'payment_instant']],
    'REBUILD_ON_INCONSISTENCY': True,
    'INDEX_REBUILD_LOCK_TIMEOUT': 300,
    'MERGE_CANDIDATE_LIMIT': 20,
    'OPTIMIZER_MAX_COMBINATIONS': int(os.environ.get('PROMOTIONS_OPTIMIZER_MAX_COMBINATIONS', '256')),
    'OPTIMIZER_MAX_ALTERNATIVES': 5,
    'ADMIN_IDENTITIES': [
        identity.strip()
        for identity in os.environ.get('PROMOTIONS_ADMIN_IDENTITIES', '').split(',')
        if identity.strip()
    ],
}

# ===============================================================================
# DEFAULT AUTO FIELD
# ===============================================================================

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# ===============================================================================
# SECURITY SETTINGS (Base - override in prod.py)
# ===============================================================================

ALLOWED_HOSTS: list[str] = []

# SECRET_KEY validation for production security
SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY')
if not SECRET_KEY:
    # Development fallback - never use this in production
    import warnings
    warnings.warn(
        "🚨 SECURITY WARNING: Using default SECRET_KEY. "
        "Set DJANGO_SECRET_KEY environment variable for production!",
        UserWarning,
        stacklevel=2
    )
    SECRET_KEY = 'django-insecure-dev-key-only-change-in-production-or-tests'  # noqa: S105


def validate_production_secret_key() -> None:
    """Validate SECRET_KEY meets production security requirements"""
    if SECRET_KEY and SECRET_KEY.startswith('django-insecure-'):
        raise ValueError(
            "🔥 CRITICAL SECURITY ERROR: Cannot use insecure SECRET_KEY in production! "
            "Set DJANGO_SECRET_KEY to a generated value."
        )
