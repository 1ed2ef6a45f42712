# ===============================================================================
# PYTEST CONFIGURATION FOR THE PROMOTIONS ENGINE
# ===============================================================================
"""
Global test configuration.

Test Structure:
- tests/ mirrors apps/ structure for app-specific tests
- tests/factories/ holds the shared data builders
"""

import os

import django


def pytest_configure():
    """Configure Django settings for pytest"""
    os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings.test')

    # Configure Django
    django.setup()
