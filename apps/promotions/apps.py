"""
Django app configuration for Promotions app
"""

from django.apps import AppConfig


class PromotionsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.promotions"
    verbose_name = "Promotions"

    def ready(self) -> None:
        """Register signals when app is ready"""
        import apps.promotions.signals  # noqa: F401
