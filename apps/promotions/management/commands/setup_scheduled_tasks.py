"""
Management command to set up the promotions scheduled tasks.
"""

from typing import Any

from django.core.management.base import BaseCommand

from apps.promotions.tasks import setup_promotion_scheduled_tasks


class Command(BaseCommand):
    help = "Set up the promotions scheduled tasks (index audit + expiry)"

    def handle(self, *args: Any, **options: Any) -> None:
        self.stdout.write("🎁 Setting up promotions tasks...")

        task_results = setup_promotion_scheduled_tasks()
        for task_name, result in task_results.items():
            if result == "already_exists":
                self.stdout.write(self.style.WARNING(f"  - {task_name}: Task already exists (skipped)"))
            else:
                self.stdout.write(self.style.SUCCESS(f"  - {task_name}: Created successfully"))

        self.stdout.write("")
        self.stdout.write(self.style.SUCCESS("✅ Scheduled tasks setup complete"))
