"""
Rebuild or audit the barcode -> promotion reverse index.
"""

from typing import Any

from django.core.management.base import BaseCommand, CommandParser

from apps.promotions.index import IndexConsistencyReport, PromotionIndexService
from apps.promotions.tasks import rebuild_promotion_index_async


class Command(BaseCommand):
    help = "Rebuild the promotion reverse index from the promotions table"

    def add_arguments(self, parser: CommandParser) -> None:
        parser.add_argument(
            "--check",
            action="store_true",
            help="Only report inconsistencies, do not rebuild",
        )
        parser.add_argument(
            "--async",
            action="store_true",
            dest="run_async",
            help="Queue the rebuild on the task cluster instead of running it here",
        )
        parser.add_argument(
            "--reason",
            default="management command",
            help="Reason recorded in the rebuild log",
        )

    def handle(self, *args: Any, **options: Any) -> None:
        if options["check"]:
            self._report(PromotionIndexService.check_consistency())
            return

        if options["run_async"]:
            task_id = rebuild_promotion_index_async(options["reason"])
            if task_id:
                self.stdout.write(self.style.SUCCESS(f"Queued index rebuild (task {task_id})"))
            else:
                self.stdout.write(self.style.WARNING("A rebuild is already queued, skipped"))
            return

        result = PromotionIndexService.rebuild(reason=options["reason"])
        self.stdout.write(
            self.style.SUCCESS(
                f"Rebuilt promotion index: {result.barcodes} barcode(s), "
                f"{result.promotions} promotion(s), {result.removed_rows} old row(s) replaced "
                f"in {result.duration_ms}ms"
            )
        )

    def _report(self, report: IndexConsistencyReport) -> None:
        if report.is_consistent:
            self.stdout.write(self.style.SUCCESS("Promotion index is consistent"))
            return
        for barcode, ids in report.stale.items():
            self.stdout.write(self.style.WARNING(f"  stale   {barcode}: {', '.join(ids)}"))
        for barcode, ids in report.missing.items():
            self.stdout.write(self.style.WARNING(f"  missing {barcode}: {', '.join(ids)}"))
        self.stdout.write(
            self.style.ERROR(
                f"Promotion index is inconsistent: {len(report.stale)} stale, {len(report.missing)} missing barcode(s)"
            )
        )
