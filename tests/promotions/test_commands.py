"""
Tests for the promotions management commands.
"""

from io import StringIO
from unittest.mock import patch

from django.core.cache import cache
from django.core.management import call_command
from django.test import TestCase
from django_q.models import Schedule

from apps.promotions.index import PromotionIndexService
from tests.factories import create_promotion

COLA = "8801000000001"


class RebuildPromotionIndexCommandTests(TestCase):
    def setUp(self):
        cache.clear()
        self.promotion = create_promotion(applicable_products=[COLA])

    def _call(self, *args):
        out = StringIO()
        call_command("rebuild_promotion_index", *args, stdout=out)
        return out.getvalue()

    def test_check_reports_drift_without_rebuilding(self):
        output = self._call("--check")

        self.assertIn(f"missing {COLA}", output)
        self.assertIn("inconsistent", output)
        self.assertEqual(PromotionIndexService.find_promotion_ids(COLA), [])

    def test_rebuild(self):
        output = self._call("--reason", "test")

        self.assertIn("Rebuilt promotion index: 1 barcode(s), 1 promotion(s)", output)
        self.assertEqual(PromotionIndexService.find_promotion_ids(COLA), [str(self.promotion.id)])
        self.assertIn("consistent", self._call("--check"))

    @patch("apps.promotions.tasks.queue_once", side_effect=["task-1", None])
    def test_async_queues_once(self, mock_queue_once):
        self.assertIn("Queued index rebuild (task task-1)", self._call("--async"))
        self.assertIn("already queued", self._call("--async"))
        self.assertEqual(mock_queue_once.call_count, 2)


class SetupScheduledTasksCommandTests(TestCase):
    def test_creates_schedules_once(self):
        out = StringIO()
        call_command("setup_scheduled_tasks", stdout=out)
        self.assertIn("index_audit: Created successfully", out.getvalue())

        out = StringIO()
        call_command("setup_scheduled_tasks", stdout=out)
        self.assertIn("expire: Task already exists (skipped)", out.getvalue())
        self.assertEqual(Schedule.objects.filter(name__startswith="promotions-").count(), 2)
