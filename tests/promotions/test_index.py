"""
Tests for the barcode reverse index.
"""

from unittest.mock import patch

from django.core.cache import cache
from django.test import TestCase, override_settings

from apps.promotions.index import REBUILD_LOCK_KEY, REBUILD_TASK, PromotionIndexService
from apps.promotions.models import PromotionIndex
from tests.factories import create_promotion

COLA = "8801000000001"
CIDER = "8801000000002"
CHIPS = "8801000000101"


class UpsertIndexEntryTests(TestCase):
    """Single-row index writes"""

    def test_add_creates_row_with_sorted_ids(self):
        PromotionIndexService.upsert_index_entry(COLA, add_ids=["b", "a"])
        self.assertEqual(PromotionIndex.objects.get(barcode=COLA).promotion_ids, ["a", "b"])

    def test_repeated_add_is_idempotent(self):
        PromotionIndexService.upsert_index_entry(COLA, add_ids=["a"])
        PromotionIndexService.upsert_index_entry(COLA, add_ids=["a"])

        self.assertEqual(PromotionIndex.objects.count(), 1)
        self.assertEqual(PromotionIndexService.find_promotion_ids(COLA), ["a"])

    def test_remove_last_id_drops_row(self):
        PromotionIndexService.upsert_index_entry(COLA, add_ids=["a"])
        self.assertEqual(PromotionIndexService.upsert_index_entry(COLA, remove_ids=["a"]), [])
        self.assertFalse(PromotionIndex.objects.filter(barcode=COLA).exists())

    def test_remove_on_missing_row_creates_nothing(self):
        self.assertEqual(PromotionIndexService.upsert_index_entry(COLA, remove_ids=["a"]), [])
        self.assertEqual(PromotionIndex.objects.count(), 0)

    def test_add_and_remove_in_one_call(self):
        PromotionIndexService.upsert_index_entry(COLA, add_ids=["a", "b"])
        ids = PromotionIndexService.upsert_index_entry(COLA, add_ids=["c"], remove_ids=["a"])
        self.assertEqual(ids, ["b", "c"])

    def test_delete_entries_referencing(self):
        PromotionIndexService.upsert_index_entry(COLA, add_ids=["a", "b"])
        PromotionIndexService.upsert_index_entry(CIDER, add_ids=["a"])
        PromotionIndexService.upsert_index_entry(CHIPS, add_ids=["b"])

        self.assertEqual(PromotionIndexService.delete_index_entries_referencing("a"), 2)
        self.assertEqual(PromotionIndexService.find_promotion_ids(COLA), ["b"])
        self.assertFalse(PromotionIndex.objects.filter(barcode=CIDER).exists())
        self.assertEqual(PromotionIndexService.find_promotion_ids(CHIPS), ["b"])


class PromotionIndexSyncTests(TestCase):
    """Promotion level helpers"""

    def test_add_promotion_indexes_products_and_gifts(self):
        promotion = create_promotion(
            applicable_products=[COLA], gift_selection_type="cross", gift_products=[CHIPS]
        )
        PromotionIndexService.add_promotion(promotion)

        self.assertEqual(PromotionIndexService.find_promotion_ids(COLA), [str(promotion.id)])
        self.assertEqual(PromotionIndexService.find_promotion_ids(CHIPS), [str(promotion.id)])

    def test_sync_applies_barcode_diff(self):
        promotion = create_promotion(applicable_products=[COLA])
        PromotionIndexService.add_promotion(promotion)
        previous = promotion.indexed_barcodes()

        promotion.applicable_products = [CIDER]
        added, removed = PromotionIndexService.sync_promotion(promotion, previous)

        self.assertEqual((added, removed), ({CIDER}, {COLA}))
        self.assertEqual(PromotionIndexService.find_promotion_ids(COLA), [])
        self.assertEqual(PromotionIndexService.find_promotion_ids(CIDER), [str(promotion.id)])


class IndexLookupTests(TestCase):
    """Lookups through the index"""

    def setUp(self):
        cache.clear()

    def test_find_promotions_by_barcode(self):
        promotion = create_promotion(applicable_products=[COLA])
        PromotionIndexService.add_promotion(promotion)
        self.assertEqual(PromotionIndexService.find_promotions_by_barcode(COLA), [promotion])
        self.assertEqual(PromotionIndexService.find_promotions_by_barcode(CIDER), [])

    @patch("apps.promotions.index.queue_once", return_value="task-1")
    def test_stale_id_queues_rebuild(self, mock_queue_once):
        promotion = create_promotion(applicable_products=[COLA])
        PromotionIndexService.add_promotion(promotion)
        PromotionIndexService.upsert_index_entry(COLA, add_ids=["00000000-0000-0000-0000-000000000000"])

        self.assertEqual(PromotionIndexService.find_promotions_by_barcode(COLA), [promotion])
        mock_queue_once.assert_called_once_with(REBUILD_LOCK_KEY, 300, REBUILD_TASK, f"stale ids on {COLA}")

    @patch("apps.promotions.index.queue_once")
    def test_merged_promotions_are_never_returned(self, mock_queue_once):
        promotion = create_promotion(applicable_products=[COLA], status="merged", is_active=False)
        PromotionIndexService.upsert_index_entry(COLA, add_ids=[str(promotion.id)])

        self.assertEqual(PromotionIndexService.find_promotions_by_barcode(COLA), [])
        mock_queue_once.assert_called_once()

    @override_settings(PROMOTIONS_ENGINE={"REBUILD_ON_INCONSISTENCY": False})
    @patch("apps.promotions.index.queue_once")
    def test_rebuild_can_be_disabled(self, mock_queue_once):
        PromotionIndexService.upsert_index_entry(COLA, add_ids=["00000000-0000-0000-0000-000000000000"])
        self.assertEqual(PromotionIndexService.find_promotions_by_barcode(COLA), [])
        mock_queue_once.assert_not_called()


class IndexRebuildTests(TestCase):
    """Full rebuild and consistency audit"""

    def test_rebuild_matches_promotions_table(self):
        first = create_promotion(applicable_products=[COLA, CIDER])
        second = create_promotion(applicable_products=[COLA])
        create_promotion(applicable_products=[CHIPS], status="merged", is_active=False)
        PromotionIndexService.upsert_index_entry("9999", add_ids=["stale"])

        result = PromotionIndexService.rebuild(reason="test")

        self.assertEqual(result.barcodes, 2)
        self.assertEqual(result.promotions, 2)
        self.assertEqual(result.removed_rows, 1)
        self.assertEqual(
            PromotionIndexService.find_promotion_ids(COLA), sorted([str(first.id), str(second.id)])
        )
        self.assertEqual(PromotionIndexService.find_promotion_ids(CIDER), [str(first.id)])
        self.assertFalse(PromotionIndex.objects.filter(barcode__in=[CHIPS, "9999"]).exists())
        self.assertTrue(PromotionIndexService.check_consistency().is_consistent)

    def test_expired_promotions_stay_indexed(self):
        promotion = create_promotion(applicable_products=[COLA], status="expired")
        PromotionIndexService.rebuild()
        self.assertEqual(PromotionIndexService.find_promotion_ids(COLA), [str(promotion.id)])

    def test_check_consistency_reports_drift(self):
        promotion = create_promotion(applicable_products=[COLA])
        PromotionIndexService.upsert_index_entry(CIDER, add_ids=["ghost"])

        report = PromotionIndexService.check_consistency()
        self.assertFalse(report.is_consistent)
        self.assertEqual(report.missing, {COLA: [str(promotion.id)]})
        self.assertEqual(report.stale, {CIDER: ["ghost"]})
        self.assertEqual(report.to_dict()["is_consistent"], False)
