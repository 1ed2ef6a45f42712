"""
Tests for the promotions services.
"""

import uuid
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from django.db import DatabaseError
from django.test import TestCase
from django.utils import timezone

from apps.common.logging import get_request_id
from apps.promotions.calculator import CartCalculator
from apps.promotions.catalog import PromotionNotFoundError, RuleCatalog
from apps.promotions.index import PromotionIndexService
from apps.promotions.models import DiscountRule, ModificationHistory, Promotion
from apps.promotions.services import (
    DISCOUNT_LOOKUP_FAILED,
    PROMOTION_NOT_TRUSTED,
    UNKNOWN_DISCOUNT,
    CartCalculationService,
    DiscountRuleService,
    PromotionService,
)
from tests.factories import create_discount_rule, create_promotion, promotion_data

COLA = "8801000000001"
CIDER = "8801000000002"
CHIPS = "8801000000101"


class PromotionServiceTests(TestCase):
    """Create, update and delete"""

    def test_create_indexes_and_logs(self):
        """A new promotion is indexed under its barcode and logged once"""
        result = PromotionService.create_promotion(promotion_data(), "alice")

        self.assertTrue(result.is_ok())
        promotion = result.unwrap()
        self.assertEqual((promotion.buy_quantity, promotion.get_quantity), (1, 1))
        self.assertEqual(promotion.created_by, "alice")
        self.assertEqual(PromotionIndexService.find_promotion_ids(COLA), [str(promotion.id)])

        history = PromotionService.get_history(str(promotion.id))
        self.assertEqual([entry.action for entry in history], ["create"])
        self.assertEqual(history[0].changes["applicable_products"], [COLA])

    def test_fixed_type_fills_quantities(self):
        promotion = PromotionService.create_promotion(promotion_data(promotion_type="2+1"), "alice").unwrap()
        self.assertEqual((promotion.buy_quantity, promotion.get_quantity), (2, 1))

    def test_create_rejects_mismatched_quantities(self):
        """Explicit quantities must agree with a fixed promotion type"""
        result = PromotionService.create_promotion(
            promotion_data(promotion_type="2+1", buy_quantity=1, get_quantity=1), "alice"
        )
        self.assertTrue(result.is_err())
        self.assertIn("promotion_type", result.unwrap_err())
        self.assertEqual(Promotion.objects.count(), 0)

    def test_create_rejects_unknown_fields(self):
        result = PromotionService.create_promotion(promotion_data(verification_status="verified"), "alice")
        self.assertEqual(result.unwrap_err(), "Unknown promotion fields: verification_status")

    def test_create_rejects_cross_without_gifts(self):
        result = PromotionService.create_promotion(promotion_data(gift_selection_type="cross"), "alice")
        self.assertTrue(result.is_err())
        self.assertEqual(Promotion.objects.count(), 0)

    def test_create_rejects_merged_status(self):
        result = PromotionService.create_promotion(promotion_data(status="merged", is_active=False), "alice")
        self.assertTrue(result.is_err())

    def test_update_moves_index_and_logs_diff(self):
        """Changing products moves the index entries and logs old/new values"""
        promotion = PromotionService.create_promotion(promotion_data(), "alice").unwrap()

        result = PromotionService.update_promotion(
            str(promotion.id), {"applicable_products": [CIDER], "name": "Cider 1+1"}, "bob", comment="wrong product"
        )

        self.assertTrue(result.is_ok())
        self.assertEqual(result.unwrap().last_modified_by, "bob")
        self.assertEqual(PromotionIndexService.find_promotion_ids(COLA), [])
        self.assertEqual(PromotionIndexService.find_promotion_ids(CIDER), [str(promotion.id)])

        entry = PromotionService.get_history(str(promotion.id))[-1]
        self.assertEqual(entry.action, "update")
        self.assertEqual(entry.modified_by, "bob")
        self.assertEqual(entry.comment, "wrong product")
        self.assertEqual(entry.changes["applicable_products"], {"old": [COLA], "new": [CIDER]})
        self.assertEqual(entry.changes["name"], {"old": "Cola 1+1", "new": "Cider 1+1"})

    def test_update_without_changes_writes_nothing(self):
        """An edit that changes nothing leaves no history entry"""
        promotion = PromotionService.create_promotion(promotion_data(), "alice").unwrap()
        result = PromotionService.update_promotion(str(promotion.id), {"name": "Cola 1+1"}, "bob")

        self.assertTrue(result.is_ok())
        self.assertEqual(len(PromotionService.get_history(str(promotion.id))), 1)

    def test_update_rejects_merge_status_and_unknown_ids(self):
        promotion = PromotionService.create_promotion(promotion_data(), "alice").unwrap()

        self.assertTrue(PromotionService.update_promotion(str(promotion.id), {"status": "merged"}, "bob").is_err())
        self.assertTrue(PromotionService.update_promotion(str(uuid.uuid4()), {"name": "x"}, "bob").is_err())
        self.assertTrue(PromotionService.update_promotion("not-a-uuid", {"name": "x"}, "bob").is_err())

    def test_update_rejects_invalid_values(self):
        promotion = PromotionService.create_promotion(promotion_data(), "alice").unwrap()
        result = PromotionService.update_promotion(str(promotion.id), {"applicable_products": []}, "bob")

        self.assertTrue(result.is_err())
        promotion.refresh_from_db()
        self.assertEqual(promotion.applicable_products, [COLA])

    def test_delete_clears_index_and_keeps_history(self):
        """History outlives the deleted promotion"""
        promotion = PromotionService.create_promotion(
            promotion_data(gift_selection_type="cross", gift_products=[CHIPS]), "alice"
        ).unwrap()

        result = PromotionService.delete_promotion(str(promotion.id), "admin")

        self.assertEqual(result.unwrap(), str(promotion.id))
        self.assertFalse(Promotion.objects.filter(id=promotion.id).exists())
        self.assertEqual(PromotionIndexService.find_promotion_ids(COLA), [])
        self.assertEqual(PromotionIndexService.find_promotion_ids(CHIPS), [])
        actions = [entry.action for entry in PromotionService.get_history(str(promotion.id))]
        self.assertEqual(actions, ["create", "delete"])

    def test_delete_unknown_promotion(self):
        self.assertTrue(PromotionService.delete_promotion(str(uuid.uuid4()), "admin").is_err())


class PromotionMergeTests(TestCase):
    """Merging duplicate promotions"""

    def setUp(self):
        self.cola = PromotionService.create_promotion(promotion_data(name="Cola 1+1"), "alice").unwrap()
        self.cider = PromotionService.create_promotion(
            promotion_data(name="Cider 1+1", applicable_products=[CIDER]), "bob"
        ).unwrap()

    def test_merge_promotions(self):
        """Sources are retired and their barcodes point at the merged promotion"""
        result = PromotionService.merge_promotions(
            [str(self.cola.id), str(self.cider.id)], {"name": "Drinks 1+1"}, "admin"
        )

        self.assertTrue(result.is_ok())
        target = result.unwrap()
        self.assertEqual(target.name, "Drinks 1+1")
        self.assertEqual(target.applicable_products, [COLA, CIDER])
        self.assertFalse(target.gift_constraints["must_be_same_product"])
        self.assertEqual(target.merged_from, [str(self.cola.id), str(self.cider.id)])
        self.assertEqual(target.verification_status, "verified")
        self.assertEqual(target.verified_by, ["admin"])

        for source in (self.cola, self.cider):
            source.refresh_from_db()
            self.assertEqual(source.status, "merged")
            self.assertFalse(source.is_active)
            self.assertEqual(source.merged_into_id, target.id)
            self.assertEqual(PromotionService.get_history(str(source.id))[-1].action, "merged")

        self.assertEqual(PromotionIndexService.find_promotion_ids(COLA), [str(target.id)])
        self.assertEqual(PromotionIndexService.find_promotion_ids(CIDER), [str(target.id)])
        self.assertTrue(PromotionIndexService.check_consistency().is_consistent)
        self.assertEqual(PromotionService.get_history(str(target.id))[0].action, "merge")

    def test_merge_adds_requested_products(self):
        target = PromotionService.merge_promotions(
            [str(self.cola.id), str(self.cider.id)], {"applicable_products": [CHIPS]}, "admin"
        ).unwrap()
        self.assertEqual(target.applicable_products, [COLA, CIDER, CHIPS])

    def test_merge_needs_two_sources(self):
        result = PromotionService.merge_promotions([str(self.cola.id), str(self.cola.id)], {}, "admin")
        self.assertEqual(result.unwrap_err(), "At least two promotions are needed for a merge")

    def test_merge_rejects_merged_and_missing_sources(self):
        other = PromotionService.create_promotion(promotion_data(applicable_products=[CHIPS]), "carol").unwrap()
        PromotionService.merge_promotions([str(self.cola.id), str(self.cider.id)], {}, "admin")

        result = PromotionService.merge_promotions([str(self.cola.id), str(other.id)], {}, "admin")
        self.assertIn("already merged", result.unwrap_err())

        result = PromotionService.merge_promotions([str(other.id), str(uuid.uuid4())], {}, "admin")
        self.assertIn("not found", result.unwrap_err())

    def test_merge_accepts_uppercase_ids(self):
        result = PromotionService.merge_promotions(
            [str(self.cola.id).upper(), str(self.cider.id), str(self.cider.id).upper()], {}, "admin"
        )

        target = result.unwrap()
        self.assertEqual(target.merged_from, [str(self.cola.id), str(self.cider.id)])

    def test_merge_individual_absorbs_sources(self):
        result = PromotionService.merge_individual(str(self.cola.id), [str(self.cider.id)], "admin")

        target = result.unwrap()
        self.assertEqual(target.applicable_products, [COLA, CIDER])
        self.assertEqual(target.merged_from, [str(self.cider.id)])
        self.cider.refresh_from_db()
        self.assertEqual(self.cider.status, "merged")
        self.assertEqual(PromotionIndexService.find_promotion_ids(CIDER), [str(target.id)])
        self.assertEqual(PromotionService.get_history(str(target.id))[-1].action, "merge_individual")

    def test_merge_individual_with_gifts_makes_cross_promotion(self):
        """Gift barcodes turn the target into a cross promotion"""
        target = PromotionService.merge_individual(str(self.cola.id), [], "admin", gift_products=[CHIPS]).unwrap()

        self.assertEqual(target.gift_selection_type, "cross")
        self.assertEqual(target.gift_products, [CHIPS])
        self.assertEqual(PromotionIndexService.find_promotion_ids(CHIPS), [str(target.id)])

    def test_merge_individual_with_new_products_only(self):
        target = PromotionService.merge_individual(str(self.cola.id), [], "admin", new_products=[CHIPS]).unwrap()

        self.assertEqual(target.applicable_products, [COLA, CHIPS])
        self.assertEqual(target.merged_by, "admin")
        self.assertEqual(PromotionIndexService.find_promotion_ids(CHIPS), [str(target.id)])

    def test_merge_individual_needs_work(self):
        result = PromotionService.merge_individual(str(self.cola.id), [str(self.cola.id)], "admin")
        self.assertEqual(result.unwrap_err(), "Nothing to merge")

        result = PromotionService.merge_individual(str(self.cola.id), [str(self.cola.id).upper()], "admin")
        self.assertEqual(result.unwrap_err(), "Nothing to merge")


class MergeCandidateTests(TestCase):
    """Duplicate detection"""

    def test_find_merge_candidates(self):
        """Single-product promotions sharing type and window are grouped"""
        valid_from = timezone.now() - timedelta(days=3)
        first = create_promotion(applicable_products=[COLA], valid_from=valid_from)
        second = create_promotion(applicable_products=[CIDER], valid_from=valid_from)
        create_promotion(applicable_products=[CHIPS], valid_from=valid_from, promotion_type="2+1", buy_quantity=2)
        create_promotion(applicable_products=[COLA, CIDER], valid_from=valid_from)

        candidates = PromotionService.find_merge_candidates()
        self.assertEqual(candidates, [[first, second]])
        self.assertEqual(PromotionService.find_merge_candidates(search="nothing"), [])


class DiscountRuleServiceTests(TestCase):
    """Discount rule lifecycle"""

    def _rule_data(self, **overrides):
        data = {
            "name": "Card day",
            "category": "payment_event",
            "value_type": "fixed_amount",
            "config": {"amount": 1000},
            "required_payment_methods": ["card"],
        }
        data.update(overrides)
        return data

    def test_create_update_delete(self):
        rule = DiscountRuleService.create_rule(self._rule_data(), "admin").unwrap()
        self.assertEqual(rule.created_by, "admin")

        updated = DiscountRuleService.update_rule(str(rule.id), {"config": {"amount": 1500}}, "admin").unwrap()
        self.assertEqual(updated.config, {"amount": 1500})

        self.assertEqual(DiscountRuleService.delete_rule(str(rule.id), "admin").unwrap(), str(rule.id))
        self.assertFalse(DiscountRule.objects.exists())

        actions = [entry.action for entry in DiscountRuleService.get_history(str(rule.id))]
        self.assertEqual(actions, ["create", "update", "delete"])

    def test_create_rejects_invalid_config(self):
        result = DiscountRuleService.create_rule(self._rule_data(value_type="voucher_amount"), "admin")
        self.assertTrue(result.is_err())
        self.assertFalse(DiscountRule.objects.exists())

    def test_unknown_rule(self):
        self.assertTrue(DiscountRuleService.update_rule(str(uuid.uuid4()), {"name": "x"}, "admin").is_err())
        self.assertTrue(DiscountRuleService.delete_rule("not-a-uuid", "admin").is_err())

    def test_unknown_fields(self):
        result = DiscountRuleService.create_rule(self._rule_data(created_by="mallory"), "admin")
        self.assertEqual(result.unwrap_err(), "Unknown discount rule fields: created_by")


class CartCalculationServiceTests(TestCase):
    """Request validation and selection resolution"""

    def setUp(self):
        self.promotion = create_promotion()
        self.coupon = create_discount_rule()

    def _payload(self, *selected, quantity=3):
        return {
            "lines": [
                {
                    "barcode": COLA,
                    "quantity": quantity,
                    "unit_price": 1000,
                    "selected_discount_ids": list(selected),
                }
            ]
        }

    def test_promotion_then_coupon(self):
        """1+1 on three units, then 10% off the remaining two paid units"""
        result = CartCalculationService.calculate_request(
            self._payload(str(self.coupon.id), str(self.promotion.id))
        )

        calculation = result.unwrap()
        line = calculation.lines[0]
        self.assertEqual(line.final, 1800)
        self.assertEqual([applied.category for applied in line.applied_discounts], ["promotion", "coupon"])
        self.assertEqual(calculation.totals.discount, 1200)

        body = CartCalculationService.render(calculation)
        self.assertEqual(body["totals"]["final"], 1800)
        self.assertEqual(body["totals"]["discount_rate"], Decimal("0.4000"))
        self.assertEqual(body["lines"][0]["applied_discounts"][0]["free_units"], 1)
        self.assertEqual(len(body["promotion_applications"]), 1)

    def test_disputed_promotion_is_skipped(self):
        Promotion.objects.filter(id=self.promotion.id).update(verification_status="disputed")

        line = CartCalculationService.calculate_request(self._payload(str(self.promotion.id))).unwrap().lines[0]
        self.assertEqual(line.final, 3000)
        self.assertTrue(line.warnings[0].startswith(PROMOTION_NOT_TRUSTED))

    def test_unknown_ids_warn(self):
        line = CartCalculationService.calculate_request(
            self._payload(str(uuid.uuid4()), "bogus", str(self.coupon.id))
        ).unwrap().lines[0]

        self.assertEqual(line.final, 2700)
        self.assertEqual(sum(warning.startswith(UNKNOWN_DISCOUNT) for warning in line.warnings), 2)

    def test_selected_ids_are_normalised(self):
        """Uppercase and braced UUIDs resolve like their canonical form"""
        braced = "{" + str(self.promotion.id) + "}"
        line = CartCalculationService.calculate_request(
            self._payload(str(self.coupon.id).upper(), braced)
        ).unwrap().lines[0]

        self.assertEqual(line.final, 1800)
        self.assertFalse(any(warning.startswith(UNKNOWN_DISCOUNT) for warning in line.warnings))

    def test_invalid_payload(self):
        result = CartCalculationService.calculate_request({"lines": []})
        self.assertTrue(result.is_err())
        self.assertIn("lines", result.unwrap_err())

        result = CartCalculationService.calculate_request(self._payload(quantity=0))
        self.assertTrue(result.is_err())

    @patch(
        "apps.promotions.services.RuleCatalog.find_discount_rules_by_ids",
        side_effect=DatabaseError("connection lost"),
    )
    def test_lookup_failure_prices_at_full(self, mock_lookup):
        """A database error while resolving ids prices the line at full price"""
        line = CartCalculationService.calculate_request(self._payload(str(self.coupon.id))).unwrap().lines[0]

        self.assertEqual(line.final, 3000)
        self.assertTrue(line.warnings[0].startswith(DISCOUNT_LOOKUP_FAILED))
        mock_lookup.assert_called_once()

    def test_request_id_bound_during_calculation(self):
        """Log records from one calculation share a correlation id"""
        seen = []
        original = CartCalculator.calculate

        def capture(*args, **kwargs):
            seen.append(get_request_id())
            return original(*args, **kwargs)

        with patch("apps.promotions.services.CartCalculator.calculate", side_effect=capture):
            result = CartCalculationService.calculate_request(self._payload(str(self.coupon.id)))

        self.assertTrue(result.is_ok())
        self.assertTrue(seen[0])
        self.assertIsNone(get_request_id())

    def test_available_promotions(self):
        """Disputed and expired promotions are not offered"""
        disputed = create_promotion(verification_status="disputed")
        expired = create_promotion(
            valid_from=timezone.now() - timedelta(days=10), valid_to=timezone.now() - timedelta(days=1)
        )
        for promotion in (self.promotion, disputed, expired):
            PromotionIndexService.add_promotion(promotion)

        self.assertEqual(CartCalculationService.available_promotions(COLA), [self.promotion])
        self.assertEqual(CartCalculationService.available_promotions(CHIPS), [])


class RecommendRequestTests(TestCase):
    """Recommendations over the stored rules and indexed promotions"""

    def setUp(self):
        self.coupon = create_discount_rule()
        self.promotion = create_promotion()
        PromotionIndexService.add_promotion(self.promotion)

    def _payload(self, quantity=2):
        return {"lines": [{"barcode": COLA, "quantity": quantity, "unit_price": 1000}]}

    def test_recommends_promotion_with_coupon(self):
        outcome = CartCalculationService.recommend_request(self._payload()).unwrap()

        self.assertEqual(outcome.optimal.rule_ids, [str(self.promotion.id), str(self.coupon.id)])
        self.assertEqual(outcome.optimal.final, 900)

    def test_untrusted_and_inactive_are_not_candidates(self):
        self.promotion.verification_status = "disputed"
        self.promotion.save()
        create_discount_rule(name="Retired coupon", is_active=False, config={"percentage": "50"})

        outcome = CartCalculationService.recommend_request(self._payload()).unwrap()

        self.assertEqual(outcome.optimal.rule_ids, [str(self.coupon.id)])
        self.assertEqual(outcome.optimal.final, 1800)

    def test_invalid_payload(self):
        result = CartCalculationService.recommend_request({"lines": []})
        self.assertTrue(result.is_err())
        self.assertIn("lines", result.unwrap_err())


class RuleCatalogTests(TestCase):
    """Read path filters"""

    def test_find_promotions_filters(self):
        cola = create_promotion(name="Cola 1+1", priority=1)
        cider = create_promotion(name="Cider 2+1", promotion_type="2+1", buy_quantity=2, applicable_products=[CIDER])
        create_promotion(name="Old cola", status="expired", verification_status="disputed")
        PromotionIndexService.rebuild()

        self.assertEqual(list(RuleCatalog.find_promotions({"status": "active"})), [cola, cider])
        self.assertEqual(list(RuleCatalog.find_promotions({"barcode": CIDER})), [cider])
        self.assertEqual(list(RuleCatalog.find_promotions({"promotion_type": "2+1"})), [cider])
        self.assertEqual(list(RuleCatalog.find_promotions({"search": "cider"})), [cider])
        self.assertEqual(
            list(RuleCatalog.find_promotions({"verification_status": ["unverified"], "barcode": COLA})), [cola]
        )

    def test_find_discount_rules_filters(self):
        coupon = create_discount_rule()
        voucher = create_discount_rule(
            name="Gift card", category="voucher", value_type="voucher_amount", config={"amount": 5000}
        )
        create_discount_rule(name="Future", valid_from=timezone.now() + timedelta(days=5))

        self.assertEqual(set(RuleCatalog.find_discount_rules({"category": ["voucher"]})), {voucher})
        self.assertEqual(
            set(RuleCatalog.find_discount_rules({"as_of": timezone.now()})), {coupon, voucher}
        )

    def test_get_promotion(self):
        promotion = create_promotion()
        self.assertEqual(RuleCatalog.get_promotion(str(promotion.id)), promotion)
        for missing in (str(uuid.uuid4()), "not-a-uuid"):
            with self.subTest(id=missing), self.assertRaises(PromotionNotFoundError):
                RuleCatalog.get_promotion(missing)

    def test_history_survives_deletion(self):
        rule = create_discount_rule()
        DiscountRuleService.delete_rule(str(rule.id), "admin")
        self.assertTrue(ModificationHistory.objects.filter(entity_id=rule.id, action="delete").exists())
