"""
Tests for the discount optimizer.
"""

from django.test import SimpleTestCase

from apps.promotions.optimizer import DiscountOptimizer
from tests.factories import (
    NOW,
    make_line,
    percentage_spec,
    promotion_spec,
    voucher_spec,
)

COLA = "8801000000001"
CHIPS = "8801000000101"


def _optimize(lines, rules, **kwargs):
    result = DiscountOptimizer.find_optimal_combination(lines, rules, as_of=NOW, **kwargs)
    assert result.is_ok(), result
    return result.unwrap()


class FindOptimalCombinationTests(SimpleTestCase):
    def setUp(self):
        self.coupon = percentage_spec("coupon", "10")
        self.voucher = voucher_spec(3000)
        self.instant = percentage_spec("payment_instant", "20")

    def test_cheapest_valid_combination_wins(self):
        """Voucher and instant payment conflict, so coupon + voucher is best"""
        outcome = _optimize([make_line(COLA, unit_price=10000)], [self.instant, self.voucher, self.coupon])

        self.assertEqual(outcome.optimal.rule_ids, [self.coupon.id, self.voucher.id])
        self.assertEqual(outcome.optimal.final, 6000)
        self.assertEqual(outcome.optimal.total_discount, 4000)
        self.assertEqual(outcome.evaluated, 5)
        self.assertFalse(outcome.truncated)

    def test_alternatives_have_distinct_amounts(self):
        outcome = _optimize(
            [make_line(COLA, unit_price=10000)], [self.coupon, self.voucher, self.instant], max_alternatives=2
        )

        self.assertEqual(
            [alternative.rule_ids for alternative in outcome.alternatives],
            [[self.voucher.id], [self.coupon.id, self.instant.id]],
        )
        self.assertEqual([alternative.final for alternative in outcome.alternatives], [7000, 7200])

    def test_ties_resolve_by_id_regardless_of_input_order(self):
        first = percentage_spec("coupon", "10", id="coupon-a", cannot_combine_with_ids=("coupon-b",))
        second = percentage_spec("coupon", "10", id="coupon-b")
        lines = [make_line(COLA, unit_price=10000)]

        forward = _optimize(lines, [first, second])
        backward = _optimize(lines, [second, first])

        self.assertEqual(forward.optimal.rule_ids, ["coupon-a"])
        self.assertEqual(forward.to_dict(), backward.to_dict())
        self.assertEqual(forward.alternatives, [])

    def test_promotion_then_coupon(self):
        promotion = promotion_spec(1, 1)
        outcome = _optimize([make_line(COLA, quantity=2)], [self.coupon, promotion])

        self.assertEqual(outcome.optimal.rule_ids, [promotion.id, self.coupon.id])
        self.assertEqual(outcome.optimal.final, 900)

    def test_nothing_applicable(self):
        out_of_scope = percentage_spec("coupon", "10", applicable_products=(CHIPS,))
        outcome = _optimize([make_line(COLA)], [out_of_scope])

        self.assertIsNone(outcome.optimal)
        self.assertEqual(outcome.evaluated, 0)
        self.assertEqual(outcome.to_dict()["optimal"], None)

    def test_payment_bound_rule_needs_payment_method(self):
        card_only = percentage_spec("payment_instant", "20", required_payment_methods=("card",))
        lines = [make_line(COLA, unit_price=10000)]

        self.assertIsNone(_optimize(lines, [card_only]).optimal)
        self.assertEqual(_optimize(lines, [card_only], payment_method="card").optimal.final, 8000)

    def test_search_stops_at_limit(self):
        with self.assertLogs("apps.promotions.optimizer", level="WARNING"):
            outcome = _optimize(
                [make_line(COLA, unit_price=10000)], [self.coupon, self.voucher, self.instant], max_combinations=2
            )

        self.assertTrue(outcome.truncated)
        self.assertEqual(outcome.evaluated, 1)
        self.assertEqual(outcome.optimal.rule_ids, [self.coupon.id])

    def test_empty_cart(self):
        result = DiscountOptimizer.find_optimal_combination([], [self.coupon], as_of=NOW)
        self.assertTrue(result.is_err())


class FindOptimalPerLineTests(SimpleTestCase):
    def test_each_line_gets_its_own_best(self):
        coupon = percentage_spec("coupon", "10", applicable_products=(COLA,))
        voucher = voucher_spec(2000, applicable_products=(CHIPS,))
        instant = percentage_spec("payment_instant", "20")
        lines = [
            make_line(COLA, unit_price=10000),
            make_line(CHIPS, unit_price=5000),
            make_line("", quantity=1),
        ]

        best = DiscountOptimizer.find_optimal_per_line(lines, [voucher, instant, coupon], as_of=NOW)

        self.assertEqual([spec.id for spec in best[0]], [coupon.id, instant.id])
        self.assertEqual([spec.id for spec in best[1]], [voucher.id])
        self.assertEqual(best[2], [])
