"""
Cart calculation.

Folds each line's selected discounts into a final price. A line whose
selection is invalid falls back to full price with its conflicts attached; the
rest of the cart is still priced.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from decimal import ROUND_DOWN, ROUND_FLOOR, Decimal

from django.utils import timezone

from apps.common.types import Err, Ok, Result

from .combination import CombinationValidator
from .constants import BASE_AMOUNT_ORIGINAL
from .matcher import PromotionMatcher
from .rule_configs import (
    BuyNGetMConfig,
    FixedAmountConfig,
    PercentageConfig,
    TieredAmountConfig,
    VoucherAmountConfig,
)
from .types import (
    AppliedDiscount,
    CalculationResult,
    CartLine,
    CartTotals,
    DiscountSpec,
    LineResult,
    PromotionApplication,
)

logger = logging.getLogger(__name__)

# Warning codes
RULE_NOT_ELIGIBLE = "RULE_NOT_ELIGIBLE"
RULE_OUT_OF_SCOPE = "RULE_OUT_OF_SCOPE"
RULE_GATE_NOT_MET = "RULE_GATE_NOT_MET"
LINE_NOT_RESOLVABLE = "LINE_NOT_RESOLVABLE"
PROMOTION_NOT_APPLIED = "PROMOTION_NOT_APPLIED"
PROMOTION_SHORTFALL = "PROMOTION_SHORTFALL"
GIFT_DROPPED = "GIFT_DROPPED"
PROMOTION_SUPERSEDED = "PROMOTION_SUPERSEDED"

DISCOUNT_RATE_PRECISION = Decimal("0.0001")


class CartCalculator:
    """Prices a cart against resolved discount selections."""

    @classmethod
    def calculate(
        cls,
        cart_lines: Sequence[CartLine],
        discount_selections: Sequence[Sequence[DiscountSpec]] | None = None,
        payment_method: str | None = None,
        as_of: datetime | None = None,
        gift_policy: str | None = None,
    ) -> Result[CalculationResult, str]:
        """
        Calculate final prices for a cart.

        Args:
            cart_lines: Cart lines in cart order.
            discount_selections: ``discount_selections[i]`` holds the resolved
                specs selected for line ``i``. Missing entries mean no selection.
            payment_method: Payment method used to check payment-bound rules.
            as_of: Evaluation instant, defaults to now.
            gift_policy: Overrides the configured cross gift policy.

        Returns:
            Ok(CalculationResult), or Err when the cart is empty or has no
            resolvable line.
        """
        if not cart_lines:
            return Err("Cart is empty")
        if not any(line.is_resolvable for line in cart_lines):
            return Err("Cart has no resolvable lines")

        as_of = as_of or timezone.now()
        selections = list(discount_selections or [])
        selections += [[] for _ in range(len(cart_lines) - len(selections))]
        cart_original = sum(line.original_price for line in cart_lines if line.is_resolvable)

        results: list[LineResult] = []
        line_rules: list[list[DiscountSpec]] = []
        for index, line in enumerate(cart_lines):
            result, rules = cls._prepare_line(
                index, line, selections[index], payment_method, as_of, cart_original
            )
            results.append(result)
            line_rules.append(rules)

        for index in range(len(cart_lines)):
            line_rules[index] = cls._keep_best_promotion(
                index, cart_lines, results[index], line_rules[index], payment_method, as_of, gift_policy
            )

        cart_warnings: list[str] = []
        free_units, applications = cls._apply_promotions(
            cart_lines, results, line_rules, payment_method, as_of, gift_policy, cart_warnings
        )

        for index, line in enumerate(cart_lines):
            if line.is_resolvable:
                cls._fold_line(line, results[index], line_rules[index], free_units)

        totals = cls._totals(results)
        logger.info(
            f"🧮 [CartCalculator] {len(cart_lines)} line(s): {totals.original} -> {totals.final} "
            f"(rate {totals.discount_rate})"
        )
        return Ok(
            CalculationResult(
                lines=results,
                totals=totals,
                warnings=cart_warnings,
                promotion_applications=applications,
            )
        )

    # ===============================================================================
    # Selection filtering
    # ===============================================================================

    @classmethod
    def _prepare_line(
        cls,
        index: int,
        line: CartLine,
        selected: Sequence[DiscountSpec],
        payment_method: str | None,
        as_of: datetime,
        cart_original: int,
    ) -> tuple[LineResult, list[DiscountSpec]]:
        if not line.is_resolvable:
            result = LineResult(index, line.barcode, line.quantity, line.unit_price, 0, 0)
            result.warnings.append(f"{LINE_NOT_RESOLVABLE}: line has a blank barcode or no quantity")
            return result, []

        original = line.original_price
        result = LineResult(index, line.barcode, line.quantity, line.unit_price, original, original)
        kept: list[DiscountSpec] = []
        seen: set[str] = set()

        for spec in selected:
            if spec.id in seen:
                continue
            seen.add(spec.id)
            if not spec.is_eligible(as_of):
                result.warnings.append(f"{RULE_NOT_ELIGIBLE}: '{spec.name}' is not available on {as_of.date()}")
            elif not spec.applies_to(line.barcode, line.category, line.brand):
                result.warnings.append(f"{RULE_OUT_OF_SCOPE}: '{spec.name}' does not cover {line.barcode}")
            elif spec.min_quantity and line.quantity < spec.min_quantity:
                result.warnings.append(
                    f"{RULE_GATE_NOT_MET}: '{spec.name}' needs at least {spec.min_quantity} unit(s)"
                )
            elif spec.min_purchase_amount and cart_original < spec.min_purchase_amount:
                result.warnings.append(
                    f"{RULE_GATE_NOT_MET}: '{spec.name}' needs a purchase of at least {spec.min_purchase_amount}"
                )
            else:
                kept.append(spec)

        validation = CombinationValidator.validate(kept, payment_method)
        if not validation.is_valid:
            result.conflicts.extend(validation.errors)
            return result, []
        return result, validation.ordered_rules

    # ===============================================================================
    # Promotions
    # ===============================================================================

    @classmethod
    def _keep_best_promotion(
        cls,
        index: int,
        cart_lines: Sequence[CartLine],
        result: LineResult,
        rules: list[DiscountSpec],
        payment_method: str | None,
        as_of: datetime,
        gift_policy: str | None,
    ) -> list[DiscountSpec]:
        """
        A line carries at most one promotion.

        When several are selected, the one whose free units are worth the most
        is kept; ties go to the earliest in fold order.
        """
        promotions = [spec for spec in rules if spec.promotion_config is not None]
        if len(promotions) < 2:
            return rules

        best = max(
            promotions,
            key=lambda spec: cls._promotion_value(cart_lines, spec, index, as_of, gift_policy),
        )
        for spec in promotions:
            if spec is not best:
                result.warnings.append(
                    f"{PROMOTION_SUPERSEDED}: '{spec.name}' dropped, '{best.name}' gives the larger discount"
                )
        logger.warning(
            f"⚠️ [CartCalculator] Line {index} selected {len(promotions)} promotions, keeping '{best.name}'"
        )

        kept = [spec for spec in rules if spec.promotion_config is None or spec is best]
        validation = CombinationValidator.validate(kept, payment_method)
        if not validation.is_valid:
            result.conflicts.extend(validation.errors)
            return []
        return validation.ordered_rules

    @staticmethod
    def _promotion_value(
        cart_lines: Sequence[CartLine],
        spec: DiscountSpec,
        index: int,
        as_of: datetime,
        gift_policy: str | None,
    ) -> int:
        application = PromotionMatcher.match(
            cart_lines, spec, as_of=as_of, purchase_line_indexes={index}, gift_policy=gift_policy
        )
        if application is None:
            return 0
        return sum(
            allocation.free_units * cart_lines[allocation.line_index].unit_price
            for allocation in application.allocations
        )

    @classmethod
    def _apply_promotions(
        cls,
        cart_lines: Sequence[CartLine],
        results: list[LineResult],
        line_rules: list[list[DiscountSpec]],
        payment_method: str | None,
        as_of: datetime,
        gift_policy: str | None,
        cart_warnings: list[str],
    ) -> tuple[dict[tuple[int, str], int], list[PromotionApplication]]:
        """
        Match every selected promotion once over the whole cart.

        Returns free units keyed by (line index, promotion id) together with
        the applications that produced them.
        """
        promotions: dict[str, DiscountSpec] = {}
        purchase_indexes: dict[str, set[int]] = {}
        for index, rules in enumerate(line_rules):
            for spec in rules:
                if spec.promotion_config is None:
                    continue
                promotions.setdefault(spec.id, spec)
                purchase_indexes.setdefault(spec.id, set()).add(index)

        free_units: dict[tuple[int, str], int] = {}
        applications: list[PromotionApplication] = []
        for promotion_id, spec in promotions.items():
            application = PromotionMatcher.match(
                cart_lines,
                spec,
                as_of=as_of,
                purchase_line_indexes=purchase_indexes[promotion_id],
                gift_policy=gift_policy,
            )
            if application is None:
                continue
            applications.append(application)
            if application.shortfall_units:
                cart_warnings.append(
                    f"{PROMOTION_SHORTFALL}: '{spec.name}' is missing {application.shortfall_units} gift unit(s)"
                )

            for allocation in application.allocations:
                if allocation.free_units <= 0:
                    continue
                index = allocation.line_index
                rules = line_rules[index]
                if all(rule.id != promotion_id for rule in rules):
                    if not cls._attach_gift(index, spec, results[index], line_rules, payment_method):
                        continue
                free_units[(index, promotion_id)] = allocation.free_units

        participating = {
            (allocation.line_index, application.promotion_id)
            for application in applications
            for allocation in application.allocations
        }
        for index, rules in enumerate(line_rules):
            for spec in rules:
                if spec.promotion_config is not None and (index, spec.id) not in participating:
                    results[index].warnings.append(
                        f"{PROMOTION_NOT_APPLIED}: '{spec.name}' has no complete group on this line"
                    )
        return free_units, applications

    @staticmethod
    def _attach_gift(
        index: int,
        spec: DiscountSpec,
        result: LineResult,
        line_rules: list[list[DiscountSpec]],
        payment_method: str | None,
    ) -> bool:
        """Add a promotion to a gift line's set when the set stays valid."""
        if result.conflicts:
            result.warnings.append(f"{GIFT_DROPPED}: '{spec.name}' gift skipped, line selection is invalid")
            return False
        current = next((rule for rule in line_rules[index] if rule.promotion_config is not None), None)
        if current is not None:
            result.warnings.append(f"{GIFT_DROPPED}: '{spec.name}' gift skipped, line already has '{current.name}'")
            return False
        validation = CombinationValidator.validate([*line_rules[index], spec], payment_method)
        if not validation.is_valid:
            codes = ", ".join(error.code for error in validation.errors)
            result.warnings.append(f"{GIFT_DROPPED}: '{spec.name}' gift conflicts with the line selection ({codes})")
            return False
        line_rules[index] = validation.ordered_rules
        return True

    # ===============================================================================
    # Folding
    # ===============================================================================

    @classmethod
    def _fold_line(
        cls,
        line: CartLine,
        result: LineResult,
        rules: list[DiscountSpec],
        free_units: dict[tuple[int, str], int],
    ) -> None:
        original = line.original_price
        running = original
        free_total = 0

        for spec in rules:
            free = 0
            if spec.promotion_config is not None:
                free = min(free_units.get((result.index, spec.id), 0), line.quantity - free_total)
                if free <= 0:
                    continue
                free_total += free
            deduction = cls._deduction(spec, running, original, line.quantity, free)
            deduction = cls._apply_caps(spec, deduction, line.quantity)
            deduction = max(min(deduction, running), 0)
            result.applied_discounts.append(
                AppliedDiscount(
                    rule_id=spec.id,
                    rule_name=spec.name,
                    category=spec.category,
                    value_type=spec.value_type,
                    amount=deduction,
                    price_before=running,
                    price_after=running - deduction,
                    free_units=free,
                )
            )
            running -= deduction

        result.final = running

    @staticmethod
    def _deduction(spec: DiscountSpec, running: int, original: int, quantity: int, free_units: int) -> int:
        config = spec.config
        if isinstance(config, PercentageConfig):
            base = original if config.base_amount_type == BASE_AMOUNT_ORIGINAL else running
            return int((Decimal(base) * config.percentage / 100).to_integral_value(rounding=ROUND_FLOOR))
        if isinstance(config, FixedAmountConfig):
            return config.amount
        if isinstance(config, TieredAmountConfig):
            return (original // config.tier_unit) * config.tier_amount
        if isinstance(config, VoucherAmountConfig):
            return config.amount
        if isinstance(config, BuyNGetMConfig):
            return running * free_units // quantity
        raise TypeError(f"Unsupported rule config {type(config).__name__}")

    @staticmethod
    def _apply_caps(spec: DiscountSpec, deduction: int, quantity: int) -> int:
        if spec.max_discount_amount is not None:
            deduction = min(deduction, spec.max_discount_amount)
        if spec.max_discount_per_item is not None:
            deduction = min(deduction, spec.max_discount_per_item * quantity)
        return deduction

    @staticmethod
    def _totals(results: list[LineResult]) -> CartTotals:
        original = sum(result.original for result in results)
        final = sum(result.final for result in results)
        discount = original - final
        if original > 0:
            rate = (Decimal(discount) / Decimal(original)).quantize(DISCOUNT_RATE_PRECISION, rounding=ROUND_DOWN)
        else:
            rate = Decimal("0")
        return CartTotals(original=original, final=final, discount=discount, discount_rate=rate)
