"""
Buy-N-get-M promotion matching.

Given the whole cart and one promotion, works out which units are paid and
which are free. Free units are reported per cart line so the calculator can
fold them into each line's running price.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Sequence
from datetime import datetime
from typing import TYPE_CHECKING

from django.utils import timezone

from .conf import get_engine_setting
from .constants import GIFT_COMBO, GIFT_CROSS
from .rule_configs import BuyNGetMConfig
from .types import CartLine, DiscountSpec, LineAllocation, PromotionApplication

if TYPE_CHECKING:
    from .models import Promotion

logger = logging.getLogger(__name__)

GIFT_POLICY_AUTO = "auto"
GIFT_POLICY_CHEAPEST_FIRST = "cheapest_first"
GIFT_POLICY_CART_ORDER = "cart_order"
GIFT_POLICIES = (GIFT_POLICY_AUTO, GIFT_POLICY_CHEAPEST_FIRST, GIFT_POLICY_CART_ORDER)

IndexedLine = tuple[int, CartLine]


class PromotionMatcher:
    """Computes free/paid unit splits for buy-N-get-M promotions."""

    @classmethod
    def match(
        cls,
        cart_lines: Sequence[CartLine],
        promotion: DiscountSpec | Promotion,
        as_of: datetime | None = None,
        purchase_line_indexes: Collection[int] | None = None,
        gift_policy: str | None = None,
    ) -> PromotionApplication | None:
        """
        Match one promotion against a cart.

        Args:
            cart_lines: The whole cart, in cart order.
            promotion: A promotion model or a promotion-category spec.
            as_of: Evaluation instant, defaults to now.
            purchase_line_indexes: Restricts which lines may count as purchases
                (the lines that selected the promotion). Gift lines are always
                drawn from the whole cart.
            gift_policy: Overrides the configured cross gift policy.

        Returns:
            The application, or None when the promotion is not eligible, no line
            is in scope, or no complete group forms.
        """
        spec = promotion if isinstance(promotion, DiscountSpec) else promotion.to_discount_spec()
        config = spec.promotion_config
        if config is None:
            raise ValueError(f"Discount {spec.id} is not a buy-N-get-M promotion")

        as_of = as_of or timezone.now()
        if not spec.is_eligible(as_of):
            return None

        excluded = set(config.constraints.excluded_products)
        candidates = [
            (index, line)
            for index, line in enumerate(cart_lines)
            if line.is_resolvable and line.barcode not in excluded
        ]
        purchases = [
            (index, line)
            for index, line in candidates
            if spec.applies_to(line.barcode, line.category, line.brand)
            and (purchase_line_indexes is None or index in purchase_line_indexes)
        ]
        is_gift_promotion = config.gift_selection_type in (GIFT_CROSS, GIFT_COMBO)
        if is_gift_promotion:
            purchases = [
                (index, line)
                for index, line in purchases
                if not config.in_gift_scope(line.barcode, line.category, line.brand)
            ]
        if not purchases:
            return None

        min_purchase = config.constraints.min_purchase_amount
        purchase_subtotal = sum(line.original_price for _index, line in purchases)
        if min_purchase and purchase_subtotal < min_purchase:
            logger.debug(
                f"🎁 [PromotionMatcher] {spec.name}: subtotal {purchase_subtotal} below minimum {min_purchase}"
            )
            return None

        if is_gift_promotion:
            gifts = [
                (index, line)
                for index, line in candidates
                if config.in_gift_scope(line.barcode, line.category, line.brand)
            ]
            policy = cls.resolve_gift_policy(config, gift_policy)
            application = cls._match_gifted(spec, config, purchases, gifts, policy)
        elif config.gift_constraints.must_be_same_product:
            application = cls._match_same_line(spec, config, purchases)
        else:
            application = cls._match_pooled(spec, config, purchases)

        if application.group_count == 0:
            return None
        logger.debug(
            f"🎁 [PromotionMatcher] {spec.name}: {application.group_count} group(s), "
            f"{application.free_units} free unit(s), {application.shortfall_units} short"
        )
        return application

    @staticmethod
    def resolve_gift_policy(config: BuyNGetMConfig, override: str | None = None) -> str:
        policy = override or get_engine_setting("CROSS_GIFT_POLICY")
        if policy not in GIFT_POLICIES:
            raise ValueError(f"Unknown cross gift policy '{policy}'")
        if policy != GIFT_POLICY_AUTO:
            return policy
        if config.gift_constraints.prefers_cheapest_gift:
            return GIFT_POLICY_CHEAPEST_FIRST
        return GIFT_POLICY_CART_ORDER

    # ===============================================================================
    # Gift resolution strategies
    # ===============================================================================

    @staticmethod
    def _group_cap(config: BuyNGetMConfig) -> int | None:
        return config.constraints.max_applications_per_cart

    @classmethod
    def _match_same_line(
        cls, spec: DiscountSpec, config: BuyNGetMConfig, purchases: list[IndexedLine]
    ) -> PromotionApplication:
        """Each line forms its own groups; remainder units stay at full price."""
        cap = cls._group_cap(config)
        total_groups = 0
        allocations: list[LineAllocation] = []

        for index, line in purchases:
            groups = line.quantity // config.group_size
            if cap is not None:
                groups = min(groups, cap - total_groups)
            if groups <= 0:
                continue
            free = groups * config.get_quantity
            total_groups += groups
            allocations.append(LineAllocation(index, "same", groups, free, line.quantity - free))

        return PromotionApplication(spec.id, spec.name, config.gift_selection_type, total_groups, allocations)

    @classmethod
    def _match_pooled(
        cls, spec: DiscountSpec, config: BuyNGetMConfig, purchases: list[IndexedLine]
    ) -> PromotionApplication:
        """Units of every in-scope product count together; the cheapest units go free."""
        total_units = sum(line.quantity for _index, line in purchases)
        groups = total_units // config.group_size
        cap = cls._group_cap(config)
        if cap is not None:
            groups = min(groups, cap)

        free_left = groups * config.get_quantity
        free_by_line: dict[int, int] = {}
        for index, line in sorted(purchases, key=lambda item: (item[1].unit_price, item[0])):
            if free_left <= 0:
                break
            take = min(line.quantity, free_left)
            free_by_line[index] = take
            free_left -= take

        allocations = [
            LineAllocation(index, "same", 0, free_by_line.get(index, 0), line.quantity - free_by_line.get(index, 0))
            for index, line in purchases
        ]
        return PromotionApplication(spec.id, spec.name, config.gift_selection_type, groups, allocations)

    @classmethod
    def _match_gifted(
        cls,
        spec: DiscountSpec,
        config: BuyNGetMConfig,
        purchases: list[IndexedLine],
        gifts: list[IndexedLine],
        policy: str,
    ) -> PromotionApplication:
        """
        Cross and combo matching.

        Every ``buy_quantity`` purchased units earn ``get_quantity`` free units
        drawn from the gift scope. Cross keeps partial gifts and reports the
        shortfall; combo only counts groups whose gift units are all present.
        """
        if policy == GIFT_POLICY_CHEAPEST_FIRST:
            gifts = sorted(gifts, key=lambda item: (item[1].unit_price, item[0]))
        remaining = {index: line.quantity for index, line in gifts}
        gift_lines = dict(gifts)
        free_by_gift: dict[int, int] = {}
        cap = cls._group_cap(config)
        total_groups = 0
        shortfall = 0
        allocations: list[LineAllocation] = []

        for index, line in purchases:
            groups = line.quantity // config.buy_quantity
            if cap is not None:
                groups = min(groups, cap - total_groups)
            if groups <= 0:
                continue

            eligible = [
                gift_index
                for gift_index, _gift_line in gifts
                if remaining[gift_index] > 0 and cls._gift_allowed(config, gift_lines[gift_index], line)
            ]
            available = sum(remaining[gift_index] for gift_index in eligible)
            if config.gift_selection_type == GIFT_COMBO:
                paired = min(groups, available // config.get_quantity)
                shortfall += (groups - paired) * config.get_quantity
                groups = paired
                if groups == 0:
                    continue
                needed = groups * config.get_quantity
            else:
                needed = groups * config.get_quantity
                shortfall += max(needed - available, 0)

            for gift_index in eligible:
                if needed <= 0:
                    break
                take = min(remaining[gift_index], needed)
                remaining[gift_index] -= take
                free_by_gift[gift_index] = free_by_gift.get(gift_index, 0) + take
                needed -= take

            total_groups += groups
            allocations.append(LineAllocation(index, "purchase", groups, 0, line.quantity))

        for gift_index, free in free_by_gift.items():
            quantity = gift_lines[gift_index].quantity
            allocations.append(LineAllocation(gift_index, "gift", 0, free, quantity - free))
        allocations.sort(key=lambda allocation: (allocation.line_index, allocation.role))

        return PromotionApplication(
            spec.id,
            spec.name,
            config.gift_selection_type,
            total_groups,
            allocations,
            shortfall_units=shortfall,
        )

    @staticmethod
    def _gift_allowed(config: BuyNGetMConfig, gift: CartLine, purchase: CartLine) -> bool:
        constraints = config.gift_constraints
        if constraints.max_gift_price is not None and gift.unit_price > constraints.max_gift_price:
            return False
        return not (constraints.must_be_cheaper_than_purchased and gift.unit_price > purchase.unit_price)
