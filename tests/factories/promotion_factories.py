# ===============================================================================
# PROMOTION TEST FACTORIES
# ===============================================================================
"""
Builders for cart lines, in-memory discount specs and persisted rules and
promotions.

The ``*_spec`` helpers never touch the database, so calculator and matcher
tests can run as SimpleTestCase.
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from itertools import count
from typing import Any

from django.utils import timezone

from apps.promotions.constants import (
    CATEGORY_PROMOTION,
    GIFT_SAME,
)
from apps.promotions.models import DiscountRule, Promotion
from apps.promotions.rule_configs import (
    BuyNGetMConfig,
    FixedAmountConfig,
    GiftConstraints,
    PercentageConfig,
    PromotionConstraints,
    ProviderTerms,
    TieredAmountConfig,
    VoucherAmountConfig,
)
from apps.promotions.types import SOURCE_PROMOTION, CartLine, DiscountSpec

_ids = count(1)

# A fixed instant inside every default validity window
NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)


def _next_id(prefix: str) -> str:
    return f"{prefix}-{next(_ids):04d}"


# ===============================================================================
# CART LINES
# ===============================================================================


def make_line(
    barcode: str = "8801000000001",
    quantity: int = 1,
    unit_price: int = 1000,
    category: str = "",
    brand: str = "",
    selected: tuple[str, ...] = (),
) -> CartLine:
    return CartLine(
        barcode=barcode,
        quantity=quantity,
        unit_price=unit_price,
        category=category,
        brand=brand,
        selected_discount_ids=tuple(selected),
    )


# ===============================================================================
# IN-MEMORY SPECS
# ===============================================================================


def make_spec(category: str, config: Any, **overrides: Any) -> DiscountSpec:
    values: dict[str, Any] = {
        "id": _next_id(category),
        "name": f"{category} discount",
        "category": category,
        "config": config,
        "created_at": NOW - timedelta(days=30),
        "valid_from": NOW - timedelta(days=30),
        "valid_to": NOW + timedelta(days=30),
    }
    values.update(overrides)
    return DiscountSpec(**values)


def percentage_spec(category: str, percentage: str, base: str = "current_amount", **overrides: Any) -> DiscountSpec:
    return make_spec(category, PercentageConfig(Decimal(percentage), base), **overrides)


def fixed_spec(category: str, amount: int, **overrides: Any) -> DiscountSpec:
    return make_spec(category, FixedAmountConfig(amount), **overrides)


def tiered_spec(tier_unit: int, tier_amount: int, **overrides: Any) -> DiscountSpec:
    return make_spec("telecom", TieredAmountConfig(tier_unit, tier_amount), **overrides)


def voucher_spec(amount: int, **overrides: Any) -> DiscountSpec:
    return make_spec("voucher", VoucherAmountConfig(amount), **overrides)


def provider_terms(**values: Any) -> ProviderTerms:
    return ProviderTerms(**values)


def promotion_spec(
    buy: int = 1,
    get: int = 1,
    products: tuple[str, ...] = ("8801000000001",),
    gift_selection_type: str = GIFT_SAME,
    gift_products: tuple[str, ...] = (),
    gift_constraints: dict[str, Any] | None = None,
    constraints: dict[str, Any] | None = None,
    **overrides: Any,
) -> DiscountSpec:
    config = BuyNGetMConfig(
        buy_quantity=buy,
        get_quantity=get,
        promotion_type=f"{buy}+{get}" if (buy, get) in ((1, 1), (2, 1), (3, 1)) else "custom",
        gift_selection_type=gift_selection_type,
        gift_products=tuple(gift_products),
        gift_constraints=GiftConstraints.from_dict(gift_constraints),
        constraints=PromotionConstraints.from_dict(constraints),
    )
    overrides.setdefault("applicable_products", tuple(products))
    overrides.setdefault("source", SOURCE_PROMOTION)
    overrides.setdefault("name", f"{buy}+{get} promotion")
    return make_spec(CATEGORY_PROMOTION, config, **overrides)


# ===============================================================================
# PERSISTED MODELS
# ===============================================================================


def create_discount_rule(**overrides: Any) -> DiscountRule:
    values: dict[str, Any] = {
        "name": "Coupon 10%",
        "category": "coupon",
        "value_type": "percentage",
        "config": {"percentage": "10"},
        "valid_from": timezone.now() - timedelta(days=1),
        "created_by": "tester",
    }
    values.update(overrides)
    return DiscountRule.objects.create(**values)


def create_promotion(**overrides: Any) -> Promotion:
    """Save a promotion row directly, without history or index entries"""
    values: dict[str, Any] = {
        "name": "Cola 1+1",
        "promotion_type": "1+1",
        "buy_quantity": 1,
        "get_quantity": 1,
        "applicable_type": "products",
        "applicable_products": ["8801000000001"],
        "valid_from": timezone.now() - timedelta(days=1),
        "created_by": "tester",
    }
    values.update(overrides)
    return Promotion.objects.create(**values)


def promotion_data(**overrides: Any) -> dict[str, Any]:
    """Payload accepted by PromotionService.create_promotion"""
    values: dict[str, Any] = {
        "name": "Cola 1+1",
        "promotion_type": "1+1",
        "applicable_type": "products",
        "applicable_products": ["8801000000001"],
        "valid_from": timezone.now() - timedelta(days=1),
    }
    values.update(overrides)
    return values
