"""
Typed discount rule configuration.

A rule's ``config`` JSON is parsed into exactly one frozen dataclass, chosen
by its value type. Keys that do not belong to the chosen variant are
rejected, so a percentage rule can never carry a stray ``tier_unit``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, ClassVar

from apps.common.types import BusinessError

from .constants import (
    APPLICABLE_PRODUCTS,
    APPLICABLE_TYPES,
    BASE_AMOUNT_CURRENT,
    BASE_AMOUNT_ORIGINAL,
    CATEGORY_PROMOTION,
    CATEGORY_VALUE_TYPES,
    GIFT_SAME,
    GIFT_SELECTION_TYPES,
    VALUE_BUY_N_GET_M,
    VALUE_FIXED_AMOUNT,
    VALUE_PERCENTAGE,
    VALUE_TIERED_AMOUNT,
    VALUE_VOUCHER_AMOUNT,
)

MAX_PERCENTAGE = Decimal("100")

PROVIDER_KEYS = frozenset({"provider", "restricted_providers", "can_combine_with_membership", "is_membership"})


class RuleConfigError(BusinessError):
    """Raised when a rule config does not fit its category and value type."""


# ===============================================================================
# Shared value objects
# ===============================================================================


@dataclass(frozen=True)
class ProviderTerms:
    """Telecom / payment provider metadata used by the combination checks."""

    provider: str = ""
    restricted_providers: tuple[str, ...] = ()
    can_combine_with_membership: bool = True
    is_membership: bool = False


@dataclass(frozen=True)
class GiftConstraints:
    max_gift_price: int | None = None
    must_be_cheaper_than_purchased: bool = False
    must_be_same_product: bool = True

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> GiftConstraints:
        data = data or {}
        return cls(
            max_gift_price=_optional_int(data, "max_gift_price"),
            must_be_cheaper_than_purchased=bool(data.get("must_be_cheaper_than_purchased", False)),
            must_be_same_product=bool(data.get("must_be_same_product", True)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_gift_price": self.max_gift_price,
            "must_be_cheaper_than_purchased": self.must_be_cheaper_than_purchased,
            "must_be_same_product": self.must_be_same_product,
        }

    @property
    def prefers_cheapest_gift(self) -> bool:
        return self.must_be_cheaper_than_purchased or self.max_gift_price is not None


@dataclass(frozen=True)
class PromotionConstraints:
    max_applications_per_cart: int | None = None
    min_purchase_amount: int | None = None
    excluded_products: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> PromotionConstraints:
        data = data or {}
        return cls(
            max_applications_per_cart=_optional_int(data, "max_applications_per_cart", minimum=1),
            min_purchase_amount=_optional_int(data, "min_purchase_amount"),
            excluded_products=_string_tuple(data.get("excluded_products")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_applications_per_cart": self.max_applications_per_cart,
            "min_purchase_amount": self.min_purchase_amount,
            "excluded_products": list(self.excluded_products),
        }


# ===============================================================================
# Config variants
# ===============================================================================


@dataclass(frozen=True)
class PercentageConfig:
    percentage: Decimal
    base_amount_type: str = BASE_AMOUNT_CURRENT

    value_type: ClassVar[str] = VALUE_PERCENTAGE
    keys: ClassVar[frozenset[str]] = frozenset({"percentage", "base_amount_type"})


@dataclass(frozen=True)
class FixedAmountConfig:
    amount: int

    value_type: ClassVar[str] = VALUE_FIXED_AMOUNT
    keys: ClassVar[frozenset[str]] = frozenset({"amount"})


@dataclass(frozen=True)
class TieredAmountConfig:
    """Deducts ``tier_amount`` for every full ``tier_unit`` of the line's original price."""

    tier_unit: int
    tier_amount: int

    value_type: ClassVar[str] = VALUE_TIERED_AMOUNT
    keys: ClassVar[frozenset[str]] = frozenset({"tier_unit", "tier_amount"})


@dataclass(frozen=True)
class VoucherAmountConfig:
    amount: int
    voucher_name: str = ""

    value_type: ClassVar[str] = VALUE_VOUCHER_AMOUNT
    keys: ClassVar[frozenset[str]] = frozenset({"amount", "voucher_name"})


@dataclass(frozen=True)
class BuyNGetMConfig:
    """Buy-N-get-M terms, shared by promotion rules and crowd promotions."""

    buy_quantity: int
    get_quantity: int
    promotion_type: str = "custom"
    gift_selection_type: str = GIFT_SAME
    applicable_type: str = APPLICABLE_PRODUCTS
    gift_products: tuple[str, ...] = ()
    gift_categories: tuple[str, ...] = ()
    gift_brands: tuple[str, ...] = ()
    gift_constraints: GiftConstraints = field(default_factory=GiftConstraints)
    constraints: PromotionConstraints = field(default_factory=PromotionConstraints)

    value_type: ClassVar[str] = VALUE_BUY_N_GET_M
    keys: ClassVar[frozenset[str]] = frozenset(
        {
            "buy_quantity",
            "get_quantity",
            "promotion_type",
            "gift_selection_type",
            "applicable_type",
            "gift_products",
            "gift_categories",
            "gift_brands",
            "gift_constraints",
            "constraints",
        }
    )

    @property
    def group_size(self) -> int:
        return self.buy_quantity + self.get_quantity

    @property
    def has_gift_scope(self) -> bool:
        return bool(self.gift_products or self.gift_categories or self.gift_brands)

    def in_gift_scope(self, barcode: str, category: str = "", brand: str = "") -> bool:
        return (
            barcode in self.gift_products
            or bool(category and category in self.gift_categories)
            or bool(brand and brand in self.gift_brands)
        )


RuleConfig = PercentageConfig | FixedAmountConfig | TieredAmountConfig | VoucherAmountConfig | BuyNGetMConfig

CONFIG_VARIANTS: dict[str, type] = {
    VALUE_PERCENTAGE: PercentageConfig,
    VALUE_FIXED_AMOUNT: FixedAmountConfig,
    VALUE_TIERED_AMOUNT: TieredAmountConfig,
    VALUE_VOUCHER_AMOUNT: VoucherAmountConfig,
    VALUE_BUY_N_GET_M: BuyNGetMConfig,
}


# ===============================================================================
# Parsing
# ===============================================================================


def parse_rule_config(category: str, value_type: str, data: Mapping[str, Any] | None) -> RuleConfig:
    """
    Parse a raw config mapping into its typed variant.

    Raises:
        RuleConfigError: if the category/value type pair is illegal, a required
            key is missing, a value is out of range, or a foreign key is present.
    """
    allowed = CATEGORY_VALUE_TYPES.get(category)
    if allowed is None:
        raise RuleConfigError(f"Unknown discount category '{category}'")
    if value_type not in allowed:
        raise RuleConfigError(f"Value type '{value_type}' is not allowed for category '{category}'")

    data = dict(data or {})
    variant = CONFIG_VARIANTS[value_type]
    permitted = variant.keys if category == CATEGORY_PROMOTION else variant.keys | PROVIDER_KEYS
    unexpected = sorted(set(data) - permitted)
    if unexpected:
        raise RuleConfigError(f"Unexpected config keys for {value_type}: {', '.join(unexpected)}")

    if value_type == VALUE_PERCENTAGE:
        return _parse_percentage(data)
    if value_type == VALUE_FIXED_AMOUNT:
        return FixedAmountConfig(amount=_require_int(data, "amount", minimum=1))
    if value_type == VALUE_TIERED_AMOUNT:
        return TieredAmountConfig(
            tier_unit=_require_int(data, "tier_unit", minimum=1),
            tier_amount=_require_int(data, "tier_amount", minimum=1),
        )
    if value_type == VALUE_VOUCHER_AMOUNT:
        return VoucherAmountConfig(
            amount=_require_int(data, "amount", minimum=1),
            voucher_name=str(data.get("voucher_name", "")),
        )
    return parse_buy_n_get_m(data)


def parse_buy_n_get_m(data: Mapping[str, Any]) -> BuyNGetMConfig:
    gift_selection_type = str(data.get("gift_selection_type", GIFT_SAME))
    if gift_selection_type not in {code for code, _label in GIFT_SELECTION_TYPES}:
        raise RuleConfigError(f"Unknown gift selection type '{gift_selection_type}'")
    applicable_type = str(data.get("applicable_type", APPLICABLE_PRODUCTS))
    if applicable_type not in {code for code, _label in APPLICABLE_TYPES}:
        raise RuleConfigError(f"Unknown applicable type '{applicable_type}'")

    config = BuyNGetMConfig(
        buy_quantity=_require_int(data, "buy_quantity", minimum=1),
        get_quantity=_require_int(data, "get_quantity", minimum=1),
        promotion_type=str(data.get("promotion_type", "custom")),
        gift_selection_type=gift_selection_type,
        applicable_type=applicable_type,
        gift_products=_string_tuple(data.get("gift_products")),
        gift_categories=_string_tuple(data.get("gift_categories")),
        gift_brands=_string_tuple(data.get("gift_brands")),
        gift_constraints=GiftConstraints.from_dict(data.get("gift_constraints")),
        constraints=PromotionConstraints.from_dict(data.get("constraints")),
    )
    if gift_selection_type != GIFT_SAME and not config.has_gift_scope:
        raise RuleConfigError(f"A '{gift_selection_type}' promotion needs a gift scope")
    return config


def parse_provider_terms(data: Mapping[str, Any] | None) -> ProviderTerms:
    data = data or {}
    return ProviderTerms(
        provider=str(data.get("provider", "")),
        restricted_providers=_string_tuple(data.get("restricted_providers")),
        can_combine_with_membership=bool(data.get("can_combine_with_membership", True)),
        is_membership=bool(data.get("is_membership", False)),
    )


def _parse_percentage(data: Mapping[str, Any]) -> PercentageConfig:
    if "percentage" not in data or data["percentage"] is None:
        raise RuleConfigError("Missing required config key 'percentage'")
    try:
        percentage = Decimal(str(data["percentage"]))
    except InvalidOperation as e:
        raise RuleConfigError(f"Invalid percentage: {data['percentage']!r}") from e
    if percentage <= 0 or percentage > MAX_PERCENTAGE:
        raise RuleConfigError("Percentage must be greater than 0 and at most 100")

    base_amount_type = str(data.get("base_amount_type", BASE_AMOUNT_CURRENT))
    if base_amount_type not in (BASE_AMOUNT_CURRENT, BASE_AMOUNT_ORIGINAL):
        raise RuleConfigError(f"Unknown base amount type '{base_amount_type}'")
    return PercentageConfig(percentage=percentage, base_amount_type=base_amount_type)


def _require_int(data: Mapping[str, Any], key: str, minimum: int = 0) -> int:
    if key not in data or data[key] is None:
        raise RuleConfigError(f"Missing required config key '{key}'")
    value = _optional_int(data, key, minimum=minimum)
    assert value is not None
    return value


def _optional_int(data: Mapping[str, Any], key: str, minimum: int = 0) -> int | None:
    raw = data.get(key)
    if raw is None:
        return None
    if isinstance(raw, bool) or not isinstance(raw, int | str):
        raise RuleConfigError(f"Config key '{key}' must be an integer")
    try:
        value = int(raw)
    except ValueError as e:
        raise RuleConfigError(f"Config key '{key}' must be an integer") from e
    if value < minimum:
        raise RuleConfigError(f"Config key '{key}' must be at least {minimum}")
    return value


def _string_tuple(values: Iterable[Any] | None) -> tuple[str, ...]:
    if not values:
        return ()
    if isinstance(values, str):
        return (values,)
    return tuple(dict.fromkeys(str(value) for value in values))
