"""
Value types for the promotions calculation core.

The core never touches the ORM: rules and promotions reach it as frozen
``DiscountSpec`` snapshots, so one calculation is a pure function of its
inputs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from .constants import STATUS_ACTIVE
from .rule_configs import BuyNGetMConfig, ProviderTerms, RuleConfig

SOURCE_RULE = "rule"
SOURCE_PROMOTION = "promotion"

# ===============================================================================
# Inputs
# ===============================================================================


@dataclass(frozen=True)
class CartLine:
    """One priced cart line. Prices are integral currency units."""

    barcode: str
    quantity: int
    unit_price: int
    category: str = ""
    brand: str = ""
    selected_discount_ids: tuple[str, ...] = ()

    @property
    def original_price(self) -> int:
        return self.unit_price * self.quantity

    @property
    def is_resolvable(self) -> bool:
        return bool(self.barcode.strip()) and self.quantity > 0


@dataclass(frozen=True)
class DiscountSpec:
    """Immutable snapshot of a discount rule or crowd promotion."""

    id: str
    name: str
    category: str
    config: RuleConfig
    priority: int = 0
    created_at: datetime | None = None
    applicable_products: tuple[str, ...] = ()
    applicable_categories: tuple[str, ...] = ()
    applicable_brands: tuple[str, ...] = ()
    required_payment_methods: tuple[str, ...] = ()
    cannot_combine_with_categories: tuple[str, ...] = ()
    cannot_combine_with_ids: tuple[str, ...] = ()
    cannot_combine_with_promotion_gift_types: tuple[str, ...] = ()
    requires_discount_id: str | None = None
    min_purchase_amount: int | None = None
    min_quantity: int | None = None
    max_discount_amount: int | None = None
    max_discount_per_item: int | None = None
    valid_from: datetime | None = None
    valid_to: datetime | None = None
    is_active: bool = True
    status: str = STATUS_ACTIVE
    provider_terms: ProviderTerms = field(default_factory=ProviderTerms)
    source: str = SOURCE_RULE

    @property
    def value_type(self) -> str:
        return self.config.value_type

    @property
    def promotion_config(self) -> BuyNGetMConfig | None:
        return self.config if isinstance(self.config, BuyNGetMConfig) else None

    @property
    def is_universal(self) -> bool:
        return not (self.applicable_products or self.applicable_categories or self.applicable_brands)

    def is_eligible(self, as_of: datetime) -> bool:
        """Active, not retired, and ``as_of`` falls inside the validity window."""
        if not self.is_active or self.status != STATUS_ACTIVE:
            return False
        if self.valid_from is not None and as_of < self.valid_from:
            return False
        return not (self.valid_to is not None and as_of > self.valid_to)

    def applies_to(self, barcode: str, category: str = "", brand: str = "") -> bool:
        if self.is_universal:
            return True
        return (
            barcode in self.applicable_products
            or bool(category and category in self.applicable_categories)
            or bool(brand and brand in self.applicable_brands)
        )


# ===============================================================================
# Combination outcome
# ===============================================================================


@dataclass(frozen=True)
class CombinationError:
    """A single reason why a set of rules cannot be folded together."""

    code: str
    message: str
    rule_ids: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "rule_ids": list(self.rule_ids)}


# ===============================================================================
# Promotion matching
# ===============================================================================


@dataclass(frozen=True)
class LineAllocation:
    """How a promotion touched one cart line."""

    line_index: int
    role: str  # same | purchase | gift
    group_count: int
    free_units: int
    paid_units: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "line_index": self.line_index,
            "role": self.role,
            "group_count": self.group_count,
            "free_units": self.free_units,
            "paid_units": self.paid_units,
        }


@dataclass
class PromotionApplication:
    promotion_id: str
    promotion_name: str
    gift_selection_type: str
    group_count: int
    allocations: list[LineAllocation] = field(default_factory=list)
    shortfall_units: int = 0

    @property
    def free_units(self) -> int:
        return sum(allocation.free_units for allocation in self.allocations)

    def free_units_for(self, line_index: int) -> int:
        return sum(a.free_units for a in self.allocations if a.line_index == line_index)

    def gift_line_indexes(self) -> list[int]:
        return [a.line_index for a in self.allocations if a.role == "gift" and a.free_units > 0]

    def to_dict(self) -> dict[str, Any]:
        return {
            "promotion_id": self.promotion_id,
            "promotion_name": self.promotion_name,
            "gift_selection_type": self.gift_selection_type,
            "group_count": self.group_count,
            "free_units": self.free_units,
            "shortfall_units": self.shortfall_units,
            "allocations": [allocation.to_dict() for allocation in self.allocations],
        }


# ===============================================================================
# Calculation output
# ===============================================================================


@dataclass(frozen=True)
class AppliedDiscount:
    rule_id: str
    rule_name: str
    category: str
    value_type: str
    amount: int
    price_before: int
    price_after: int
    free_units: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "category": self.category,
            "value_type": self.value_type,
            "amount": self.amount,
            "price_before": self.price_before,
            "price_after": self.price_after,
            "free_units": self.free_units,
        }


@dataclass
class LineResult:
    index: int
    barcode: str
    quantity: int
    unit_price: int
    original: int
    final: int
    applied_discounts: list[AppliedDiscount] = field(default_factory=list)
    conflicts: list[CombinationError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def discount(self) -> int:
        return self.original - self.final

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "barcode": self.barcode,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "original": self.original,
            "final": self.final,
            "discount": self.discount,
            "applied_discounts": [applied.to_dict() for applied in self.applied_discounts],
            "conflicts": [conflict.to_dict() for conflict in self.conflicts],
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class CartTotals:
    original: int
    final: int
    discount: int
    discount_rate: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "original": self.original,
            "final": self.final,
            "discount": self.discount,
            "discount_rate": float(self.discount_rate),
        }


@dataclass
class CalculationResult:
    lines: list[LineResult]
    totals: CartTotals
    warnings: list[str] = field(default_factory=list)
    promotion_applications: list[PromotionApplication] = field(default_factory=list)

    @property
    def conflicts(self) -> list[CombinationError]:
        return [conflict for line in self.lines for conflict in line.conflicts]

    def to_dict(self) -> dict[str, Any]:
        return {
            "lines": [line.to_dict() for line in self.lines],
            "totals": self.totals.to_dict(),
            "warnings": list(self.warnings),
            "promotion_applications": [app.to_dict() for app in self.promotion_applications],
        }
