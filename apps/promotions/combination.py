"""
Combination validation for selected discount rules.

Decides whether a set of rules may be folded into one price and produces the
canonical fold order. Ordering is deterministic for a given input set, which
matters because percentage-then-fixed and fixed-then-percentage give
different totals.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from itertools import combinations

from .conf import get_engine_setting
from .constants import (
    CATEGORY_PAYMENT_EVENT,
    CATEGORY_PAYMENT_INSTANT,
    CATEGORY_PROMOTION,
    CATEGORY_TELECOM,
    DISCOUNT_CATEGORY_ORDER,
)
from .types import CombinationError, DiscountSpec

logger = logging.getLogger(__name__)

# Error codes
PAYMENT_METHOD_REQUIRED = "PAYMENT_METHOD_REQUIRED"
CATEGORY_EXCLUSION = "CATEGORY_EXCLUSION"
ID_EXCLUSION = "ID_EXCLUSION"
MISSING_DEPENDENCY = "MISSING_DEPENDENCY"
SAME_CATEGORY = "SAME_CATEGORY"
CATEGORY_CONFLICT = "CATEGORY_CONFLICT"
PROVIDER_CONFLICT = "PROVIDER_CONFLICT"
MEMBERSHIP_CONFLICT = "MEMBERSHIP_CONFLICT"
PROMOTION_GIFT_TYPE_EXCLUSION = "PROMOTION_GIFT_TYPE_EXCLUSION"

_UNKNOWN_CATEGORY_BUCKET = 99
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


@dataclass
class CombinationResult:
    """
    Outcome of validating a rule selection.

    Attributes:
        is_valid: Whether the rules may be folded together.
        errors: One entry per failed check, in check order.
        ordered_rules: Canonical fold order, computed even when invalid so
            callers can show a suggested order.
    """

    is_valid: bool
    errors: list[CombinationError] = field(default_factory=list)
    ordered_rules: list[DiscountSpec] = field(default_factory=list)


class CombinationValidator:
    """Validates and orders discount rule selections."""

    @staticmethod
    def sort_key(rule: DiscountSpec) -> tuple[int, int, datetime, str]:
        created_at = rule.created_at or _EPOCH
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=UTC)
        return (
            DISCOUNT_CATEGORY_ORDER.get(rule.category, _UNKNOWN_CATEGORY_BUCKET),
            rule.priority,
            created_at,
            rule.id,
        )

    @classmethod
    def order(cls, selected_rules: Iterable[DiscountSpec]) -> list[DiscountSpec]:
        """Canonical fold order: category bucket, priority, creation time, id."""
        return sorted(selected_rules, key=cls.sort_key)

    @classmethod
    def validate(
        cls,
        selected_rules: Sequence[DiscountSpec],
        payment_method: str | None = None,
    ) -> CombinationResult:
        """
        Check a selection for payment, exclusion and dependency conflicts.

        Pairwise checks run in canonical order so that error lists are
        reproducible.
        """
        ordered = cls.order(selected_rules)
        errors: list[CombinationError] = []

        for rule in ordered:
            error = cls._check_payment_method(rule, payment_method)
            if error:
                errors.append(error)

        for first, second in combinations(ordered, 2):
            errors.extend(cls._check_pair(first, second))

        selected_ids = {rule.id for rule in ordered}
        for rule in ordered:
            if rule.requires_discount_id and rule.requires_discount_id not in selected_ids:
                errors.append(
                    CombinationError(
                        code=MISSING_DEPENDENCY,
                        message=f"'{rule.name}' requires discount {rule.requires_discount_id} to be selected",
                        rule_ids=(rule.id, rule.requires_discount_id),
                    )
                )

        if errors:
            logger.info(
                f"🚫 [Combination] {len(errors)} conflict(s) in {len(ordered)} rule(s): "
                f"{', '.join(error.code for error in errors)}"
            )
        return CombinationResult(is_valid=not errors, errors=errors, ordered_rules=ordered)

    # ===============================================================================
    # Individual checks
    # ===============================================================================

    @staticmethod
    def _check_payment_method(rule: DiscountSpec, payment_method: str | None) -> CombinationError | None:
        if not rule.required_payment_methods:
            return None
        if payment_method and payment_method in rule.required_payment_methods:
            return None
        required = ", ".join(rule.required_payment_methods)
        return CombinationError(
            code=PAYMENT_METHOD_REQUIRED,
            message=f"'{rule.name}' requires payment by {required}",
            rule_ids=(rule.id,),
        )

    @classmethod
    def _check_pair(cls, first: DiscountSpec, second: DiscountSpec) -> list[CombinationError]:
        errors: list[CombinationError] = []
        pair = (first.id, second.id)
        names = f"'{first.name}' and '{second.name}'"

        if get_engine_setting("REJECT_SAME_CATEGORY") and first.category == second.category:
            errors.append(
                CombinationError(SAME_CATEGORY, f"{names} are both {first.category} discounts", pair)
            )

        if (
            second.category in first.cannot_combine_with_categories
            or first.category in second.cannot_combine_with_categories
        ):
            errors.append(
                CombinationError(
                    CATEGORY_EXCLUSION,
                    f"{names} cannot combine ({first.category} with {second.category})",
                    pair,
                )
            )

        # Checked both ways even when only one side declares the exclusion
        if second.id in first.cannot_combine_with_ids or first.id in second.cannot_combine_with_ids:
            errors.append(CombinationError(ID_EXCLUSION, f"{names} cannot be used together", pair))

        gift_type_error = cls._check_gift_types(first, second) or cls._check_gift_types(second, first)
        if gift_type_error:
            errors.append(gift_type_error)

        if cls._is_conflicting_category_pair(first.category, second.category):
            errors.append(
                CombinationError(
                    CATEGORY_CONFLICT,
                    f"{first.category} discounts never combine with {second.category} discounts",
                    pair,
                )
            )

        provider_error = cls._check_providers(first, second) or cls._check_providers(second, first)
        if provider_error:
            errors.append(provider_error)
        return errors

    @staticmethod
    def _is_conflicting_category_pair(first: str, second: str) -> bool:
        for left, right in get_engine_setting("CATEGORY_CONFLICTS"):
            if {first, second} == {left, right} and first != second:
                return True
        return False

    @staticmethod
    def _check_gift_types(rule: DiscountSpec, other: DiscountSpec) -> CombinationError | None:
        config = other.promotion_config
        if other.category != CATEGORY_PROMOTION or config is None:
            return None
        if config.gift_selection_type not in rule.cannot_combine_with_promotion_gift_types:
            return None
        return CombinationError(
            PROMOTION_GIFT_TYPE_EXCLUSION,
            f"'{rule.name}' cannot combine with {config.gift_selection_type} promotions like '{other.name}'",
            (rule.id, other.id),
        )

    @staticmethod
    def _check_providers(rule: DiscountSpec, other: DiscountSpec) -> CombinationError | None:
        pair = (rule.id, other.id)
        if rule.category in (CATEGORY_PAYMENT_EVENT, CATEGORY_TELECOM) and other.category == CATEGORY_TELECOM:
            provider = other.provider_terms.provider
            if provider and provider in rule.provider_terms.restricted_providers:
                return CombinationError(
                    PROVIDER_CONFLICT,
                    f"'{rule.name}' cannot be combined with {provider}",
                    pair,
                )
        if (
            rule.category == CATEGORY_TELECOM
            and other.category == CATEGORY_PAYMENT_INSTANT
            and other.provider_terms.is_membership
            and not rule.provider_terms.can_combine_with_membership
        ):
            return CombinationError(
                MEMBERSHIP_CONFLICT,
                f"'{rule.name}' cannot be combined with the '{other.name}' membership",
                pair,
            )
        return None
