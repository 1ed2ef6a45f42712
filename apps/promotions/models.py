"""
Promotions models
Discount rules, crowd-sourced buy-N-get-M promotions, the barcode reverse
index and the append-only modification history.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, ClassVar

from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from .constants import (
    APPLICABLE_BRANDS,
    APPLICABLE_CATEGORIES,
    APPLICABLE_PRODUCTS,
    APPLICABLE_TYPES,
    CATEGORY_PROMOTION,
    DISCOUNT_CATEGORIES,
    DISCOUNT_CATEGORY_ORDER,
    GIFT_SAME,
    GIFT_SELECTION_TYPES,
    HISTORY_ACTIONS,
    HISTORY_ENTITY_TYPES,
    PAYMENT_METHOD_CODES,
    PROMOTION_STATUSES,
    PROMOTION_TYPE_QUANTITIES,
    PROMOTION_TYPES,
    STATUS_ACTIVE,
    STATUS_MERGED,
    VALUE_TYPES,
    VERIFICATION_STATUSES,
    VERIFICATION_UNVERIFIED,
)
from .rule_configs import (
    BuyNGetMConfig,
    RuleConfig,
    RuleConfigError,
    parse_buy_n_get_m,
    parse_provider_terms,
    parse_rule_config,
)
from .types import SOURCE_PROMOTION, SOURCE_RULE, DiscountSpec

logger = logging.getLogger(__name__)

IDENTITY_MAX_LENGTH = 128


def _as_tuple(values: Any) -> tuple[str, ...]:
    return tuple(str(value) for value in values or ())


def validate_string_list(value: Any) -> None:
    """JSON list fields must hold plain strings"""
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValidationError(_("Expected a list of strings"))


# ===============================================================================
# DISCOUNT RULES
# ===============================================================================


class DiscountRule(models.Model):
    """
    A stackable discount: coupon, telecom membership, payment discount, voucher
    or a buy-N-get-M promotion rule.

    ``config`` carries the value-type parameters and is parsed into a typed
    variant by ``parse_rule_config``.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    name = models.CharField(max_length=200, help_text=_("Display name"))
    description = models.TextField(blank=True)

    category = models.CharField(max_length=30, choices=DISCOUNT_CATEGORIES, help_text=_("Discount category"))
    value_type = models.CharField(max_length=30, choices=VALUE_TYPES, help_text=_("How the discount is computed"))
    config = models.JSONField(default=dict, blank=True, help_text=_("Value-type specific parameters"))

    # Scope - empty everywhere means the rule applies to every product
    applicable_products = models.JSONField(default=list, blank=True, validators=[validate_string_list])
    applicable_categories = models.JSONField(default=list, blank=True, validators=[validate_string_list])
    applicable_brands = models.JSONField(default=list, blank=True, validators=[validate_string_list])

    required_payment_methods = models.JSONField(default=list, blank=True, validators=[validate_string_list])

    # Combination constraints
    cannot_combine_with_categories = models.JSONField(default=list, blank=True, validators=[validate_string_list])
    cannot_combine_with_ids = models.JSONField(default=list, blank=True, validators=[validate_string_list])
    cannot_combine_with_promotion_gift_types = models.JSONField(
        default=list,
        blank=True,
        validators=[validate_string_list],
        help_text=_("Gift selection types of promotions this rule never combines with"),
    )
    requires_discount_id = models.UUIDField(
        null=True, blank=True, help_text=_("Another rule that must be selected alongside this one")
    )

    # Gates
    min_purchase_amount = models.PositiveBigIntegerField(
        null=True, blank=True, help_text=_("Minimum cart total before the rule applies")
    )
    min_quantity = models.PositiveIntegerField(null=True, blank=True, validators=[MinValueValidator(1)])

    # Caps
    max_discount_amount = models.PositiveBigIntegerField(null=True, blank=True)
    max_discount_per_item = models.PositiveBigIntegerField(null=True, blank=True)

    valid_from = models.DateTimeField(default=timezone.now)
    valid_to = models.DateTimeField(null=True, blank=True)
    priority = models.IntegerField(default=0, help_text=_("Lower values fold first within a category"))
    is_active = models.BooleanField(default=True)

    created_by = models.CharField(max_length=IDENTITY_MAX_LENGTH, blank=True)
    last_modified_by = models.CharField(max_length=IDENTITY_MAX_LENGTH, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "discount_rules"
        verbose_name = _("Discount Rule")
        verbose_name_plural = _("Discount Rules")
        ordering: ClassVar[tuple[str, ...]] = ("priority", "created_at")
        indexes: ClassVar[tuple[models.Index, ...]] = (
            models.Index(fields=["category", "is_active"], name="discount_ru_categor_5b1e0a_idx"),
            models.Index(fields=["valid_from", "valid_to"], name="discount_ru_valid_f_8c2d41_idx"),
        )

    def __str__(self) -> str:
        return f"{self.name} ({self.category})"

    def clean(self) -> None:
        super().clean()
        errors: dict[str, Any] = {}

        if self.valid_to and self.valid_from and self.valid_from > self.valid_to:
            errors["valid_to"] = _("Validity window ends before it starts")

        try:
            parse_rule_config(self.category, self.value_type, self.config)
        except RuleConfigError as e:
            errors["config"] = str(e)

        unknown_methods = set(self.required_payment_methods or []) - PAYMENT_METHOD_CODES
        if unknown_methods:
            errors["required_payment_methods"] = _("Unknown payment methods: %(methods)s") % {
                "methods": ", ".join(sorted(unknown_methods))
            }

        unknown_categories = set(self.cannot_combine_with_categories or []) - set(DISCOUNT_CATEGORY_ORDER)
        if unknown_categories:
            errors["cannot_combine_with_categories"] = _("Unknown categories: %(categories)s") % {
                "categories": ", ".join(sorted(unknown_categories))
            }

        unknown_gift_types = set(self.cannot_combine_with_promotion_gift_types or []) - {
            code for code, _label in GIFT_SELECTION_TYPES
        }
        if unknown_gift_types:
            errors["cannot_combine_with_promotion_gift_types"] = _("Unknown gift types: %(types)s") % {
                "types": ", ".join(sorted(unknown_gift_types))
            }

        if self.requires_discount_id and self.pk and str(self.requires_discount_id) == str(self.pk):
            errors["requires_discount_id"] = _("A rule cannot depend on itself")

        if errors:
            raise ValidationError(errors)

    @property
    def typed_config(self) -> RuleConfig:
        return parse_rule_config(self.category, self.value_type, self.config)

    def to_discount_spec(self) -> DiscountSpec:
        """Snapshot this rule for the calculation core"""
        return DiscountSpec(
            id=str(self.id),
            name=self.name,
            category=self.category,
            config=self.typed_config,
            priority=self.priority,
            created_at=self.created_at,
            applicable_products=_as_tuple(self.applicable_products),
            applicable_categories=_as_tuple(self.applicable_categories),
            applicable_brands=_as_tuple(self.applicable_brands),
            required_payment_methods=_as_tuple(self.required_payment_methods),
            cannot_combine_with_categories=_as_tuple(self.cannot_combine_with_categories),
            cannot_combine_with_ids=_as_tuple(self.cannot_combine_with_ids),
            cannot_combine_with_promotion_gift_types=_as_tuple(self.cannot_combine_with_promotion_gift_types),
            requires_discount_id=str(self.requires_discount_id) if self.requires_discount_id else None,
            min_purchase_amount=self.min_purchase_amount,
            min_quantity=self.min_quantity,
            max_discount_amount=self.max_discount_amount,
            max_discount_per_item=self.max_discount_per_item,
            valid_from=self.valid_from,
            valid_to=self.valid_to,
            is_active=self.is_active,
            provider_terms=parse_provider_terms(self.config if self.category != CATEGORY_PROMOTION else None),
            source=SOURCE_RULE,
        )


# ===============================================================================
# CROWD PROMOTIONS
# ===============================================================================


class Promotion(models.Model):
    """
    A crowd-sourced buy-N-get-M offer.

    Trust is tracked through verify/dispute votes; merged promotions keep
    their row for lineage but never match again.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    name = models.CharField(max_length=200)
    description = models.TextField(blank=True)

    promotion_type = models.CharField(max_length=10, choices=PROMOTION_TYPES, default="1+1")
    buy_quantity = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])
    get_quantity = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])

    # Scope
    applicable_type = models.CharField(max_length=20, choices=APPLICABLE_TYPES, default=APPLICABLE_PRODUCTS)
    applicable_products = models.JSONField(default=list, blank=True, validators=[validate_string_list])
    applicable_categories = models.JSONField(default=list, blank=True, validators=[validate_string_list])
    applicable_brands = models.JSONField(default=list, blank=True, validators=[validate_string_list])

    # Gifts
    gift_selection_type = models.CharField(max_length=10, choices=GIFT_SELECTION_TYPES, default=GIFT_SAME)
    gift_products = models.JSONField(default=list, blank=True, validators=[validate_string_list])
    gift_categories = models.JSONField(default=list, blank=True, validators=[validate_string_list])
    gift_brands = models.JSONField(default=list, blank=True, validators=[validate_string_list])
    gift_constraints = models.JSONField(
        default=dict,
        blank=True,
        help_text=_("max_gift_price, must_be_cheaper_than_purchased, must_be_same_product"),
    )
    constraints = models.JSONField(
        default=dict,
        blank=True,
        help_text=_("max_applications_per_cart, min_purchase_amount, excluded_products"),
    )

    valid_from = models.DateTimeField(default=timezone.now)
    valid_to = models.DateTimeField(null=True, blank=True)
    status = models.CharField(max_length=20, choices=PROMOTION_STATUSES, default=STATUS_ACTIVE)
    is_active = models.BooleanField(default=True)
    priority = models.IntegerField(default=0)
    source_url = models.URLField(blank=True)

    # Crowd verification
    verification_status = models.CharField(
        max_length=20, choices=VERIFICATION_STATUSES, default=VERIFICATION_UNVERIFIED
    )
    verification_count = models.PositiveIntegerField(default=0)
    dispute_count = models.PositiveIntegerField(default=0)
    verified_by = models.JSONField(default=list, blank=True, validators=[validate_string_list])
    disputed_by = models.JSONField(default=list, blank=True, validators=[validate_string_list])
    admin_verified_by = models.CharField(max_length=IDENTITY_MAX_LENGTH, blank=True)

    # Merge lineage
    merged_from = models.JSONField(default=list, blank=True, validators=[validate_string_list])
    merged_into = models.ForeignKey(
        "self", null=True, blank=True, on_delete=models.SET_NULL, related_name="absorbed_promotions"
    )
    merged_at = models.DateTimeField(null=True, blank=True)
    merged_by = models.CharField(max_length=IDENTITY_MAX_LENGTH, blank=True)

    created_by = models.CharField(max_length=IDENTITY_MAX_LENGTH, blank=True)
    last_modified_by = models.CharField(max_length=IDENTITY_MAX_LENGTH, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    # Private attributes for signal handling
    _old_status: str | None = None
    _old_verification_status: str | None = None

    class Meta:
        db_table = "promotions"
        verbose_name = _("Promotion")
        verbose_name_plural = _("Promotions")
        ordering: ClassVar[tuple[str, ...]] = ("-priority", "-verification_count", "-created_at")
        indexes: ClassVar[tuple[models.Index, ...]] = (
            models.Index(fields=["status", "is_active"], name="promotions_status_3f7a9c_idx"),
            models.Index(fields=["verification_status"], name="promotions_verific_4e21b7_idx"),
            models.Index(fields=["promotion_type", "valid_from", "valid_to"], name="promotions_promoti_91c0d2_idx"),
        )

    def __str__(self) -> str:
        return f"{self.name} ({self.promotion_type})"

    def clean(self) -> None:
        super().clean()
        errors: dict[str, Any] = {}

        if self.valid_to and self.valid_from and self.valid_from > self.valid_to:
            errors["valid_to"] = _("Validity window ends before it starts")

        implied = PROMOTION_TYPE_QUANTITIES.get(self.promotion_type)
        if implied and (self.buy_quantity, self.get_quantity) != implied:
            errors["promotion_type"] = _("%(type)s implies buy %(buy)s get %(get)s") % {
                "type": self.promotion_type,
                "buy": implied[0],
                "get": implied[1],
            }

        if not self.scope_values():
            errors["applicable_type"] = _("The %(type)s scope must not be empty") % {"type": self.applicable_type}

        try:
            config = self.buy_n_get_m_config()
        except RuleConfigError as e:
            errors["gift_selection_type"] = str(e)
        else:
            # Only merges across several products pool units of a `same` offer
            if (
                config.gift_selection_type == GIFT_SAME
                and not config.gift_constraints.must_be_same_product
                and not (self.merged_from or self.merged_by)
            ):
                errors["gift_constraints"] = _("A same-product promotion must keep must_be_same_product")

        if self.status == STATUS_MERGED and self.is_active:
            errors["is_active"] = _("A merged promotion cannot be active")

        if errors:
            raise ValidationError(errors)

    def scope_values(self) -> list[str]:
        """The scoping list selected by ``applicable_type``"""
        scopes = {
            APPLICABLE_PRODUCTS: self.applicable_products,
            APPLICABLE_CATEGORIES: self.applicable_categories,
            APPLICABLE_BRANDS: self.applicable_brands,
        }
        return list(scopes.get(self.applicable_type) or [])

    def config_data(self) -> dict[str, Any]:
        return {
            "buy_quantity": self.buy_quantity,
            "get_quantity": self.get_quantity,
            "promotion_type": self.promotion_type,
            "gift_selection_type": self.gift_selection_type,
            "applicable_type": self.applicable_type,
            "gift_products": list(self.gift_products or []),
            "gift_categories": list(self.gift_categories or []),
            "gift_brands": list(self.gift_brands or []),
            "gift_constraints": dict(self.gift_constraints or {}),
            "constraints": dict(self.constraints or {}),
        }

    def buy_n_get_m_config(self) -> BuyNGetMConfig:
        return parse_buy_n_get_m(self.config_data())

    def indexed_barcodes(self) -> set[str]:
        """Barcodes under which the reverse index lists this promotion"""
        barcodes: set[str] = set(self.gift_products or [])
        if self.applicable_type == APPLICABLE_PRODUCTS:
            barcodes.update(self.applicable_products or [])
        excluded = set((self.constraints or {}).get("excluded_products") or [])
        return {barcode for barcode in barcodes - excluded if barcode}

    def has_voted(self, identity: str) -> bool:
        return identity in (self.verified_by or []) or identity in (self.disputed_by or [])

    def to_discount_spec(self) -> DiscountSpec:
        """Snapshot this promotion as a promotion-category discount"""
        scope = tuple(self.scope_values())
        return DiscountSpec(
            id=str(self.id),
            name=self.name,
            category=CATEGORY_PROMOTION,
            config=self.buy_n_get_m_config(),
            priority=self.priority,
            created_at=self.created_at,
            applicable_products=scope if self.applicable_type == APPLICABLE_PRODUCTS else (),
            applicable_categories=scope if self.applicable_type == APPLICABLE_CATEGORIES else (),
            applicable_brands=scope if self.applicable_type == APPLICABLE_BRANDS else (),
            valid_from=self.valid_from,
            valid_to=self.valid_to,
            is_active=self.is_active,
            status=self.status,
            source=SOURCE_PROMOTION,
        )


# ===============================================================================
# REVERSE INDEX
# ===============================================================================


class PromotionIndex(models.Model):
    """Barcode -> promotion ids. Derived state, rebuildable from ``promotions``."""

    barcode = models.CharField(max_length=64, unique=True)
    promotion_ids = models.JSONField(default=list, help_text=_("Sorted promotion ids for this barcode"))
    last_updated = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "promotion_index"
        verbose_name = _("Promotion Index Entry")
        verbose_name_plural = _("Promotion Index")
        ordering: ClassVar[tuple[str, ...]] = ("barcode",)

    def __str__(self) -> str:
        return f"{self.barcode}: {len(self.promotion_ids)} promotion(s)"


# ===============================================================================
# MODIFICATION HISTORY
# ===============================================================================


class ModificationHistory(models.Model):
    """
    Append-only change log for promotions and discount rules.

    ``entity_id`` is a plain UUID so entries outlive the rows they describe.
    The auto-increment id keeps entries written in the same instant in order.
    """

    entity_type = models.CharField(max_length=20, choices=HISTORY_ENTITY_TYPES)
    entity_id = models.UUIDField()
    action = models.CharField(max_length=20, choices=HISTORY_ACTIONS)
    changes = models.JSONField(default=dict, blank=True)
    comment = models.TextField(blank=True)
    modified_by = models.CharField(max_length=IDENTITY_MAX_LENGTH)
    modified_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "promotion_modification_history"
        verbose_name = _("Modification History Entry")
        verbose_name_plural = _("Modification History")
        ordering: ClassVar[tuple[str, ...]] = ("modified_at", "id")
        indexes: ClassVar[tuple[models.Index, ...]] = (
            models.Index(fields=["entity_type", "entity_id", "modified_at"], name="promotion_m_entity__7d3e55_idx"),
            models.Index(fields=["modified_by"], name="promotion_m_modifie_b2a614_idx"),
        )

    def __str__(self) -> str:
        return f"{self.entity_type}:{self.entity_id} {self.action} by {self.modified_by}"

    @classmethod
    def record(
        cls,
        entity_type: str,
        entity_id: uuid.UUID | str,
        action: str,
        modified_by: str,
        changes: dict[str, Any] | None = None,
        comment: str = "",
    ) -> ModificationHistory:
        entry = cls.objects.create(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            changes=changes or {},
            comment=comment,
            modified_by=modified_by,
        )
        logger.info(f"📝 [History] {entity_type}:{entity_id} {action} by {modified_by}")
        return entry
