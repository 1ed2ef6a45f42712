"""
Promotions services
Lifecycle of crowd promotions and discount rules, merges, and the cart
calculation entry point. Every write is attributed to an identity and leaves
a ModificationHistory entry.
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime
from typing import Any, ClassVar

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DatabaseError, transaction
from django.utils import timezone

from apps.common.logging import request_context
from apps.common.types import BusinessError, Err, NotFoundError, Ok, Result

from .calculator import CartCalculator
from .catalog import PromotionNotFoundError, RuleCatalog
from .conf import get_engine_setting
from .constants import (
    APPLICABLE_PRODUCTS,
    ENTITY_DISCOUNT_RULE,
    ENTITY_PROMOTION,
    GIFT_CROSS,
    GIFT_SAME,
    PROMOTION_TYPE_QUANTITIES,
    STATUS_ACTIVE,
    STATUS_MERGED,
    VERIFICATION_VERIFIED,
)
from .index import PromotionIndexService, normalize_id, parse_uuids
from .models import DiscountRule, ModificationHistory, Promotion
from .optimizer import DiscountOptimizer, OptimizationResult
from .rule_configs import RuleConfigError
from .serializers import CalculationOutputSerializer, CalculationRequestSerializer
from .types import CalculationResult, CartLine, DiscountSpec

logger = logging.getLogger(__name__)

# Warning codes raised while resolving selections
UNKNOWN_DISCOUNT = "UNKNOWN_DISCOUNT"
PROMOTION_NOT_TRUSTED = "PROMOTION_NOT_TRUSTED"
RULE_MISCONFIGURED = "RULE_MISCONFIGURED"
DISCOUNT_LOOKUP_FAILED = "DISCOUNT_LOOKUP_FAILED"


def _validation_message(error: DjangoValidationError) -> str:
    if hasattr(error, "message_dict"):
        return "; ".join(f"{field}: {', '.join(messages)}" for field, messages in error.message_dict.items())
    return "; ".join(error.messages)


def _json_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


def _merge_lists(*lists: Iterable[str] | None) -> list[str]:
    """Ordered union, first occurrence wins"""
    merged: dict[str, None] = {}
    for values in lists:
        for value in values or ():
            merged.setdefault(str(value), None)
    return list(merged)


# ===============================================================================
# PROMOTION LIFECYCLE
# ===============================================================================


class PromotionService:
    """Create, edit, delete and merge crowd promotions"""

    EDITABLE_FIELDS: ClassVar[tuple[str, ...]] = (
        "name",
        "description",
        "promotion_type",
        "buy_quantity",
        "get_quantity",
        "applicable_type",
        "applicable_products",
        "applicable_categories",
        "applicable_brands",
        "gift_selection_type",
        "gift_products",
        "gift_categories",
        "gift_brands",
        "gift_constraints",
        "constraints",
        "valid_from",
        "valid_to",
        "status",
        "is_active",
        "priority",
        "source_url",
    )

    @classmethod
    def create_promotion(cls, data: Mapping[str, Any], identity: str) -> Result[Promotion, str]:
        """Validate, save, log a ``create`` entry and index the promotion's barcodes"""
        unknown = sorted(set(data) - set(cls.EDITABLE_FIELDS))
        if unknown:
            return Err(f"Unknown promotion fields: {', '.join(unknown)}")
        if data.get("status") == STATUS_MERGED:
            return Err("Promotions cannot be created as merged")

        try:
            with transaction.atomic():
                promotion = Promotion(**data, created_by=identity, last_modified_by=identity)
                cls._apply_type_quantities(promotion, explicit=data)
                promotion.full_clean()
                promotion.save()
                ModificationHistory.record(
                    ENTITY_PROMOTION, promotion.id, "create", identity, changes=cls._snapshot(promotion)
                )
                PromotionIndexService.add_promotion(promotion)
        except DjangoValidationError as e:
            return Err(_validation_message(e))

        logger.info(f"✨ [Promotions] Created {promotion.id} '{promotion.name}' by {identity}")
        return Ok(promotion)

    @classmethod
    def update_promotion(
        cls, promotion_id: str, changes: Mapping[str, Any], identity: str, comment: str = ""
    ) -> Result[Promotion, str]:
        """
        Apply an edit, re-index the barcode diff and log per-field old/new values.

        Merging is only possible through the merge operations, so ``status``
        cannot be set to merged here.
        """
        unknown = sorted(set(changes) - set(cls.EDITABLE_FIELDS))
        if unknown:
            return Err(f"Unknown promotion fields: {', '.join(unknown)}")
        if changes.get("status") == STATUS_MERGED:
            return Err("Use a merge operation to mark a promotion as merged")

        try:
            with transaction.atomic():
                promotion = RuleCatalog.get_promotion(promotion_id, for_update=True)
                if promotion.status == STATUS_MERGED:
                    return Err("Merged promotions cannot be edited")

                previous_barcodes = promotion.indexed_barcodes()
                diff: dict[str, Any] = {}
                for field, value in changes.items():
                    old = getattr(promotion, field)
                    if old != value:
                        diff[field] = {"old": _json_value(old), "new": _json_value(value)}
                        setattr(promotion, field, value)
                if "promotion_type" in changes:
                    cls._apply_type_quantities(promotion, explicit=changes)
                if not diff:
                    return Ok(promotion)

                promotion.last_modified_by = identity
                promotion.full_clean()
                promotion.save()
                PromotionIndexService.sync_promotion(promotion, previous_barcodes)
                ModificationHistory.record(
                    ENTITY_PROMOTION, promotion.id, "update", identity, changes=diff, comment=comment
                )
        except PromotionNotFoundError as e:
            return Err(str(e))
        except DjangoValidationError as e:
            return Err(_validation_message(e))

        logger.info(f"✏️ [Promotions] Updated {promotion.id}: {', '.join(sorted(diff))} by {identity}")
        return Ok(promotion)

    @classmethod
    def delete_promotion(cls, promotion_id: str, identity: str) -> Result[str, str]:
        """Remove the promotion, its index entries and log ``delete``, all in one transaction"""
        try:
            with transaction.atomic():
                promotion = RuleCatalog.get_promotion(promotion_id, for_update=True)
                deleted_id = str(promotion.id)
                PromotionIndexService.delete_index_entries_referencing(deleted_id)
                ModificationHistory.record(
                    ENTITY_PROMOTION, promotion.id, "delete", identity, changes=cls._snapshot(promotion)
                )
                promotion.delete()
        except PromotionNotFoundError as e:
            return Err(str(e))

        logger.info(f"🗑️ [Promotions] Deleted {deleted_id} by {identity}")
        return Ok(deleted_id)

    # ===============================================================================
    # Merges
    # ===============================================================================

    @classmethod
    def merge_promotions(
        cls, source_ids: Sequence[str], data: Mapping[str, Any], identity: str
    ) -> Result[Promotion, str]:
        """
        Merge duplicate promotions into a new one.

        The new promotion covers the union of the sources' products plus any
        requested ones, starts out verified by the merging identity, and takes
        over every barcode the sources were indexed under.
        """
        unique_ids = list(dict.fromkeys(normalize_id(source_id) for source_id in source_ids))
        if len(unique_ids) < 2:
            return Err("At least two promotions are needed for a merge")
        unknown = sorted(set(data) - set(cls.EDITABLE_FIELDS))
        if unknown:
            return Err(f"Unknown promotion fields: {', '.join(unknown)}")

        try:
            with transaction.atomic():
                sources = cls._lock_sources(unique_ids)
                if isinstance(sources, Err):
                    return sources
                first = sources[0]
                now = timezone.now()

                fields: dict[str, Any] = {
                    field: getattr(first, field)
                    for field in cls.EDITABLE_FIELDS
                    if field not in ("status", "is_active")
                }
                fields["name"] = first.name
                for scope in ("applicable_products", "applicable_categories", "applicable_brands", "gift_products"):
                    fields[scope] = _merge_lists(*(getattr(source, scope) for source in sources))
                fields.update(data)
                fields.pop("status", None)
                fields.pop("is_active", None)
                fields["applicable_products"] = _merge_lists(
                    *(source.applicable_products for source in sources), data.get("applicable_products")
                )
                fields["gift_constraints"] = dict(fields.get("gift_constraints") or {})
                if fields.get("gift_selection_type", GIFT_SAME) == GIFT_SAME and len(fields["applicable_products"]) > 1:
                    fields["gift_constraints"]["must_be_same_product"] = False

                target = Promotion(
                    **fields,
                    status=STATUS_ACTIVE,
                    is_active=True,
                    merged_from=[str(source.id) for source in sources],
                    merged_at=now,
                    merged_by=identity,
                    verified_by=[identity],
                    verification_count=1,
                    admin_verified_by=identity,
                    verification_status=VERIFICATION_VERIFIED,
                    created_by=identity,
                    last_modified_by=identity,
                )
                cls._apply_type_quantities(target, explicit=data)
                target.full_clean()
                target.save()
                ModificationHistory.record(
                    ENTITY_PROMOTION,
                    target.id,
                    "merge",
                    identity,
                    changes={"merged_from": target.merged_from, **cls._snapshot(target)},
                )

                retired = cls._retire_sources(sources, target, identity, now)
                cls._reindex_merge(target, retired)
        except DjangoValidationError as e:
            return Err(_validation_message(e))

        logger.info(f"🔀 [Promotions] Merged {len(sources)} promotion(s) into {target.id} by {identity}")
        return Ok(target)

    @classmethod
    def merge_individual(
        cls,
        target_id: str,
        absorb_ids: Sequence[str],
        identity: str,
        new_products: Sequence[str] | None = None,
        gift_products: Sequence[str] | None = None,
    ) -> Result[Promotion, str]:
        """
        Absorb promotions into an existing target.

        Extra product barcodes are appended to the target. Passing gift
        barcodes turns the target into a cross promotion with those gifts.
        """
        target_key = normalize_id(target_id)
        absorb = [
            absorb_id
            for absorb_id in dict.fromkeys(normalize_id(raw_id) for raw_id in absorb_ids)
            if absorb_id != target_key
        ]
        if not absorb and not new_products and not gift_products:
            return Err("Nothing to merge")

        try:
            with transaction.atomic():
                target = RuleCatalog.get_promotion(target_id, for_update=True)
                if target.status == STATUS_MERGED:
                    return Err("Cannot merge into a merged promotion")
                sources: list[Promotion] = []
                if absorb:
                    locked = cls._lock_sources(absorb)
                    if isinstance(locked, Err):
                        return locked
                    sources = locked

                now = timezone.now()
                previous_barcodes = target.indexed_barcodes()
                old_products = list(target.applicable_products)
                old_gift = (target.gift_selection_type, list(target.gift_products))

                target.applicable_products = _merge_lists(
                    target.applicable_products,
                    *(source.applicable_products for source in sources),
                    new_products,
                )
                if gift_products:
                    target.gift_selection_type = GIFT_CROSS
                    target.gift_products = _merge_lists(target.gift_products, gift_products)
                elif target.gift_selection_type == GIFT_SAME and len(target.applicable_products) > 1:
                    target.gift_constraints = {**(target.gift_constraints or {}), "must_be_same_product": False}
                target.merged_from = _merge_lists(target.merged_from, (str(source.id) for source in sources))
                target.merged_at = now
                target.merged_by = identity
                target.last_modified_by = identity
                target.full_clean()
                target.save()

                ModificationHistory.record(
                    ENTITY_PROMOTION,
                    target.id,
                    "merge_individual",
                    identity,
                    changes={
                        "absorbed": [str(source.id) for source in sources],
                        "applicable_products": {"old": old_products, "new": target.applicable_products},
                        "gift_selection_type": {"old": old_gift[0], "new": target.gift_selection_type},
                        "gift_products": {"old": old_gift[1], "new": target.gift_products},
                    },
                )

                retired = cls._retire_sources(sources, target, identity, now)
                PromotionIndexService.remove_promotion(
                    str(target.id), previous_barcodes - target.indexed_barcodes()
                )
                cls._reindex_merge(target, retired)
        except PromotionNotFoundError as e:
            return Err(str(e))
        except DjangoValidationError as e:
            return Err(_validation_message(e))

        logger.info(f"🔀 [Promotions] {target.id} absorbed {len(sources)} promotion(s) by {identity}")
        return Ok(target)

    @staticmethod
    def find_merge_candidates(search: str | None = None, limit: int | None = None) -> list[list[Promotion]]:
        """
        Groups of likely duplicates: active single-product same-gift promotions
        sharing type and validity window, largest groups first.
        """
        limit = limit or get_engine_setting("MERGE_CANDIDATE_LIMIT")
        queryset = Promotion.objects.filter(
            status=STATUS_ACTIVE,
            is_active=True,
            gift_selection_type=GIFT_SAME,
            applicable_type=APPLICABLE_PRODUCTS,
        ).order_by("created_at", "id")
        if search:
            queryset = queryset.filter(name__icontains=search)

        groups: dict[tuple[Any, ...], list[Promotion]] = defaultdict(list)
        for promotion in queryset:
            if len(promotion.applicable_products) != 1:
                continue
            groups[(promotion.promotion_type, promotion.valid_from, promotion.valid_to)].append(promotion)

        candidates = [members for members in groups.values() if len(members) >= 2]
        candidates.sort(key=len, reverse=True)
        return candidates[:limit]

    @staticmethod
    def get_history(promotion_id: str) -> list[ModificationHistory]:
        return list(
            ModificationHistory.objects.filter(entity_type=ENTITY_PROMOTION, entity_id=promotion_id).order_by(
                "modified_at", "id"
            )
        )

    # ===============================================================================
    # Helpers
    # ===============================================================================

    @staticmethod
    def _apply_type_quantities(promotion: Promotion, explicit: Mapping[str, Any]) -> None:
        """Fixed promotion types imply their quantities unless both were given"""
        implied = PROMOTION_TYPE_QUANTITIES.get(promotion.promotion_type)
        if implied and not ("buy_quantity" in explicit and "get_quantity" in explicit):
            promotion.buy_quantity, promotion.get_quantity = implied

    @classmethod
    def _snapshot(cls, promotion: Promotion) -> dict[str, Any]:
        return {field: _json_value(getattr(promotion, field)) for field in cls.EDITABLE_FIELDS}

    @staticmethod
    def _lock_sources(ids: Sequence[str]) -> list[Promotion] | Err[str]:
        found = {
            str(promotion.id): promotion
            for promotion in Promotion.objects.select_for_update().filter(id__in=parse_uuids(ids))
        }
        missing = [promotion_id for promotion_id in ids if promotion_id not in found]
        if missing:
            return Err(f"Promotion {missing[0]} not found")
        sources = [found[promotion_id] for promotion_id in ids]
        already_merged = [str(source.id) for source in sources if source.status == STATUS_MERGED]
        if already_merged:
            return Err(f"Promotion {already_merged[0]} is already merged")
        return sources

    @staticmethod
    def _retire_sources(
        sources: Sequence[Promotion], target: Promotion, identity: str, merged_at: datetime
    ) -> dict[str, set[str]]:
        """Mark sources merged into ``target``. Returns each source's former barcodes."""
        retired: dict[str, set[str]] = {}
        for source in sources:
            retired[str(source.id)] = source.indexed_barcodes()
            previous_status = source.status
            source.status = STATUS_MERGED
            source.is_active = False
            source.merged_into = target
            source.merged_at = merged_at
            source.merged_by = identity
            source.last_modified_by = identity
            source.save()
            ModificationHistory.record(
                ENTITY_PROMOTION,
                source.id,
                "merged",
                identity,
                changes={"status": {"old": previous_status, "new": STATUS_MERGED}, "merged_into": str(target.id)},
            )
        return retired

    @staticmethod
    def _reindex_merge(target: Promotion, retired: Mapping[str, set[str]]) -> None:
        """Every touched barcode loses the sources' ids and gains the target's"""
        target_barcodes = target.indexed_barcodes()
        touched = set(target_barcodes).union(*retired.values()) if retired else set(target_barcodes)
        for barcode in sorted(touched):
            remove = [source_id for source_id, barcodes in retired.items() if barcode in barcodes]
            add = [str(target.id)] if barcode in target_barcodes else []
            PromotionIndexService.upsert_index_entry(barcode, add_ids=add, remove_ids=remove)


# ===============================================================================
# DISCOUNT RULE LIFECYCLE
# ===============================================================================


class DiscountRuleService:
    """Create, edit and delete stackable discount rules"""

    EDITABLE_FIELDS: ClassVar[tuple[str, ...]] = (
        "name",
        "description",
        "category",
        "value_type",
        "config",
        "applicable_products",
        "applicable_categories",
        "applicable_brands",
        "required_payment_methods",
        "cannot_combine_with_categories",
        "cannot_combine_with_ids",
        "cannot_combine_with_promotion_gift_types",
        "requires_discount_id",
        "min_purchase_amount",
        "min_quantity",
        "max_discount_amount",
        "max_discount_per_item",
        "valid_from",
        "valid_to",
        "priority",
        "is_active",
    )

    @classmethod
    def create_rule(cls, data: Mapping[str, Any], identity: str) -> Result[DiscountRule, str]:
        unknown = sorted(set(data) - set(cls.EDITABLE_FIELDS))
        if unknown:
            return Err(f"Unknown discount rule fields: {', '.join(unknown)}")

        try:
            with transaction.atomic():
                rule = DiscountRule(**data, created_by=identity, last_modified_by=identity)
                rule.full_clean()
                rule.save()
                ModificationHistory.record(
                    ENTITY_DISCOUNT_RULE, rule.id, "create", identity, changes=cls._snapshot(rule)
                )
        except DjangoValidationError as e:
            return Err(_validation_message(e))

        logger.info(f"✨ [DiscountRules] Created {rule.id} '{rule.name}' ({rule.category}) by {identity}")
        return Ok(rule)

    @classmethod
    def update_rule(
        cls, rule_id: str, changes: Mapping[str, Any], identity: str, comment: str = ""
    ) -> Result[DiscountRule, str]:
        unknown = sorted(set(changes) - set(cls.EDITABLE_FIELDS))
        if unknown:
            return Err(f"Unknown discount rule fields: {', '.join(unknown)}")

        try:
            with transaction.atomic():
                rule = cls._get_rule(rule_id, for_update=True)
                diff: dict[str, Any] = {}
                for field, value in changes.items():
                    old = getattr(rule, field)
                    if old != value:
                        diff[field] = {"old": _json_value(old), "new": _json_value(value)}
                        setattr(rule, field, value)
                if not diff:
                    return Ok(rule)
                rule.last_modified_by = identity
                rule.full_clean()
                rule.save()
                ModificationHistory.record(
                    ENTITY_DISCOUNT_RULE, rule.id, "update", identity, changes=diff, comment=comment
                )
        except BusinessError as e:
            return Err(str(e))
        except DjangoValidationError as e:
            return Err(_validation_message(e))

        logger.info(f"✏️ [DiscountRules] Updated {rule.id}: {', '.join(sorted(diff))} by {identity}")
        return Ok(rule)

    @classmethod
    def delete_rule(cls, rule_id: str, identity: str) -> Result[str, str]:
        try:
            with transaction.atomic():
                rule = cls._get_rule(rule_id, for_update=True)
                deleted_id = str(rule.id)
                ModificationHistory.record(
                    ENTITY_DISCOUNT_RULE, rule.id, "delete", identity, changes=cls._snapshot(rule)
                )
                rule.delete()
        except BusinessError as e:
            return Err(str(e))

        logger.info(f"🗑️ [DiscountRules] Deleted {deleted_id} by {identity}")
        return Ok(deleted_id)

    @staticmethod
    def get_history(rule_id: str) -> list[ModificationHistory]:
        return list(
            ModificationHistory.objects.filter(entity_type=ENTITY_DISCOUNT_RULE, entity_id=rule_id).order_by(
                "modified_at", "id"
            )
        )

    @staticmethod
    def _get_rule(rule_id: str, for_update: bool = False) -> DiscountRule:
        rules = RuleCatalog.find_discount_rules_by_ids([rule_id])
        if not rules:
            raise NotFoundError(f"Discount rule {rule_id} not found")
        rule = next(iter(rules.values()))
        if for_update:
            rule = DiscountRule.objects.select_for_update().get(id=rule.id)
        return rule

    @classmethod
    def _snapshot(cls, rule: DiscountRule) -> dict[str, Any]:
        return {field: _json_value(getattr(rule, field)) for field in cls.EDITABLE_FIELDS}


# ===============================================================================
# CART CALCULATION
# ===============================================================================


class CartCalculationService:
    """Validates calculation requests and resolves selected ids into specs"""

    @classmethod
    def calculate_request(cls, payload: Mapping[str, Any]) -> Result[CalculationResult, Any]:
        """
        Validate a request payload and price the cart.

        Returns:
            Ok(CalculationResult), Err(serializer.errors) for malformed input, or
            Err(str) when the calculator rejects the cart.
        """
        with request_context():
            serializer = CalculationRequestSerializer(data=payload)
            if not serializer.is_valid():
                logger.info(f"🧾 [CartCalculation] Rejected request: {sorted(serializer.errors)}")
                return Err(serializer.errors)

            lines = serializer.cart_lines()
            as_of = serializer.validated_data.get("as_of") or timezone.now()
            payment_method = serializer.validated_data.get("payment_method")

            selections, resolution_warnings = cls.resolve_selections(lines)
            result = CartCalculator.calculate(lines, selections, payment_method=payment_method, as_of=as_of)
            if result.is_err():
                return result

            calculation = result.unwrap()
            for line_result, warnings in zip(calculation.lines, resolution_warnings, strict=True):
                line_result.warnings[:0] = warnings
            return Ok(calculation)

    @classmethod
    def recommend_request(cls, payload: Mapping[str, Any]) -> Result[OptimizationResult, Any]:
        """
        Validate a request payload and recommend the cheapest discount selection.

        Selected ids in the payload are ignored; candidates are every active
        rule valid at ``as_of`` plus the trusted promotions for the cart's
        barcodes.
        """
        with request_context():
            serializer = CalculationRequestSerializer(data=payload)
            if not serializer.is_valid():
                logger.info(f"🧾 [CartCalculation] Rejected recommendation: {sorted(serializer.errors)}")
                return Err(serializer.errors)

            lines = serializer.cart_lines()
            as_of = serializer.validated_data.get("as_of") or timezone.now()
            payment_method = serializer.validated_data.get("payment_method")

            try:
                candidates = cls.candidate_specs(lines, as_of)
            except DatabaseError as e:
                logger.error(f"🔥 [CartCalculation] Candidate lookup failed: {e}")
                return Err("Discounts could not be loaded")

            return DiscountOptimizer.find_optimal_combination(
                lines, candidates, payment_method=payment_method, as_of=as_of
            )

    @classmethod
    def candidate_specs(cls, lines: Sequence[CartLine], as_of: datetime) -> list[DiscountSpec]:
        """Active rules valid at ``as_of`` and the trusted promotions for each barcode"""
        candidates: list[DiscountSpec] = []
        for rule in RuleCatalog.find_discount_rules({"is_active": True, "as_of": as_of}):
            try:
                candidates.append(rule.to_discount_spec())
            except RuleConfigError as e:
                logger.warning(f"⚠️ [CartCalculation] Skipping misconfigured rule '{rule.name}': {e}")

        barcodes = dict.fromkeys(line.barcode for line in lines if line.is_resolvable)
        for barcode in barcodes:
            candidates.extend(promotion.to_discount_spec() for promotion in cls.available_promotions(barcode, as_of))
        return candidates

    @staticmethod
    def render(calculation: CalculationResult) -> dict[str, Any]:
        """Serialized response body for a calculation"""
        return CalculationOutputSerializer(calculation.to_dict()).data

    @staticmethod
    def resolve_selections(lines: Sequence[CartLine]) -> tuple[list[list[DiscountSpec]], list[list[str]]]:
        """
        Resolve each line's selected ids to discount specs.

        Ids may name discount rules or crowd promotions. Promotions whose
        verification status is excluded are dropped with a warning.
        """
        selections: list[list[DiscountSpec]] = [[] for _ in lines]
        warnings: list[list[str]] = [[] for _ in lines]
        all_ids = {normalize_id(discount_id) for line in lines for discount_id in line.selected_discount_ids}
        if not all_ids:
            return selections, warnings

        try:
            rules = RuleCatalog.find_discount_rules_by_ids(all_ids)
            promotions = RuleCatalog.find_promotions_by_ids(all_ids - set(rules))
        except DatabaseError as e:
            logger.error(f"🔥 [CartCalculation] Discount lookup failed: {e}")
            for index, line in enumerate(lines):
                if line.selected_discount_ids:
                    warnings[index].append(f"{DISCOUNT_LOOKUP_FAILED}: discounts could not be loaded, full price used")
            return selections, warnings

        excluded_statuses = set(get_engine_setting("EXCLUDED_VERIFICATION_STATUSES"))
        specs: dict[str, DiscountSpec | str] = {}
        for discount_id, rule in rules.items():
            try:
                specs[discount_id] = rule.to_discount_spec()
            except RuleConfigError as e:
                specs[discount_id] = f"{RULE_MISCONFIGURED}: '{rule.name}' has an invalid config ({e})"
        for discount_id, promotion in promotions.items():
            if promotion.verification_status in excluded_statuses:
                specs[discount_id] = (
                    f"{PROMOTION_NOT_TRUSTED}: '{promotion.name}' is {promotion.verification_status}"
                )
            else:
                specs[discount_id] = promotion.to_discount_spec()

        for index, line in enumerate(lines):
            for discount_id in line.selected_discount_ids:
                spec = specs.get(normalize_id(discount_id))
                if spec is None:
                    warnings[index].append(f"{UNKNOWN_DISCOUNT}: no discount with id {discount_id}")
                elif isinstance(spec, str):
                    warnings[index].append(spec)
                else:
                    selections[index].append(spec)
        return selections, warnings

    @staticmethod
    def available_promotions(barcode: str, as_of: datetime | None = None) -> list[Promotion]:
        """Trusted promotions that currently apply to a barcode"""
        as_of = as_of or timezone.now()
        excluded_statuses = set(get_engine_setting("EXCLUDED_VERIFICATION_STATUSES"))
        return [
            promotion
            for promotion in RuleCatalog.find_promotions_by_barcode(barcode)
            if promotion.verification_status not in excluded_statuses
            and promotion.to_discount_spec().is_eligible(as_of)
        ]
