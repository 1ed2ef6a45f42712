"""
Read path for discount rules and promotions.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import TypedDict

from django.db.models import Q, QuerySet

from apps.common.types import BusinessError

from .index import PromotionIndexService, parse_uuids
from .models import DiscountRule, Promotion


class PromotionNotFoundError(BusinessError):
    """Raised when a promotion id does not resolve"""


class PromotionFilters(TypedDict, total=False):
    """Type definition for promotion filtering parameters"""

    status: str
    is_active: bool
    verification_status: str | list[str]
    promotion_type: str
    gift_selection_type: str
    barcode: str
    as_of: datetime
    search: str
    created_by: str


class DiscountRuleFilters(TypedDict, total=False):
    """Type definition for discount rule filtering parameters"""

    category: str | list[str]
    value_type: str
    is_active: bool
    as_of: datetime
    search: str


def _window_filter(as_of: datetime) -> Q:
    return Q(valid_from__lte=as_of) & (Q(valid_to__isnull=True) | Q(valid_to__gte=as_of))


class RuleCatalog:
    """Query helpers shared by the services and the calculation entry point"""

    # ===============================================================================
    # Discount rules
    # ===============================================================================

    @staticmethod
    def find_discount_rules(filters: DiscountRuleFilters | None = None) -> QuerySet[DiscountRule]:
        filters = filters or {}
        queryset = DiscountRule.objects.all()

        category = filters.get("category")
        if isinstance(category, list):
            queryset = queryset.filter(category__in=category)
        elif category:
            queryset = queryset.filter(category=category)
        if filters.get("value_type"):
            queryset = queryset.filter(value_type=filters["value_type"])
        if "is_active" in filters:
            queryset = queryset.filter(is_active=filters["is_active"])
        if filters.get("as_of"):
            queryset = queryset.filter(_window_filter(filters["as_of"]))
        if filters.get("search"):
            queryset = queryset.filter(name__icontains=filters["search"])
        return queryset

    @staticmethod
    def find_discount_rules_by_ids(ids: Iterable[str]) -> dict[str, DiscountRule]:
        return {str(rule.id): rule for rule in DiscountRule.objects.filter(id__in=parse_uuids(ids))}

    # ===============================================================================
    # Promotions
    # ===============================================================================

    @staticmethod
    def find_promotions(filters: PromotionFilters | None = None) -> QuerySet[Promotion]:
        """
        Promotions matching ``filters``, ordered by priority, verification count
        and recency (all descending).
        """
        filters = filters or {}
        queryset = Promotion.objects.all()

        if filters.get("barcode"):
            ids = PromotionIndexService.find_promotion_ids(filters["barcode"])
            queryset = queryset.filter(id__in=parse_uuids(ids))
        if filters.get("status"):
            queryset = queryset.filter(status=filters["status"])
        if "is_active" in filters:
            queryset = queryset.filter(is_active=filters["is_active"])

        verification_status = filters.get("verification_status")
        if isinstance(verification_status, list):
            queryset = queryset.filter(verification_status__in=verification_status)
        elif verification_status:
            queryset = queryset.filter(verification_status=verification_status)

        if filters.get("promotion_type"):
            queryset = queryset.filter(promotion_type=filters["promotion_type"])
        if filters.get("gift_selection_type"):
            queryset = queryset.filter(gift_selection_type=filters["gift_selection_type"])
        if filters.get("as_of"):
            queryset = queryset.filter(_window_filter(filters["as_of"]))
        if filters.get("search"):
            queryset = queryset.filter(name__icontains=filters["search"])
        if filters.get("created_by"):
            queryset = queryset.filter(created_by=filters["created_by"])
        return queryset.order_by("-priority", "-verification_count", "-created_at")

    @staticmethod
    def find_promotions_by_ids(ids: Iterable[str]) -> dict[str, Promotion]:
        return {str(promotion.id): promotion for promotion in Promotion.objects.filter(id__in=parse_uuids(ids))}

    @staticmethod
    def find_promotions_by_barcode(barcode: str) -> list[Promotion]:
        return PromotionIndexService.find_promotions_by_barcode(barcode)

    @staticmethod
    def get_promotion(promotion_id: str, for_update: bool = False) -> Promotion:
        parsed = parse_uuids([promotion_id])
        queryset = Promotion.objects.select_for_update() if for_update else Promotion.objects.all()
        promotion = queryset.filter(id=parsed[0]).first() if parsed else None
        if promotion is None:
            raise PromotionNotFoundError(f"Promotion {promotion_id} not found")
        return promotion
