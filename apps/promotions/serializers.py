"""
Promotions serializers
DRF serializers for cart calculation requests and their results.
"""

from __future__ import annotations

from typing import Any

from rest_framework import serializers

from .constants import PAYMENT_METHODS
from .types import CartLine


# Input Serializers for Cart Calculation

class CartLineInputSerializer(serializers.Serializer):
    """Input serializer for one priced cart line"""

    barcode = serializers.CharField(max_length=64)
    quantity = serializers.IntegerField(min_value=1)
    unit_price = serializers.IntegerField(min_value=0)
    category = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")
    brand = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")
    selected_discount_ids = serializers.ListField(
        child=serializers.CharField(max_length=64), required=False, default=list
    )

    def to_cart_line(self, data: dict[str, Any]) -> CartLine:
        return CartLine(
            barcode=data["barcode"],
            quantity=data["quantity"],
            unit_price=data["unit_price"],
            category=data.get("category", ""),
            brand=data.get("brand", ""),
            selected_discount_ids=tuple(dict.fromkeys(data.get("selected_discount_ids") or [])),
        )


class CalculationRequestSerializer(serializers.Serializer):
    """Input serializer for a cart calculation"""

    lines = CartLineInputSerializer(many=True, allow_empty=False)
    payment_method = serializers.ChoiceField(choices=PAYMENT_METHODS, required=False, allow_null=True)
    as_of = serializers.DateTimeField(required=False, allow_null=True)

    def cart_lines(self) -> list[CartLine]:
        """Cart lines built from validated data"""
        line_serializer = CartLineInputSerializer()
        return [line_serializer.to_cart_line(line) for line in self.validated_data["lines"]]


# Output Serializers

class AppliedDiscountOutputSerializer(serializers.Serializer):
    rule_id = serializers.CharField()
    rule_name = serializers.CharField()
    category = serializers.CharField()
    value_type = serializers.CharField()
    amount = serializers.IntegerField()
    price_before = serializers.IntegerField()
    price_after = serializers.IntegerField()
    free_units = serializers.IntegerField()


class LineResultOutputSerializer(serializers.Serializer):
    index = serializers.IntegerField()
    barcode = serializers.CharField()
    quantity = serializers.IntegerField()
    unit_price = serializers.IntegerField()
    original = serializers.IntegerField()
    final = serializers.IntegerField()
    discount = serializers.IntegerField()
    applied_discounts = AppliedDiscountOutputSerializer(many=True)
    conflicts = serializers.ListField(child=serializers.DictField(), default=list)
    warnings = serializers.ListField(child=serializers.CharField(), default=list)


class CartTotalsOutputSerializer(serializers.Serializer):
    original = serializers.IntegerField()
    final = serializers.IntegerField()
    discount = serializers.IntegerField()
    discount_rate = serializers.DecimalField(max_digits=5, decimal_places=4, coerce_to_string=False)


class CalculationOutputSerializer(serializers.Serializer):
    """Output serializer for a calculation result"""

    lines = LineResultOutputSerializer(many=True)
    totals = CartTotalsOutputSerializer()
    warnings = serializers.ListField(child=serializers.CharField(), default=list)
    promotion_applications = serializers.ListField(child=serializers.DictField(), default=list)