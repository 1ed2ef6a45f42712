"""
Constants for the promotions engine.
Closed enumerations shared by models, serializers and the calculation core.
"""

from __future__ import annotations

from typing import Any

from django.utils.translation import gettext_lazy as _

# ===============================================================================
# DISCOUNT RULE CATEGORIES
# ===============================================================================

CATEGORY_PROMOTION = "promotion"
CATEGORY_COUPON = "coupon"
CATEGORY_TELECOM = "telecom"
CATEGORY_PAYMENT_EVENT = "payment_event"
CATEGORY_VOUCHER = "voucher"
CATEGORY_PAYMENT_INSTANT = "payment_instant"
CATEGORY_PAYMENT_COMPOUND = "payment_compound"

DISCOUNT_CATEGORIES: tuple[tuple[str, Any], ...] = (
    (CATEGORY_COUPON, _("Coupon / Subscription")),
    (CATEGORY_TELECOM, _("Telecom Membership")),
    (CATEGORY_PAYMENT_EVENT, _("Payment Event")),
    (CATEGORY_VOUCHER, _("Voucher")),
    (CATEGORY_PAYMENT_INSTANT, _("Payment Discount (standalone)")),
    (CATEGORY_PAYMENT_COMPOUND, _("Payment Discount (compound)")),
    (CATEGORY_PROMOTION, _("Promotion (buy N get M)")),
)

# Fold precedence: lower buckets are applied first. Bucket 4 is reserved for
# event discounts, which this engine does not carry.
DISCOUNT_CATEGORY_ORDER: dict[str, int] = {
    CATEGORY_PROMOTION: 1,
    CATEGORY_COUPON: 2,
    CATEGORY_TELECOM: 3,
    CATEGORY_PAYMENT_EVENT: 5,
    CATEGORY_VOUCHER: 6,
    CATEGORY_PAYMENT_INSTANT: 7,
    CATEGORY_PAYMENT_COMPOUND: 8,
}

# ===============================================================================
# VALUE TYPES
# ===============================================================================

VALUE_PERCENTAGE = "percentage"
VALUE_FIXED_AMOUNT = "fixed_amount"
VALUE_TIERED_AMOUNT = "tiered_amount"
VALUE_VOUCHER_AMOUNT = "voucher_amount"
VALUE_BUY_N_GET_M = "buy_n_get_m"

VALUE_TYPES: tuple[tuple[str, Any], ...] = (
    (VALUE_PERCENTAGE, _("Percentage")),
    (VALUE_FIXED_AMOUNT, _("Fixed Amount")),
    (VALUE_TIERED_AMOUNT, _("Tiered Amount")),
    (VALUE_VOUCHER_AMOUNT, _("Voucher Amount")),
    (VALUE_BUY_N_GET_M, _("Buy N Get M")),
)

# Legal (category, value type) pairs
CATEGORY_VALUE_TYPES: dict[str, frozenset[str]] = {
    CATEGORY_COUPON: frozenset({VALUE_PERCENTAGE, VALUE_FIXED_AMOUNT}),
    CATEGORY_TELECOM: frozenset({VALUE_PERCENTAGE, VALUE_TIERED_AMOUNT}),
    CATEGORY_PAYMENT_EVENT: frozenset({VALUE_PERCENTAGE, VALUE_FIXED_AMOUNT}),
    CATEGORY_VOUCHER: frozenset({VALUE_VOUCHER_AMOUNT}),
    CATEGORY_PAYMENT_INSTANT: frozenset({VALUE_PERCENTAGE}),
    CATEGORY_PAYMENT_COMPOUND: frozenset({VALUE_PERCENTAGE}),
    CATEGORY_PROMOTION: frozenset({VALUE_BUY_N_GET_M}),
}

BASE_AMOUNT_CURRENT = "current_amount"
BASE_AMOUNT_ORIGINAL = "original_price"

# ===============================================================================
# PAYMENT METHODS
# ===============================================================================

PAYMENT_METHODS: tuple[tuple[str, Any], ...] = (
    ("card", _("Credit / Debit Card")),
    ("samsung_pay", _("Samsung Pay")),
    ("cu_pay", _("CU Pay")),
    ("kakao_pay", _("Kakao Pay")),
    ("naver_pay", _("Naver Pay")),
    ("point_membership", _("Point Membership")),
    ("cash", _("Cash")),
)

PAYMENT_METHOD_CODES: frozenset[str] = frozenset(code for code, _label in PAYMENT_METHODS)

# ===============================================================================
# PROMOTIONS
# ===============================================================================

PROMOTION_TYPES: tuple[tuple[str, Any], ...] = (
    ("1+1", _("Buy 1 Get 1")),
    ("2+1", _("Buy 2 Get 1")),
    ("3+1", _("Buy 3 Get 1")),
    ("custom", _("Custom")),
)

# Fixed promotion types imply their (buy, get) quantities
PROMOTION_TYPE_QUANTITIES: dict[str, tuple[int, int]] = {
    "1+1": (1, 1),
    "2+1": (2, 1),
    "3+1": (3, 1),
}

APPLICABLE_PRODUCTS = "products"
APPLICABLE_CATEGORIES = "categories"
APPLICABLE_BRANDS = "brands"

APPLICABLE_TYPES: tuple[tuple[str, Any], ...] = (
    (APPLICABLE_PRODUCTS, _("Specific Products")),
    (APPLICABLE_CATEGORIES, _("Product Categories")),
    (APPLICABLE_BRANDS, _("Brands")),
)

GIFT_SAME = "same"
GIFT_CROSS = "cross"
GIFT_COMBO = "combo"

GIFT_SELECTION_TYPES: tuple[tuple[str, Any], ...] = (
    (GIFT_SAME, _("Same Product")),
    (GIFT_CROSS, _("Cross Product")),
    (GIFT_COMBO, _("Combo Pairing")),
)

STATUS_ACTIVE = "active"
STATUS_EXPIRED = "expired"
STATUS_ARCHIVED = "archived"
STATUS_MERGED = "merged"

PROMOTION_STATUSES: tuple[tuple[str, Any], ...] = (
    (STATUS_ACTIVE, _("Active")),
    (STATUS_EXPIRED, _("Expired")),
    (STATUS_ARCHIVED, _("Archived")),
    (STATUS_MERGED, _("Merged")),
)

# ===============================================================================
# CROWD VERIFICATION
# ===============================================================================

VERIFICATION_UNVERIFIED = "unverified"
VERIFICATION_PENDING = "pending"
VERIFICATION_VERIFIED = "verified"
VERIFICATION_DISPUTED = "disputed"

VERIFICATION_STATUSES: tuple[tuple[str, Any], ...] = (
    (VERIFICATION_UNVERIFIED, _("Unverified")),
    (VERIFICATION_PENDING, _("Pending")),
    (VERIFICATION_VERIFIED, _("Verified")),
    (VERIFICATION_DISPUTED, _("Disputed")),
)

# ===============================================================================
# MODIFICATION HISTORY
# ===============================================================================

ENTITY_PROMOTION = "promotion"
ENTITY_DISCOUNT_RULE = "discount_rule"

HISTORY_ENTITY_TYPES: tuple[tuple[str, Any], ...] = (
    (ENTITY_PROMOTION, _("Promotion")),
    (ENTITY_DISCOUNT_RULE, _("Discount Rule")),
)

HISTORY_ACTIONS: tuple[tuple[str, Any], ...] = (
    ("create", _("Created")),
    ("update", _("Updated")),
    ("delete", _("Deleted")),
    ("merge", _("Created by merge")),
    ("merged", _("Merged into another promotion")),
    ("merge_individual", _("Absorbed other promotions")),
    ("verify", _("Verified by user")),
    ("dispute", _("Disputed by user")),
    ("admin_verify", _("Verified by administrator")),
    ("expire", _("Expired")),
)

SYSTEM_IDENTITY = "system"
