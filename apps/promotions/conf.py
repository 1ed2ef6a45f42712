"""
Runtime configuration for the promotions engine.

Values come from the ``PROMOTIONS_ENGINE`` settings dict; any key that is not
set there falls back to ``ENGINE_DEFAULTS``.
"""

from __future__ import annotations

from typing import Any

from django.conf import settings

ENGINE_DEFAULTS: dict[str, Any] = {
    # auto | cheapest_first | cart_order
    "CROSS_GIFT_POLICY": "auto",
    "EXCLUDED_VERIFICATION_STATUSES": ["disputed"],
    "REJECT_SAME_CATEGORY": False,
    "CATEGORY_CONFLICTS": [["voucher", "payment_instant"]],
    "REBUILD_ON_INCONSISTENCY": True,
    "INDEX_REBUILD_LOCK_TIMEOUT": 300,
    "MERGE_CANDIDATE_LIMIT": 20,
    "ADMIN_IDENTITIES": [],
    "OPTIMIZER_MAX_COMBINATIONS": 256,
    "OPTIMIZER_MAX_ALTERNATIVES": 5,
}


def get_engine_setting(name: str) -> Any:
    """Return an engine setting, falling back to its default."""
    if name not in ENGINE_DEFAULTS:
        raise KeyError(f"Unknown promotions engine setting: {name}")
    overrides = getattr(settings, "PROMOTIONS_ENGINE", None) or {}
    return overrides.get(name, ENGINE_DEFAULTS[name])
