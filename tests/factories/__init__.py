# ===============================================================================
# TEST FACTORIES - CENTRALIZED TEST DATA GENERATION
# ===============================================================================
"""
Factory module for generating promotions test data.

Usage:
    from tests.factories import make_line, promotion_spec, create_promotion

    line = make_line(quantity=3)
    spec = promotion_spec(buy=2, get=1)
"""

from tests.factories.promotion_factories import (
    NOW,
    create_discount_rule,
    create_promotion,
    fixed_spec,
    make_line,
    make_spec,
    percentage_spec,
    promotion_data,
    promotion_spec,
    provider_terms,
    tiered_spec,
    voucher_spec,
)

__all__ = [
    'NOW',
    'create_discount_rule',
    'create_promotion',
    'fixed_spec',
    'make_line',
    'make_spec',
    'percentage_spec',
    'promotion_data',
    'promotion_spec',
    'provider_terms',
    'tiered_spec',
    'voucher_spec',
]
