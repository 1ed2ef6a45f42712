"""
Discount recommendation.

Searches the valid combinations of the discounts available to a cart and
ranks them by the price they produce. Every candidate combination is priced
with the cart calculator, so a recommendation always matches what a later
calculation with the same selection returns.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from itertools import combinations
from typing import Any

from django.utils import timezone

from apps.common.types import Ok, Result

from .calculator import CartCalculator
from .combination import CombinationValidator
from .conf import get_engine_setting
from .types import CalculationResult, CartLine, DiscountSpec

logger = logging.getLogger(__name__)


@dataclass
class DiscountCombination:
    """One priced selection of discounts."""

    rules: list[DiscountSpec]
    calculation: CalculationResult

    @property
    def rule_ids(self) -> list[str]:
        return [rule.id for rule in self.rules]

    @property
    def total_discount(self) -> int:
        return self.calculation.totals.discount

    @property
    def final(self) -> int:
        return self.calculation.totals.final

    def rank_key(self) -> tuple[int, int, tuple[str, ...]]:
        # Cheapest first, then the smaller selection, then ids
        return (self.final, len(self.rules), tuple(sorted(self.rule_ids)))

    def to_dict(self) -> dict[str, Any]:
        return {
            "discount_ids": self.rule_ids,
            "discount_names": [rule.name for rule in self.rules],
            "total_discount": self.total_discount,
            "final": self.final,
            "discount_rate": float(self.calculation.totals.discount_rate),
            "calculation": self.calculation.to_dict(),
        }


@dataclass
class OptimizationResult:
    """
    Best combination found for a cart.

    Attributes:
        optimal: Cheapest combination, or None when nothing lowers the price.
        alternatives: Runner-up combinations with distinct discount amounts,
            best first.
        evaluated: Number of valid combinations priced.
        truncated: Whether the search stopped at the combination limit.
    """

    optimal: DiscountCombination | None
    alternatives: list[DiscountCombination] = field(default_factory=list)
    evaluated: int = 0
    truncated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "optimal": self.optimal.to_dict() if self.optimal else None,
            "alternatives": [alternative.to_dict() for alternative in self.alternatives],
            "evaluated": self.evaluated,
            "truncated": self.truncated,
        }


class DiscountOptimizer:
    """Finds the discount selection that gives a cart its lowest price."""

    @classmethod
    def find_optimal_combination(
        cls,
        cart_lines: Sequence[CartLine],
        available_rules: Sequence[DiscountSpec],
        payment_method: str | None = None,
        as_of: datetime | None = None,
        max_combinations: int | None = None,
        max_alternatives: int | None = None,
    ) -> Result[OptimizationResult, str]:
        """
        Price every valid combination of ``available_rules`` over the cart.

        Each rule is selected on every line it covers. Combinations that fail
        validation are skipped without being priced; combinations that give
        no discount are never recommended.

        Returns:
            Ok(OptimizationResult), or Err when the cart cannot be priced.
        """
        as_of = as_of or timezone.now()
        max_combinations = max_combinations or get_engine_setting("OPTIMIZER_MAX_COMBINATIONS")
        max_alternatives = (
            get_engine_setting("OPTIMIZER_MAX_ALTERNATIVES") if max_alternatives is None else max_alternatives
        )

        baseline = CartCalculator.calculate(cart_lines, None, payment_method=payment_method, as_of=as_of)
        if baseline.is_err():
            return baseline

        candidates = cls._candidates(cart_lines, available_rules, as_of)
        ranked: list[DiscountCombination] = []
        evaluated = 0
        truncated = False
        for subset in cls._valid_subsets(candidates, payment_method, max_combinations):
            if subset is None:
                truncated = True
                break
            if not subset:
                continue
            evaluated += 1
            selections = [
                [rule for rule in subset if rule.applies_to(line.barcode, line.category, line.brand)]
                for line in cart_lines
            ]
            calculation = CartCalculator.calculate(
                cart_lines, selections, payment_method=payment_method, as_of=as_of
            ).unwrap()
            if calculation.totals.discount > 0:
                ranked.append(DiscountCombination(list(subset), calculation))

        if truncated:
            logger.warning(
                f"⚠️ [DiscountOptimizer] Stopped after {max_combinations} combination(s) "
                f"of {len(candidates)} candidate(s)"
            )

        if not ranked:
            logger.info(f"🔎 [DiscountOptimizer] No combination of {len(candidates)} candidate(s) lowers the price")
            return Ok(OptimizationResult(optimal=None, evaluated=evaluated, truncated=truncated))

        ranked.sort(key=DiscountCombination.rank_key)
        optimal = ranked[0]
        alternatives: list[DiscountCombination] = []
        seen_amounts = {optimal.total_discount}
        for combination in ranked[1:]:
            if len(alternatives) >= max_alternatives:
                break
            if combination.total_discount not in seen_amounts:
                alternatives.append(combination)
                seen_amounts.add(combination.total_discount)

        logger.info(
            f"✅ [DiscountOptimizer] Best of {len(ranked)} combination(s): "
            f"{', '.join(optimal.rule_ids)} -> {optimal.final} (discount {optimal.total_discount})"
        )
        return Ok(
            OptimizationResult(
                optimal=optimal, alternatives=alternatives, evaluated=evaluated, truncated=truncated
            )
        )

    @classmethod
    def find_optimal_per_line(
        cls,
        cart_lines: Sequence[CartLine],
        available_rules: Sequence[DiscountSpec],
        payment_method: str | None = None,
        as_of: datetime | None = None,
        max_combinations: int | None = None,
    ) -> dict[int, list[DiscountSpec]]:
        """
        Best selection for each line on its own.

        Every line is optimized independently with nothing selected elsewhere
        in the cart. Lines that no combination improves map to an empty list.
        """
        as_of = as_of or timezone.now()
        max_combinations = max_combinations or get_engine_setting("OPTIMIZER_MAX_COMBINATIONS")
        best: dict[int, list[DiscountSpec]] = {}

        for index, line in enumerate(cart_lines):
            best[index] = []
            if not line.is_resolvable:
                continue
            candidates = cls._candidates([line], available_rules, as_of)
            best_key: tuple[int, int, tuple[str, ...]] | None = None
            for subset in cls._valid_subsets(candidates, payment_method, max_combinations):
                if subset is None:
                    logger.warning(
                        f"⚠️ [DiscountOptimizer] Line {index}: stopped after {max_combinations} combination(s)"
                    )
                    break
                if not subset:
                    continue
                selections: list[list[DiscountSpec]] = [[] for _ in cart_lines]
                selections[index] = list(subset)
                calculation = CartCalculator.calculate(
                    cart_lines, selections, payment_method=payment_method, as_of=as_of
                ).unwrap()
                if calculation.totals.discount <= 0:
                    continue
                key = DiscountCombination(list(subset), calculation).rank_key()
                if best_key is None or key < best_key:
                    best_key = key
                    best[index] = list(subset)
        return best

    # ===============================================================================
    # Enumeration
    # ===============================================================================

    @staticmethod
    def _candidates(
        cart_lines: Sequence[CartLine], available_rules: Sequence[DiscountSpec], as_of: datetime
    ) -> list[DiscountSpec]:
        """Eligible rules covering at least one resolvable line, deduplicated, in fold order"""
        unique: dict[str, DiscountSpec] = {}
        for rule in available_rules:
            if rule.id in unique or not rule.is_eligible(as_of):
                continue
            if any(
                line.is_resolvable and rule.applies_to(line.barcode, line.category, line.brand)
                for line in cart_lines
            ):
                unique[rule.id] = rule
        return CombinationValidator.order(unique.values())

    @staticmethod
    def _valid_subsets(
        candidates: Sequence[DiscountSpec], payment_method: str | None, limit: int
    ) -> Iterator[tuple[DiscountSpec, ...] | None]:
        """
        Yield valid subsets, smallest first, starting with the empty one.

        Yields None once ``limit`` subsets have been examined and more remain.
        """
        examined = 0
        for size in range(len(candidates) + 1):
            for subset in combinations(candidates, size):
                if examined >= limit:
                    yield None
                    return
                examined += 1
                if not subset or CombinationValidator.validate(subset, payment_method).is_valid:
                    yield subset
