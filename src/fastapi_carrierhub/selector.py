"""Rate selection strategies."""

from __future__ import annotations

import logging
import statistics
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from decimal import Decimal

from fastapi_carrierhub.exceptions import InvalidSelectionError
from fastapi_carrierhub.types import (
    FilteredRate,
    SelectionCriteria,
    SelectionMetadata,
    SelectionResult,
    SelectionStrategy,
    ShippingRate,
)

logger = logging.getLogger(__name__)

PriorityLookup = Callable[[str], int]
SortKey = tuple

_CHEAPEST_FIELDS = (
    "rate",
    "estimated days",
    "provider priority",
    "provider id",
    "courier code",
)
_FASTEST_FIELDS = (
    "estimated days",
    "rate",
    "provider priority",
    "provider id",
    "courier code",
)


@dataclass(frozen=True)
class RateComparison:
    cheaper: ShippingRate
    faster: ShippingRate
    cost_difference: Decimal
    days_difference: int


def compare_rates(first: ShippingRate, second: ShippingRate) -> RateComparison:
    """Side-by-side comparison of two offers, ties going to ``first``."""
    return RateComparison(
        cheaper=first if first.rate <= second.rate else second,
        faster=(
            first if first.estimated_days <= second.estimated_days else second
        ),
        cost_difference=abs(first.rate - second.rate),
        days_difference=abs(first.estimated_days - second.estimated_days),
    )


def recommend_strategy(rates: Sequence[ShippingRate]) -> SelectionStrategy:
    """Suggest a strategy from the spread of prices and delivery days.

    Wide price and day spreads favour a balanced pick; near-identical
    prices make speed the only differentiator.
    """
    if len(rates) < 2:
        return SelectionStrategy.PRIORITY

    prices = [rate.rate for rate in rates]
    average = statistics.fmean(float(price) for price in prices)
    variation = float(max(prices) - min(prices)) / average if average else 0.0
    days = [rate.estimated_days for rate in rates]
    day_range = max(days) - min(days)

    if variation > 0.2 and day_range > 1:
        return SelectionStrategy.BALANCED
    if variation < 0.1:
        return SelectionStrategy.FASTEST
    return SelectionStrategy.CHEAPEST


def best_rates_by_delivery_days(
    rates: Sequence[ShippingRate],
) -> list[ShippingRate]:
    """Cheapest available rate for each delivery-day bucket, fastest first."""
    cheapest: dict[int, ShippingRate] = {}
    for rate in rates:
        if not rate.available:
            continue
        current = cheapest.get(rate.estimated_days)
        if current is None or (rate.rate, rate.provider_id, rate.courier_code) < (
            current.rate,
            current.provider_id,
            current.courier_code,
        ):
            cheapest[rate.estimated_days] = rate
    return [cheapest[days] for days in sorted(cheapest)]


def _describe(rate: ShippingRate) -> str:
    return (
        f"{rate.provider_id}/{rate.courier_code} "
        f"({rate.rate}, {rate.estimated_days} day(s))"
    )


class RateSelector:
    """Picks one rate under a ``SelectionCriteria``.

    Every strategy ranks with a total order ending in provider id and
    courier code, so the same input always yields the same winner.
    """

    def __init__(self, priority_of: PriorityLookup | None = None) -> None:
        self.priority_of = priority_of or (lambda provider_id: 0)

    # --- Comparators ---

    def _cheapest_key(self, rate: ShippingRate) -> SortKey:
        return (
            rate.rate,
            rate.estimated_days,
            self.priority_of(rate.provider_id),
            rate.provider_id,
            rate.courier_code,
        )

    def _fastest_key(self, rate: ShippingRate) -> SortKey:
        return (
            rate.estimated_days,
            rate.rate,
            self.priority_of(rate.provider_id),
            rate.provider_id,
            rate.courier_code,
        )

    def _priority_key(self, rate: ShippingRate) -> SortKey:
        return (self.priority_of(rate.provider_id), *self._cheapest_key(rate))

    def _balanced_key(
        self, pool: Sequence[ShippingRate], criteria: SelectionCriteria
    ) -> Callable[[ShippingRate], SortKey]:
        weights = criteria.balanced_weights
        prices = [float(rate.rate) for rate in pool]
        days = [rate.estimated_days for rate in pool]
        low_price, high_price = min(prices), max(prices)
        low_days, high_days = min(days), max(days)

        def normalize(value: float, low: float, high: float) -> float:
            return (value - low) / (high - low) if high > low else 0.0

        def key(rate: ShippingRate) -> SortKey:
            score = weights.cost_weight * normalize(
                float(rate.rate), low_price, high_price
            ) + weights.speed_weight * normalize(
                rate.estimated_days, low_days, high_days
            )
            # Rounded so float noise cannot split genuine ties.
            return (round(score, 9), *self._cheapest_key(rate))

        return key

    def _strategy_key(
        self, pool: Sequence[ShippingRate], criteria: SelectionCriteria
    ) -> tuple[Callable[[ShippingRate], SortKey], tuple[str, ...]]:
        strategy = criteria.strategy
        if strategy is SelectionStrategy.FASTEST:
            return self._fastest_key, _FASTEST_FIELDS
        if strategy is SelectionStrategy.BALANCED and pool:
            return self._balanced_key(pool, criteria), (
                "balanced score",
                *_CHEAPEST_FIELDS,
            )
        if strategy is SelectionStrategy.PRIORITY:
            return self._priority_key, ("provider priority", *_CHEAPEST_FIELDS)
        return self._cheapest_key, _CHEAPEST_FIELDS

    # --- Pipeline ---

    def filter_rates(
        self, rates: Sequence[ShippingRate], criteria: SelectionCriteria
    ) -> tuple[list[ShippingRate], list[FilteredRate]]:
        """Split ``rates`` into usable candidates and rejected ones."""
        kept: list[ShippingRate] = []
        rejected: list[FilteredRate] = []
        for rate in rates:
            if not rate.available:
                reason = "not available"
            elif criteria.max_cost is not None and rate.rate > criteria.max_cost:
                reason = f"rate {rate.rate} exceeds max cost {criteria.max_cost}"
            elif (
                criteria.max_days is not None
                and rate.estimated_days > criteria.max_days
            ):
                reason = (
                    f"{rate.estimated_days} day(s) exceeds max days "
                    f"{criteria.max_days}"
                )
            else:
                kept.append(rate)
                continue
            rejected.append(FilteredRate(rate=rate, reason=reason))
        return kept, rejected

    def _partition(
        self, rates: list[ShippingRate], criteria: SelectionCriteria
    ) -> tuple[list[ShippingRate], list[ShippingRate]]:
        # A named provider outranks any preference list.
        if (
            not criteria.preferred_providers
            or criteria.strategy is SelectionStrategy.SPECIFIC
        ):
            return [], rates
        preferred = set(criteria.preferred_providers)
        return (
            [rate for rate in rates if rate.provider_id in preferred],
            [rate for rate in rates if rate.provider_id not in preferred],
        )

    def _order(
        self, pool: list[ShippingRate], criteria: SelectionCriteria
    ) -> list[ShippingRate]:
        if not pool:
            return []
        if criteria.strategy is SelectionStrategy.SPECIFIC:
            target = criteria.specific_provider_id
            return sorted(
                pool,
                key=lambda rate: (
                    rate.provider_id != target,
                    *self._cheapest_key(rate),
                ),
            )
        key, _ = self._strategy_key(pool, criteria)
        return sorted(pool, key=key)

    def _run_custom(
        self, pool: list[ShippingRate], criteria: SelectionCriteria
    ) -> ShippingRate | None:
        choice = criteria.custom_selector(list(pool))
        if choice is None:
            return None
        if not any(choice is rate or choice == rate for rate in pool):
            raise InvalidSelectionError(
                "custom selector returned a rate that was not offered"
            )
        return choice

    def _pick(
        self, pool: list[ShippingRate], criteria: SelectionCriteria
    ) -> tuple[ShippingRate | None, list[ShippingRate]]:
        """Return the winner of ``pool`` and the pool in ranked order."""
        if criteria.strategy is SelectionStrategy.CUSTOM:
            winner = self._run_custom(pool, criteria) if pool else None
            ranked = sorted(pool, key=self._cheapest_key)
            if winner is not None:
                ranked = [winner, *(r for r in ranked if r.key != winner.key)]
            return winner, ranked

        ranked = self._order(pool, criteria)
        if not ranked:
            return None, ranked
        if (
            criteria.strategy is SelectionStrategy.SPECIFIC
            and ranked[0].provider_id != criteria.specific_provider_id
        ):
            return None, ranked
        return ranked[0], ranked

    def rank(
        self,
        rates: Sequence[ShippingRate],
        criteria: SelectionCriteria | None = None,
    ) -> list[ShippingRate]:
        """All usable rates in the order ``criteria`` would try them.

        Preferred providers come first, each partition ranked on its own.
        """
        criteria = criteria or SelectionCriteria()
        candidates, _ = self.filter_rates(rates, criteria)
        preferred, rest = self._partition(candidates, criteria)
        if criteria.strategy is SelectionStrategy.CUSTOM:
            pool = preferred or rest
            _, ranked_pool = self._pick(pool, criteria)
            others = rest if preferred else []
            return ranked_pool + sorted(others, key=self._cheapest_key)
        return self._order(preferred, criteria) + self._order(rest, criteria)

    def _reason(
        self,
        winner: ShippingRate,
        ranked: list[ShippingRate],
        criteria: SelectionCriteria,
        preferred_used: bool,
    ) -> str:
        strategy = criteria.strategy
        if strategy is SelectionStrategy.CUSTOM:
            reason = f"custom selector chose {_describe(winner)}"
        elif strategy is SelectionStrategy.SPECIFIC:
            reason = (
                f"specific provider {criteria.specific_provider_id}: "
                f"cheapest offer {_describe(winner)}"
            )
        else:
            labels = {
                SelectionStrategy.CHEAPEST: "lowest rate",
                SelectionStrategy.FASTEST: "fewest delivery days",
                SelectionStrategy.BALANCED: "best balanced score",
                SelectionStrategy.PRIORITY: "highest provider priority",
            }
            reason = f"{strategy.value}: {labels[strategy]} {_describe(winner)}"
            runner_up = next((r for r in ranked if r is not winner), None)
            if runner_up is not None:
                key, fields = self._strategy_key(ranked, criteria)
                decided_by = next(
                    (
                        name
                        for name, mine, theirs in zip(
                            fields, key(winner), key(runner_up), strict=True
                        )
                        if mine != theirs
                    ),
                    None,
                )
                if decided_by is not None and decided_by != fields[0]:
                    reason += f"; tie broken by {decided_by}"

        if preferred_used:
            reason = f"preferred provider, {reason}"
        elif (
            criteria.preferred_providers
            and strategy is not SelectionStrategy.SPECIFIC
        ):
            reason += "; no preferred provider had a usable rate"
        return reason

    def select(
        self,
        rates: Sequence[ShippingRate],
        criteria: SelectionCriteria | None = None,
    ) -> SelectionResult | None:
        """Pick the best rate, or ``None`` when nothing qualifies."""
        started = time.perf_counter()
        criteria = criteria or SelectionCriteria()

        candidates, filtered = self.filter_rates(rates, criteria)
        preferred, rest = self._partition(candidates, criteria)
        pool = preferred or rest
        winner, ranked = self._pick(pool, criteria)
        if winner is None:
            logger.info(
                "No rate selected with strategy %s (%d offered, %d filtered)",
                criteria.strategy,
                len(rates),
                len(filtered),
            )
            return None

        reason = self._reason(winner, ranked, criteria, bool(preferred))
        if preferred:
            ranked = ranked + self._order(rest, criteria)
        alternatives = tuple(rate for rate in ranked if rate.key != winner.key)

        return SelectionResult(
            selected_rate=winner,
            reason=reason,
            alternative_rates=alternatives,
            filtered=tuple(filtered),
            metadata=SelectionMetadata(
                total_rates_evaluated=len(rates),
                rates_filtered=len(filtered),
                selection_time_ms=(time.perf_counter() - started) * 1000,
            ),
        )
