"""Package weight helpers (all weights in kg, dimensions in cm)."""

from __future__ import annotations

from collections.abc import Iterable
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal
from typing import Any

# Rough per-item weights used when a product has no weight of its own.
DEFAULT_CATEGORY_WEIGHTS: dict[str, Decimal] = {
    "clothing": Decimal("0.3"),
    "electronics": Decimal("0.5"),
    "books": Decimal("0.4"),
    "accessories": Decimal("0.2"),
    "footwear": Decimal("0.5"),
    "default": Decimal("0.3"),
}

VOLUMETRIC_DIVISOR = Decimal(5000)
_CENTS = Decimal("0.01")


def calculate_package_weight(items: Iterable[Any]) -> Decimal:
    """Sum item weights, falling back to per-category defaults.

    Items only need ``units``, ``weight`` and ``category`` attributes.
    """
    total = Decimal(0)
    for item in items:
        weight = item.weight or DEFAULT_CATEGORY_WEIGHTS.get(
            item.category or "default", DEFAULT_CATEGORY_WEIGHTS["default"]
        )
        total += Decimal(weight) * item.units
    return total.quantize(_CENTS, rounding=ROUND_HALF_UP)


def calculate_volumetric_weight(dimensions: Any) -> Decimal:
    """``length * width * height / 5000``, rounded to grams-ish precision."""
    volume = dimensions.length * dimensions.width * dimensions.height
    return (Decimal(volume) / VOLUMETRIC_DIVISOR).quantize(
        _CENTS, rounding=ROUND_HALF_UP
    )


def get_chargeable_weight(
    actual_weight: Decimal, dimensions: Any | None = None
) -> Decimal:
    """Couriers bill the higher of actual and volumetric weight."""
    if dimensions is None:
        return actual_weight
    return max(actual_weight, calculate_volumetric_weight(dimensions))


def round_weight_up(weight: Decimal, increment: Decimal = Decimal("0.5")) -> Decimal:
    steps = (weight / increment).to_integral_value(rounding=ROUND_CEILING)
    return steps * increment
