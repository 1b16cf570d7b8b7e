"""Tests for pincode, weight and token session helpers."""

import asyncio
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from fastapi_carrierhub.types import OrderItem, PackageDimensions
from fastapi_carrierhub.utils.pincode import (
    estimate_distance_category,
    is_valid_pincode,
    normalize_pincode,
)
from fastapi_carrierhub.utils.session import TokenSession
from fastapi_carrierhub.utils.weight import (
    calculate_package_weight,
    calculate_volumetric_weight,
    get_chargeable_weight,
    round_weight_up,
)


@pytest.mark.parametrize(
    ("pincode", "valid"),
    [
        ("110001", True),
        ("400 001", True),
        ("011001", False),
        ("11000", False),
        ("1100011", False),
        ("ABCDEF", False),
    ],
)
def test_is_valid_pincode(pincode: str, valid: bool) -> None:
    assert is_valid_pincode(pincode) is valid


def test_normalize_pincode_strips_whitespace() -> None:
    assert normalize_pincode(" 560 034 ") == "560034"


@pytest.mark.parametrize(
    ("origin", "destination", "category"),
    [
        ("110001", "110092", "local"),
        ("110001", "122001", "regional"),
        ("110001", "400001", "national"),
        ("110001", "bogus", "national"),
    ],
)
def test_estimate_distance_category(
    origin: str, destination: str, category: str
) -> None:
    assert estimate_distance_category(origin, destination) == category


class TestWeights:
    def test_items_without_weight_use_category_defaults(self) -> None:
        items = [
            OrderItem(
                name="Phone",
                sku="P1",
                selling_price=Decimal("100"),
                category="electronics",
            ),
            OrderItem(
                name="Mystery",
                sku="M1",
                units=2,
                selling_price=Decimal("10"),
            ),
        ]

        assert calculate_package_weight(items) == Decimal("1.10")

    def test_volumetric_weight(self) -> None:
        dims = PackageDimensions(length=50, width=40, height=25)

        assert calculate_volumetric_weight(dims) == Decimal("10.00")

    def test_chargeable_weight_without_dimensions(self) -> None:
        assert get_chargeable_weight(Decimal("2")) == Decimal("2")

    @pytest.mark.parametrize(
        ("weight", "rounded"),
        [("0.1", "0.5"), ("0.5", "0.5"), ("0.51", "1.0"), ("2.2", "2.5")],
    )
    def test_round_weight_up(self, weight: str, rounded: str) -> None:
        assert round_weight_up(Decimal(weight)) == Decimal(rounded)


class TestTokenSession:
    async def test_fetches_once_while_valid(self) -> None:
        calls = 0

        async def fetch() -> tuple[str, datetime]:
            nonlocal calls
            calls += 1
            return f"token-{calls}", datetime.now(tz=UTC) + timedelta(hours=1)

        session = TokenSession(fetch)

        assert await session.get() == "token-1"
        assert await session.get() == "token-1"
        assert calls == 1

    async def test_concurrent_callers_share_one_login(self) -> None:
        calls = 0

        async def fetch() -> tuple[str, datetime]:
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return "token", datetime.now(tz=UTC) + timedelta(hours=1)

        session = TokenSession(fetch)
        tokens = await asyncio.gather(*(session.get() for _ in range(5)))

        assert tokens == ["token"] * 5
        assert calls == 1

    async def test_token_inside_leeway_is_refreshed(self) -> None:
        async def fetch() -> tuple[str, datetime]:
            return "fresh", datetime.now(tz=UTC) + timedelta(hours=1)

        session = TokenSession(fetch, leeway=timedelta(minutes=5))
        session.seed("old", datetime.now(tz=UTC) + timedelta(minutes=2))

        assert not session.is_valid()
        assert await session.get() == "fresh"

    async def test_invalidate_forces_login(self) -> None:
        tokens = iter(["one", "two"])

        async def fetch() -> tuple[str, datetime]:
            return next(tokens), datetime.now(tz=UTC) + timedelta(hours=1)

        session = TokenSession(fetch)
        await session.get()
        session.invalidate()

        assert await session.get() == "two"
