"""SQLAlchemy storage behind the rate cache."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fastapi_carrierhub.contrib.sqlalchemy.models import RateCacheModel
from fastapi_carrierhub.types import CacheEntry, ShippingRate


def _aware(value: datetime) -> datetime:
    # SQLite drops the offset of timezone-aware columns.
    return value if value.tzinfo else value.replace(tzinfo=UTC)


class SQLAlchemyRateCacheStore:
    """Rate sets persisted in ``carrierhub_rate_cache``."""

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        self.session_factory = session_factory

    async def get(self, key: str) -> CacheEntry | None:
        async with self.session_factory() as session:
            row = await session.get(RateCacheModel, key)
            if row is None:
                return None
            return CacheEntry(
                key=row.key,
                rates=tuple(ShippingRate.model_validate(r) for r in row.rates),
                fetched_at=_aware(row.fetched_at),
                expires_at=_aware(row.expires_at),
            )

    async def put(self, entry: CacheEntry) -> None:
        async with self.session_factory() as session:
            await session.merge(
                RateCacheModel(
                    key=entry.key,
                    rates=[rate.model_dump(mode="json") for rate in entry.rates],
                    provider_ids="|" + "".join(
                        f"{provider_id}|"
                        for provider_id in sorted(entry.provider_ids)
                    ),
                    fetched_at=entry.fetched_at,
                    expires_at=entry.expires_at,
                )
            )
            await session.commit()

    async def delete(self, key: str) -> None:
        async with self.session_factory() as session:
            await session.execute(
                delete(RateCacheModel).where(RateCacheModel.key == key)
            )
            await session.commit()

    async def delete_for_provider(self, provider_id: str) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(RateCacheModel).where(
                    RateCacheModel.provider_ids.contains(
                        f"|{provider_id}|", autoescape=True
                    )
                )
            )
            await session.commit()
            return result.rowcount

    async def delete_prefix(self, prefix: str) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(RateCacheModel).where(
                    RateCacheModel.key.startswith(prefix, autoescape=True)
                )
            )
            await session.commit()
            return result.rowcount

    async def clear(self) -> int:
        async with self.session_factory() as session:
            result = await session.execute(delete(RateCacheModel))
            await session.commit()
            return result.rowcount

    async def purge_expired(self, now: datetime | None = None) -> int:
        """Delete entries past their expiry; returns how many went."""
        now = now or datetime.now(tz=UTC)
        async with self.session_factory() as session:
            result = await session.execute(
                delete(RateCacheModel).where(RateCacheModel.expires_at <= now)
            )
            await session.commit()
            return result.rowcount

    async def count(self) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count()).select_from(RateCacheModel)
            )
            return result.scalar_one()

    async def count_expired(self, now: datetime) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count())
                .select_from(RateCacheModel)
                .where(RateCacheModel.expires_at <= now)
            )
            return result.scalar_one()
