"""FastAPI example app wiring fastapi-carrierhub to sandbox carriers."""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from fastapi_carrierhub import (
    CarrierHubConfig,
    ShippingService,
    create_shipping_router,
    register_exception_handlers,
)
from fastapi_carrierhub.contrib.sqlalchemy.cache_store import (
    SQLAlchemyRateCacheStore,
)
from fastapi_carrierhub.contrib.sqlalchemy.event_store import (
    SQLAlchemyEventSink,
)
from fastapi_carrierhub.contrib.sqlalchemy.models import Base
from fastapi_carrierhub.contrib.sqlalchemy.repository import (
    SQLAlchemyShipmentStatusStore,
)

logging.basicConfig(level=logging.INFO)

# --- Database setup ---

DATABASE_URL = os.environ.get(
    "CARRIERHUB_EXAMPLE_DATABASE_URL", "sqlite+aiosqlite:///./example.db"
)
engine = create_async_engine(DATABASE_URL, echo=False)
async_session = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)

# --- Library integration ---

# Two sandbox accounts: a cheap slow one tried first and a pricier fast one.
config = CarrierHubConfig(
    providers={
        "budget": {
            "code": "dummy",
            "name": "Budget Sandbox",
            "priority": 1,
            "credentials": {"secret": "budget-secret"},
        },
        "express": {
            "code": "dummy",
            "name": "Express Sandbox",
            "priority": 2,
            "credentials": {"secret": "express-secret"},
            "options": {
                "rate_card": [
                    {
                        "courier_code": "nxt",
                        "courier_name": "Next Day",
                        "rate": "90",
                        "estimated_days": 1,
                        "mode": "surface",
                        "cod": True,
                    },
                ],
            },
        },
    },
)

service = ShippingService(
    config,
    cache_store=SQLAlchemyRateCacheStore(async_session),
    event_sink=SQLAlchemyEventSink(async_session),
    status_store=SQLAlchemyShipmentStatusStore(async_session),
)

shipping_router = create_shipping_router(config=config, service=service)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


app = FastAPI(
    title="fastapi-carrierhub demo",
    lifespan=lifespan,
)
register_exception_handlers(app)
app.include_router(shipping_router, prefix="/api")
