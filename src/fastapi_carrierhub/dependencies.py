"""Dependency providers for request handlers."""

from __future__ import annotations

from fastapi import Request

from fastapi_carrierhub.config import CarrierHubConfig
from fastapi_carrierhub.service import ShippingService


def get_config(request: Request) -> CarrierHubConfig:
    """Read config from FastAPI app state."""
    return request.app.state.carrierhub_config


def get_service(request: Request) -> ShippingService:
    """Read the shipping engine from FastAPI app state."""
    return request.app.state.carrierhub_service
