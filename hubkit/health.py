"""
Health check endpoint, registered as an ordinary contract so it gets the
correlation header and shows up in the OpenAPI document.
"""

import time
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

from .contracts.registry import ContractDescriptor, ContractRegistry, ResponseSpec


_STARTED_AT = time.monotonic()


class HealthResponse(BaseModel):
    status: Literal["healthy"] = "healthy"
    timestamp: str = Field(..., description="ISO 8601 timestamp")
    uptime: float = Field(..., description="Process uptime in seconds")


def health_handler(ctx) -> HealthResponse:
    return HealthResponse(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime=round(time.monotonic() - _STARTED_AT, 3),
    )


def register_health(registry: ContractRegistry, path: str = "/health") -> ContractDescriptor:
    """Register GET <path> returning HealthResponse, unless already declared."""
    existing = registry.get("GET", path)
    if existing is not None:
        return existing

    contract = ContractDescriptor(
        method="GET",
        path=path,
        summary="Health check",
        description="Check API health status",
        tags=("Health",),
        responses={200: ResponseSpec("Service is healthy", HealthResponse)},
    )
    return registry.register(contract, health_handler)
