"""Observability endpoints for loyalty card telemetry."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from loyalty_api.api.dependencies.security import require_staff_api_key
from loyalty_api.observability.loyalty import get_loyalty_store


router = APIRouter(prefix="/observability", tags=["Observability"])


@router.get(
    "/loyalty",
    dependencies=[Depends(require_staff_api_key)],
    summary="Loyalty card operation counters",
)
async def loyalty_snapshot() -> dict[str, object]:
    """Return in-process counters for card operations, failures and outbox delivery."""

    return get_loyalty_store().snapshot().as_dict()
