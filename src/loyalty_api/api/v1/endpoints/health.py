from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Literal

from fastapi import APIRouter, Depends, Request
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_api.core.settings import settings
from loyalty_api.db.session import get_session


router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "starting", "disabled", "error", "degraded"]
    detail: str | None = Field(default=None, description="Human readable status detail")
    last_error_at: str | None = Field(default=None, description="ISO timestamp of most recent error")
    last_success_at: str | None = Field(default=None, description="ISO timestamp of most recent success")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}
    status: Literal["ready", "degraded", "error"] = "ready"

    components["database"] = await _evaluate_database_component(session)
    if components["database"].status == "error":
        status = "error"

    maintenance_worker = getattr(request.app.state, "card_maintenance_worker", None)
    if settings.card_maintenance_worker_enabled and maintenance_worker is not None:
        running = bool(getattr(maintenance_worker, "is_running", False))
        worker_status: Literal["ready", "starting", "disabled", "error"] = "ready" if running else "starting"
        detail: str | None = None if running else "Card maintenance worker not running"
        last_error = getattr(maintenance_worker, "last_error", None)
        if last_error:
            worker_status = "error"
            detail = last_error
            status = "degraded" if status != "error" else status
        elif not running:
            status = "degraded" if status != "error" else status
        last_success_at = getattr(maintenance_worker, "last_success_at", None)
        components["card_maintenance"] = ComponentStatus(
            status=worker_status,
            detail=detail,
            last_success_at=last_success_at.isoformat() if last_success_at else None,
        )
    else:
        components["card_maintenance"] = ComponentStatus(
            status="disabled",
            detail="Card maintenance worker disabled via settings",
        )

    return ReadinessPayload(status=status, components=components)


async def _evaluate_database_component(session: AsyncSession) -> ComponentStatus:
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as error:
        logger.warning("Database readiness probe failed", error=str(error))
        return ComponentStatus(
            status="error",
            detail=f"Database unreachable ({error.__class__.__name__})",
            last_error_at=datetime.now(timezone.utc).isoformat(),
        )
    return ComponentStatus(status="ready", detail="Database reachable")
