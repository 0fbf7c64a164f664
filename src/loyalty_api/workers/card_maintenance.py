"""Worker wiring for periodic loyalty card maintenance sweeps."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_api.core.settings import settings
from loyalty_api.jobs.loyalty.card_maintenance import run_card_maintenance
from loyalty_api.services.loyalty import EventPublisher

SessionFactory = Callable[[], Awaitable[AsyncSession]] | Callable[[], AsyncSession]


class CardMaintenanceWorker:
    """Periodically expires due cards and redelivers pending loyalty events."""

    # meta: worker: loyalty-card-maintenance

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        publisher: EventPublisher | None = None,
        interval_seconds: int | None = None,
        expiry_batch_size: int | None = None,
        outbox_batch_size: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._publisher = publisher
        self.interval_seconds = interval_seconds or settings.card_maintenance_interval_seconds
        self._expiry_batch_size = expiry_batch_size or settings.card_expiry_batch_size
        self._outbox_batch_size = outbox_batch_size or settings.outbox_dispatch_batch_size
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.is_running: bool = False
        self.last_error: str | None = None
        self.last_success_at: datetime | None = None
        self.last_summary: Dict[str, Any] = {}

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        self.is_running = True
        logger.info(
            "Card maintenance worker started",
            interval_seconds=self.interval_seconds,
            expiry_batch_size=self._expiry_batch_size,
            outbox_batch_size=self._outbox_batch_size,
        )

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self.is_running = False
        logger.info("Card maintenance worker stopped")

    async def run_once(self, *, now: datetime | None = None) -> Dict[str, Any]:
        """Execute a single sweep and remember its outcome for readiness checks."""

        try:
            summary = await run_card_maintenance(
                session_factory=self._session_factory,
                publisher=self._publisher,
                now=now,
                expiry_batch_size=self._expiry_batch_size,
                outbox_batch_size=self._outbox_batch_size,
            )
        except Exception as exc:
            self.last_error = str(exc)
            logger.exception("Card maintenance sweep failed", error=str(exc))
            raise

        self.last_error = None
        self.last_success_at = datetime.now(timezone.utc)
        self.last_summary = summary
        return summary

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as exc:
                logger.warning("Card maintenance iteration failed", error=str(exc))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue


__all__ = ["CardMaintenanceWorker"]
