"""Job that expires due loyalty cards and redelivers pending outbox events."""

# meta: job: loyalty-card-maintenance

from __future__ import annotations

import datetime as dt
from typing import Any, Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_api.core.settings import settings
from loyalty_api.services.loyalty import (
    EventPublisher,
    LoggingEventPublisher,
    LoyaltyCardService,
)

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]


async def run_card_maintenance(
    *,
    session_factory: SessionFactory,
    publisher: EventPublisher | None = None,
    now: dt.datetime | None = None,
    expiry_batch_size: int | None = None,
    outbox_batch_size: int | None = None,
) -> Dict[str, Any]:
    """Expire cards past their expiry date, then retry undelivered events."""

    maybe_session = session_factory()
    session: AsyncSession
    if isinstance(maybe_session, AsyncSession):
        session = maybe_session
    else:
        session = await maybe_session

    publisher = publisher or LoggingEventPublisher()
    reference_time = now or dt.datetime.now(dt.timezone.utc)

    async with session as managed_session:
        card_service = LoyaltyCardService(
            managed_session,
            publisher=publisher,
            outbox_max_attempts=settings.outbox_max_attempts,
        )
        sweep = await card_service.expire_due_cards(
            reference_time,
            limit=expiry_batch_size or settings.card_expiry_batch_size,
        )

        delivery = await card_service.redeliver_pending_events(
            limit=outbox_batch_size or settings.outbox_dispatch_batch_size,
        )

        summary = {
            "expired_cards": sweep.expired,
            "outbox_pending": delivery.get("pending", 0),
            "outbox_dispatched": delivery.get("dispatched", 0),
            "outbox_failed": delivery.get("failed", 0),
            "outbox_unrecorded": delivery.get("unrecorded", 0),
        }
        logger.bind(summary=summary).info("Loyalty card maintenance sweep completed")
        return summary


__all__ = ["run_card_maintenance"]
