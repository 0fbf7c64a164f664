"""Domain events and transactional outbox delivery for loyalty cards."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Protocol, Sequence
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_api.domain.loyalty.clock import utcnow
from loyalty_api.models.loyalty import LoyaltyOutboxEvent
from loyalty_api.observability.loyalty import LoyaltyObservabilityStore, get_loyalty_store


def _serialize(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


@dataclass(frozen=True, kw_only=True)
class LoyaltyEvent:
    """Base event; ``event_type`` names the concrete event on the wire."""

    event_type: ClassVar[str] = "loyalty.event"

    card_id: UUID
    event_id: UUID = field(default_factory=uuid4)
    occurred_at: datetime = field(default_factory=utcnow)

    def to_payload(self) -> dict[str, Any]:
        return {item.name: _serialize(getattr(self, item.name)) for item in fields(self)}


@dataclass(frozen=True, kw_only=True)
class CardCreated(LoyaltyEvent):
    event_type: ClassVar[str] = "loyalty.card_created"

    customer_id: UUID
    program_id: UUID
    card_type: str
    expires_at: datetime | None = None
    points_balance: Decimal | None = None


@dataclass(frozen=True, kw_only=True)
class StampsIssued(LoyaltyEvent):
    event_type: ClassVar[str] = "loyalty.stamps_issued"

    transaction_id: UUID
    store_id: UUID
    quantity: int
    stamps_collected: int


@dataclass(frozen=True, kw_only=True)
class PointsAdded(LoyaltyEvent):
    event_type: ClassVar[str] = "loyalty.points_added"

    transaction_id: UUID
    store_id: UUID
    points: Decimal
    transaction_amount: Decimal
    points_balance: Decimal
    tier: str | None = None


@dataclass(frozen=True, kw_only=True)
class RewardRedeemed(LoyaltyEvent):
    event_type: ClassVar[str] = "loyalty.reward_redeemed"

    transaction_id: UUID
    reward_id: UUID
    store_id: UUID
    consumed: Decimal


@dataclass(frozen=True, kw_only=True)
class CardStatusChanged(LoyaltyEvent):
    event_type: ClassVar[str] = "loyalty.card_status_changed"

    previous_status: str
    status: str


class EventPublisher(Protocol):
    """Destination for committed loyalty events."""

    async def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        ...


class LoggingEventPublisher:
    """Publisher that emits events as structured log lines."""

    async def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        logger.bind(event=payload).info("Loyalty event published", event_type=event_type)


class RecordingEventPublisher:
    """In-memory publisher used by embedding applications and tests."""

    def __init__(self) -> None:
        self.published: list[tuple[str, dict[str, Any]]] = []

    async def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        self.published.append((event_type, payload))

    def event_types(self) -> list[str]:
        return [event_type for event_type, _ in self.published]


class OutboxDispatcher:
    """Stage events inside the caller's transaction and deliver them after commit."""

    def __init__(
        self,
        db_session: AsyncSession,
        publisher: EventPublisher,
        *,
        max_attempts: int = 10,
        store: LoyaltyObservabilityStore | None = None,
    ) -> None:
        self._db = db_session
        self._publisher = publisher
        self._max_attempts = max_attempts
        self._store = store or get_loyalty_store()

    def stage(self, event: LoyaltyEvent) -> LoyaltyOutboxEvent:
        row = LoyaltyOutboxEvent(
            id=event.event_id,
            event_type=event.event_type,
            aggregate_id=event.card_id,
            payload=event.to_payload(),
            created_at=event.occurred_at,
            attempts=0,
        )
        self._db.add(row)
        return row

    async def dispatch(self, rows: Sequence[LoyaltyOutboxEvent]) -> dict[str, int]:
        """Publish committed rows, recording delivery or failure on each."""

        summary = {"dispatched": 0, "failed": 0, "unrecorded": 0}
        if not rows:
            return summary

        for row in rows:
            row.attempts = (row.attempts or 0) + 1
            try:
                await self._publisher.publish(row.event_type, dict(row.payload or {}))
            except Exception as exc:
                row.last_error = str(exc)
                summary["failed"] += 1
                self._store.record_outbox_dispatch("failed")
                logger.exception(
                    "Failed to publish loyalty event",
                    event_id=str(row.id),
                    event_type=row.event_type,
                    attempts=row.attempts,
                )
                continue
            row.dispatched_at = utcnow()
            row.last_error = None
            summary["dispatched"] += 1
            self._store.record_outbox_dispatch("dispatched")

        event_ids = [str(row.id) for row in rows]
        try:
            await self._db.commit()
        except SQLAlchemyError:
            # rows stay pending and dispatch_pending redelivers them
            await self._db.rollback()
            summary["unrecorded"] = len(rows)
            self._store.record_outbox_dispatch("unrecorded")
            logger.exception("Failed to record loyalty event delivery", event_ids=event_ids)
        return summary

    async def dispatch_pending(self, *, limit: int = 100) -> dict[str, int]:
        stmt = (
            select(LoyaltyOutboxEvent)
            .where(
                LoyaltyOutboxEvent.dispatched_at.is_(None),
                LoyaltyOutboxEvent.attempts < self._max_attempts,
            )
            .order_by(LoyaltyOutboxEvent.created_at)
            .limit(limit)
        )
        result = await self._db.execute(stmt)
        rows = list(result.scalars().all())
        summary = await self.dispatch(rows)
        summary["pending"] = len(rows)
        return summary


__all__ = [
    "CardCreated",
    "CardStatusChanged",
    "EventPublisher",
    "LoggingEventPublisher",
    "LoyaltyEvent",
    "OutboxDispatcher",
    "PointsAdded",
    "RecordingEventPublisher",
    "RewardRedeemed",
    "StampsIssued",
]
