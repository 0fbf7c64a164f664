"""Service layer orchestrating loyalty card enrollment, accrual and redemption."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Sequence, TypeVar
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from loyalty_api.core.settings import settings
from loyalty_api.domain.loyalty.clock import ensure_utc, utcnow
from loyalty_api.domain.loyalty.errors import (
    ConflictError,
    InvalidOperationError,
    LimitExceededError,
    LoyaltyDomainError,
    LoyaltyValidationError,
    NotFoundError,
)
from loyalty_api.models.directory import Customer, Store
from loyalty_api.models.loyalty import (
    CardStatus,
    LoyaltyCard,
    LoyaltyOutboxEvent,
    LoyaltyProgram,
    LoyaltyProgramType,
    LoyaltyReward,
    LoyaltyTransaction,
)
from loyalty_api.observability.loyalty import LoyaltyObservabilityStore, get_loyalty_store
from loyalty_api.observability.tracing import tracer

from .events import (
    CardCreated,
    CardStatusChanged,
    EventPublisher,
    LoggingEventPublisher,
    LoyaltyEvent,
    OutboxDispatcher,
    PointsAdded,
    RewardRedeemed,
    StampsIssued,
)
from .result import OperationResult

T = TypeVar("T")


@dataclass
class CardTransactionOutcome:
    """Card state after a balance mutation together with its ledger entry."""

    card: LoyaltyCard
    transaction: LoyaltyTransaction


@dataclass
class ExpirySweepSummary:
    expired: int
    card_ids: list[UUID]


class LoyaltyCardService:
    """Coordinates loyalty card workflows and their persistence."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        publisher: EventPublisher | None = None,
        max_attempts: int | None = None,
        outbox_max_attempts: int | None = None,
        qr_code_prefix: str | None = None,
        store: LoyaltyObservabilityStore | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = db_session
        self._max_attempts = max_attempts or settings.card_update_max_attempts
        self._qr_code_prefix = qr_code_prefix or settings.qr_code_prefix
        self._store = store or get_loyalty_store()
        self._clock = clock
        self._outbox = OutboxDispatcher(
            db_session,
            publisher or LoggingEventPublisher(),
            max_attempts=outbox_max_attempts or settings.outbox_max_attempts,
            store=self._store,
        )

    async def get_card(self, card_id: UUID) -> OperationResult[LoyaltyCard]:
        card = await self._load_card(card_id)
        if card is None:
            return self._fail("get_card", NotFoundError(f"Loyalty card {card_id} not found"))
        return OperationResult.success(card)

    async def get_card_by_qr_code(self, qr_code: str) -> OperationResult[LoyaltyCard]:
        stmt = (
            select(LoyaltyCard)
            .options(selectinload(LoyaltyCard.transactions))
            .where(LoyaltyCard.qr_code == qr_code)
        )
        result = await self._db.execute(stmt)
        card = result.scalar_one_or_none()
        if card is None:
            return self._fail("get_card_by_qr_code", NotFoundError("Loyalty card not found for QR code"))
        return OperationResult.success(card)

    async def list_customer_cards(self, customer_id: UUID) -> OperationResult[list[LoyaltyCard]]:
        if await self._db.get(Customer, customer_id) is None:
            return self._fail("list_customer_cards", NotFoundError(f"Customer {customer_id} not found"))
        stmt = (
            select(LoyaltyCard)
            .where(LoyaltyCard.customer_id == customer_id)
            .order_by(LoyaltyCard.created_at)
        )
        result = await self._db.execute(stmt)
        return OperationResult.success(list(result.scalars().all()))

    async def list_program_cards(
        self,
        program_id: UUID,
        *,
        status: CardStatus | None = None,
    ) -> OperationResult[list[LoyaltyCard]]:
        if await self._db.get(LoyaltyProgram, program_id) is None:
            return self._fail("list_program_cards", NotFoundError(f"Loyalty program {program_id} not found"))
        stmt = select(LoyaltyCard).where(LoyaltyCard.program_id == program_id)
        if status is not None:
            stmt = stmt.where(LoyaltyCard.status == status)
        result = await self._db.execute(stmt.order_by(LoyaltyCard.created_at))
        return OperationResult.success(list(result.scalars().all()))

    async def list_card_transactions(self, card_id: UUID) -> OperationResult[list[LoyaltyTransaction]]:
        card = await self._load_card(card_id)
        if card is None:
            return self._fail("list_card_transactions", NotFoundError(f"Loyalty card {card_id} not found"))
        return OperationResult.success(list(card.transactions))

    async def verify_card_ownership(self, card_id: UUID, customer_id: UUID) -> OperationResult[bool]:
        card = await self._db.get(LoyaltyCard, card_id)
        if card is None:
            return self._fail("verify_card_ownership", NotFoundError(f"Loyalty card {card_id} not found"))
        if card.customer_id != customer_id:
            return self._fail(
                "verify_card_ownership",
                InvalidOperationError("The loyalty card does not belong to the specified customer"),
            )
        return OperationResult.success(True)

    async def create_card(self, customer_id: UUID, program_id: UUID) -> OperationResult[LoyaltyCard]:
        """Enroll a customer in a program, opening an empty active card."""

        operation = "create_card"
        with tracer.start_as_current_span("loyalty.card.create") as span:
            span.set_attribute("loyalty.customer_id", str(customer_id))
            span.set_attribute("loyalty.program_id", str(program_id))

            if await self._db.get(Customer, customer_id) is None:
                return self._fail(operation, NotFoundError(f"Customer {customer_id} not found"))

            program = await self._db.get(LoyaltyProgram, program_id)
            if program is None:
                return self._fail(operation, NotFoundError(f"Loyalty program {program_id} not found"))
            if not program.is_active:
                return self._fail(operation, InvalidOperationError("Loyalty program is not active"))
            now = self._clock()
            if not program.is_open_for_enrollment(now):
                return self._fail(operation, InvalidOperationError("Loyalty program is not open for enrollment"))

            existing = await self._db.execute(
                select(LoyaltyCard.id).where(
                    LoyaltyCard.customer_id == customer_id,
                    LoyaltyCard.program_id == program_id,
                )
            )
            if existing.scalar_one_or_none() is not None:
                return self._fail(operation, ConflictError("Customer already enrolled in this program"))

            card = LoyaltyCard.enroll(
                program,
                customer_id,
                now=now,
                qr_code_prefix=self._qr_code_prefix,
            )
            card_id = card.id
            self._db.add(card)
            row = self._outbox.stage(
                CardCreated(
                    card_id=card.id,
                    customer_id=customer_id,
                    program_id=program_id,
                    card_type=card.card_type.value,
                    expires_at=card.expires_at,
                    points_balance=(
                        Decimal(card.points_balance) if card.card_type is LoyaltyProgramType.POINTS else None
                    ),
                    occurred_at=now,
                )
            )
            try:
                await self._db.commit()
            except IntegrityError:
                await self._db.rollback()
                logger.warning(
                    "Detected race when enrolling loyalty card",
                    customer_id=str(customer_id),
                    program_id=str(program_id),
                )
                return self._fail(operation, ConflictError("Customer already enrolled in this program"))

            span.set_attribute("loyalty.card_id", str(card.id))
            self._store.record_operation(operation)
            logger.info(
                "Created loyalty card",
                card_id=str(card.id),
                customer_id=str(customer_id),
                program_id=str(program_id),
                expires_at=card.expires_at.isoformat() if card.expires_at else None,
            )
            reloaded = await self._dispatch(card_id, row)
            return OperationResult.success(reloaded or card)

    async def issue_stamps(
        self,
        card_id: UUID,
        quantity: int,
        *,
        store_id: UUID,
        staff_id: UUID | None = None,
        pos_transaction_id: str | None = None,
    ) -> OperationResult[CardTransactionOutcome]:
        """Issue stamps, honouring the program's daily stamp limit."""

        async def mutation(card: LoyaltyCard) -> tuple[LoyaltyEvent, CardTransactionOutcome]:
            program = await self._require_program(card.program_id)
            await self._require_store(store_id)
            now = self._clock()
            card.ensure_accepts(LoyaltyProgramType.STAMP, "issue stamps")
            self._ensure_not_lapsed(card, now)
            if quantity <= 0:
                raise LoyaltyValidationError("Quantity must be greater than zero")

            limit = program.daily_stamp_limit
            if limit is not None:
                issued_today = card.stamps_issued_today(now)
                if issued_today + quantity > limit:
                    raise LimitExceededError(
                        f"Daily stamp limit of {limit} exceeded: {issued_today} already issued today"
                    )

            transaction = card.issue_stamps(
                quantity,
                store_id=store_id,
                staff_id=staff_id,
                pos_transaction_id=pos_transaction_id,
                now=now,
            )
            event = StampsIssued(
                card_id=card.id,
                transaction_id=transaction.id,
                store_id=store_id,
                quantity=quantity,
                stamps_collected=card.stamps_collected,
                occurred_at=now,
            )
            return event, CardTransactionOutcome(card=card, transaction=transaction)

        return await self._mutate_card("issue_stamps", card_id, mutation)

    async def add_points(
        self,
        card_id: UUID,
        *,
        transaction_amount: Decimal,
        store_id: UUID,
        points: Decimal | None = None,
        staff_id: UUID | None = None,
        pos_transaction_id: str | None = None,
    ) -> OperationResult[CardTransactionOutcome]:
        """Credit points; when ``points`` is omitted the program computes them."""

        async def mutation(card: LoyaltyCard) -> tuple[LoyaltyEvent, CardTransactionOutcome]:
            program = await self._require_program(card.program_id)
            await self._require_store(store_id)
            now = self._clock()
            card.ensure_accepts(LoyaltyProgramType.POINTS, "add points")
            self._ensure_not_lapsed(card, now)

            amount = Decimal(transaction_amount)
            if amount < 0:
                raise LoyaltyValidationError("Transaction amount cannot be negative")
            if not program.is_valid_for_points_issuance(amount):
                raise InvalidOperationError(
                    f"Transaction amount is below the program minimum of {program.minimum_transaction_amount}"
                )
            tier = program.tier_for_points(Decimal(card.points_balance or 0))
            awarded = Decimal(points) if points is not None else program.calculate_points(amount, tier)

            transaction = card.add_points(
                awarded,
                amount,
                store_id=store_id,
                staff_id=staff_id,
                pos_transaction_id=pos_transaction_id,
                now=now,
            )
            event = PointsAdded(
                card_id=card.id,
                transaction_id=transaction.id,
                store_id=store_id,
                points=awarded,
                transaction_amount=amount,
                points_balance=Decimal(card.points_balance),
                tier=tier.name if tier is not None else None,
                occurred_at=now,
            )
            return event, CardTransactionOutcome(card=card, transaction=transaction)

        return await self._mutate_card("add_points", card_id, mutation)

    async def redeem_reward(
        self,
        card_id: UUID,
        reward_id: UUID,
        *,
        store_id: UUID,
        staff_id: UUID | None = None,
    ) -> OperationResult[CardTransactionOutcome]:
        async def mutation(card: LoyaltyCard) -> tuple[LoyaltyEvent, CardTransactionOutcome]:
            reward = await self._db.get(LoyaltyReward, reward_id)
            if reward is None:
                raise NotFoundError(f"Reward {reward_id} not found")
            program = await self._require_program(card.program_id)
            await self._require_store(store_id)
            now = self._clock()
            self._ensure_not_lapsed(card, now)

            transaction = card.redeem_reward(
                reward,
                store_id=store_id,
                staff_id=staff_id,
                now=now,
                minimum_points_balance=program.minimum_points_for_redemption,
            )
            consumed = transaction.quantity if transaction.quantity is not None else transaction.points_amount
            event = RewardRedeemed(
                card_id=card.id,
                transaction_id=transaction.id,
                reward_id=reward.id,
                store_id=store_id,
                consumed=Decimal(consumed),
                occurred_at=now,
            )
            return event, CardTransactionOutcome(card=card, transaction=transaction)

        return await self._mutate_card("redeem_reward", card_id, mutation)

    async def update_status(
        self,
        card_id: UUID,
        target: CardStatus,
        *,
        now: datetime | None = None,
    ) -> OperationResult[LoyaltyCard]:
        """Move a card to ``target`` through suspend, reactivate or expire."""

        async def mutation(card: LoyaltyCard) -> tuple[LoyaltyEvent | None, LoyaltyCard]:
            moment = now or self._clock()
            previous = card.status
            if target is CardStatus.SUSPENDED:
                card.suspend(now=moment)
            elif target is CardStatus.ACTIVE:
                card.reactivate(now=moment)
            elif target is CardStatus.EXPIRED:
                if not card.expire(moment):
                    return None, card
            event = CardStatusChanged(
                card_id=card.id,
                previous_status=previous.value,
                status=card.status.value,
                occurred_at=moment,
            )
            return event, card

        return await self._mutate_card("update_status", card_id, mutation)

    async def regenerate_qr_code(self, card_id: UUID) -> OperationResult[LoyaltyCard]:
        async def mutation(card: LoyaltyCard) -> tuple[None, LoyaltyCard]:
            card.regenerate_qr_code(prefix=self._qr_code_prefix, now=self._clock())
            return None, card

        return await self._mutate_card("regenerate_qr_code", card_id, mutation)

    async def expire_due_cards(self, now: datetime | None = None, *, limit: int = 500) -> ExpirySweepSummary:
        """Mark every active or suspended card past its expiry date as expired."""

        now = now or self._clock()
        stmt = (
            select(LoyaltyCard.id)
            .where(
                LoyaltyCard.status.in_([CardStatus.ACTIVE, CardStatus.SUSPENDED]),
                LoyaltyCard.expires_at.is_not(None),
                LoyaltyCard.expires_at <= now,
            )
            .order_by(LoyaltyCard.expires_at)
            .limit(limit)
        )
        result = await self._db.execute(stmt)
        candidate_ids: Sequence[UUID] = result.scalars().all()

        expired: list[UUID] = []
        for card_id in candidate_ids:
            outcome = await self.update_status(card_id, CardStatus.EXPIRED, now=now)
            if outcome.ok:
                expired.append(card_id)
        if expired:
            logger.info("Expired due loyalty cards", expired=len(expired), as_of=now.isoformat())
        return ExpirySweepSummary(expired=len(expired), card_ids=expired)

    async def redeliver_pending_events(self, *, limit: int = 100) -> dict[str, int]:
        """Publish outbox rows whose earlier delivery failed or was never recorded."""

        return await self._outbox.dispatch_pending(limit=limit)

    async def _mutate_card(
        self,
        operation: str,
        card_id: UUID,
        mutation: Callable[[LoyaltyCard], Awaitable[tuple[LoyaltyEvent | None, T]]],
    ) -> OperationResult[T]:
        """Apply ``mutation`` and commit, retrying on optimistic-lock conflicts.

        Every attempt reloads the card and its ledger so business rules such as
        the daily stamp limit are re-evaluated against the committed state.
        """

        with tracer.start_as_current_span(f"loyalty.card.{operation}") as span:
            span.set_attribute("loyalty.card_id", str(card_id))
            for attempt in range(1, self._max_attempts + 1):
                span.set_attribute("loyalty.attempt", attempt)
                card = await self._load_card(card_id)
                if card is None:
                    return self._fail(operation, NotFoundError(f"Loyalty card {card_id} not found"))

                try:
                    event, outcome = await mutation(card)
                except LoyaltyDomainError as exc:
                    await self._db.rollback()
                    return self._fail(operation, exc, card_id=card_id)

                row = self._outbox.stage(event) if event is not None else None
                try:
                    await self._db.commit()
                except StaleDataError:
                    await self._db.rollback()
                    self._store.record_concurrency_retry(operation)
                    logger.warning(
                        "Concurrent loyalty card update detected",
                        operation=operation,
                        card_id=str(card_id),
                        attempt=attempt,
                    )
                    continue

                self._store.record_operation(operation)
                logger.info(
                    "Loyalty card updated",
                    operation=operation,
                    card_id=str(card_id),
                    version=card.version,
                    event_type=event.event_type if event is not None else None,
                )
                if row is not None:
                    await self._dispatch(card_id, row)
                return OperationResult.success(outcome)

            self._store.record_concurrency_exhausted(operation)
            return self._fail(
                operation,
                ConflictError("Loyalty card was modified concurrently; please retry"),
                card_id=card_id,
            )

    async def _load_card(self, card_id: UUID) -> LoyaltyCard | None:
        stmt = (
            select(LoyaltyCard)
            .options(selectinload(LoyaltyCard.transactions))
            .where(LoyaltyCard.id == card_id)
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def _dispatch(self, card_id: UUID, row: LoyaltyOutboxEvent) -> LoyaltyCard | None:
        """Deliver a committed event; reload the card if delivery bookkeeping was rolled back."""

        delivery = await self._outbox.dispatch([row])
        if delivery["unrecorded"]:
            return await self._load_card(card_id)
        return None

    async def _require_program(self, program_id: UUID) -> LoyaltyProgram:
        stmt = (
            select(LoyaltyProgram)
            .options(selectinload(LoyaltyProgram.tiers))
            .where(LoyaltyProgram.id == program_id)
            .execution_options(populate_existing=True)
        )
        program = (await self._db.execute(stmt)).scalar_one_or_none()
        if program is None:
            raise NotFoundError(f"Loyalty program {program_id} not found")
        return program

    async def _require_store(self, store_id: UUID | None) -> Store:
        if store_id is None:
            raise LoyaltyValidationError("Store ID is required")
        store = await self._db.get(Store, store_id)
        if store is None:
            raise NotFoundError(f"Store {store_id} not found")
        return store

    @staticmethod
    def _ensure_not_lapsed(card: LoyaltyCard, now: datetime) -> None:
        if card.is_due_for_expiry(now):
            raise InvalidOperationError(f"Card expired on {ensure_utc(card.expires_at).date().isoformat()}")

    def _fail(self, operation: str, error: LoyaltyDomainError, **context: Any) -> OperationResult[Any]:
        self._store.record_failure(operation, error.kind.value)
        logger.warning(
            "Loyalty card operation rejected",
            operation=operation,
            error_kind=error.kind.value,
            reason=error.message,
            **{key: str(value) for key, value in context.items()},
        )
        return OperationResult.from_error(error)


__all__ = ["CardTransactionOutcome", "ExpirySweepSummary", "LoyaltyCardService"]
