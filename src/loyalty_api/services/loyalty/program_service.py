"""Service layer for loyalty programs and their reward catalogs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from loguru import logger
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from loyalty_api.domain.loyalty.clock import utcnow
from loyalty_api.domain.loyalty.errors import (
    ConflictError,
    LoyaltyDomainError,
    LoyaltyValidationError,
    NotFoundError,
)
from loyalty_api.domain.loyalty.expiration import ExpirationPolicy
from loyalty_api.models.directory import Brand
from loyalty_api.models.loyalty import (
    CardStatus,
    LoyaltyCard,
    LoyaltyProgram,
    LoyaltyProgramType,
    LoyaltyReward,
    LoyaltyTier,
    LoyaltyTransaction,
    PointsRoundingRule,
    TransactionType,
)
from loyalty_api.observability.loyalty import LoyaltyObservabilityStore, get_loyalty_store

from .result import OperationResult

_UPDATABLE_PROGRAM_FIELDS = {
    "name",
    "description",
    "stamp_threshold",
    "points_conversion_rate",
    "daily_stamp_limit",
    "minimum_transaction_amount",
    "points_rounding",
    "minimum_points_for_redemption",
    "enrollment_bonus_points",
    "has_tiers",
    "starts_at",
    "ends_at",
    "expiration_policy",
    "terms_and_conditions",
}
_UPDATABLE_REWARD_FIELDS = {"title", "description", "required_value", "valid_from", "valid_to"}


@dataclass
class ProgramAnalytics:
    """Aggregated card and ledger figures for one program."""

    program_id: UUID
    program_type: LoyaltyProgramType
    is_active: bool
    total_cards: int
    cards_by_status: dict[str, int]
    transactions_by_type: dict[str, int]
    total_stamps_issued: int
    total_points_added: Decimal
    total_redemptions: int
    total_rewards: int
    active_rewards: int
    average_transactions_per_card: Decimal
    transactions_by_month: dict[str, int] = field(default_factory=dict)


class LoyaltyProgramService:
    """Manage loyalty program configuration and reward catalogs."""

    def __init__(self, db_session: AsyncSession, *, store: LoyaltyObservabilityStore | None = None) -> None:
        self._db = db_session
        self._store = store or get_loyalty_store()

    async def create_program(
        self,
        brand_id: UUID,
        *,
        name: str,
        program_type: LoyaltyProgramType,
        description: str | None = None,
        stamp_threshold: int | None = None,
        points_conversion_rate: Decimal | None = None,
        daily_stamp_limit: int | None = None,
        minimum_transaction_amount: Decimal | None = None,
        points_rounding: PointsRoundingRule | None = None,
        minimum_points_for_redemption: int | None = None,
        enrollment_bonus_points: int | None = None,
        has_tiers: bool = False,
        starts_at: datetime | None = None,
        ends_at: datetime | None = None,
        expiration_policy: ExpirationPolicy | None = None,
        terms_and_conditions: str | None = None,
        is_active: bool = True,
    ) -> OperationResult[LoyaltyProgram]:
        """Create a stamp or points program for an existing brand."""

        if await self._db.get(Brand, brand_id) is None:
            return self._fail("create_program", NotFoundError(f"Brand {brand_id} not found"))

        program = LoyaltyProgram(
            brand_id=brand_id,
            name=name,
            description=description,
            program_type=LoyaltyProgramType(program_type),
            stamp_threshold=stamp_threshold,
            points_conversion_rate=points_conversion_rate,
            daily_stamp_limit=daily_stamp_limit,
            minimum_transaction_amount=minimum_transaction_amount,
            points_rounding=PointsRoundingRule(points_rounding) if points_rounding is not None else None,
            minimum_points_for_redemption=minimum_points_for_redemption,
            enrollment_bonus_points=enrollment_bonus_points,
            has_tiers=has_tiers,
            starts_at=starts_at,
            ends_at=ends_at,
            terms_and_conditions=terms_and_conditions,
            is_active=is_active,
            rewards=[],
            tiers=[],
        )
        program.expiration_policy = expiration_policy
        try:
            program.ensure_consistent()
        except LoyaltyDomainError as exc:
            return self._fail("create_program", exc)

        self._db.add(program)
        await self._db.commit()
        logger.info(
            "Created loyalty program",
            program_id=str(program.id),
            brand_id=str(brand_id),
            program_type=program.program_type.value,
        )
        return OperationResult.success(program)

    async def get_program(self, program_id: UUID) -> OperationResult[LoyaltyProgram]:
        program = await self._load_program(program_id)
        if program is None:
            return self._fail("get_program", NotFoundError(f"Loyalty program {program_id} not found"))
        return OperationResult.success(program)

    async def list_brand_programs(
        self,
        brand_id: UUID,
        *,
        active_only: bool = False,
    ) -> OperationResult[list[LoyaltyProgram]]:
        if await self._db.get(Brand, brand_id) is None:
            return self._fail("list_brand_programs", NotFoundError(f"Brand {brand_id} not found"))
        stmt = (
            select(LoyaltyProgram)
            .options(selectinload(LoyaltyProgram.rewards), selectinload(LoyaltyProgram.tiers))
            .where(LoyaltyProgram.brand_id == brand_id)
        )
        if active_only:
            stmt = stmt.where(LoyaltyProgram.is_active.is_(True))
        result = await self._db.execute(stmt.order_by(LoyaltyProgram.created_at))
        return OperationResult.success(list(result.scalars().all()))

    async def update_program(self, program_id: UUID, **changes: Any) -> OperationResult[LoyaltyProgram]:
        """Apply partial changes; the program type is fixed at creation."""

        program = await self._load_program(program_id)
        if program is None:
            return self._fail("update_program", NotFoundError(f"Loyalty program {program_id} not found"))

        requested_type = changes.pop("program_type", None)
        if requested_type is not None and LoyaltyProgramType(requested_type) is not program.program_type:
            return self._fail("update_program", LoyaltyValidationError("Program type cannot be changed"))

        unknown = set(changes) - _UPDATABLE_PROGRAM_FIELDS
        if unknown:
            return self._fail(
                "update_program",
                LoyaltyValidationError(f"Unsupported program fields: {', '.join(sorted(unknown))}"),
            )

        if "has_tiers" in changes:
            changes["has_tiers"] = bool(changes["has_tiers"])
        for key, value in changes.items():
            setattr(program, key, value)
        try:
            program.ensure_consistent()
        except LoyaltyDomainError as exc:
            await self._db.rollback()
            return self._fail("update_program", exc)

        program.updated_at = utcnow()
        await self._db.commit()
        logger.info("Updated loyalty program", program_id=str(program_id), fields=sorted(changes))
        return OperationResult.success(program)

    async def set_program_active(self, program_id: UUID, active: bool) -> OperationResult[LoyaltyProgram]:
        program = await self._load_program(program_id)
        if program is None:
            return self._fail("set_program_active", NotFoundError(f"Loyalty program {program_id} not found"))
        program.is_active = active
        program.updated_at = utcnow()
        await self._db.commit()
        logger.info("Toggled loyalty program", program_id=str(program_id), is_active=active)
        return OperationResult.success(program)

    async def delete_program(self, program_id: UUID) -> OperationResult[None]:
        """Delete a program that never enrolled anyone; cards are never deleted."""

        program = await self._load_program(program_id)
        if program is None:
            return self._fail("delete_program", NotFoundError(f"Loyalty program {program_id} not found"))

        card_count = await self._db.scalar(
            select(func.count(LoyaltyCard.id)).where(LoyaltyCard.program_id == program_id)
        )
        if card_count:
            return self._fail(
                "delete_program",
                ConflictError(f"Program has {card_count} enrolled cards; deactivate it instead"),
            )

        await self._db.delete(program)
        await self._db.commit()
        logger.info("Deleted loyalty program", program_id=str(program_id))
        return OperationResult.success(None)

    async def create_reward(
        self,
        program_id: UUID,
        *,
        title: str,
        required_value: int,
        description: str | None = None,
        valid_from: datetime | None = None,
        valid_to: datetime | None = None,
        is_active: bool = True,
    ) -> OperationResult[LoyaltyReward]:
        program = await self._db.get(LoyaltyProgram, program_id)
        if program is None:
            return self._fail("create_reward", NotFoundError(f"Loyalty program {program_id} not found"))

        reward = LoyaltyReward(
            program_id=program_id,
            title=title,
            description=description,
            required_value=required_value,
            valid_from=valid_from,
            valid_to=valid_to,
            is_active=is_active,
        )
        try:
            reward.ensure_consistent()
        except LoyaltyDomainError as exc:
            return self._fail("create_reward", exc)

        self._db.add(reward)
        await self._db.commit()
        logger.info(
            "Created loyalty reward",
            reward_id=str(reward.id),
            program_id=str(program_id),
            required_value=required_value,
        )
        return OperationResult.success(reward)

    async def get_reward(self, reward_id: UUID) -> OperationResult[LoyaltyReward]:
        reward = await self._db.get(LoyaltyReward, reward_id)
        if reward is None:
            return self._fail("get_reward", NotFoundError(f"Reward {reward_id} not found"))
        return OperationResult.success(reward)

    async def list_program_rewards(
        self,
        program_id: UUID,
        *,
        available_at: datetime | None = None,
    ) -> OperationResult[list[LoyaltyReward]]:
        """List a program's rewards, optionally only those redeemable at ``available_at``."""

        if await self._db.get(LoyaltyProgram, program_id) is None:
            return self._fail("list_program_rewards", NotFoundError(f"Loyalty program {program_id} not found"))
        stmt = (
            select(LoyaltyReward)
            .where(LoyaltyReward.program_id == program_id)
            .order_by(LoyaltyReward.required_value, LoyaltyReward.created_at)
        )
        result = await self._db.execute(stmt)
        rewards = list(result.scalars().all())
        if available_at is not None:
            rewards = [reward for reward in rewards if reward.is_valid_at(available_at)]
        return OperationResult.success(rewards)

    async def update_reward(self, reward_id: UUID, **changes: Any) -> OperationResult[LoyaltyReward]:
        reward = await self._db.get(LoyaltyReward, reward_id)
        if reward is None:
            return self._fail("update_reward", NotFoundError(f"Reward {reward_id} not found"))

        unknown = set(changes) - _UPDATABLE_REWARD_FIELDS
        if unknown:
            return self._fail(
                "update_reward",
                LoyaltyValidationError(f"Unsupported reward fields: {', '.join(sorted(unknown))}"),
            )

        for key, value in changes.items():
            setattr(reward, key, value)
        try:
            reward.ensure_consistent()
        except LoyaltyDomainError as exc:
            await self._db.rollback()
            return self._fail("update_reward", exc)

        reward.updated_at = utcnow()
        await self._db.commit()
        logger.info("Updated loyalty reward", reward_id=str(reward_id), fields=sorted(changes))
        return OperationResult.success(reward)

    async def set_reward_active(self, reward_id: UUID, active: bool) -> OperationResult[LoyaltyReward]:
        reward = await self._db.get(LoyaltyReward, reward_id)
        if reward is None:
            return self._fail("set_reward_active", NotFoundError(f"Reward {reward_id} not found"))
        reward.is_active = active
        reward.updated_at = utcnow()
        await self._db.commit()
        logger.info("Toggled loyalty reward", reward_id=str(reward_id), is_active=active)
        return OperationResult.success(reward)

    async def remove_reward(self, program_id: UUID, reward_id: UUID) -> OperationResult[None]:
        reward = await self._db.get(LoyaltyReward, reward_id)
        if reward is None or reward.program_id != program_id:
            return self._fail(
                "remove_reward",
                NotFoundError(f"Reward {reward_id} not found in program {program_id}"),
            )
        await self._db.delete(reward)
        await self._db.commit()
        logger.info("Removed loyalty reward", reward_id=str(reward_id), program_id=str(program_id))
        return OperationResult.success(None)

    async def create_tier(
        self,
        program_id: UUID,
        *,
        name: str,
        point_threshold: int,
        point_multiplier: Decimal = Decimal("1"),
        tier_order: int = 0,
        benefits: list[str] | None = None,
    ) -> OperationResult[LoyaltyTier]:
        """Add a tier to a tiered points program."""

        program = await self._load_program(program_id)
        if program is None:
            return self._fail("create_tier", NotFoundError(f"Loyalty program {program_id} not found"))

        try:
            tier = program.create_tier(
                name,
                point_threshold,
                point_multiplier=Decimal(point_multiplier),
                tier_order=tier_order,
                benefits=benefits,
            )
        except LoyaltyDomainError as exc:
            return self._fail("create_tier", exc)

        await self._db.commit()
        logger.info(
            "Created loyalty tier",
            tier_id=str(tier.id),
            program_id=str(program_id),
            point_threshold=point_threshold,
            point_multiplier=str(point_multiplier),
        )
        return OperationResult.success(tier)

    async def list_program_tiers(self, program_id: UUID) -> OperationResult[list[LoyaltyTier]]:
        program = await self._load_program(program_id)
        if program is None:
            return self._fail("list_program_tiers", NotFoundError(f"Loyalty program {program_id} not found"))
        return OperationResult.success(list(program.tiers))

    async def remove_tier(self, program_id: UUID, tier_id: UUID) -> OperationResult[None]:
        program = await self._load_program(program_id)
        tier = next((tier for tier in program.tiers if tier.id == tier_id), None) if program else None
        if tier is None:
            return self._fail(
                "remove_tier",
                NotFoundError(f"Tier {tier_id} not found in program {program_id}"),
            )
        program.tiers.remove(tier)
        await self._db.commit()
        logger.info("Removed loyalty tier", tier_id=str(tier_id), program_id=str(program_id))
        return OperationResult.success(None)

    async def get_program_analytics(self, program_id: UUID) -> OperationResult[ProgramAnalytics]:
        """Summarize cards, ledger activity and rewards with SQL aggregates."""

        program = await self._db.get(LoyaltyProgram, program_id)
        if program is None:
            return self._fail("get_program_analytics", NotFoundError(f"Loyalty program {program_id} not found"))

        status_rows = await self._db.execute(
            select(LoyaltyCard.status, func.count(LoyaltyCard.id))
            .where(LoyaltyCard.program_id == program_id)
            .group_by(LoyaltyCard.status)
        )
        cards_by_status = {status.value: 0 for status in CardStatus}
        for status, count in status_rows.all():
            cards_by_status[CardStatus(status).value] = int(count)
        total_cards = sum(cards_by_status.values())

        program_transactions = (
            select(LoyaltyTransaction)
            .join(LoyaltyCard, LoyaltyCard.id == LoyaltyTransaction.card_id)
            .where(LoyaltyCard.program_id == program_id)
            .subquery()
        )
        type_rows = await self._db.execute(
            select(
                program_transactions.c.type,
                func.count(program_transactions.c.id),
                func.coalesce(func.sum(program_transactions.c.quantity), 0),
                func.coalesce(func.sum(program_transactions.c.points_amount), 0),
            ).group_by(program_transactions.c.type)
        )
        transactions_by_type: dict[str, int] = {}
        total_stamps_issued = 0
        total_points_added = Decimal("0")
        for transaction_type, count, quantity_sum, points_sum in type_rows.all():
            kind = TransactionType(transaction_type)
            transactions_by_type[kind.value] = int(count)
            if kind is TransactionType.STAMP_ISSUED:
                total_stamps_issued = int(quantity_sum or 0)
            elif kind is TransactionType.POINTS_ADDED:
                total_points_added = Decimal(str(points_sum or 0))

        month_bucket = self._month_bucket(program_transactions.c.timestamp)
        month_rows = await self._db.execute(
            select(month_bucket, func.count(program_transactions.c.id))
            .group_by(month_bucket)
            .order_by(month_bucket)
        )
        transactions_by_month = {str(month): int(count) for month, count in month_rows.all()}

        reward_row = (
            await self._db.execute(
                select(
                    func.count(LoyaltyReward.id),
                    func.coalesce(func.sum(case((LoyaltyReward.is_active.is_(True), 1), else_=0)), 0),
                ).where(LoyaltyReward.program_id == program_id)
            )
        ).one()
        total_transactions = sum(transactions_by_type.values())
        average = (
            (Decimal(total_transactions) / Decimal(total_cards)).quantize(Decimal("0.01"))
            if total_cards
            else Decimal("0.00")
        )

        analytics = ProgramAnalytics(
            program_id=program.id,
            program_type=program.program_type,
            is_active=bool(program.is_active),
            total_cards=total_cards,
            cards_by_status=cards_by_status,
            transactions_by_type=transactions_by_type,
            total_stamps_issued=total_stamps_issued,
            total_points_added=total_points_added,
            total_redemptions=transactions_by_type.get(TransactionType.REWARD_REDEEMED.value, 0),
            total_rewards=int(reward_row[0]),
            active_rewards=int(reward_row[1] or 0),
            average_transactions_per_card=average,
            transactions_by_month=transactions_by_month,
        )
        return OperationResult.success(analytics)

    def _month_bucket(self, column: Any) -> Any:
        if self._db.get_bind().dialect.name == "sqlite":
            return func.strftime("%Y-%m", column)
        return func.to_char(column, "YYYY-MM")

    async def _load_program(self, program_id: UUID) -> LoyaltyProgram | None:
        stmt = (
            select(LoyaltyProgram)
            .options(selectinload(LoyaltyProgram.rewards), selectinload(LoyaltyProgram.tiers))
            .where(LoyaltyProgram.id == program_id)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    def _fail(self, operation: str, error: LoyaltyDomainError) -> OperationResult[Any]:
        self._store.record_failure(operation, error.kind.value)
        logger.warning(
            "Loyalty program operation rejected",
            operation=operation,
            error_kind=error.kind.value,
            reason=error.message,
        )
        return OperationResult.from_error(error)


__all__ = ["LoyaltyProgramService", "ProgramAnalytics"]
