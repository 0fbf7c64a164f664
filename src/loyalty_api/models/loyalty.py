"""Loyalty program, card and ledger models."""

from __future__ import annotations

import secrets
from datetime import datetime
from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_EVEN, Decimal
from enum import Enum
from typing import Any, Iterable
from uuid import UUID as UUIDType, uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    JSON,
    func,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from loyalty_api.db.base import Base
from loyalty_api.domain.loyalty.clock import ensure_utc, utcnow
from loyalty_api.domain.loyalty.errors import (
    ConflictError,
    InsufficientBalanceError,
    InvalidOperationError,
    LoyaltyValidationError,
    RewardNotEligibleError,
)
from loyalty_api.domain.loyalty.expiration import ExpirationPeriod, ExpirationPolicy

_CENTS = Decimal("0.01")


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


def _require_cents(value: Decimal, label: str) -> Decimal:
    # balances and amounts are stored with two decimal places
    if value != value.quantize(_CENTS):
        raise LoyaltyValidationError(f"{label} cannot have more than two decimal places")
    return value


class LoyaltyProgramType(str, Enum):
    """Accrual mechanics offered by a program."""

    STAMP = "stamp"
    POINTS = "points"


class ExpirationType(str, Enum):
    """Stored shape of a program expiration policy."""

    DAYS = "days"
    MONTHS = "months"
    YEARS = "years"
    FIXED_DATE = "fixed_date"


class PointsRoundingRule(str, Enum):
    """How computed points are brought to whole points."""

    ROUND_DOWN = "round_down"
    ROUND_UP = "round_up"
    ROUND_TO_NEAREST = "round_to_nearest"


_ROUNDING_MODES = {
    PointsRoundingRule.ROUND_DOWN: ROUND_FLOOR,
    PointsRoundingRule.ROUND_UP: ROUND_CEILING,
    PointsRoundingRule.ROUND_TO_NEAREST: ROUND_HALF_EVEN,
}


class LoyaltyProgram(Base):
    """Stamp or points program owned by a brand."""

    __tablename__ = "loyalty_programs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    brand_id = Column(UUID(as_uuid=True), ForeignKey("brands.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    program_type = Column(
        "type", SqlEnum(LoyaltyProgramType, name="loyalty_program_type", values_callable=_enum_values),
        nullable=False,
    )
    stamp_threshold = Column(Integer, nullable=True)
    points_conversion_rate = Column(Numeric(12, 4), nullable=True)
    daily_stamp_limit = Column(Integer, nullable=True)
    minimum_transaction_amount = Column(Numeric(12, 2), nullable=True)
    points_rounding = Column(
        SqlEnum(PointsRoundingRule, name="loyalty_points_rounding", values_callable=_enum_values),
        nullable=True,
    )
    minimum_points_for_redemption = Column(Integer, nullable=True)
    enrollment_bonus_points = Column(Integer, nullable=True)
    has_tiers = Column(Boolean, nullable=False, default=False)
    starts_at = Column(DateTime(timezone=True), nullable=True)
    ends_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    expiration_type = Column(
        SqlEnum(ExpirationType, name="loyalty_expiration_type", values_callable=_enum_values),
        nullable=True,
    )
    expiration_value = Column(Integer, nullable=True)
    expiration_day = Column(Integer, nullable=True)
    expiration_month = Column(Integer, nullable=True)
    terms_and_conditions = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False)

    brand = relationship("Brand", back_populates="programs")
    rewards = relationship(
        "LoyaltyReward",
        back_populates="program",
        cascade="all, delete-orphan",
        order_by="LoyaltyReward.created_at",
    )
    tiers = relationship(
        "LoyaltyTier",
        back_populates="program",
        cascade="all, delete-orphan",
        order_by="LoyaltyTier.tier_order",
    )

    @property
    def expiration_policy(self) -> ExpirationPolicy | None:
        if self.expiration_type is None:
            return None
        if self.expiration_type is ExpirationType.FIXED_DATE:
            return ExpirationPolicy.absolute(self.expiration_day, self.expiration_month)
        return ExpirationPolicy.relative(ExpirationPeriod(self.expiration_type.value), self.expiration_value)

    @expiration_policy.setter
    def expiration_policy(self, policy: ExpirationPolicy | None) -> None:
        self.expiration_type = None
        self.expiration_value = None
        self.expiration_day = None
        self.expiration_month = None
        if policy is None:
            return
        if policy.is_absolute:
            self.expiration_type = ExpirationType.FIXED_DATE
            self.expiration_day = policy.day
            self.expiration_month = policy.month
        else:
            self.expiration_type = ExpirationType(policy.period.value)
            self.expiration_value = policy.value

    @property
    def is_stamp_program(self) -> bool:
        return self.program_type is LoyaltyProgramType.STAMP

    def ensure_consistent(self) -> None:
        """Validate the type-specific configuration and clear foreign fields."""

        if not self.name or not self.name.strip():
            raise LoyaltyValidationError("Program name is required")
        starts_at = ensure_utc(self.starts_at)
        ends_at = ensure_utc(self.ends_at)
        if starts_at and ends_at and starts_at > ends_at:
            raise LoyaltyValidationError("Program start date is after its end date")

        if self.is_stamp_program:
            if self.stamp_threshold is None or self.stamp_threshold <= 0:
                raise LoyaltyValidationError("Stamp threshold must be greater than zero")
            if self.daily_stamp_limit is not None and self.daily_stamp_limit <= 0:
                raise LoyaltyValidationError("Daily stamp limit must be greater than zero")
            if self.has_tiers:
                raise LoyaltyValidationError("Tiers are only supported for points programs")
            self.points_conversion_rate = None
            self.minimum_transaction_amount = None
            self.points_rounding = None
            self.minimum_points_for_redemption = None
            self.enrollment_bonus_points = None
            return

        if self.points_conversion_rate is None or Decimal(self.points_conversion_rate) <= 0:
            raise LoyaltyValidationError("Points conversion rate must be greater than zero")
        if self.minimum_transaction_amount is not None and Decimal(self.minimum_transaction_amount) < 0:
            raise LoyaltyValidationError("Minimum transaction amount cannot be negative")
        if self.minimum_points_for_redemption is not None and self.minimum_points_for_redemption < 0:
            raise LoyaltyValidationError("Minimum points for redemption cannot be negative")
        if self.enrollment_bonus_points is not None and self.enrollment_bonus_points < 0:
            raise LoyaltyValidationError("Enrollment bonus points cannot be negative")
        if not self.has_tiers and self.tiers:
            raise LoyaltyValidationError("Remove the program tiers before disabling tiers")
        if self.points_rounding is None:
            self.points_rounding = PointsRoundingRule.ROUND_DOWN
        self.stamp_threshold = None
        self.daily_stamp_limit = None

    def is_open_for_enrollment(self, moment: datetime) -> bool:
        """Whether ``moment`` falls inside the program's start/end window."""

        moment = ensure_utc(moment)
        starts_at = ensure_utc(self.starts_at)
        ends_at = ensure_utc(self.ends_at)
        if starts_at is not None and moment < starts_at:
            return False
        if ends_at is not None and moment > ends_at:
            return False
        return True

    def create_tier(
        self,
        name: str,
        point_threshold: int,
        *,
        point_multiplier: Decimal = Decimal("1"),
        tier_order: int = 0,
        benefits: Iterable[str] | None = None,
    ) -> "LoyaltyTier":
        if self.program_type is not LoyaltyProgramType.POINTS:
            raise InvalidOperationError("Tiers are only supported for points programs")
        if not self.has_tiers:
            raise InvalidOperationError("Cannot create tiers for a program without tiers")
        if any(tier.tier_order == tier_order for tier in self.tiers):
            raise ConflictError(f"A tier with order {tier_order} already exists")

        tier = LoyaltyTier(
            id=uuid4(),
            program_id=self.id,
            name=name,
            point_threshold=point_threshold,
            point_multiplier=point_multiplier,
            tier_order=tier_order,
            benefits=[],
        )
        for benefit in benefits or ():
            tier.add_benefit(benefit)
        tier.ensure_consistent()
        self.tiers.append(tier)
        return tier

    def tier_for_points(self, points_balance: Decimal) -> "LoyaltyTier | None":
        """Highest tier whose threshold the balance has reached."""

        if not self.has_tiers or self.program_type is not LoyaltyProgramType.POINTS:
            return None
        balance = Decimal(points_balance or 0)
        qualifying = [tier for tier in self.tiers if tier.point_threshold <= balance]
        return max(qualifying, key=lambda tier: tier.point_threshold, default=None)

    def calculate_expiration_date(self, issued_at: datetime) -> datetime | None:
        policy = self.expiration_policy
        if policy is None:
            return None
        return policy.calculate_expiration_date(issued_at)

    def is_valid_for_points_issuance(self, transaction_amount: Decimal) -> bool:
        if self.program_type is not LoyaltyProgramType.POINTS:
            return False
        if self.minimum_transaction_amount is None:
            return True
        return Decimal(transaction_amount) >= Decimal(self.minimum_transaction_amount)

    def calculate_points(self, transaction_amount: Decimal, tier: "LoyaltyTier | None" = None) -> Decimal:
        """Points earned for a purchase, rounded to whole points by the program rule.

        A tier multiplier applies only when the program has tiers.
        """

        if self.program_type is not LoyaltyProgramType.POINTS:
            raise InvalidOperationError("Points can only be calculated for points programs")
        if Decimal(transaction_amount) < 0:
            raise LoyaltyValidationError("Transaction amount cannot be negative")
        if not self.is_valid_for_points_issuance(transaction_amount):
            raise InvalidOperationError(
                f"Transaction amount is below the program minimum of {self.minimum_transaction_amount}"
            )
        raw = Decimal(transaction_amount) * Decimal(self.points_conversion_rate)
        if tier is not None and self.has_tiers:
            raw *= Decimal(tier.point_multiplier)
        rule = self.points_rounding or PointsRoundingRule.ROUND_DOWN
        return raw.to_integral_value(rounding=_ROUNDING_MODES[PointsRoundingRule(rule)])


class LoyaltyTier(Base):
    """Points tier reached at a balance threshold, earning with a multiplier."""

    __tablename__ = "loyalty_tiers"
    __table_args__ = (
        UniqueConstraint("program_id", "tier_order", name="uq_loyalty_tiers_program_order"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    program_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loyalty_programs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String, nullable=False)
    point_threshold = Column(Integer, nullable=False)
    point_multiplier = Column(Numeric(6, 3), nullable=False, default=Decimal("1"))
    tier_order = Column(Integer, nullable=False, default=0)
    benefits = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False)

    program = relationship("LoyaltyProgram", back_populates="tiers")

    def ensure_consistent(self) -> None:
        if not self.name or not self.name.strip():
            raise LoyaltyValidationError("Tier name is required")
        if self.point_threshold is None or self.point_threshold < 0:
            raise LoyaltyValidationError("Point threshold cannot be negative")
        if self.point_multiplier is None or Decimal(self.point_multiplier) <= 0:
            raise LoyaltyValidationError("Point multiplier must be greater than zero")

    def add_benefit(self, benefit: str) -> None:
        if not benefit or not benefit.strip():
            raise LoyaltyValidationError("Benefit description is required")
        benefits = list(self.benefits or [])
        if benefit not in benefits:
            # reassign so the JSON column registers the change
            self.benefits = benefits + [benefit]


class LoyaltyReward(Base):
    """Reward redeemable with stamps or points of a single program."""

    __tablename__ = "loyalty_rewards"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    program_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loyalty_programs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    required_value = Column(Integer, nullable=False)
    valid_from = Column(DateTime(timezone=True), nullable=True)
    valid_to = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False)

    program = relationship("LoyaltyProgram", back_populates="rewards")

    def ensure_consistent(self) -> None:
        if not self.title or not self.title.strip():
            raise LoyaltyValidationError("Reward title is required")
        if self.required_value is None or self.required_value <= 0:
            raise LoyaltyValidationError("Required value must be greater than zero")
        valid_from = ensure_utc(self.valid_from)
        valid_to = ensure_utc(self.valid_to)
        if valid_from and valid_to and valid_from > valid_to:
            raise LoyaltyValidationError("Reward validity window starts after it ends")

    def is_valid_at(self, moment: datetime) -> bool:
        if not self.is_active:
            return False
        moment = ensure_utc(moment)
        valid_from = ensure_utc(self.valid_from)
        valid_to = ensure_utc(self.valid_to)
        if valid_from is not None and moment < valid_from:
            return False
        if valid_to is not None and moment > valid_to:
            return False
        return True


class CardStatus(str, Enum):
    """Lifecycle states for loyalty cards."""

    ACTIVE = "active"
    SUSPENDED = "suspended"
    EXPIRED = "expired"


class TransactionType(str, Enum):
    """Ledger entry kinds appended by card mutations."""

    STAMP_ISSUED = "stamp_issued"
    POINTS_ADDED = "points_added"
    REWARD_REDEEMED = "reward_redeemed"
    STAMP_REDEEMED = "stamp_redeemed"
    POINTS_REDEEMED = "points_redeemed"


def generate_qr_code(prefix: str = "LC") -> str:
    return f"{prefix}-{secrets.token_hex(8).upper()}"


class LoyaltyCard(Base):
    """A customer's membership in one loyalty program."""

    __tablename__ = "loyalty_cards"
    __table_args__ = (
        UniqueConstraint("customer_id", "program_id", name="uq_loyalty_cards_customer_program"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    program_id = Column(UUID(as_uuid=True), ForeignKey("loyalty_programs.id"), nullable=False, index=True)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id"), nullable=False, index=True)
    card_type = Column(
        "type", SqlEnum(LoyaltyProgramType, name="loyalty_program_type", values_callable=_enum_values),
        nullable=False,
    )
    stamps_collected = Column(Integer, nullable=False, default=0)
    points_balance = Column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    status = Column(
        SqlEnum(CardStatus, name="loyalty_card_status", values_callable=_enum_values),
        nullable=False,
        default=CardStatus.ACTIVE,
        index=True,
    )
    qr_code = Column(String, nullable=False, unique=True, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    __mapper_args__ = {"version_id_col": version}

    program = relationship("LoyaltyProgram")
    customer = relationship("Customer", back_populates="cards")
    transactions = relationship(
        "LoyaltyTransaction",
        back_populates="card",
        cascade="all, delete-orphan",
        order_by="LoyaltyTransaction.timestamp",
    )

    @classmethod
    def enroll(
        cls,
        program: LoyaltyProgram,
        customer_id: UUIDType,
        *,
        now: datetime | None = None,
        qr_code_prefix: str = "LC",
    ) -> "LoyaltyCard":
        """Open a new active card for ``program``.

        Points programs with an enrollment bonus credit it straight away as a
        ``points_added`` ledger entry without a store.
        """

        now = now or utcnow()
        card = cls(
            id=uuid4(),
            program_id=program.id,
            customer_id=customer_id,
            card_type=program.program_type,
            stamps_collected=0,
            points_balance=Decimal("0"),
            status=CardStatus.ACTIVE,
            qr_code=generate_qr_code(qr_code_prefix),
            expires_at=program.calculate_expiration_date(now),
            created_at=now,
            updated_at=now,
            transactions=[],
        )
        bonus = program.enrollment_bonus_points or 0
        if program.program_type is LoyaltyProgramType.POINTS and bonus > 0:
            LoyaltyTransaction.record(
                card,
                TransactionType.POINTS_ADDED,
                store_id=None,
                points_amount=Decimal(bonus),
                timestamp=now,
                metadata={"reason": "enrollment_bonus"},
            )
            card.points_balance = Decimal(bonus)
        return card

    def ensure_accepts(self, card_type: LoyaltyProgramType, action: str) -> None:
        """Raise unless the card is of ``card_type`` and currently active."""

        if self.card_type is not card_type:
            raise InvalidOperationError(f"Cannot {action} on a {self.card_type.value} card")
        self._require_active(f"Cannot {action} on a {self.status.value} card")

    def _require_active(self, message: str) -> None:
        if self.status is not CardStatus.ACTIVE:
            raise InvalidOperationError(message)

    @staticmethod
    def _require_store(store_id: UUIDType | None) -> None:
        if store_id is None:
            raise LoyaltyValidationError("Store ID is required")

    def issue_stamps(
        self,
        quantity: int,
        *,
        store_id: UUIDType,
        staff_id: UUIDType | None = None,
        pos_transaction_id: str | None = None,
        now: datetime | None = None,
    ) -> "LoyaltyTransaction":
        self.ensure_accepts(LoyaltyProgramType.STAMP, "issue stamps")
        if quantity is None or quantity <= 0:
            raise LoyaltyValidationError("Quantity must be greater than zero")
        self._require_store(store_id)

        now = now or utcnow()
        transaction = LoyaltyTransaction.record(
            self,
            TransactionType.STAMP_ISSUED,
            quantity=quantity,
            store_id=store_id,
            staff_id=staff_id,
            pos_transaction_id=pos_transaction_id,
            timestamp=now,
        )
        self.stamps_collected = (self.stamps_collected or 0) + quantity
        self.updated_at = now
        return transaction

    def add_points(
        self,
        points: Decimal,
        transaction_amount: Decimal,
        *,
        store_id: UUIDType,
        staff_id: UUIDType | None = None,
        pos_transaction_id: str | None = None,
        now: datetime | None = None,
    ) -> "LoyaltyTransaction":
        self.ensure_accepts(LoyaltyProgramType.POINTS, "add points")
        points = Decimal(points)
        transaction_amount = Decimal(transaction_amount)
        if points <= 0:
            raise LoyaltyValidationError("Points amount must be greater than zero")
        if transaction_amount < 0:
            raise LoyaltyValidationError("Transaction amount cannot be negative")
        _require_cents(points, "Points amount")
        _require_cents(transaction_amount, "Transaction amount")
        self._require_store(store_id)

        now = now or utcnow()
        transaction = LoyaltyTransaction.record(
            self,
            TransactionType.POINTS_ADDED,
            points_amount=points,
            transaction_amount=transaction_amount,
            store_id=store_id,
            staff_id=staff_id,
            pos_transaction_id=pos_transaction_id,
            timestamp=now,
        )
        self.points_balance = Decimal(self.points_balance or 0) + points
        self.updated_at = now
        return transaction

    def redeem_reward(
        self,
        reward: LoyaltyReward,
        *,
        store_id: UUIDType,
        staff_id: UUIDType | None = None,
        now: datetime | None = None,
        minimum_points_balance: int | None = None,
    ) -> "LoyaltyTransaction":
        now = now or utcnow()
        self._require_active("Cannot redeem rewards with an inactive card")
        if reward.program_id != self.program_id:
            raise RewardNotEligibleError("Cannot redeem a reward from a different program")
        if not reward.is_active:
            raise RewardNotEligibleError("Cannot redeem an inactive reward")
        if not reward.is_valid_at(now):
            raise RewardNotEligibleError("Reward is not valid at this time")
        self._require_store(store_id)

        required = reward.required_value
        if self.card_type is LoyaltyProgramType.STAMP:
            available = self.stamps_collected or 0
            if available < required:
                raise InsufficientBalanceError(
                    "Insufficient stamps for reward redemption", required=required, available=available
                )
            consumed: dict[str, Any] = {"quantity": required}
        else:
            available = Decimal(self.points_balance or 0)
            if minimum_points_balance and available < Decimal(minimum_points_balance):
                raise InsufficientBalanceError(
                    "Points balance is below the program redemption minimum",
                    required=minimum_points_balance,
                    available=available,
                )
            if available < Decimal(required):
                raise InsufficientBalanceError(
                    "Insufficient points for reward redemption", required=required, available=available
                )
            consumed = {"points_amount": Decimal(required)}

        transaction = LoyaltyTransaction.record(
            self,
            TransactionType.REWARD_REDEEMED,
            reward_id=reward.id,
            store_id=store_id,
            staff_id=staff_id,
            timestamp=now,
            metadata={"reward_title": reward.title},
            **consumed,
        )
        if self.card_type is LoyaltyProgramType.STAMP:
            self.stamps_collected = (self.stamps_collected or 0) - required
        else:
            self.points_balance = Decimal(self.points_balance or 0) - Decimal(required)
        self.updated_at = now
        return transaction

    def suspend(self, *, now: datetime | None = None) -> None:
        if self.status is not CardStatus.ACTIVE:
            raise InvalidOperationError(f"Cannot suspend a card that is {self.status.value}")
        self.status = CardStatus.SUSPENDED
        self.updated_at = now or utcnow()

    def reactivate(self, *, now: datetime | None = None) -> None:
        if self.status is not CardStatus.SUSPENDED:
            raise InvalidOperationError(f"Cannot reactivate a card that is {self.status.value}")
        self.status = CardStatus.ACTIVE
        self.updated_at = now or utcnow()

    def is_due_for_expiry(self, now: datetime) -> bool:
        expires_at = ensure_utc(self.expires_at)
        return expires_at is not None and ensure_utc(now) >= expires_at

    def expire(self, now: datetime | None = None) -> bool:
        """Mark the card expired; returns False when it already was."""

        now = now or utcnow()
        if self.status is CardStatus.EXPIRED:
            return False
        if not self.is_due_for_expiry(now):
            raise InvalidOperationError("Card has not reached its expiration date")
        self.status = CardStatus.EXPIRED
        self.updated_at = now
        return True

    def stamps_issued_today(self, now: datetime | None = None) -> int:
        """Stamps issued on the UTC calendar day of ``now``."""

        if self.card_type is not LoyaltyProgramType.STAMP:
            return 0
        today = ensure_utc(now or utcnow()).date()
        return sum(
            transaction.quantity or 0
            for transaction in self.transactions
            if transaction.transaction_type is TransactionType.STAMP_ISSUED
            and ensure_utc(transaction.timestamp).date() == today
        )

    def regenerate_qr_code(self, *, prefix: str = "LC", now: datetime | None = None) -> str:
        self.qr_code = generate_qr_code(prefix)
        self.updated_at = now or utcnow()
        return self.qr_code


class LoyaltyTransaction(Base):
    """Immutable ledger entry appended by a card mutation."""

    __tablename__ = "transactions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    card_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loyalty_cards.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    transaction_type = Column(
        "type", SqlEnum(TransactionType, name="loyalty_transaction_type", values_callable=_enum_values),
        nullable=False,
    )
    quantity = Column(Integer, nullable=True)
    points_amount = Column(Numeric(14, 2), nullable=True)
    transaction_amount = Column(Numeric(12, 2), nullable=True)
    reward_id = Column(UUID(as_uuid=True), ForeignKey("loyalty_rewards.id", ondelete="SET NULL"), nullable=True)
    store_id = Column(UUID(as_uuid=True), ForeignKey("stores.id"), nullable=True, index=True)
    staff_id = Column(UUID(as_uuid=True), nullable=True)
    pos_transaction_id = Column(String, nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    metadata_json = Column("metadata", JSON, nullable=False, default=dict)

    card = relationship("LoyaltyCard", back_populates="transactions")

    @classmethod
    def record(
        cls,
        card: LoyaltyCard,
        transaction_type: TransactionType,
        *,
        store_id: UUIDType | None,
        quantity: int | None = None,
        points_amount: Decimal | None = None,
        transaction_amount: Decimal | None = None,
        reward_id: UUIDType | None = None,
        staff_id: UUIDType | None = None,
        pos_transaction_id: str | None = None,
        timestamp: datetime | None = None,
        metadata: dict[str, str] | None = None,
    ) -> "LoyaltyTransaction":
        """Append a ledger entry to ``card``; entries are never updated afterwards."""

        transaction = cls(
            id=uuid4(),
            card_id=card.id,
            transaction_type=transaction_type,
            quantity=quantity,
            points_amount=points_amount,
            transaction_amount=transaction_amount,
            reward_id=reward_id,
            store_id=store_id,
            staff_id=staff_id,
            pos_transaction_id=pos_transaction_id,
            timestamp=timestamp or utcnow(),
            metadata_json={key: str(value) for key, value in (metadata or {}).items()},
        )
        card.transactions.append(transaction)
        return transaction


class LoyaltyOutboxEvent(Base):
    """Domain event persisted with the state change that produced it."""

    __tablename__ = "loyalty_outbox_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    event_type = Column(String, nullable=False, index=True)
    aggregate_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    payload = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    dispatched_at = Column(DateTime(timezone=True), nullable=True, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)


__all__ = [
    "CardStatus",
    "ExpirationType",
    "LoyaltyCard",
    "LoyaltyOutboxEvent",
    "LoyaltyProgram",
    "LoyaltyProgramType",
    "LoyaltyReward",
    "LoyaltyTier",
    "LoyaltyTransaction",
    "PointsRoundingRule",
    "TransactionType",
    "generate_qr_code",
]
