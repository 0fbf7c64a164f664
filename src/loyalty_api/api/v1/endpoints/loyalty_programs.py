"""API endpoints for loyalty programs and reward catalogs."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_api.api.dependencies.security import require_staff_api_key
from loyalty_api.api.errors import unwrap_result
from loyalty_api.db.session import get_session
from loyalty_api.domain.loyalty.clock import ensure_utc, utcnow
from loyalty_api.domain.loyalty.expiration import ExpirationPeriod, ExpirationPolicy
from loyalty_api.models.loyalty import (
    LoyaltyProgram,
    LoyaltyProgramType,
    LoyaltyReward,
    LoyaltyTier,
    PointsRoundingRule,
)
from loyalty_api.services.loyalty import LoyaltyProgramService


router = APIRouter(prefix="/loyalty", tags=["Loyalty programs"])


class ExpirationPolicyPayload(BaseModel):
    period: Optional[ExpirationPeriod] = Field(None, description="Unit for relative expiry")
    value: Optional[int] = Field(None, description="Number of periods after enrollment")
    day: Optional[int] = Field(None, description="Day of month for fixed-date expiry")
    month: Optional[int] = Field(None, description="Month for fixed-date expiry")

    def to_policy(self) -> ExpirationPolicy:
        return ExpirationPolicy(period=self.period, value=self.value, day=self.day, month=self.month)

    @classmethod
    def from_policy(cls, policy: ExpirationPolicy | None) -> Optional["ExpirationPolicyPayload"]:
        if policy is None:
            return None
        return cls(period=policy.period, value=policy.value, day=policy.day, month=policy.month)


class ProgramCreateRequest(BaseModel):
    brandId: UUID
    name: str
    type: LoyaltyProgramType
    description: Optional[str] = None
    stampThreshold: Optional[int] = None
    pointsConversionRate: Optional[Decimal] = None
    dailyStampLimit: Optional[int] = None
    minimumTransactionAmount: Optional[Decimal] = None
    pointsRounding: Optional[PointsRoundingRule] = None
    minimumPointsForRedemption: Optional[int] = None
    enrollmentBonusPoints: Optional[int] = None
    hasTiers: bool = False
    startsAt: Optional[datetime] = None
    endsAt: Optional[datetime] = None
    expiration: Optional[ExpirationPolicyPayload] = None
    termsAndConditions: Optional[str] = None
    isActive: bool = True


class ProgramUpdateRequest(BaseModel):
    name: Optional[str] = None
    type: Optional[LoyaltyProgramType] = None
    description: Optional[str] = None
    stampThreshold: Optional[int] = None
    pointsConversionRate: Optional[Decimal] = None
    dailyStampLimit: Optional[int] = None
    minimumTransactionAmount: Optional[Decimal] = None
    pointsRounding: Optional[PointsRoundingRule] = None
    minimumPointsForRedemption: Optional[int] = None
    enrollmentBonusPoints: Optional[int] = None
    hasTiers: Optional[bool] = None
    startsAt: Optional[datetime] = None
    endsAt: Optional[datetime] = None
    expiration: Optional[ExpirationPolicyPayload] = None
    termsAndConditions: Optional[str] = None


class TierCreateRequest(BaseModel):
    name: str
    pointThreshold: int = Field(..., description="Points balance at which the tier starts")
    pointMultiplier: Decimal = Field(Decimal("1"), description="Multiplier applied to computed points")
    tierOrder: int = 0
    benefits: List[str] = Field(default_factory=list)


class TierResponse(BaseModel):
    id: UUID
    programId: UUID
    name: str
    pointThreshold: int
    pointMultiplier: float
    tierOrder: int
    benefits: List[str]


class ProgramResponse(BaseModel):
    id: UUID
    brandId: UUID
    name: str
    description: Optional[str]
    type: LoyaltyProgramType
    stampThreshold: Optional[int]
    pointsConversionRate: Optional[float]
    dailyStampLimit: Optional[int]
    minimumTransactionAmount: Optional[float]
    pointsRounding: Optional[PointsRoundingRule]
    minimumPointsForRedemption: Optional[int]
    enrollmentBonusPoints: Optional[int]
    hasTiers: bool
    tiers: List[TierResponse]
    startsAt: Optional[datetime]
    endsAt: Optional[datetime]
    expiration: Optional[ExpirationPolicyPayload]
    termsAndConditions: Optional[str]
    isActive: bool
    createdAt: datetime
    updatedAt: datetime


class ProgramAnalyticsResponse(BaseModel):
    programId: UUID
    type: LoyaltyProgramType
    isActive: bool
    totalCards: int
    cardsByStatus: dict[str, int]
    transactionsByType: dict[str, int]
    totalStampsIssued: int
    totalPointsAdded: float
    totalRedemptions: int
    totalRewards: int
    activeRewards: int
    averageTransactionsPerCard: float
    transactionsByMonth: dict[str, int]


class RewardCreateRequest(BaseModel):
    title: str
    requiredValue: int = Field(..., description="Stamps or points needed to redeem")
    description: Optional[str] = None
    validFrom: Optional[datetime] = None
    validTo: Optional[datetime] = None
    isActive: bool = True


class RewardUpdateRequest(BaseModel):
    title: Optional[str] = None
    requiredValue: Optional[int] = None
    description: Optional[str] = None
    validFrom: Optional[datetime] = None
    validTo: Optional[datetime] = None
    isActive: Optional[bool] = None


class RewardResponse(BaseModel):
    id: UUID
    programId: UUID
    title: str
    description: Optional[str]
    requiredValue: int
    validFrom: Optional[datetime]
    validTo: Optional[datetime]
    isActive: bool
    createdAt: datetime


_PROGRAM_FIELD_MAP = {
    "name": "name",
    "type": "program_type",
    "description": "description",
    "stampThreshold": "stamp_threshold",
    "pointsConversionRate": "points_conversion_rate",
    "dailyStampLimit": "daily_stamp_limit",
    "minimumTransactionAmount": "minimum_transaction_amount",
    "pointsRounding": "points_rounding",
    "minimumPointsForRedemption": "minimum_points_for_redemption",
    "enrollmentBonusPoints": "enrollment_bonus_points",
    "hasTiers": "has_tiers",
    "startsAt": "starts_at",
    "endsAt": "ends_at",
    "termsAndConditions": "terms_and_conditions",
}
_REWARD_FIELD_MAP = {
    "title": "title",
    "requiredValue": "required_value",
    "description": "description",
    "validFrom": "valid_from",
    "validTo": "valid_to",
}


def _build_policy(payload: ExpirationPolicyPayload | None) -> ExpirationPolicy | None:
    if payload is None:
        return None
    try:
        return payload.to_policy()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


def _optional_float(value: Any) -> Optional[float]:
    return float(value) if value is not None else None


def _serialize_tier(tier: LoyaltyTier) -> TierResponse:
    return TierResponse(
        id=tier.id,
        programId=tier.program_id,
        name=tier.name,
        pointThreshold=tier.point_threshold,
        pointMultiplier=float(tier.point_multiplier),
        tierOrder=tier.tier_order,
        benefits=list(tier.benefits or []),
    )


def _serialize_program(program: LoyaltyProgram) -> ProgramResponse:
    return ProgramResponse(
        id=program.id,
        brandId=program.brand_id,
        name=program.name,
        description=program.description,
        type=program.program_type,
        stampThreshold=program.stamp_threshold,
        pointsConversionRate=_optional_float(program.points_conversion_rate),
        dailyStampLimit=program.daily_stamp_limit,
        minimumTransactionAmount=_optional_float(program.minimum_transaction_amount),
        pointsRounding=program.points_rounding,
        minimumPointsForRedemption=program.minimum_points_for_redemption,
        enrollmentBonusPoints=program.enrollment_bonus_points,
        hasTiers=bool(program.has_tiers),
        tiers=[_serialize_tier(tier) for tier in program.tiers],
        startsAt=ensure_utc(program.starts_at),
        endsAt=ensure_utc(program.ends_at),
        expiration=ExpirationPolicyPayload.from_policy(program.expiration_policy),
        termsAndConditions=program.terms_and_conditions,
        isActive=bool(program.is_active),
        createdAt=ensure_utc(program.created_at),
        updatedAt=ensure_utc(program.updated_at),
    )


def _serialize_reward(reward: LoyaltyReward) -> RewardResponse:
    return RewardResponse(
        id=reward.id,
        programId=reward.program_id,
        title=reward.title,
        description=reward.description,
        requiredValue=reward.required_value,
        validFrom=ensure_utc(reward.valid_from),
        validTo=ensure_utc(reward.valid_to),
        isActive=bool(reward.is_active),
        createdAt=ensure_utc(reward.created_at),
    )


@router.post(
    "/programs",
    response_model=ProgramResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_staff_api_key)],
)
async def create_program(
    payload: ProgramCreateRequest,
    db: AsyncSession = Depends(get_session),
) -> ProgramResponse:
    """Create a stamp or points program for a brand."""

    service = LoyaltyProgramService(db)
    program = unwrap_result(
        await service.create_program(
            payload.brandId,
            name=payload.name,
            program_type=payload.type,
            description=payload.description,
            stamp_threshold=payload.stampThreshold,
            points_conversion_rate=payload.pointsConversionRate,
            daily_stamp_limit=payload.dailyStampLimit,
            minimum_transaction_amount=payload.minimumTransactionAmount,
            points_rounding=payload.pointsRounding,
            minimum_points_for_redemption=payload.minimumPointsForRedemption,
            enrollment_bonus_points=payload.enrollmentBonusPoints,
            has_tiers=payload.hasTiers,
            starts_at=payload.startsAt,
            ends_at=payload.endsAt,
            expiration_policy=_build_policy(payload.expiration),
            terms_and_conditions=payload.termsAndConditions,
            is_active=payload.isActive,
        )
    )
    return _serialize_program(program)


@router.get("/programs/{program_id}", response_model=ProgramResponse)
async def get_program(program_id: UUID, db: AsyncSession = Depends(get_session)) -> ProgramResponse:
    return _serialize_program(unwrap_result(await LoyaltyProgramService(db).get_program(program_id)))


@router.get("/brands/{brand_id}/programs", response_model=List[ProgramResponse])
async def list_brand_programs(
    brand_id: UUID,
    active_only: bool = Query(False, alias="activeOnly"),
    db: AsyncSession = Depends(get_session),
) -> List[ProgramResponse]:
    programs = unwrap_result(
        await LoyaltyProgramService(db).list_brand_programs(brand_id, active_only=active_only)
    )
    return [_serialize_program(program) for program in programs]


@router.patch(
    "/programs/{program_id}",
    response_model=ProgramResponse,
    dependencies=[Depends(require_staff_api_key)],
)
async def update_program(
    program_id: UUID,
    payload: ProgramUpdateRequest,
    db: AsyncSession = Depends(get_session),
) -> ProgramResponse:
    """Partially update a program; changing its type is rejected."""

    provided = payload.model_dump(exclude_unset=True)
    changes: dict[str, Any] = {
        _PROGRAM_FIELD_MAP[key]: value for key, value in provided.items() if key in _PROGRAM_FIELD_MAP
    }
    if "expiration" in provided:
        changes["expiration_policy"] = _build_policy(payload.expiration)

    program = unwrap_result(await LoyaltyProgramService(db).update_program(program_id, **changes))
    return _serialize_program(program)


@router.get(
    "/programs/{program_id}/analytics",
    response_model=ProgramAnalyticsResponse,
    dependencies=[Depends(require_staff_api_key)],
)
async def get_program_analytics(program_id: UUID, db: AsyncSession = Depends(get_session)) -> ProgramAnalyticsResponse:
    """Card, ledger and reward aggregates for one program."""

    analytics = unwrap_result(await LoyaltyProgramService(db).get_program_analytics(program_id))
    return ProgramAnalyticsResponse(
        programId=analytics.program_id,
        type=analytics.program_type,
        isActive=analytics.is_active,
        totalCards=analytics.total_cards,
        cardsByStatus=analytics.cards_by_status,
        transactionsByType=analytics.transactions_by_type,
        totalStampsIssued=analytics.total_stamps_issued,
        totalPointsAdded=float(analytics.total_points_added),
        totalRedemptions=analytics.total_redemptions,
        totalRewards=analytics.total_rewards,
        activeRewards=analytics.active_rewards,
        averageTransactionsPerCard=float(analytics.average_transactions_per_card),
        transactionsByMonth=analytics.transactions_by_month,
    )


@router.post(
    "/programs/{program_id}/activate",
    response_model=ProgramResponse,
    dependencies=[Depends(require_staff_api_key)],
)
async def activate_program(program_id: UUID, db: AsyncSession = Depends(get_session)) -> ProgramResponse:
    program = unwrap_result(await LoyaltyProgramService(db).set_program_active(program_id, True))
    return _serialize_program(program)


@router.post(
    "/programs/{program_id}/deactivate",
    response_model=ProgramResponse,
    dependencies=[Depends(require_staff_api_key)],
)
async def deactivate_program(program_id: UUID, db: AsyncSession = Depends(get_session)) -> ProgramResponse:
    program = unwrap_result(await LoyaltyProgramService(db).set_program_active(program_id, False))
    return _serialize_program(program)


@router.delete(
    "/programs/{program_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_staff_api_key)],
)
async def delete_program(program_id: UUID, db: AsyncSession = Depends(get_session)) -> Response:
    unwrap_result(await LoyaltyProgramService(db).delete_program(program_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/programs/{program_id}/rewards",
    response_model=RewardResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_staff_api_key)],
)
async def create_reward(
    program_id: UUID,
    payload: RewardCreateRequest,
    db: AsyncSession = Depends(get_session),
) -> RewardResponse:
    reward = unwrap_result(
        await LoyaltyProgramService(db).create_reward(
            program_id,
            title=payload.title,
            required_value=payload.requiredValue,
            description=payload.description,
            valid_from=payload.validFrom,
            valid_to=payload.validTo,
            is_active=payload.isActive,
        )
    )
    return _serialize_reward(reward)


@router.get("/programs/{program_id}/rewards", response_model=List[RewardResponse])
async def list_program_rewards(
    program_id: UUID,
    available_only: bool = Query(False, alias="availableOnly"),
    db: AsyncSession = Depends(get_session),
) -> List[RewardResponse]:
    """List rewards; ``availableOnly`` keeps those redeemable right now."""

    available_at = utcnow() if available_only else None
    rewards = unwrap_result(
        await LoyaltyProgramService(db).list_program_rewards(program_id, available_at=available_at)
    )
    return [_serialize_reward(reward) for reward in rewards]


@router.get("/rewards/{reward_id}", response_model=RewardResponse)
async def get_reward(reward_id: UUID, db: AsyncSession = Depends(get_session)) -> RewardResponse:
    return _serialize_reward(unwrap_result(await LoyaltyProgramService(db).get_reward(reward_id)))


@router.patch(
    "/rewards/{reward_id}",
    response_model=RewardResponse,
    dependencies=[Depends(require_staff_api_key)],
)
async def update_reward(
    reward_id: UUID,
    payload: RewardUpdateRequest,
    db: AsyncSession = Depends(get_session),
) -> RewardResponse:
    service = LoyaltyProgramService(db)
    provided = payload.model_dump(exclude_unset=True)
    changes = {_REWARD_FIELD_MAP[key]: value for key, value in provided.items() if key in _REWARD_FIELD_MAP}

    reward = None
    if changes:
        reward = unwrap_result(await service.update_reward(reward_id, **changes))
    if "isActive" in provided and provided["isActive"] is not None:
        reward = unwrap_result(await service.set_reward_active(reward_id, provided["isActive"]))
    if reward is None:
        reward = unwrap_result(await service.get_reward(reward_id))
    return _serialize_reward(reward)


@router.delete(
    "/programs/{program_id}/rewards/{reward_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_staff_api_key)],
)
async def remove_reward(
    program_id: UUID,
    reward_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> Response:
    unwrap_result(await LoyaltyProgramService(db).remove_reward(program_id, reward_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/programs/{program_id}/tiers",
    response_model=TierResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_staff_api_key)],
)
async def create_tier(
    program_id: UUID,
    payload: TierCreateRequest,
    db: AsyncSession = Depends(get_session),
) -> TierResponse:
    """Add a tier to a tiered points program."""

    tier = unwrap_result(
        await LoyaltyProgramService(db).create_tier(
            program_id,
            name=payload.name,
            point_threshold=payload.pointThreshold,
            point_multiplier=payload.pointMultiplier,
            tier_order=payload.tierOrder,
            benefits=payload.benefits,
        )
    )
    return _serialize_tier(tier)


@router.get("/programs/{program_id}/tiers", response_model=List[TierResponse])
async def list_program_tiers(program_id: UUID, db: AsyncSession = Depends(get_session)) -> List[TierResponse]:
    tiers = unwrap_result(await LoyaltyProgramService(db).list_program_tiers(program_id))
    return [_serialize_tier(tier) for tier in tiers]


@router.delete(
    "/programs/{program_id}/tiers/{tier_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_staff_api_key)],
)
async def remove_tier(
    program_id: UUID,
    tier_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> Response:
    unwrap_result(await LoyaltyProgramService(db).remove_tier(program_id, tier_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
