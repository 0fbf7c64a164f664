"""API endpoints for loyalty card enrollment, accrual and redemption."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_api.api.dependencies.security import require_staff_api_key
from loyalty_api.api.dependencies.session import require_customer_session
from loyalty_api.api.errors import unwrap_result
from loyalty_api.db.session import get_session
from loyalty_api.domain.loyalty.clock import ensure_utc
from loyalty_api.models.directory import Customer
from loyalty_api.models.loyalty import CardStatus, LoyaltyCard, LoyaltyProgramType, LoyaltyTransaction
from loyalty_api.services.loyalty import CardTransactionOutcome, LoyaltyCardService


router = APIRouter(prefix="/loyalty", tags=["Loyalty cards"])


class CardCreateRequest(BaseModel):
    customerId: UUID
    programId: UUID


class StampIssueRequest(BaseModel):
    quantity: int = Field(..., description="Number of stamps to issue")
    storeId: UUID
    staffId: Optional[UUID] = None
    posTransactionId: Optional[str] = None


class PointsAddRequest(BaseModel):
    transactionAmount: Decimal = Field(..., description="Purchase amount the points are earned on")
    storeId: UUID
    points: Optional[Decimal] = Field(
        None, description="Explicit points to credit; computed from the program rate when omitted"
    )
    staffId: Optional[UUID] = None
    posTransactionId: Optional[str] = None


class RedemptionRequest(BaseModel):
    rewardId: UUID
    storeId: UUID
    staffId: Optional[UUID] = None


class CardStatusRequest(BaseModel):
    status: CardStatus


class LoyaltyCardResponse(BaseModel):
    id: UUID
    programId: UUID
    customerId: UUID
    type: LoyaltyProgramType
    stampsCollected: int
    pointsBalance: float
    status: CardStatus
    qrCode: str
    expiresAt: Optional[datetime]
    version: int
    createdAt: datetime
    updatedAt: datetime


class TransactionResponse(BaseModel):
    id: UUID
    cardId: UUID
    type: str
    quantity: Optional[int]
    pointsAmount: Optional[float]
    transactionAmount: Optional[float]
    rewardId: Optional[UUID]
    storeId: Optional[UUID]
    staffId: Optional[UUID]
    posTransactionId: Optional[str]
    timestamp: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)


class CardTransactionResponse(BaseModel):
    card: LoyaltyCardResponse
    transaction: TransactionResponse


def _optional_float(value: Any) -> Optional[float]:
    return float(value) if value is not None else None


def _serialize_card(card: LoyaltyCard) -> LoyaltyCardResponse:
    return LoyaltyCardResponse(
        id=card.id,
        programId=card.program_id,
        customerId=card.customer_id,
        type=card.card_type,
        stampsCollected=card.stamps_collected or 0,
        pointsBalance=float(card.points_balance or 0),
        status=card.status,
        qrCode=card.qr_code,
        expiresAt=ensure_utc(card.expires_at),
        version=card.version,
        createdAt=ensure_utc(card.created_at),
        updatedAt=ensure_utc(card.updated_at),
    )


def _serialize_transaction(transaction: LoyaltyTransaction) -> TransactionResponse:
    return TransactionResponse(
        id=transaction.id,
        cardId=transaction.card_id,
        type=transaction.transaction_type.value,
        quantity=transaction.quantity,
        pointsAmount=_optional_float(transaction.points_amount),
        transactionAmount=_optional_float(transaction.transaction_amount),
        rewardId=transaction.reward_id,
        storeId=transaction.store_id,
        staffId=transaction.staff_id,
        posTransactionId=transaction.pos_transaction_id,
        timestamp=ensure_utc(transaction.timestamp),
        metadata=transaction.metadata_json or {},
    )


def _serialize_outcome(outcome: CardTransactionOutcome) -> CardTransactionResponse:
    return CardTransactionResponse(
        card=_serialize_card(outcome.card),
        transaction=_serialize_transaction(outcome.transaction),
    )


@router.post(
    "/cards",
    response_model=LoyaltyCardResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_card(
    payload: CardCreateRequest,
    db: AsyncSession = Depends(get_session),
) -> LoyaltyCardResponse:
    """Enroll a customer in a loyalty program."""

    card = unwrap_result(await LoyaltyCardService(db).create_card(payload.customerId, payload.programId))
    return _serialize_card(card)


@router.get("/cards/qr/{qr_code}", response_model=LoyaltyCardResponse)
async def get_card_by_qr_code(qr_code: str, db: AsyncSession = Depends(get_session)) -> LoyaltyCardResponse:
    return _serialize_card(unwrap_result(await LoyaltyCardService(db).get_card_by_qr_code(qr_code)))


@router.get("/cards/{card_id}", response_model=LoyaltyCardResponse)
async def get_card(card_id: UUID, db: AsyncSession = Depends(get_session)) -> LoyaltyCardResponse:
    return _serialize_card(unwrap_result(await LoyaltyCardService(db).get_card(card_id)))


@router.get("/customers/{customer_id}/cards", response_model=List[LoyaltyCardResponse])
async def list_customer_cards(
    customer_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> List[LoyaltyCardResponse]:
    cards = unwrap_result(await LoyaltyCardService(db).list_customer_cards(customer_id))
    return [_serialize_card(card) for card in cards]


@router.get("/me/cards", response_model=List[LoyaltyCardResponse])
async def list_my_cards(
    current_customer: Customer = Depends(require_customer_session),
    db: AsyncSession = Depends(get_session),
) -> List[LoyaltyCardResponse]:
    """List the signed-in customer's cards."""

    cards = unwrap_result(await LoyaltyCardService(db).list_customer_cards(current_customer.id))
    return [_serialize_card(card) for card in cards]


@router.post(
    "/cards/{card_id}/stamps",
    response_model=CardTransactionResponse,
    dependencies=[Depends(require_staff_api_key)],
)
async def issue_stamps(
    card_id: UUID,
    payload: StampIssueRequest,
    db: AsyncSession = Depends(get_session),
) -> CardTransactionResponse:
    outcome = unwrap_result(
        await LoyaltyCardService(db).issue_stamps(
            card_id,
            payload.quantity,
            store_id=payload.storeId,
            staff_id=payload.staffId,
            pos_transaction_id=payload.posTransactionId,
        )
    )
    return _serialize_outcome(outcome)


@router.post(
    "/cards/{card_id}/points",
    response_model=CardTransactionResponse,
    dependencies=[Depends(require_staff_api_key)],
)
async def add_points(
    card_id: UUID,
    payload: PointsAddRequest,
    db: AsyncSession = Depends(get_session),
) -> CardTransactionResponse:
    outcome = unwrap_result(
        await LoyaltyCardService(db).add_points(
            card_id,
            transaction_amount=payload.transactionAmount,
            store_id=payload.storeId,
            points=payload.points,
            staff_id=payload.staffId,
            pos_transaction_id=payload.posTransactionId,
        )
    )
    return _serialize_outcome(outcome)


@router.post(
    "/cards/{card_id}/redemptions",
    response_model=CardTransactionResponse,
    dependencies=[Depends(require_staff_api_key)],
)
async def redeem_reward(
    card_id: UUID,
    payload: RedemptionRequest,
    db: AsyncSession = Depends(get_session),
) -> CardTransactionResponse:
    outcome = unwrap_result(
        await LoyaltyCardService(db).redeem_reward(
            card_id,
            payload.rewardId,
            store_id=payload.storeId,
            staff_id=payload.staffId,
        )
    )
    return _serialize_outcome(outcome)


@router.post(
    "/cards/{card_id}/status",
    response_model=LoyaltyCardResponse,
    dependencies=[Depends(require_staff_api_key)],
)
async def update_card_status(
    card_id: UUID,
    payload: CardStatusRequest,
    db: AsyncSession = Depends(get_session),
) -> LoyaltyCardResponse:
    """Suspend, reactivate or expire a card."""

    card = unwrap_result(await LoyaltyCardService(db).update_status(card_id, payload.status))
    return _serialize_card(card)


@router.post(
    "/cards/{card_id}/qr-code",
    response_model=LoyaltyCardResponse,
    dependencies=[Depends(require_staff_api_key)],
)
async def regenerate_qr_code(card_id: UUID, db: AsyncSession = Depends(get_session)) -> LoyaltyCardResponse:
    card = unwrap_result(await LoyaltyCardService(db).regenerate_qr_code(card_id))
    return _serialize_card(card)


@router.get("/cards/{card_id}/transactions", response_model=List[TransactionResponse])
async def list_card_transactions(
    card_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> List[TransactionResponse]:
    transactions = unwrap_result(await LoyaltyCardService(db).list_card_transactions(card_id))
    return [_serialize_transaction(transaction) for transaction in transactions]
