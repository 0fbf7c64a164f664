"""API endpoints for brands, stores and customers."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_api.api.dependencies.security import require_staff_api_key
from loyalty_api.api.errors import unwrap_result
from loyalty_api.db.session import get_session
from loyalty_api.domain.loyalty.clock import ensure_utc
from loyalty_api.models.directory import Brand, Customer, Store
from loyalty_api.services.directory import DirectoryService


router = APIRouter(tags=["Directory"])


class BrandCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, description="Display name of the brand")
    category: Optional[str] = Field(None, description="Business category, e.g. cafe or retail")


class BrandResponse(BaseModel):
    id: UUID
    name: str
    category: Optional[str]
    isActive: bool
    createdAt: datetime


class StoreCreateRequest(BaseModel):
    brandId: UUID
    name: str = Field(..., min_length=1)
    addressLine: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None


class StoreResponse(BaseModel):
    id: UUID
    brandId: UUID
    name: str
    addressLine: Optional[str]
    city: Optional[str]
    country: Optional[str]
    isActive: bool


class CustomerCreateRequest(BaseModel):
    displayName: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3, pattern=r"^[^@\s]+@[^@\s]+$")
    phone: Optional[str] = None


class CustomerResponse(BaseModel):
    id: UUID
    displayName: str
    email: str
    phone: Optional[str]
    createdAt: datetime


def _serialize_brand(brand: Brand) -> BrandResponse:
    return BrandResponse(
        id=brand.id,
        name=brand.name,
        category=brand.category,
        isActive=bool(brand.is_active),
        createdAt=ensure_utc(brand.created_at),
    )


def _serialize_store(store: Store) -> StoreResponse:
    return StoreResponse(
        id=store.id,
        brandId=store.brand_id,
        name=store.name,
        addressLine=store.address_line,
        city=store.city,
        country=store.country,
        isActive=bool(store.is_active),
    )


def _serialize_customer(customer: Customer) -> CustomerResponse:
    return CustomerResponse(
        id=customer.id,
        displayName=customer.display_name,
        email=customer.email,
        phone=customer.phone,
        createdAt=ensure_utc(customer.created_at),
    )


@router.post(
    "/brands",
    response_model=BrandResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_staff_api_key)],
)
async def create_brand(
    payload: BrandCreateRequest,
    db: AsyncSession = Depends(get_session),
) -> BrandResponse:
    brand = unwrap_result(await DirectoryService(db).create_brand(name=payload.name, category=payload.category))
    return _serialize_brand(brand)


@router.get("/brands", response_model=List[BrandResponse])
async def list_brands(db: AsyncSession = Depends(get_session)) -> List[BrandResponse]:
    brands = unwrap_result(await DirectoryService(db).list_brands())
    return [_serialize_brand(brand) for brand in brands]


@router.get("/brands/{brand_id}", response_model=BrandResponse)
async def get_brand(brand_id: UUID, db: AsyncSession = Depends(get_session)) -> BrandResponse:
    return _serialize_brand(unwrap_result(await DirectoryService(db).get_brand(brand_id)))


@router.post(
    "/stores",
    response_model=StoreResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_staff_api_key)],
)
async def create_store(
    payload: StoreCreateRequest,
    db: AsyncSession = Depends(get_session),
) -> StoreResponse:
    store = unwrap_result(
        await DirectoryService(db).create_store(
            payload.brandId,
            name=payload.name,
            address_line=payload.addressLine,
            city=payload.city,
            country=payload.country,
        )
    )
    return _serialize_store(store)


@router.get("/stores/{store_id}", response_model=StoreResponse)
async def get_store(store_id: UUID, db: AsyncSession = Depends(get_session)) -> StoreResponse:
    return _serialize_store(unwrap_result(await DirectoryService(db).get_store(store_id)))


@router.post(
    "/customers",
    response_model=CustomerResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_customer(
    payload: CustomerCreateRequest,
    db: AsyncSession = Depends(get_session),
) -> CustomerResponse:
    """Register a customer so they can enroll in loyalty programs."""

    customer = unwrap_result(
        await DirectoryService(db).create_customer(
            display_name=payload.displayName,
            email=payload.email,
            phone=payload.phone,
        )
    )
    return _serialize_customer(customer)


@router.get("/customers/{customer_id}", response_model=CustomerResponse)
async def get_customer(customer_id: UUID, db: AsyncSession = Depends(get_session)) -> CustomerResponse:
    return _serialize_customer(unwrap_result(await DirectoryService(db).get_customer(customer_id)))
