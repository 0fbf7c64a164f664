"""Brand, store and customer directory operations."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_api.domain.loyalty.errors import (
    ConflictError,
    LoyaltyDomainError,
    LoyaltyValidationError,
    NotFoundError,
)
from loyalty_api.models.directory import Brand, Customer, Store

from .loyalty.result import OperationResult


class DirectoryService:
    """Create and look up the records loyalty programs hang off."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def create_brand(self, *, name: str, category: str | None = None) -> OperationResult[Brand]:
        if not name.strip():
            return self._fail("create_brand", LoyaltyValidationError("Brand name is required"))
        brand = Brand(name=name.strip(), category=category, is_active=True)
        self._db.add(brand)
        await self._db.commit()
        logger.info("Created brand", brand_id=str(brand.id))
        return OperationResult.success(brand)

    async def list_brands(self) -> OperationResult[list[Brand]]:
        result = await self._db.execute(select(Brand).order_by(Brand.name))
        return OperationResult.success(list(result.scalars().all()))

    async def get_brand(self, brand_id: UUID) -> OperationResult[Brand]:
        brand = await self._db.get(Brand, brand_id)
        if brand is None:
            return self._fail("get_brand", NotFoundError(f"Brand {brand_id} not found"))
        return OperationResult.success(brand)

    async def create_store(
        self,
        brand_id: UUID,
        *,
        name: str,
        address_line: str | None = None,
        city: str | None = None,
        country: str | None = None,
    ) -> OperationResult[Store]:
        if await self._db.get(Brand, brand_id) is None:
            return self._fail("create_store", NotFoundError(f"Brand {brand_id} not found"))
        if not name.strip():
            return self._fail("create_store", LoyaltyValidationError("Store name is required"))
        store = Store(
            brand_id=brand_id,
            name=name.strip(),
            address_line=address_line,
            city=city,
            country=country,
            is_active=True,
        )
        self._db.add(store)
        await self._db.commit()
        logger.info("Created store", store_id=str(store.id), brand_id=str(brand_id))
        return OperationResult.success(store)

    async def get_store(self, store_id: UUID) -> OperationResult[Store]:
        store = await self._db.get(Store, store_id)
        if store is None:
            return self._fail("get_store", NotFoundError(f"Store {store_id} not found"))
        return OperationResult.success(store)

    async def create_customer(
        self,
        *,
        display_name: str,
        email: str,
        phone: str | None = None,
    ) -> OperationResult[Customer]:
        normalized_email = email.strip().lower()
        existing = await self._db.scalar(
            select(func.count(Customer.id)).where(Customer.email == normalized_email)
        )
        if existing:
            return self._fail("create_customer", ConflictError("A customer with this email already exists"))

        customer = Customer(display_name=display_name.strip(), email=normalized_email, phone=phone)
        self._db.add(customer)
        try:
            await self._db.commit()
        except IntegrityError:
            await self._db.rollback()
            return self._fail("create_customer", ConflictError("A customer with this email already exists"))
        logger.info("Created customer", customer_id=str(customer.id))
        return OperationResult.success(customer)

    async def get_customer(self, customer_id: UUID) -> OperationResult[Customer]:
        customer = await self._db.get(Customer, customer_id)
        if customer is None:
            return self._fail("get_customer", NotFoundError(f"Customer {customer_id} not found"))
        return OperationResult.success(customer)

    @staticmethod
    def _fail(operation: str, error: LoyaltyDomainError) -> OperationResult[Any]:
        logger.warning("Directory operation rejected", operation=operation, reason=error.message)
        return OperationResult.from_error(error)


__all__ = ["DirectoryService"]
