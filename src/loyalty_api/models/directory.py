"""Brand, store and customer directory records."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from loyalty_api.db.base import Base
from loyalty_api.domain.loyalty.clock import utcnow


class Brand(Base):
    """Tenant that owns stores and loyalty programs."""

    __tablename__ = "brands"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String, nullable=False)
    category = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    stores = relationship("Store", back_populates="brand")
    programs = relationship("LoyaltyProgram", back_populates="brand")


class Store(Base):
    """Physical or online point of sale where transactions are issued."""

    __tablename__ = "stores"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    brand_id = Column(UUID(as_uuid=True), ForeignKey("brands.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    address_line = Column(String, nullable=True)
    city = Column(String, nullable=True)
    country = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    brand = relationship("Brand", back_populates="stores")


class Customer(Base):
    """End customer holding loyalty cards."""

    __tablename__ = "customers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    display_name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True, index=True)
    phone = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    cards = relationship("LoyaltyCard", back_populates="customer")
