"""SQLAlchemy models package."""

# Import all models
from .directory import Brand, Customer, Store  # noqa: F401
from .loyalty import (  # noqa: F401
    CardStatus,
    ExpirationType,
    LoyaltyCard,
    LoyaltyOutboxEvent,
    LoyaltyProgram,
    LoyaltyProgramType,
    LoyaltyReward,
    LoyaltyTier,
    LoyaltyTransaction,
    PointsRoundingRule,
    TransactionType,
)
