"""Loyalty domain primitives shared by models and services."""

from .errors import (  # noqa: F401
    ConflictError,
    ErrorKind,
    InsufficientBalanceError,
    InvalidOperationError,
    LimitExceededError,
    LoyaltyDomainError,
    LoyaltyValidationError,
    NotFoundError,
    RewardNotEligibleError,
)
from .clock import ensure_utc, utcnow  # noqa: F401
from .expiration import ExpirationPeriod, ExpirationPolicy  # noqa: F401
