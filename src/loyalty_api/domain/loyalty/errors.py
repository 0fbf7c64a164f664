"""Business-rule failures raised by loyalty entities and services."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Stable error categories surfaced through operation results."""

    NOT_FOUND = "not_found"
    INVALID_OPERATION = "invalid_operation"
    LIMIT_EXCEEDED = "limit_exceeded"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    REWARD_NOT_ELIGIBLE = "reward_not_eligible"
    VALIDATION = "validation"
    CONFLICT = "conflict"


class LoyaltyDomainError(Exception):
    """Base exception for expected loyalty business-rule violations."""

    kind: ErrorKind = ErrorKind.INVALID_OPERATION

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(LoyaltyDomainError):
    kind = ErrorKind.NOT_FOUND


class InvalidOperationError(LoyaltyDomainError):
    """Operation does not match the card type or current card status."""

    kind = ErrorKind.INVALID_OPERATION


class LimitExceededError(LoyaltyDomainError):
    kind = ErrorKind.LIMIT_EXCEEDED


class InsufficientBalanceError(LoyaltyDomainError):
    kind = ErrorKind.INSUFFICIENT_BALANCE

    def __init__(self, message: str, *, required: object, available: object) -> None:
        super().__init__(message)
        self.required = required
        self.available = available


class RewardNotEligibleError(LoyaltyDomainError):
    """Reward is inactive, outside its validity window, or from another program."""

    kind = ErrorKind.REWARD_NOT_ELIGIBLE


class LoyaltyValidationError(LoyaltyDomainError):
    kind = ErrorKind.VALIDATION


class ConflictError(LoyaltyDomainError):
    kind = ErrorKind.CONFLICT


__all__ = [
    "ConflictError",
    "ErrorKind",
    "InsufficientBalanceError",
    "InvalidOperationError",
    "LimitExceededError",
    "LoyaltyDomainError",
    "LoyaltyValidationError",
    "NotFoundError",
    "RewardNotEligibleError",
]
