"""Uniform success/failure envelope returned by loyalty services."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, TypeVar

from loyalty_api.domain.loyalty.errors import ErrorKind, LoyaltyDomainError

T = TypeVar("T")


@dataclass
class OperationResult(Generic[T]):
    """Business outcome of a service call.

    Expected rule violations never raise across the service boundary; callers
    inspect ``ok`` and ``error_kind`` instead.
    """

    ok: bool
    data: T | None = None
    errors: list[str] = field(default_factory=list)
    error_kind: ErrorKind | None = None

    @classmethod
    def success(cls, data: T | None = None) -> "OperationResult[T]":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, kind: ErrorKind, *errors: str) -> "OperationResult[T]":
        return cls(ok=False, errors=list(errors), error_kind=kind)

    @classmethod
    def from_error(cls, error: LoyaltyDomainError) -> "OperationResult[T]":
        return cls.failure(error.kind, error.message)

    @property
    def error(self) -> str | None:
        return self.errors[0] if self.errors else None


__all__ = ["OperationResult"]
