"""Translate service operation results into HTTP responses."""

from __future__ import annotations

from typing import TypeVar

from fastapi import HTTPException, status

from loyalty_api.domain.loyalty.errors import ErrorKind
from loyalty_api.services.loyalty.result import OperationResult

T = TypeVar("T")

_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INVALID_OPERATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.LIMIT_EXCEEDED: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INSUFFICIENT_BALANCE: status.HTTP_400_BAD_REQUEST,
    ErrorKind.REWARD_NOT_ELIGIBLE: status.HTTP_400_BAD_REQUEST,
}


def unwrap_result(result: OperationResult[T]) -> T:
    """Return the payload of a successful result or raise the matching HTTP error."""

    if result.ok:
        return result.data  # type: ignore[return-value]

    kind = result.error_kind or ErrorKind.INVALID_OPERATION
    raise HTTPException(
        status_code=_STATUS_BY_KIND.get(kind, status.HTTP_400_BAD_REQUEST),
        detail="; ".join(result.errors) or kind.value,
        headers={"X-Error-Kind": kind.value},
    )


__all__ = ["unwrap_result"]
