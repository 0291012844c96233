from __future__ import annotations

from typing import Any, TypeVar

from fastapi import Header, HTTPException

from queueflow.domain import Failure, FailureReason, Result, Role

T = TypeVar("T")

STATUS_BY_REASON: dict[FailureReason, int] = {
    FailureReason.NOT_FOUND: 404,
    FailureReason.TICKET_NOT_FOUND: 404,
    FailureReason.NO_ACTIVE_WORKFLOW: 404,
    FailureReason.TRANSITION_NOT_ALLOWED: 403,
    FailureReason.OUT_OF_SCOPE: 403,
    FailureReason.CONCURRENT_STATE_MISMATCH: 409,
    FailureReason.SUPERSEDED: 409,
    FailureReason.INVALID_CONFIGURATION: 422,
    FailureReason.LAST_STATE: 422,
    FailureReason.INITIAL_STATE: 422,
    FailureReason.STATE_IN_USE: 422,
    FailureReason.CONNECTIVITY: 503,
    FailureReason.SAVE_FAILED: 503,
}


def unwrap(result: Result[T]) -> T:
    """Return the success value or raise the matching HTTP error."""

    if isinstance(result, Failure):
        raise HTTPException(
            status_code=STATUS_BY_REASON.get(result.reason, 400),
            detail={"reason": result.reason.value, "message": result.message, "details": result.details},
        )
    return result.value


def require(payload: dict[str, Any], key: str) -> Any:
    value = payload.get(key)
    if value in (None, ""):
        raise HTTPException(status_code=400, detail=f"{key} is required")
    return value


def actor_role(x_actor_role: str = Header(default=Role.STAFF.value)) -> Role:
    """Acting role as supplied by the identity provider in front of the API."""

    try:
        return Role(x_actor_role.strip().upper())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"unknown role {x_actor_role!r}") from exc
