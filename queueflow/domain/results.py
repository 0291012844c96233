"""Success/failure results returned by every engine operation."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class FailureReason(str, Enum):
    """Why an engine operation did not succeed."""

    NOT_FOUND = "NOT_FOUND"
    NO_ACTIVE_WORKFLOW = "NO_ACTIVE_WORKFLOW"
    INVALID_CONFIGURATION = "INVALID_CONFIGURATION"
    LAST_STATE = "LAST_STATE"
    INITIAL_STATE = "INITIAL_STATE"
    STATE_IN_USE = "STATE_IN_USE"
    TRANSITION_NOT_ALLOWED = "TRANSITION_NOT_ALLOWED"
    TICKET_NOT_FOUND = "TICKET_NOT_FOUND"
    CONCURRENT_STATE_MISMATCH = "CONCURRENT_STATE_MISMATCH"
    OUT_OF_SCOPE = "OUT_OF_SCOPE"
    CONNECTIVITY = "CONNECTIVITY"
    SAVE_FAILED = "SAVE_FAILED"
    SUPERSEDED = "SUPERSEDED"


@dataclass(slots=True)
class Success(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(slots=True)
class Failure:
    reason: FailureReason
    message: str
    details: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return False

    @property
    def recoverable(self) -> bool:
        """Transition and connectivity failures are fixed by refreshing and retrying."""

        return self.reason in {
            FailureReason.TRANSITION_NOT_ALLOWED,
            FailureReason.TICKET_NOT_FOUND,
            FailureReason.CONCURRENT_STATE_MISMATCH,
            FailureReason.CONNECTIVITY,
            FailureReason.SAVE_FAILED,
            FailureReason.SUPERSEDED,
        }


Result = Union[Success[T], Failure]
