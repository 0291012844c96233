"""Contracts for the external collaborators the engine consumes.

Implementations raise the exceptions below; the application layer turns them
into ``Failure`` results.
"""
from __future__ import annotations

from typing import Any, Protocol

from queueflow.core.schema import Profile, Ticket


class BackingStoreError(RuntimeError):
    """The backing store could not be reached or answered unexpectedly."""


class RecordNotFoundError(LookupError):
    """The requested profile, workflow or ticket does not exist."""


class StateMismatchError(RuntimeError):
    """The ticket moved on since the caller last read it."""

    def __init__(self, doc_no: str, expected: str | None, actual: str | None) -> None:
        self.doc_no = doc_no
        self.expected = expected
        self.actual = actual
        super().__init__(f"ticket {doc_no} is in state {actual!r}, expected {expected!r}")


class TransitionRejectedError(RuntimeError):
    """The backing store refused a transition for a reason other than concurrency."""


class TicketStore(Protocol):
    """Authoritative ticket records."""

    async def list_tickets(self, profile_id: str) -> list[Ticket]: ...

    async def get(self, doc_no: str) -> Ticket: ...

    async def transition(
        self,
        doc_no: str,
        target_state: str,
        actor: str,
        *,
        expected_state: str | None = None,
        service_point: str | None = None,
    ) -> Ticket: ...

    async def bulk_transition(self, doc_nos: list[str], action: str, *, actor: str) -> dict[str, Any]: ...


class TicketIssuer(Protocol):
    """Allocates new tickets in a group's INITIAL state."""

    async def create(self, profile_id: str, group_code: str, attributes: dict[str, Any]) -> Ticket: ...


class WorkflowRepository(Protocol):
    """Profile and workflow-document persistence."""

    async def get_profiles(self) -> list[Profile]: ...

    async def create_profile(self, profile: Profile) -> Profile: ...

    async def update_profile(self, code: str, profile: Profile) -> Profile: ...

    async def delete_profile(self, code: str) -> None: ...

    async def get_workflow(self, profile_id: str) -> dict[str, Any]: ...

    async def save_workflow(self, document: dict[str, Any]) -> None: ...
