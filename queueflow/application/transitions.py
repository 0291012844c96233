"""Transition Validator: gates every staff-initiated ticket mutation."""
from __future__ import annotations

import logging

from queueflow.core.log_config import AUDIT_LOGGER
from queueflow.core.schema import ServiceGroup, Ticket, Transition, WorkflowDefinition
from queueflow.domain import AvailableAction, BulkOutcome, Failure, FailureReason, Result, Role, Success
from queueflow.infrastructure import (
    BackingStoreError,
    RecordNotFoundError,
    StateMismatchError,
    TicketStore,
    TransitionRejectedError,
)

logger = logging.getLogger(__name__)
audit = logging.getLogger(AUDIT_LOGGER)


def role_value(role: Role | str) -> str:
    return role.value if isinstance(role, Role) else str(role).strip().upper()


class TransitionValidator:
    """Decides whether a ticket may move and forwards approved moves.

    Available actions are always derived from the ticket as the backing store
    reports it, never from a cached copy.
    """

    def __init__(self, store: TicketStore, workflow: WorkflowDefinition) -> None:
        self._store = store
        self.workflow = workflow
        self._generations: dict[tuple[str, str], int] = {}

    # ------------------------------------------------------------------
    # pure checks
    # ------------------------------------------------------------------
    @staticmethod
    def available_actions(group: ServiceGroup, current_state: str, role: Role | str) -> list[AvailableAction]:
        state = group.state(current_state)
        if state is None:
            logger.warning("Ticket state %r is not defined in group %s", current_state, group.code)
            return []
        if state.type == "FINAL":
            return []
        actor = role_value(role)
        actions: list[AvailableAction] = []
        for transition in state.transitions:
            if not transition.permits(actor):
                continue
            target = group.state(transition.to)
            if target is None:
                logger.warning("Transition %r in %s points at missing state %s", transition.action, group.code, transition.to)
                continue
            actions.append(
                AvailableAction(
                    label=transition.action or transition.label or target.label or target.code,
                    target_state=transition.to,
                    color=target.color,
                )
            )
        return actions

    @staticmethod
    def _edge_for(group: ServiceGroup, current_state: str, action: str, role: str) -> Transition | None:
        return group.edge_for(current_state, action, role)

    # ------------------------------------------------------------------
    # store-backed operations
    # ------------------------------------------------------------------
    def _next_generation(self, key: tuple[str, str]) -> int:
        generation = self._generations.get(key, 0) + 1
        self._generations[key] = generation
        return generation

    def _superseded(self, key: tuple[str, str], generation: int) -> bool:
        return self._generations.get(key) != generation

    async def _fetch(self, doc_no: str) -> Ticket | Failure:
        try:
            return await self._store.get(doc_no)
        except RecordNotFoundError:
            return Failure(FailureReason.TICKET_NOT_FOUND, f"ticket {doc_no} not found")
        except (BackingStoreError, TransitionRejectedError) as exc:
            logger.warning("Fetching ticket %s failed: %s", doc_no, exc)
            return Failure(FailureReason.CONNECTIVITY, "ticket store unavailable", [str(exc)])

    async def actions_for_ticket(self, doc_no: str, role: Role | str) -> Result[list[AvailableAction]]:
        ticket = await self._fetch(doc_no)
        if isinstance(ticket, Failure):
            return ticket
        group = self.workflow.group(ticket.service_group)
        if group is None:
            logger.warning("Ticket %s belongs to unknown group %s", doc_no, ticket.service_group)
            return Success([])
        return Success(self.available_actions(group, ticket.status, role))

    async def apply(
        self,
        doc_no: str,
        target_state: str,
        role: Role | str,
        *,
        expected_state: str | None = None,
        service_point: str | None = None,
    ) -> Result[Ticket]:
        """Move ``doc_no`` to ``target_state`` if its current edge list allows it.

        ``expected_state`` is the state the caller's action list was built
        from; when the ticket has moved on the call fails with
        CONCURRENT_STATE_MISMATCH and the caller should refresh.
        """

        actor = role_value(role)
        key = (doc_no, service_point or "")
        generation = self._next_generation(key)

        ticket = await self._fetch(doc_no)
        if isinstance(ticket, Failure):
            return ticket
        if self._superseded(key, generation):
            return Failure(FailureReason.SUPERSEDED, "a newer request for this ticket replaced this one")
        if expected_state is not None and ticket.status != expected_state:
            return Failure(
                FailureReason.CONCURRENT_STATE_MISMATCH,
                f"ticket {doc_no} is now {ticket.status}, refresh and retry",
                [f"expected {expected_state}", f"actual {ticket.status}"],
            )

        group = self.workflow.group(ticket.service_group)
        allowed = self.available_actions(group, ticket.status, actor) if group else []
        if target_state not in {action.target_state for action in allowed}:
            return Failure(
                FailureReason.TRANSITION_NOT_ALLOWED,
                f"{actor} may not move ticket {doc_no} from {ticket.status} to {target_state}",
            )

        try:
            updated = await self._store.transition(
                doc_no,
                target_state,
                actor,
                expected_state=ticket.status,
                service_point=service_point,
            )
        except StateMismatchError as exc:
            return Failure(
                FailureReason.CONCURRENT_STATE_MISMATCH,
                f"ticket {doc_no} changed concurrently, refresh and retry",
                [str(exc)],
            )
        except RecordNotFoundError:
            return Failure(FailureReason.TICKET_NOT_FOUND, f"ticket {doc_no} not found")
        except TransitionRejectedError as exc:
            return Failure(FailureReason.TRANSITION_NOT_ALLOWED, str(exc))
        except BackingStoreError as exc:
            logger.warning("Transition of %s failed: %s", doc_no, exc)
            return Failure(FailureReason.CONNECTIVITY, "ticket store unavailable", [str(exc)])

        audit.info(
            "transition doc=%s from=%s to=%s role=%s point=%s",
            doc_no,
            ticket.status,
            target_state,
            actor,
            service_point or "-",
        )
        if self._superseded(key, generation):
            logger.warning("Discarding superseded transition response for %s", doc_no)
            return Failure(FailureReason.SUPERSEDED, "a newer request for this ticket replaced this one")
        return Success(updated)

    async def bulk_apply(self, doc_nos: list[str], action: str, role: Role | str) -> Result[BulkOutcome]:
        """Validate ``action`` per ticket and forward the accepted ones in one call."""

        actor = role_value(role)
        outcome = BulkOutcome(action=action)
        for doc_no in dict.fromkeys(doc_nos):
            ticket = await self._fetch(doc_no)
            if isinstance(ticket, Failure):
                if ticket.reason is FailureReason.CONNECTIVITY:
                    return ticket
                outcome.rejected[doc_no] = ticket.reason.value
                continue
            group = self.workflow.group(ticket.service_group)
            if group is None or self._edge_for(group, ticket.status, action, actor) is None:
                outcome.rejected[doc_no] = FailureReason.TRANSITION_NOT_ALLOWED.value
                continue
            outcome.accepted.append(doc_no)

        if not outcome.accepted:
            return Success(outcome)
        try:
            ack = await self._store.bulk_transition(list(outcome.accepted), action, actor=actor)
        except (TransitionRejectedError, RecordNotFoundError) as exc:
            return Failure(FailureReason.TRANSITION_NOT_ALLOWED, str(exc))
        except BackingStoreError as exc:
            logger.warning("Bulk %s failed: %s", action, exc)
            return Failure(FailureReason.CONNECTIVITY, "ticket store unavailable", [str(exc)])

        for doc_no in ack.get("skipped") or []:
            if doc_no in outcome.accepted:
                outcome.accepted.remove(doc_no)
                outcome.rejected[doc_no] = FailureReason.CONCURRENT_STATE_MISMATCH.value
        audit.info("bulk action=%s role=%s accepted=%s rejected=%s", action, actor, outcome.accepted, sorted(outcome.rejected))
        return Success(outcome)


__all__ = ["TransitionValidator", "role_value"]
