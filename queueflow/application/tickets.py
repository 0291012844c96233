"""Kiosk ticket issuance and customer-facing ticket status."""
from __future__ import annotations

import logging
from typing import Any

from queueflow.core.schema import Ticket, WorkflowDefinition
from queueflow.domain import Failure, FailureReason, Result, Success
from queueflow.infrastructure import (
    BackingStoreError,
    RecordNotFoundError,
    TicketIssuer,
    TicketStore,
    TransitionRejectedError,
)

from .scope import ScopeResolver, fifo

logger = logging.getLogger(__name__)

DEFAULT_STATE_MINUTES = 5


class TicketService:
    def __init__(self, issuer: TicketIssuer, store: TicketStore) -> None:
        self._issuer = issuer
        self._store = store

    async def issue_ticket(
        self,
        workflow: WorkflowDefinition,
        kiosk_code: str,
        group_code: str,
        attributes: dict[str, Any] | None = None,
    ) -> Result[Ticket]:
        """Issue a ticket for ``group_code`` if the kiosk offers that group."""

        kiosk = workflow.kiosk(kiosk_code)
        if kiosk is None:
            return Failure(FailureReason.NOT_FOUND, f"kiosk {kiosk_code} not found")
        offered = {group.code for group in ScopeResolver.resolve_for_kiosk(kiosk, workflow)}
        if group_code not in offered:
            return Failure(FailureReason.OUT_OF_SCOPE, f"kiosk {kiosk_code} does not issue {group_code} tickets")

        payload = {**(attributes or {}), "kioskCode": kiosk.code}
        try:
            ticket = await self._issuer.create(workflow.profile_id, group_code, payload)
        except RecordNotFoundError:
            return Failure(FailureReason.NOT_FOUND, f"service group {group_code} not found")
        except TransitionRejectedError as exc:
            return Failure(FailureReason.INVALID_CONFIGURATION, str(exc))
        except BackingStoreError as exc:
            logger.warning("Issuing %s ticket at %s failed: %s", group_code, kiosk_code, exc)
            return Failure(FailureReason.CONNECTIVITY, "ticket issuance unavailable", [str(exc)])
        logger.info("Kiosk %s issued %s", kiosk_code, ticket.display_label)
        return Success(ticket)

    async def ticket_status(self, workflow: WorkflowDefinition, doc_no: str) -> Result[dict[str, Any]]:
        """Position in the waiting line and a rough wait estimate."""

        try:
            ticket = await self._store.get(doc_no)
            tickets = await self._store.list_tickets(ticket.profile_id or workflow.profile_id)
        except RecordNotFoundError:
            return Failure(FailureReason.TICKET_NOT_FOUND, f"ticket {doc_no} not found")
        except (BackingStoreError, TransitionRejectedError) as exc:
            return Failure(FailureReason.CONNECTIVITY, "ticket store unavailable", [str(exc)])

        group = workflow.group(ticket.service_group)
        state = group.state(ticket.status) if group else None
        position: int | None = None
        ahead = 0
        per_ticket = 0
        if group is not None:
            waiting = fifo(
                other
                for other in tickets
                if other.service_group == group.code and other.status == group.initial_state
            )
            codes = [other.doc_no for other in waiting]
            if ticket.doc_no in codes:
                ahead = codes.index(ticket.doc_no)
                position = ahead + 1
            per_ticket = sum(
                state_def.est_duration if state_def.est_duration is not None else DEFAULT_STATE_MINUTES
                for state_def in group.states_of_type("NORMAL")
            )

        return Success(
            {
                "docNo": ticket.doc_no,
                "ticketNo": ticket.display_label,
                "serviceGroup": ticket.service_group,
                "groupName": group.name if group else None,
                "status": ticket.status,
                "stateLabel": state.label if state else ticket.status,
                "stateType": state.type if state else None,
                "position": position,
                "ahead": ahead,
                "estimatedWaitMinutes": ahead * per_ticket,
                "checkInTime": ticket.check_in_time.isoformat(),
            }
        )


__all__ = ["TicketService"]
