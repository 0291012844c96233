from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from queueflow.application import ALL_GROUPS, TransitionValidator, get_engine
from queueflow.core.schema import Ticket
from queueflow.domain import Role

from .responses import actor_role, require, unwrap

router = APIRouter(prefix="/staff", tags=["staff"])


def _ticket_row(ticket: Ticket, validator: TransitionValidator, role: Role) -> dict:
    group = validator.workflow.group(ticket.service_group)
    actions = TransitionValidator.available_actions(group, ticket.status, role) if group else []
    row = ticket.to_document()
    row["actions"] = [action.as_dict() for action in actions]
    return row


@router.get("/{profile_id}/service-points/{point_code}/queue")
async def service_point_queue(
    profile_id: str,
    point_code: str,
    group: str = Query(default=ALL_GROUPS),
    role: Role = Depends(actor_role),
) -> dict:
    engine = get_engine()
    tickets = unwrap(await engine.service_point_queue(profile_id, point_code, group))
    validator = unwrap(await engine.validator(profile_id))
    feed = engine.feed(profile_id).snapshot()
    return {
        "servicePoint": point_code,
        "group": group,
        "stale": feed.stale,
        "items": [_ticket_row(ticket, validator, role) for ticket in tickets],
    }


@router.get("/{profile_id}/tickets/{doc_no}/actions")
async def ticket_actions(profile_id: str, doc_no: str, role: Role = Depends(actor_role)) -> dict:
    validator = unwrap(await get_engine().validator(profile_id))
    actions = unwrap(await validator.actions_for_ticket(doc_no, role))
    return {"docNo": doc_no, "items": [action.as_dict() for action in actions]}


@router.post("/{profile_id}/tickets/{doc_no}/transition")
async def apply_transition(
    profile_id: str, doc_no: str, payload: dict, role: Role = Depends(actor_role)
) -> dict:
    validator = unwrap(await get_engine().validator(profile_id))
    ticket = unwrap(
        await validator.apply(
            doc_no,
            require(payload, "targetState"),
            role,
            expected_state=payload.get("expectedState"),
            service_point=payload.get("servicePoint"),
        )
    )
    return _ticket_row(ticket, validator, role)


@router.post("/{profile_id}/bulk")
async def bulk_action(profile_id: str, payload: dict, role: Role = Depends(actor_role)) -> dict:
    doc_nos = payload.get("docNos")
    if not isinstance(doc_nos, list) or not doc_nos:
        raise HTTPException(status_code=400, detail="docNos is required")
    validator = unwrap(await get_engine().validator(profile_id))
    outcome = unwrap(await validator.bulk_apply([str(doc) for doc in doc_nos], str(require(payload, "action")), role))
    return {"action": outcome.action, "accepted": outcome.accepted, "rejected": outcome.rejected}
