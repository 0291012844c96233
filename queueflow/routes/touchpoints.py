from __future__ import annotations

import json
from typing import Any, AsyncIterator

from fastapi import APIRouter, HTTPException
from fastapi.responses import StreamingResponse

from queueflow.application import get_engine
from queueflow.infrastructure import ChangeChannel, ChannelUnavailableError

from .responses import require, unwrap

router = APIRouter(tags=["touchpoints"])

HEARTBEAT_SECONDS = 15.0


@router.get("/kiosks/{profile_id}/{kiosk_code}/groups")
async def kiosk_groups(profile_id: str, kiosk_code: str) -> dict:
    groups = unwrap(await get_engine().kiosk_groups(profile_id, kiosk_code))
    return {
        "kiosk": kiosk_code,
        "items": [
            {"code": group.code, "name": group.name, "description": group.description, "priority": group.priority}
            for group in groups
        ],
    }


@router.post("/kiosks/{profile_id}/{kiosk_code}/tickets")
async def issue_ticket(profile_id: str, kiosk_code: str, payload: dict) -> dict:
    group_code = str(require(payload, "serviceGroup"))
    attributes = payload.get("attributes") or {}
    if not isinstance(attributes, dict):
        raise HTTPException(status_code=400, detail="attributes must be an object")
    ticket = unwrap(await get_engine().issue_ticket(profile_id, kiosk_code, group_code, attributes))
    return ticket.to_document()


@router.get("/boards/{profile_id}/{board_code}")
async def board_plan(profile_id: str, board_code: str) -> dict:
    plan = unwrap(await get_engine().board_plan(profile_id, board_code))
    return plan.as_dict()


def _sse(message: dict[str, Any]) -> str:
    return f"data: {json.dumps(message)}\n\n"


async def event_stream(
    channel: ChangeChannel, profile_id: str, heartbeat: float = HEARTBEAT_SECONDS
) -> AsyncIterator[str]:
    """Relay change notifications for one profile as server-sent events."""

    try:
        async for event in channel.subscribe(profile_id, heartbeat=heartbeat):
            if event is None:
                yield _sse({"type": "heartbeat"})
                continue
            yield _sse({**event.payload, "type": "queue_update", "profileId": event.profile_id})
    except ChannelUnavailableError as exc:
        yield _sse({"type": "error", "message": str(exc)})


@router.get("/events/{profile_id}")
async def profile_events(profile_id: str) -> StreamingResponse:
    channel = get_engine().channel
    if channel is None:
        raise HTTPException(status_code=503, detail="no push channel configured, poll /api/queue instead")
    return StreamingResponse(
        event_stream(channel, profile_id),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
