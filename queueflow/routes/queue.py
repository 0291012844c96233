from __future__ import annotations

from fastapi import APIRouter

from queueflow.application import get_engine

from .responses import unwrap

router = APIRouter(prefix="/queue", tags=["queue"])


@router.get("/{profile_id}")
async def list_queue(profile_id: str) -> dict:
    feed = unwrap(await get_engine().current_feed(profile_id))
    snapshot = feed.snapshot()
    return {
        "profileId": profile_id,
        "status": snapshot.status.value,
        "stale": snapshot.stale,
        "loadedAt": snapshot.loaded_at.isoformat() if snapshot.loaded_at else None,
        "items": [ticket.to_document() for ticket in snapshot.tickets],
    }


@router.get("/{profile_id}/tickets/{doc_no}")
async def ticket_status(profile_id: str, doc_no: str) -> dict:
    return unwrap(await get_engine().ticket_status(profile_id, doc_no))
