from __future__ import annotations

import time

from fastapi import APIRouter, HTTPException
from pydantic import ValidationError

from queueflow.application import get_engine
from queueflow.core.schema import Profile

from .responses import require, unwrap

router = APIRouter(prefix="/profiles", tags=["profiles"])


def _profile(payload: dict, code: str) -> Profile:
    try:
        return Profile.model_validate({**payload, "code": code})
    except ValidationError as exc:
        detail = [f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()]
        raise HTTPException(status_code=400, detail=detail) from exc


@router.get("")
async def list_profiles() -> dict:
    profiles = unwrap(await get_engine().list_profiles())
    return {"items": [profile.to_document() for profile in profiles]}


@router.post("")
async def create_profile(payload: dict) -> dict:
    require(payload, "name")
    code = str(payload.get("code") or f"PF-{int(time.time() * 1000)}")
    created = unwrap(await get_engine().create_profile(_profile(payload, code)))
    return created.to_document()


@router.put("/{code}")
async def update_profile(code: str, payload: dict) -> dict:
    updated = unwrap(await get_engine().update_profile(code, _profile(payload, code)))
    return updated.to_document()


@router.delete("/{code}")
async def delete_profile(code: str) -> dict:
    return {"code": unwrap(await get_engine().delete_profile(code)), "deleted": True}
