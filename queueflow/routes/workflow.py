from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, ValidationError

from queueflow.application import WorkflowStore, get_engine
from queueflow.core.schema import WorkflowDefinition

from .responses import require, unwrap

router = APIRouter(prefix="/workflow-designer", tags=["workflow"])

_COLLECTIONS = {"kiosks": "kiosk", "service-points": "service_point", "display-boards": "display_board"}


async def _designer(profile_id: str) -> WorkflowStore:
    return unwrap(await get_engine().open_designer(profile_id))


def _serialise(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True, mode="json", exclude_none=True)
    if isinstance(value, list):
        return [_serialise(item) for item in value]
    return value


def _draft(store: WorkflowStore, result: Any = None) -> dict:
    draft = store.current()
    return {
        "result": _serialise(result),
        "workflow": draft.to_document() if draft else None,
        "issues": [asdict(issue) for issue in store.issues],
    }


def _collection(name: str) -> str:
    kind = _COLLECTIONS.get(name)
    if kind is None:
        raise HTTPException(status_code=404, detail=f"unknown collection {name}")
    return kind


@router.get("/{profile_id}")
async def get_workflow(profile_id: str, reload: bool = Query(default=False)) -> dict:
    store = unwrap(await get_engine().open_designer(profile_id, reload=reload))
    return _draft(store)


@router.get("/{profile_id}/validate")
async def validate_workflow(profile_id: str) -> dict:
    store = await _designer(profile_id)
    issues = unwrap(store.validate())
    return {"valid": not any(issue.severity == "error" for issue in issues), "issues": [asdict(i) for i in issues]}


@router.post("/{profile_id}/save")
async def save_workflow(profile_id: str, payload: dict | None = None) -> dict:
    definition = None
    if payload:
        try:
            definition = WorkflowDefinition.model_validate({**payload, "profileId": profile_id})
        except ValidationError as exc:
            detail = [f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()]
            raise HTTPException(status_code=422, detail=detail) from exc
    else:
        await _designer(profile_id)
    engine = get_engine()
    saved = unwrap(await engine.save_designer(profile_id, definition))
    return {"saved": True, "workflow": saved.to_document()}


# ----------------------------------------------------------------------
# service groups & states
# ----------------------------------------------------------------------
@router.post("/{profile_id}/groups")
async def add_group(profile_id: str, payload: dict | None = None) -> dict:
    store = await _designer(profile_id)
    code = unwrap(store.add_service_group((payload or {}).get("name")))
    return _draft(store, code)


@router.patch("/{profile_id}/groups/{group_code}")
async def update_group(profile_id: str, group_code: str, payload: dict) -> dict:
    store = await _designer(profile_id)
    return _draft(store, unwrap(store.update_service_group(group_code, payload)))


@router.delete("/{profile_id}/groups/{group_code}")
async def delete_group(profile_id: str, group_code: str) -> dict:
    store = await _designer(profile_id)
    return _draft(store, unwrap(store.delete_service_group(group_code)))


@router.post("/{profile_id}/groups/{group_code}/states")
async def add_state(profile_id: str, group_code: str, payload: dict | None = None) -> dict:
    store = await _designer(profile_id)
    return _draft(store, unwrap(store.add_state(group_code, (payload or {}).get("label"))))


@router.patch("/{profile_id}/groups/{group_code}/states/{state_code}")
async def update_state(profile_id: str, group_code: str, state_code: str, payload: dict) -> dict:
    store = await _designer(profile_id)
    return _draft(store, unwrap(store.update_state(group_code, state_code, payload)))


@router.delete("/{profile_id}/groups/{group_code}/states/{state_code}")
async def delete_state(
    profile_id: str, group_code: str, state_code: str, cascade: bool = Query(default=False)
) -> dict:
    store = await _designer(profile_id)
    return _draft(store, unwrap(store.delete_state(group_code, state_code, cascade=cascade)))


@router.post("/{profile_id}/groups/{group_code}/states/{state_code}/transitions")
async def add_transition(profile_id: str, group_code: str, state_code: str, payload: dict) -> dict:
    store = await _designer(profile_id)
    transition = store.add_transition(
        group_code,
        state_code,
        require(payload, "to"),
        payload.get("action") or payload.get("label"),
        required_role=payload.get("requiredRole"),
    )
    return _draft(store, unwrap(transition))


@router.patch("/{profile_id}/groups/{group_code}/states/{state_code}/transitions/{index}")
async def update_transition(profile_id: str, group_code: str, state_code: str, index: int, payload: dict) -> dict:
    store = await _designer(profile_id)
    return _draft(store, unwrap(store.update_transition(group_code, state_code, index, payload)))


@router.delete("/{profile_id}/groups/{group_code}/states/{state_code}/transitions/{index}")
async def remove_transition(profile_id: str, group_code: str, state_code: str, index: int) -> dict:
    store = await _designer(profile_id)
    return _draft(store, unwrap(store.remove_transition(group_code, state_code, index)))


# ----------------------------------------------------------------------
# touchpoints
# ----------------------------------------------------------------------
@router.post("/{profile_id}/{collection}")
async def add_touchpoint(profile_id: str, collection: str) -> dict:
    kind = _collection(collection)
    store = await _designer(profile_id)
    return _draft(store, unwrap(getattr(store, f"add_{kind}")()))


@router.patch("/{profile_id}/{collection}/{code}")
async def update_touchpoint(profile_id: str, collection: str, code: str, payload: dict) -> dict:
    kind = _collection(collection)
    store = await _designer(profile_id)
    return _draft(store, unwrap(getattr(store, f"update_{kind}")(code, payload)))


@router.delete("/{profile_id}/{collection}/{code}")
async def delete_touchpoint(profile_id: str, collection: str, code: str) -> dict:
    kind = _collection(collection)
    store = await _designer(profile_id)
    return _draft(store, unwrap(getattr(store, f"delete_{kind}")(code)))
