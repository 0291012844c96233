"""HTTP client for the external queue backing store."""
from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote, urlparse

import httpx
from pydantic import BaseModel, ValidationError

from queueflow.core.schema import Profile, Ticket

from .stores import BackingStoreError, RecordNotFoundError, StateMismatchError, TransitionRejectedError

logger = logging.getLogger(__name__)


class HttpQueueBackend:
    """Ticket store, ticket issuer and workflow repository over the REST API."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        parsed = urlparse(base_url)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError("base_url must include scheme and host")
        self._base_url = base_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    @staticmethod
    def _detail(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.text.strip() or response.reason_phrase
        if isinstance(payload, dict):
            return str(payload.get("message") or payload.get("error") or payload.get("detail") or payload)
        return str(payload)

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, self._url(path), **kwargs)
        except httpx.HTTPError as exc:
            raise BackingStoreError(f"{method} {path} failed: {exc}") from exc

        status = response.status_code
        if status == 404:
            raise RecordNotFoundError(path)
        if status == 409:
            body = self._json_or_empty(response)
            raise StateMismatchError(
                str(body.get("docNo") or kwargs.get("json", {}).get("docNo") or ""),
                body.get("expectedState"),
                body.get("currentState") or body.get("status"),
            )
        if status in (400, 403, 422) and method != "GET":
            raise TransitionRejectedError(self._detail(response))
        if status >= 400:
            raise BackingStoreError(f"{method} {path} returned {status}: {self._detail(response)}")
        return response

    @staticmethod
    def _json_or_empty(response: httpx.Response) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {}

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        content_type = response.headers.get("content-type", "")
        if "json" not in content_type:
            raise BackingStoreError(f"expected JSON from {response.request.url}, got {content_type or 'nothing'}")
        try:
            return response.json()
        except ValueError as exc:
            raise BackingStoreError(f"malformed JSON from {response.request.url}") from exc

    @staticmethod
    def _parse(model: type[BaseModel], payload: Any) -> Any:
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            raise BackingStoreError(f"malformed {model.__name__.lower()} record: {exc.error_count()} error(s)") from exc

    @staticmethod
    def _segment(value: str) -> str:
        return quote(value, safe="")

    # ------------------------------------------------------------------
    # profiles & workflow documents
    # ------------------------------------------------------------------
    async def get_profiles(self) -> list[Profile]:
        payload = self._json(await self._request("GET", "/api/profile"))
        rows = payload.get("items", []) if isinstance(payload, dict) else payload
        return [self._parse(Profile, row) for row in rows or []]

    async def create_profile(self, profile: Profile) -> Profile:
        response = await self._request("POST", "/api/profile", json=profile.to_document())
        return self._profile_from(response, profile)

    async def update_profile(self, code: str, profile: Profile) -> Profile:
        body = profile.model_copy(update={"code": code}).to_document()
        response = await self._request("PUT", f"/api/profile/{self._segment(code)}", json=body)
        return self._profile_from(response, profile)

    def _profile_from(self, response: httpx.Response, fallback: Profile) -> Profile:
        payload = self._json_or_empty(response)
        if payload.get("code"):
            return self._parse(Profile, payload)
        return fallback

    async def delete_profile(self, code: str) -> None:
        await self._request("DELETE", f"/api/profile/{self._segment(code)}")

    async def get_workflow(self, profile_id: str) -> dict[str, Any]:
        payload = self._json(await self._request("GET", f"/api/workflow-designer/{self._segment(profile_id)}"))
        if not isinstance(payload, dict) or payload.get("error") or payload.get("message") == "Not Found":
            raise RecordNotFoundError(f"workflow for profile {profile_id}")
        payload.setdefault("profileId", profile_id)
        return payload

    async def save_workflow(self, document: dict[str, Any]) -> None:
        await self._request("POST", "/api/workflow-designer/save", json=document)

    # ------------------------------------------------------------------
    # tickets
    # ------------------------------------------------------------------
    async def list_tickets(self, profile_id: str) -> list[Ticket]:
        payload = self._json(await self._request("GET", f"/api/queue/profile/{self._segment(profile_id)}"))
        rows = payload.get("items", []) if isinstance(payload, dict) else payload
        tickets: list[Ticket] = []
        for row in rows or []:
            ticket = self._parse(Ticket, row)
            if not ticket.profile_id:
                ticket = ticket.model_copy(update={"profile_id": profile_id})
            tickets.append(ticket)
        return tickets

    async def get(self, doc_no: str) -> Ticket:
        payload = self._json(await self._request("GET", f"/api/queue/{self._segment(doc_no)}"))
        if not isinstance(payload, dict) or not payload.get("docNo"):
            raise RecordNotFoundError(f"ticket {doc_no}")
        return self._parse(Ticket, payload)

    async def transition(
        self,
        doc_no: str,
        target_state: str,
        actor: str,
        *,
        expected_state: str | None = None,
        service_point: str | None = None,
    ) -> Ticket:
        body: dict[str, Any] = {"docNo": doc_no, "action": target_state, "actor": actor}
        if expected_state is not None:
            body["expectedState"] = expected_state
        if service_point:
            body["servicePoint"] = service_point
        response = await self._request("POST", "/api/staff/console/execute", json=body)
        payload = self._json_or_empty(response)
        if payload.get("docNo"):
            return self._parse(Ticket, payload)
        logger.debug("Execute for %s returned no ticket body, refetching", doc_no)
        return await self.get(doc_no)

    async def bulk_transition(self, doc_nos: list[str], action: str, *, actor: str) -> dict[str, Any]:
        body = {"action": action.lower(), "docNos": list(doc_nos), "actor": actor}
        response = await self._request("POST", "/api/staff/queue/bulk", json=body)
        payload = self._json_or_empty(response)
        payload.setdefault("action", action)
        payload.setdefault("updated", list(doc_nos))
        return payload

    async def create(self, profile_id: str, group_code: str, attributes: dict[str, Any]) -> Ticket:
        body = {
            "profileId": profile_id,
            "attributes": {**attributes, "serviceGroup": group_code, "queueType": group_code},
        }
        payload = self._json(await self._request("POST", "/api/queue/gen", json=body))
        if not isinstance(payload, dict) or not payload.get("docNo"):
            raise BackingStoreError("ticket issuance returned no docNo")
        if not any(payload.get(key) for key in ("serviceGroup", "queueType", "data", "dataString")):
            payload = {**payload, "serviceGroup": group_code}
        ticket = self._parse(Ticket, payload)
        if not ticket.profile_id:
            ticket = ticket.model_copy(update={"profile_id": profile_id})
        return ticket

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["HttpQueueBackend"]
