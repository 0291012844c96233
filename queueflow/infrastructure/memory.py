"""In-memory collaborators for local runs and tests."""
from __future__ import annotations

import copy
import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Any

from queueflow.core.schema import Profile, Ticket, WorkflowDefinition

from .notifications import ChangeChannel, ChannelUnavailableError
from .stores import (
    BackingStoreError,
    RecordNotFoundError,
    StateMismatchError,
    TransitionRejectedError,
    WorkflowRepository,
)

logger = logging.getLogger(__name__)


class InMemoryWorkflowRepository:
    """Profiles and workflow documents held in process memory.

    Saves replace the stored document wholesale (last writer wins).
    """

    def __init__(self) -> None:
        self._profiles: dict[str, Profile] = {}
        self._workflows: dict[str, dict[str, Any]] = {}
        self.available = True

    def _check(self) -> None:
        if not self.available:
            raise BackingStoreError("workflow repository is offline")

    # ------------------------------------------------------------------
    # seeding
    # ------------------------------------------------------------------
    def seed(self, document: dict[str, Any], *, profile_name: str | None = None) -> str:
        profile_id = str(document.get("profileId") or "").strip()
        if not profile_id:
            raise ValueError("workflow document requires profileId")
        self._workflows[profile_id] = copy.deepcopy(document)
        if profile_id not in self._profiles:
            self._profiles[profile_id] = Profile(
                code=profile_id,
                name=profile_name or document.get("profileName") or profile_id,
                agn_code=document.get("agnCode"),
                workflow_code=profile_id,
            )
        return profile_id

    def reset(self) -> None:
        self._profiles.clear()
        self._workflows.clear()
        self.available = True

    # ------------------------------------------------------------------
    # profiles
    # ------------------------------------------------------------------
    async def get_profiles(self) -> list[Profile]:
        self._check()
        return [profile.model_copy(deep=True) for profile in self._profiles.values()]

    async def create_profile(self, profile: Profile) -> Profile:
        self._check()
        if profile.code in self._profiles:
            raise TransitionRejectedError(f"profile {profile.code} already exists")
        stored = profile.model_copy(deep=True)
        self._profiles[profile.code] = stored
        self._workflows.setdefault(
            profile.code,
            {"profileId": profile.code, "profileName": profile.name, "serviceGroups": []},
        )
        return stored.model_copy(deep=True)

    async def update_profile(self, code: str, profile: Profile) -> Profile:
        self._check()
        if code not in self._profiles:
            raise RecordNotFoundError(f"profile {code}")
        stored = profile.model_copy(update={"code": code}, deep=True)
        self._profiles[code] = stored
        return stored.model_copy(deep=True)

    async def delete_profile(self, code: str) -> None:
        self._check()
        if self._profiles.pop(code, None) is None:
            raise RecordNotFoundError(f"profile {code}")
        self._workflows.pop(code, None)

    # ------------------------------------------------------------------
    # workflow documents
    # ------------------------------------------------------------------
    async def get_workflow(self, profile_id: str) -> dict[str, Any]:
        self._check()
        document = self._workflows.get(profile_id)
        if document is None:
            raise RecordNotFoundError(f"workflow for profile {profile_id}")
        return copy.deepcopy(document)

    async def save_workflow(self, document: dict[str, Any]) -> None:
        self._check()
        profile_id = str(document.get("profileId") or "").strip()
        if not profile_id:
            raise TransitionRejectedError("workflow document requires profileId")
        self._workflows[profile_id] = copy.deepcopy(document)


class InMemoryTicketStore:
    """Ticket store and issuer backed by a dict.

    Transitions honour ``expected_state`` the way the shared backing store
    does, which is what surfaces racing stations as a state mismatch.
    """

    def __init__(self, workflows: WorkflowRepository, *, channel: ChangeChannel | None = None) -> None:
        self._workflows = workflows
        self._channel = channel
        self._tickets: dict[str, Ticket] = {}
        self._doc_counter = 0
        self._sequences: Counter[tuple[str, str]] = Counter()
        self.available = True

    def _check(self) -> None:
        if not self.available:
            raise BackingStoreError("ticket store is offline")

    def _find(self, doc_no: str) -> Ticket:
        ticket = self._tickets.get(doc_no)
        if ticket is None:
            raise RecordNotFoundError(f"ticket {doc_no}")
        return ticket

    async def _notify(self, profile_id: str | None, reason: str) -> None:
        if self._channel is None or not profile_id:
            return
        try:
            await self._channel.publish(profile_id, {"reason": reason})
        except ChannelUnavailableError as exc:
            logger.warning("Change notification for %s dropped: %s", profile_id, exc)

    def add(self, ticket: Ticket) -> Ticket:
        """Insert a ready-made ticket record."""

        self._tickets[ticket.doc_no] = ticket
        return ticket

    def reset(self) -> None:
        self._tickets.clear()
        self._sequences.clear()
        self._doc_counter = 0
        self.available = True

    # ------------------------------------------------------------------
    # issuance
    # ------------------------------------------------------------------
    async def create(self, profile_id: str, group_code: str, attributes: dict[str, Any]) -> Ticket:
        self._check()
        definition = WorkflowDefinition.model_validate(await self._workflows.get_workflow(profile_id))
        group = definition.group(group_code)
        if group is None:
            raise RecordNotFoundError(f"service group {group_code}")

        self._doc_counter += 1
        self._sequences[(profile_id, group_code)] += 1
        sequence = self._sequences[(profile_id, group_code)]
        doc_no = f"{profile_id}-{self._doc_counter:06d}"
        ticket = Ticket(
            doc_no=doc_no,
            ticket_no=f"{group_code}-{sequence:03d}",
            queue_no=str(sequence),
            service_group=group_code,
            status=group.initial_state,
            check_in_time=datetime.now(timezone.utc),
            profile_id=profile_id,
            data=dict(attributes),
        )
        self._tickets[doc_no] = ticket
        logger.info("Issued ticket %s (%s) in %s", ticket.ticket_no, doc_no, group_code)
        await self._notify(profile_id, "created")
        return ticket.model_copy(deep=True)

    # ------------------------------------------------------------------
    # ticket records
    # ------------------------------------------------------------------
    async def list_tickets(self, profile_id: str) -> list[Ticket]:
        self._check()
        return [
            ticket.model_copy(deep=True)
            for ticket in self._tickets.values()
            if ticket.profile_id == profile_id
        ]

    async def get(self, doc_no: str) -> Ticket:
        self._check()
        return self._find(doc_no).model_copy(deep=True)

    async def transition(
        self,
        doc_no: str,
        target_state: str,
        actor: str,
        *,
        expected_state: str | None = None,
        service_point: str | None = None,
    ) -> Ticket:
        self._check()
        ticket = self._find(doc_no)
        if expected_state is not None and ticket.status != expected_state:
            raise StateMismatchError(doc_no, expected_state, ticket.status)

        update: dict[str, Any] = {"status": target_state}
        if service_point:
            update["ref_id"] = service_point
            update["ref_type"] = "SERVICE_POINT"
        updated = ticket.model_copy(update=update, deep=True)
        self._tickets[doc_no] = updated
        await self._notify(updated.profile_id, "transition")
        return updated.model_copy(deep=True)

    async def bulk_transition(self, doc_nos: list[str], action: str, *, actor: str) -> dict[str, Any]:
        self._check()
        updated: list[str] = []
        skipped: list[str] = []
        profiles: set[str] = set()
        definitions: dict[str, WorkflowDefinition] = {}
        for doc_no in doc_nos:
            ticket = self._tickets.get(doc_no)
            if ticket is None or not ticket.profile_id:
                skipped.append(doc_no)
                continue
            definition = definitions.get(ticket.profile_id)
            if definition is None:
                definition = WorkflowDefinition.model_validate(
                    await self._workflows.get_workflow(ticket.profile_id)
                )
                definitions[ticket.profile_id] = definition
            group = definition.group(ticket.service_group)
            edge = group.edge_for(ticket.status, action, actor) if group else None
            if edge is None:
                skipped.append(doc_no)
                continue
            self._tickets[doc_no] = ticket.model_copy(update={"status": edge.to}, deep=True)
            updated.append(doc_no)
            profiles.add(ticket.profile_id)

        for profile_id in sorted(profiles):
            await self._notify(profile_id, "bulk")
        return {"action": action, "updated": updated, "skipped": skipped}


__all__ = ["InMemoryTicketStore", "InMemoryWorkflowRepository"]
