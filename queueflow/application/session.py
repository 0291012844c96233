"""Touchpoint start-up flow: pick a profile, then a touchpoint."""
from __future__ import annotations

import logging

from queueflow.core.schema import Profile, WorkflowDefinition
from queueflow.domain import Failure, FailureReason, Result, SessionContext, SessionStep, Success, TouchpointKind
from queueflow.infrastructure import BackingStoreError, TransitionRejectedError, WorkflowRepository

from .scope import ALL_GROUPS
from .workflow_store import WorkflowStore

logger = logging.getLogger(__name__)


class TouchpointSession:
    """Session-scoped selection of profile and touchpoint for one running screen.

    Nothing here is persisted; :meth:`restore` re-derives the same context
    from the backing store. Unrecoverable start-up problems move the session
    to ``FATAL`` and wait for an explicit :meth:`retry`.
    """

    def __init__(self, repository: WorkflowRepository, kind: TouchpointKind) -> None:
        self._repository = repository
        self._workflows = WorkflowStore(repository)
        self.kind = kind
        self.step = SessionStep.INIT
        self.profiles: list[Profile] = []
        self.context: SessionContext | None = None
        self.error: Failure | None = None
        self._profile_id: str | None = None

    @property
    def workflow(self) -> WorkflowDefinition | None:
        return self._workflows.current() if self._profile_id else None

    def _fatal(self, failure: Failure) -> Failure:
        self.step = SessionStep.FATAL
        self.error = failure
        logger.warning("Touchpoint session failed: %s", failure.message)
        return failure

    async def start(self) -> Result[list[Profile]]:
        self.step = SessionStep.INIT
        self.error = None
        try:
            profiles = await self._repository.get_profiles()
        except (BackingStoreError, TransitionRejectedError) as exc:
            return self._fatal(Failure(FailureReason.CONNECTIVITY, "profiles unavailable", [str(exc)]))
        if not profiles:
            return self._fatal(Failure(FailureReason.NOT_FOUND, "no profile is available"))
        self.profiles = profiles
        self.step = SessionStep.SELECT_PROFILE
        return Success(list(profiles))

    async def select_profile(self, profile_id: str) -> Result[WorkflowDefinition]:
        if self.step not in (SessionStep.SELECT_PROFILE, SessionStep.SELECT_TOUCHPOINT, SessionStep.READY):
            return Failure(FailureReason.NOT_FOUND, "profiles are not loaded")
        if not any(profile.code == profile_id for profile in self.profiles):
            return Failure(FailureReason.NOT_FOUND, f"profile {profile_id} not found")

        self._profile_id = profile_id
        self.context = None
        loaded = await self._workflows.load(profile_id, strict=True)
        if isinstance(loaded, Failure):
            if loaded.reason is FailureReason.SUPERSEDED:
                return loaded
            return self._fatal(loaded)
        self.step = SessionStep.SELECT_TOUCHPOINT
        return loaded

    def touchpoints(self) -> list[str]:
        workflow = self.workflow
        if workflow is None:
            return []
        if self.kind is TouchpointKind.KIOSK:
            return [kiosk.code for kiosk in workflow.kiosks]
        if self.kind is TouchpointKind.SERVICE_POINT:
            return [point.code for point in workflow.service_points]
        return [board.code for board in workflow.display_boards]

    def select_touchpoint(self, code: str, group_filter: str = ALL_GROUPS) -> Result[SessionContext]:
        if self.step not in (SessionStep.SELECT_TOUCHPOINT, SessionStep.READY) or self._profile_id is None:
            return Failure(FailureReason.NO_ACTIVE_WORKFLOW, "select a profile first")
        if code not in self.touchpoints():
            return Failure(FailureReason.NOT_FOUND, f"{self.kind.value} {code} not found")
        self.context = SessionContext(
            profile_id=self._profile_id,
            kind=self.kind,
            touchpoint_code=code,
            group_filter=group_filter or ALL_GROUPS,
        )
        self.step = SessionStep.READY
        return Success(self.context)

    def set_group_filter(self, group_filter: str) -> Result[SessionContext]:
        if self.context is None:
            return Failure(FailureReason.NO_ACTIVE_WORKFLOW, "no touchpoint selected")
        return self.select_touchpoint(self.context.touchpoint_code, group_filter)

    def switch_touchpoint(self) -> None:
        self.context = None
        if self._profile_id is not None and self.step is not SessionStep.FATAL:
            self.step = SessionStep.SELECT_TOUCHPOINT

    def switch_profile(self) -> None:
        self.context = None
        self._profile_id = None
        self.error = None
        self.step = SessionStep.SELECT_PROFILE if self.profiles else SessionStep.INIT

    async def retry(self) -> Result[list[Profile]] | Result[WorkflowDefinition]:
        """Manual recovery from ``FATAL``: reload profiles, then the chosen profile."""

        profile_id = self._profile_id
        started = await self.start()
        if isinstance(started, Failure) or profile_id is None:
            return started
        return await self.select_profile(profile_id)

    async def restore(self, profile_id: str, touchpoint_code: str, group_filter: str = ALL_GROUPS) -> Result[SessionContext]:
        for step in (self.start, lambda: self.select_profile(profile_id)):
            outcome = await step()
            if isinstance(outcome, Failure):
                return outcome
        return self.select_touchpoint(touchpoint_code, group_filter)


__all__ = ["TouchpointSession"]
