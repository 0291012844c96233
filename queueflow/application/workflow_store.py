"""Workflow Store: the editable per-profile workflow definition."""
from __future__ import annotations

import logging
from typing import Any, Iterable

from pydantic import BaseModel, ValidationError
from pydantic.alias_generators import to_camel

from queueflow.core.schema import (
    DisplayBoard,
    Kiosk,
    ServiceGroup,
    ServicePoint,
    StateDefinition,
    Transition,
    WorkflowDefinition,
)
from queueflow.core.validation import WorkflowIssue, collect_issues, errors_only
from queueflow.domain import Failure, FailureReason, Result, Success
from queueflow.infrastructure import (
    BackingStoreError,
    RecordNotFoundError,
    TransitionRejectedError,
    WorkflowRepository,
)

logger = logging.getLogger(__name__)

SAVE_FAILED_MESSAGE = "save failed, local edits retained"


def _camel_keys(updates: dict[str, Any]) -> dict[str, Any]:
    return {(to_camel(key) if "_" in key else key): value for key, value in updates.items()}


def _next_code(prefix: str, taken: Iterable[str], start: int) -> str:
    existing = set(taken)
    number = max(start, 1)
    while f"{prefix}{number}" in existing:
        number += 1
    return f"{prefix}{number}"


def _invalid(exc: ValidationError) -> Failure:
    details = [f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()]
    return Failure(FailureReason.INVALID_CONFIGURATION, "invalid value", details)


class WorkflowStore:
    """Loads, holds, edits and persists one workflow definition.

    Edits only touch the local draft; nothing reaches the repository until
    :meth:`save`.  Every operation returns a ``Success`` or ``Failure``.
    """

    GROUP_PREFIX = "Q-NEW-"
    STATE_PREFIX = "STATE_"
    KIOSK_PREFIX = "K-NEW-"
    SERVICE_POINT_PREFIX = "POINT-"
    DISPLAY_BOARD_PREFIX = "TV-NEW-"

    def __init__(self, repository: WorkflowRepository) -> None:
        self._repository = repository
        self._draft: WorkflowDefinition | None = None
        self._profile_id: str | None = None
        self._issues: list[WorkflowIssue] = []
        self._generation = 0

    @property
    def profile_id(self) -> str | None:
        return self._profile_id

    @property
    def issues(self) -> list[WorkflowIssue]:
        return list(self._issues)

    def current(self) -> WorkflowDefinition | None:
        return self._draft

    # ------------------------------------------------------------------
    # load & save
    # ------------------------------------------------------------------
    async def load(self, profile_id: str, *, strict: bool = True) -> Result[WorkflowDefinition]:
        """Fetch the profile's workflow and make it the current draft.

        A strict load refuses documents with configuration errors; a lenient
        load keeps them so an administrator can repair the document, with the
        problems available from :attr:`issues`.
        """

        self._generation += 1
        generation = self._generation
        try:
            document = await self._repository.get_workflow(profile_id)
        except RecordNotFoundError:
            return Failure(FailureReason.NOT_FOUND, f"no workflow for profile {profile_id}")
        except (BackingStoreError, TransitionRejectedError) as exc:
            logger.warning("Loading workflow for %s failed: %s", profile_id, exc)
            return Failure(FailureReason.CONNECTIVITY, "workflow repository unavailable", [str(exc)])

        if generation != self._generation:
            logger.warning("Discarding superseded workflow load for %s", profile_id)
            return Failure(FailureReason.SUPERSEDED, "a newer load replaced this one")

        document = dict(document)
        document.setdefault("profileId", profile_id)
        try:
            definition = WorkflowDefinition.model_validate(document)
        except ValidationError as exc:
            failure = _invalid(exc)
            failure.message = f"workflow for profile {profile_id} is malformed"
            return failure

        issues = collect_issues(definition)
        errors = errors_only(issues)
        if strict and errors:
            return Failure(
                FailureReason.INVALID_CONFIGURATION,
                f"workflow for profile {profile_id} has configuration errors",
                [str(issue) for issue in errors],
            )

        self._draft = definition
        self._profile_id = profile_id
        self._issues = issues
        logger.info("Loaded workflow for %s (%d groups)", profile_id, len(definition.service_groups))
        return Success(definition)

    def validate(self) -> Result[list[WorkflowIssue]]:
        draft = self._draft
        if draft is None:
            return self._no_workflow()
        self._issues = collect_issues(draft)
        return Success(list(self._issues))

    async def save(self, definition: WorkflowDefinition | None = None) -> Result[WorkflowDefinition]:
        """Replace the persisted definition wholesale with the draft."""

        if definition is not None:
            self._draft = definition
            self._profile_id = definition.profile_id
        draft = self._draft
        if draft is None:
            return self._no_workflow()

        self._issues = collect_issues(draft)
        errors = errors_only(self._issues)
        if errors:
            return Failure(
                FailureReason.INVALID_CONFIGURATION,
                "workflow has configuration errors",
                [str(issue) for issue in errors],
            )
        try:
            await self._repository.save_workflow(draft.to_document())
        except (BackingStoreError, RecordNotFoundError, TransitionRejectedError) as exc:
            logger.warning("Saving workflow for %s failed: %s", draft.profile_id, exc)
            return Failure(FailureReason.SAVE_FAILED, SAVE_FAILED_MESSAGE, [str(exc)])
        logger.info("Saved workflow for %s", draft.profile_id)
        return Success(draft)

    # ------------------------------------------------------------------
    # lookups
    # ------------------------------------------------------------------
    @staticmethod
    def _no_workflow() -> Failure:
        return Failure(FailureReason.NO_ACTIVE_WORKFLOW, "no workflow loaded")

    def _group(self, group_code: str) -> ServiceGroup | Failure:
        if self._draft is None:
            return self._no_workflow()
        group = self._draft.group(group_code)
        if group is None:
            return Failure(FailureReason.NOT_FOUND, f"service group {group_code} not found")
        return group

    def _state(self, group_code: str, state_code: str) -> tuple[ServiceGroup, StateDefinition] | Failure:
        group = self._group(group_code)
        if isinstance(group, Failure):
            return group
        state = group.state(state_code)
        if state is None:
            return Failure(FailureReason.NOT_FOUND, f"state {state_code} not found in {group_code}")
        return group, state

    # ------------------------------------------------------------------
    # service groups
    # ------------------------------------------------------------------
    def add_service_group(self, name: str | None = None) -> Result[str]:
        draft = self._draft
        if draft is None:
            return self._no_workflow()
        code = _next_code(
            self.GROUP_PREFIX,
            (group.code for group in draft.service_groups),
            len(draft.service_groups) + 1,
        )
        draft.service_groups.append(
            ServiceGroup(
                code=code,
                name=name or "New Queue Type",
                description="Description of the new queue workflow",
                priority="Standard",
                initial_state="WAIT",
                states={
                    "WAIT": StateDefinition(code="WAIT", label="Waiting", type="INITIAL", color="#3B82F6"),
                },
            )
        )
        return Success(code)

    def update_service_group(self, group_code: str, updates: dict[str, Any]) -> Result[ServiceGroup]:
        """Edit group metadata; states are edited through the state operations."""

        group = self._group(group_code)
        if isinstance(group, Failure):
            return group
        changes = _camel_keys(updates)
        for locked in ("code", "states", "initialState"):
            changes.pop(locked, None)
        try:
            updated = ServiceGroup.model_validate({**group.model_dump(by_alias=True), **changes})
        except ValidationError as exc:
            return _invalid(exc)
        groups = self._draft.service_groups
        groups[groups.index(group)] = updated
        return Success(updated)

    def delete_service_group(self, group_code: str) -> Result[str]:
        group = self._group(group_code)
        if isinstance(group, Failure):
            return group
        draft = self._draft
        draft.service_groups.remove(group)
        for scoped in (*draft.kiosks, *draft.display_boards):
            if group_code in scoped.visible_service_groups:
                scoped.visible_service_groups = [code for code in scoped.visible_service_groups if code != group_code]
        for point in draft.service_points:
            if group_code in point.service_groups:
                point.service_groups = [code for code in point.service_groups if code != group_code]
        return Success(group_code)

    # ------------------------------------------------------------------
    # states
    # ------------------------------------------------------------------
    def add_state(self, group_code: str, label: str | None = None) -> Result[str]:
        group = self._group(group_code)
        if isinstance(group, Failure):
            return group
        code = _next_code(self.STATE_PREFIX, group.states, len(group.states) + 1)
        group.states[code] = StateDefinition(
            code=code,
            label=label or "New State",
            type="NORMAL",
            color="#9CA3AF",
            est_duration=5,
        )
        return Success(code)

    def rename_state(self, group_code: str, state_code: str, label: str) -> Result[StateDefinition]:
        return self.update_state(group_code, state_code, {"label": label})

    def update_state(self, group_code: str, state_code: str, updates: dict[str, Any]) -> Result[StateDefinition]:
        """Edit a state's label, colour, duration or type.

        Promoting a state to INITIAL demotes the previous initial state to
        NORMAL. The current initial state cannot be demoted directly.
        """

        found = self._state(group_code, state_code)
        if isinstance(found, Failure):
            return found
        group, state = found
        changes = _camel_keys(updates)
        changes.pop("code", None)
        changes.pop("transitions", None)

        new_type = changes.get("type", state.type)
        is_initial = state_code == group.initial_state
        if is_initial and new_type != "INITIAL":
            return Failure(
                FailureReason.INITIAL_STATE,
                f"{state_code} is the initial state; promote another state first",
            )
        try:
            updated = StateDefinition.model_validate({**state.model_dump(by_alias=True), **changes})
        except ValidationError as exc:
            return _invalid(exc)

        if new_type == "INITIAL" and not is_initial:
            for other in group.states.values():
                if other.code != state_code and other.type == "INITIAL":
                    other.type = "NORMAL"
            group.initial_state = state_code
        group.states[state_code] = updated
        return Success(updated)

    def state_references(self, group_code: str, state_code: str) -> list[str]:
        """Paths inside the draft that point at ``state_code``."""

        draft = self._draft
        group = draft.group(group_code) if draft else None
        if group is None:
            return []
        paths: list[str] = []
        for other in group.states.values():
            if other.code == state_code:
                continue
            for index, transition in enumerate(other.transitions):
                if transition.to == state_code:
                    paths.append(f"{group_code}.states.{other.code}.transitions[{index}]")
        for point in draft.service_points:
            if state_code not in point.focus_states or not self._point_owns_state(point, group_code, state_code):
                continue
            paths.append(f"servicePoints.{point.code}.focusStates")
        return paths

    def _point_owns_state(self, point: ServicePoint, group_code: str, state_code: str) -> bool:
        # focus lists hold bare state codes; another group in scope may define the same code
        scope = point.service_groups or [group.code for group in self._draft.service_groups]
        if group_code not in scope:
            return False
        for code in scope:
            other = self._draft.group(code)
            if code != group_code and other is not None and state_code in other.states:
                return False
        return True

    def delete_state(self, group_code: str, state_code: str, *, cascade: bool = False) -> Result[list[str]]:
        """Remove a state.

        Refused while transitions or service point focus lists reference the
        state, unless ``cascade`` is set, in which case those references are
        removed too. The returned list names the references that were dropped.
        """

        found = self._state(group_code, state_code)
        if isinstance(found, Failure):
            return found
        group, _ = found
        if len(group.states) == 1:
            return Failure(FailureReason.LAST_STATE, "a service group must keep at least one state")
        if state_code == group.initial_state:
            return Failure(
                FailureReason.INITIAL_STATE,
                f"{state_code} is the initial state; promote another state first",
            )

        references = self.state_references(group_code, state_code)
        if references and not cascade:
            return Failure(FailureReason.STATE_IN_USE, f"{state_code} is still referenced", references)

        del group.states[state_code]
        if references:
            for other in group.states.values():
                if any(transition.to == state_code for transition in other.transitions):
                    other.transitions = [t for t in other.transitions if t.to != state_code]
            for point in self._draft.service_points:
                if f"servicePoints.{point.code}.focusStates" in references:
                    point.focus_states = [code for code in point.focus_states if code != state_code]
            logger.info("Deleted state %s/%s with %d references", group_code, state_code, len(references))
        return Success(references)

    # ------------------------------------------------------------------
    # transitions
    # ------------------------------------------------------------------
    def add_transition(
        self,
        group_code: str,
        from_state: str,
        to_state: str,
        label: str | None = None,
        *,
        required_role: list[str] | None = None,
    ) -> Result[Transition]:
        """Append an edge. Cycles are allowed; unknown targets are not."""

        found = self._state(group_code, from_state)
        if isinstance(found, Failure):
            return found
        group, state = found
        target = group.state(to_state)
        if target is None:
            return Failure(
                FailureReason.INVALID_CONFIGURATION,
                f"target state {to_state} does not exist in {group_code}",
            )
        transition = Transition(
            action=label or target.label or target.code,
            to=to_state,
            required_role=list(required_role or []),
        )
        state.transitions = [*state.transitions, transition]
        return Success(transition)

    def _transition(self, group_code: str, from_state: str, index: int) -> tuple[ServiceGroup, StateDefinition] | Failure:
        found = self._state(group_code, from_state)
        if isinstance(found, Failure):
            return found
        if not 0 <= index < len(found[1].transitions):
            return Failure(FailureReason.NOT_FOUND, f"transition {index} not found on {from_state}")
        return found

    def update_transition(
        self, group_code: str, from_state: str, index: int, updates: dict[str, Any]
    ) -> Result[Transition]:
        found = self._transition(group_code, from_state, index)
        if isinstance(found, Failure):
            return found
        group, state = found
        changes = _camel_keys(updates)
        target = changes.get("to")
        if target is not None and group.state(target) is None:
            return Failure(
                FailureReason.INVALID_CONFIGURATION,
                f"target state {target} does not exist in {group_code}",
            )
        try:
            updated = Transition.model_validate({**state.transitions[index].model_dump(by_alias=True), **changes})
        except ValidationError as exc:
            return _invalid(exc)
        transitions = list(state.transitions)
        transitions[index] = updated
        state.transitions = transitions
        return Success(updated)

    def remove_transition(self, group_code: str, from_state: str, index: int) -> Result[Transition]:
        found = self._transition(group_code, from_state, index)
        if isinstance(found, Failure):
            return found
        _, state = found
        transitions = list(state.transitions)
        removed = transitions.pop(index)
        state.transitions = transitions
        return Success(removed)

    # ------------------------------------------------------------------
    # touchpoints
    # ------------------------------------------------------------------
    def _add_touchpoint(self, attribute: str, model: type[BaseModel], prefix: str, name: str, **fields: Any) -> Result[str]:
        draft = self._draft
        if draft is None:
            return self._no_workflow()
        items = getattr(draft, attribute)
        code = _next_code(prefix, (item.code for item in items), len(items) + 1)
        items.append(model(code=code, name=name, description="Description", **fields))
        return Success(code)

    def _update_touchpoint(self, attribute: str, code: str, updates: dict[str, Any]) -> Result[Any]:
        draft = self._draft
        if draft is None:
            return self._no_workflow()
        items = getattr(draft, attribute)
        for index, item in enumerate(items):
            if item.code != code:
                continue
            changes = _camel_keys(updates)
            changes.pop("code", None)
            try:
                updated = type(item).model_validate({**item.model_dump(by_alias=True), **changes})
            except ValidationError as exc:
                return _invalid(exc)
            items[index] = updated
            return Success(updated)
        return Failure(FailureReason.NOT_FOUND, f"{code} not found")

    def _delete_touchpoint(self, attribute: str, code: str) -> Result[str]:
        draft = self._draft
        if draft is None:
            return self._no_workflow()
        items = getattr(draft, attribute)
        remaining = [item for item in items if item.code != code]
        if len(remaining) == len(items):
            return Failure(FailureReason.NOT_FOUND, f"{code} not found")
        setattr(draft, attribute, remaining)
        return Success(code)

    def add_kiosk(self) -> Result[str]:
        return self._add_touchpoint("kiosks", Kiosk, self.KIOSK_PREFIX, "New Kiosk")

    def update_kiosk(self, code: str, updates: dict[str, Any]) -> Result[Kiosk]:
        return self._update_touchpoint("kiosks", code, updates)

    def delete_kiosk(self, code: str) -> Result[str]:
        return self._delete_touchpoint("kiosks", code)

    def add_service_point(self) -> Result[str]:
        return self._add_touchpoint("service_points", ServicePoint, self.SERVICE_POINT_PREFIX, "New Service Point")

    def update_service_point(self, code: str, updates: dict[str, Any]) -> Result[ServicePoint]:
        return self._update_touchpoint("service_points", code, updates)

    def delete_service_point(self, code: str) -> Result[str]:
        return self._delete_touchpoint("service_points", code)

    def add_display_board(self) -> Result[str]:
        return self._add_touchpoint("display_boards", DisplayBoard, self.DISPLAY_BOARD_PREFIX, "New Display Board")

    def update_display_board(self, code: str, updates: dict[str, Any]) -> Result[DisplayBoard]:
        return self._update_touchpoint("display_boards", code, updates)

    def delete_display_board(self, code: str) -> Result[str]:
        return self._delete_touchpoint("display_boards", code)


__all__ = ["SAVE_FAILED_MESSAGE", "WorkflowStore"]
