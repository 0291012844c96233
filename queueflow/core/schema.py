"""Workflow document schema and the externally owned ticket record.

Field names follow the persisted camelCase layout (``serviceGroups``,
``initialState``, ``requiredRole`` ...).  Defaulting happens here, once, when a
document is validated, so downstream code never branches on missing
collections.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

StateType = Literal["INITIAL", "NORMAL", "FINAL"]

STATE_TYPE_ORDER: dict[str, int] = {"INITIAL": 0, "NORMAL": 1, "FINAL": 2}

FLOW_STEPS = "flow-steps"
THREE_COLUMN = "three-column"
_LEGACY_BUSINESS_TYPES = {"1": FLOW_STEPS, "2": THREE_COLUMN}

DEFAULT_GROUP_CODE = "General"


class _Document(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        validate_assignment=True,
    )

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


def _none_to_list(value: Any) -> Any:
    return [] if value is None else value


class Transition(_Document):
    action: str
    to: str
    required_role: list[str] = Field(default_factory=list)
    label: str | None = None

    empty_roles = field_validator("required_role", mode="before")(_none_to_list)

    def permits(self, role: str) -> bool:
        return not self.required_role or role in self.required_role


class StateDefinition(_Document):
    code: str
    label: str = ""
    type: StateType = "NORMAL"
    color: str | None = None
    transitions: list[Transition] = Field(default_factory=list)
    est_duration: int | None = None

    empty_transitions = field_validator("transitions", mode="before")(_none_to_list)


class ServiceGroup(_Document):
    code: str
    name: str = ""
    description: str | None = None
    priority: str = "Standard"
    business_type: str | None = None
    initial_state: str = ""
    states: dict[str, StateDefinition] = Field(default_factory=dict)

    @field_validator("states", mode="before")
    @classmethod
    def _fill_state_codes(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, dict):
            filled: dict[str, Any] = {}
            for key, state in value.items():
                if isinstance(state, dict) and not state.get("code"):
                    state = {**state, "code": key}
                filled[key] = state
            return filled
        return value

    @field_validator("business_type", mode="before")
    @classmethod
    def _normalise_business_type(cls, value: Any) -> Any:
        return normalise_business_type(value)

    def state(self, code: str) -> StateDefinition | None:
        return self.states.get(code)

    def edge_for(self, current_state: str, action: str, role: str) -> Transition | None:
        """First edge out of ``current_state`` named by ``action`` that ``role`` may take.

        ``action`` matches the button label or the target code. Edges into
        states the group does not define never match.
        """

        state = self.state(current_state)
        if state is None or state.type == "FINAL":
            return None
        wanted = action.strip().casefold()
        for transition in state.transitions:
            if transition.action.casefold() != wanted and transition.to.casefold() != wanted:
                continue
            if transition.permits(role) and self.state(transition.to) is not None:
                return transition
        return None

    def ordered_states(self) -> list[StateDefinition]:
        """INITIAL first, then NORMAL, then FINAL; definition order within a type."""

        return sorted(self.states.values(), key=lambda item: STATE_TYPE_ORDER.get(item.type, 1))

    def states_of_type(self, state_type: str) -> list[StateDefinition]:
        return [state for state in self.states.values() if state.type == state_type]


class ServicePoint(_Document):
    code: str
    name: str = ""
    description: str | None = None
    focus_states: list[str] = Field(default_factory=list)
    service_groups: list[str] = Field(default_factory=list)

    empty_lists = field_validator("focus_states", "service_groups", mode="before")(_none_to_list)


class Kiosk(_Document):
    code: str
    name: str = ""
    title: str | None = None
    description: str | None = None
    visible_service_groups: list[str] = Field(default_factory=list)

    empty_groups = field_validator("visible_service_groups", mode="before")(_none_to_list)


class DisplayBoard(_Document):
    code: str
    name: str = ""
    title: str | None = None
    description: str | None = None
    visible_service_groups: list[str] = Field(default_factory=list)

    empty_groups = field_validator("visible_service_groups", mode="before")(_none_to_list)


class WorkflowDefinition(_Document):
    profile_id: str
    profile_code: str | None = None
    profile_name: str | None = None
    description: str | None = None
    agn_code: str | None = None
    business_type: str | None = None
    service_groups: list[ServiceGroup] = Field(default_factory=list)
    service_points: list[ServicePoint] = Field(default_factory=list)
    kiosks: list[Kiosk] = Field(default_factory=list)
    display_boards: list[DisplayBoard] = Field(default_factory=list)

    empty_collections = field_validator(
        "service_groups", "service_points", "kiosks", "display_boards", mode="before"
    )(_none_to_list)

    @field_validator("business_type", mode="before")
    @classmethod
    def _normalise_business_type(cls, value: Any) -> Any:
        return normalise_business_type(value)

    def group(self, code: str) -> ServiceGroup | None:
        return next((group for group in self.service_groups if group.code == code), None)

    def service_point(self, code: str) -> ServicePoint | None:
        return next((point for point in self.service_points if point.code == code), None)

    def kiosk(self, code: str) -> Kiosk | None:
        return next((kiosk for kiosk in self.kiosks if kiosk.code == code), None)

    def display_board(self, code: str) -> DisplayBoard | None:
        return next((board for board in self.display_boards if board.code == code), None)

    def effective_business_type(self, group: ServiceGroup) -> str:
        return group.business_type or self.business_type or THREE_COLUMN


class Profile(_Document):
    code: str
    name: str = ""
    agn_code: str | None = None
    description: str | None = None
    workflow_code: str | None = None
    config: dict[str, Any] | None = None


class Ticket(_Document):
    model_config = ConfigDict(validate_assignment=False)

    doc_no: str
    ticket_no: str = ""
    queue_no: str | None = None
    service_group: str = DEFAULT_GROUP_CODE
    status: str
    check_in_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    ref_id: str | None = None
    ref_type: str | None = None
    counter: str | None = None
    profile_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _from_wire(cls, value: Any) -> Any:
        """Accept the backing store's row shape (``queueType``, embedded ``data``)."""

        if not isinstance(value, dict):
            return value
        row = dict(value)
        embedded = row.get("data")
        if not isinstance(embedded, dict):
            embedded = {}
            raw = row.pop("dataString", None)
            if isinstance(raw, str) and raw.strip():
                try:
                    parsed = json.loads(raw)
                except json.JSONDecodeError:
                    parsed = {}
                if isinstance(parsed, dict):
                    embedded = parsed
        row["data"] = embedded

        group = (
            row.get("serviceGroup")
            or row.get("service_group")
            or row.get("queueType")
            or embedded.get("serviceGroup")
            or embedded.get("queueType")
        )
        row["serviceGroup"] = group or DEFAULT_GROUP_CODE
        row.pop("service_group", None)
        row.pop("queueType", None)

        if not row.get("counter") and embedded.get("counter") is not None:
            row["counter"] = str(embedded["counter"])
        if not row.get("profileId") and not row.get("profile_id") and embedded.get("profileId"):
            row["profileId"] = embedded["profileId"]
        for key in ("docNo", "queueNo", "ticketNo", "refId", "refType", "counter"):
            for name in (key, _snake(key)):
                if name not in row:
                    continue
                if row[name] is None:
                    del row[name]
                else:
                    row[name] = str(row[name])
        for key in ("checkInTime", "check_in_time"):
            if key in row and not row[key]:
                del row[key]
        if "checkInTime" not in row and "check_in_time" not in row and row.get("date"):
            row["checkInTime"] = row["date"]
        return row

    @field_validator("check_in_time")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def display_label(self) -> str:
        return self.ticket_no or self.queue_no or self.doc_no


def normalise_business_type(value: Any) -> Any:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return _LEGACY_BUSINESS_TYPES.get(text, text.lower())


def _snake(name: str) -> str:
    return "".join(f"_{char.lower()}" if char.isupper() else char for char in name)
