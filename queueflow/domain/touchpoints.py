"""Value objects describing touchpoints, actors and their session context."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Role(str, Enum):
    """Acting role supplied by the identity provider."""

    ADMIN = "ADMIN"
    STAFF = "STAFF"
    KIOSK = "KIOSK"


class TouchpointKind(str, Enum):
    KIOSK = "kiosk"
    SERVICE_POINT = "service_point"
    DISPLAY_BOARD = "display_board"


class SessionStep(str, Enum):
    INIT = "init"
    SELECT_PROFILE = "select_profile"
    SELECT_TOUCHPOINT = "select_touchpoint"
    READY = "ready"
    FATAL = "fatal"


@dataclass(slots=True, frozen=True)
class SessionContext:
    """Selected touchpoint identity for one running touchpoint.

    Session-scoped: created at touchpoint start-up, dropped on an explicit
    switch, and always re-derivable from the backing store.
    """

    profile_id: str
    kind: TouchpointKind
    touchpoint_code: str
    group_filter: str = "ALL"


@dataclass(slots=True, frozen=True)
class AvailableAction:
    label: str
    target_state: str
    color: str | None = None

    def as_dict(self) -> dict[str, str | None]:
        return {"label": self.label, "targetState": self.target_state, "color": self.color}


@dataclass(slots=True)
class BulkOutcome:
    """Result of a bulk action: accepted doc numbers and per-ticket refusals."""

    action: str
    accepted: list[str] = field(default_factory=list)
    rejected: dict[str, str] = field(default_factory=dict)
