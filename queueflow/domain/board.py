"""Render plan handed to display boards."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from queueflow.core.schema import Ticket


class BoardLayout(str, Enum):
    FLOW_STEPS = "flow-steps"
    THREE_COLUMN = "three-column"


class ColumnKind(str, Enum):
    STATE = "state"
    WAITING = "waiting"
    IN_PROGRESS = "in_progress"
    SERVICE_COUNTER = "service_counter"


@dataclass(slots=True)
class RenderItem:
    doc_no: str
    label: str
    status: str
    service_group: str


@dataclass(slots=True)
class RenderColumn:
    key: str
    title: str
    kind: ColumnKind
    tickets: list["Ticket"] = field(default_factory=list)
    items: list[RenderItem] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.tickets)


@dataclass(slots=True)
class RenderPlan:
    board_code: str
    layout: BoardLayout
    columns: list[RenderColumn] = field(default_factory=list)
    title: str | None = None
    stale: bool = False
    loaded: bool = True

    def column(self, key: str) -> RenderColumn | None:
        for column in self.columns:
            if column.key == key:
                return column
        return None

    def as_dict(self) -> dict[str, object]:
        return {
            "boardCode": self.board_code,
            "layout": self.layout.value,
            "title": self.title,
            "stale": self.stale,
            "loaded": self.loaded,
            "columns": [
                {
                    "key": column.key,
                    "title": column.title,
                    "kind": column.kind.value,
                    "total": column.total,
                    "items": [
                        {
                            "docNo": item.doc_no,
                            "label": item.label,
                            "status": item.status,
                            "serviceGroup": item.service_group,
                        }
                        for item in column.items
                    ],
                }
                for column in self.columns
            ],
        }
