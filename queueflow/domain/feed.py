"""Live ticket feed state."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from queueflow.core.schema import Ticket


class FeedStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


class SyncMode(str, Enum):
    IDLE = "idle"
    PUSH = "push"
    POLLING = "polling"


@dataclass(slots=True)
class FeedSnapshot:
    profile_id: str | None
    status: FeedStatus
    tickets: list["Ticket"] = field(default_factory=list)
    loaded_at: datetime | None = None
    error: str | None = None

    @property
    def ever_loaded(self) -> bool:
        return self.loaded_at is not None

    @property
    def stale(self) -> bool:
        """Last-known-good data is shown while the latest refresh failed."""

        return self.status == FeedStatus.ERROR and self.ever_loaded
