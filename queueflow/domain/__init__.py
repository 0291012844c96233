"""Domain layer definitions."""

from .board import BoardLayout, ColumnKind, RenderColumn, RenderItem, RenderPlan
from .feed import FeedSnapshot, FeedStatus, SyncMode
from .results import Failure, FailureReason, Result, Success
from .touchpoints import AvailableAction, BulkOutcome, Role, SessionContext, SessionStep, TouchpointKind

__all__ = [
    "AvailableAction",
    "BoardLayout",
    "BulkOutcome",
    "ColumnKind",
    "Failure",
    "FailureReason",
    "FeedSnapshot",
    "FeedStatus",
    "RenderColumn",
    "RenderItem",
    "RenderPlan",
    "Result",
    "Role",
    "SessionContext",
    "SessionStep",
    "Success",
    "SyncMode",
    "TouchpointKind",
]
