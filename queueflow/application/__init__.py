"""Application services."""

from .display import DisplayRouter
from .engine import QueueEngine, build_engine, configure_engine, get_engine, load_seed, reset_engine_state
from .feed import LiveTicketFeed
from .scope import ALL_GROUPS, ScopeResolver, fifo
from .session import TouchpointSession
from .tickets import TicketService
from .transitions import TransitionValidator
from .workflow_store import SAVE_FAILED_MESSAGE, WorkflowStore

__all__ = [
    "ALL_GROUPS",
    "DisplayRouter",
    "LiveTicketFeed",
    "QueueEngine",
    "SAVE_FAILED_MESSAGE",
    "ScopeResolver",
    "TicketService",
    "TouchpointSession",
    "TransitionValidator",
    "WorkflowStore",
    "build_engine",
    "configure_engine",
    "fifo",
    "get_engine",
    "load_seed",
    "reset_engine_state",
]
