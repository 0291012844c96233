"""Infrastructure layer exports."""

from .http import HttpQueueBackend
from .memory import InMemoryTicketStore, InMemoryWorkflowRepository
from .notifications import (
    ChangeChannel,
    ChangeEvent,
    ChannelUnavailableError,
    InMemoryChangeChannel,
    RedisChangeChannel,
)
from .stores import (
    BackingStoreError,
    RecordNotFoundError,
    StateMismatchError,
    TicketIssuer,
    TicketStore,
    TransitionRejectedError,
    WorkflowRepository,
)

__all__ = [
    "BackingStoreError",
    "ChangeChannel",
    "ChangeEvent",
    "ChannelUnavailableError",
    "HttpQueueBackend",
    "InMemoryChangeChannel",
    "InMemoryTicketStore",
    "InMemoryWorkflowRepository",
    "RecordNotFoundError",
    "RedisChangeChannel",
    "StateMismatchError",
    "TicketIssuer",
    "TicketStore",
    "TransitionRejectedError",
    "WorkflowRepository",
]
