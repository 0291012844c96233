from __future__ import annotations

import asyncio
import copy
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from queueflow.application import QueueEngine, reset_engine_state  # noqa: E402
from queueflow.core.schema import Ticket, WorkflowDefinition  # noqa: E402
from queueflow.infrastructure import (  # noqa: E402
    InMemoryChangeChannel,
    InMemoryTicketStore,
    InMemoryWorkflowRepository,
)

PROFILE_ID = "PF-TEST"

WORKFLOW_DOCUMENT = {
    "profileId": PROFILE_ID,
    "profileName": "Test Branch",
    "serviceGroups": [
        {
            "code": "Q-ER",
            "name": "Emergency",
            "businessType": "flow-steps",
            "initialState": "WAIT",
            "states": {
                "WAIT": {
                    "code": "WAIT",
                    "label": "Waiting",
                    "type": "INITIAL",
                    "transitions": [{"action": "Call Next", "to": "CALL"}],
                },
                "CALL": {
                    "code": "CALL",
                    "label": "Calling",
                    "type": "NORMAL",
                    "estDuration": 10,
                    "transitions": [
                        {"action": "Finish", "to": "DONE"},
                        {"action": "Back to Queue", "to": "WAIT", "requiredRole": ["ADMIN"]},
                    ],
                },
                "DONE": {"code": "DONE", "label": "Done", "type": "FINAL"},
            },
        },
        {
            "code": "DEPOSIT",
            "name": "Deposit",
            "initialState": "WAIT",
            "states": {
                "WAIT": {
                    "label": "Waiting",
                    "type": "INITIAL",
                    "transitions": [
                        {"action": "Call", "to": "SERVING"},
                        {"action": "Cancel", "to": "CANCELLED"},
                    ],
                },
                "SERVING": {
                    "label": "Serving",
                    "type": "NORMAL",
                    "transitions": [{"action": "Finish", "to": "DONE"}],
                },
                "DONE": {"label": "Done", "type": "FINAL"},
                "CANCELLED": {"label": "Cancelled", "type": "FINAL"},
            },
        },
    ],
    "servicePoints": [
        {"code": "ER-1", "name": "ER Room 1", "focusStates": ["CALL"], "serviceGroups": ["Q-ER"]},
        {"code": "COUNTER-1", "name": "Counter 1", "focusStates": ["SERVING"], "serviceGroups": []},
    ],
    "kiosks": [{"code": "K-LOBBY", "name": "Lobby", "visibleServiceGroups": ["Q-ER"]}],
    "displayBoards": [
        {"code": "TV-ER", "name": "ER Board", "title": "Emergency", "visibleServiceGroups": ["Q-ER"]},
        {"code": "TV-HALL", "name": "Hall Board", "visibleServiceGroups": ["Q-ER", "DEPOSIT"]},
    ],
}


def make_document() -> dict:
    return copy.deepcopy(WORKFLOW_DOCUMENT)


def make_ticket(doc_no: str, status: str, group: str = "Q-ER", *, minutes: int = 0, **extra) -> Ticket:
    base = datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)
    return Ticket(
        doc_no=doc_no,
        ticket_no=f"T-{doc_no}",
        service_group=group,
        status=status,
        check_in_time=base + timedelta(minutes=minutes),
        profile_id=PROFILE_ID,
        **extra,
    )


@pytest.fixture(autouse=True)
def reset_state():
    reset_engine_state()
    yield
    reset_engine_state()


@pytest.fixture()
def workflow() -> WorkflowDefinition:
    return WorkflowDefinition.model_validate(make_document())


@pytest.fixture()
def repository() -> InMemoryWorkflowRepository:
    repo = InMemoryWorkflowRepository()
    repo.seed(make_document())
    return repo


@pytest.fixture()
def channel() -> InMemoryChangeChannel:
    return InMemoryChangeChannel()


@pytest.fixture()
def ticket_store(repository, channel) -> InMemoryTicketStore:
    return InMemoryTicketStore(repository, channel=channel)


@pytest.fixture()
def engine(repository, ticket_store, channel) -> QueueEngine:
    return QueueEngine(repository, ticket_store, ticket_store, channel, poll_interval=0.01, push_retry_interval=0.05)


def issue(store: InMemoryTicketStore, group: str = "Q-ER") -> Ticket:
    return asyncio.run(store.create(PROFILE_ID, group, {}))
