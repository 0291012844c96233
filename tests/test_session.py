from __future__ import annotations

import asyncio

from conftest import PROFILE_ID, make_document
from queueflow.application import TouchpointSession
from queueflow.domain import FailureReason, SessionStep, Success, TouchpointKind
from queueflow.infrastructure import InMemoryWorkflowRepository


def _ready(repository, kind=TouchpointKind.SERVICE_POINT) -> TouchpointSession:
    session = TouchpointSession(repository, kind)
    asyncio.run(session.start())
    asyncio.run(session.select_profile(PROFILE_ID))
    return session


def test_start_lists_profiles(repository):
    session = TouchpointSession(repository, TouchpointKind.KIOSK)

    result = asyncio.run(session.start())

    assert [profile.code for profile in result.value] == [PROFILE_ID]
    assert session.step is SessionStep.SELECT_PROFILE


def test_start_without_profiles_is_fatal():
    session = TouchpointSession(InMemoryWorkflowRepository(), TouchpointKind.KIOSK)

    result = asyncio.run(session.start())

    assert result.reason is FailureReason.NOT_FOUND
    assert session.step is SessionStep.FATAL


def test_offline_repository_is_fatal_until_retry(repository):
    repository.available = False
    session = TouchpointSession(repository, TouchpointKind.DISPLAY_BOARD)

    assert asyncio.run(session.start()).reason is FailureReason.CONNECTIVITY
    assert session.step is SessionStep.FATAL

    repository.available = True
    assert isinstance(asyncio.run(session.retry()), Success)
    assert session.step is SessionStep.SELECT_PROFILE


def test_invalid_workflow_blocks_touchpoint_selection(repository):
    document = make_document()
    document["serviceGroups"][0]["initialState"] = "MISSING"
    repository.seed(document)
    session = TouchpointSession(repository, TouchpointKind.SERVICE_POINT)
    asyncio.run(session.start())

    result = asyncio.run(session.select_profile(PROFILE_ID))

    assert result.reason is FailureReason.INVALID_CONFIGURATION
    assert session.step is SessionStep.FATAL
    assert session.error is result


def test_select_touchpoint_by_kind(repository):
    session = _ready(repository)

    assert session.touchpoints() == ["ER-1", "COUNTER-1"]
    result = session.select_touchpoint("COUNTER-1", "DEPOSIT")

    assert result.value.touchpoint_code == "COUNTER-1"
    assert result.value.group_filter == "DEPOSIT"
    assert session.step is SessionStep.READY
    assert session.select_touchpoint("K-LOBBY").reason is FailureReason.NOT_FOUND


def test_group_filter_and_switching(repository):
    session = _ready(repository)
    session.select_touchpoint("COUNTER-1")

    assert session.set_group_filter("Q-ER").value.group_filter == "Q-ER"

    session.switch_touchpoint()
    assert session.context is None
    assert session.step is SessionStep.SELECT_TOUCHPOINT

    session.switch_profile()
    assert session.workflow is None
    assert session.step is SessionStep.SELECT_PROFILE


def test_restore_rebuilds_context(repository):
    session = TouchpointSession(repository, TouchpointKind.DISPLAY_BOARD)

    result = asyncio.run(session.restore(PROFILE_ID, "TV-HALL"))

    assert result.value.kind is TouchpointKind.DISPLAY_BOARD
    assert result.value.touchpoint_code == "TV-HALL"
    assert session.workflow.display_board("TV-HALL") is not None


def test_select_unknown_profile(repository):
    session = TouchpointSession(repository, TouchpointKind.KIOSK)
    asyncio.run(session.start())

    assert asyncio.run(session.select_profile("NOPE")).reason is FailureReason.NOT_FOUND
    assert session.step is SessionStep.SELECT_PROFILE
