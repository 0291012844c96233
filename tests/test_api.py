from __future__ import annotations

import time

import pytest
from fastapi.testclient import TestClient

from conftest import PROFILE_ID, issue, make_ticket
from queueflow.app import create_app
from queueflow.core.config import Settings


@pytest.fixture()
def client(engine):
    app = create_app(Settings(), engine=engine)
    with TestClient(app) as test_client:
        yield test_client


def test_root_and_profiles(client):
    assert client.get("/").json()["message"] == "Queueflow Routing API"

    response = client.get("/api/profiles")
    assert response.status_code == 200
    assert [row["code"] for row in response.json()["items"]] == [PROFILE_ID]


def test_profile_lifecycle(client):
    created = client.post("/api/profiles", json={"code": "PF-NEW", "name": "New Branch"})
    assert created.status_code == 200
    assert created.json()["name"] == "New Branch"

    duplicate = client.post("/api/profiles", json={"code": "PF-NEW", "name": "Again"})
    assert duplicate.status_code == 422

    renamed = client.put("/api/profiles/PF-NEW", json={"name": "Renamed"})
    assert renamed.json()["name"] == "Renamed"

    assert client.delete("/api/profiles/PF-NEW").json() == {"code": "PF-NEW", "deleted": True}
    assert client.delete("/api/profiles/PF-NEW").status_code == 404
    assert client.post("/api/profiles", json={}).status_code == 400


def test_designer_edits_stay_local_until_saved(client):
    added = client.post(f"/api/workflow-designer/{PROFILE_ID}/groups", json={"name": "Loans"})
    assert added.status_code == 200
    code = added.json()["result"]
    assert client.get(f"/api/kiosks/{PROFILE_ID}/K-LOBBY/groups").status_code == 200

    client.patch(f"/api/workflow-designer/{PROFILE_ID}/kiosks/K-LOBBY", json={"visibleServiceGroups": [code]})
    before = client.get(f"/api/kiosks/{PROFILE_ID}/K-LOBBY/groups").json()["items"]
    saved = client.post(f"/api/workflow-designer/{PROFILE_ID}/save")
    after = client.get(f"/api/kiosks/{PROFILE_ID}/K-LOBBY/groups").json()["items"]

    assert saved.json()["saved"] is True
    assert [group["code"] for group in before] == ["Q-ER"]
    assert [group["code"] for group in after] == [code]


def test_designer_state_rules_map_to_422(client):
    base = f"/api/workflow-designer/{PROFILE_ID}/groups/Q-ER/states"

    in_use = client.delete(f"{base}/CALL")
    initial = client.delete(f"{base}/WAIT")

    assert in_use.status_code == 422
    assert in_use.json()["detail"]["reason"] == "STATE_IN_USE"
    assert initial.json()["detail"]["reason"] == "INITIAL_STATE"
    assert client.delete(f"{base}/CALL", params={"cascade": True}).status_code == 200
    assert client.get(f"/api/workflow-designer/{PROFILE_ID}/validate").json()["valid"] is True


def test_designer_transitions_and_touchpoints(client):
    base = f"/api/workflow-designer/{PROFILE_ID}"

    added = client.post(f"{base}/groups/DEPOSIT/states/SERVING/transitions", json={"to": "WAIT", "action": "Skip"})
    missing = client.post(f"{base}/groups/DEPOSIT/states/SERVING/transitions", json={"to": "NOWHERE"})
    board = client.post(f"{base}/display-boards")
    unknown = client.post(f"{base}/printers")

    assert added.json()["result"]["to"] == "WAIT"
    assert missing.status_code == 422
    assert board.json()["result"] == "TV-NEW-3"
    assert unknown.status_code == 404


def test_save_rejects_invalid_document(client):
    response = client.post(
        f"/api/workflow-designer/{PROFILE_ID}/save",
        json={"serviceGroups": [{"code": "G", "initialState": "X", "states": {}}]},
    )

    assert response.status_code == 422
    assert response.json()["detail"]["reason"] == "INVALID_CONFIGURATION"


def test_kiosk_issue_and_ticket_status(client):
    issued = client.post(f"/api/kiosks/{PROFILE_ID}/K-LOBBY/tickets", json={"serviceGroup": "Q-ER"})
    hidden = client.post(f"/api/kiosks/{PROFILE_ID}/K-LOBBY/tickets", json={"serviceGroup": "DEPOSIT"})

    assert issued.status_code == 200
    doc_no = issued.json()["docNo"]
    assert hidden.status_code == 403
    status = client.get(f"/api/queue/{PROFILE_ID}/tickets/{doc_no}").json()
    assert status["position"] == 1
    assert client.get(f"/api/queue/{PROFILE_ID}").json()["items"][0]["docNo"] == doc_no


def _wait_for(condition, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not condition():
        assert time.monotonic() < deadline, "condition not reached in time"
        time.sleep(0.01)


def test_queue_feed_follows_kiosk_issues_by_push(client, engine, channel):
    assert client.get(f"/api/queue/{PROFILE_ID}").json()["items"] == []
    feed = engine.feed(PROFILE_ID)
    assert feed.running
    _wait_for(lambda: channel.subscriber_count(PROFILE_ID) == 1)

    issued = client.post(f"/api/kiosks/{PROFILE_ID}/K-LOBBY/tickets", json={"serviceGroup": "Q-ER"})
    doc_no = issued.json()["docNo"]

    _wait_for(lambda: [ticket.doc_no for ticket in feed.snapshot().tickets] == [doc_no])
    assert [row["docNo"] for row in client.get(f"/api/queue/{PROFILE_ID}").json()["items"]] == [doc_no]


def test_staff_queue_lists_actions_per_role(client, ticket_store):
    ticket_store.add(make_ticket("D1", "CALL"))
    ticket_store.add(make_ticket("D0", "WAIT", minutes=-1))

    staff = client.get(f"/api/staff/{PROFILE_ID}/service-points/ER-1/queue").json()
    admin = client.get(
        f"/api/staff/{PROFILE_ID}/service-points/ER-1/queue", headers={"X-Actor-Role": "admin"}
    ).json()

    assert [row["docNo"] for row in staff["items"]] == ["D0", "D1"]
    assert [action["label"] for action in staff["items"][1]["actions"]] == ["Finish"]
    assert [action["label"] for action in admin["items"][1]["actions"]] == ["Finish", "Back to Queue"]
    assert client.get(
        f"/api/staff/{PROFILE_ID}/service-points/ER-1/queue", headers={"X-Actor-Role": "guest"}
    ).status_code == 400


def test_transition_status_codes(client, ticket_store):
    ticket = issue(ticket_store)
    url = f"/api/staff/{PROFILE_ID}/tickets/{ticket.doc_no}/transition"

    moved = client.post(url, json={"targetState": "CALL", "expectedState": "WAIT", "servicePoint": "ER-1"})
    stale = client.post(url, json={"targetState": "CALL", "expectedState": "WAIT"})
    forbidden = client.post(url, json={"targetState": "WAIT"})
    missing = client.post(f"/api/staff/{PROFILE_ID}/tickets/NOPE/transition", json={"targetState": "CALL"})

    assert moved.status_code == 200
    assert moved.json()["status"] == "CALL"
    assert [action["targetState"] for action in moved.json()["actions"]] == ["DONE"]
    assert stale.status_code == 409
    assert stale.json()["detail"]["reason"] == "CONCURRENT_STATE_MISMATCH"
    assert forbidden.status_code == 403
    assert missing.status_code == 404


def test_bulk_action(client, ticket_store):
    first = issue(ticket_store)
    second = issue(ticket_store)

    response = client.post(
        f"/api/staff/{PROFILE_ID}/bulk", json={"action": "Call Next", "docNos": [first.doc_no, second.doc_no, "NOPE"]}
    )

    assert response.json() == {
        "action": "Call Next",
        "accepted": [first.doc_no, second.doc_no],
        "rejected": {"NOPE": "TICKET_NOT_FOUND"},
    }
    assert client.post(f"/api/staff/{PROFILE_ID}/bulk", json={"action": "Call Next"}).status_code == 400


def test_board_plans(client, ticket_store):
    ticket_store.add(make_ticket("D1", "CALL"))

    er = client.get(f"/api/boards/{PROFILE_ID}/TV-ER").json()
    hall = client.get(f"/api/boards/{PROFILE_ID}/TV-HALL").json()

    assert er["layout"] == "flow-steps"
    assert [column["key"] for column in er["columns"]] == ["WAIT", "CALL"]
    assert hall["layout"] == "three-column"
    assert hall["columns"][1]["total"] == 1
    assert client.get(f"/api/boards/{PROFILE_ID}/TV-GHOST").status_code == 404


def test_unknown_profile_and_offline_store(client, repository, ticket_store):
    assert client.get("/api/boards/NOPE/TV-ER").status_code == 404

    ticket_store.available = False
    assert client.get(f"/api/queue/{PROFILE_ID}").status_code == 503

    repository.available = False
    assert client.get("/api/profiles").status_code == 503
