from __future__ import annotations

import asyncio
import json
import sys

from conftest import PROFILE_ID, make_document
from queueflow.application import build_engine, load_seed
from queueflow.core.config import Settings, load_settings
from queueflow.domain import FailureReason, Success
from queueflow.infrastructure import HttpQueueBackend, InMemoryChangeChannel, InMemoryTicketStore


def test_settings_read_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("API_CORS_ORIGINS", "http://a.test, http://b.test")
    monkeypatch.setenv("QUEUEFLOW_POLL_INTERVAL", "2.5")
    monkeypatch.setenv("QUEUEFLOW_PUSH_RETRY_INTERVAL", "-1")
    monkeypatch.setenv("QUEUEFLOW_SEED_PATH", str(tmp_path / "seed.json"))
    monkeypatch.delenv("QUEUEFLOW_UPSTREAM_URL", raising=False)

    settings = load_settings()

    assert settings.cors_origins == ["http://a.test", "http://b.test"]
    assert settings.poll_interval == 2.5
    assert settings.push_retry_interval == 60.0
    assert settings.seed_path == (tmp_path / "seed.json").resolve()
    assert settings.upstream_url is None


def test_build_engine_seeds_in_memory_stores(tmp_path):
    seed = tmp_path / "seed.json"
    ticket = {"docNo": "D1", "queueType": "Q-ER", "status": "WAIT", "profileId": PROFILE_ID}
    seed.write_text(json.dumps({"workflows": [make_document()], "tickets": [ticket]}), encoding="utf-8")

    engine = build_engine(Settings(seed_path=seed, poll_interval=0.01))

    assert isinstance(engine.channel, InMemoryChangeChannel)
    assert isinstance(engine.tickets, InMemoryTicketStore)
    queue = asyncio.run(engine.service_point_queue(PROFILE_ID, "ER-1"))
    assert [ticket.doc_no for ticket in queue.value] == ["D1"]


def test_build_engine_with_upstream_uses_http_backend():
    engine = build_engine(Settings(upstream_url="http://queue.local"))

    assert isinstance(engine.tickets, HttpQueueBackend)
    assert engine.channel is None
    asyncio.run(engine.aclose())


def test_load_seed_accepts_single_document(tmp_path, repository, ticket_store):
    document = make_document()
    document["profileId"] = "PF-OTHER"
    path = tmp_path / "one.json"
    path.write_text(json.dumps(document), encoding="utf-8")

    assert load_seed(path, repository, ticket_store) == ["PF-OTHER"]


def test_engine_workflow_cache_and_invalidation(engine, repository):
    first = asyncio.run(engine.workflow(PROFILE_ID))
    document = make_document()
    document["kiosks"] = []
    repository.seed(document)

    cached = asyncio.run(engine.workflow(PROFILE_ID))
    engine.invalidate(PROFILE_ID)
    fresh = asyncio.run(engine.workflow(PROFILE_ID))

    assert isinstance(first, Success)
    assert cached.value is first.value
    assert fresh.value.kiosks == []


def test_engine_feed_reports_stale_after_loading(engine, ticket_store):
    asyncio.run(engine.current_feed(PROFILE_ID))
    ticket_store.available = False

    result = asyncio.run(engine.current_feed(PROFILE_ID))

    assert result.value.snapshot().stale


def test_engine_unknown_profile(engine):
    assert asyncio.run(engine.kiosk_groups("NOPE", "K-LOBBY")).reason is FailureReason.NOT_FOUND


def test_load_seed_reads_yaml_written_by_sample_script(tmp_path, monkeypatch, repository, ticket_store):
    from scripts.make_sample_workflow import main

    output = tmp_path / "seed.yaml"
    monkeypatch.setattr(sys, "argv", ["make_sample_workflow", "--output", str(output), "--tickets", "4"])
    main()

    assert load_seed(output, repository, ticket_store) == ["PF-DEMO"]
    tickets = asyncio.run(ticket_store.list_tickets("PF-DEMO"))
    assert sorted(ticket.service_group for ticket in tickets) == ["DEPOSIT", "DEPOSIT", "Q-ER", "Q-ER"]
