"""Tests for geo-match ingestion and the queued execution worker."""

import json
from datetime import datetime

import pytest

from conftest import WALLET, make_match, make_rule
from geotrigger.engine.queue_worker import QueuedExecutionWorker
from geotrigger.messaging.consumer import parse_match
from geotrigger.messaging.handler import MatchHandler
from geotrigger.models.execution import AttemptState, PendingReason
from geotrigger.storage.auxiliary import ExecutionQueue, IdempotencyStore


def test_parse_match_with_event_id() -> None:
    body = json.dumps({
        "rule_id": 3,
        "public_key": WALLET,
        "event_id": "evt_9",
        "latitude": 40.7,
        "longitude": -74.0,
        "matched_at": "2026-05-01T10:00:00+02:00",
    }).encode()

    match = parse_match(body)

    assert match.rule_id == 3
    assert match.event_id == "evt_9"
    assert match.matched_at == datetime(2026, 5, 1, 8, 0, 0)


def test_parse_match_falls_back_to_update_id_then_message_id() -> None:
    with_update = parse_match(json.dumps({"rule_id": 1, "public_key": WALLET, "update_id": 77}).encode())
    with_message = parse_match(json.dumps({"rule_id": 1, "public_key": WALLET}).encode(), "msg-1")

    assert with_update.event_id == "77"
    assert with_message.event_id == "msg-1"


@pytest.mark.parametrize(
    "body",
    [
        b"not json",
        b"[1, 2]",
        json.dumps({"rule_id": 1, "public_key": WALLET}).encode(),
        json.dumps({"rule_id": 1, "event_id": "evt_1"}).encode(),
        json.dumps({"rule_id": 1, "public_key": WALLET, "event_id": "e", "latitude": 120}).encode(),
    ],
)
def test_parse_match_rejects_bad_messages(body: bytes) -> None:
    with pytest.raises(ValueError):
        parse_match(body)


@pytest.mark.asyncio
async def test_handler_records_each_match_once(orchestrator, rule_store, store, redis) -> None:
    await rule_store.save(make_rule())
    handler = MatchHandler(orchestrator, IdempotencyStore(redis))

    await handler.handle_match(make_match())
    await handler.handle_match(make_match())

    event = await store.get("evt_1")
    assert len(event.attempts) == 1
    assert event.attempts[0].pending_reason == PendingReason.REQUIRES_WEBAUTHN


@pytest.mark.asyncio
async def test_worker_executes_queued_attempt(orchestrator, rule_store, store, chain, redis) -> None:
    await rule_store.save(make_rule(requires_webauthn=False, auto_execute=True))
    await orchestrator.record_match(make_match())
    queue = ExecutionQueue(redis)
    worker = QueuedExecutionWorker(queue, orchestrator)

    item = await queue.dequeue(timeout=1)
    await worker.process(*item)

    assert len(chain.calls) == 1
    assert (await store.get("evt_1")).attempts[0].state == AttemptState.COMPLETED


@pytest.mark.asyncio
async def test_worker_leaves_denied_attempt_live(orchestrator, rule_store, store, chain, redis) -> None:
    await rule_store.save(make_rule(requires_webauthn=False, auto_execute=True))
    await orchestrator.record_match(make_match())
    await rule_store.save(make_rule(requires_webauthn=True, auto_execute=True))
    worker = QueuedExecutionWorker(ExecutionQueue(redis), orchestrator)

    await worker.process(1, WALLET, "evt_1")

    assert chain.calls == []
    assert (await store.get("evt_1")).attempts[0].is_live()
