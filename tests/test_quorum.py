"""Tests for multi-wallet quorum validation."""

from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError

from conftest import FakePresence, make_rule
from geotrigger.core.errors import QuorumNotMet
from geotrigger.engine.quorum import QuorumValidator, StorePresenceProvider
from geotrigger.models.rule import QuorumConfig, QuorumType
from geotrigger.storage.auxiliary import PresenceStore

ALICE, BOB, CAROL = "GALICE", "GBOB", "GCAROL"


def _quorum_rule(quorum_type: QuorumType = QuorumType.ANY, minimum_count: int = 2):
    return make_rule(
        quorum=QuorumConfig(
            required_wallets={ALICE, BOB, CAROL},
            minimum_count=minimum_count,
            quorum_type=quorum_type,
        )
    )


@pytest.mark.asyncio
async def test_rule_without_quorum_is_met() -> None:
    validator = QuorumValidator(FakePresence())

    status = await validator.check_quorum(make_rule())

    assert status.met is True
    assert status.required is False


@pytest.mark.asyncio
async def test_empty_required_set_is_not_a_requirement() -> None:
    validator = QuorumValidator(FakePresence())
    rule = make_rule(quorum=QuorumConfig(required_wallets=set(), minimum_count=3))

    assert (await validator.check_quorum(rule)).met is True


@pytest.mark.asyncio
async def test_any_quorum_counts_present_wallets() -> None:
    validator = QuorumValidator(FakePresence({ALICE, CAROL}))

    status = await validator.check_quorum(_quorum_rule(minimum_count=2))

    assert status.met is True
    assert status.present == [ALICE, CAROL]
    assert status.missing == [BOB]
    assert "Quorum met" in status.message


@pytest.mark.asyncio
async def test_any_quorum_short_of_minimum() -> None:
    validator = QuorumValidator(FakePresence({ALICE}))

    status = await validator.check_quorum(_quorum_rule(minimum_count=2))

    assert status.met is False
    assert status.minimum_count == 2
    assert "Missing: GBOB, GCAROL" in status.message


@pytest.mark.asyncio
async def test_all_quorum_ignores_minimum_count() -> None:
    validator = QuorumValidator(FakePresence({ALICE, BOB}))

    status = await validator.check_quorum(_quorum_rule(QuorumType.ALL, minimum_count=1))

    assert status.met is False
    assert status.minimum_count == 3
    assert status.missing == [CAROL]


@pytest.mark.asyncio
async def test_require_quorum_raises_with_detail() -> None:
    validator = QuorumValidator(FakePresence({BOB}))

    with pytest.raises(QuorumNotMet) as exc_info:
        await validator.require_quorum(_quorum_rule(minimum_count=2))

    detail = exc_info.value.detail()
    assert detail["error"] == "quorum_not_met"
    assert detail["present"] == [BOB]
    assert detail["missing"] == [ALICE, CAROL]
    assert detail["minimum_count"] == 2


def test_minimum_cannot_exceed_required_wallets() -> None:
    with pytest.raises(ValidationError):
        QuorumConfig(required_wallets={ALICE}, minimum_count=2)


@pytest.mark.asyncio
async def test_store_presence_expires_stale_reports(redis) -> None:
    store = PresenceStore(redis, ttl_seconds=60)
    rule = _quorum_rule(minimum_count=1)
    now = datetime.utcnow()

    await store.mark_in_range(rule.rule_id, ALICE, now)
    await store.mark_in_range(rule.rule_id, BOB, now - timedelta(seconds=120))

    provider = StorePresenceProvider(store)
    assert await provider.is_wallet_in_range(ALICE, rule) is True
    assert await provider.is_wallet_in_range(BOB, rule) is False

    await store.mark_out_of_range(rule.rule_id, ALICE)
    assert await provider.is_wallet_in_range(ALICE, rule) is False


@pytest.mark.asyncio
async def test_presence_dwell_time(redis) -> None:
    store = PresenceStore(redis, ttl_seconds=60)
    now = datetime.utcnow()

    await store.mark_in_range(1, ALICE, now - timedelta(seconds=100))
    await store.mark_in_range(1, ALICE, now - timedelta(seconds=50))
    await store.mark_in_range(1, ALICE, now - timedelta(seconds=10))
    await store.mark_in_range(1, BOB, now - timedelta(seconds=200))
    await store.mark_in_range(1, BOB, now - timedelta(seconds=5))

    assert await store.dwell_seconds(1, ALICE, now) == pytest.approx(100.0)
    assert await store.dwell_seconds(1, BOB, now) == pytest.approx(5.0)
    assert await store.dwell_seconds(1, CAROL, now) is None
    assert await store.dwell_seconds(1, ALICE, now + timedelta(seconds=120)) is None
