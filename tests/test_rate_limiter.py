"""Tests for per-wallet rate limiting."""

from datetime import datetime, timedelta

import pytest
from redis.asyncio.client import Pipeline
from redis.exceptions import WatchError

from conftest import WALLET, make_rule
from geotrigger.core.errors import RateLimitExceeded
from geotrigger.engine.rate_limiter import RateLimiter, evaluate_rate_limit
from geotrigger.models.execution import RuleExecutionHistory
from geotrigger.models.rule import RateLimitConfig
from geotrigger.storage.auxiliary import HistoryStore

T0 = datetime(2026, 1, 10, 12, 0, 0)


def _limited(max_executions: int | None, window_seconds: int | None):
    return make_rule(
        rate_limit=RateLimitConfig(
            max_executions_per_key=max_executions,
            window_seconds=window_seconds,
        )
    )


@pytest.mark.parametrize(
    ("max_executions", "window_seconds"),
    [(None, 60), (2, None), (0, 60), (2, 0)],
)
def test_missing_or_zero_settings_are_unlimited(max_executions, window_seconds) -> None:
    rule = _limited(max_executions, window_seconds)
    history = RuleExecutionHistory(
        rule_id=1,
        public_key=WALLET,
        window_started_at=T0,
        window_count=100,
    )

    status = evaluate_rate_limit(rule, history, T0)

    assert status.allowed is True
    assert status.limited is False


def test_empty_history_is_allowed() -> None:
    status = evaluate_rate_limit(_limited(2, 60), RuleExecutionHistory(rule_id=1, public_key=WALLET), T0)
    assert status.allowed is True


@pytest.mark.asyncio
async def test_two_per_minute_window(history_store) -> None:
    rule = _limited(2, 60)
    limiter = RateLimiter(history_store)

    await history_store.record_execution(1, WALLET, 60, executed_at=T0)
    assert await limiter.is_within_limit(rule, WALLET, now=T0 + timedelta(seconds=5))

    await history_store.record_execution(1, WALLET, 60, executed_at=T0 + timedelta(seconds=10))
    row = await history_store.record_execution(1, WALLET, 60, executed_at=T0 + timedelta(seconds=20))
    assert row.window_count == 3

    assert not await limiter.is_within_limit(rule, WALLET, now=T0 + timedelta(seconds=30))
    assert await limiter.is_within_limit(rule, WALLET, now=T0 + timedelta(seconds=61))


@pytest.mark.asyncio
async def test_limits_are_per_wallet(history_store) -> None:
    rule = _limited(1, 60)
    limiter = RateLimiter(history_store)

    await history_store.record_execution(1, WALLET, 60, executed_at=T0)

    assert not await limiter.is_within_limit(rule, WALLET, now=T0 + timedelta(seconds=1))
    assert await limiter.is_within_limit(rule, "GBSOMEONEELSE", now=T0 + timedelta(seconds=1))


@pytest.mark.asyncio
async def test_require_within_limit_reports_retry_after(history_store) -> None:
    rule = _limited(1, 60)
    limiter = RateLimiter(history_store)
    await history_store.record_execution(1, WALLET, 60, executed_at=T0)

    with pytest.raises(RateLimitExceeded) as exc_info:
        await limiter.require_within_limit(rule, WALLET, now=T0 + timedelta(seconds=20))

    assert exc_info.value.max_executions == 1
    assert exc_info.value.window_seconds == 60
    assert exc_info.value.retry_after == pytest.approx(40.0)


@pytest.mark.asyncio
async def test_history_upsert_gives_up_under_contention(redis, monkeypatch) -> None:
    history = HistoryStore(redis, max_retries=2)

    async def always_raced(self, *args, **kwargs):
        await self.reset()
        raise WatchError()

    monkeypatch.setattr(Pipeline, "execute", always_raced)

    with pytest.raises(RuntimeError):
        await history.record_execution(1, WALLET, 60, executed_at=T0)


@pytest.mark.asyncio
async def test_history_row_counts_every_execution(history_store) -> None:
    await history_store.record_execution(1, WALLET, 60, executed_at=T0)
    await history_store.record_execution(1, WALLET, 60, executed_at=T0 + timedelta(seconds=90))
    row = await history_store.record_execution(1, WALLET, 60, executed_at=T0 + timedelta(seconds=100))

    assert row.execution_count == 3
    assert row.window_started_at == T0 + timedelta(seconds=90)
    assert row.window_count == 2
    assert row.last_execution_at == T0 + timedelta(seconds=100)
