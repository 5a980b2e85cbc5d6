"""Per-wallet execution rate limiting."""

from dataclasses import dataclass
from datetime import datetime, timedelta

from geotrigger.core.errors import RateLimitExceeded
from geotrigger.models.execution import RuleExecutionHistory
from geotrigger.models.rule import ExecutionRule
from geotrigger.storage.auxiliary import HistoryStore


@dataclass
class RateLimitStatus:
    """Rate limit evaluation for one (rule, wallet)."""

    allowed: bool
    limited: bool = False
    max_executions: int = 0
    window_seconds: int = 0
    executions_in_window: int = 0
    retry_after: float | None = None


def evaluate_rate_limit(
    rule: ExecutionRule,
    history: RuleExecutionHistory,
    now: datetime,
) -> RateLimitStatus:
    """Decide whether a rule may fire again for a wallet.

    The window opens at the first execution after the previous window
    elapsed; inside an open window the wallet may execute while its count is
    below the maximum.
    """
    if not rule.is_rate_limited():
        return RateLimitStatus(allowed=True)

    max_executions = rule.rate_limit.max_executions_per_key
    window_seconds = rule.rate_limit.window_seconds
    window = timedelta(seconds=window_seconds)

    started = history.window_started_at
    if started is None or now - started >= window:
        return RateLimitStatus(
            allowed=True,
            limited=True,
            max_executions=max_executions,
            window_seconds=window_seconds,
        )

    allowed = history.window_count < max_executions
    return RateLimitStatus(
        allowed=allowed,
        limited=True,
        max_executions=max_executions,
        window_seconds=window_seconds,
        executions_in_window=history.window_count,
        retry_after=None if allowed else (started + window - now).total_seconds(),
    )


class RateLimiter:
    """Rate limiter over RuleExecutionHistory."""

    def __init__(self, history: HistoryStore):
        self._history = history

    async def check(
        self,
        rule: ExecutionRule,
        public_key: str,
        now: datetime | None = None,
    ) -> RateLimitStatus:
        if not rule.is_rate_limited():
            return RateLimitStatus(allowed=True)
        row = await self._history.get(rule.rule_id, public_key)
        return evaluate_rate_limit(rule, row, now or datetime.utcnow())

    async def is_within_limit(
        self,
        rule: ExecutionRule,
        public_key: str,
        now: datetime | None = None,
    ) -> bool:
        status = await self.check(rule, public_key, now)
        return status.allowed

    async def require_within_limit(
        self,
        rule: ExecutionRule,
        public_key: str,
        now: datetime | None = None,
    ) -> None:
        """Raise RateLimitExceeded when the wallet is over its limit."""
        status = await self.check(rule, public_key, now)
        if not status.allowed:
            raise RateLimitExceeded(
                status.max_executions,
                status.window_seconds,
                retry_after=status.retry_after,
            )
