"""Execution record storage.

Each location event is a single JSON document holding its attempts. All
mutations go through optimistic Redis transactions (WATCH/MULTI): the
document is re-read under WATCH, the expected prior state is checked, and the
write is committed only if no concurrent writer touched the document. A lost
race is retried against the fresh state, so a second writer either sees the
first writer's result or becomes a no-op.
"""

from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Callable

from redis.asyncio import Redis
from redis.exceptions import WatchError

from geotrigger.core.config import get_settings
from geotrigger.core.logging import get_logger
from geotrigger.models.event import LocationEvent
from geotrigger.models.execution import (
    AttemptState,
    AttemptStatus,
    ExecutionAttempt,
    PendingReason,
)
from geotrigger.observability.metrics import STORE_TRANSITIONS
from geotrigger.storage.redis_client import RedisKeys, get_redis

logger = get_logger(__name__)


class TransitionOutcome(str, Enum):
    """Result of a conditional transition."""

    APPLIED = "applied"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class Expect:
    """Expected prior state of an attempt for a conditional transition."""

    states: frozenset[AttemptState]
    reasons: frozenset[PendingReason] | None = None

    @classmethod
    def pending(cls, *reasons: PendingReason) -> "Expect":
        return cls(
            states=frozenset({AttemptState.PENDING}),
            reasons=frozenset(reasons) if reasons else None,
        )

    @classmethod
    def open(cls) -> "Expect":
        """Any non-terminal attempt (pending or retryable failure)."""
        return cls(states=frozenset({AttemptState.PENDING, AttemptState.FAILED}))

    def accepts(self, attempt: ExecutionAttempt) -> bool:
        if attempt.is_terminal():
            return False
        if attempt.state not in self.states:
            return False
        if attempt.state == AttemptState.PENDING and self.reasons is not None:
            return attempt.pending_reason in self.reasons
        return True


@dataclass
class TransitionResult:
    """Outcome of a conditional transition and the attempt as it now stands."""

    outcome: TransitionOutcome
    event_id: str | None = None
    attempt: ExecutionAttempt | None = None

    @property
    def applied(self) -> bool:
        return self.outcome == TransitionOutcome.APPLIED


@dataclass(frozen=True)
class AttemptFilter:
    """Attempt query filter.

    ``user_id`` and ``public_key`` combine with OR semantics so a caller with
    several linked roles sharing one wallet sees everything addressed to
    either identity.
    """

    user_id: str | None = None
    public_key: str | None = None
    rule_id: int | None = None

    @property
    def has_identity(self) -> bool:
        return bool(self.user_id or self.public_key)

    def matches(self, event: LocationEvent, attempt: ExecutionAttempt) -> bool:
        if self.rule_id is not None and attempt.rule_id != self.rule_id:
            return False
        if not self.has_identity:
            return True
        if self.user_id and event.user_id == self.user_id:
            return True
        if self.public_key and self.public_key in (attempt.matched_public_key, event.public_key):
            return True
        return False


AttemptPredicate = Callable[[ExecutionAttempt], bool]


class ExecutionStore:
    """Durable log of location events and their execution attempts."""

    def __init__(self, redis: Redis | None = None, max_retries: int | None = None):
        self._redis = redis
        self._max_retries = max_retries or get_settings().transition_max_retries

    @property
    def redis(self) -> Redis:
        return self._redis or get_redis()

    # Writes

    async def append(self, event: LocationEvent) -> list[ExecutionAttempt]:
        """Append an event, or merge its attempts into an existing one.

        An attempt is skipped when the stored event already holds a live
        attempt for the same (rule, wallet).

        Args:
            event: Event carrying the attempts to add

        Returns:
            Attempts that were actually added
        """
        key = RedisKeys.event_detail(event.event_id)

        async with self.redis.pipeline(transaction=True) as pipe:
            for _ in range(self._max_retries):
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    stored = LocationEvent.model_validate_json(raw) if raw else event.model_copy(
                        update={"attempts": []}
                    )

                    added: list[ExecutionAttempt] = []
                    for attempt in event.attempts:
                        duplicate = any(
                            stored.attempts[i].is_live()
                            for i in stored.find_attempts(attempt.rule_id, attempt.matched_public_key)
                        )
                        if duplicate:
                            logger.debug(
                                "Live attempt already recorded",
                                event_id=event.event_id,
                                rule_id=attempt.rule_id,
                            )
                            continue
                        stored.attempts.append(attempt)
                        added.append(attempt)

                    if raw and not added:
                        await pipe.reset()
                        return []

                    stored.refresh_status()
                    pipe.multi()
                    pipe.set(key, stored.model_dump_json())
                    self._queue_indexes(pipe, stored)
                    await pipe.execute()
                    return added
                except WatchError:
                    logger.debug("Append raced, retrying", event_id=event.event_id)
                    continue

        raise RuntimeError(f"Could not append event {event.event_id}: too much contention")

    async def add_attempt(self, event_id: str, attempt: ExecutionAttempt) -> bool:
        """Add one attempt to an existing event.

        Returns:
            False if the event is missing or already holds a live attempt
            for the same (rule, wallet)
        """
        stored = await self.get(event_id)
        if stored is None:
            return False
        added = await self.append(stored.model_copy(update={"attempts": [attempt]}))
        return bool(added)

    async def claim(
        self,
        event_id: str,
        rule_id: int,
        public_key: str,
        ttl_seconds: int,
        whole_key: bool = False,
    ) -> bool:
        """Reserve an attempt for one in-flight submission.

        Args:
            event_id: Event holding the attempt
            rule_id: Attempt rule
            public_key: Attempt wallet
            ttl_seconds: Claim lifetime if never released
            whole_key: Claim every attempt of (rule, wallet) instead of one
                event's; used when executions of the key are rate limited

        Returns:
            True if this caller now holds the claim
        """
        key = _claim_key(event_id, rule_id, public_key, whole_key)
        return bool(await self.redis.set(key, "1", nx=True, ex=ttl_seconds))

    async def release(
        self,
        event_id: str,
        rule_id: int,
        public_key: str,
        whole_key: bool = False,
    ) -> None:
        await self.redis.delete(_claim_key(event_id, rule_id, public_key, whole_key))

    async def transition(
        self,
        rule_id: int,
        public_key: str,
        event_id: str,
        expect: Expect,
        new_status: AttemptStatus,
        detail: str = "",
    ) -> TransitionResult:
        """Conditionally move one attempt to a new status.

        The attempt is identified by (event, wallet, rule); the write happens
        only if it still satisfies ``expect`` at commit time. Terminal
        attempts are never modified.

        Returns:
            TransitionResult with the attempt as stored after the call
        """
        key = RedisKeys.event_detail(event_id)

        async with self.redis.pipeline(transaction=True) as pipe:
            for _ in range(self._max_retries):
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if not raw:
                        STORE_TRANSITIONS.labels(outcome=TransitionOutcome.NOT_FOUND.value).inc()
                        return TransitionResult(TransitionOutcome.NOT_FOUND, event_id)

                    event = LocationEvent.model_validate_json(raw)
                    indexes = event.find_attempts(rule_id, public_key)
                    if not indexes:
                        STORE_TRANSITIONS.labels(outcome=TransitionOutcome.NOT_FOUND.value).inc()
                        return TransitionResult(TransitionOutcome.NOT_FOUND, event_id)

                    eligible = [i for i in indexes if expect.accepts(event.attempts[i])]
                    if not eligible:
                        current = _pick_reported(event, indexes)
                        STORE_TRANSITIONS.labels(outcome=TransitionOutcome.CONFLICT.value).inc()
                        return TransitionResult(TransitionOutcome.CONFLICT, event_id, current)

                    target = eligible[-1]
                    updated = event.attempts[target].with_status(new_status, detail)
                    event.attempts[target] = updated
                    event.refresh_status()

                    pipe.multi()
                    pipe.set(key, event.model_dump_json())
                    await pipe.execute()

                    STORE_TRANSITIONS.labels(outcome=TransitionOutcome.APPLIED.value).inc()
                    logger.debug(
                        "Attempt transitioned",
                        event_id=event_id,
                        rule_id=rule_id,
                        to_state=new_status.state,
                    )
                    return TransitionResult(TransitionOutcome.APPLIED, event_id, updated)
                except WatchError:
                    logger.debug("Transition raced, retrying", event_id=event_id, rule_id=rule_id)
                    continue

        raise RuntimeError(f"Could not transition attempt in {event_id}: too much contention")

    async def delete(self, event_id: str) -> bool:
        """Delete an event that has nothing completed and nothing live.

        Returns:
            True if deleted, False if missing or still referenced
        """
        key = RedisKeys.event_detail(event_id)

        async with self.redis.pipeline(transaction=True) as pipe:
            for _ in range(self._max_retries):
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if not raw:
                        return False
                    event = LocationEvent.model_validate_json(raw)
                    if not event.is_collectable():
                        await pipe.reset()
                        return False

                    pipe.multi()
                    pipe.delete(key)
                    pipe.zrem(RedisKeys.EVENT_TIMELINE, event_id)
                    for wallet in _wallets(event):
                        pipe.srem(RedisKeys.event_by_wallet(wallet), event_id)
                    if event.user_id:
                        pipe.srem(RedisKeys.event_by_user(event.user_id), event_id)
                    for rule_id in {a.rule_id for a in event.attempts}:
                        pipe.srem(RedisKeys.event_by_rule(rule_id), event_id)
                    await pipe.execute()
                    return True
                except WatchError:
                    continue

        raise RuntimeError(f"Could not delete event {event_id}: too much contention")

    # Reads

    async def get(self, event_id: str) -> LocationEvent | None:
        raw = await self.redis.get(RedisKeys.event_detail(event_id))
        if not raw:
            return None
        return LocationEvent.model_validate_json(raw)

    async def get_many(self, event_ids: list[str]) -> list[LocationEvent]:
        """Load events, skipping ids deleted since they were indexed."""
        if not event_ids:
            return []
        raws = await self.redis.mget([RedisKeys.event_detail(e) for e in event_ids])
        return [LocationEvent.model_validate_json(raw) for raw in raws if raw]

    async def iter_events(self, batch_size: int = 200) -> AsyncIterator[LocationEvent]:
        """Iterate all events, oldest first."""
        start = 0
        while True:
            ids = await self.redis.zrange(RedisKeys.EVENT_TIMELINE, start, start + batch_size - 1)
            if not ids:
                return
            for event in await self.get_many(list(ids)):
                yield event
            start += batch_size

    async def count_events(self) -> int:
        return await self.redis.zcard(RedisKeys.EVENT_TIMELINE)

    async def find_attempt(
        self,
        rule_id: int,
        public_key: str,
        event_id: str | None = None,
    ) -> tuple[LocationEvent, ExecutionAttempt] | None:
        """Locate the attempt a caller refers to.

        With an event id the attempt inside that event is returned. Without
        one, the most recent live attempt for (rule, wallet) wins, then the
        most recent completed one, then the most recent of any state.
        """
        if event_id:
            event = await self.get(event_id)
            if not event:
                return None
            indexes = event.find_attempts(rule_id, public_key)
            if not indexes:
                return None
            return event, event.attempts[_pick_reported(event, indexes, index=True)]

        candidates = await self.redis.sinter(
            RedisKeys.event_by_wallet(public_key),
            RedisKeys.event_by_rule(rule_id),
        )
        found: list[tuple[LocationEvent, ExecutionAttempt]] = []
        for event in await self.get_many(list(candidates)):
            for i in event.find_attempts(rule_id, public_key):
                found.append((event, event.attempts[i]))
        if not found:
            return None

        def rank(item: tuple[LocationEvent, ExecutionAttempt]) -> tuple[int, object]:
            attempt = item[1]
            if attempt.is_live():
                priority = 2
            elif attempt.state == AttemptState.COMPLETED:
                priority = 1
            else:
                priority = 0
            return priority, attempt.matched_at

        return max(found, key=rank)

    async def list_attempts(
        self,
        attempt_filter: AttemptFilter,
        predicate: AttemptPredicate,
        limit: int | None = None,
    ) -> list[tuple[LocationEvent, ExecutionAttempt]]:
        """List (event, attempt) pairs matching a filter, newest first."""
        event_ids = await self._candidate_event_ids(attempt_filter)
        rows: list[tuple[LocationEvent, ExecutionAttempt]] = []
        for event in await self.get_many(sorted(event_ids)):
            for attempt in event.attempts:
                if attempt_filter.matches(event, attempt) and predicate(attempt):
                    rows.append((event, attempt))
        rows.sort(key=lambda row: row[1].matched_at, reverse=True)
        return rows[:limit] if limit else rows

    async def list_pending(
        self,
        attempt_filter: AttemptFilter,
        limit: int | None = None,
    ) -> list[tuple[LocationEvent, ExecutionAttempt]]:
        """Live attempts (actionable pending or retryable failures), newest first."""
        return await self.list_attempts(attempt_filter, lambda a: a.is_live(), limit)

    async def list_completed(
        self,
        attempt_filter: AttemptFilter,
        limit: int | None = None,
    ) -> list[tuple[LocationEvent, ExecutionAttempt]]:
        return await self.list_attempts(
            attempt_filter,
            lambda a: a.state == AttemptState.COMPLETED,
            limit,
        )

    async def list_rejected(
        self,
        attempt_filter: AttemptFilter,
        limit: int | None = None,
    ) -> list[tuple[LocationEvent, ExecutionAttempt]]:
        return await self.list_attempts(
            attempt_filter,
            lambda a: a.state == AttemptState.REJECTED,
            limit,
        )

    # Internals

    async def _candidate_event_ids(self, attempt_filter: AttemptFilter) -> set[str]:
        if attempt_filter.has_identity:
            keys = []
            if attempt_filter.user_id:
                keys.append(RedisKeys.event_by_user(attempt_filter.user_id))
            if attempt_filter.public_key:
                keys.append(RedisKeys.event_by_wallet(attempt_filter.public_key))
            return set(await self.redis.sunion(keys))
        if attempt_filter.rule_id is not None:
            return set(await self.redis.smembers(RedisKeys.event_by_rule(attempt_filter.rule_id)))
        return set(await self.redis.zrange(RedisKeys.EVENT_TIMELINE, 0, -1))

    @staticmethod
    def _queue_indexes(pipe, event: LocationEvent) -> None:
        pipe.zadd(RedisKeys.EVENT_TIMELINE, {event.event_id: event.received_at.timestamp()})
        for wallet in _wallets(event):
            pipe.sadd(RedisKeys.event_by_wallet(wallet), event.event_id)
        if event.user_id:
            pipe.sadd(RedisKeys.event_by_user(event.user_id), event.event_id)
        for rule_id in {a.rule_id for a in event.attempts}:
            pipe.sadd(RedisKeys.event_by_rule(rule_id), event.event_id)


def _claim_key(event_id: str, rule_id: int, public_key: str, whole_key: bool) -> str:
    if whole_key:
        return RedisKeys.inflight_key(rule_id, public_key)
    return RedisKeys.inflight(event_id, rule_id, public_key)


def _wallets(event: LocationEvent) -> set[str]:
    return {event.public_key, *(a.matched_public_key for a in event.attempts)}


def _pick_reported(event: LocationEvent, indexes: list[int], index: bool = False):
    """Choose which of several same-key attempts to report back.

    Prefers the live one, then a completed one, then the latest.
    """
    chosen = indexes[-1]
    for i in reversed(indexes):
        if event.attempts[i].is_live():
            chosen = i
            break
    else:
        for i in reversed(indexes):
            if event.attempts[i].state == AttemptState.COMPLETED:
                chosen = i
                break
    return chosen if index else event.attempts[chosen]
