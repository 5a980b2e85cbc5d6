"""Reconciliation sweep over the execution log.

A pass runs four phases in fixed order. Each phase is planned by a pure
function over a snapshot of the log and then applied through the record
store's conditional transitions, so a concurrent confirmation always wins
over the sweep. Supersession runs before garbage collection because the
latter's "nothing live" check depends on the relabeling.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timedelta

from pydantic import BaseModel, Field

from geotrigger.core.config import Settings, get_settings
from geotrigger.core.logging import get_logger
from geotrigger.engine.orchestrator import initial_reason
from geotrigger.engine.rate_limiter import evaluate_rate_limit
from geotrigger.models.event import LocationEvent
from geotrigger.models.execution import (
    AttemptState,
    AttemptStatus,
    PendingReason,
    PendingStatus,
    RuleExecutionHistory,
    SupersededReason,
    SupersededStatus,
)
from geotrigger.models.rule import ExecutionRule
from geotrigger.observability.metrics import SWEEP_ACTIONS, SWEEP_DURATION, SWEEP_ERRORS
from geotrigger.observability.tracing import TraceContext
from geotrigger.storage.auxiliary import ExecutionQueue, HistoryStore, PresenceStore
from geotrigger.storage.execution_store import ExecutionStore, Expect
from geotrigger.storage.rule_store import RuleStore

logger = get_logger(__name__)

HistoryKey = tuple[int, str]

# Pending reasons the sweeper re-evaluates against the rule's admission gates
READMITTABLE_REASONS = frozenset({
    PendingReason.RATE_LIMIT_EXCEEDED,
    PendingReason.INSUFFICIENT_LOCATION_DURATION,
})


@dataclass(frozen=True)
class PlannedTransition:
    """One conditional transition the sweep intends to apply."""

    event_id: str
    rule_id: int
    public_key: str
    expect: Expect
    status: AttemptStatus
    detail: str


class SweepReport(BaseModel):
    """Counts of what one reconciliation pass changed."""

    started_at: datetime = Field(default_factory=datetime.utcnow)
    events_scanned: int = 0
    superseded: int = 0
    readmitted: int = 0
    expired: int = 0
    deleted: int = 0
    errors: int = 0
    duration_seconds: float = 0.0


def plan_supersessions(events: list[LocationEvent]) -> list[PlannedTransition]:
    """Supersede pending attempts older than a completion for the same key."""
    latest_completion: dict[HistoryKey, datetime] = {}
    for event in events:
        for attempt in event.attempts:
            if attempt.state != AttemptState.COMPLETED:
                continue
            key = (attempt.rule_id, attempt.matched_public_key)
            if key not in latest_completion or attempt.matched_at > latest_completion[key]:
                latest_completion[key] = attempt.matched_at

    planned = []
    for event in events:
        for attempt in event.attempts:
            if attempt.state != AttemptState.PENDING:
                continue
            completed_at = latest_completion.get((attempt.rule_id, attempt.matched_public_key))
            if completed_at is None or attempt.matched_at >= completed_at:
                continue
            planned.append(PlannedTransition(
                event_id=event.event_id,
                rule_id=attempt.rule_id,
                public_key=attempt.matched_public_key,
                expect=Expect.pending(attempt.pending_reason),
                status=SupersededStatus(reason=SupersededReason.SUPERSEDED_BY_NEWER_EXECUTION),
                detail="superseded by newer execution",
            ))
    return planned


def plan_readmissions(
    events: list[LocationEvent],
    rules: dict[int, ExecutionRule],
    histories: dict[HistoryKey, RuleExecutionHistory],
    now: datetime,
    dwell: dict[HistoryKey, float | None] | None = None,
) -> list[PlannedTransition]:
    """Readmit attempts held back by the rate limit or the location duration.

    An attempt is readmitted with the pending reason its rule would assign
    now, once that differs from the reason it is held under.

    Args:
        events: Log snapshot
        rules: Rules by id
        histories: Execution history per (rule, wallet)
        now: Evaluation time
        dwell: Seconds in range per (rule, wallet); missing means not in range
    """
    dwell = dwell or {}
    planned = []
    for event in events:
        for attempt in event.attempts:
            if attempt.pending_reason not in READMITTABLE_REASONS:
                continue
            rule = rules.get(attempt.rule_id)
            if rule is None or not rule.active:
                continue
            key = (attempt.rule_id, attempt.matched_public_key)
            history = histories.get(key) or RuleExecutionHistory(
                rule_id=attempt.rule_id,
                public_key=attempt.matched_public_key,
            )
            rate = evaluate_rate_limit(rule, history, now)
            reason, message = initial_reason(rule, attempt.matched_public_key, rate, dwell.get(key))
            if reason == attempt.pending_reason:
                continue
            planned.append(PlannedTransition(
                event_id=event.event_id,
                rule_id=attempt.rule_id,
                public_key=attempt.matched_public_key,
                expect=Expect.pending(attempt.pending_reason),
                status=PendingStatus(reason=reason, message=message, since=now),
                detail=f"readmitted from {attempt.pending_reason.value}",
            ))
    return planned


def plan_expirations(
    events: list[LocationEvent],
    now: datetime,
    retention: timedelta,
) -> list[PlannedTransition]:
    """Expire pending attempts and retryable failures past retention."""
    cutoff = now - retention
    planned = []
    for event in events:
        for attempt in event.attempts:
            if attempt.matched_at >= cutoff:
                continue
            if attempt.state == AttemptState.PENDING:
                expect = Expect.pending(attempt.pending_reason)
            elif attempt.is_retryable():
                expect = Expect(states=frozenset({AttemptState.FAILED}))
            else:
                continue
            planned.append(PlannedTransition(
                event_id=event.event_id,
                rule_id=attempt.rule_id,
                public_key=attempt.matched_public_key,
                expect=expect,
                status=SupersededStatus(reason=SupersededReason.EXPIRED),
                detail="expired after retention window",
            ))
    return planned


def plan_garbage(events: list[LocationEvent]) -> list[str]:
    """Events with nothing completed and nothing live."""
    return [event.event_id for event in events if event.is_collectable()]


class ReconciliationSweeper:
    """Runs reconciliation passes over the execution log."""

    def __init__(
        self,
        store: ExecutionStore,
        rules: RuleStore,
        history: HistoryStore,
        queue: ExecutionQueue | None = None,
        settings: Settings | None = None,
        presence: PresenceStore | None = None,
    ):
        self._store = store
        self._rules = rules
        self._history = history
        self._presence = presence
        self._queue = queue
        self._settings = settings or get_settings()

    async def run(self, now: datetime | None = None) -> SweepReport:
        """Run one full pass.

        Args:
            now: Clock used for readmission and expiry

        Returns:
            SweepReport with per-phase counts; row failures are counted in
            ``errors`` and never abort the pass
        """
        now = now or datetime.utcnow()
        report = SweepReport(started_at=now)
        started = time.monotonic()

        with TraceContext(phase="reconciliation"):
            snapshot = {event.event_id: event async for event in self._store.iter_events()}
            report.events_scanned = len(snapshot)
            logger.info("Reconciliation started", events=report.events_scanned)

            planned = plan_supersessions(list(snapshot.values()))
            report.superseded = await self._apply("supersede", planned, snapshot, report)

            held = {
                (attempt.rule_id, attempt.matched_public_key)
                for event in snapshot.values()
                for attempt in event.attempts
                if attempt.pending_reason in READMITTABLE_REASONS
            }
            rules = await self._rules.get_many({rule_id for rule_id, _ in held})
            histories = {key: await self._history.get(*key) for key in held}
            dwell = await self._dwell(held, rules, now)
            planned = plan_readmissions(list(snapshot.values()), rules, histories, now, dwell)
            report.readmitted = await self._apply("readmit", planned, snapshot, report)

            retention = timedelta(days=self._settings.retention_days)
            planned = plan_expirations(list(snapshot.values()), now, retention)
            report.expired = await self._apply("expire", planned, snapshot, report)

            report.deleted = await self._collect(plan_garbage(list(snapshot.values())), report)

            report.duration_seconds = time.monotonic() - started
            SWEEP_DURATION.observe(report.duration_seconds)
            logger.info("Reconciliation complete", **report.model_dump(exclude={"started_at"}))
        return report

    async def _dwell(
        self,
        keys: set[HistoryKey],
        rules: dict[int, ExecutionRule],
        now: datetime,
    ) -> dict[HistoryKey, float | None]:
        if self._presence is None:
            return {}
        dwell = {}
        for rule_id, public_key in keys:
            rule = rules.get(rule_id)
            if rule is not None and rule.requires_dwell():
                dwell[(rule_id, public_key)] = await self._presence.dwell_seconds(rule_id, public_key, now)
        return dwell

    async def _apply(
        self,
        phase: str,
        planned: list[PlannedTransition],
        snapshot: dict[str, LocationEvent],
        report: SweepReport,
    ) -> int:
        applied = 0
        for item in planned:
            try:
                result = await self._store.transition(
                    item.rule_id,
                    item.public_key,
                    item.event_id,
                    item.expect,
                    item.status,
                    detail=item.detail,
                )
                if not result.applied:
                    logger.debug(
                        "Sweep transition skipped",
                        phase=phase,
                        event_id=item.event_id,
                        rule_id=item.rule_id,
                        outcome=result.outcome.value,
                    )
                    continue

                applied += 1
                SWEEP_ACTIONS.labels(phase=phase).inc()
                refreshed = await self._store.get(item.event_id)
                if refreshed is not None:
                    snapshot[item.event_id] = refreshed
                if (
                    self._queue is not None
                    and isinstance(item.status, PendingStatus)
                    and item.status.reason == PendingReason.QUEUED_FOR_EXECUTION
                ):
                    await self._queue.enqueue(item.rule_id, item.public_key, item.event_id)
            except Exception as e:
                report.errors += 1
                SWEEP_ERRORS.labels(phase=phase).inc()
                logger.error(
                    "Sweep transition failed",
                    phase=phase,
                    event_id=item.event_id,
                    rule_id=item.rule_id,
                    error=str(e),
                    exc_info=True,
                )
        return applied

    async def _collect(self, event_ids: list[str], report: SweepReport) -> int:
        deleted = 0
        for event_id in event_ids:
            try:
                if await self._store.delete(event_id):
                    deleted += 1
                    SWEEP_ACTIONS.labels(phase="collect").inc()
            except Exception as e:
                report.errors += 1
                SWEEP_ERRORS.labels(phase="collect").inc()
                logger.error(
                    "Sweep deletion failed",
                    event_id=event_id,
                    error=str(e),
                    exc_info=True,
                )
        return deleted
