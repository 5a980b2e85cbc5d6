"""Execution lifecycle orchestration.

Drives an attempt from the pending state assigned at match time through
admission, WebAuthn-verified confirmation and blockchain submission, or to
rejection. All writes go through the record store's conditional
transitions, so concurrent callers degrade to no-ops instead of
overwriting each other.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from geotrigger.chain.client import BlockchainClient, ContractCall, is_success
from geotrigger.core.config import Settings, get_settings
from geotrigger.core.errors import (
    AttemptNotFound,
    ConfirmationRequired,
    ConflictAlreadyTerminal,
    ContractRejected,
    ExecutionInFlight,
    RuleNotFound,
    SubmissionFailed,
    VerificationFailed,
)
from geotrigger.core.logging import get_logger, short_key
from geotrigger.engine.parameters import populate_parameters
from geotrigger.engine.quorum import QuorumStatus, QuorumValidator
from geotrigger.engine.rate_limiter import RateLimiter, RateLimitStatus
from geotrigger.engine.webauthn import WebAuthnAuthorization, WebAuthnVerifier
from geotrigger.models.event import LocationEvent, MatchEvent
from geotrigger.models.execution import (
    AUTHORIZABLE_REASONS,
    AttemptState,
    CompletedAttempt,
    CompletedStatus,
    ExecutionAttempt,
    FailedStatus,
    PendingAttempt,
    PendingReason,
    PendingStatus,
    RejectedAttempt,
    RejectedStatus,
    RejectionReason,
)
from geotrigger.models.rule import ExecutionRule
from geotrigger.observability.metrics import (
    ADMISSION_DENIALS,
    ATTEMPTS_RECORDED,
    CONFIRMATIONS,
    MATCHES_RECEIVED,
    SUBMISSION_LATENCY,
)
from geotrigger.storage.auxiliary import ExecutionQueue, HistoryStore, PresenceStore
from geotrigger.storage.execution_store import AttemptFilter, ExecutionStore, Expect
from geotrigger.storage.rule_store import RuleStore

logger = get_logger(__name__)

# Everything except an untargeted wallet or one that has not stayed in range long enough
CONFIRMABLE = Expect(
    states=frozenset({AttemptState.PENDING, AttemptState.FAILED}),
    reasons=frozenset(set(PendingReason) - {
        PendingReason.TARGET_WALLET_MISMATCH,
        PendingReason.INSUFFICIENT_LOCATION_DURATION,
    }),
)

AUTO_EXECUTABLE = Expect(
    states=frozenset({AttemptState.PENDING, AttemptState.FAILED}),
    reasons=frozenset({PendingReason.QUEUED_FOR_EXECUTION}),
)

REQUIRES_WEBAUTHN_MESSAGE = (
    "Rule matched but requires WebAuthn/passkey authorization. "
    "Please execute manually."
)


@dataclass
class ActionResult:
    """Outcome of confirm, reject, recover or a queued execution."""

    rule_id: int
    event_id: str
    public_key: str
    state: AttemptState
    changed: bool = True
    tx_hash: str | None = None
    warnings: list[str] = field(default_factory=list)


def initial_reason(
    rule: ExecutionRule,
    public_key: str,
    rate: RateLimitStatus,
    dwell_seconds: float | None = None,
) -> tuple[PendingReason, str]:
    """Pending reason and message for a freshly matched (rule, wallet).

    Checked in order: rate limit, location duration, target wallet, WebAuthn,
    auto-execution, confirmation. A rule that passes them all is queued for
    the worker.

    Args:
        rule: Matched rule
        public_key: Matched wallet
        rate: Rate limit status of the (rule, wallet)
        dwell_seconds: How long the wallet has been in range; None if it is not
    """
    if not rate.allowed:
        return PendingReason.RATE_LIMIT_EXCEEDED, (
            f"Maximum executions per time window reached "
            f"({rate.max_executions} per {rate.window_seconds} seconds)"
        )
    if rule.requires_dwell() and (dwell_seconds or 0) < rule.min_location_duration_seconds:
        return PendingReason.INSUFFICIENT_LOCATION_DURATION, (
            f"Wallet has not been at the location long enough to trigger execution "
            f"(requires {rule.min_location_duration_seconds} seconds)"
        )
    if not rule.matches_target(public_key):
        return PendingReason.TARGET_WALLET_MISMATCH, "Matched wallet is not the rule's target wallet"
    if rule.requires_webauthn:
        return PendingReason.REQUIRES_WEBAUTHN, REQUIRES_WEBAUTHN_MESSAGE
    if not rule.auto_execute:
        return PendingReason.AUTO_EXECUTE_DISABLED, "Automatic execution is disabled for this rule"
    if rule.requires_confirmation:
        return PendingReason.REQUIRES_CONFIRMATION, "Rule requires confirmation before execution"
    return PendingReason.QUEUED_FOR_EXECUTION, "Queued for automatic execution"


class ExecutionOrchestrator:
    """State machine driver for execution attempts."""

    def __init__(
        self,
        store: ExecutionStore,
        rules: RuleStore,
        history: HistoryStore,
        rate_limiter: RateLimiter,
        quorum: QuorumValidator,
        verifier: WebAuthnVerifier,
        chain: BlockchainClient,
        presence: PresenceStore | None = None,
        queue: ExecutionQueue | None = None,
        settings: Settings | None = None,
    ):
        self._store = store
        self._rules = rules
        self._history = history
        self._rate_limiter = rate_limiter
        self._quorum = quorum
        self._verifier = verifier
        self._chain = chain
        self._presence = presence
        self._queue = queue
        self._settings = settings or get_settings()

    # Ingestion

    async def record_match(self, match: MatchEvent) -> ExecutionAttempt | None:
        """Record a geo-matcher result as a pending attempt.

        Args:
            match: Matched (rule, wallet, event)

        Returns:
            The recorded attempt, or None if the rule is unknown or the event
            already holds a live attempt for this (rule, wallet)
        """
        MATCHES_RECEIVED.inc()

        rule = await self._rules.get_active(match.rule_id)
        if rule is None:
            logger.warning("Match for unknown or inactive rule", rule_id=match.rule_id)
            return None

        dwell = None
        if self._presence is not None:
            await self._presence.mark_in_range(rule.rule_id, match.public_key, match.matched_at)
            dwell = await self._presence.dwell_seconds(rule.rule_id, match.public_key, match.matched_at)

        rate = await self._rate_limiter.check(rule, match.public_key, match.matched_at)
        reason, message = initial_reason(rule, match.public_key, rate, dwell)

        attempt = ExecutionAttempt(
            rule_id=rule.rule_id,
            matched_public_key=match.public_key,
            matched_at=match.matched_at,
            status=PendingStatus(reason=reason, message=message, since=match.matched_at),
        )
        event = LocationEvent.from_match(match)
        event.attempts = [attempt]

        added = await self._store.append(event)
        if not added:
            logger.info(
                "Live attempt already exists for match",
                rule_id=rule.rule_id,
                event_id=match.event_id,
                public_key=short_key(match.public_key),
            )
            return None

        ATTEMPTS_RECORDED.labels(reason=reason.value).inc()
        logger.info(
            "Execution attempt recorded",
            rule_id=rule.rule_id,
            event_id=match.event_id,
            public_key=short_key(match.public_key),
            reason=reason.value,
        )

        if reason == PendingReason.QUEUED_FOR_EXECUTION and self._queue is not None:
            await self._queue.enqueue(rule.rule_id, match.public_key, match.event_id)
        return attempt

    # Queries

    async def list_pending(
        self,
        attempt_filter: AttemptFilter,
        limit: int | None = None,
    ) -> list[PendingAttempt]:
        """Admit and list attempts awaiting the user, one per (rule, wallet), newest first.

        Only attempts the user can act on are surfaced: those awaiting
        authorization or confirmation, and retryable failures. Each is
        re-checked against the rate limiter first; one over the limit is
        relabeled ``rate_limit_exceeded`` and left out until the sweeper
        readmits it. Quorum shortfalls are reported on the item but not
        persisted.
        """
        rows = await self._store.list_pending(attempt_filter)
        rules = await self._rules.get_many({attempt.rule_id for _, attempt in rows})
        limit = limit or self._settings.pending_list_limit
        now = datetime.utcnow()

        seen: set[tuple[int, str]] = set()
        items: list[PendingAttempt] = []
        for event, attempt in rows:
            key = (attempt.rule_id, attempt.matched_public_key)
            rule = rules.get(attempt.rule_id)
            if key in seen or rule is None or not rule.active:
                continue
            if attempt.state == AttemptState.PENDING and attempt.pending_reason not in AUTHORIZABLE_REASONS:
                continue

            if not await self._admit(rule, event, attempt, now):
                continue
            seen.add(key)
            quorum = await self._quorum.check_quorum(rule) if rule.requires_quorum() else None
            if quorum is not None and not quorum.met:
                ADMISSION_DENIALS.labels(reason="quorum_not_met").inc()

            items.append(self._pending_view(rule, event, attempt, quorum))
            if len(items) >= limit:
                break
        return items

    async def list_completed(
        self,
        attempt_filter: AttemptFilter,
        limit: int | None = None,
    ) -> list[CompletedAttempt]:
        rows = await self._store.list_completed(attempt_filter, limit)
        rules = await self._rules.get_many({attempt.rule_id for _, attempt in rows})
        items = []
        for event, attempt in rows:
            rule = rules.get(attempt.rule_id)
            if rule is None:
                continue
            items.append(CompletedAttempt(
                **self._view_fields(rule, event, attempt),
                tx_hash=attempt.status.tx_hash,
                completed_at=attempt.status.completed_at,
            ))
        return items

    async def list_rejected(
        self,
        attempt_filter: AttemptFilter,
        limit: int | None = None,
    ) -> list[RejectedAttempt]:
        rows = await self._store.list_rejected(attempt_filter, limit)
        rules = await self._rules.get_many({attempt.rule_id for _, attempt in rows})
        items = []
        for event, attempt in rows:
            rule = rules.get(attempt.rule_id)
            if rule is None:
                continue
            items.append(RejectedAttempt(
                **self._view_fields(rule, event, attempt),
                rejected_at=attempt.status.rejected_at,
            ))
        return items

    async def check_quorum(self, rule_id: int) -> QuorumStatus:
        rule = await self._require_rule(rule_id)
        return await self._quorum.check_quorum(rule)

    # Transitions

    async def confirm(
        self,
        rule_id: int,
        public_key: str,
        event_id: str | None = None,
        authorization: WebAuthnAuthorization | None = None,
    ) -> ActionResult:
        """Confirm and execute an attempt on behalf of its wallet.

        An attempt that is already completed returns its transaction hash
        without submitting again.

        Raises:
            AttemptNotFound: no attempt for (rule, wallet[, event])
            QuorumNotMet / RateLimitExceeded: admission failed, retry later
            VerificationFailed: the WebAuthn authorization was rejected
            SubmissionFailed: transport failure; the attempt stays retryable
            ContractRejected: contract returned false; the attempt is closed
        """
        rule = await self._require_rule(rule_id)
        event, attempt = await self._locate(rule_id, public_key, event_id)

        if attempt.state == AttemptState.COMPLETED:
            CONFIRMATIONS.labels(result="already_completed").inc()
            logger.info(
                "Attempt already completed",
                rule_id=rule_id,
                event_id=event.event_id,
                tx_hash=attempt.status.tx_hash,
            )
            return ActionResult(
                rule_id=rule_id,
                event_id=event.event_id,
                public_key=public_key,
                state=AttemptState.COMPLETED,
                changed=False,
                tx_hash=attempt.status.tx_hash,
            )
        if attempt.is_terminal():
            raise ConflictAlreadyTerminal(rule_id, event.event_id, attempt.state.value)
        if not CONFIRMABLE.accepts(attempt):
            raise AttemptNotFound(rule_id, public_key, event.event_id)

        await self._quorum.require_quorum(rule)
        await self._rate_limiter.require_within_limit(rule, public_key)

        warnings: list[str] = []
        if rule.requires_webauthn:
            if authorization is None:
                raise VerificationFailed("This rule requires a WebAuthn authorization")
            report = await self._verifier.verify(public_key, authorization)
            warnings.extend(report.warnings)

        result = await self._submit(rule, event, attempt, CONFIRMABLE, authorization)
        result.warnings = [*warnings, *result.warnings]
        return result

    async def execute_queued(self, rule_id: int, public_key: str, event_id: str) -> ActionResult:
        """Execute an auto-executable attempt with the server-side signer.

        Raises:
            ConfirmationRequired: the rule needs its owner to act
        """
        rule = await self._require_rule(rule_id)
        if rule.requires_confirmation or not rule.auto_execute or rule.requires_webauthn:
            raise ConfirmationRequired()

        event, attempt = await self._locate(rule_id, public_key, event_id)
        if not AUTO_EXECUTABLE.accepts(attempt):
            logger.debug(
                "Queued attempt no longer executable",
                rule_id=rule_id,
                event_id=event_id,
                state=attempt.state.value,
            )
            return ActionResult(
                rule_id=rule_id,
                event_id=event_id,
                public_key=public_key,
                state=attempt.state,
                changed=False,
                tx_hash=getattr(attempt.status, "tx_hash", None),
            )

        await self._quorum.require_quorum(rule)
        await self._rate_limiter.require_within_limit(rule, public_key)
        return await self._submit(rule, event, attempt, AUTO_EXECUTABLE, None)

    async def reject(
        self,
        rule_id: int,
        public_key: str,
        reason: RejectionReason = RejectionReason.USER_DECLINED,
        event_id: str | None = None,
        note: str = "",
    ) -> ActionResult:
        """Reject a pending attempt.

        Raises:
            AttemptNotFound: no attempt for (rule, wallet[, event])
            ConflictAlreadyTerminal: the attempt already reached a final state
        """
        event, _ = await self._locate(rule_id, public_key, event_id)
        result = await self._store.transition(
            rule_id,
            public_key,
            event.event_id,
            Expect.open(),
            RejectedStatus(reason=reason, note=note),
            detail=f"rejected: {reason.value}",
        )
        if not result.applied:
            if result.attempt is None:
                raise AttemptNotFound(rule_id, public_key, event.event_id)
            raise ConflictAlreadyTerminal(rule_id, event.event_id, result.attempt.state.value)

        logger.info(
            "Attempt rejected",
            rule_id=rule_id,
            event_id=event.event_id,
            public_key=short_key(public_key),
            reason=reason.value,
        )
        return ActionResult(
            rule_id=rule_id,
            event_id=event.event_id,
            public_key=public_key,
            state=AttemptState.REJECTED,
        )

    async def recover(
        self,
        rule_id: int,
        public_key: str,
        event_id: str,
        tx_hash: str,
    ) -> ActionResult:
        """Record an out-of-band transaction as the attempt's completion.

        Calling it again for a completed attempt is a no-op.

        Raises:
            AttemptNotFound: no attempt for (rule, wallet, event)
            ConflictAlreadyTerminal: the attempt was rejected or superseded
        """
        rule = await self._rules.get(rule_id)
        event, attempt = await self._locate(rule_id, public_key, event_id)
        if attempt.state == AttemptState.COMPLETED:
            return ActionResult(
                rule_id=rule_id,
                event_id=event_id,
                public_key=public_key,
                state=AttemptState.COMPLETED,
                changed=False,
                tx_hash=attempt.status.tx_hash,
            )

        result = await self._store.transition(
            rule_id,
            public_key,
            event_id,
            Expect.open(),
            CompletedStatus(tx_hash=tx_hash, recovered=True),
            detail="recovered from out-of-band transaction",
        )
        if not result.applied:
            current = result.attempt
            if current is None:
                raise AttemptNotFound(rule_id, public_key, event_id)
            if current.state == AttemptState.COMPLETED:
                return ActionResult(
                    rule_id=rule_id,
                    event_id=event_id,
                    public_key=public_key,
                    state=AttemptState.COMPLETED,
                    changed=False,
                    tx_hash=current.status.tx_hash,
                )
            raise ConflictAlreadyTerminal(rule_id, event_id, current.state.value)

        await self._history.record_execution(
            rule_id,
            public_key,
            rule.rate_limit.window_seconds if rule and rule.rate_limit else None,
        )
        logger.info("Attempt recovered", rule_id=rule_id, event_id=event_id, tx_hash=tx_hash)
        return ActionResult(
            rule_id=rule_id,
            event_id=event_id,
            public_key=public_key,
            state=AttemptState.COMPLETED,
            tx_hash=tx_hash,
        )

    async def close(self) -> None:
        await self._chain.close()

    # Internals

    async def _require_rule(self, rule_id: int) -> ExecutionRule:
        rule = await self._rules.get_active(rule_id)
        if rule is None:
            raise RuleNotFound(rule_id)
        return rule

    async def _locate(
        self,
        rule_id: int,
        public_key: str,
        event_id: str | None,
    ) -> tuple[LocationEvent, ExecutionAttempt]:
        found = await self._store.find_attempt(rule_id, public_key, event_id)
        if found is None:
            raise AttemptNotFound(rule_id, public_key, event_id)
        return found

    async def _admit(
        self,
        rule: ExecutionRule,
        event: LocationEvent,
        attempt: ExecutionAttempt,
        now: datetime,
    ) -> bool:
        """Check the rate limit for an attempt about to be shown.

        An authorizable attempt over the limit is relabeled
        ``rate_limit_exceeded``; a retryable failure is only hidden.

        Returns:
            True if the attempt may be surfaced
        """
        rate = await self._rate_limiter.check(rule, attempt.matched_public_key, now)
        if rate.allowed:
            return True

        ADMISSION_DENIALS.labels(reason="rate_limit_exceeded").inc()
        if attempt.pending_reason in AUTHORIZABLE_REASONS:
            reason, message = initial_reason(rule, attempt.matched_public_key, rate)
            await self._store.transition(
                rule.rule_id,
                attempt.matched_public_key,
                event.event_id,
                Expect.pending(attempt.pending_reason),
                PendingStatus(reason=reason, message=message),
                detail="rate limit exceeded at admission",
            )
        return False

    async def _submit(
        self,
        rule: ExecutionRule,
        event: LocationEvent,
        attempt: ExecutionAttempt,
        expect: Expect,
        authorization: WebAuthnAuthorization | None,
    ) -> ActionResult:
        """Claim the attempt, re-check it and execute it.

        Rate-limited rules are claimed per (rule, wallet) so that two events
        of one key cannot both pass the limit while their transactions are
        in flight.
        """
        public_key = attempt.matched_public_key
        whole_key = rule.is_rate_limited()
        claim_ttl = int(self._settings.submission_timeout) + 15
        if not await self._store.claim(event.event_id, rule.rule_id, public_key, claim_ttl, whole_key):
            raise ExecutionInFlight()

        try:
            # State read before the claim may be stale
            found = await self._store.find_attempt(rule.rule_id, public_key, event.event_id)
            if found is None:
                raise AttemptNotFound(rule.rule_id, public_key, event.event_id)
            event, current = found

            if current.state == AttemptState.COMPLETED:
                CONFIRMATIONS.labels(result="already_completed").inc()
                logger.info(
                    "Attempt completed while waiting for its claim",
                    rule_id=rule.rule_id,
                    event_id=event.event_id,
                    tx_hash=current.status.tx_hash,
                )
                return ActionResult(
                    rule_id=rule.rule_id,
                    event_id=event.event_id,
                    public_key=public_key,
                    state=AttemptState.COMPLETED,
                    changed=False,
                    tx_hash=current.status.tx_hash,
                )
            if current.is_terminal():
                raise ConflictAlreadyTerminal(rule.rule_id, event.event_id, current.state.value)
            if not expect.accepts(current):
                return ActionResult(
                    rule_id=rule.rule_id,
                    event_id=event.event_id,
                    public_key=public_key,
                    state=current.state,
                    changed=False,
                )

            await self._rate_limiter.require_within_limit(rule, public_key)
            return await self._execute(rule, event, public_key, expect, authorization)
        finally:
            await self._store.release(event.event_id, rule.rule_id, public_key, whole_key)

    async def _execute(
        self,
        rule: ExecutionRule,
        event: LocationEvent,
        public_key: str,
        expect: Expect,
        authorization: WebAuthnAuthorization | None,
    ) -> ActionResult:
        call = ContractCall(
            contract_address=rule.contract_address,
            function_name=rule.function_name,
            parameters=populate_parameters(rule, public_key, event.latitude, event.longitude),
            source_public_key=public_key,
            network=self._settings.chain_network,
            authorization=authorization.model_dump() if authorization else None,
        )

        started = time.monotonic()
        try:
            submission = await asyncio.wait_for(
                self._chain.submit(call),
                timeout=self._settings.submission_timeout,
            )
        except (SubmissionFailed, asyncio.TimeoutError) as e:
            error = str(e) or "Submission timed out"
            await self._store.transition(
                rule.rule_id,
                public_key,
                event.event_id,
                expect,
                FailedStatus(error=error),
                detail="submission failed",
            )
            CONFIRMATIONS.labels(result="submission_failed").inc()
            logger.warning(
                "Submission failed",
                rule_id=rule.rule_id,
                event_id=event.event_id,
                error=error,
            )
            if isinstance(e, SubmissionFailed):
                raise
            raise SubmissionFailed(error) from e
        finally:
            SUBMISSION_LATENCY.observe(time.monotonic() - started)

        if not is_success(submission, self._settings.treat_undecodable_return_as_success):
            await self._store.transition(
                rule.rule_id,
                public_key,
                event.event_id,
                expect,
                FailedStatus(
                    error="Contract returned false",
                    contract_rejected=True,
                    tx_hash=submission.tx_hash,
                ),
                detail="contract rejected the call",
            )
            CONFIRMATIONS.labels(result="contract_rejected").inc()
            logger.warning(
                "Contract rejected the call",
                rule_id=rule.rule_id,
                event_id=event.event_id,
                tx_hash=submission.tx_hash,
                logs=submission.logs,
            )
            raise ContractRejected(submission.tx_hash, submission.return_value)

        window_seconds = rule.rate_limit.window_seconds if rule.rate_limit else None
        result = await self._store.transition(
            rule.rule_id,
            public_key,
            event.event_id,
            expect,
            CompletedStatus(tx_hash=submission.tx_hash, return_value=submission.return_value),
            detail="submitted",
        )
        if not result.applied:
            current = result.attempt
            logger.error(
                "Attempt changed while its transaction was in flight",
                rule_id=rule.rule_id,
                event_id=event.event_id,
                tx_hash=submission.tx_hash,
                outcome=result.outcome.value,
            )
            CONFIRMATIONS.labels(result="conflict").inc()
            # A completion recorded elsewhere already counted toward the history
            if current is None or current.state != AttemptState.COMPLETED:
                await self._history.record_execution(rule.rule_id, public_key, window_seconds)
            state = current.state if current is not None else AttemptState.COMPLETED
            return ActionResult(
                rule_id=rule.rule_id,
                event_id=event.event_id,
                public_key=public_key,
                state=state,
                changed=False,
                tx_hash=submission.tx_hash,
                warnings=[f"Attempt became {state.value} while transaction {submission.tx_hash} was in flight"],
            )

        await self._history.record_execution(rule.rule_id, public_key, window_seconds)

        CONFIRMATIONS.labels(result="completed").inc()
        logger.info(
            "Execution completed",
            rule_id=rule.rule_id,
            event_id=event.event_id,
            public_key=short_key(public_key),
            tx_hash=submission.tx_hash,
        )
        return ActionResult(
            rule_id=rule.rule_id,
            event_id=event.event_id,
            public_key=public_key,
            state=AttemptState.COMPLETED,
            tx_hash=submission.tx_hash,
        )

    def _view_fields(
        self,
        rule: ExecutionRule,
        event: LocationEvent,
        attempt: ExecutionAttempt,
    ) -> dict[str, Any]:
        status = attempt.status
        if isinstance(status, PendingStatus):
            reason, message = status.reason.value, status.message
        elif isinstance(status, FailedStatus):
            reason, message = "submission_failed", status.error
        elif isinstance(status, RejectedStatus):
            reason, message = status.reason.value, status.note
        else:
            reason, message = None, ""

        return {
            "rule_id": rule.rule_id,
            "rule_name": rule.rule_name,
            "event_id": event.event_id,
            "function_name": rule.function_name,
            "contract_id": rule.contract_id,
            "contract_name": rule.contract_name,
            "contract_address": rule.contract_address,
            "matched_public_key": attempt.matched_public_key,
            "function_parameters": populate_parameters(
                rule, attempt.matched_public_key, event.latitude, event.longitude
            ),
            "latitude": event.latitude,
            "longitude": event.longitude,
            "matched_at": attempt.matched_at,
            "state": attempt.state,
            "reason": reason,
            "message": message,
        }

    def _pending_view(
        self,
        rule: ExecutionRule,
        event: LocationEvent,
        attempt: ExecutionAttempt,
        quorum: QuorumStatus | None,
    ) -> PendingAttempt:
        quorum_detail = None
        if quorum is not None:
            quorum_detail = {**quorum.model_dump(mode="json"), "message": quorum.message}
        return PendingAttempt(
            **self._view_fields(rule, event, attempt),
            requires_webauthn=rule.requires_webauthn,
            quorum=quorum_detail,
        )
