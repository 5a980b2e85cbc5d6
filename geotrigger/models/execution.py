"""Execution attempt domain models.

An attempt's lifecycle is encoded as a discriminated union on ``state`` so
that an attempt is exactly one of pending, completed, rejected, failed or
superseded at any time.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field


class AttemptState(str, Enum):
    """Attempt lifecycle state."""

    PENDING = "pending"
    COMPLETED = "completed"
    REJECTED = "rejected"
    FAILED = "failed"
    SUPERSEDED = "superseded"


class PendingReason(str, Enum):
    """Why an attempt is waiting instead of executing."""

    REQUIRES_WEBAUTHN = "requires_webauthn"
    REQUIRES_CONFIRMATION = "requires_confirmation"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    INSUFFICIENT_LOCATION_DURATION = "insufficient_location_duration"
    AUTO_EXECUTE_DISABLED = "auto_execute_disabled"
    TARGET_WALLET_MISMATCH = "target_wallet_mismatch"
    QUEUED_FOR_EXECUTION = "queued_for_execution"


# Reasons that keep an attempt "live": the user or the worker can still act on it
LIVE_PENDING_REASONS = frozenset({
    PendingReason.REQUIRES_WEBAUTHN,
    PendingReason.REQUIRES_CONFIRMATION,
    PendingReason.RATE_LIMIT_EXCEEDED,
    PendingReason.INSUFFICIENT_LOCATION_DURATION,
    PendingReason.QUEUED_FOR_EXECUTION,
})

# Reasons a user can authorize through confirm()
AUTHORIZABLE_REASONS = frozenset({
    PendingReason.REQUIRES_WEBAUTHN,
    PendingReason.REQUIRES_CONFIRMATION,
})


class RejectionReason(str, Enum):
    """User-supplied rejection reason."""

    USER_DECLINED = "user_declined"
    EXPIRED = "expired"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    OTHER = "other"


class SupersededReason(str, Enum):
    """Bookkeeping reason for superseding an attempt."""

    SUPERSEDED_BY_NEWER_EXECUTION = "superseded_by_newer_execution"
    EXPIRED = "expired"


class PendingStatus(BaseModel):
    state: Literal["pending"] = "pending"
    reason: PendingReason
    message: str = ""
    since: datetime = Field(default_factory=datetime.utcnow)


class CompletedStatus(BaseModel):
    state: Literal["completed"] = "completed"
    tx_hash: str
    completed_at: datetime = Field(default_factory=datetime.utcnow)
    return_value: Any = None
    recovered: bool = False


class RejectedStatus(BaseModel):
    state: Literal["rejected"] = "rejected"
    reason: RejectionReason = RejectionReason.USER_DECLINED
    note: str = ""
    rejected_at: datetime = Field(default_factory=datetime.utcnow)


class FailedStatus(BaseModel):
    state: Literal["failed"] = "failed"
    error: str
    contract_rejected: bool = False
    tx_hash: str | None = None
    failed_at: datetime = Field(default_factory=datetime.utcnow)


class SupersededStatus(BaseModel):
    state: Literal["superseded"] = "superseded"
    reason: SupersededReason = SupersededReason.SUPERSEDED_BY_NEWER_EXECUTION
    superseded_at: datetime = Field(default_factory=datetime.utcnow)


AttemptStatus = Annotated[
    Union[PendingStatus, CompletedStatus, RejectedStatus, FailedStatus, SupersededStatus],
    Field(discriminator="state"),
]


class StatusChange(BaseModel):
    """Audit entry for a single transition."""

    from_state: AttemptState
    to_state: AttemptState
    detail: str = ""
    changed_at: datetime = Field(default_factory=datetime.utcnow)


class ExecutionAttempt(BaseModel):
    """One (rule, wallet) execution record inside a location event."""

    rule_id: int = Field(..., description="Matched rule")
    matched_public_key: str = Field(..., description="Wallet that matched the rule")
    matched_at: datetime = Field(default_factory=datetime.utcnow)
    status: AttemptStatus
    history: list[StatusChange] = Field(default_factory=list)

    @property
    def state(self) -> AttemptState:
        return AttemptState(self.status.state)

    @property
    def pending_reason(self) -> PendingReason | None:
        if isinstance(self.status, PendingStatus):
            return self.status.reason
        return None

    def is_terminal(self) -> bool:
        """Completed, rejected, superseded and contract-rejected failures never change."""
        if isinstance(self.status, FailedStatus):
            return self.status.contract_rejected
        return not isinstance(self.status, PendingStatus)

    def is_live(self) -> bool:
        """Whether the attempt still awaits user or worker action."""
        if isinstance(self.status, PendingStatus):
            return self.status.reason in LIVE_PENDING_REASONS
        return isinstance(self.status, FailedStatus) and not self.status.contract_rejected

    def is_retryable(self) -> bool:
        return isinstance(self.status, FailedStatus) and not self.status.contract_rejected

    def matches(self, rule_id: int, public_key: str) -> bool:
        return self.rule_id == rule_id and self.matched_public_key == public_key

    def with_status(self, status: AttemptStatus, detail: str = "") -> "ExecutionAttempt":
        """Return a copy moved to ``status`` with an audit entry appended."""
        change = StatusChange(
            from_state=self.status.state,
            to_state=status.state,
            detail=detail,
        )
        return self.model_copy(update={"status": status, "history": [*self.history, change]})


class RuleExecutionHistory(BaseModel):
    """Per (rule, wallet) execution counters used by the rate limiter."""

    rule_id: int
    public_key: str
    last_execution_at: datetime | None = None
    execution_count: int = Field(default=0, ge=0)
    window_started_at: datetime | None = None
    window_count: int = Field(default=0, ge=0)


class AttemptView(BaseModel):
    """Attempt enriched with rule and contract details for callers."""

    rule_id: int
    rule_name: str
    event_id: str
    function_name: str
    contract_id: int
    contract_name: str
    contract_address: str
    matched_public_key: str
    function_parameters: dict[str, Any] = Field(default_factory=dict)
    latitude: float | None = None
    longitude: float | None = None
    matched_at: datetime
    state: AttemptState
    reason: str | None = None
    message: str = ""


class PendingAttempt(AttemptView):
    requires_webauthn: bool = True
    quorum: dict[str, Any] | None = None


class CompletedAttempt(AttemptView):
    tx_hash: str
    completed_at: datetime


class RejectedAttempt(AttemptView):
    rejected_at: datetime
