"""Execution API schemas."""

from pydantic import BaseModel, Field

from geotrigger.engine.orchestrator import ActionResult
from geotrigger.engine.quorum import QuorumStatus
from geotrigger.engine.webauthn import WebAuthnAuthorization
from geotrigger.models.execution import AttemptState, RejectionReason


class ConfirmRequest(BaseModel):
    """Authorize and execute a pending attempt."""

    public_key: str = Field(..., description="Matched wallet")
    event_id: str | None = Field(
        default=None,
        description="Location event of the attempt; latest live attempt when omitted",
    )
    webauthn: WebAuthnAuthorization | None = Field(
        default=None,
        description="Passkey assertion, required when the rule requires WebAuthn",
    )


class RejectRequest(BaseModel):
    """Reject a pending attempt."""

    public_key: str = Field(..., description="Matched wallet")
    event_id: str | None = Field(default=None, description="Location event of the attempt")
    reason: RejectionReason = Field(default=RejectionReason.USER_DECLINED)
    note: str = Field(default="", max_length=500)


class RecoverRequest(BaseModel):
    """Record an out-of-band transaction for an attempt."""

    public_key: str = Field(..., description="Matched wallet")
    event_id: str = Field(..., description="Location event of the attempt")
    tx_hash: str = Field(..., min_length=1, description="Transaction reference")


class ActionResponse(BaseModel):
    """Outcome of a lifecycle action."""

    rule_id: int
    event_id: str
    public_key: str
    state: AttemptState
    changed: bool = True
    tx_hash: str | None = None
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: ActionResult) -> "ActionResponse":
        return cls(
            rule_id=result.rule_id,
            event_id=result.event_id,
            public_key=result.public_key,
            state=result.state,
            changed=result.changed,
            tx_hash=result.tx_hash,
            warnings=result.warnings,
        )


class QuorumResponse(QuorumStatus):
    """Quorum status with a human-readable summary."""

    rule_id: int
    summary: str = ""

    @classmethod
    def from_status(cls, rule_id: int, status: QuorumStatus) -> "QuorumResponse":
        return cls(rule_id=rule_id, summary=status.message, **status.model_dump())


class PasskeyRegistration(BaseModel):
    """Passkey public key registered for a wallet."""

    passkey_public_key: str = Field(..., description="SPKI or uncompressed point, base64 or hex")
