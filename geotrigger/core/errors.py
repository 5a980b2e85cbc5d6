"""Error taxonomy for the execution lifecycle."""

from typing import Any


class GeoTriggerError(Exception):
    """Base exception for execution lifecycle failures."""

    status_code: int = 400
    code: str = "error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = str(self)

    def detail(self) -> dict[str, Any]:
        """Structured payload for API responses and logs."""
        return {"error": self.code}


class RuleNotFound(GeoTriggerError):
    """Execution rule does not exist or is inactive."""

    status_code = 404
    code = "rule_not_found"

    def __init__(self, rule_id: int):
        self.rule_id = rule_id
        super().__init__(f"Rule {rule_id} not found")

    def detail(self) -> dict[str, Any]:
        return {"error": self.code, "rule_id": self.rule_id}


class AttemptNotFound(GeoTriggerError):
    """No matching pending attempt (it may have been completed elsewhere)."""

    status_code = 404
    code = "not_found"

    def __init__(self, rule_id: int, public_key: str, event_id: str | None = None):
        self.rule_id = rule_id
        self.public_key = public_key
        self.event_id = event_id
        super().__init__(f"No pending execution for rule {rule_id}")

    def detail(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "rule_id": self.rule_id,
            "public_key": self.public_key,
            "event_id": self.event_id,
        }


class ConflictAlreadyTerminal(GeoTriggerError):
    """Transition attempted on an attempt that is already terminal."""

    status_code = 409
    code = "already_terminal"

    def __init__(self, rule_id: int, event_id: str, state: str):
        self.rule_id = rule_id
        self.event_id = event_id
        self.state = state
        super().__init__(f"Execution for rule {rule_id} is already {state}")

    def detail(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "rule_id": self.rule_id,
            "event_id": self.event_id,
            "state": self.state,
        }


# Admission

class AdmissionDenied(GeoTriggerError):
    """Execution is not currently admissible; retry later."""

    status_code = 403
    code = "admission_denied"


class QuorumNotMet(AdmissionDenied):
    """Not enough required wallets are in range."""

    code = "quorum_not_met"

    def __init__(self, present: list[str], missing: list[str], minimum_count: int):
        self.present = present
        self.missing = missing
        self.minimum_count = minimum_count
        super().__init__(
            f"Required {minimum_count} wallet(s) in range, but only {len(present)} are present"
        )

    def detail(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "present": self.present,
            "missing": self.missing,
            "minimum_count": self.minimum_count,
        }


class RateLimitExceeded(AdmissionDenied):
    """Maximum executions per time window reached."""

    code = "rate_limit_exceeded"

    def __init__(self, max_executions: int, window_seconds: int, retry_after: float | None = None):
        self.max_executions = max_executions
        self.window_seconds = window_seconds
        self.retry_after = retry_after
        super().__init__(
            f"Maximum executions per time window reached "
            f"({max_executions} per {window_seconds} seconds)"
        )

    def detail(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "max_executions": self.max_executions,
            "window_seconds": self.window_seconds,
            "retry_after": self.retry_after,
        }


class ConfirmationRequired(AdmissionDenied):
    """Rule must be confirmed by its owner before it can execute."""

    code = "confirmation_required"


class ExecutionInFlight(AdmissionDenied):
    """Another submission for this attempt is still running."""

    status_code = 409
    code = "execution_in_flight"


# Verification

class VerificationFailed(GeoTriggerError):
    """WebAuthn authorization could not be verified."""

    status_code = 400
    code = "verification_failed"


class InvalidSignatureLength(VerificationFailed):
    """Signature is neither DER (70-72 bytes) nor raw (64 bytes)."""

    code = "invalid_signature_length"

    def __init__(self, length: int):
        self.length = length
        super().__init__(f"Invalid signature length: {length} bytes (expected 64 raw or 70-72 DER)")

    def detail(self) -> dict[str, Any]:
        return {"error": self.code, "length": self.length}


class InvalidSignatureEncoding(VerificationFailed):
    """Signature bytes could not be decoded."""

    code = "invalid_signature_encoding"


class ChallengeMismatch(VerificationFailed):
    """clientData challenge does not match the signature payload."""

    code = "challenge_mismatch"

    def __init__(self, expected: str, actual: str | None):
        self.expected = expected
        self.actual = actual
        super().__init__(
            "The challenge in clientDataJSON does not match the first 32 bytes of signaturePayload"
        )

    def detail(self) -> dict[str, Any]:
        return {"error": self.code, "expected": self.expected, "actual": self.actual}


class SigningKeyMismatch(VerificationFailed):
    """Signing passkey differs from the one registered for the wallet."""

    code = "signing_key_mismatch"

    def __init__(self, registered: str, presented: str):
        self.registered = registered
        self.presented = presented
        super().__init__(
            "The passkey used to sign does not match the passkey registered for this wallet"
        )

    def detail(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "registered": self.registered[:32] + "...",
            "presented": self.presented[:32] + "...",
        }


class InvalidAssertion(VerificationFailed):
    """ECDSA verification of the WebAuthn assertion failed."""

    code = "invalid_assertion"


# Submission

class SubmissionFailed(GeoTriggerError):
    """Blockchain submission failed in transport; the attempt can be retried."""

    status_code = 502
    code = "submission_failed"


class ContractRejected(GeoTriggerError):
    """Contract returned a falsy result; not retryable without new parameters."""

    status_code = 422
    code = "contract_rejected"

    def __init__(self, tx_hash: str | None, return_value: Any):
        self.tx_hash = tx_hash
        self.return_value = return_value
        super().__init__("Contract rejected the call")

    def detail(self) -> dict[str, Any]:
        return {"error": self.code, "tx_hash": self.tx_hash, "return_value": self.return_value}
