"""WebAuthn signature verification.

Every format decision (DER vs raw signatures, base64 vs base64url, JSON vs
hex vs base64 payloads) lives here so call sites only ever see canonical
bytes or a typed verification error.
"""

import base64
import binascii
import hashlib
import json
from dataclasses import dataclass, field
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)
from pydantic import BaseModel, Field

from geotrigger.core.errors import (
    ChallengeMismatch,
    InvalidAssertion,
    InvalidSignatureEncoding,
    InvalidSignatureLength,
    SigningKeyMismatch,
    VerificationFailed,
)
from geotrigger.core.logging import get_logger, short_key
from geotrigger.storage.auxiliary import PasskeyRegistry

logger = get_logger(__name__)

# secp256r1 group order
P256_ORDER = 0xFFFFFFFF00000000FFFFFFFFFFFFFFFFBCE6FAADA7179E84F3B9CAC2FC632551
RAW_SIGNATURE_LENGTH = 64
DER_SIGNATURE_LENGTHS = range(70, 73)
CHALLENGE_BYTES = 32


class WebAuthnAuthorization(BaseModel):
    """Passkey assertion supplied by the client to authorize an execution."""

    signature: str = Field(..., description="DER or raw r||s signature, base64/base64url")
    authenticator_data: str = Field(..., description="Authenticator data, base64/base64url")
    client_data: str = Field(..., description="clientDataJSON, base64/base64url")
    signature_payload: str = Field(..., description="Canonical serialization of the action")
    passkey_public_key: str | None = Field(
        default=None,
        description="Signing passkey (SPKI or uncompressed point), base64 or hex",
    )


@dataclass
class VerificationReport:
    """Outcome of a successful verification."""

    signature: bytes
    challenge: str
    passkey_public_key: str | None = None
    assertion_verified: bool = False
    warnings: list[str] = field(default_factory=list)


def decode_b64(value: str) -> bytes:
    """Decode base64 or base64url, with or without padding."""
    normalized = value.strip().replace("-", "+").replace("_", "/")
    normalized += "=" * (-len(normalized) % 4)
    return base64.b64decode(normalized, validate=True)


def encode_b64url(data: bytes) -> str:
    """Unpadded base64url, as WebAuthn clients encode challenges."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def normalize_b64url(value: str) -> str:
    return value.strip().replace("+", "-").replace("/", "_").rstrip("=")


def _as_bytes(value: bytes | str) -> bytes:
    if isinstance(value, bytes):
        return value
    text = value.strip()
    try:
        if text.startswith("0x"):
            return bytes.fromhex(text[2:])
        return decode_b64(text)
    except (binascii.Error, ValueError) as e:
        raise InvalidSignatureEncoding(f"Signature is not valid base64 or hex: {e}") from e


def normalize_signature(value: bytes | str) -> bytes:
    """Normalize a WebAuthn signature to canonical 64-byte r||s with low S.

    Args:
        value: DER-encoded (70-72 bytes) or raw (64 bytes) signature, as
            bytes or base64/base64url/0x-hex text

    Returns:
        64 bytes: r and s, each big-endian and zero-padded to 32 bytes

    Raises:
        InvalidSignatureLength: for any other length
        InvalidSignatureEncoding: for malformed DER
    """
    raw = _as_bytes(value)

    if len(raw) == RAW_SIGNATURE_LENGTH:
        r = int.from_bytes(raw[:32], "big")
        s = int.from_bytes(raw[32:], "big")
    elif len(raw) in DER_SIGNATURE_LENGTHS:
        if raw[0] != 0x30:
            raise InvalidSignatureEncoding("Invalid DER signature: must start with 0x30")
        try:
            r, s = decode_dss_signature(raw)
        except ValueError as e:
            raise InvalidSignatureEncoding(f"Invalid DER signature: {e}") from e
    else:
        raise InvalidSignatureLength(len(raw))

    if not (0 < r < P256_ORDER and 0 < s < P256_ORDER):
        raise InvalidSignatureEncoding("Signature component out of range")
    if s > P256_ORDER // 2:
        s = P256_ORDER - s

    return r.to_bytes(32, "big") + s.to_bytes(32, "big")


def decode_signature_payload(payload: str | bytes | dict[str, Any]) -> bytes:
    """Turn a signature payload into the bytes the client signed.

    JSON text is taken as UTF-8; ``0x``-prefixed or bare hex is decoded as
    hex; anything else is treated as base64. Dicts are serialized compactly.
    """
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, dict):
        return json.dumps(payload, separators=(",", ":")).encode("utf-8")

    try:
        json.loads(payload)
        return payload.encode("utf-8")
    except ValueError:
        pass

    stripped = payload[2:] if payload.startswith("0x") else payload
    if stripped and len(stripped) % 2 == 0 and all(c in "0123456789abcdefABCDEF" for c in stripped):
        return bytes.fromhex(stripped)
    try:
        return decode_b64(payload)
    except (binascii.Error, ValueError):
        return payload.encode("utf-8")


def expected_challenge(payload: str | bytes | dict[str, Any]) -> str:
    """Challenge bound to a payload: first 32 bytes, zero-padded, base64url."""
    data = decode_signature_payload(payload)[:CHALLENGE_BYTES]
    return encode_b64url(data.ljust(CHALLENGE_BYTES, b"\x00"))


def decode_client_data(client_data: str | bytes) -> bytes:
    """Raw clientDataJSON bytes from base64/base64url text or raw JSON."""
    if isinstance(client_data, bytes):
        return client_data
    text = client_data.strip()
    if text.startswith("{"):
        return text.encode("utf-8")
    return decode_b64(text)


def extract_challenge(client_data: str | bytes) -> str:
    """Challenge from clientDataJSON, normalized to unpadded base64url.

    Raises:
        ValueError: if client data is not decodable JSON with a challenge
    """
    try:
        parsed = json.loads(decode_client_data(client_data))
    except (binascii.Error, UnicodeDecodeError) as e:
        raise ValueError(f"Undecodable clientDataJSON: {e}") from e
    challenge = parsed.get("challenge") if isinstance(parsed, dict) else None
    if not isinstance(challenge, str) or not challenge:
        raise ValueError("clientDataJSON has no challenge")
    return normalize_b64url(challenge)


def verify_challenge(payload: str | bytes | dict[str, Any], client_data: str | bytes) -> str:
    """Assert the authenticator challenge is bound to the payload.

    Returns:
        The matching challenge

    Raises:
        ChallengeMismatch: with the expected and actual challenges
    """
    expected = expected_challenge(payload)
    try:
        actual = extract_challenge(client_data)
    except ValueError as e:
        logger.warning("Could not parse clientDataJSON for challenge verification", error=str(e))
        actual = None
    if actual != expected:
        raise ChallengeMismatch(expected, actual)
    return expected


def extract_public_key(value: bytes | str) -> bytes:
    """65-byte uncompressed P-256 point from SPKI DER or a raw point.

    Args:
        value: SPKI (91 bytes) or uncompressed point, as bytes, hex or base64
    """
    if isinstance(value, str):
        text = value.strip()
        hex_text = text[2:] if text.startswith("0x") else text
        try:
            raw = bytes.fromhex(hex_text)
        except ValueError:
            try:
                raw = decode_b64(text)
            except (binascii.Error, ValueError) as e:
                raise VerificationFailed("Passkey public key is neither hex nor base64") from e
    else:
        raw = value

    if len(raw) == 65 and raw[0] == 0x04:
        return raw
    try:
        key = serialization.load_der_public_key(raw)
    except ValueError as e:
        raise VerificationFailed(f"Unsupported passkey public key: {e}") from e
    if not isinstance(key, ec.EllipticCurvePublicKey) or not isinstance(key.curve, ec.SECP256R1):
        raise VerificationFailed("Passkey public key must be a P-256 key")
    return key.public_bytes(
        serialization.Encoding.X962,
        serialization.PublicFormat.UncompressedPoint,
    )


def verify_signing_key(presented: bytes | str, registered: bytes | str) -> None:
    """Ensure the signing passkey is the one registered for the wallet.

    Raises:
        SigningKeyMismatch: always fatal, a signature from another key cannot verify
    """
    presented_hex = extract_public_key(presented).hex()
    registered_hex = extract_public_key(registered).hex()
    if presented_hex != registered_hex:
        raise SigningKeyMismatch(registered_hex, presented_hex)


def verify_assertion(
    public_key: bytes,
    authenticator_data: bytes,
    client_data_json: bytes,
    signature: bytes,
) -> None:
    """ECDSA P-256 check over authenticatorData || SHA-256(clientDataJSON).

    Raises:
        InvalidAssertion: if the signature does not verify
    """
    try:
        key = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), public_key)
    except ValueError as e:
        raise InvalidAssertion(f"Passkey public key is not a P-256 point: {e}") from e
    der = encode_dss_signature(
        int.from_bytes(signature[:32], "big"),
        int.from_bytes(signature[32:], "big"),
    )
    message = authenticator_data + hashlib.sha256(client_data_json).digest()
    try:
        key.verify(der, message, ec.ECDSA(hashes.SHA256()))
    except InvalidSignature as e:
        raise InvalidAssertion("WebAuthn assertion signature does not verify") from e


class WebAuthnVerifier:
    """Verifies a passkey authorization for a wallet."""

    def __init__(self, passkeys: PasskeyRegistry, strict_challenge: bool = True):
        self._passkeys = passkeys
        self._strict_challenge = strict_challenge

    async def verify(
        self,
        public_key: str,
        auth: WebAuthnAuthorization,
        strict_challenge: bool | None = None,
    ) -> VerificationReport:
        """Verify an authorization for ``public_key``.

        Args:
            public_key: Wallet the execution is for
            auth: Client-supplied assertion
            strict_challenge: Override for challenge mismatch handling; when
                False a mismatch is logged and reported as a warning

        Returns:
            VerificationReport with the canonical signature
        """
        strict = self._strict_challenge if strict_challenge is None else strict_challenge
        signature = normalize_signature(auth.signature)
        report = VerificationReport(signature=signature, challenge=expected_challenge(auth.signature_payload))

        try:
            verify_challenge(auth.signature_payload, auth.client_data)
        except ChallengeMismatch as e:
            if strict:
                raise
            logger.warning(
                "WebAuthn challenge mismatch accepted",
                public_key=short_key(public_key),
                expected=e.expected,
                actual=e.actual,
            )
            report.warnings.append(e.message)

        registered = await self._passkeys.get(public_key)
        presented = extract_public_key(auth.passkey_public_key) if auth.passkey_public_key else None
        if registered and presented is not None:
            verify_signing_key(presented, registered)

        key = extract_public_key(registered) if registered else presented
        if key is None:
            logger.debug("No passkey on record, deferring assertion check", public_key=short_key(public_key))
            return report

        report.passkey_public_key = key.hex()
        try:
            authenticator_data = decode_b64(auth.authenticator_data)
            client_data_json = decode_client_data(auth.client_data)
        except (binascii.Error, ValueError) as e:
            raise InvalidAssertion(f"Undecodable assertion data: {e}") from e
        verify_assertion(key, authenticator_data, client_data_json, signature)
        report.assertion_verified = True
        return report
