"""Tests for WebAuthn signature verification."""

import base64
import json

import pytest
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature

from conftest import DEPOSIT_PAYLOAD, WALLET, Passkey
from geotrigger.core.errors import (
    ChallengeMismatch,
    InvalidAssertion,
    InvalidSignatureEncoding,
    InvalidSignatureLength,
    SigningKeyMismatch,
)
from geotrigger.engine.webauthn import (
    P256_ORDER,
    WebAuthnVerifier,
    decode_signature_payload,
    encode_b64url,
    expected_challenge,
    extract_challenge,
    extract_public_key,
    normalize_signature,
    verify_challenge,
    verify_signing_key,
)


def _client_data(challenge: str) -> str:
    return base64.b64encode(json.dumps({"type": "webauthn.get", "challenge": challenge}).encode()).decode()


def test_der_and_raw_signatures_normalize_to_same_bytes(passkey: Passkey) -> None:
    der = passkey.sign_der(b"message")
    r, s = decode_dss_signature(der)
    raw = r.to_bytes(32, "big") + s.to_bytes(32, "big")

    assert normalize_signature(der) == normalize_signature(raw)
    assert len(normalize_signature(der)) == 64


def test_high_s_is_normalized_to_low_s(passkey: Passkey) -> None:
    r, s = decode_dss_signature(passkey.sign_der(b"message"))
    high_s = max(s, P256_ORDER - s)
    raw = r.to_bytes(32, "big") + high_s.to_bytes(32, "big")

    normalized = normalize_signature(raw)

    assert int.from_bytes(normalized[32:], "big") == min(s, P256_ORDER - s)
    assert int.from_bytes(normalized[32:], "big") <= P256_ORDER // 2


def test_signature_accepts_base64url_text(passkey: Passkey) -> None:
    der = passkey.sign_der(b"message")

    assert normalize_signature(encode_b64url(der)) == normalize_signature(der)
    assert normalize_signature(base64.b64encode(der).decode()) == normalize_signature(der)


@pytest.mark.parametrize("length", [0, 32, 63, 65, 69, 73, 128])
def test_other_lengths_are_rejected(length: int) -> None:
    with pytest.raises(InvalidSignatureLength) as exc_info:
        normalize_signature(b"\x30" * length)
    assert exc_info.value.length == length


def test_malformed_der_is_rejected() -> None:
    with pytest.raises(InvalidSignatureEncoding):
        normalize_signature(b"\x31" + b"\x00" * 70)


def test_payload_decoding_formats() -> None:
    assert decode_signature_payload(DEPOSIT_PAYLOAD) == DEPOSIT_PAYLOAD.encode()
    assert decode_signature_payload("0xdeadbeef") == bytes.fromhex("deadbeef")
    assert decode_signature_payload("deadbeef") == bytes.fromhex("deadbeef")
    assert decode_signature_payload(base64.b64encode(b"hello world!").decode()) == b"hello world!"


def test_expected_challenge_uses_first_32_bytes() -> None:
    challenge = expected_challenge(DEPOSIT_PAYLOAD)

    assert challenge == encode_b64url(DEPOSIT_PAYLOAD.encode()[:32])
    assert "=" not in challenge


def test_short_payload_is_zero_padded() -> None:
    assert expected_challenge("0x0102") == encode_b64url(b"\x01\x02" + b"\x00" * 30)


def test_matching_challenge_verifies() -> None:
    challenge = expected_challenge(DEPOSIT_PAYLOAD)

    assert verify_challenge(DEPOSIT_PAYLOAD, _client_data(challenge)) == challenge


def test_standard_base64_challenge_is_normalized() -> None:
    padded = base64.b64encode(DEPOSIT_PAYLOAD.encode()[:32]).decode()

    assert extract_challenge(_client_data(padded)) == expected_challenge(DEPOSIT_PAYLOAD)


def test_altered_payload_byte_causes_mismatch() -> None:
    client_data = _client_data(expected_challenge(DEPOSIT_PAYLOAD))
    altered = DEPOSIT_PAYLOAD.replace('"source":"W"', '"source":"V"')

    with pytest.raises(ChallengeMismatch) as exc_info:
        verify_challenge(altered, client_data)

    assert exc_info.value.expected == expected_challenge(altered)
    assert exc_info.value.actual == expected_challenge(DEPOSIT_PAYLOAD)


def test_unparseable_client_data_is_a_mismatch() -> None:
    with pytest.raises(ChallengeMismatch) as exc_info:
        verify_challenge(DEPOSIT_PAYLOAD, "not-json-at-all")
    assert exc_info.value.actual is None


def test_public_key_extracted_from_spki(passkey: Passkey) -> None:
    assert extract_public_key(passkey.spki) == passkey.point
    assert extract_public_key(passkey.point.hex()) == passkey.point
    assert extract_public_key(base64.b64encode(passkey.spki).decode()) == passkey.point


def test_signing_key_mismatch(passkey: Passkey) -> None:
    other = Passkey()

    verify_signing_key(passkey.spki, passkey.point.hex())
    with pytest.raises(SigningKeyMismatch):
        verify_signing_key(other.point, passkey.point)


@pytest.mark.asyncio
async def test_verifier_accepts_valid_assertion(passkeys, passkey: Passkey) -> None:
    await passkeys.register(WALLET, passkey.point.hex())
    verifier = WebAuthnVerifier(passkeys)

    report = await verifier.verify(WALLET, passkey.authorize())

    assert report.assertion_verified is True
    assert report.passkey_public_key == passkey.point.hex()
    assert report.warnings == []


@pytest.mark.asyncio
async def test_verifier_rejects_signature_from_other_key(passkeys, passkey: Passkey) -> None:
    await passkeys.register(WALLET, passkey.point.hex())
    verifier = WebAuthnVerifier(passkeys)

    with pytest.raises(InvalidAssertion):
        await verifier.verify(WALLET, Passkey().authorize())


@pytest.mark.asyncio
async def test_verifier_rejects_presented_key_mismatch(passkeys, passkey: Passkey) -> None:
    await passkeys.register(WALLET, passkey.point.hex())
    verifier = WebAuthnVerifier(passkeys, strict_challenge=False)

    with pytest.raises(SigningKeyMismatch):
        await verifier.verify(WALLET, Passkey().authorize(present_key=True))


@pytest.mark.asyncio
async def test_lenient_challenge_mismatch_is_a_warning(passkeys, passkey: Passkey) -> None:
    verifier = WebAuthnVerifier(passkeys, strict_challenge=False)
    auth = passkey.authorize(challenge=expected_challenge("0xffff"), present_key=True)

    report = await verifier.verify(WALLET, auth)

    assert report.assertion_verified is True
    assert len(report.warnings) == 1


@pytest.mark.asyncio
async def test_strict_challenge_mismatch_fails(passkeys, passkey: Passkey) -> None:
    verifier = WebAuthnVerifier(passkeys, strict_challenge=True)
    auth = passkey.authorize(challenge=expected_challenge("0xffff"))

    with pytest.raises(ChallengeMismatch):
        await verifier.verify(WALLET, auth)
