"""Pytest configuration and fixtures."""

import asyncio
import hashlib
import json
from datetime import datetime
from typing import Any, AsyncIterator

import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from fakeredis import FakeAsyncRedis

from geotrigger.chain.client import ContractCall, SubmissionResult
from geotrigger.core.config import Settings
from geotrigger.engine.factory import build_orchestrator, build_sweeper
from geotrigger.engine.orchestrator import ExecutionOrchestrator
from geotrigger.engine.reconciliation import ReconciliationSweeper
from geotrigger.engine.webauthn import WebAuthnAuthorization, encode_b64url, expected_challenge
from geotrigger.models.event import MatchEvent
from geotrigger.models.rule import ExecutionRule
from geotrigger.storage.auxiliary import HistoryStore, PasskeyRegistry
from geotrigger.storage.execution_store import ExecutionStore
from geotrigger.storage.rule_store import RuleStore

WALLET = "GBWALLETAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA"
OTHER_WALLET = "GBOTHERBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBB"
DEPOSIT_PAYLOAD = '{"source":"W","asset":"X","amount":"100","action":"deposit","timestamp":123}'


class FakeChain:
    """In-memory blockchain client recording submitted calls."""

    def __init__(self):
        self.calls: list[ContractCall] = []
        self.return_value: Any = True
        self.return_decoded = True
        self.error: Exception | None = None
        self.delay = 0.0

    async def submit(self, call: ContractCall) -> SubmissionResult:
        self.calls.append(call)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return SubmissionResult(
            tx_hash=f"tx_{len(self.calls)}",
            return_value=self.return_value,
            return_decoded=self.return_decoded,
        )

    async def close(self) -> None:
        pass


class FakePresence:
    """Presence snapshot with a fixed set of in-range wallets."""

    def __init__(self, present: set[str] | None = None):
        self.present = present or set()

    async def is_wallet_in_range(self, public_key: str, rule: ExecutionRule) -> bool:
        return public_key in self.present


class Passkey:
    """A P-256 passkey producing WebAuthn assertions."""

    def __init__(self):
        self.private_key = ec.generate_private_key(ec.SECP256R1())

    @property
    def point(self) -> bytes:
        return self.private_key.public_key().public_bytes(
            serialization.Encoding.X962,
            serialization.PublicFormat.UncompressedPoint,
        )

    @property
    def spki(self) -> bytes:
        return self.private_key.public_key().public_bytes(
            serialization.Encoding.DER,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )

    def sign_der(self, message: bytes) -> bytes:
        # DER length varies with leading zero bytes of r and s
        while True:
            der = self.private_key.sign(message, ec.ECDSA(hashes.SHA256()))
            if 70 <= len(der) <= 72:
                return der

    def authorize(
        self,
        payload: str = DEPOSIT_PAYLOAD,
        challenge: str | None = None,
        authenticator_data: bytes = b"\x49" * 32 + b"\x05\x00\x00\x00\x01",
        present_key: bool = False,
    ) -> WebAuthnAuthorization:
        client_data = json.dumps({
            "type": "webauthn.get",
            "challenge": challenge or expected_challenge(payload),
            "origin": "https://geotrigger.example",
        }).encode()
        signature = self.sign_der(authenticator_data + hashlib.sha256(client_data).digest())
        return WebAuthnAuthorization(
            signature=encode_b64url(signature),
            authenticator_data=encode_b64url(authenticator_data),
            client_data=encode_b64url(client_data),
            signature_payload=payload,
            passkey_public_key=self.point.hex() if present_key else None,
        )


def make_rule(rule_id: int = 1, **overrides: Any) -> ExecutionRule:
    fields: dict[str, Any] = {
        "rule_id": rule_id,
        "user_id": "user_1",
        "rule_name": f"Rule {rule_id}",
        "contract_id": 7,
        "contract_name": "Vault",
        "contract_address": "CCONTRACTADDRESS",
        "function_name": "deposit",
        "function_parameters": {"amount": "100"},
    }
    fields.update(overrides)
    return ExecutionRule(**fields)


def make_match(
    rule_id: int = 1,
    public_key: str = WALLET,
    event_id: str = "evt_1",
    matched_at: datetime | None = None,
    **overrides: Any,
) -> MatchEvent:
    return MatchEvent(
        rule_id=rule_id,
        public_key=public_key,
        event_id=event_id,
        matched_at=matched_at or datetime.utcnow(),
        user_id=overrides.pop("user_id", "user_1"),
        latitude=overrides.pop("latitude", 40.7128),
        longitude=overrides.pop("longitude", -74.006),
        **overrides,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        submission_timeout=1.0,
        chain_rpc_timeout=1.0,
        presence_ttl_seconds=300,
        transition_max_retries=10,
    )


@pytest_asyncio.fixture
async def redis() -> AsyncIterator[FakeAsyncRedis]:
    """In-memory Redis for the stores."""
    client = FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def presence() -> FakePresence:
    return FakePresence()


@pytest.fixture
def passkey() -> Passkey:
    return Passkey()


@pytest.fixture
def store(redis: FakeAsyncRedis, settings: Settings) -> ExecutionStore:
    return ExecutionStore(redis, settings.transition_max_retries)


@pytest.fixture
def rule_store(redis: FakeAsyncRedis) -> RuleStore:
    return RuleStore(redis)


@pytest.fixture
def history_store(redis: FakeAsyncRedis) -> HistoryStore:
    return HistoryStore(redis)


@pytest.fixture
def passkeys(redis: FakeAsyncRedis) -> PasskeyRegistry:
    return PasskeyRegistry(redis)


@pytest.fixture
def orchestrator(
    redis: FakeAsyncRedis,
    chain: FakeChain,
    presence: FakePresence,
    settings: Settings,
) -> ExecutionOrchestrator:
    return build_orchestrator(redis, chain=chain, presence=presence, settings=settings)


@pytest.fixture
def sweeper(redis: FakeAsyncRedis, settings: Settings) -> ReconciliationSweeper:
    return build_sweeper(redis, settings=settings)
