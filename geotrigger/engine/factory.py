"""Wiring of stores and engine components over one Redis client."""

from redis.asyncio import Redis

from geotrigger.chain.client import BlockchainClient, JsonRpcBlockchainClient
from geotrigger.core.config import Settings, get_settings
from geotrigger.engine.orchestrator import ExecutionOrchestrator
from geotrigger.engine.quorum import PresenceProvider, QuorumValidator, StorePresenceProvider
from geotrigger.engine.rate_limiter import RateLimiter
from geotrigger.engine.reconciliation import ReconciliationSweeper
from geotrigger.engine.webauthn import WebAuthnVerifier
from geotrigger.storage.auxiliary import (
    ExecutionQueue,
    HistoryStore,
    PasskeyRegistry,
    PresenceStore,
)
from geotrigger.storage.execution_store import ExecutionStore
from geotrigger.storage.rule_store import RuleStore


def build_orchestrator(
    redis: Redis,
    chain: BlockchainClient | None = None,
    presence: PresenceProvider | None = None,
    settings: Settings | None = None,
) -> ExecutionOrchestrator:
    """Create an orchestrator backed by ``redis``.

    Args:
        redis: Redis client shared by all stores
        chain: Blockchain client; the JSON-RPC client when omitted
        presence: Presence source for quorum; Redis presence reports when omitted
        settings: Settings override
    """
    settings = settings or get_settings()
    history = HistoryStore(redis, settings.transition_max_retries)
    presence_store = PresenceStore(redis, settings.presence_ttl_seconds)
    return ExecutionOrchestrator(
        store=ExecutionStore(redis, settings.transition_max_retries),
        rules=RuleStore(redis),
        history=history,
        rate_limiter=RateLimiter(history),
        quorum=QuorumValidator(presence or StorePresenceProvider(presence_store)),
        verifier=WebAuthnVerifier(PasskeyRegistry(redis), settings.strict_challenge),
        chain=chain or JsonRpcBlockchainClient(settings.chain_rpc_url, settings.chain_rpc_timeout),
        presence=presence_store,
        queue=ExecutionQueue(redis),
        settings=settings,
    )


def build_sweeper(redis: Redis, settings: Settings | None = None) -> ReconciliationSweeper:
    settings = settings or get_settings()
    return ReconciliationSweeper(
        store=ExecutionStore(redis, settings.transition_max_retries),
        rules=RuleStore(redis),
        history=HistoryStore(redis, settings.transition_max_retries),
        presence=PresenceStore(redis, settings.presence_ttl_seconds),
        queue=ExecutionQueue(redis),
        settings=settings,
    )
