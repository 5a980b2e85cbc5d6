"""API dependency injection."""

from typing import Annotated

from fastapi import Depends, Query, Request

from geotrigger.engine.orchestrator import ExecutionOrchestrator
from geotrigger.engine.reconciliation import ReconciliationSweeper
from geotrigger.storage.auxiliary import PasskeyRegistry
from geotrigger.storage.execution_store import AttemptFilter
from geotrigger.storage.redis_client import get_redis
from geotrigger.storage.rule_store import RuleStore


def get_orchestrator(request: Request) -> ExecutionOrchestrator:
    """Orchestrator created at application startup."""
    return request.app.state.orchestrator


def get_sweeper(request: Request) -> ReconciliationSweeper:
    """Sweeper created at application startup."""
    return request.app.state.sweeper


def get_rule_store() -> RuleStore:
    """Get rule store instance."""
    return RuleStore(get_redis())


def get_passkey_registry() -> PasskeyRegistry:
    return PasskeyRegistry(get_redis())


def get_attempt_filter(
    user_id: str | None = Query(default=None, description="Caller's user id"),
    public_key: str | None = Query(default=None, description="Caller's wallet public key"),
    rule_id: int | None = Query(default=None, description="Restrict to one rule"),
) -> AttemptFilter:
    """Caller identity from query parameters."""
    return AttemptFilter(user_id=user_id, public_key=public_key, rule_id=rule_id)


# Type aliases for dependency injection
OrchestratorDep = Annotated[ExecutionOrchestrator, Depends(get_orchestrator)]
SweeperDep = Annotated[ReconciliationSweeper, Depends(get_sweeper)]
RuleStoreDep = Annotated[RuleStore, Depends(get_rule_store)]
PasskeyRegistryDep = Annotated[PasskeyRegistry, Depends(get_passkey_registry)]
AttemptFilterDep = Annotated[AttemptFilter, Depends(get_attempt_filter)]
