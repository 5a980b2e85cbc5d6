"""Execution rule API routes.

Rules are authored by rule management; these routes let it sync them into
the execution core and let clients inspect quorum status.
"""

from fastapi import APIRouter, Query

from geotrigger.api.deps import OrchestratorDep, RuleStoreDep
from geotrigger.core.errors import RuleNotFound
from geotrigger.models.rule import ExecutionRule
from geotrigger.schemas.common import APIResponse
from geotrigger.schemas.execution import QuorumResponse
from geotrigger.schemas.rule import RuleUpsert

router = APIRouter(prefix="/rules", tags=["rules"])


@router.get("", response_model=APIResponse[list[ExecutionRule]])
async def list_rules(
    store: RuleStoreDep,
    user_id: str = Query(..., description="Owning user"),
) -> APIResponse[list[ExecutionRule]]:
    """List a user's rules."""
    return APIResponse(data=await store.list_for_user(user_id))


@router.get("/{rule_id}", response_model=APIResponse[ExecutionRule])
async def get_rule(rule_id: int, store: RuleStoreDep) -> APIResponse[ExecutionRule]:
    """Get a single rule by ID."""
    rule = await store.get(rule_id)
    if not rule:
        raise RuleNotFound(rule_id)
    return APIResponse(data=rule)


@router.put("/{rule_id}", response_model=APIResponse[ExecutionRule])
async def upsert_rule(
    rule_id: int,
    data: RuleUpsert,
    store: RuleStoreDep,
) -> APIResponse[ExecutionRule]:
    """Create or replace a rule."""
    saved = await store.save(data.to_rule(rule_id))
    return APIResponse(data=saved)


@router.delete("/{rule_id}", response_model=APIResponse[None])
async def delete_rule(rule_id: int, store: RuleStoreDep) -> APIResponse[None]:
    """Delete a rule."""
    if not await store.delete(rule_id):
        raise RuleNotFound(rule_id)
    return APIResponse(message="Rule deleted")


@router.get("/{rule_id}/quorum", response_model=APIResponse[QuorumResponse])
async def get_quorum(rule_id: int, orchestrator: OrchestratorDep) -> APIResponse[QuorumResponse]:
    """Current quorum status for a rule."""
    status = await orchestrator.check_quorum(rule_id)
    return APIResponse(data=QuorumResponse.from_status(rule_id, status))
