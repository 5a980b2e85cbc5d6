"""Execution lifecycle API routes."""

from fastapi import APIRouter, Query

from geotrigger.api.deps import AttemptFilterDep, OrchestratorDep
from geotrigger.engine.orchestrator import ActionResult
from geotrigger.models.execution import (
    AttemptState,
    CompletedAttempt,
    PendingAttempt,
    RejectedAttempt,
)
from geotrigger.schemas.common import APIResponse
from geotrigger.schemas.execution import (
    ActionResponse,
    ConfirmRequest,
    RecoverRequest,
    RejectRequest,
)

router = APIRouter(prefix="/executions", tags=["executions"])


@router.get("/pending", response_model=APIResponse[list[PendingAttempt]])
async def list_pending(
    orchestrator: OrchestratorDep,
    attempt_filter: AttemptFilterDep,
    limit: int | None = Query(default=None, ge=1, le=500, description="Maximum items"),
) -> APIResponse[list[PendingAttempt]]:
    """List actionable attempts for the caller, one per (rule, wallet).

    Items over their rate limit are relabeled ``rate_limit_exceeded`` and left
    out; items whose quorum is not met carry the quorum detail.
    """
    items = await orchestrator.list_pending(attempt_filter, limit)
    return APIResponse(data=items)


@router.get("/completed", response_model=APIResponse[list[CompletedAttempt]])
async def list_completed(
    orchestrator: OrchestratorDep,
    attempt_filter: AttemptFilterDep,
    limit: int = Query(default=50, ge=1, le=500, description="Maximum items"),
) -> APIResponse[list[CompletedAttempt]]:
    """List completed executions, newest first."""
    items = await orchestrator.list_completed(attempt_filter, limit)
    return APIResponse(data=items)


@router.get("/rejected", response_model=APIResponse[list[RejectedAttempt]])
async def list_rejected(
    orchestrator: OrchestratorDep,
    attempt_filter: AttemptFilterDep,
    limit: int = Query(default=50, ge=1, le=500, description="Maximum items"),
) -> APIResponse[list[RejectedAttempt]]:
    """List rejected executions, newest first."""
    items = await orchestrator.list_rejected(attempt_filter, limit)
    return APIResponse(data=items)


@router.post("/{rule_id}/confirm", response_model=APIResponse[ActionResponse])
async def confirm_execution(
    rule_id: int,
    data: ConfirmRequest,
    orchestrator: OrchestratorDep,
) -> APIResponse[ActionResponse]:
    """Verify the caller's authorization and execute the attempt.

    Confirming an attempt that another device already completed returns
    the existing transaction hash.
    """
    result = await orchestrator.confirm(
        rule_id,
        data.public_key,
        event_id=data.event_id,
        authorization=data.webauthn,
    )
    return APIResponse(message=_action_message(result), data=ActionResponse.from_result(result))


@router.post("/{rule_id}/reject", response_model=APIResponse[ActionResponse])
async def reject_execution(
    rule_id: int,
    data: RejectRequest,
    orchestrator: OrchestratorDep,
) -> APIResponse[ActionResponse]:
    """Reject a pending attempt."""
    result = await orchestrator.reject(
        rule_id,
        data.public_key,
        reason=data.reason,
        event_id=data.event_id,
        note=data.note,
    )
    return APIResponse(data=ActionResponse.from_result(result))


@router.post("/{rule_id}/recover", response_model=APIResponse[ActionResponse])
async def recover_execution(
    rule_id: int,
    data: RecoverRequest,
    orchestrator: OrchestratorDep,
) -> APIResponse[ActionResponse]:
    """Mark an attempt completed with an out-of-band transaction."""
    result = await orchestrator.recover(rule_id, data.public_key, data.event_id, data.tx_hash)
    return APIResponse(message=_action_message(result), data=ActionResponse.from_result(result))


def _action_message(result: ActionResult) -> str:
    if result.changed:
        return "success"
    if result.state == AttemptState.COMPLETED:
        return "Execution already completed"
    return f"Execution not applied, attempt is {result.state.value}"
