"""Reconciliation API routes."""

from fastapi import APIRouter

from geotrigger.api.deps import SweeperDep
from geotrigger.engine.reconciliation import SweepReport
from geotrigger.schemas.common import APIResponse

router = APIRouter(prefix="/reconciliation", tags=["reconciliation"])


@router.post("/run", response_model=APIResponse[SweepReport])
async def run_reconciliation(sweeper: SweeperDep) -> APIResponse[SweepReport]:
    """Run one reconciliation pass now."""
    report = await sweeper.run()
    return APIResponse(data=report)
