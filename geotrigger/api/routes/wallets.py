"""Wallet passkey routes."""

from fastapi import APIRouter

from geotrigger.api.deps import PasskeyRegistryDep
from geotrigger.engine.webauthn import extract_public_key
from geotrigger.schemas.common import APIResponse
from geotrigger.schemas.execution import PasskeyRegistration

router = APIRouter(prefix="/wallets", tags=["wallets"])


@router.put("/{public_key}/passkey", response_model=APIResponse[dict])
async def register_passkey(
    public_key: str,
    data: PasskeyRegistration,
    registry: PasskeyRegistryDep,
) -> APIResponse[dict]:
    """Register the passkey allowed to authorize executions for a wallet."""
    point = extract_public_key(data.passkey_public_key)
    await registry.register(public_key, point.hex())
    return APIResponse(data={"public_key": public_key, "passkey_public_key": point.hex()})
