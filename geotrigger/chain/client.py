"""Blockchain submission boundary.

The orchestrator only depends on ``BlockchainClient``; the JSON-RPC client
below is the production implementation talking to a contract gateway.
"""

import asyncio
import itertools
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, Field

from geotrigger.core.config import get_settings
from geotrigger.core.errors import SubmissionFailed
from geotrigger.core.logging import get_logger

logger = get_logger(__name__)


class ContractCall(BaseModel):
    """A single contract function invocation."""

    contract_address: str
    function_name: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    source_public_key: str = Field(..., description="Wallet the call is made for")
    network: str = "testnet"
    authorization: dict[str, Any] | None = Field(
        default=None,
        description="WebAuthn material forwarded for on-chain verification",
    )


class SubmissionResult(BaseModel):
    """Confirmed transaction and the contract's return value."""

    tx_hash: str
    ledger: int | None = None
    return_value: Any = None
    return_decoded: bool = True
    logs: list[str] = Field(default_factory=list)


class BlockchainClient(Protocol):
    async def submit(self, call: ContractCall) -> SubmissionResult:
        """Submit a call and wait for its confirmation.

        Raises:
            SubmissionFailed: on any transport or chain-level failure
        """
        ...

    async def close(self) -> None:
        ...


def is_success(result: SubmissionResult, treat_undecodable_as_success: bool = True) -> bool:
    """Interpret a contract return value.

    Only an explicit boolean ``false`` is a rejection. A return value that
    could not be decoded follows ``treat_undecodable_as_success``.
    """
    if not result.return_decoded:
        return treat_undecodable_as_success
    value = result.return_value
    if isinstance(value, dict) and value.get("type") == "bool":
        value = value.get("value")
    if isinstance(value, bool):
        return value
    return True


class JsonRpcBlockchainClient:
    """Contract gateway client over JSON-RPC 2.0.

    ``invoke_contract`` returns a transaction hash; ``get_transaction`` is
    then polled until the transaction leaves the pending state. The caller
    bounds the whole submission with its own timeout.
    """

    POLL_INTERVAL = 1.0

    def __init__(self, rpc_url: str | None = None, timeout: float | None = None):
        settings = get_settings()
        self._rpc_url = rpc_url or settings.chain_rpc_url
        self._client = httpx.AsyncClient(timeout=timeout or settings.chain_rpc_timeout)
        self._ids = itertools.count(1)

    async def _call(self, method: str, params: dict[str, Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = await self._client.post(self._rpc_url, json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            raise SubmissionFailed(f"RPC {method} failed: {e}") from e
        except ValueError as e:
            raise SubmissionFailed(f"RPC {method} returned invalid JSON") from e

        if body.get("error"):
            error = body["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise SubmissionFailed(f"RPC {method} error: {message}")
        return body.get("result")

    async def submit(self, call: ContractCall) -> SubmissionResult:
        result = await self._call("invoke_contract", call.model_dump(mode="json"))
        tx_hash = (result or {}).get("hash")
        if not tx_hash:
            raise SubmissionFailed("Gateway returned no transaction hash")

        logger.info(
            "Contract call submitted",
            tx_hash=tx_hash,
            contract_address=call.contract_address,
            function_name=call.function_name,
        )

        while True:
            tx = await self._call("get_transaction", {"hash": tx_hash}) or {}
            status = str(tx.get("status", "PENDING")).upper()
            if status == "SUCCESS":
                return SubmissionResult(
                    tx_hash=tx_hash,
                    ledger=tx.get("ledger"),
                    return_value=tx.get("return_value"),
                    return_decoded=tx.get("return_decoded", True),
                    logs=tx.get("logs") or [],
                )
            if status == "FAILED":
                raise SubmissionFailed(f"Transaction {tx_hash} failed: {tx.get('error', 'unknown')}")
            await asyncio.sleep(self.POLL_INTERVAL)

    async def close(self) -> None:
        """Close HTTP client."""
        await self._client.aclose()
