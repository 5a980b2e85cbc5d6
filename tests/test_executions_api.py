"""Tests for execution, wallet and reconciliation routes."""

import base64

import pytest

from conftest import WALLET, Passkey, make_match, make_rule
from geotrigger.api.routes import executions as executions_api
from geotrigger.api.routes import reconciliation as reconciliation_api
from geotrigger.api.routes import wallets as wallets_api
from geotrigger.models.execution import AttemptState, RejectionReason
from geotrigger.schemas.execution import (
    ConfirmRequest,
    PasskeyRegistration,
    RecoverRequest,
    RejectRequest,
)
from geotrigger.storage.execution_store import AttemptFilter


@pytest.mark.asyncio
async def test_register_passkey_then_confirm(orchestrator, rule_store, passkeys, passkey: Passkey) -> None:
    await rule_store.save(make_rule())
    await orchestrator.record_match(make_match())

    registered = await wallets_api.register_passkey(
        public_key=WALLET,
        data=PasskeyRegistration(passkey_public_key=base64.b64encode(passkey.spki).decode()),
        registry=passkeys,
    )
    assert registered.data["passkey_public_key"] == passkey.point.hex()

    response = await executions_api.confirm_execution(
        rule_id=1,
        data=ConfirmRequest(public_key=WALLET, event_id="evt_1", webauthn=passkey.authorize()),
        orchestrator=orchestrator,
    )

    assert response.message == "success"
    assert response.data.state == AttemptState.COMPLETED
    assert response.data.tx_hash == "tx_1"

    again = await executions_api.confirm_execution(
        rule_id=1,
        data=ConfirmRequest(public_key=WALLET, event_id="evt_1", webauthn=passkey.authorize()),
        orchestrator=orchestrator,
    )
    assert again.message == "Execution already completed"
    assert again.data.changed is False


@pytest.mark.asyncio
async def test_pending_and_rejected_listings(orchestrator, rule_store) -> None:
    await rule_store.save(make_rule())
    await orchestrator.record_match(make_match())
    identity = AttemptFilter(user_id="user_1")

    pending = await executions_api.list_pending(orchestrator=orchestrator, attempt_filter=identity, limit=None)
    assert [item.event_id for item in pending.data] == ["evt_1"]

    await executions_api.reject_execution(
        rule_id=1,
        data=RejectRequest(public_key=WALLET, reason=RejectionReason.INSUFFICIENT_BALANCE),
        orchestrator=orchestrator,
    )

    pending = await executions_api.list_pending(orchestrator=orchestrator, attempt_filter=identity, limit=None)
    rejected = await executions_api.list_rejected(orchestrator=orchestrator, attempt_filter=identity, limit=50)
    assert pending.data == []
    assert [item.reason for item in rejected.data] == ["insufficient_balance"]


@pytest.mark.asyncio
async def test_recover_route(orchestrator, rule_store) -> None:
    await rule_store.save(make_rule())
    await orchestrator.record_match(make_match())
    request = RecoverRequest(public_key=WALLET, event_id="evt_1", tx_hash="tx_out_of_band")

    first = await executions_api.recover_execution(rule_id=1, data=request, orchestrator=orchestrator)
    second = await executions_api.recover_execution(rule_id=1, data=request, orchestrator=orchestrator)
    completed = await executions_api.list_completed(
        orchestrator=orchestrator,
        attempt_filter=AttemptFilter(public_key=WALLET),
        limit=50,
    )

    assert first.data.changed is True
    assert second.message == "Execution already completed"
    assert completed.data[0].tx_hash == "tx_out_of_band"


@pytest.mark.asyncio
async def test_reconciliation_route(sweeper) -> None:
    response = await reconciliation_api.run_reconciliation(sweeper=sweeper)

    assert response.data.events_scanned == 0
    assert response.data.errors == 0
