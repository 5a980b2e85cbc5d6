"""Tests for API error response formats."""

from typing import Any

from fastapi.testclient import TestClient

import geotrigger.api.app as app_module
from geotrigger.api.app import create_app
from geotrigger.api.deps import get_rule_store
from geotrigger.core.errors import AttemptNotFound, ConflictAlreadyTerminal, QuorumNotMet


class FakeRuleStore:
    """Minimal rule store for error response tests."""

    async def get(self, rule_id: int) -> Any | None:
        return None


class FakeOrchestrator:
    """Orchestrator double raising a preset error from every action."""

    def __init__(self, error: Exception):
        self.error = error

    async def confirm(self, *args, **kwargs):
        raise self.error

    async def reject(self, *args, **kwargs):
        raise self.error

    async def close(self) -> None:
        return None


def _make_client(monkeypatch, error: Exception | None = None) -> TestClient:
    async def _noop() -> None:
        return None

    monkeypatch.setattr(app_module, "init_redis_pool", _noop)
    monkeypatch.setattr(app_module, "close_redis_pool", _noop)

    app = create_app()
    app.dependency_overrides[get_rule_store] = lambda: FakeRuleStore()
    app.state.orchestrator = FakeOrchestrator(error or RuntimeError("unused"))
    return TestClient(app)


def test_not_found_response_format(monkeypatch) -> None:
    client = _make_client(monkeypatch)

    response = client.get("/api/v1/rules/99")

    assert response.status_code == 404
    payload = response.json()
    assert payload["code"] == 404
    assert payload["message"] == "Rule 99 not found"
    assert payload["data"] == {"error": "rule_not_found", "rule_id": 99}


def test_validation_error_response_format(monkeypatch) -> None:
    client = _make_client(monkeypatch)

    response = client.put("/api/v1/rules/1", json={"user_id": ""})

    assert response.status_code == 422
    payload = response.json()
    assert payload["code"] == 422
    assert payload["message"] == "Validation error"
    assert isinstance(payload["data"], list)
    assert payload["data"]


def test_missing_attempt_is_404(monkeypatch) -> None:
    client = _make_client(monkeypatch, AttemptNotFound(1, "GWALLET", "evt_1"))

    response = client.post("/api/v1/executions/1/confirm", json={"public_key": "GWALLET"})

    assert response.status_code == 404
    assert response.json()["data"]["error"] == "not_found"


def test_admission_denial_carries_detail(monkeypatch) -> None:
    client = _make_client(monkeypatch, QuorumNotMet(["GA"], ["GB", "GC"], 2))

    response = client.post("/api/v1/executions/1/confirm", json={"public_key": "GA"})

    assert response.status_code == 403
    payload = response.json()
    assert payload["data"]["error"] == "quorum_not_met"
    assert payload["data"]["missing"] == ["GB", "GC"]


def test_terminal_conflict_is_a_no_op(monkeypatch) -> None:
    client = _make_client(monkeypatch, ConflictAlreadyTerminal(1, "evt_1", "completed"))

    response = client.post("/api/v1/executions/1/reject", json={"public_key": "GWALLET"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["code"] == 0
    assert payload["data"]["changed"] is False
    assert payload["data"]["state"] == "completed"


def test_health(monkeypatch) -> None:
    client = _make_client(monkeypatch)

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
