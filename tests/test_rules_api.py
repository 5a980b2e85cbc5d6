"""Tests for rule sync and quorum routes."""

import pytest
from pydantic import ValidationError

from conftest import WALLET, FakePresence, make_rule
from geotrigger.api.routes import rules as rules_api
from geotrigger.core.errors import RuleNotFound
from geotrigger.engine.quorum import QuorumValidator
from geotrigger.models.rule import ExecutionRule, QuorumConfig
from geotrigger.schemas.rule import RuleUpsert


class FakeRuleStore:
    """In-memory rule store for API tests."""

    def __init__(self, rules: list[ExecutionRule] | None = None):
        self._rules = {rule.rule_id: rule for rule in rules or []}

    async def get(self, rule_id: int) -> ExecutionRule | None:
        return self._rules.get(rule_id)

    async def save(self, rule: ExecutionRule) -> ExecutionRule:
        self._rules[rule.rule_id] = rule
        return rule

    async def delete(self, rule_id: int) -> bool:
        return self._rules.pop(rule_id, None) is not None

    async def list_for_user(self, user_id: str) -> list[ExecutionRule]:
        return [rule for rule in self._rules.values() if rule.user_id == user_id]


class FakeOrchestrator:
    """Quorum lookups against a fixed presence snapshot."""

    def __init__(self, store: FakeRuleStore, presence: FakePresence):
        self._store = store
        self._quorum = QuorumValidator(presence)

    async def check_quorum(self, rule_id: int):
        rule = await self._store.get(rule_id)
        if rule is None:
            raise RuleNotFound(rule_id)
        return await self._quorum.check_quorum(rule)


def _upsert(**overrides) -> RuleUpsert:
    fields = {
        "user_id": "user_1",
        "contract_id": 7,
        "contract_address": "CCONTRACT",
        "function_name": "deposit",
    }
    fields.update(overrides)
    return RuleUpsert(**fields)


def test_upsert_requires_contract_target() -> None:
    with pytest.raises(ValidationError):
        RuleUpsert(user_id="user_1", contract_id=7, contract_address="", function_name="deposit")


def test_upsert_rejects_unsatisfiable_quorum() -> None:
    with pytest.raises(ValidationError):
        _upsert(quorum={"required_wallets": [WALLET], "minimum_count": 3})


@pytest.mark.asyncio
async def test_upsert_then_get_rule() -> None:
    store = FakeRuleStore()

    saved = await rules_api.upsert_rule(
        rule_id=3,
        data=_upsert(rule_name="Coffee shop", auto_execute=True),
        store=store,
    )
    fetched = await rules_api.get_rule(rule_id=3, store=store)

    assert saved.data.rule_id == 3
    assert fetched.data.rule_name == "Coffee shop"
    assert fetched.data.auto_execute is True
    assert fetched.data.requires_webauthn is True


@pytest.mark.asyncio
async def test_get_missing_rule_raises() -> None:
    with pytest.raises(RuleNotFound):
        await rules_api.get_rule(rule_id=42, store=FakeRuleStore())


@pytest.mark.asyncio
async def test_delete_rule() -> None:
    store = FakeRuleStore([make_rule(rule_id=1)])

    response = await rules_api.delete_rule(rule_id=1, store=store)

    assert response.message == "Rule deleted"
    with pytest.raises(RuleNotFound):
        await rules_api.delete_rule(rule_id=1, store=store)


@pytest.mark.asyncio
async def test_list_rules_for_user() -> None:
    store = FakeRuleStore([
        make_rule(rule_id=1),
        make_rule(rule_id=2, user_id="user_2"),
        make_rule(rule_id=3),
    ])

    response = await rules_api.list_rules(store=store, user_id="user_1")

    assert [rule.rule_id for rule in response.data] == [1, 3]


@pytest.mark.asyncio
async def test_quorum_route_summarizes_status() -> None:
    store = FakeRuleStore([
        make_rule(quorum=QuorumConfig(required_wallets={WALLET, "GSECOND"}, minimum_count=2)),
    ])
    orchestrator = FakeOrchestrator(store, FakePresence({WALLET}))

    response = await rules_api.get_quorum(rule_id=1, orchestrator=orchestrator)

    assert response.data.rule_id == 1
    assert response.data.met is False
    assert response.data.missing == ["GSECOND"]
    assert response.data.summary.startswith("Quorum not met")
