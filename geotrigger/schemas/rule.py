"""Rule API schemas."""

from typing import Any

from pydantic import BaseModel, Field

from geotrigger.models.rule import (
    ExecutionRule,
    ParameterMapping,
    QuorumConfig,
    RateLimitConfig,
    RuleType,
    TriggerOn,
)


class RuleUpsert(BaseModel):
    """Rule definition synced from rule management."""

    user_id: str = Field(..., min_length=1, description="Owning user")
    rule_name: str = Field(default="", max_length=200)
    rule_type: RuleType = Field(default=RuleType.GEOFENCE)
    geofence_id: str | None = None
    contract_id: int = Field(..., ge=0)
    contract_name: str = Field(default="")
    contract_address: str = Field(..., min_length=1)
    function_name: str = Field(..., min_length=1)
    function_parameters: dict[str, Any] = Field(default_factory=dict)
    parameter_mappings: list[ParameterMapping] = Field(default_factory=list)
    trigger_on: TriggerOn = Field(default=TriggerOn.ENTER)
    auto_execute: bool = False
    requires_confirmation: bool = False
    requires_webauthn: bool = True
    target_wallet: str | None = None
    quorum: QuorumConfig | None = None
    rate_limit: RateLimitConfig | None = None
    min_location_duration_seconds: int | None = Field(default=None, ge=0)
    active: bool = True

    def to_rule(self, rule_id: int) -> ExecutionRule:
        return ExecutionRule(rule_id=rule_id, **self.model_dump())
