"""Execution rule domain models."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator


class RuleType(str, Enum):
    """Rule type enumeration."""

    LOCATION = "location"
    PROXIMITY = "proximity"
    GEOFENCE = "geofence"


class TriggerOn(str, Enum):
    """Geofence transition that fires the rule."""

    ENTER = "enter"
    EXIT = "exit"


class QuorumType(str, Enum):
    """How the required wallet set is counted."""

    ANY = "any"
    ALL = "all"


class MappedFrom(str, Enum):
    """Source of a mapped contract call parameter."""

    LATITUDE = "latitude"
    LONGITUDE = "longitude"
    USER_PUBLIC_KEY = "user_public_key"


class ParameterMapping(BaseModel):
    """Explicit mapping of a call parameter to matched location data."""

    name: str = Field(..., description="Contract function parameter name")
    mapped_from: MappedFrom = Field(..., description="Matched data source")


class QuorumConfig(BaseModel):
    """Multi-wallet quorum requirement."""

    required_wallets: set[str] = Field(
        default_factory=set,
        description="Wallet public keys that count toward the quorum",
    )
    minimum_count: int = Field(default=1, ge=0, description="Wallets that must be present")
    quorum_type: QuorumType = Field(default=QuorumType.ANY, description="Counting mode")

    @model_validator(mode="after")
    def validate_minimum(self) -> "QuorumConfig":
        """Ensure the minimum can be satisfied by the required set."""
        if self.required_wallets and self.minimum_count > len(self.required_wallets):
            raise ValueError("minimum_count cannot exceed the number of required wallets")
        return self

    @property
    def is_required(self) -> bool:
        return bool(self.required_wallets)


class RateLimitConfig(BaseModel):
    """Per-wallet execution rate limit."""

    max_executions_per_key: int | None = Field(
        default=None,
        ge=0,
        description="Maximum executions per wallet inside one window",
    )
    window_seconds: int | None = Field(
        default=None,
        ge=0,
        description="Window length in seconds",
    )

    @property
    def is_limited(self) -> bool:
        """Missing or zero settings mean unlimited."""
        return bool(self.max_executions_per_key) and bool(self.window_seconds)


class RuleMetadata(BaseModel):
    """Rule metadata."""

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    version: int = Field(default=1)


class ExecutionRule(BaseModel):
    """User-defined trigger that calls a contract function on a location match."""

    rule_id: int = Field(..., description="Rule unique identifier")
    user_id: str = Field(..., description="Owning user")
    rule_name: str = Field(default="", description="Rule display name")
    rule_type: RuleType = Field(default=RuleType.GEOFENCE, description="Rule type")
    geofence_id: str | None = Field(default=None, description="Trigger geometry reference")
    contract_id: int = Field(..., description="Target contract identifier")
    contract_name: str = Field(default="", description="Target contract name")
    contract_address: str = Field(..., description="Target contract address")
    function_name: str = Field(..., description="Target contract function")
    function_parameters: dict[str, Any] = Field(
        default_factory=dict,
        description="Parameter template for the call",
    )
    parameter_mappings: list[ParameterMapping] = Field(
        default_factory=list,
        description="Parameters populated from matched location data",
    )
    trigger_on: TriggerOn = Field(default=TriggerOn.ENTER)
    auto_execute: bool = Field(default=False, description="Execute without user interaction")
    requires_confirmation: bool = Field(default=False, description="Owner must confirm")
    requires_webauthn: bool = Field(default=True, description="Passkey authorization needed")
    target_wallet: str | None = Field(
        default=None,
        description="Only this wallet may trigger the rule",
    )
    quorum: QuorumConfig | None = Field(default=None, description="Quorum requirement")
    rate_limit: RateLimitConfig | None = Field(default=None, description="Rate limit settings")
    min_location_duration_seconds: int | None = Field(
        default=None,
        ge=0,
        description="Seconds the wallet must stay in range before the rule fires",
    )
    active: bool = Field(default=True, description="Whether rule is active")
    metadata: RuleMetadata = Field(default_factory=RuleMetadata)

    def requires_quorum(self) -> bool:
        return self.quorum is not None and self.quorum.is_required

    def is_rate_limited(self) -> bool:
        return self.rate_limit is not None and self.rate_limit.is_limited

    def requires_dwell(self) -> bool:
        """Missing or zero duration means no dwell requirement."""
        return bool(self.min_location_duration_seconds)

    def matches_target(self, public_key: str) -> bool:
        """Check the optional target wallet restriction."""
        return not self.target_wallet or self.target_wallet == public_key
