"""Location event domain models."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from geotrigger.models.execution import AttemptState, ExecutionAttempt


class EventStatus(str, Enum):
    """Processing status of a location ping."""

    RECEIVED = "received"
    MATCHED = "matched"
    EXECUTED = "executed"


class MatchEvent(BaseModel):
    """Geo-matcher output: a wallet's ping satisfied a rule."""

    rule_id: int = Field(..., description="Matched rule")
    public_key: str = Field(..., description="Wallet that matched")
    event_id: str = Field(..., description="Location event identifier")
    matched_at: datetime = Field(default_factory=datetime.utcnow)
    user_id: str | None = Field(default=None, description="Owning user of the wallet")
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)

    @field_validator("matched_at")
    @classmethod
    def to_naive_utc(cls, value: datetime) -> datetime:
        """Store timestamps as naive UTC like the rest of the log."""
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value


class LocationEvent(BaseModel):
    """One received location ping and its execution attempts."""

    event_id: str = Field(..., description="Event unique identifier")
    public_key: str = Field(..., description="Wallet that sent the ping")
    user_id: str | None = Field(default=None, description="Owning user")
    latitude: float | None = None
    longitude: float | None = None
    received_at: datetime = Field(default_factory=datetime.utcnow)
    status: EventStatus = Field(default=EventStatus.RECEIVED)
    attempts: list[ExecutionAttempt] = Field(default_factory=list)

    @classmethod
    def from_match(cls, match: MatchEvent) -> "LocationEvent":
        return cls(
            event_id=match.event_id,
            public_key=match.public_key,
            user_id=match.user_id,
            latitude=match.latitude,
            longitude=match.longitude,
            received_at=match.matched_at,
            status=EventStatus.MATCHED,
        )

    def find_attempts(self, rule_id: int, public_key: str) -> list[int]:
        """Indexes of attempts for a (rule, wallet) key, oldest first."""
        return [
            i for i, attempt in enumerate(self.attempts)
            if attempt.matches(rule_id, public_key)
        ]

    def has_completed(self) -> bool:
        return any(a.state == AttemptState.COMPLETED for a in self.attempts)

    def has_live_pending(self) -> bool:
        return any(a.is_live() for a in self.attempts)

    def is_collectable(self) -> bool:
        """Deletable once nothing completed and nothing is still live."""
        return not self.has_completed() and not self.has_live_pending()

    def refresh_status(self) -> None:
        """Derive the event status from its attempts."""
        if self.has_completed():
            self.status = EventStatus.EXECUTED
        elif self.attempts:
            self.status = EventStatus.MATCHED
