"""Multi-wallet quorum validation."""

from datetime import datetime
from typing import Protocol

from pydantic import BaseModel, Field

from geotrigger.core.errors import QuorumNotMet
from geotrigger.models.rule import ExecutionRule, QuorumType
from geotrigger.storage.auxiliary import PresenceStore


class PresenceProvider(Protocol):
    """Proximity snapshot: is a wallet currently in range of a rule?"""

    async def is_wallet_in_range(self, public_key: str, rule: ExecutionRule) -> bool:
        ...


class StorePresenceProvider:
    """Presence backed by geo-matcher in-range reports kept in Redis."""

    def __init__(self, store: PresenceStore):
        self._store = store

    async def is_wallet_in_range(self, public_key: str, rule: ExecutionRule) -> bool:
        present = await self._store.present_wallets(rule.rule_id, datetime.utcnow())
        return public_key in present


class QuorumStatus(BaseModel):
    """Quorum evaluation result."""

    met: bool
    present: list[str] = Field(default_factory=list)
    missing: list[str] = Field(default_factory=list)
    minimum_count: int = 0
    quorum_type: QuorumType = QuorumType.ANY
    required: bool = False

    @property
    def message(self) -> str:
        if not self.required:
            return "No quorum requirement for this rule"
        if self.met:
            return (
                f"Quorum met: {len(self.present)} of {self.minimum_count} "
                "required wallets are in range"
            )
        return (
            f"Quorum not met: {len(self.present)} of {self.minimum_count} required wallets "
            f"are in range. Missing: {', '.join(self.missing)}"
        )


class QuorumValidator:
    """Checks N-of-M wallet presence for rules that declare a quorum."""

    def __init__(self, presence: PresenceProvider):
        self._presence = presence

    async def check_quorum(self, rule: ExecutionRule) -> QuorumStatus:
        """Evaluate the rule's quorum against the current presence snapshot.

        Args:
            rule: Rule with optional quorum configuration

        Returns:
            QuorumStatus listing present and missing required wallets
        """
        if not rule.requires_quorum():
            return QuorumStatus(met=True)

        quorum = rule.quorum
        present: list[str] = []
        missing: list[str] = []
        for wallet in sorted(quorum.required_wallets):
            if await self._presence.is_wallet_in_range(wallet, rule):
                present.append(wallet)
            else:
                missing.append(wallet)

        if quorum.quorum_type == QuorumType.ALL:
            minimum = len(quorum.required_wallets)
        else:
            minimum = quorum.minimum_count

        return QuorumStatus(
            met=len(present) >= minimum,
            present=present,
            missing=missing,
            minimum_count=minimum,
            quorum_type=quorum.quorum_type,
            required=True,
        )

    async def require_quorum(self, rule: ExecutionRule) -> QuorumStatus:
        """Raise QuorumNotMet unless the rule's quorum is satisfied."""
        status = await self.check_quorum(rule)
        if not status.met:
            raise QuorumNotMet(status.present, status.missing, status.minimum_count)
        return status
