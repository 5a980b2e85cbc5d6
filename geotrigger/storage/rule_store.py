"""Execution rule storage operations.

Rules are owned by rule management; the execution core only reads them.
``save`` and ``delete`` exist for that collaborator and for seeding.
"""

from datetime import datetime

from redis.asyncio import Redis

from geotrigger.models.rule import ExecutionRule
from geotrigger.storage.redis_client import RedisKeys, get_redis


class RuleStore:
    """Rule storage operations using Redis."""

    def __init__(self, redis: Redis | None = None):
        self._redis = redis

    @property
    def redis(self) -> Redis:
        return self._redis or get_redis()

    async def save(self, rule: ExecutionRule) -> ExecutionRule:
        """Create or replace a rule.

        Args:
            rule: Rule to store

        Returns:
            Stored rule
        """
        key = RedisKeys.rule_detail(rule.rule_id)
        existing = await self.get(rule.rule_id)
        if existing:
            rule.metadata.version = existing.metadata.version + 1
            rule.metadata.updated_at = datetime.utcnow()
            if existing.user_id != rule.user_id:
                await self.redis.srem(RedisKeys.rule_by_user(existing.user_id), rule.rule_id)

        await self.redis.hset(
            key,
            mapping={
                "config": rule.model_dump_json(),
                "active": str(rule.active).lower(),
                "version": str(rule.metadata.version),
            },
        )
        await self.redis.sadd(RedisKeys.RULE_ALL, rule.rule_id)
        await self.redis.sadd(RedisKeys.rule_by_user(rule.user_id), rule.rule_id)
        return rule

    async def get(self, rule_id: int) -> ExecutionRule | None:
        """Get a rule by ID.

        Args:
            rule_id: Rule ID

        Returns:
            Rule if found, None otherwise
        """
        data = await self.redis.hget(RedisKeys.rule_detail(rule_id), "config")
        if not data:
            return None
        return ExecutionRule.model_validate_json(data)

    async def get_active(self, rule_id: int) -> ExecutionRule | None:
        rule = await self.get(rule_id)
        if rule and rule.active:
            return rule
        return None

    async def get_many(self, rule_ids: set[int]) -> dict[int, ExecutionRule]:
        """Load several rules at once, skipping missing ones."""
        if not rule_ids:
            return {}
        ordered = sorted(rule_ids)
        pipe = self.redis.pipeline(transaction=False)
        for rule_id in ordered:
            pipe.hget(RedisKeys.rule_detail(rule_id), "config")
        results = await pipe.execute()
        return {
            rule_id: ExecutionRule.model_validate_json(data)
            for rule_id, data in zip(ordered, results)
            if data
        }

    async def delete(self, rule_id: int) -> bool:
        """Delete a rule.

        Returns:
            True if deleted, False if not found
        """
        existing = await self.get(rule_id)
        if not existing:
            return False
        await self.redis.srem(RedisKeys.RULE_ALL, rule_id)
        await self.redis.srem(RedisKeys.rule_by_user(existing.user_id), rule_id)
        await self.redis.delete(RedisKeys.rule_detail(rule_id))
        return True

    async def list_for_user(self, user_id: str) -> list[ExecutionRule]:
        """List all rules owned by a user, ordered by rule id."""
        rule_ids = await self.redis.smembers(RedisKeys.rule_by_user(user_id))
        rules = await self.get_many({int(r) for r in rule_ids})
        return [rules[rule_id] for rule_id in sorted(rules)]
