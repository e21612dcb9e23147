"""
Redis Repository implementations.

Provides type-safe, domain-specific access to Redis state storage.
Each repository encapsulates Redis keys and operations for its domain.
"""

from __future__ import annotations

from typing import Any, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from core.exceptions import RedisConnectionError
from core.value_objects import DisplaySnapshot, SerialDeviceInfo


# =============================================================================
# Base Repository
# =============================================================================


class RedisStateRepository:
    """
    Base repository for Redis state operations.

    Wraps client errors in RedisConnectionError.
    """

    def __init__(self, redis: Redis) -> None:
        """
        Initialize the repository.

        Args:
            redis: Redis client instance.
        """
        self._redis = redis

    async def get_set_members(self, key: str) -> set[str]:
        """Get all members of a set."""
        try:
            return set(await self._redis.smembers(key))
        except RedisError as e:
            raise RedisConnectionError(f"Redis connection error: {e}")

    async def add_to_set(self, key: str, *values: str) -> None:
        """Add values to a set."""
        try:
            await self._redis.sadd(key, *values)
        except RedisError as e:
            raise RedisConnectionError(f"Redis connection error: {e}")

    async def remove_from_set(self, key: str, *values: str) -> None:
        """Remove values from a set."""
        try:
            await self._redis.srem(key, *values)
        except RedisError as e:
            raise RedisConnectionError(f"Redis connection error: {e}")

    async def set_hash(self, key: str, mapping: dict[str, Any]) -> None:
        """Write all fields of a hash."""
        try:
            await self._redis.hset(key, mapping=mapping)
        except RedisError as e:
            raise RedisConnectionError(f"Redis connection error: {e}")

    async def get_hash(self, key: str) -> dict[str, str]:
        """Read all fields of a hash."""
        try:
            return await self._redis.hgetall(key)
        except RedisError as e:
            raise RedisConnectionError(f"Redis connection error: {e}")


# =============================================================================
# Authorized Device Repository
# =============================================================================


class AuthorizedDeviceRepository(RedisStateRepository):
    """
    Serial devices the operator has authorized.

    Keys:
    - kiosk:authorized_devices: Set of device identities
    """

    KEY_AUTHORIZED = "kiosk:authorized_devices"

    async def identities(self) -> set[str]:
        """Get all authorized device identities."""
        return await self.get_set_members(self.KEY_AUTHORIZED)

    async def is_authorized(self, device: SerialDeviceInfo) -> bool:
        return device.identity in await self.identities()

    async def authorize(self, device: SerialDeviceInfo) -> None:
        """Remember a device for silent reconnects."""
        await self.add_to_set(self.KEY_AUTHORIZED, device.identity)

    async def revoke(self, device: SerialDeviceInfo) -> None:
        await self.remove_from_set(self.KEY_AUTHORIZED, device.identity)


# =============================================================================
# Display State Repository
# =============================================================================


class DisplayStateRepository(RedisStateRepository):
    """
    Latest display state for the frontend.

    Stored as a flat hash; booleans as "1"/"0" and missing values as "".
    """

    def __init__(self, redis: Redis, key: str = "kiosk:display") -> None:
        super().__init__(redis)
        self.key = key

    async def save(self, snapshot: DisplaySnapshot) -> None:
        """Store a snapshot."""
        await self.set_hash(self.key, _to_redis_mapping(snapshot.to_dict()))

    async def load(self) -> Optional[dict[str, str]]:
        """Get the stored snapshot fields, or None if nothing was stored."""
        data = await self.get_hash(self.key)
        return data or None


def _to_redis_mapping(data: dict[str, Any]) -> dict[str, str]:
    mapping = {}
    for name, value in data.items():
        if value is None:
            mapping[name] = ""
        elif isinstance(value, bool):
            mapping[name] = "1" if value else "0"
        else:
            mapping[name] = str(value)
    return mapping
