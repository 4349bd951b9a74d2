"""Ephemeral store adapters - Redis implementation of the store port."""

from .redis_store import RedisEphemeralStore

__all__ = ["RedisEphemeralStore"]
