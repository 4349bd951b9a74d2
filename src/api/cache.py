"""
Response caching - wraps an async handler with a store-backed cache.

cached() returns a new handler; nothing is patched at runtime. Cache
reads and writes are best effort: a store failure falls through to the
wrapped handler.
"""

import functools
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from src.domain.exceptions import StoreUnavailable
from src.domain.ports import EphemeralStore

logger = logging.getLogger(__name__)

Handler = Callable[..., Awaitable[Any]]


def cached(
    store: Callable[..., EphemeralStore] | EphemeralStore,
    key_builder: Callable[..., str],
    ttl: int = 60,
    prefix: str = "cache",
) -> Callable[[Handler], Handler]:
    """
    Cache the JSON-serializable result of an async handler.

    Args:
        store: The store, or a callable resolving it from the handler's arguments
        key_builder: Builds the cache key from the handler's arguments
        ttl: Seconds a cached result stays valid
        prefix: Key namespace

    Returns:
        Decorator producing the caching handler
    """

    def decorator(handler: Handler) -> Handler:
        @functools.wraps(handler)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            target = store(*args, **kwargs) if callable(store) else store
            key = f"{prefix}:{key_builder(*args, **kwargs)}"

            try:
                hit = await target.get(key)
            except StoreUnavailable:
                hit = None
            if hit is not None:
                logger.debug("Cache hit: %s", key)
                return json.loads(hit)

            logger.debug("Cache miss: %s", key)
            result = await handler(*args, **kwargs)
            try:
                await target.set_with_ttl(key, json.dumps(result, default=str), ttl)
            except StoreUnavailable as e:
                logger.warning("Cache save failed for %s: %s", key, e)
            return result

        return wrapper

    return decorator
