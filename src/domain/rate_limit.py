"""
Fixed-window rate limiter keyed by client identity and route.

Key layout: ``{prefix}:{identity-kind}:{identity}:{route}`` where
identity-kind is ``machineId`` when the client sent a machine identity and
``ip`` otherwise.

The counter is a single atomic increment; the first increment on a fresh
key attaches the window TTL and later increments never extend it.
"""

import logging
from dataclasses import dataclass

from .exceptions import MissingIdentity, RateLimited, RateLimiterUnavailable, StoreUnavailable
from .models import RateLimitStatus
from .ports import EphemeralStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitPolicy:
    limit: int = 5
    window: int = 60
    require_identity: bool = True
    bypass: bool = False


@dataclass
class RateLimiter:
    store: EphemeralStore
    prefix: str = "rate_limit"
    fail_closed: bool = False

    def key_for(self, route: str, machine_id: str | None, client_ip: str | None) -> str:
        if machine_id:
            return f"{self.prefix}:machineId:{machine_id}:{route}"
        return f"{self.prefix}:ip:{client_ip or 'unknown'}:{route}"

    async def check(
        self,
        route: str,
        policy: RateLimitPolicy,
        machine_id: str | None = None,
        client_ip: str | None = None,
    ) -> RateLimitStatus:
        """
        Count one request against the route's window.

        Raises:
            MissingIdentity: identity required but absent (no store round trip)
            RateLimited: the window's budget is spent
            RateLimiterUnavailable: store failed and the limiter is fail-closed
        """
        if policy.bypass:
            return RateLimitStatus(policy.limit, policy.limit, policy.window)

        if not machine_id and policy.require_identity:
            raise MissingIdentity()

        key = self.key_for(route, machine_id, client_ip)
        try:
            count = await self.store.increment(key, policy.window)
        except StoreUnavailable as e:
            logger.error("Rate limit check failed for %s: %s", key, e)
            if self.fail_closed:
                raise RateLimiterUnavailable() from e
            return RateLimitStatus(policy.limit, policy.limit, policy.window, degraded=True)

        if count > policy.limit:
            logger.warning(
                "Rate limit exceeded",
                extra={"key": key, "limit": policy.limit, "current": count},
            )
            raise RateLimited(retry_after=policy.window, limit=policy.limit)

        return RateLimitStatus(policy.limit, policy.limit - count, policy.window)
