"""
FastAPI dependencies - Dependency injection factories.

This module provides Depends() factories for injecting domain services
and infrastructure adapters into routes. Everything is built once in the
application lifespan and held on app.state.
"""

from collections.abc import Awaitable, Callable

from fastapi import Depends, Request, Response

from src.config.settings import Settings, get_settings
from src.domain.machine_identity import MachineIdentityRegistry
from src.domain.models import RateLimitStatus
from src.domain.rate_limit import RateLimiter
from src.domain.registration import RegistrationService

MACHINE_ID_HEADER = "x-machine-id"


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def get_registration_service(request: Request) -> RegistrationService:
    """
    Get the registration service from app state.

    Services are created during app lifespan startup and stored in app.state.
    """
    return request.app.state.registration_service


def get_machine_registry(request: Request) -> MachineIdentityRegistry:
    return request.app.state.machine_registry


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_machine_id(request: Request) -> str | None:
    value = request.headers.get(MACHINE_ID_HEADER)
    return value.strip() if value and value.strip() else None


def get_client_ip(request: Request) -> str:
    """
    Resolve the client address for IP-keyed rate limits.

    Priority: first hop of x-forwarded-for, x-real-ip, then the socket peer.
    IPv4-mapped IPv6 addresses are reduced to their IPv4 form.
    """
    candidates = [
        (request.headers.get("x-forwarded-for") or "").split(",")[0].strip(),
        (request.headers.get("x-real-ip") or "").strip(),
        request.client.host if request.client else "",
    ]
    for candidate in candidates:
        if candidate:
            return candidate.removeprefix("::ffff:")
    return "::1"


def rate_limit(route: str) -> Callable[..., Awaitable[RateLimitStatus]]:
    """
    Build a dependency enforcing the configured rate limit tier for route.

    Sets X-RateLimit-* headers on allowed responses. Rejections surface as
    RateLimited / MissingIdentity through the error handlers.
    """

    async def dependency(
        request: Request,
        response: Response,
        limiter: RateLimiter = Depends(get_rate_limiter),
        settings: Settings = Depends(get_app_settings),
    ) -> RateLimitStatus:
        result = await limiter.check(
            route,
            settings.rate_limit_policy(route),
            machine_id=get_machine_id(request),
            client_ip=get_client_ip(request),
        )
        response.headers["X-RateLimit-Limit"] = str(result.limit)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        return result

    return dependency
