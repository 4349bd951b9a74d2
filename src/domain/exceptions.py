"""
Domain exceptions - Semantic error types for staged registration.

This module defines domain-specific exceptions that communicate
business rule violations without leaking infrastructure details.

Every exception carries a stable machine-readable ``code`` and a
``details`` mapping with whatever the caller needs to act on the
rejection (conflicting field, seconds until retry, channel name).
"""

from typing import Any


class ServiceError(Exception):
    """Base class for every error raised by the registration core."""

    code = "SERVICE_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class RegistrationError(ServiceError):
    """Base class for client-facing business rule violations."""

    code = "REGISTRATION_ERROR"


class InfrastructureError(ServiceError):
    """Base class for transient infrastructure failures."""

    code = "INFRASTRUCTURE_ERROR"


class ConflictError(RegistrationError):
    """Email or mobile number already belongs to a permanent user."""

    code = "USER_EXISTS"

    def __init__(self, field: str) -> None:
        super().__init__("User registration failed.", {"field": field})
        self.field = field


class SessionNotFound(RegistrationError):
    """Temporary user record is absent or expired."""

    code = "SESSION_NOT_FOUND"

    def __init__(self) -> None:
        super().__init__("Registration session not found or expired")


class MobileMismatch(RegistrationError):
    """Submitted mobile number does not match the registration session."""

    code = "MOBILE_MISMATCH"

    def __init__(self) -> None:
        super().__init__("Email and mobile number do not match")


class AlreadyVerified(RegistrationError):
    """Channel (or, when channel is None, the whole registration) is verified."""

    code = "ALREADY_VERIFIED"

    def __init__(self, channel: str | None = None) -> None:
        if channel is None:
            message = "User already verified"
        else:
            message = f"{channel.capitalize()} already verified"
        super().__init__(message, {"channel": channel})
        self.channel = channel


class AttemptsExceeded(RegistrationError):
    """Attempt ceiling reached for a channel; terminal until the session expires."""

    code = "ATTEMPTS_EXCEEDED"

    def __init__(self, channel: str, max_attempts: int) -> None:
        super().__init__(
            "Maximum OTP attempts exceeded",
            {"channel": channel, "max_attempts": max_attempts},
        )
        self.channel = channel


class CodeExpired(RegistrationError):
    """No live code for the channel: expired or never issued."""

    code = "OTP_EXPIRED"

    def __init__(self, channel: str) -> None:
        super().__init__("OTP expired or not found", {"channel": channel})
        self.channel = channel


class InvalidCode(RegistrationError):
    """Submitted code does not match the live code."""

    code = "INVALID_OTP"

    def __init__(self, channel: str, remaining_attempts: int) -> None:
        super().__init__(
            "Invalid OTP",
            {"channel": channel, "remaining_attempts": remaining_attempts},
        )
        self.channel = channel
        self.remaining_attempts = remaining_attempts


class CooldownActive(RegistrationError):
    """Resend requested before the cooldown elapsed."""

    code = "COOLDOWN_ACTIVE"

    def __init__(self, remaining_seconds: int) -> None:
        super().__init__(
            f"Please wait {remaining_seconds} seconds before resending OTP",
            {"remaining_seconds": remaining_seconds},
        )
        self.remaining_seconds = remaining_seconds


class CompletionInProgress(RegistrationError):
    """Another verification request is already creating this account."""

    code = "COMPLETION_IN_PROGRESS"

    def __init__(self) -> None:
        super().__init__("Registration is already being completed")


class MissingIdentity(RegistrationError):
    """Machine identity header is required but absent."""

    code = "MACHINE_ID_MISSING"

    def __init__(self) -> None:
        super().__init__("Missing machine ID in headers")


class RateLimited(RegistrationError):
    """Client exceeded the request budget for a route."""

    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, retry_after: int, limit: int) -> None:
        super().__init__(
            "API rate limit exceeded. Try again later.",
            {"retry_after": retry_after, "limit": limit, "remaining": 0},
        )
        self.retry_after = retry_after
        self.limit = limit


class StoreUnavailable(InfrastructureError):
    """Ephemeral store round trip failed; the resulting state is unknown."""

    code = "STORE_UNAVAILABLE"

    def __init__(self, message: str = "Ephemeral store unavailable") -> None:
        super().__init__(message)


class RateLimiterUnavailable(StoreUnavailable):
    """Rate limiter could not reach the store and is configured fail-closed."""

    code = "RATE_LIMIT_ERROR"

    def __init__(self) -> None:
        super().__init__("Rate limit check failed. Please try again later.")


class DatabaseUnavailable(InfrastructureError):
    """User database could not be reached or the query failed."""

    code = "DATABASE_UNAVAILABLE"

    def __init__(self, message: str = "User database unavailable") -> None:
        super().__init__(message)


class DeliveryFailed(InfrastructureError):
    """Notification provider failed to deliver a message."""

    code = "DELIVERY_FAILED"

    def __init__(self, channel: str, reason: str) -> None:
        super().__init__(
            f"Failed to deliver {channel} notification: {reason}",
            {"channel": channel},
        )
        self.channel = channel
        self.reason = reason
