"""
Port interfaces - Protocol definitions for infrastructure abstraction.

This module defines the interfaces (ports) that the domain requires
from infrastructure. Adapters implement these protocols.

All ports are asynchronous: every store, repository and provider call is
a suspension point, and nothing else in the domain yields.
"""

from collections.abc import Sequence
from enum import Enum
from typing import Protocol

from .models import (
    ConflictCheck,
    CreatedUser,
    EmailMessage,
    NotificationPayload,
    NotificationResult,
    ProviderReceipt,
    SmsMessage,
    StoreOp,
)


class RegistrationState(str, Enum):
    """
    Staged registration states.

    State Transitions:
    - NONE -> PENDING (register)
    - PENDING -> PENDING (verify one channel, wrong code, resend)
    - PENDING -> COMPLETE (second channel verified, permanent user created)

    There is no ABANDONED state: TTL expiry of the temp record silently
    returns the registration to NONE.
    """

    NONE = "NONE"
    PENDING = "PENDING"
    COMPLETE = "COMPLETE"


class VerificationChannel(str, Enum):
    """Channel whose ownership an OTP proves."""

    EMAIL = "email"
    MOBILE = "mobile"

    @property
    def other(self) -> "VerificationChannel":
        if self is VerificationChannel.EMAIL:
            return VerificationChannel.MOBILE
        return VerificationChannel.EMAIL


class EphemeralStore(Protocol):
    """
    Port interface for the TTL-governed key-value store.

    Every method may raise StoreUnavailable; callers must treat that as
    "unknown state", never as a negative answer.
    """

    async def get(self, key: str) -> str | None: ...

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Set key only when it does not exist. Returns True when set."""
        ...

    async def increment(self, key: str, ttl_seconds: int | None = None) -> int:
        """
        Atomically increment key, creating it at 1 when absent.

        When ttl_seconds is given it is attached only on creation; an
        existing window is never extended.
        """
        ...

    async def exists(self, key: str) -> bool: ...

    async def delete(self, *keys: str) -> int: ...

    async def batch(self, ops: Sequence[StoreOp]) -> None:
        """Execute set/delete operations atomically in a single round trip."""
        ...

    async def compare_and_swap(self, key: str, expected: str, ops: Sequence[StoreOp]) -> bool:
        """
        Apply ops atomically only if key still holds expected.

        Returns False (and applies nothing) when another writer changed
        key in between.
        """
        ...

    async def ping(self) -> bool: ...


class UserRepository(Protocol):
    """Port interface for the permanent user table."""

    async def check_conflict(self, email: str, mobile_no: str) -> ConflictCheck:
        """Report whether email or mobile already belongs to a user."""
        ...

    async def create(
        self, name: str, email: str, mobile_no: str, password_hash: str
    ) -> CreatedUser:
        """
        Create the permanent user.

        Implementations re-check conflicts transactionally before insert
        and raise ConflictError when one appears.
        """
        ...


class EmailProvider(Protocol):
    """Port interface for email delivery."""

    async def send_email(self, message: EmailMessage) -> ProviderReceipt: ...


class SMSProvider(Protocol):
    """Port interface for SMS delivery."""

    async def send_sms(self, message: SmsMessage) -> ProviderReceipt: ...


class Notifier(Protocol):
    """Uniform, channel-polymorphic send facade."""

    async def send(self, payload: NotificationPayload) -> NotificationResult: ...

    async def send_bulk(
        self, payloads: Sequence[NotificationPayload]
    ) -> list[NotificationResult]: ...


class NotificationSink(Protocol):
    """
    Delivery mode selected once at startup.

    submit() hands payloads off for delivery and returns without waiting
    for the providers; delivery failures never propagate to the caller.
    """

    async def submit(self, payloads: Sequence[NotificationPayload]) -> None: ...
