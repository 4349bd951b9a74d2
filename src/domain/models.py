"""
Domain value objects - records exchanged between services and ports.

Plain dataclasses with no framework imports. The temporary user record
and notification payloads serialize to JSON-compatible dicts so they can
live in the ephemeral store and travel through the job queue.
"""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class NotificationChannel(str, Enum):
    """Delivery medium for a notification."""

    EMAIL = "email"
    SMS = "sms"


class NotificationPriority(str, Enum):
    """Queue priority tier; lower numeric value is served first."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def numeric(self) -> int:
        return _PRIORITY_VALUES[self]


_PRIORITY_VALUES = {
    NotificationPriority.CRITICAL: 1,
    NotificationPriority.HIGH: 2,
    NotificationPriority.MEDIUM: 3,
    NotificationPriority.LOW: 4,
}


def _name(channel: str) -> str:
    # str-mixin enums format as "Class.MEMBER" on newer interpreters
    return channel.value if isinstance(channel, Enum) else channel


@dataclass(frozen=True)
class StoreOp:
    """A single set or delete inside an atomic store batch."""

    kind: str
    key: str
    value: str | None = None
    ttl_seconds: int | None = None

    @classmethod
    def set(cls, key: str, value: str, ttl_seconds: int) -> "StoreOp":
        return cls("set", key, value, ttl_seconds)

    @classmethod
    def delete(cls, key: str) -> "StoreOp":
        return cls("delete", key)


@dataclass
class TempUser:
    """
    Staging record for a registration in progress.

    Keyed by normalized email in the ephemeral store. Its presence means
    the registration is PENDING; its absence means NONE.
    """

    name: str
    email: str
    mobile_no: str
    password_hash: str
    created_at: int
    email_verified: bool = False
    mobile_verified: bool = False
    email_otp_attempts: int = 0
    mobile_otp_attempts: int = 0
    last_otp_sent: int | None = None

    def is_verified(self, channel: str) -> bool:
        return bool(getattr(self, f"{_name(channel)}_verified"))

    def attempts(self, channel: str) -> int:
        return int(getattr(self, f"{_name(channel)}_otp_attempts") or 0)

    def record_failed_attempt(self, channel: str) -> int:
        attempts = self.attempts(channel) + 1
        setattr(self, f"{_name(channel)}_otp_attempts", attempts)
        return attempts

    def mark_verified(self, channel: str) -> None:
        setattr(self, f"{_name(channel)}_verified", True)
        setattr(self, f"{_name(channel)}_otp_attempts", 0)

    @property
    def fully_verified(self) -> bool:
        return self.email_verified and self.mobile_verified

    def to_json(self) -> str:
        return json.dumps(asdict(self), separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str) -> "TempUser":
        data = json.loads(raw)
        return cls(
            name=data["name"],
            email=data["email"],
            mobile_no=data["mobile_no"],
            password_hash=data["password_hash"],
            created_at=int(data["created_at"]),
            email_verified=bool(data.get("email_verified", False)),
            mobile_verified=bool(data.get("mobile_verified", False)),
            email_otp_attempts=int(data.get("email_otp_attempts") or 0),
            mobile_otp_attempts=int(data.get("mobile_otp_attempts") or 0),
            last_otp_sent=data.get("last_otp_sent"),
        )


@dataclass(frozen=True)
class ConflictCheck:
    """Result of checking the permanent user table for a conflict."""

    exists: bool
    conflict_field: str | None = None


@dataclass(frozen=True)
class CreatedUser:
    """Identity returned by the permanent user repository."""

    id: str
    name: str
    email: str
    mobile_no: str
    role: str
    created_at: datetime


@dataclass
class NotificationPayload:
    """Channel-tagged message handed to the notifier or the job queue."""

    channel: NotificationChannel
    to: str
    subject: str | None = None
    message: str | None = None
    html: str | None = None
    priority: NotificationPriority = NotificationPriority.MEDIUM
    metadata: dict[str, Any] = field(default_factory=dict)
    attachments: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["channel"] = self.channel.value
        data["priority"] = self.priority.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NotificationPayload":
        return cls(
            channel=NotificationChannel(data["channel"]),
            to=data["to"],
            subject=data.get("subject"),
            message=data.get("message"),
            html=data.get("html"),
            priority=NotificationPriority(data.get("priority") or "medium"),
            metadata=dict(data.get("metadata") or {}),
            attachments=list(data.get("attachments") or []),
        )


@dataclass(frozen=True)
class NotificationResult:
    """Normalized outcome of one send, successful or not."""

    success: bool
    channel: NotificationChannel
    timestamp: datetime
    message_id: str | None = None
    error: str | None = None

    @classmethod
    def ok(cls, channel: NotificationChannel, message_id: str) -> "NotificationResult":
        return cls(True, channel, datetime.now(timezone.utc), message_id=message_id)

    @classmethod
    def failed(cls, channel: NotificationChannel, error: str) -> "NotificationResult":
        return cls(False, channel, datetime.now(timezone.utc), error=error)


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str
    text: str | None = None
    attachments: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class SmsMessage:
    to: str
    body: str


@dataclass(frozen=True)
class ProviderReceipt:
    """Provider acknowledgement for an accepted message."""

    message_id: str
    status: str = "sent"


@dataclass(frozen=True)
class RegistrationPolicy:
    """Timing and ceiling configuration for the registration state machine."""

    temp_user_ttl_seconds: int = 15 * 60
    otp_ttl_seconds: int = 5 * 60
    otp_length: int = 6
    max_otp_attempts: int = 3
    resend_cooldown_seconds: int = 60
    completion_lock_seconds: int = 30
    bcrypt_cost: int = 10

    def __post_init__(self) -> None:
        if self.temp_user_ttl_seconds < self.otp_ttl_seconds:
            raise ValueError("temp user TTL must be at least the OTP TTL")
        if self.otp_length < 1 or self.max_otp_attempts < 1:
            raise ValueError("otp_length and max_otp_attempts must be positive")


@dataclass(frozen=True)
class RegisterOutcome:
    email: str
    mobile_no: str
    verification_required: tuple[str, ...]
    otp_ttl_seconds: int


@dataclass(frozen=True)
class VerifyOutcome:
    """
    Result of a successful verify transition.

    is_complete is False for a partial success (one channel verified) and
    True once the permanent user has been created.
    """

    is_complete: bool
    email: str
    mobile_no: str
    verified_channel: str
    email_verified: bool
    mobile_verified: bool
    user: CreatedUser | None = None


@dataclass(frozen=True)
class ResendOutcome:
    email: str
    mobile_no: str
    channels: tuple[str, ...]
    deliveries: tuple[NotificationResult, ...]
    otp_ttl_seconds: int
    cooldown_seconds: int


@dataclass(frozen=True)
class RateLimitStatus:
    """Outcome of an allowed rate limit check."""

    limit: int
    remaining: int
    window: int
    degraded: bool = False
