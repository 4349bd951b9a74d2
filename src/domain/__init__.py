"""
Domain layer - Pure business logic with zero framework imports.

This package contains the staged registration engine: OTP issuance,
rate limiting, machine identities, notification dispatch and the
registration state machine. It defines its own port interfaces for
infrastructure abstraction, ensuring true hexagonal architecture decoupling.
"""

from .exceptions import (
    AlreadyVerified,
    AttemptsExceeded,
    CodeExpired,
    CompletionInProgress,
    ConflictError,
    CooldownActive,
    DatabaseUnavailable,
    DeliveryFailed,
    InfrastructureError,
    InvalidCode,
    MissingIdentity,
    MobileMismatch,
    RateLimited,
    RateLimiterUnavailable,
    RegistrationError,
    ServiceError,
    SessionNotFound,
    StoreUnavailable,
)
from .machine_identity import MachineIdentityRegistry
from .notifications import NotificationService, SynchronousSink
from .otp import OtpService
from .ports import (
    EmailProvider,
    EphemeralStore,
    NotificationSink,
    Notifier,
    RegistrationState,
    SMSProvider,
    UserRepository,
    VerificationChannel,
)
from .rate_limit import RateLimiter, RateLimitPolicy
from .registration import RegistrationService

__all__ = [
    "AlreadyVerified",
    "AttemptsExceeded",
    "CodeExpired",
    "CompletionInProgress",
    "ConflictError",
    "CooldownActive",
    "DatabaseUnavailable",
    "DeliveryFailed",
    "EmailProvider",
    "EphemeralStore",
    "InfrastructureError",
    "InvalidCode",
    "MachineIdentityRegistry",
    "MissingIdentity",
    "MobileMismatch",
    "NotificationService",
    "NotificationSink",
    "Notifier",
    "OtpService",
    "RateLimitPolicy",
    "RateLimited",
    "RateLimiter",
    "RateLimiterUnavailable",
    "RegistrationError",
    "RegistrationService",
    "RegistrationState",
    "SMSProvider",
    "ServiceError",
    "SessionNotFound",
    "StoreUnavailable",
    "SynchronousSink",
    "UserRepository",
    "VerificationChannel",
]
