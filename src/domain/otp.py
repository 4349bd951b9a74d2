"""
OTP issuance and validation.

Codes are stored under ``otp:{channel}:{identifier}`` with a short TTL.
At most one live code exists per (channel, identifier): a new issuance
overwrites the previous one.

Validation never deletes the code. The caller removes it only after every
side effect of accepting it has been persisted, so a downstream failure
does not destroy the proof of validation.
"""

import logging
import secrets
from dataclasses import dataclass
from enum import Enum

from .models import StoreOp
from .ports import EphemeralStore

logger = logging.getLogger(__name__)

_DIGITS = "0123456789"


class OtpCheck(Enum):
    """Outcome of comparing a submitted code with the live one."""

    MATCHED = "matched"
    MISMATCHED = "mismatched"
    MISSING = "missing"

    @property
    def matched(self) -> bool:
        return self is OtpCheck.MATCHED


def otp_key(channel: str, identifier: str) -> str:
    channel = channel.value if isinstance(channel, Enum) else channel
    return f"otp:{channel}:{normalize_identifier(identifier)}"


def normalize_identifier(identifier: str) -> str:
    return identifier.strip().lower()


def generate_code(length: int) -> str:
    """
    Generate a cryptographically secure numeric code.

    Uses secrets module for cryptographic randomness.
    Returns string to preserve leading zeros.
    """
    return "".join(secrets.choice(_DIGITS) for _ in range(length))


@dataclass
class OtpService:
    """Issues, checks and invalidates one-time codes in the ephemeral store."""

    store: EphemeralStore
    length: int = 6
    ttl_seconds: int = 300

    def prepare(self, channel: str, identifier: str) -> tuple[str, StoreOp]:
        """
        Generate a code and the store operation that would persist it.

        Lets callers fold OTP writes into a larger atomic batch.
        """
        code = generate_code(self.length)
        return code, StoreOp.set(otp_key(channel, identifier), code, self.ttl_seconds)

    async def issue(self, channel: str, identifier: str) -> str:
        code, op = self.prepare(channel, identifier)
        await self.store.set_with_ttl(op.key, code, self.ttl_seconds)
        logger.debug("OTP issued for %s", op.key)
        return code

    async def validate(self, channel: str, identifier: str, submitted: str) -> OtpCheck:
        stored = await self.store.get(otp_key(channel, identifier))
        if stored is None:
            return OtpCheck.MISSING
        if secrets.compare_digest(stored.strip().encode(), submitted.strip().encode()):
            return OtpCheck.MATCHED
        return OtpCheck.MISMATCHED

    def invalidate_op(self, channel: str, identifier: str) -> StoreOp:
        """Store operation that drops the live code, for atomic batches."""
        return StoreOp.delete(otp_key(channel, identifier))

    async def invalidate(self, channel: str, identifier: str) -> None:
        await self.store.delete(self.invalidate_op(channel, identifier).key)
