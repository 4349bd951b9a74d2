"""
Registration domain service - Staged Registration State Machine.

This module contains the core business logic for user registration:
a temporary user record is proven over two channels (email and mobile)
with one-time codes before the permanent account is created.

Staged Registration State Machine
=================================

States:
- NONE: No temporary record and no permanent user (never registered or expired)
- PENDING: Temporary record exists, 0-2 channels verified
- COMPLETE: Both channels verified, permanent user created, record deleted

Transitions:
    NONE    -> PENDING   (register)
    PENDING -> PENDING   (verify one channel, wrong code, resend)
    PENDING -> COMPLETE  (verify the second channel)
    PENDING -> NONE      (TTL expiry, silent abandonment)

Concurrency
===========

The temporary record is the one multi-field value that must be
read-modified-written. Every write goes through an optimistic
compare-and-swap against the exact serialized value that was read, so a
concurrent transition can never silently drop a verification flag; the
loser re-reads and re-applies its transition. The COMPLETE transition is
additionally guarded by a set-if-absent completion key so the permanent
user is created at most once even under concurrent calls.

A verified flag and the deletion of the consumed code are committed in the
same atomic swap, so a crash between the two writes cannot leave a code
that is still usable after the channel was marked verified.
"""

import asyncio
import logging
import math
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

import bcrypt

from .exceptions import (
    AlreadyVerified,
    AttemptsExceeded,
    CodeExpired,
    CompletionInProgress,
    ConflictError,
    CooldownActive,
    InvalidCode,
    MobileMismatch,
    SessionNotFound,
    StoreUnavailable,
)
from .models import (
    NotificationPayload,
    RegisterOutcome,
    RegistrationPolicy,
    ResendOutcome,
    StoreOp,
    TempUser,
    VerifyOutcome,
)
from .notifications import mask_mobile, verification_email, verification_sms
from .otp import OtpCheck, OtpService
from .ports import (
    EphemeralStore,
    NotificationSink,
    Notifier,
    RegistrationState,
    UserRepository,
    VerificationChannel,
)

logger = logging.getLogger(__name__)

# Optimistic swaps lost to concurrent writers before giving up
MAX_SWAP_RETRIES = 5


def temp_user_key(email: str) -> str:
    return f"temp_user:{email.strip().lower()}"


def completion_key(email: str) -> str:
    return f"registration_complete:{email.strip().lower()}"


@dataclass
class RegistrationService:
    """
    Domain service for staged user registration.

    Orchestrates registration, OTP verification over both channels,
    resend with cooldown, and creation of the permanent user.
    """

    store: EphemeralStore
    users: UserRepository
    otp: OtpService
    notifier: Notifier
    sink: NotificationSink
    policy: RegistrationPolicy = field(default_factory=RegistrationPolicy)
    clock: Callable[[], float] = time.time

    async def register(
        self, name: str, email: str, mobile_no: str, password: str
    ) -> RegisterOutcome:
        """
        Start a registration: NONE -> PENDING.

        Args:
            name: Display name (trimmed)
            email: Email address (will be normalized)
            mobile_no: Mobile number (trimmed)
            password: Plaintext password (will be hashed)

        Returns:
            RegisterOutcome describing the pending verification

        Raises:
            ConflictError: email or mobile already belongs to a permanent user
        """
        clean_name = name.strip()
        clean_email = self._normalize_email(email)
        clean_mobile = self._normalize_mobile(mobile_no)

        logger.info(
            "User registration attempt",
            extra={"email": clean_email, "mobile": mask_mobile(clean_mobile)},
        )

        conflict = await self.users.check_conflict(clean_email, clean_mobile)
        if conflict.exists:
            logger.warning(
                "Registration conflict detected",
                extra={"conflict_field": conflict.conflict_field, "email": clean_email},
            )
            raise ConflictError(conflict.conflict_field or "email")

        # Idempotent cleanup for retried registrations
        await self.store.batch(
            [
                StoreOp.delete(temp_user_key(clean_email)),
                self.otp.invalidate_op(VerificationChannel.EMAIL, clean_email),
                self.otp.invalidate_op(VerificationChannel.MOBILE, clean_mobile),
            ]
        )

        password_hash = await asyncio.to_thread(self._hash_password, password)
        temp_user = TempUser(
            name=clean_name,
            email=clean_email,
            mobile_no=clean_mobile,
            password_hash=password_hash,
            created_at=self._now_ms(),
        )

        email_code, email_op = self.otp.prepare(VerificationChannel.EMAIL, clean_email)
        mobile_code, mobile_op = self.otp.prepare(VerificationChannel.MOBILE, clean_mobile)
        await self.store.batch(
            [
                StoreOp.set(
                    temp_user_key(clean_email),
                    temp_user.to_json(),
                    self.policy.temp_user_ttl_seconds,
                ),
                email_op,
                mobile_op,
            ]
        )

        await self._submit(
            [
                verification_email(
                    clean_email, clean_name, email_code, self.policy.otp_ttl_seconds
                ),
                verification_sms(clean_mobile, mobile_code, self.policy.otp_ttl_seconds),
            ]
        )

        logger.info("Temp user registration successful", extra={"email": clean_email})
        return RegisterOutcome(
            email=clean_email,
            mobile_no=clean_mobile,
            verification_required=(
                VerificationChannel.EMAIL.value,
                VerificationChannel.MOBILE.value,
            ),
            otp_ttl_seconds=self.policy.otp_ttl_seconds,
        )

    async def verify(
        self, email: str, mobile_no: str, channel: str, code: str
    ) -> VerifyOutcome:
        """
        Verify one channel: PENDING -> PENDING or PENDING -> COMPLETE.

        Raises:
            SessionNotFound: no temporary record for email
            MobileMismatch: mobile_no differs from the record
            AlreadyVerified: the channel is already verified
            AttemptsExceeded: attempt ceiling reached for the channel
            CodeExpired: no live code for the channel
            InvalidCode: wrong code (the attempt is counted)
            CompletionInProgress: a concurrent request is creating the account
        """
        channel = VerificationChannel(channel)
        clean_email = self._normalize_email(email)
        clean_mobile = self._normalize_mobile(mobile_no)
        clean_code = code.strip()
        key = temp_user_key(clean_email)
        identifier = clean_email if channel is VerificationChannel.EMAIL else clean_mobile
        max_attempts = self.policy.max_otp_attempts

        for _ in range(MAX_SWAP_RETRIES):
            raw, temp_user = await self._load(key, clean_mobile)

            if temp_user.is_verified(channel):
                raise AlreadyVerified(channel.value)

            if temp_user.attempts(channel) >= max_attempts:
                raise AttemptsExceeded(channel.value, max_attempts)

            check = await self.otp.validate(channel, identifier, clean_code)
            if check is OtpCheck.MISSING:
                raise CodeExpired(channel.value)

            if check is OtpCheck.MISMATCHED:
                used = temp_user.record_failed_attempt(channel)
                if not await self._swap(key, raw, [self._save_op(key, temp_user)]):
                    continue
                logger.warning(
                    "Invalid OTP submitted",
                    extra={"email": clean_email, "channel": channel.value, "attempts": used},
                )
                raise InvalidCode(channel.value, remaining_attempts=max(0, max_attempts - used))

            temp_user.mark_verified(channel)

            if temp_user.fully_verified:
                outcome = await self._complete(key, raw, temp_user, channel)
                if outcome is None:
                    continue
                return outcome

            ops = [self._save_op(key, temp_user), self.otp.invalidate_op(channel, identifier)]
            if not await self._swap(key, raw, ops):
                continue

            logger.info(
                "Channel verified", extra={"email": clean_email, "channel": channel.value}
            )
            return VerifyOutcome(
                is_complete=False,
                email=temp_user.email,
                mobile_no=temp_user.mobile_no,
                verified_channel=channel.value,
                email_verified=temp_user.email_verified,
                mobile_verified=temp_user.mobile_verified,
            )

        raise StoreUnavailable("Registration record changed concurrently; please retry")

    async def resend(self, email: str, mobile_no: str) -> ResendOutcome:
        """
        Re-issue codes for every unverified channel: PENDING -> PENDING.

        Delivery is synchronous so the caller learns per-channel outcomes;
        a failed delivery is reported, never raised.

        Raises:
            SessionNotFound: no temporary record for email
            MobileMismatch: mobile_no differs from the record
            AlreadyVerified: both channels are already verified
            CooldownActive: last code was sent less than the cooldown ago
        """
        clean_email = self._normalize_email(email)
        clean_mobile = self._normalize_mobile(mobile_no)
        key = temp_user_key(clean_email)
        ttl = self.policy.otp_ttl_seconds

        for _ in range(MAX_SWAP_RETRIES):
            raw, temp_user = await self._load(key, clean_mobile)

            if temp_user.fully_verified:
                raise AlreadyVerified()

            now = self._now_ms()
            if temp_user.last_otp_sent:
                cooldown_ms = self.policy.resend_cooldown_seconds * 1000
                elapsed = now - temp_user.last_otp_sent
                if elapsed < cooldown_ms:
                    raise CooldownActive(math.ceil((cooldown_ms - elapsed) / 1000))

            ops: list[StoreOp] = []
            payloads: list[NotificationPayload] = []
            channels: list[str] = []
            if not temp_user.email_verified:
                code, op = self.otp.prepare(VerificationChannel.EMAIL, clean_email)
                ops.append(op)
                payloads.append(verification_email(clean_email, temp_user.name, code, ttl))
                channels.append(VerificationChannel.EMAIL.value)
            if not temp_user.mobile_verified:
                code, op = self.otp.prepare(VerificationChannel.MOBILE, clean_mobile)
                ops.append(op)
                payloads.append(verification_sms(clean_mobile, code, ttl))
                channels.append(VerificationChannel.MOBILE.value)

            temp_user.last_otp_sent = now
            if not await self._swap(key, raw, [self._save_op(key, temp_user), *ops]):
                continue

            results = await self.notifier.send_bulk(payloads)
            for result in results:
                if not result.success:
                    logger.warning(
                        "OTP resend delivery failed",
                        extra={"channel": result.channel.value, "error": result.error},
                    )

            logger.info("OTP resent", extra={"email": clean_email, "channels": channels})
            return ResendOutcome(
                email=clean_email,
                mobile_no=clean_mobile,
                channels=tuple(channels),
                deliveries=tuple(results),
                otp_ttl_seconds=ttl,
                cooldown_seconds=self.policy.resend_cooldown_seconds,
            )

        raise StoreUnavailable("Registration record changed concurrently; please retry")

    async def get_temp_user(self, email: str) -> TempUser | None:
        raw = await self.store.get(temp_user_key(email))
        return TempUser.from_json(raw) if raw is not None else None

    async def state_of(self, email: str, mobile_no: str) -> RegistrationState:
        """
        PENDING while a temporary record exists, COMPLETE once a permanent
        user holds the email or mobile, NONE otherwise.
        """
        clean_email = self._normalize_email(email)
        if await self.get_temp_user(clean_email) is not None:
            return RegistrationState.PENDING
        conflict = await self.users.check_conflict(
            clean_email, self._normalize_mobile(mobile_no)
        )
        return RegistrationState.COMPLETE if conflict.exists else RegistrationState.NONE

    async def _load(self, key: str, mobile_no: str) -> tuple[str, TempUser]:
        raw = await self.store.get(key)
        if raw is None:
            raise SessionNotFound()
        temp_user = TempUser.from_json(raw)
        if temp_user.mobile_no != mobile_no:
            raise MobileMismatch()
        return raw, temp_user

    async def _complete(
        self, key: str, raw: str, temp_user: TempUser, channel: VerificationChannel
    ) -> VerifyOutcome | None:
        """
        Create the permanent user and drop the temporary state.

        Returns None when the record changed before the guard was taken, so
        the caller re-reads and re-evaluates.
        """
        guard = completion_key(temp_user.email)
        if not await self.store.set_if_absent(guard, "1", self.policy.completion_lock_seconds):
            raise CompletionInProgress()

        try:
            if await self.store.get(key) != raw:
                await self.store.delete(guard)
                return None
            user = await self.users.create(
                temp_user.name, temp_user.email, temp_user.mobile_no, temp_user.password_hash
            )
        except BaseException:
            await self._release(guard)
            raise

        identifier = (
            temp_user.email if channel is VerificationChannel.EMAIL else temp_user.mobile_no
        )
        cleanup = [StoreOp.delete(key), self.otp.invalidate_op(channel, identifier)]
        try:
            if not await self.store.compare_and_swap(key, raw, [*cleanup, StoreOp.delete(guard)]):
                await self._discard_session(key, temp_user)
                await self.otp.invalidate(channel, identifier)
                await self.store.delete(guard)
        except StoreUnavailable as e:
            # The user exists; leftover temporary state expires with its TTL
            logger.error(
                "Failed to clean up completed registration",
                extra={"email": temp_user.email, "error": str(e)},
            )

        logger.info(
            "Registration completed", extra={"user_id": user.id, "email": user.email}
        )
        return VerifyOutcome(
            is_complete=True,
            email=user.email,
            mobile_no=user.mobile_no,
            verified_channel=channel.value,
            email_verified=True,
            mobile_verified=True,
            user=user,
        )

    async def _discard_session(self, key: str, temp_user: TempUser) -> None:
        # Only delete the record if it still belongs to the completed session
        current = await self.store.get(key)
        if current is None:
            return
        if TempUser.from_json(current).created_at == temp_user.created_at:
            await self.store.delete(key)

    async def _release(self, guard: str) -> None:
        try:
            await self.store.delete(guard)
        except StoreUnavailable:
            logger.warning("Completion guard left to expire", extra={"key": guard})

    async def _swap(self, key: str, raw: str, ops: Sequence[StoreOp]) -> bool:
        swapped = await self.store.compare_and_swap(key, raw, ops)
        if not swapped:
            logger.info("Concurrent update detected, retrying", extra={"key": key})
        return swapped

    def _save_op(self, key: str, temp_user: TempUser) -> StoreOp:
        return StoreOp.set(key, temp_user.to_json(), self.policy.temp_user_ttl_seconds)

    async def _submit(self, payloads: Sequence[NotificationPayload]) -> None:
        # Delivery problems never fail the registration call
        try:
            await self.sink.submit(payloads)
        except Exception as e:
            logger.error(
                "Failed to dispatch verification notifications",
                extra={"error": str(e)},
            )

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def _normalize_email(self, email: str) -> str:
        """
        Normalize email address for consistent storage and lookup.

        Applies: strip whitespace + lowercase
        """
        return email.strip().lower()

    def _normalize_mobile(self, mobile_no: str) -> str:
        return mobile_no.strip()

    def _hash_password(self, password: str) -> str:
        """Hash password using bcrypt with the configured cost factor."""
        return bcrypt.hashpw(
            password.encode(), bcrypt.gensalt(rounds=self.policy.bcrypt_cost)
        ).decode()
