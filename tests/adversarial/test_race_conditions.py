"""
Adversarial tests for race condition attack prevention.

Verifies that concurrent requests against the same registration are
serialized by compare-and-swap on the temporary record and by the
completion guard, preventing attackers from exploiting interleavings to:
- Create duplicate accounts
- Lose a channel's verified flag
- Redeem a single code more than once

Every fake store call yields to the event loop, so asyncio.gather
interleaves the requests at each store round trip.
"""

import asyncio

import pytest

from src.domain.exceptions import (
    AlreadyVerified,
    CodeExpired,
    CompletionInProgress,
    SessionNotFound,
)
from src.domain.registration import RegistrationService, temp_user_key
from tests.fakes import JANE, InMemoryStore, InMemoryUserRepository

# Apply adversarial marker to all tests in this module
pytestmark = pytest.mark.adversarial

EMAIL = JANE["email"]
MOBILE = JANE["mobile_no"]


def split(results: list) -> tuple[list, list]:
    successes = [r for r in results if not isinstance(r, BaseException)]
    failures = [r for r in results if isinstance(r, BaseException)]
    return successes, failures


class TestRaceConditionAttacks:
    """
    Adversarial tests simulating race condition attacks.

    These tests simulate an attacker (or a double-clicking user) firing
    concurrent requests at one pending registration.
    """

    async def test_both_channels_verified_concurrently(
        self,
        service: RegistrationService,
        users: InMemoryUserRepository,
        pending: dict,
        live_code,
    ) -> None:
        """
        Verify email and mobile at the same instant.

        Attack scenario: both verifications read the same record, each sets
        its own flag and writes back, the second write erasing the first.

        Expected defense: the losing write fails its compare-and-swap,
        re-reads, and completes the registration. Exactly one user exists.
        """
        results = await asyncio.gather(
            service.verify(EMAIL, MOBILE, "email", live_code("email", EMAIL)),
            service.verify(EMAIL, MOBILE, "mobile", live_code("mobile", MOBILE)),
            return_exceptions=True,
        )

        successes, failures = split(results)
        assert failures == []
        assert sorted(outcome.is_complete for outcome in successes) == [False, True]
        assert len(users.users) == 1
        assert users.create_calls == 1

    async def test_concurrent_completion_creates_one_user(
        self,
        service: RegistrationService,
        users: InMemoryUserRepository,
        pending: dict,
        live_code,
    ) -> None:
        """
        Submit the final channel's correct code from many clients at once.

        Attack scenario: several requests all observe a fully verified
        record and each inserts the permanent user.

        Expected defense: the completion guard admits a single creator;
        the rest are told completion is in progress or find no session.
        """
        await service.verify(EMAIL, MOBILE, "email", live_code("email", EMAIL))
        code = live_code("mobile", MOBILE)
        num_attackers = 5

        results = await asyncio.gather(
            *[service.verify(EMAIL, MOBILE, "mobile", code) for _ in range(num_attackers)],
            return_exceptions=True,
        )

        successes, failures = split(results)
        assert len(successes) == 1, (
            f"Race condition vulnerability: {len(successes)} completions succeeded "
            f"(expected exactly 1)"
        )
        assert successes[0].is_complete is True
        assert all(
            isinstance(f, (CompletionInProgress, SessionNotFound, AlreadyVerified, CodeExpired))
            for f in failures
        )
        assert users.create_calls == 1
        assert len(users.users) == 1

    async def test_same_code_redeemed_once(
        self, service: RegistrationService, pending: dict, live_code
    ) -> None:
        """
        Replay one email code concurrently.

        Expected defense: one request flips the flag and deletes the code in
        the same swap; every other request sees the channel already verified.
        """
        code = live_code("email", EMAIL)

        results = await asyncio.gather(
            *[service.verify(EMAIL, MOBILE, "email", code) for _ in range(4)],
            return_exceptions=True,
        )

        successes, failures = split(results)
        assert len(successes) == 1
        assert all(isinstance(f, (AlreadyVerified, CodeExpired)) for f in failures)
        assert live_code("email", EMAIL) is None

    async def test_replay_after_partial_verification_rejected(
        self, service: RegistrationService, pending: dict, live_code
    ) -> None:
        code = live_code("email", EMAIL)
        await service.verify(EMAIL, MOBILE, "email", code)

        with pytest.raises(AlreadyVerified):
            await service.verify(EMAIL, MOBILE, "email", code)

    async def test_concurrent_reregistration_leaves_one_session(
        self,
        service: RegistrationService,
        store: InMemoryStore,
        users: InMemoryUserRepository,
        live_code,
    ) -> None:
        """
        Register the same email repeatedly at once.

        Attack scenario: interleaved registrations leave a temporary record
        whose codes belong to a different attempt, stranding the user.

        Expected defense: the record and both codes are written in one
        batch, so the surviving session is always redeemable.
        """
        await asyncio.gather(*[service.register(**JANE) for _ in range(5)])

        assert store.peek(temp_user_key(EMAIL)) is not None
        await service.verify(EMAIL, MOBILE, "email", live_code("email", EMAIL))
        outcome = await service.verify(EMAIL, MOBILE, "mobile", live_code("mobile", MOBILE))

        assert outcome.is_complete is True
        assert len(users.users) == 1
        assert store.peek(temp_user_key(EMAIL)) is None
