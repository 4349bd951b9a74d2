"""
Shared test fixtures and configuration.

This module provides pytest fixtures for:
- In-memory store and user repository fakes with a controllable clock
- Recording notifier and sink
- A RegistrationService wired to the fakes
"""

import pytest

from src.domain.otp import OtpService, otp_key
from src.domain.registration import RegistrationService
from tests.fakes import (
    TEST_POLICY,
    FakeClock,
    InMemoryStore,
    InMemoryUserRepository,
    RecordingNotifier,
    RecordingSink,
)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryStore:
    return InMemoryStore(clock)


@pytest.fixture
def users() -> InMemoryUserRepository:
    return InMemoryUserRepository()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def service(
    store: InMemoryStore,
    users: InMemoryUserRepository,
    notifier: RecordingNotifier,
    sink: RecordingSink,
    clock: FakeClock,
) -> RegistrationService:
    return RegistrationService(
        store=store,
        users=users,
        otp=OtpService(store, TEST_POLICY.otp_length, TEST_POLICY.otp_ttl_seconds),
        notifier=notifier,
        sink=sink,
        policy=TEST_POLICY,
        clock=clock,
    )


@pytest.fixture
def live_code(store: InMemoryStore):
    """Read the live OTP for (channel, identifier) straight from the store."""

    def read(channel: str, identifier: str) -> str | None:
        return store.peek(otp_key(channel, identifier))

    return read
