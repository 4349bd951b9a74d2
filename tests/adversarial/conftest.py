"""
Shared fixtures for adversarial tests.

Provides a pending registration for race condition and brute force tests,
built on the in-memory fakes from the root conftest.
"""

import pytest

from src.domain.registration import RegistrationService
from tests.fakes import JANE


@pytest.fixture
async def pending(service: RegistrationService) -> dict[str, str]:
    """Register Jane and return the request fields."""
    await service.register(**JANE)
    return JANE


@pytest.fixture
def wrong_code(live_code):
    """A six digit code guaranteed not to match the live one."""

    def build(channel: str, identifier: str) -> str:
        return "000000" if live_code(channel, identifier) != "000000" else "111111"

    return build
