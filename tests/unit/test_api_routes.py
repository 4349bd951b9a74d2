"""
Unit tests for API v1 routes.

Drives the HTTP surface through TestClient against a RegistrationService
wired to the in-memory fakes, so status codes, envelopes and rate limit
headers are checked end to end.
"""

import asyncio
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.requests import Request

from src.api.dependencies import get_client_ip, get_registration_service
from src.api.error_handlers import register_error_handlers
from src.api.v1 import router
from src.config.settings import Settings
from src.domain.exceptions import DatabaseUnavailable
from src.domain.machine_identity import MachineIdentityRegistry
from src.domain.models import RegistrationPolicy
from src.domain.otp import OtpService, otp_key
from src.domain.rate_limit import RateLimiter
from src.domain.registration import RegistrationService
from tests.fakes import (
    JANE,
    InMemoryStore,
    InMemoryUserRepository,
    RecordingNotifier,
    RecordingSink,
)


@pytest.fixture
def app(service: RegistrationService, store: InMemoryStore) -> FastAPI:
    """Create test FastAPI application."""
    test_app = FastAPI()
    register_error_handlers(test_app)
    test_app.include_router(router, prefix="/v1")

    test_app.state.settings = Settings(_env_file=None)
    test_app.state.store = store
    test_app.state.registration_service = service
    test_app.state.machine_registry = MachineIdentityRegistry(store)
    test_app.state.rate_limiter = RateLimiter(store)
    return test_app


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    """Create test client for the application."""
    return TestClient(app)


@pytest.fixture
def headers() -> dict[str, str]:
    return {"x-machine-id": str(uuid.uuid4())}


def register(client: TestClient, headers: dict, **overrides):
    return client.post("/v1/auth/register", json={**JANE, **overrides}, headers=headers)


def verify(client: TestClient, headers: dict, channel: str, otp: str):
    return client.post(
        "/v1/auth/verify-otp",
        json={
            "email": JANE["email"],
            "mobile_no": JANE["mobile_no"],
            "type": channel,
            "otp": otp,
        },
        headers=headers,
    )


class TestMachineIdEndpoint:
    """Tests for GET /v1/auth/machine-id."""

    def test_mints_identity_without_header(self, client: TestClient) -> None:
        response = client.get("/v1/auth/machine-id")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert uuid.UUID(body["data"]["machineId"])

    def test_known_identity_echoed(self, client: TestClient) -> None:
        machine_id = client.get("/v1/auth/machine-id").json()["data"]["machineId"]

        response = client.get("/v1/auth/machine-id", headers={"x-machine-id": machine_id})

        assert response.json()["data"]["machineId"] == machine_id


class TestRegisterEndpoint:
    """Tests for POST /v1/auth/register."""

    def test_register_success_returns_201(self, client: TestClient, headers: dict) -> None:
        response = register(client, headers)

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["data"] == {
            "email": "jane@x.com",
            "mobile_no": "9876543210",
            "verification_required": ["email", "mobile"],
            "otp_expires_in_seconds": 300,
        }
        assert response.headers["X-RateLimit-Limit"] == "3"
        assert response.headers["X-RateLimit-Remaining"] == "2"

    def test_missing_machine_id_returns_400(self, client: TestClient) -> None:
        response = register(client, {})

        assert response.status_code == 400
        assert response.json()["code"] == "MACHINE_ID_MISSING"

    def test_weak_password_returns_422(self, client: TestClient, headers: dict) -> None:
        response = register(client, headers, password="password123")

        assert response.status_code == 422

    def test_invalid_mobile_returns_422(self, client: TestClient, headers: dict) -> None:
        response = register(client, headers, mobile_no="12345")

        assert response.status_code == 422

    def test_invalid_name_returns_422(self, client: TestClient, headers: dict) -> None:
        response = register(client, headers, name="J4ne<script>")

        assert response.status_code == 422

    def test_conflict_returns_409(
        self, client: TestClient, headers: dict, users: InMemoryUserRepository
    ) -> None:
        asyncio.run(users.create("Old", "jane@x.com", "9000000000", "hash"))

        response = register(client, headers)

        assert response.status_code == 409
        assert response.json() == {
            "success": False,
            "message": "User registration failed.",
            "code": "USER_EXISTS",
            "details": {"field": "email"},
        }

    def test_rate_limit_returns_429(self, client: TestClient, headers: dict) -> None:
        for _ in range(3):
            assert register(client, headers).status_code == 201

        response = register(client, headers)

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "300"
        assert response.json()["code"] == "RATE_LIMIT_EXCEEDED"


class TestVerifyEndpoint:
    """Tests for POST /v1/auth/verify-otp."""

    def test_partial_then_complete(
        self, client: TestClient, headers: dict, store: InMemoryStore
    ) -> None:
        register(client, headers)
        email_code = store.peek(otp_key("email", "jane@x.com"))
        mobile_code = store.peek(otp_key("mobile", "9876543210"))

        partial = verify(client, headers, "email", email_code)
        complete = verify(client, headers, "mobile", mobile_code)

        assert partial.status_code == 200
        assert partial.json()["message"] == "email verified successfully"
        assert partial.json()["data"]["is_complete"] is False
        assert complete.json()["message"] == "Registration completed successfully"
        user = complete.json()["data"]["user"]
        assert user["email"] == "jane@x.com"
        assert user["role"] == "user"
        assert "password" not in user

    def test_wrong_code_returns_400(
        self, client: TestClient, headers: dict, store: InMemoryStore
    ) -> None:
        register(client, headers)
        code = store.peek(otp_key("email", "jane@x.com"))
        wrong = "000000" if code != "000000" else "111111"

        response = verify(client, headers, "email", wrong)

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_OTP"
        assert response.json()["details"]["remaining_attempts"] == 2

    def test_unknown_session_returns_404(self, client: TestClient, headers: dict) -> None:
        response = verify(client, headers, "email", "123456")

        assert response.status_code == 404
        assert response.json()["code"] == "SESSION_NOT_FOUND"

    def test_malformed_otp_returns_422(self, client: TestClient, headers: dict) -> None:
        response = verify(client, headers, "email", "12ab")

        assert response.status_code == 422

    def test_configured_code_length_accepted(
        self,
        app: FastAPI,
        client: TestClient,
        headers: dict,
        store: InMemoryStore,
        users: InMemoryUserRepository,
        notifier: RecordingNotifier,
        sink: RecordingSink,
    ) -> None:
        """Codes are validated as digits only; their length comes from configuration."""
        app.state.registration_service = RegistrationService(
            store=store,
            users=users,
            otp=OtpService(store, length=4, ttl_seconds=300),
            notifier=notifier,
            sink=sink,
            policy=RegistrationPolicy(otp_length=4, bcrypt_cost=4),
        )
        register(client, headers)
        code = store.peek(otp_key("email", "jane@x.com"))

        response = verify(client, headers, "email", code)

        assert len(code) == 4
        assert response.status_code == 200
        assert response.json()["data"]["email_verified"] is True

    def test_store_outage_returns_503(
        self, client: TestClient, headers: dict, store: InMemoryStore
    ) -> None:
        register(client, headers)
        store.fail = True

        response = verify(client, headers, "email", "123456")

        assert response.status_code == 503
        assert response.json()["code"] == "STORE_UNAVAILABLE"


class TestResendEndpoint:
    """Tests for POST /v1/auth/resend-otp."""

    def test_resend_then_cooldown(self, client: TestClient, headers: dict) -> None:
        register(client, headers)
        payload = {"email": JANE["email"], "mobile_no": JANE["mobile_no"]}

        first = client.post("/v1/auth/resend-otp", json=payload, headers=headers)
        second = client.post("/v1/auth/resend-otp", json=payload, headers=headers)

        assert first.status_code == 200
        assert first.json()["data"]["channels"] == ["email", "mobile"]
        assert [d["success"] for d in first.json()["data"]["deliveries"]] == [True, True]
        assert second.status_code == 429
        assert second.json()["code"] == "COOLDOWN_ACTIVE"
        assert second.headers["Retry-After"] == "60"


class TestDatabaseErrors:
    def test_database_outage_returns_503(
        self, client: TestClient, headers: dict, users: InMemoryUserRepository
    ) -> None:
        users.check_conflict = AsyncMock(side_effect=DatabaseUnavailable())

        response = register(client, headers)

        assert response.status_code == 503
        assert response.json()["code"] == "DATABASE_UNAVAILABLE"


class TestUnhandledErrors:
    def test_unexpected_error_returns_generic_500(self, app: FastAPI, headers: dict) -> None:
        broken = MagicMock(spec=RegistrationService)
        broken.register = AsyncMock(side_effect=RuntimeError("db password is hunter2"))
        app.dependency_overrides[get_registration_service] = lambda: broken
        client = TestClient(app, raise_server_exceptions=False)

        try:
            response = register(client, headers)
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 500
        assert response.json()["code"] == "INTERNAL_ERROR"
        assert "hunter2" not in response.text


def make_request(headers: dict[str, str], peer: str | None = "10.0.0.9") -> Request:
    scope = {
        "type": "http",
        "headers": [(k.encode(), v.encode()) for k, v in headers.items()],
        "client": (peer, 5000) if peer else None,
    }
    return Request(scope)


class TestClientIp:
    def test_forwarded_for_first_hop(self) -> None:
        request = make_request({"x-forwarded-for": "1.1.1.1, 2.2.2.2", "x-real-ip": "3.3.3.3"})
        assert get_client_ip(request) == "1.1.1.1"

    def test_real_ip(self) -> None:
        assert get_client_ip(make_request({"x-real-ip": "3.3.3.3"})) == "3.3.3.3"

    def test_peer_with_mapped_prefix_stripped(self) -> None:
        assert get_client_ip(make_request({}, peer="::ffff:10.0.0.1")) == "10.0.0.1"

    def test_localhost_fallback(self) -> None:
        assert get_client_ip(make_request({}, peer=None)) == "::1"
