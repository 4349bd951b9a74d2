"""
Unit tests for settings, logging configuration and adapter selection.
"""

from unittest.mock import MagicMock, patch

import pytest
from pydantic import ValidationError

from src.adapters.factory import build_notification_service, build_sink
from src.adapters.queue import QueuedSink
from src.adapters.sms import ConsoleSMSProvider, TwilioSMSProvider
from src.adapters.smtp import ConsoleEmailProvider, SmtpEmailProvider
from src.config.logging import build_logging_config, configure_logging
from src.config.settings import Settings
from src.domain.notifications import SynchronousSink
from tests.fakes import RecordingNotifier


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings(_env_file=None)

        assert settings.temp_user_ttl_seconds == 900
        assert settings.otp_ttl_seconds == 300
        assert settings.max_otp_attempts == 3
        assert settings.notification_mode == "sync"
        assert settings.broker_url == settings.redis_url

    def test_environment_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OTP_RESEND_COOLDOWN_SECONDS", "120")
        monkeypatch.setenv("NOTIFICATION_MODE", "queued")

        settings = Settings(_env_file=None)

        assert settings.otp_resend_cooldown_seconds == 120
        assert settings.notification_mode == "queued"

    def test_record_ttl_shorter_than_otp_ttl_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, temp_user_ttl_seconds=60, otp_ttl_seconds=300)

    def test_registration_policy_mirrors_settings(self) -> None:
        policy = Settings(_env_file=None, max_otp_attempts=5, bcrypt_cost=12).registration_policy()

        assert policy.max_otp_attempts == 5
        assert policy.bcrypt_cost == 12
        assert policy.resend_cooldown_seconds == 60

    def test_rate_limit_policy_per_route(self) -> None:
        settings = Settings(_env_file=None)

        register = settings.rate_limit_policy("register")
        machine_id = settings.rate_limit_policy("machine-id")

        assert (register.limit, register.window, register.require_identity) == (3, 300, True)
        assert machine_id.require_identity is False
        assert settings.rate_limit_policy("unknown").limit == 5


class TestLogging:
    def test_config_level(self) -> None:
        config = build_logging_config("debug")

        assert config["root"]["level"] == "DEBUG"
        assert config["disable_existing_loggers"] is False
        assert set(config["formatters"]) == {"verbose"}

    def test_configure_logging_applies_config(self) -> None:
        with patch("src.config.logging.logging.config.dictConfig") as dict_config:
            configure_logging("warning")

        dict_config.assert_called_once_with(build_logging_config("WARNING"))


class TestAdapterFactory:
    def test_console_providers_by_default(self) -> None:
        service = build_notification_service(Settings(_env_file=None))

        assert isinstance(service.email_provider, ConsoleEmailProvider)
        assert isinstance(service.sms_provider, ConsoleSMSProvider)

    def test_configured_providers(self) -> None:
        settings = Settings(
            _env_file=None,
            email_provider="smtp",
            smtp_host="smtp.example.com",
            sms_provider="twilio",
            twilio_account_sid="AC1",
            twilio_auth_token="token",
            twilio_from_number="+15550001111",
        )

        service = build_notification_service(settings)

        assert isinstance(service.email_provider, SmtpEmailProvider)
        assert isinstance(service.sms_provider, TwilioSMSProvider)

    def test_sync_mode_builds_synchronous_sink(self) -> None:
        sink = build_sink(Settings(_env_file=None), RecordingNotifier())

        assert isinstance(sink, SynchronousSink)

    def test_queued_mode_builds_queued_sink(self) -> None:
        settings = Settings(_env_file=None, notification_mode="queued")

        sink = build_sink(
            settings, RecordingNotifier(), celery_app=MagicMock(), tracker=MagicMock()
        )

        assert isinstance(sink, QueuedSink)

    def test_queued_mode_requires_celery_app(self) -> None:
        settings = Settings(_env_file=None, notification_mode="queued")

        with pytest.raises(ValueError):
            build_sink(settings, RecordingNotifier())
