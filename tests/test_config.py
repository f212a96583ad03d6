"""
Unit tests for whototrust.app.config

Tests cover secret key decoding, generated keys, metrics backend validation and
environment loading.
"""

import base64

import pytest
from pydantic import ValidationError

from whototrust.app.config import Settings


class TestSecretKey:
    """Test suite for the secret_key setting."""

    def test_base64_key(self):
        key = bytes(range(32))
        settings = Settings(secret_key=base64.b64encode(key).decode("ascii"))
        assert settings.secret_key == key

    def test_raw_key(self):
        settings = Settings(secret_key=b"k" * 16)
        assert settings.secret_key == b"k" * 16

    def test_generated_key(self):
        """Test an unset key is generated and marked as not explicitly set."""
        settings = Settings()
        assert len(settings.secret_key) == 32
        assert "secret_key" not in settings.model_fields_set
        assert Settings().secret_key != settings.secret_key

    def test_invalid_base64(self):
        with pytest.raises(ValidationError):
            Settings(secret_key="not base64!")

    def test_invalid_length(self):
        with pytest.raises(ValidationError):
            Settings(secret_key=base64.b64encode(b"short").decode("ascii"))

    def test_from_environment(self, monkeypatch):
        key = bytes(range(24))
        monkeypatch.setenv("SECRET_KEY", base64.b64encode(key).decode("ascii"))
        monkeypatch.setenv("EVE_CLIENT_ID", "env-client")
        settings = Settings()
        assert settings.secret_key == key
        assert settings.eve_client_id == "env-client"


class TestSettings:
    """Test suite for the remaining settings."""

    def test_defaults(self):
        settings = Settings()
        assert settings.request_max_attempts == 5
        assert settings.request_retry_base_delay == 1.0
        assert settings.request_retry_max_delay == 32.0
        assert settings.request_max_token_refreshes == 1
        assert settings.token_request_timeout == 10.0
        assert settings.esi_datasource == "tranquility"

    def test_metrics_backend_normalized(self):
        assert Settings(metrics_backend="TELEGRAF").metrics_backend == "telegraf"

    def test_metrics_backend_invalid(self):
        with pytest.raises(ValidationError):
            Settings(metrics_backend="prometheus")

    def test_oauth_configured(self):
        assert Settings(eve_client_id="", eve_client_secret="").oauth_configured is False
        assert (
            Settings(
                eve_client_id="id",
                eve_client_secret="secret",
                eve_callback_url="http://localhost/callback",
            ).oauth_configured
            is True
        )
