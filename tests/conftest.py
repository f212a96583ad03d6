"""
Shared test configuration and fixtures for whototrust tests.

Provides settings bound to a temporary data directory, aiohttp session and
response mocks, and credential helpers used across the test files.
"""

from datetime import datetime, timedelta, timezone
import json
from typing import Any, Optional
from unittest.mock import AsyncMock

import pytest
from aiohttp import ClientResponse, ClientSession

from whototrust.app.config import Settings
from whototrust.model.credential import Credential
from whototrust.persist.encrypt import CredentialCipher
from whototrust.persist.identity import CredentialStore

TEST_SECRET_KEY = bytes(range(32))


def make_response(
    status: int = 200,
    body: Optional[Any] = None,
    text: Optional[str] = None,
) -> AsyncMock:
    """Build a mocked ClientResponse. ``body`` is JSON encoded unless it is bytes."""
    mock_response = AsyncMock(spec=ClientResponse)
    mock_response.status = status

    if isinstance(body, bytes):
        raw = body
    elif body is None:
        raw = b""
    else:
        raw = json.dumps(body).encode("utf-8")

    mock_response.read.return_value = raw
    mock_response.json.return_value = body
    mock_response.text.return_value = text if text is not None else raw.decode("utf-8")
    return mock_response


def make_credential(
    access_token: str = "access-token",
    refresh_token: str = "refresh-token",
    expires_in: int = 1200,
) -> Credential:
    return Credential(
        access_token=access_token,
        refresh_token=refresh_token,
        expiry=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    )


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings with SSO configured and storage in a temporary directory."""
    return Settings(
        eve_client_id="client-id",
        eve_client_secret="client-secret",
        eve_callback_url="http://localhost:8080/callback",
        secret_key=TEST_SECRET_KEY,
        data_dir=str(tmp_path / "data"),
        metrics_backend="none",
    )


@pytest.fixture
def mock_session():
    """Mocked aiohttp ClientSession."""
    return AsyncMock(spec=ClientSession)


@pytest.fixture
def cipher() -> CredentialCipher:
    return CredentialCipher(TEST_SECRET_KEY)


@pytest.fixture
def store(cipher, settings) -> CredentialStore:
    return CredentialStore(cipher, settings.data_dir)
