"""
Configuration Module for whototrust

This module defines the configuration system using Pydantic settings. Values are
loaded from environment variables with defaults suitable for local development.

Key configuration areas include:
- EVE SSO application credentials and endpoints
- ESI request timeouts, retry and backoff policy
- Credential encryption key and storage location
- Error reporting and metrics
"""

import base64
import os
from typing import Optional
import logging
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


logger = logging.getLogger(__name__)

AES_KEY_SIZES = (16, 24, 32)

ESI_SCOPES = (
    "publicData",
    "esi-search.search_structures.v1",
    "esi-characters.write_contacts.v1",
)
"""Scopes requested for every character authorization."""


def generate_secret_key() -> bytes:
    return os.urandom(32)


class Settings(BaseSettings):
    """
    Application settings for whototrust.

    Environment variables are mapped to fields by name, case-insensitively. For
    example, the SSO application id is read from EVE_CLIENT_ID and the encryption
    key from SECRET_KEY.
    """

    debug: bool = False
    """
    Enable debug mode for verbose logging.
    Set with DEBUG=true environment variable.
    """

    # EVE SSO application
    eve_client_id: str = ""
    """
    Client id of the EVE developer application.
    Set with EVE_CLIENT_ID environment variable.
    """

    eve_client_secret: str = ""
    """
    Client secret of the EVE developer application.
    Set with EVE_CLIENT_SECRET environment variable.
    """

    eve_callback_url: str = ""
    """
    Redirect URL registered with the EVE developer application.
    Set with EVE_CALLBACK_URL environment variable.
    """

    sso_authorize_url: str = "https://login.eveonline.com/v2/oauth/authorize"
    sso_token_url: str = "https://login.eveonline.com/v2/oauth/token"
    sso_verify_url: str = "https://login.eveonline.com/oauth/verify"

    esi_base_url: str = "https://esi.evetech.net/latest"
    esi_datasource: str = "tranquility"

    user_agent: str = "whototrust (https://github.com/gambtho/whototrust)"
    """User-Agent sent with every ESI request."""

    # Timeouts
    token_request_timeout: float = 10.0
    """
    Total timeout in seconds for token endpoint requests.
    Set with TOKEN_REQUEST_TIMEOUT environment variable.
    """

    esi_request_timeout: float = 30.0
    """
    Total timeout in seconds for ESI requests.
    Set with ESI_REQUEST_TIMEOUT environment variable.
    """

    # Retry policy
    request_max_attempts: int = 5
    """
    Maximum attempts for a request failing with a transient status.
    Set with REQUEST_MAX_ATTEMPTS environment variable.
    """

    request_retry_base_delay: float = 1.0
    """
    Base delay in seconds for exponential backoff.
    Actual delay before retry i = min(base * 2^(i-1), max) plus jitter in [0, delay).
    Set with REQUEST_RETRY_BASE_DELAY environment variable.
    """

    request_retry_max_delay: float = 32.0
    """
    Upper bound in seconds for the backoff delay before jitter.
    Set with REQUEST_RETRY_MAX_DELAY environment variable.
    """

    request_max_token_refreshes: int = 1
    """
    Number of refresh-and-replay cycles a single request may perform after a 401.
    Set with REQUEST_MAX_TOKEN_REFRESHES environment variable.
    """

    # Credential storage
    secret_key: bytes = Field(default_factory=generate_secret_key)
    """
    AES key (16, 24 or 32 bytes) used to encrypt stored credentials.
    Set with SECRET_KEY environment variable as a base64-encoded string. A random
    key is generated when unset, which makes stored credentials unreadable after
    a restart.
    """

    data_dir: str = "data"
    """
    Directory holding one encrypted credential file per main character.
    Set with DATA_DIR environment variable.
    """

    # Monitoring
    sentry_dsn: Optional[str] = None
    """
    Sentry DSN for error reporting. Optional, no error reporting if not set.
    Set with SENTRY_DSN environment variable.
    """

    metrics_backend: str = "none"
    """
    Metrics backend, either 'telegraf' or 'none'.
    Set with METRICS_BACKEND environment variable.
    """

    statsd_host: str = Field(alias="TELEGRAF_HOST", default="telegraf")
    statsd_port: int = Field(alias="TELEGRAF_PORT", default=8125)

    @property
    def oauth_configured(self) -> bool:
        return bool(
            self.eve_client_id and self.eve_client_secret and self.eve_callback_url
        )

    @field_validator("secret_key", mode="before")
    @classmethod
    def decode_secret_key(cls, v) -> bytes:
        """
        Validate and process the secret_key setting.

        This validator accepts either:
        - Raw key bytes (for programmatic configuration)
        - A base64-encoded string containing the key

        Raises:
            ValueError: If the value cannot be decoded or has an invalid AES key length
        """
        if isinstance(v, str):
            try:
                v = base64.b64decode(v, validate=True)
            except ValueError as e:
                raise ValueError("secret_key must be a base64-encoded string") from e
        if not isinstance(v, (bytes, bytearray)):
            raise ValueError("secret_key must be bytes or a base64-encoded string")
        if len(v) not in AES_KEY_SIZES:
            raise ValueError(
                f"secret_key must decode to {AES_KEY_SIZES} bytes, got {len(v)}"
            )
        return bytes(v)

    @field_validator("metrics_backend")
    @classmethod
    def validate_metrics_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in ("telegraf", "none"):
            raise ValueError("metrics_backend must be 'telegraf' or 'none'")
        return v
