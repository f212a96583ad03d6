"""
EVE SSO Token Authority

This module implements the OAuth 2.0 authorization code flow against EVE SSO.
It builds authorization URLs, exchanges authorization codes for tokens and
refreshes access tokens.

Both token operations post a form-encoded body to the SSO token endpoint using
HTTP Basic client authentication and return a new Credential. Nothing is
persisted here; callers decide where the returned credential goes.

Login state strings carry the kind of login they started. A state prefixed
with ``main-`` is a login of the main character and a state prefixed with
``character-`` adds another character under the current main character.
"""

import logging
import secrets
from typing import Optional
from urllib.parse import urlencode

from aiohttp import BasicAuth, ClientError, ClientSession, ClientTimeout, FormData
import sentry_sdk

from whototrust.app.config import ESI_SCOPES, Settings
from whototrust.app.metrics import MetricsClient, NoOpMetricsClient
from whototrust.esi.errors import AuthError
from whototrust.model.credential import Credential

logger = logging.getLogger(__name__)

MAIN_LOGIN_PREFIX = "main-"
CHARACTER_LOGIN_PREFIX = "character-"


class TokenAuthority:
    """
    Client for the EVE SSO authorization and token endpoints.

    Args:
        settings: Application settings holding the SSO client configuration
        http_session: Shared aiohttp session used for token requests
        metrics_client: Optional metrics client, defaults to a no-op client
    """

    def __init__(
        self,
        settings: Settings,
        http_session: ClientSession,
        metrics_client: Optional[MetricsClient] = None,
    ) -> None:
        self.settings = settings
        self.http_session = http_session
        self.metrics_client = metrics_client or NoOpMetricsClient()

    def authorization_url(self, state: str) -> str:
        """Return the SSO URL a user is sent to in order to authorize a character."""
        query = urlencode(
            {
                "response_type": "code",
                "client_id": self.settings.eve_client_id,
                "redirect_uri": self.settings.eve_callback_url,
                "scope": " ".join(ESI_SCOPES),
                "state": state,
            }
        )
        return f"{self.settings.sso_authorize_url}?{query}"

    @staticmethod
    def login_state(main: bool) -> str:
        prefix = MAIN_LOGIN_PREFIX if main else CHARACTER_LOGIN_PREFIX
        return f"{prefix}{secrets.token_urlsafe(16)}"

    @staticmethod
    def is_main_login(state: str) -> bool:
        return state is not None and state.startswith(MAIN_LOGIN_PREFIX)

    async def exchange(self, code: str) -> Credential:
        """
        Exchange an authorization code for a credential.

        Raises:
            AuthError: If the token endpoint answers with a non-2xx status, cannot
                be reached or returns a malformed body
        """
        data = FormData(
            {
                "grant_type": "authorization_code",
                "code": code,
            }
        )
        return await self._token_request("authorization_code", data)

    async def refresh(self, refresh_token: str) -> Credential:
        """
        Obtain a new credential from a refresh token.

        The returned credential keeps ``refresh_token`` when the token endpoint
        does not rotate it.

        Raises:
            AuthError: If the token endpoint returns a non-200 status, cannot be
                reached or returns a malformed body. A rejected request carries the
                response status and body.
        """
        if not refresh_token:
            raise AuthError.missing_refresh_token()

        data = FormData(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            }
        )
        return await self._token_request(
            "refresh_token", data, refresh_token, require_200=True
        )

    async def _token_request(
        self,
        grant_type: str,
        data: FormData,
        previous_refresh_token: str = "",
        require_200: bool = False,
    ) -> Credential:
        """Post a token grant. Any 2xx is accepted unless require_200 is set."""
        auth = BasicAuth(self.settings.eve_client_id, self.settings.eve_client_secret)
        timeout = ClientTimeout(total=self.settings.token_request_timeout)

        try:
            async with self.http_session.post(
                self.settings.sso_token_url,
                data=data,
                auth=auth,
                timeout=timeout,
            ) as resp:
                self.metrics_client.increment(
                    "whototrust.sso.token",
                    1,
                    tag_dict={"grant_type": grant_type, "status": str(resp.status)},
                )

                if require_200:
                    accepted = resp.status == 200
                else:
                    accepted = 200 <= resp.status < 300

                if not accepted:
                    body = await resp.text()
                    logger.error(
                        "Received non-OK status code %d for %s token request. Response body: %s",
                        resp.status,
                        grant_type,
                        body,
                    )
                    raise AuthError.token_rejected(resp.status, body)

                try:
                    payload = await resp.json(content_type=None)
                except ValueError as e:
                    raise AuthError.invalid_response(str(e)) from e
        except (ClientError, TimeoutError) as e:
            logger.error("Failed to make %s token request: %s", grant_type, e)
            sentry_sdk.capture_exception(e)
            raise AuthError.transport(str(e)) from e

        if not isinstance(payload, dict):
            raise AuthError.invalid_response("expected a JSON object")

        try:
            return Credential.from_token_response(payload, previous_refresh_token)
        except ValueError as e:
            raise AuthError.invalid_response(str(e)) from e
