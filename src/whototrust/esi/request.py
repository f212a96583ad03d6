"""
Resilient ESI Request Engine

This module issues authenticated requests to ESI and the SSO verify endpoint.
Every call goes through the same pipeline:

1. Send the request with the bearer token and the standard ESI headers
2. Map any non-success status to a RequestError kind
3. Retry transient failures (500, 503, 504) with capped exponential backoff
   and jitter, up to ``request_max_attempts`` attempts in total
4. On a 401, refresh the credential through the TokenAuthority, overwrite the
   caller's credential in place and replay the identical request. At most
   ``request_max_token_refreshes`` refreshes happen per call; a further 401 is
   surfaced as a terminal unauthorized error.

The engine holds no per-call state between calls. The only state shared with
the caller is the Credential passed in, which is updated in place when a
refresh replaces it.
"""

import asyncio
from enum import Enum
import logging
import random
import time
from typing import Any, Iterable, List, Mapping, Optional, Tuple, Union

from aiohttp import ClientError, ClientSession, ClientTimeout, hdrs

from whototrust.app.config import Settings
from whototrust.app.metrics import MetricsClient, NoOpMetricsClient
from whototrust.esi.errors import AuthError, RequestError
from whototrust.esi.oauth import TokenAuthority
from whototrust.model.credential import Credential

logger = logging.getLogger(__name__)

QueryParams = Union[Mapping[str, Any], List[Tuple[str, Any]], None]


class TokenState(Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    REFRESH_IN_FLIGHT = "refresh_in_flight"
    FAILED = "failed"


class TokenLifecycle:
    """
    Tracks the credential of a single top-level request.

    A request starts AUTHENTICATED when it carries a credential and
    UNAUTHENTICATED otherwise. A 401 moves it to REFRESH_IN_FLIGHT and a
    successful refresh back to AUTHENTICATED. Once the refresh budget is spent,
    or a refresh fails, the lifecycle is FAILED and no further refresh happens.
    """

    def __init__(self, credential: Optional[Credential], max_refreshes: int) -> None:
        self.credential = credential
        self.max_refreshes = max_refreshes
        self.refreshes = 0
        self.state = (
            TokenState.AUTHENTICATED
            if credential is not None
            else TokenState.UNAUTHENTICATED
        )

    def can_refresh(self) -> bool:
        return (
            self.state == TokenState.AUTHENTICATED
            and self.refreshes < self.max_refreshes
        )

    def begin_refresh(self) -> None:
        self.refreshes += 1
        self.state = TokenState.REFRESH_IN_FLIGHT

    def complete_refresh(self, refreshed: Credential) -> None:
        assert self.credential is not None
        self.credential.overwrite(refreshed)
        self.state = TokenState.AUTHENTICATED

    def fail(self) -> None:
        self.state = TokenState.FAILED


class RequestEngine:
    """
    Issues ESI requests with retry, backoff and token refresh.

    Args:
        settings: Application settings holding timeouts and the retry policy
        http_session: Shared aiohttp session
        authority: Token authority used to refresh a credential after a 401. When
            None, a 401 is always terminal.
        metrics_client: Optional metrics client, defaults to a no-op client
    """

    def __init__(
        self,
        settings: Settings,
        http_session: ClientSession,
        authority: Optional[TokenAuthority] = None,
        metrics_client: Optional[MetricsClient] = None,
    ) -> None:
        self.settings = settings
        self.http_session = http_session
        self.authority = authority
        self.metrics_client = metrics_client or NoOpMetricsClient()

    def backoff_delay(self, retry: int) -> float:
        """
        Return the delay in seconds before retry number ``retry`` (1-based).

        The delay is ``min(base * 2^(retry-1), max)`` plus uniform jitter in
        ``[0, delay)``.
        """
        delay = min(
            self.settings.request_retry_base_delay * (2 ** (retry - 1)),
            self.settings.request_retry_max_delay,
        )
        return delay + random.random() * delay

    async def execute(
        self, url: str, credential: Credential, params: QueryParams = None
    ) -> bytes:
        """
        Perform an authenticated GET and return the raw response body.

        Raises:
            TransientRequestError: If every attempt failed with a transient status
            TerminalRequestError: On any other failure, including a 401 after the
                refresh budget is spent
            AuthError: If refreshing the credential after a 401 failed
        """
        return await self.send(hdrs.METH_GET, url, credential, params=params)

    async def execute_public(self, url: str, params: QueryParams = None) -> bytes:
        """Perform an unauthenticated GET. A 401 here is terminal."""
        return await self.send(hdrs.METH_GET, url, None, params=params)

    async def send(
        self,
        method: str,
        url: str,
        credential: Optional[Credential],
        params: QueryParams = None,
        json: Any = None,
        ok_statuses: Iterable[int] = (200,),
    ) -> bytes:
        """Send a request through the retry and refresh pipeline."""
        if credential is not None and len(credential.access_token) == 0:
            raise ValueError("No access token provided")

        ok_statuses = frozenset(ok_statuses)
        lifecycle = TokenLifecycle(
            credential, self.settings.request_max_token_refreshes
        )
        attempt = 1

        while True:
            try:
                return await self._attempt(
                    method, url, credential, params, json, ok_statuses
                )
            except RequestError as e:
                if e.transient and attempt < self.settings.request_max_attempts:
                    await self._backoff(attempt, method, url, e)
                    attempt += 1
                    continue

                if e.status == 401 and self.authority is not None:
                    if lifecycle.can_refresh():
                        await self._refresh(lifecycle, url)
                        continue
                    lifecycle.fail()

                raise

    async def _backoff(
        self, retry: int, method: str, url: str, error: RequestError
    ) -> None:
        delay = self.backoff_delay(retry)
        logger.warning(
            "Retrying %s %s after %s (retry %d, sleeping %.2fs)",
            method,
            url,
            error.message,
            retry,
            delay,
        )
        self.metrics_client.increment(
            "whototrust.esi.request.retry",
            1,
            tag_dict={"status": str(error.status)},
        )
        await asyncio.sleep(delay)

    async def _refresh(self, lifecycle: TokenLifecycle, url: str) -> None:
        assert self.authority is not None
        assert lifecycle.credential is not None

        lifecycle.begin_refresh()
        self.metrics_client.increment("whototrust.esi.request.refresh", 1)
        try:
            refreshed = await self.authority.refresh(
                lifecycle.credential.refresh_token
            )
        except AuthError as e:
            lifecycle.fail()
            raise AuthError.refresh_failed(e) from e

        lifecycle.complete_refresh(refreshed)
        logger.info("token refreshed for %s", url)

    async def _attempt(
        self,
        method: str,
        url: str,
        credential: Optional[Credential],
        params: QueryParams,
        json: Any,
        ok_statuses: frozenset,
    ) -> bytes:
        headers = {
            "Accept": "application/json",
            "Accept-Language": "en",
            "Cache-Control": "no-cache",
            "User-Agent": self.settings.user_agent,
        }
        if credential is not None:
            headers["Authorization"] = f"Bearer {credential.access_token}"

        timeout = ClientTimeout(total=self.settings.esi_request_timeout)
        status = "error"
        start_time = time.perf_counter()

        try:
            async with self.http_session.request(
                method,
                url,
                params=params,
                json=json,
                headers=headers,
                timeout=timeout,
            ) as resp:
                status = str(resp.status)
                if resp.status not in ok_statuses:
                    logger.warning(
                        "failed calling %s %s %s, status %d",
                        method,
                        url,
                        params,
                        resp.status,
                    )
                    raise RequestError.from_status(resp.status)
                return await resp.read()
        except (ClientError, TimeoutError) as e:
            logger.warning("failed calling %s %s: %s", method, url, e)
            raise RequestError.transport(str(e)) from e
        finally:
            self.metrics_client.timer(
                "whototrust.esi.request.time",
                time.perf_counter() - start_time,
                tag_dict={"method": method, "status": status},
            )
