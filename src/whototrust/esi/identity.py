"""
Identity Synchronization

This module refreshes and resolves every character authorized under a main
character. Each character is processed by its own task:

1. Refresh the character's credential unconditionally
2. Store the refreshed credential in the shared CredentialSet
3. Look up the character's corporation, verified identity and portrait
4. Record a ResolvedIdentity, or a failure if any step raised

A failing character never affects the others. Results are collected into
private maps and handed to the caller only after every task has finished.
"""

import asyncio
from dataclasses import dataclass, field
import logging
import time
from typing import Dict, Optional, Tuple

import sentry_sdk

from whototrust.app.metrics import MetricsClient, NoOpMetricsClient
from whototrust.esi.oauth import TokenAuthority
from whototrust.model.character import ResolvedIdentity, User
from whototrust.model.credential import Credential, CredentialSet
from whototrust.persist.identity import CredentialStore
from whototrust.resolve.entity import EntityResolver

logger = logging.getLogger(__name__)


class PartialBatchFailure(Exception):
    """One or more characters of a synchronization pass failed."""

    def __init__(self, failures: Dict[int, BaseException]) -> None:
        super().__init__(
            f"{len(failures)} identities failed to synchronize: {sorted(failures)}"
        )
        self.failures = failures


@dataclass
class SynchronizationResult:
    identities: Dict[int, ResolvedIdentity] = field(default_factory=dict)
    failures: Dict[int, BaseException] = field(default_factory=dict)

    def raise_for_failures(self) -> None:
        if len(self.failures) > 0:
            raise PartialBatchFailure(self.failures)


class IdentitySynchronizer:
    """
    Keeps the characters of a main identity in sync.

    Args:
        authority: Token authority used for refreshes and code exchanges
        resolver: Entity resolver used for the per-character lookups
        store: Credential store, required by the persisted operations
        metrics_client: Optional metrics client, defaults to a no-op client
    """

    def __init__(
        self,
        authority: TokenAuthority,
        resolver: EntityResolver,
        store: Optional[CredentialStore] = None,
        metrics_client: Optional[MetricsClient] = None,
    ) -> None:
        self.authority = authority
        self.resolver = resolver
        self.store = store
        self.metrics_client = metrics_client or NoOpMetricsClient()

    def _require_store(self) -> CredentialStore:
        if self.store is None:
            raise ValueError("No credential store configured")
        return self.store

    async def synchronize_all(
        self, credential_set: CredentialSet
    ) -> SynchronizationResult:
        """
        Refresh and resolve every character in ``credential_set`` concurrently.

        Refreshed credentials are written back into ``credential_set.tokens``.
        A character whose refresh fails keeps the credential it had before the
        pass. Every failed character appears in ``SynchronizationResult.failures``.
        """
        lock = asyncio.Lock()
        identities: Dict[int, ResolvedIdentity] = {}
        failures: Dict[int, BaseException] = {}

        start_time = time.perf_counter()
        async with asyncio.TaskGroup() as tg:
            for identity_id, credential in list(credential_set.tokens.items()):
                tg.create_task(
                    self._synchronize_identity(
                        identity_id,
                        credential,
                        credential_set,
                        lock,
                        identities,
                        failures,
                    )
                )

        self.metrics_client.timer(
            "whototrust.sync.time", time.perf_counter() - start_time
        )
        self.metrics_client.gauge("whototrust.sync.identity.total", len(identities))
        self.metrics_client.gauge("whototrust.sync.identity.failed", len(failures))

        return SynchronizationResult(identities=identities, failures=failures)

    async def _synchronize_identity(
        self,
        identity_id: int,
        credential: Credential,
        credential_set: CredentialSet,
        lock: asyncio.Lock,
        identities: Dict[int, ResolvedIdentity],
        failures: Dict[int, BaseException],
    ) -> None:
        try:
            resolved = await self._resolve_identity(
                identity_id, credential, credential_set, lock
            )
        except Exception as e:
            logger.exception(
                "Failed to process identity for character %d", identity_id
            )
            sentry_sdk.capture_exception(e)
            self.metrics_client.increment(
                "whototrust.sync.identity.exception",
                1,
                tag_dict={"exception": type(e).__name__},
            )
            async with lock:
                failures[identity_id] = e
            return

        async with lock:
            identities[identity_id] = resolved

    async def _resolve_identity(
        self,
        identity_id: int,
        credential: Credential,
        credential_set: CredentialSet,
        lock: asyncio.Lock,
    ) -> ResolvedIdentity:
        refreshed = await self.authority.refresh(credential.refresh_token)

        async with lock:
            credential_set.tokens[identity_id] = refreshed

        # A 401 during these lookups overwrites ``refreshed`` in place.
        corporation_id = await self.resolver.get_character_corporation(
            identity_id, refreshed
        )
        user = await self.resolver.get_user_info(refreshed)
        portrait_url = await self.resolver.get_character_portrait(identity_id)

        async with lock:
            credential_set.tokens[identity_id] = refreshed

        return ResolvedIdentity(
            identity_id=identity_id,
            character_name=user.character_name,
            corporation_id=corporation_id,
            portrait_url=portrait_url,
            credential=refreshed,
        )

    async def synchronize_persisted(self, main_identity: int) -> SynchronizationResult:
        """Load, synchronize and persist the characters of a main identity as one unit."""
        store = self._require_store()
        async with store.update(main_identity) as credential_set:
            return await self.synchronize_all(credential_set)

    async def authorize(
        self, code: str, state: str, main_identity: int = 0
    ) -> Tuple[int, User]:
        """
        Complete an SSO login.

        Exchanges ``code`` for a credential, verifies which character it belongs to
        and stores it under the main identity. A ``main-`` login makes the verified
        character the main identity; any other login adds the character under
        ``main_identity``.

        Returns:
            The main identity the credential was stored under and the verified user

        Raises:
            AuthError: If the code exchange fails
            ValueError: If no main identity is known for a character login
        """
        store = self._require_store()

        credential = await self.authority.exchange(code)
        user = await self.resolver.get_user_info(credential)

        if TokenAuthority.is_main_login(state):
            main_identity = user.character_id

        if not main_identity:
            raise ValueError("main identity not found")

        async with store.update(main_identity) as credential_set:
            credential_set.tokens[user.character_id] = credential

        logger.info("%d logged in under %d", user.character_id, main_identity)
        self.metrics_client.increment(
            "whototrust.sync.authorize",
            1,
            tag_dict={"main": str(TokenAuthority.is_main_login(state))},
        )
        return main_identity, user

    async def reset(self, main_identity: int) -> bool:
        """Forget every character authorized under ``main_identity``."""
        store = self._require_store()
        async with store.locked(main_identity):
            deleted = store.delete(main_identity)
        if not deleted:
            logger.info("No identities stored for %d", main_identity)
        return deleted
