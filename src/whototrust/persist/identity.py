"""Encrypted on-disk storage of credential sets.

Each main character owns a single file, ``<data_dir>/<main_identity>_identity.enc``,
holding the encrypted JSON of its CredentialSet.
"""

import asyncio
from contextlib import asynccontextmanager
import logging
import os
from typing import AsyncIterator, Dict, Optional

from pydantic import ValidationError

from whototrust.model.credential import Credential, CredentialSet
from whototrust.persist.encrypt import CredentialCipher, IntegrityError

logger = logging.getLogger(__name__)


class CredentialStore:
    """
    Loads and persists encrypted credential sets.

    ``update`` serializes load, mutate and persist per main identity, so
    concurrent updates of the same main identity never lose each other's
    changes. Only updates made through ``update`` are serialized.

    Args:
        cipher: Cipher holding the storage key
        data_dir: Directory the credential files live in
    """

    def __init__(self, cipher: CredentialCipher, data_dir: str) -> None:
        self.cipher = cipher
        self.data_dir = data_dir
        self._locks: Dict[int, asyncio.Lock] = {}
        self._lock_users: Dict[int, int] = {}

    @staticmethod
    def _check_main_identity(main_identity: int) -> None:
        if main_identity == 0:
            raise ValueError("No main identity provided")

    @asynccontextmanager
    async def locked(self, main_identity: int) -> AsyncIterator[None]:
        """
        Hold the lock of a main identity.

        A lock only exists while some task holds it or waits on it.
        """
        lock = self._locks.setdefault(main_identity, asyncio.Lock())
        self._lock_users[main_identity] = self._lock_users.get(main_identity, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[main_identity] -= 1
            if self._lock_users[main_identity] == 0:
                del self._lock_users[main_identity]
                del self._locks[main_identity]

    def path_for(self, main_identity: int) -> str:
        return os.path.join(self.data_dir, f"{main_identity}_identity.enc")

    def load(self, main_identity: int, source: Optional[str] = None) -> CredentialSet:
        """
        Load the credential set of a main identity.

        A missing or empty file yields an empty set. A file that cannot be
        decrypted and decoded is removed.

        Raises:
            ValueError: If main_identity is 0
            IntegrityError: If the stored blob is corrupt
        """
        self._check_main_identity(main_identity)
        source = source or self.path_for(main_identity)

        if not os.path.exists(source) or os.path.getsize(source) == 0:
            logger.debug("no identity file or file is empty: %s", source)
            return CredentialSet(main_identity=main_identity)

        with open(source, "rb") as fh:
            blob = fh.read()

        try:
            plaintext = self.cipher.decrypt(blob)
            credential_set = CredentialSet.model_validate_json(plaintext)
        except (IntegrityError, ValidationError, UnicodeDecodeError) as e:
            logger.error("Unable to decrypt %s, removing it", source)
            os.remove(source)
            raise IntegrityError.undecodable(source, str(e)) from e

        return credential_set

    def persist(
        self, credential_set: CredentialSet, destination: Optional[str] = None
    ) -> None:
        """Encrypt and write a credential set. The file is only readable by its owner."""
        self._check_main_identity(credential_set.main_identity)
        destination = destination or self.path_for(credential_set.main_identity)

        directory = os.path.dirname(destination)
        if len(directory) > 0:
            os.makedirs(directory, exist_ok=True)

        blob = self.cipher.encrypt(credential_set.model_dump_json().encode("utf-8"))

        tmp_destination = f"{destination}.tmp"
        fd = os.open(tmp_destination, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as fh:
            fh.write(blob)
        os.replace(tmp_destination, destination)

    @asynccontextmanager
    async def update(self, main_identity: int) -> AsyncIterator[CredentialSet]:
        """
        Hold the lock of a main identity across load, mutation and persist.

        The set is persisted when the block exits normally and discarded when it
        raises.
        """
        self._check_main_identity(main_identity)
        async with self.locked(main_identity):
            credential_set = self.load(main_identity)
            yield credential_set
            self.persist(credential_set)

    def delete(self, main_identity: int) -> bool:
        """Remove the stored set. Returns False if there was nothing to remove."""
        self._check_main_identity(main_identity)
        try:
            os.remove(self.path_for(main_identity))
        except FileNotFoundError:
            return False
        return True

    def get_main_identity_token(self, main_identity: int) -> Optional[Credential]:
        return self.load(main_identity).tokens.get(main_identity, None)

    def load_identity_token(self, main_identity: int, character_id: int) -> Credential:
        """
        Raises:
            LookupError: If no token is stored for the character
        """
        credential = self.load(main_identity).tokens.get(character_id, None)
        if credential is None:
            raise LookupError(f"token not found for character {character_id}")
        return credential
