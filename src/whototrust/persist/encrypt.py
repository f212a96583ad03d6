"""AES-CFB encryption of stored credentials.

Blobs are laid out as ``IV || ciphertext`` where the IV is 16 random bytes
generated for every encryption. The encrypted plaintext is an HMAC-SHA256 tag
followed by the payload, so any change to the ciphertext is caught on decrypt.
The MAC key is derived from the AES key with HKDF.
"""

import os

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.decrepit.ciphers.modes import CFB
from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from whototrust.app.config import AES_KEY_SIZES

IV_SIZE = 16
MAC_SIZE = 32

MAC_KEY_INFO = b"whototrust credential mac"


class IntegrityError(Exception):
    """A stored credential blob could not be decrypted or decoded."""

    @staticmethod
    def too_short(size: int) -> "IntegrityError":
        return IntegrityError(
            f"error-persist-1000 Ciphertext too short: {size} bytes"
        )

    @staticmethod
    def undecodable(source: str, msg: str = "") -> "IntegrityError":
        return IntegrityError(
            f"error-persist-1001 Unable to decode credentials from {source}: {msg}"
        )

    @staticmethod
    def tag_mismatch() -> "IntegrityError":
        return IntegrityError("error-persist-1002 Integrity tag mismatch")


class CredentialCipher:
    """
    Immutable AES-CFB cipher bound to one key.

    Args:
        key: AES key of 16, 24 or 32 bytes
    """

    __slots__ = ("_key", "_mac_key")

    def __init__(self, key: bytes) -> None:
        if len(key) not in AES_KEY_SIZES:
            raise ValueError(f"Invalid AES key size: {len(key)} bytes")
        mac_key = HKDF(
            algorithm=hashes.SHA256(),
            length=MAC_SIZE,
            salt=None,
            info=MAC_KEY_INFO,
        ).derive(bytes(key))
        object.__setattr__(self, "_key", bytes(key))
        object.__setattr__(self, "_mac_key", mac_key)

    def __setattr__(self, name, value):
        raise AttributeError("CredentialCipher is immutable")

    def _tag(self, payload: bytes) -> hmac.HMAC:
        h = hmac.HMAC(self._mac_key, hashes.SHA256())
        h.update(payload)
        return h

    def encrypt(self, plaintext: bytes) -> bytes:
        iv = os.urandom(IV_SIZE)
        tag = self._tag(plaintext).finalize()
        encryptor = Cipher(algorithms.AES(self._key), CFB(iv)).encryptor()
        return iv + encryptor.update(tag + plaintext) + encryptor.finalize()

    def decrypt(self, blob: bytes) -> bytes:
        """
        Split off the IV, decrypt the remainder and verify its tag.

        Raises:
            IntegrityError: If the blob is too short to hold an IV and a tag, or
                the tag does not match the decrypted payload
        """
        if len(blob) < IV_SIZE + MAC_SIZE:
            raise IntegrityError.too_short(len(blob))
        iv, ciphertext = blob[:IV_SIZE], blob[IV_SIZE:]
        decryptor = Cipher(algorithms.AES(self._key), CFB(iv)).decryptor()
        plaintext = decryptor.update(ciphertext) + decryptor.finalize()

        tag, payload = plaintext[:MAC_SIZE], plaintext[MAC_SIZE:]
        try:
            self._tag(payload).verify(tag)
        except InvalidSignature as e:
            raise IntegrityError.tag_mismatch() from e
        return payload
