"""
Token encryption — encrypt / decrypt OAuth secrets at rest.

Uses AES-256-GCM from the ``cryptography`` library.  Every call draws a
fresh 128-bit IV; the 128-bit authentication tag is checked before any
plaintext is returned.  Stored values look like::

    <ivHex>.<ciphertextHex>.<tagHex>

Decryption never raises for malformed or tampered input: it logs a
warning and returns ``""`` so a corrupted credential reads as "not
configured" instead of failing the request.
"""

from __future__ import annotations

import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

IV_BYTES = 16
TAG_BYTES = 16
KEY_BYTES = 32


class EncryptionError(Exception):
    """The cipher could not be initialised (bad key material)."""


class TokenCipher:
    """AES-256-GCM envelope encryption bound to one key."""

    def __init__(self, key: bytes) -> None:
        self._key = key

    def _aead(self) -> AESGCM:
        if len(self._key) != KEY_BYTES:
            raise EncryptionError(
                f"Encryption key must be {KEY_BYTES} bytes, got {len(self._key)}"
            )
        try:
            return AESGCM(self._key)
        except (TypeError, ValueError) as exc:
            raise EncryptionError(f"Failed to initialise AES-GCM: {exc}") from exc

    def encrypt_secret(self, plaintext: str) -> str:
        """
        Encrypt a secret for database storage.

        The empty string is returned unchanged without touching the cipher.
        """
        if plaintext == "":
            return ""

        aead = self._aead()
        iv = os.urandom(IV_BYTES)
        sealed = aead.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return ".".join((iv.hex(), ciphertext.hex(), tag.hex()))

    def decrypt_secret(self, envelope: str) -> str:
        """
        Decrypt a value produced by :meth:`encrypt_secret`.

        Returns ``""`` for empty, malformed, or tampered input.
        """
        if not envelope:
            return ""

        parts = envelope.split(".")
        if len(parts) != 3:
            logger.warning("Rejected encrypted value: expected 3 parts, got %d", len(parts))
            return ""

        try:
            iv = bytes.fromhex(parts[0])
            ciphertext = bytes.fromhex(parts[1])
            tag = bytes.fromhex(parts[2])
        except ValueError:
            logger.warning("Rejected encrypted value: malformed hex segment")
            return ""

        if len(iv) != IV_BYTES or len(tag) != TAG_BYTES:
            logger.warning("Rejected encrypted value: bad IV or tag length")
            return ""

        aead = self._aead()
        try:
            plaintext = aead.decrypt(iv, ciphertext + tag, None)
        except InvalidTag:
            logger.warning("Rejected encrypted value: authentication tag mismatch")
            return ""

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning("Rejected encrypted value: plaintext is not UTF-8")
            return ""
