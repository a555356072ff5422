"""Encryption helpers for protecting marketplace tokens at rest.

:class:`TokenCipher` wraps AES-GCM with a key derived from the application
secret.

- Encryption is **authenticated** (AES-GCM) and uses a per-message nonce.
- Ciphertexts are versioned and prefixed so they can be told apart from
  legacy plain-text values already stored in the database.
- ``decrypt`` is **backwards compatible**: a value that does not look like
  a blob produced here is returned unchanged, so existing rows migrate
  lazily on their next write.

The format is:

    ENC:v1:<base64(nonce || ciphertext || tag)>

where ``nonce`` is 12 random bytes per encryption and ``ciphertext||tag`` is
produced by :class:`cryptography.hazmat.primitives.ciphers.aead.AESGCM`.
"""
from __future__ import annotations

import base64
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from omniseller.utils.logger import logger


_PREFIX = "ENC:v1:"
_NONCE_SIZE = 12  # 96-bit nonce recommended for AES-GCM
_KEY_SIZE = 32    # 256-bit AES key


def derive_key(secret: str) -> bytes:
    """Derive a stable AES-GCM key from the application secret via HKDF-SHA256."""
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=_KEY_SIZE,
        salt=None,
        info=b"omniseller-token-encryption",
    )
    return hkdf.derive(secret.encode("utf-8"))


def is_encrypted(value: Optional[str]) -> bool:
    return isinstance(value, str) and value.startswith(_PREFIX)


class TokenCipher:

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("TokenCipher requires a non-empty secret")
        self._aesgcm = AESGCM(derive_key(secret))

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        """Encrypt a string value. ``None`` and ``""`` are stored as ``None``."""
        if plaintext is None or plaintext == "":
            return None
        if not isinstance(plaintext, str):
            plaintext = str(plaintext)

        nonce = os.urandom(_NONCE_SIZE)
        ct = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), associated_data=None)
        return _PREFIX + base64.b64encode(nonce + ct).decode("ascii")

    def decrypt(self, value: Optional[str]) -> Optional[str]:
        """Decrypt a value produced by :meth:`encrypt`.

        Values without the ``ENC:v1:`` prefix are returned as-is. A prefixed
        value that cannot be decrypted (wrong key, corrupted row) also comes
        back unchanged and is logged; callers then see an unusable token and
        the marketplace rejects it, which surfaces as a per-store failure.
        """
        if value is None:
            return None
        if not is_encrypted(value):
            return value

        try:
            raw = base64.b64decode(value[len(_PREFIX):].encode("ascii"))
            if len(raw) <= _NONCE_SIZE:
                return value
            nonce, ct = raw[:_NONCE_SIZE], raw[_NONCE_SIZE:]
            return self._aesgcm.decrypt(nonce, ct, associated_data=None).decode("utf-8")
        except (InvalidTag, ValueError) as e:
            logger.error("[crypto] Token decryption failed: %s: %s", type(e).__name__, e)
            return value
