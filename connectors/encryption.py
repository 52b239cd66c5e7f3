"""
Credential encryption — encrypt / decrypt OAuth tokens at rest.

Uses AES-256-GCM from the ``cryptography`` library.  Every encryption draws
a fresh 96-bit IV, so ciphertexts are never produced twice with the same
nonce.  The master key is loaded from ``config.token_encryption_key``
(env var: ``TOKEN_ENCRYPTION_KEY``, urlsafe base64 of 32 bytes).

Two key schemes can be read back:

  • current  — the master key is used directly; ``salt`` is ``""``
  • legacy   — a per-credential key derived from the master key with
               PBKDF2-HMAC-SHA256 and the stored salt

New ciphertexts always use the current scheme.  If no key is configured an
ephemeral one is generated for the process (with a startup warning), which
means tokens do not survive a restart.  Generate a key with::

    python -c "import base64, os; print(base64.urlsafe_b64encode(os.urandom(32)).decode())"
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from connectors.errors import CredentialError
from connectors.models import EncryptedCredential

logger = logging.getLogger(__name__)

_IV_BYTES = 12
_KEY_BYTES = 32
_LEGACY_ITERATIONS = 100_000


def _b64encode(raw: bytes) -> str:
    return base64.b64encode(raw).decode()


def _b64decode(value: str) -> bytes:
    return base64.b64decode(value.encode(), validate=True)


class CredentialEncryptionService:
    """AES-GCM credential cipher.  ``init()`` must be awaited before use."""

    def __init__(self, key: Optional[str] = None) -> None:
        self._configured_key = key or ""
        self._master_key: Optional[bytes] = None

    @property
    def initialized(self) -> bool:
        return self._master_key is not None

    async def init(self) -> None:
        """Load (or generate) the master key once; later calls are no-ops."""
        if self._master_key is not None:
            return

        if not self._configured_key:
            logger.warning(
                "TOKEN_ENCRYPTION_KEY not set, using an ephemeral key; stored tokens "
                "will not be readable after a restart"
            )
            self._master_key = AESGCM.generate_key(bit_length=_KEY_BYTES * 8)
            return

        try:
            key = base64.urlsafe_b64decode(self._configured_key.encode())
        except (binascii.Error, ValueError) as exc:
            raise CredentialError(f"TOKEN_ENCRYPTION_KEY is not valid base64: {exc}") from exc
        if len(key) != _KEY_BYTES:
            raise CredentialError(
                f"TOKEN_ENCRYPTION_KEY must decode to {_KEY_BYTES} bytes, got {len(key)}"
            )
        self._master_key = key
        logger.info("Token encryption enabled (AES-256-GCM)")

    def _require_key(self) -> bytes:
        if self._master_key is None:
            raise CredentialError("CredentialEncryptionService.init() has not been awaited")
        return self._master_key

    def _key_for(self, salt: bytes) -> bytes:
        master = self._require_key()
        if not salt:
            return master
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=_KEY_BYTES,
            salt=salt,
            iterations=_LEGACY_ITERATIONS,
        )
        return kdf.derive(master)

    async def encrypt(self, plaintext: str) -> EncryptedCredential:
        """Encrypt under the current scheme with a fresh IV."""
        key = self._key_for(b"")
        iv = os.urandom(_IV_BYTES)
        ciphertext = AESGCM(key).encrypt(iv, plaintext.encode(), None)
        return EncryptedCredential(ciphertext=_b64encode(ciphertext), iv=_b64encode(iv), salt="")

    async def decrypt(self, ciphertext: str, iv: str, salt: str = "") -> str:
        """Decrypt a credential; any failure surfaces as ``CredentialError``."""
        try:
            raw_salt = _b64decode(salt) if salt else b""
            key = self._key_for(raw_salt)
            plaintext = AESGCM(key).decrypt(_b64decode(iv), _b64decode(ciphertext), None).decode()
        except CredentialError:
            raise
        except (InvalidTag, binascii.Error, ValueError) as exc:
            raise CredentialError(f"Failed to decrypt credential: {exc.__class__.__name__}") from exc
        return plaintext
