"""AES-256-GCM encryption for backend secrets at rest.

Ciphertext format: ``hex(nonce):hex(tag):hex(ciphertext)``. The nonce is 16
random bytes per call. The key is derived once from the configured secret
with scrypt and never stored underived.
"""

from __future__ import annotations

import binascii
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from core.errors import ConfigError, DecryptionError

_KEY_LENGTH = 32
_NONCE_LENGTH = 16
_TAG_LENGTH = 16
# Fixed KDF salt keeps tokens written by earlier deployments decryptable.
_KDF_SALT = b"salt"
_DELIMITER = ":"


def derive_key(secret: str) -> bytes:
    """Derive the 256-bit cipher key from the configured secret."""

    kdf = Scrypt(salt=_KDF_SALT, length=_KEY_LENGTH, n=2**14, r=8, p=1)
    return kdf.derive(secret.encode("utf-8"))


class CredentialVault:
    """Encrypts and decrypts session tokens and retained passwords."""

    def __init__(self, secret: Optional[str]) -> None:
        if not secret:
            raise ConfigError("Missing required env: RC_TOKEN_SALT")
        self._aesgcm = AESGCM(derive_key(secret))

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a non-empty string into the delimited hex format."""

        if not plaintext:
            raise ValueError("Cannot encrypt an empty value")
        nonce = os.urandom(_NONCE_LENGTH)
        sealed = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        # AESGCM appends the tag to the ciphertext; the stored format keeps it apart.
        ciphertext, tag = sealed[:-_TAG_LENGTH], sealed[-_TAG_LENGTH:]
        return _DELIMITER.join((nonce.hex(), tag.hex(), ciphertext.hex()))

    def decrypt(self, opaque: str) -> str:
        """Decrypt a value produced by encrypt().

        Raises:
            DecryptionError: malformed input, wrong key, or tampered data.
        """

        parts = opaque.split(_DELIMITER) if isinstance(opaque, str) else []
        if len(parts) != 3 or not all(parts):
            raise DecryptionError("Invalid encrypted format")

        try:
            nonce, tag, ciphertext = (bytes.fromhex(part) for part in parts)
        except (ValueError, binascii.Error) as exc:
            raise DecryptionError("Encrypted value is not valid hex") from exc

        if len(nonce) != _NONCE_LENGTH or len(tag) != _TAG_LENGTH:
            raise DecryptionError("Invalid nonce or tag length")

        try:
            plaintext = self._aesgcm.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as exc:
            raise DecryptionError("Authentication tag mismatch") from exc

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecryptionError("Decrypted value is not UTF-8") from exc
