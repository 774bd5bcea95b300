"""
AES-256-GCM encryption for tenant API keys at rest.

Stored format: base64 of IV (16 bytes) + auth tag (16 bytes) + ciphertext.
The key is a 64-character hex string (32 bytes), e.g. from
``openssl rand -hex 32``.
"""

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from forum_tracker.config.settings import Settings

IV_LENGTH = 16
TAG_LENGTH = 16


class CredentialError(Exception):
    """Missing/invalid encryption key, or a credential that cannot be decrypted."""


class CredentialCipher:
    """
    Encrypts and decrypts tenant credentials.

    Usage:
        cipher = CredentialCipher("00" * 32)
        token = cipher.encrypt("api-key")
        assert cipher.decrypt(token) == "api-key"
    """

    def __init__(self, hex_key: str):
        if len(hex_key) != 64:
            raise CredentialError("ENCRYPTION_KEY must be a 64-character hex string (32 bytes)")
        try:
            key = bytes.fromhex(hex_key)
        except ValueError as e:
            raise CredentialError(f"ENCRYPTION_KEY is not valid hex: {e}") from e
        self._aesgcm = AESGCM(key)

    @classmethod
    def from_settings(cls, settings: Settings) -> "CredentialCipher | None":
        """Build a cipher from ENCRYPTION_KEY, or None when it is unset."""
        if not settings.encryption_key:
            return None
        return cls(settings.encryption_key)

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(IV_LENGTH)
        sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        # cryptography appends the tag; the stored layout puts it after the IV
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return base64.b64encode(iv + tag + ciphertext).decode("ascii")

    def decrypt(self, token: str) -> str:
        """
        Decrypt a stored credential.

        Raises:
            CredentialError: Malformed token or authentication failure
        """
        try:
            combined = base64.b64decode(token, validate=True)
        except (binascii.Error, ValueError) as e:
            raise CredentialError(f"Invalid encrypted data: {e}") from e

        if len(combined) < IV_LENGTH + TAG_LENGTH:
            raise CredentialError("Invalid encrypted data: too short")

        iv = combined[:IV_LENGTH]
        tag = combined[IV_LENGTH : IV_LENGTH + TAG_LENGTH]
        ciphertext = combined[IV_LENGTH + TAG_LENGTH :]

        try:
            plaintext = self._aesgcm.decrypt(iv, ciphertext + tag, None)
        except InvalidTag as e:
            raise CredentialError("Credential failed authentication") from e
        return plaintext.decode("utf-8")
