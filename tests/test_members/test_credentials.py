"""Tests for tenant credential encryption."""

import base64

import pytest

from forum_tracker.config.settings import Settings
from forum_tracker.members.credentials import (
    IV_LENGTH,
    TAG_LENGTH,
    CredentialCipher,
    CredentialError,
)

KEY = "ab" * 32


class TestCredentialCipher:
    def test_round_trip(self):
        cipher = CredentialCipher(KEY)
        assert cipher.decrypt(cipher.encrypt("forum-api-key")) == "forum-api-key"

    def test_stored_layout(self):
        token = CredentialCipher(KEY).encrypt("abc")
        raw = base64.b64decode(token)

        assert len(raw) == IV_LENGTH + TAG_LENGTH + 3

    def test_random_iv(self):
        cipher = CredentialCipher(KEY)
        assert cipher.encrypt("same") != cipher.encrypt("same")

    def test_wrong_key_fails_authentication(self):
        token = CredentialCipher(KEY).encrypt("secret")

        with pytest.raises(CredentialError, match="authentication"):
            CredentialCipher("cd" * 32).decrypt(token)

    def test_tampered_ciphertext(self):
        cipher = CredentialCipher(KEY)
        raw = bytearray(base64.b64decode(cipher.encrypt("secret")))
        raw[-1] ^= 0x01

        with pytest.raises(CredentialError):
            cipher.decrypt(base64.b64encode(bytes(raw)).decode())

    @pytest.mark.parametrize("token", ["not base64!", base64.b64encode(b"short").decode()])
    def test_malformed_tokens(self, token):
        with pytest.raises(CredentialError, match="Invalid encrypted data"):
            CredentialCipher(KEY).decrypt(token)

    @pytest.mark.parametrize("key", ["", "ab" * 16, "zz" * 32])
    def test_invalid_keys(self, key):
        with pytest.raises(CredentialError):
            CredentialCipher(key)

    def test_from_settings(self):
        assert CredentialCipher.from_settings(Settings(encryption_key=None)) is None
        assert isinstance(CredentialCipher.from_settings(Settings(encryption_key=KEY)), CredentialCipher)
