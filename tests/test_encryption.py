"""Tests for token encryption at rest."""

import pytest
from cryptography.fernet import Fernet

from config.settings import config
from connectors import encryption


@pytest.fixture
def fresh_cipher(monkeypatch):
    def _use(key):
        monkeypatch.setattr(config, "token_encryption_key", key)
        encryption.reset()

    yield _use
    encryption.reset()


def test_encrypts_with_key(fresh_cipher):
    fresh_cipher(Fernet.generate_key().decode())
    ciphertext = encryption.encrypt_token("ya29.secret")
    assert ciphertext != "ya29.secret"
    assert encryption.decrypt_token(ciphertext) == "ya29.secret"
    assert encryption.is_encryption_enabled()


def test_plaintext_rows_still_readable(fresh_cipher):
    fresh_cipher(Fernet.generate_key().decode())
    assert encryption.decrypt_token("stored-before-encryption") == "stored-before-encryption"


@pytest.mark.parametrize("value", [None, ""])
def test_empty_values_pass_through(fresh_cipher, value):
    fresh_cipher(Fernet.generate_key().decode())
    assert encryption.encrypt_token(value) == value
    assert encryption.decrypt_token(value) == value


@pytest.mark.parametrize("key", ["", "not-a-fernet-key"])
def test_without_usable_key_tokens_stay_plaintext(fresh_cipher, key):
    fresh_cipher(key)
    assert not encryption.is_encryption_enabled()
    assert encryption.encrypt_token("abc") == "abc"
