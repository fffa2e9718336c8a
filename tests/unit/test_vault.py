"""Unit tests for the credential vault."""

import base64

import pytest

from backend.core import vault as vault_module
from backend.core.vault import DECRYPT_FAILED, MASK, Vault


class TestRoundTrip:

    @pytest.mark.parametrize("key", [
        "sk-proj-abc123",
        "AIzaSyD-0123456789abcdefghijklmnop",
        "k",
        "x" * 300,
        "密钥-ключ-🔑",
    ])
    def test_decrypt_inverts_encrypt(self, vault, key):
        assert vault.decrypt(vault.encrypt(key)) == key

    def test_ciphertext_is_salted_and_random(self, vault):
        first = vault.encrypt("sk-test")
        second = vault.encrypt("sk-test")
        assert first != second
        assert first.startswith("U2FsdGVkX1")
        assert base64.b64decode(first)[:8] == b"Salted__"

    def test_plaintext_not_in_ciphertext(self, vault):
        assert "sk-secret" not in vault.encrypt("sk-secret")

    def test_empty_plaintext_rejected(self, vault):
        with pytest.raises(ValueError) as exc:
            vault.encrypt("")
        assert "sk-" not in str(exc.value)

    def test_empty_secret_rejected(self):
        with pytest.raises(ValueError):
            Vault("")

    def test_ciphertext_layout(self):
        v = Vault("client-secret")
        material = v.encrypt("hello")
        raw = base64.b64decode(material)
        assert len(raw) == 8 + 8 + 16


class TestExternalCiphertext:

    # openssl enc -aes-256-cbc -md md5 -a -pass pass:client-secret
    OPENSSL_MATERIAL = "U2FsdGVkX199HX/dDU9VmY2sleu84E1i9cU805eCOwLPCRLjQfYMp7Ne7u6tHyC5"

    def test_decrypts_openssl_output(self):
        assert Vault("client-secret").decrypt(self.OPENSSL_MATERIAL) == "sk-test-1234567890abcdef"

    def test_other_secret_cannot_read_it(self, vault):
        assert vault.decrypt(self.OPENSSL_MATERIAL) == ""


class TestDecryptRobustness:

    @pytest.mark.parametrize("material", [
        "",
        "not base64 at all!!",
        "aGVsbG8=",
        base64.b64encode(b"Salted__12345678").decode(),
        base64.b64encode(b"Salted__12345678" + b"\x00" * 15).decode(),
    ])
    def test_malformed_returns_empty(self, vault, material):
        assert vault.decrypt(material) == ""

    def test_wrong_secret_does_not_recover_key(self, vault):
        material = vault.encrypt("sk-abcdef")
        assert Vault("other-secret").decrypt(material) != "sk-abcdef"

    def test_none_returns_empty(self, vault):
        assert vault.decrypt(None) == ""


class TestMask:

    def test_hidden_by_default(self, vault):
        assert vault.mask(vault.encrypt("sk-abc")) == MASK
        assert len(MASK) == 20

    def test_reveal(self, vault):
        assert vault.mask(vault.encrypt("sk-abc"), reveal=True) == "sk-abc"

    def test_reveal_unreadable(self, vault):
        assert vault.mask("garbage", reveal=True) == DECRYPT_FAILED


class TestModuleVault:

    def test_configure_sets_default(self):
        vault_module.configure("module-secret")
        material = vault_module.encrypt("sk-module")
        assert Vault("module-secret").decrypt(material) == "sk-module"
        assert vault_module.decrypt(material) == "sk-module"
        assert vault_module.mask(material) == MASK
