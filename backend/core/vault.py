"""Symmetric encryption of provider API keys for at-rest storage on the client.

Ciphertext uses the OpenSSL passphrase format that CryptoJS.AES emits:
base64("Salted__" + 8-byte salt + AES-256-CBC(PKCS7(plaintext))), with key
and IV derived by EVP_BytesToKey (MD5, one round). Keys saved by a browser
client with the same passphrase therefore decrypt here unchanged.

Decryption never raises: anything unreadable comes back as "" and the
caller decides whether a missing key is fatal.
"""

import base64
import binascii
import hashlib
import os

import structlog
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from backend.core.errors import DecryptionError
from backend.core.settings import DEFAULT_VAULT_SECRET

logger = structlog.get_logger(__name__)

_MAGIC = b"Salted__"
_SALT_LEN = 8
_KEY_LEN = 32
_IV_LEN = 16
_BLOCK_BITS = 128

MASK = "•" * 20
DECRYPT_FAILED = "解密失败"


def _evp_bytes_to_key(passphrase: bytes, salt: bytes) -> tuple[bytes, bytes]:
    """OpenSSL EVP_BytesToKey with MD5 and a single iteration."""
    derived = b""
    block = b""
    while len(derived) < _KEY_LEN + _IV_LEN:
        block = hashlib.md5(block + passphrase + salt).digest()
        derived += block
    return derived[:_KEY_LEN], derived[_KEY_LEN:_KEY_LEN + _IV_LEN]


class Vault:
    """Encrypts and decrypts API keys with one shared passphrase."""

    def __init__(self, secret: str = DEFAULT_VAULT_SECRET):
        if not secret:
            raise ValueError("Vault secret must not be empty")
        self._secret = secret.encode("utf-8")

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a non-empty API key.

        Args:
            plaintext: The raw key as typed by the user.

        Returns:
            Base64 ciphertext in the OpenSSL "Salted__" format.

        Raises:
            ValueError: If plaintext is empty. The message never echoes input.
        """
        if not plaintext:
            raise ValueError("Cannot encrypt an empty API key")

        salt = os.urandom(_SALT_LEN)
        key, iv = _evp_bytes_to_key(self._secret, salt)

        padder = padding.PKCS7(_BLOCK_BITS).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return base64.b64encode(_MAGIC + salt + ciphertext).decode("ascii")

    def decrypt(self, material: str) -> str:
        """Decrypt key material, returning "" when it is unreadable."""
        try:
            return self._decrypt(material)
        except DecryptionError as e:
            logger.debug("vault.decrypt_failed", reason=str(e))
            return ""

    def mask(self, material: str, reveal: bool = False) -> str:
        """Display form of a stored key: bullets, or the plaintext when revealed."""
        if not reveal:
            return MASK
        return self.decrypt(material) or DECRYPT_FAILED

    def _decrypt(self, material: str) -> str:
        if not isinstance(material, str) or not material:
            raise DecryptionError("empty material")

        try:
            raw = base64.b64decode(material.strip(), validate=True)
        except (binascii.Error, ValueError):
            raise DecryptionError("not base64")

        if not raw.startswith(_MAGIC):
            raise DecryptionError("missing salt header")

        salt = raw[len(_MAGIC):len(_MAGIC) + _SALT_LEN]
        ciphertext = raw[len(_MAGIC) + _SALT_LEN:]
        if len(salt) != _SALT_LEN or not ciphertext or len(ciphertext) % _IV_LEN:
            raise DecryptionError("truncated ciphertext")

        key, iv = _evp_bytes_to_key(self._secret, salt)
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()

        unpadder = padding.PKCS7(_BLOCK_BITS).unpadder()
        try:
            plaintext = unpadder.update(padded) + unpadder.finalize()
        except ValueError:
            raise DecryptionError("bad padding (wrong secret?)")

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise DecryptionError("plaintext is not utf-8")


_default_vault: Vault | None = None


def configure(secret: str) -> Vault:
    """Replace the module-level vault used by encrypt/decrypt/mask."""
    global _default_vault
    _default_vault = Vault(secret)
    return _default_vault


def get_vault() -> Vault:
    global _default_vault
    if _default_vault is None:
        _default_vault = Vault(os.environ.get("VAULT_SECRET", "") or DEFAULT_VAULT_SECRET)
    return _default_vault


def encrypt(plaintext: str) -> str:
    return get_vault().encrypt(plaintext)


def decrypt(material: str) -> str:
    return get_vault().decrypt(material)


def mask(material: str, reveal: bool = False) -> str:
    return get_vault().mask(material, reveal=reveal)
