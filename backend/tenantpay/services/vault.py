"""
Credential vault.

AES-256-GCM encryption for provider credentials at rest. Blobs have the
format ``hex(iv):hex(authTag):hex(ciphertext)``, lowercase hex.

The key is derived with scrypt from the operator's ENCRYPTION_KEY and a fixed
salt, so the same master secret always yields the same key and old blobs stay
readable across restarts.
"""
import hashlib
import json
import logging
import secrets
from functools import lru_cache
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from tenantpay.config import settings
from tenantpay.exceptions import CryptoError
from tenantpay.models.payment import PaymentProvider
from tenantpay.schemas.credentials import (
    PaymentCredentials,
    credentials_to_dict,
    parse_credentials,
)

logger = logging.getLogger(__name__)

IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
KEY_SALT = b"tenantpay-payment-salt"

# Development only. Blobs written with this key are not protected.
_DEFAULT_MASTER_SECRET = "default-encryption-key-change-me"
_DEFAULT_SALT = b"salt"


@lru_cache(maxsize=8)
def _derive_key(master_secret: str, salt: bytes) -> bytes:
    kdf = Scrypt(salt=salt, length=KEY_LENGTH, n=2 ** 14, r=8, p=1)
    return kdf.derive(master_secret.encode("utf-8"))


def _get_encryption_key(master_secret: Optional[str] = None) -> bytes:
    """
    Get the 32-byte AES key.

    WARNING: In production, ALWAYS set the ENCRYPTION_KEY environment variable.
    """
    secret = master_secret if master_secret is not None else settings.encryption_key
    if not secret:
        logger.warning(
            "ENCRYPTION_KEY not set in environment. Using default key. "
            "Set ENCRYPTION_KEY in production!",
            extra={"event": "vault_default_key"}
        )
        return _derive_key(_DEFAULT_MASTER_SECRET, _DEFAULT_SALT)
    return _derive_key(secret, KEY_SALT)


def encrypt(plaintext: str, master_secret: Optional[str] = None) -> str:
    """
    Encrypt a string.

    Args:
        plaintext: Plain text to encrypt
        master_secret: Override for ENCRYPTION_KEY (tests, key rotation tooling)

    Returns:
        Encrypted blob in format iv:authTag:ciphertext

    Raises:
        CryptoError: If encryption fails
    """
    try:
        key = _get_encryption_key(master_secret)
        iv = secrets.token_bytes(IV_LENGTH)
        sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
    except (TypeError, ValueError, UnicodeEncodeError) as e:
        logger.error(f"Encryption error: {type(e).__name__}")
        raise CryptoError("Failed to encrypt data") from e

    # AESGCM appends the tag to the ciphertext
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"


def decrypt(blob: str, master_secret: Optional[str] = None) -> str:
    """
    Decrypt a blob produced by encrypt().

    Fails closed: a malformed blob, wrong key or failed tag check raises,
    partial plaintext is never returned.

    Raises:
        CryptoError: On any failure
    """
    if not isinstance(blob, str):
        raise CryptoError("Invalid encrypted data format")

    parts = blob.split(":")
    if len(parts) != 3 or not all(parts[:2]):
        raise CryptoError("Invalid encrypted data format")

    try:
        iv = bytes.fromhex(parts[0])
        tag = bytes.fromhex(parts[1])
        ciphertext = bytes.fromhex(parts[2])
    except ValueError as e:
        raise CryptoError("Invalid encrypted data format") from e

    if len(iv) != IV_LENGTH or len(tag) != TAG_LENGTH:
        raise CryptoError("Invalid encrypted data format")

    key = _get_encryption_key(master_secret)
    try:
        plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, None)
        return plaintext.decode("utf-8")
    except InvalidTag as e:
        logger.error("Decryption error: authentication tag mismatch")
        raise CryptoError("Failed to decrypt data") from e
    except UnicodeDecodeError as e:
        logger.error("Decryption error: plaintext is not valid UTF-8")
        raise CryptoError("Failed to decrypt data") from e


def encrypt_credentials(credentials: PaymentCredentials, master_secret: Optional[str] = None) -> str:
    """Encrypt a provider credential set as JSON."""
    return encrypt(json.dumps(credentials_to_dict(credentials)), master_secret)


def decrypt_credentials(
    blob: str,
    provider: PaymentProvider,
    master_secret: Optional[str] = None,
) -> PaymentCredentials:
    """
    Decrypt and validate a provider credential set.

    Raises:
        CryptoError: If decryption fails or the plaintext is not the provider's shape
    """
    plaintext = decrypt(blob, master_secret)
    try:
        return parse_credentials(provider, json.loads(plaintext))
    except (ValueError, TypeError) as e:
        # json.JSONDecodeError is a ValueError
        raise CryptoError("Decrypted credentials are not valid") from e


def hash_secret(secret: str) -> str:
    """
    One-way SHA-256 hex digest.
    Useful for comparing secrets without storing them in plain text.
    """
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def generate_secure_token(length: int = 32) -> str:
    """Cryptographically random token, hex encoded (2 * length characters)."""
    return secrets.token_hex(length)
