"""
Vault Crypto Core — Password-based key derivation and authenticated encryption.

Every call to ``encrypt`` produces a self-contained CipherBlob:

    base64( salt 16B | nonce 12B | ciphertext + GCM tag 16B )

The key is derived per call with Argon2id from the master password and the
blob's own random salt, so no key is ever reused across blobs and nothing
but the password is needed to decrypt.

Security Note:
    Never log plaintext or ciphertext values.
    Decryption failures are deliberately indistinguishable: a bad base64
    string, a truncated blob, a wrong password and a tampered tag all raise
    the same ``DecryptionFailed``.
"""
import os
import base64
import binascii
import logging

from argon2.low_level import Type, hash_secret_raw
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .config import KdfParams
from .exceptions import DecryptionFailed
from .secret import SecretBytes

logger = logging.getLogger("claudia.vault")

SALT_SIZE = 16
NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16
KEY_LENGTH = 32  # AES-256

MIN_BLOB_SIZE = SALT_SIZE + NONCE_SIZE + 1

_DEFAULT_PARAMS = KdfParams()


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(
    password: str, salt: bytes, params: KdfParams | None = None,
) -> SecretBytes:
    """Derive a 32-byte encryption key with Argon2id.

    Deterministic for identical password, salt and params. Deliberately
    slow: this is the cost an attacker pays per guess.

    Args:
        password: Master password.
        salt: Per-blob random salt.
        params: Argon2id cost parameters (defaults to ``KdfParams()``).

    Returns:
        The derived key in a zeroizing container. Use it as a context manager.
    """
    params = params or _DEFAULT_PARAMS
    raw = hash_secret_raw(
        secret=password.encode("utf-8"),
        salt=salt,
        time_cost=params.time_cost,
        memory_cost=params.memory_cost,
        parallelism=params.parallelism,
        hash_len=KEY_LENGTH,
        type=Type.ID,
    )
    return SecretBytes(raw)


# ---------------------------------------------------------------------------
# Blob encoding
# ---------------------------------------------------------------------------

def split_blob(blob: str) -> tuple[bytes, bytes, bytes]:
    """Decode a CipherBlob into ``(salt, nonce, ciphertext)``.

    Raises:
        DecryptionFailed: If the blob is not valid base64 or is too short.
    """
    try:
        combined = base64.b64decode(blob.strip().encode("ascii"), validate=True)
    except (binascii.Error, ValueError, UnicodeEncodeError):
        raise DecryptionFailed() from None
    if len(combined) < MIN_BLOB_SIZE:
        raise DecryptionFailed()
    salt = combined[:SALT_SIZE]
    nonce = combined[SALT_SIZE:SALT_SIZE + NONCE_SIZE]
    ciphertext = combined[SALT_SIZE + NONCE_SIZE:]
    return salt, nonce, ciphertext


# ---------------------------------------------------------------------------
# Encryption / decryption
# ---------------------------------------------------------------------------

def encrypt(
    plaintext: str, password: str, params: KdfParams | None = None,
) -> str:
    """Encrypt text under the master password.

    A fresh salt and nonce are drawn on every call, so encrypting the same
    plaintext twice yields two different blobs.

    Args:
        plaintext: Text to encrypt.
        password: Master password.
        params: Argon2id cost parameters.

    Returns:
        Base64 CipherBlob.
    """
    salt = os.urandom(SALT_SIZE)
    nonce = os.urandom(NONCE_SIZE)
    with derive_key(password, salt, params) as key:
        ct = AESGCM(key.expose()).encrypt(nonce, plaintext.encode("utf-8"), None)
    return base64.b64encode(salt + nonce + ct).decode("ascii")


def decrypt(
    blob: str, password: str, params: KdfParams | None = None,
) -> str:
    """Decrypt a CipherBlob produced by :func:`encrypt`.

    Args:
        blob: Base64 CipherBlob.
        password: Master password.
        params: Argon2id cost parameters used at encryption time.

    Returns:
        Decrypted text.

    Raises:
        DecryptionFailed: On any failure, without saying which check failed.
    """
    salt, nonce, ciphertext = split_blob(blob)
    with derive_key(password, salt, params) as key:
        try:
            plaintext = AESGCM(key.expose()).decrypt(nonce, ciphertext, None)
        except InvalidTag:
            raise DecryptionFailed() from None
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError:
        raise DecryptionFailed() from None
