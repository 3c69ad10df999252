"""Claudia Vault — Password-derived encryption for workspace records.

Security Note (Threat Model):
    The master password is held in process memory while the vault is
    unlocked (in a zeroizing ``SecretStr``). A memory dump of the running
    application could expose it, along with any record plaintext that is
    being read at that moment. This is an accepted limitation; mitigation
    would require an OS keychain or secure enclave, which is out of scope.
    Records at rest, the credential hash and the rotation journal never
    contain the password.
"""

from .config import KdfParams, VaultConfig
from .crypto import decrypt, derive_key, encrypt
from .credentials import hash_password, verify_password
from .exceptions import (
    AlreadySetUp,
    DecryptionFailed,
    IncorrectPassword,
    MalformedRecord,
    NotSetUp,
    RotationCancelled,
    RotationInProgress,
    VaultError,
    VaultIOError,
    VaultLocked,
)
from .key_rotation import abort_rotation, resume_rotation, rotate_master_password
from .passwords import PasswordContent, PasswordsSubSession
from .record import (
    decrypt_record,
    encrypt_record,
    is_encrypted_format,
    read_record,
)
from .session_vault import VaultSession, VaultState
from .service import VaultService
from .workspace import Workspace

__all__ = [
    "VaultService",
    "VaultSession",
    "VaultState",
    "PasswordsSubSession",
    "PasswordContent",
    "Workspace",
    "rotate_master_password",
    "resume_rotation",
    "abort_rotation",
    "VaultConfig",
    "KdfParams",
    "encrypt",
    "decrypt",
    "derive_key",
    "hash_password",
    "verify_password",
    "encrypt_record",
    "decrypt_record",
    "read_record",
    "is_encrypted_format",
    "VaultError",
    "VaultLocked",
    "IncorrectPassword",
    "MalformedRecord",
    "DecryptionFailed",
    "VaultIOError",
    "AlreadySetUp",
    "NotSetUp",
    "RotationCancelled",
    "RotationInProgress",
]
