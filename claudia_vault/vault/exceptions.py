"""
Vault Exceptions — Typed failures raised by the vault engine.

Callers are expected to branch on these types instead of parsing messages.
A wrong password during ``unlock`` is reported as ``False``, not as an
exception; ``IncorrectPassword`` is reserved for operations that cannot
proceed at all (rotation).
"""


class VaultError(Exception):
    """Base exception for vault operations."""


class VaultLocked(VaultError):
    """Raised when a vault-gated operation runs without an unlocked session."""

    def __init__(self, message: str = "Vault is locked"):
        super().__init__(message)


class IncorrectPassword(VaultError):
    """Raised when the supplied master password does not verify."""

    def __init__(self, message: str = "Current password is incorrect"):
        super().__init__(message)


class MalformedRecord(VaultError):
    """Raised when an encrypted record is missing its header or markers."""


class DecryptionFailed(VaultError):
    """Raised when a CipherBlob cannot be decrypted.

    Wrong password, tampered ciphertext and malformed blobs all raise this
    same error with the same message.
    """

    def __init__(self, message: str = "Decryption failed - wrong password or corrupted data"):
        super().__init__(message)


class VaultIOError(VaultError):
    """Raised when the filesystem fails underneath a vault operation."""


class AlreadySetUp(VaultError):
    """Raised by ``setup`` when a master credential hash already exists."""

    def __init__(self, message: str = "Master password already set up"):
        super().__init__(message)


class NotSetUp(VaultError):
    """Raised when an operation needs a master credential that does not exist."""

    def __init__(self, message: str = "Vault not set up - no master password"):
        super().__init__(message)


class RotationCancelled(VaultError):
    """Raised when a password rotation is stopped before finishing."""


class RotationInProgress(VaultError):
    """Raised when a rotation journal from an interrupted run is present."""
