"""
Passwords sub-session — A shorter-lived gate for password-manager records.

Password entries sit behind a second unlock on top of the main vault: the
user re-enters the master password and gets a window of
``passwords_timeout`` seconds (shorter than the vault's idle timeout) that is
extended by activity. Locking the main vault, or letting it auto-lock,
closes this window immediately.

The module also holds the password entry payload, the JSON document stored
encrypted in a password record's ``[CONTENT]`` section.
"""
import logging
import threading

import orjson
from pydantic import BaseModel, ValidationError

from .config import KdfParams
from .crypto import decrypt, encrypt
from .exceptions import MalformedRecord, VaultLocked
from .session_vault import VaultSession

logger = logging.getLogger("claudia.vault")


class PasswordsSubSession:
    """Expiring unlock for password records, layered on a VaultSession."""

    def __init__(self, vault: VaultSession, timeout: float | None = None):
        """
        Raises:
            ValueError: If ``timeout`` is not positive or is not shorter than
                the vault's idle timeout.
        """
        if timeout is None:
            timeout = vault.config.passwords_timeout
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        if timeout >= vault.config.idle_timeout:
            raise ValueError(
                f"timeout ({timeout}s) must be shorter than the vault "
                f"idle_timeout ({vault.config.idle_timeout}s)"
            )
        self._vault = vault
        self._timeout = timeout
        self._mutex = threading.Lock()
        self._expires_at: float | None = None
        self._generation: int | None = None

    def __repr__(self) -> str:
        return f"<PasswordsSubSession unlocked={self.is_unlocked()}>"

    @property
    def timeout(self) -> float:
        return self._timeout

    def _now(self) -> float:
        return self._vault.clock()

    def _parent_matches(self) -> bool:
        return (
            self._vault.is_unlocked()
            and self._vault.generation == self._generation
        )

    def is_unlocked(self) -> bool:
        """True while not expired and the parent session is still the one
        this sub-session was opened under."""
        with self._mutex:
            if self._expires_at is None:
                return False
            if self._now() >= self._expires_at or not self._parent_matches():
                self._expires_at = None
                self._generation = None
                return False
            return True

    def remaining(self) -> float | None:
        """Seconds until the window closes, or None if locked."""
        if not self.is_unlocked():
            return None
        with self._mutex:
            return max(0.0, self._expires_at - self._now())

    def unlock(self, password: str) -> bool:
        """Re-verify the master password and open the window.

        Returns:
            False for a wrong password.

        Raises:
            VaultLocked: If the main vault is not unlocked.
        """
        if not self._vault.is_unlocked():
            raise VaultLocked("Vault is not unlocked")
        generation = self._vault.generation
        if not self._vault.verify_password(password):
            logger.warning("Passwords access unlock failed: incorrect password")
            return False
        with self._mutex:
            self._generation = generation
            self._expires_at = self._now() + self._timeout
        logger.info("Passwords access unlocked for %ss", self._timeout)
        return True

    def lock(self) -> None:
        with self._mutex:
            self._expires_at = None
            self._generation = None
        logger.info("Passwords access locked")

    def touch_activity(self) -> None:
        """Extend the window.

        Raises:
            VaultLocked: If the sub-session is not unlocked.
        """
        if not self.is_unlocked():
            raise VaultLocked("Passwords access is locked")
        with self._mutex:
            self._expires_at = self._now() + self._timeout

    def require_unlocked(self) -> None:
        if not self.is_unlocked():
            raise VaultLocked("Passwords access is locked")


# ---------------------------------------------------------------------------
# Password entry payload
# ---------------------------------------------------------------------------

class PasswordContent(BaseModel):
    """Sensitive fields of a password entry."""

    url: str = ""
    username: str = ""
    password: str = ""
    notes: str = ""

    def __repr__(self) -> str:
        return f"PasswordContent(url={self.url!r}, username={self.username!r}, password='***')"

    __str__ = __repr__


def encrypt_password_content(
    content: PasswordContent, password: str, params: KdfParams | None = None,
) -> str:
    """Serialize an entry to JSON and encrypt it into a CipherBlob."""
    return encrypt(
        orjson.dumps(content.model_dump()).decode("utf-8"), password, params,
    )


def decrypt_password_content(
    blob: str, password: str, params: KdfParams | None = None,
) -> PasswordContent:
    """Decrypt a password entry. An empty blob is an empty entry.

    Raises:
        DecryptionFailed: Wrong password or corrupted blob.
        MalformedRecord: The decrypted text is not a valid entry.
    """
    if not blob.strip():
        return PasswordContent()
    text = decrypt(blob, password, params)
    try:
        return PasswordContent.model_validate(orjson.loads(text))
    except (orjson.JSONDecodeError, ValidationError) as err:
        raise MalformedRecord(f"Failed to parse password content: {err}") from err
