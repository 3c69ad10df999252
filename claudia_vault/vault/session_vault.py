"""
VaultSession — Lock state of one workspace's vault.

State machine::

    UNINITIALIZED --setup()--> UNLOCKED
    LOCKED --unlock(ok)--> UNLOCKED
    UNLOCKED --lock() / idle timeout--> LOCKED

``UNINITIALIZED`` means no master credential hash exists on disk. The state
is never persisted: a new process always starts ``LOCKED`` (or
``UNINITIALIZED``).

Concurrency:
    Session fields are guarded by one reader-writer lock and only touched in
    short critical sections. Argon2 work (hashing, verification) runs outside
    the lock. A second reader-writer lock, ``rotation_lock``, serializes
    record access against a master password rotation: record operations hold
    it shared through :meth:`VaultSession.access`, rotation holds it
    exclusively.

Security Note:
    The master password is kept in a zeroizing ``SecretStr`` only while
    unlocked. Callers receive copies and must ``clear()`` them when done.
    Never log the password or the stored hash.
"""
import time
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from enum import Enum
from os import PathLike

from .config import VaultConfig
from .credentials import hash_password, verify_password
from .exceptions import AlreadySetUp, NotSetUp, RotationInProgress, VaultLocked
from .locks import ReadWriteLock
from .secret import SecretStr
from .workspace import Workspace

logger = logging.getLogger("claudia.vault")


class VaultState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOCKED = "locked"
    UNLOCKED = "unlocked"


class VaultSession:
    """Lock/unlock state and the resident master password for a workspace.

    One instance per workspace, owned by the application's top-level context
    (see :class:`claudia_vault.vault.service.VaultService`) and passed to
    every vault-gated operation.
    """

    def __init__(
        self,
        workspace: Workspace | str | PathLike,
        config: VaultConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not isinstance(workspace, Workspace):
            workspace = Workspace(workspace)
        self._workspace = workspace
        self._config = config or VaultConfig()
        self._clock = clock
        self._lock = ReadWriteLock()
        self.rotation_lock = ReadWriteLock()
        self._password: SecretStr | None = None
        self._last_activity: float | None = None
        self._generation = 0

    def __repr__(self) -> str:
        return f"<VaultSession {self._workspace.root} state={self.state.value}>"

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def workspace(self) -> Workspace:
        return self._workspace

    @property
    def config(self) -> VaultConfig:
        return self._config

    @property
    def clock(self) -> Callable[[], float]:
        return self._clock

    @property
    def generation(self) -> int:
        """Counter bumped on every unlock and lock transition."""
        with self._lock.read():
            return self._generation

    @property
    def state(self) -> VaultState:
        if not self.is_setup():
            return VaultState.UNINITIALIZED
        return VaultState.UNLOCKED if self.is_unlocked() else VaultState.LOCKED

    # ------------------------------------------------------------------
    # Internal helpers (caller holds the write lock)
    # ------------------------------------------------------------------

    def _idle_expired(self) -> bool:
        if self._password is None or self._last_activity is None:
            return False
        return self._clock() - self._last_activity >= self._config.idle_timeout

    def _clear(self) -> None:
        if self._password is not None:
            self._password.clear()
        self._password = None
        self._last_activity = None
        self._generation += 1

    def _check_idle(self) -> None:
        """Lock the session if it has been idle too long (lazy auto-lock)."""
        with self._lock.read():
            expired = self._idle_expired()
        if expired:
            with self._lock.write():
                # re-check: another thread may have touched or locked meanwhile
                if self._idle_expired():
                    self._clear()
                    logger.info("Vault auto-locked after %ss idle", self._config.idle_timeout)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_setup(self) -> bool:
        """Whether a master credential hash exists for this workspace."""
        return self._workspace.has_master_hash()

    def is_unlocked(self) -> bool:
        self._check_idle()
        with self._lock.read():
            return self._password is not None

    def idle_remaining(self) -> float | None:
        """Seconds until auto-lock, or None while locked."""
        self._check_idle()
        with self._lock.read():
            if self._password is None or self._last_activity is None:
                return None
            elapsed = self._clock() - self._last_activity
            return max(0.0, self._config.idle_timeout - elapsed)

    def current_password(self) -> SecretStr | None:
        """Copy of the resident master password, or None while locked."""
        self._check_idle()
        with self._lock.read():
            if self._password is None:
                return None
            return self._password.copy()

    def require_unlocked(self) -> SecretStr:
        """Copy of the resident master password.

        Raises:
            VaultLocked: If the session is locked (including by idle timeout).
        """
        password = self.current_password()
        if password is None:
            raise VaultLocked()
        return password

    def verify_password(self, password: str) -> bool:
        """Check ``password`` against the stored hash without changing state.

        Raises:
            NotSetUp: If no master credential exists.
        """
        if not self.is_setup():
            raise NotSetUp()
        return verify_password(password, self._workspace.read_master_hash())

    def has_pending_rotation(self) -> bool:
        """Whether an interrupted rotation left its journal behind."""
        return self._workspace.journal_path.is_file()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def setup(self, password: str) -> None:
        """Create the master credential and unlock.

        Raises:
            AlreadySetUp: If a credential hash already exists; the stored
                hash is left untouched.
        """
        if self.is_setup():
            raise AlreadySetUp()
        hash_string = hash_password(password, self._config.hash_params)
        try:
            self._workspace.create_master_hash(hash_string)
        except FileExistsError:
            raise AlreadySetUp() from None
        with self._lock.write():
            self._clear()
            self._password = SecretStr(password)
            self._last_activity = self._clock()
        logger.info("Vault set up and unlocked: %s", self._workspace.root)

    def unlock(self, password: str) -> bool:
        """Verify ``password`` and unlock.

        Returns:
            True on success; False for a wrong password (state unchanged).

        Raises:
            NotSetUp: If no master credential exists.
        """
        if not self.is_setup():
            raise NotSetUp()
        stored = self._workspace.read_master_hash()
        if not verify_password(password, stored):
            logger.warning("Vault unlock failed: incorrect password")
            return False
        with self._lock.write():
            self._clear()
            self._password = SecretStr(password)
            self._last_activity = self._clock()
        if self.has_pending_rotation():
            logger.warning(
                "Vault unlocked with an unfinished password rotation pending: %s",
                self._workspace.journal_path,
            )
        logger.info("Vault unlocked: %s", self._workspace.root)
        return True

    def lock(self) -> None:
        """Discard the resident password. Valid from any state."""
        with self._lock.write():
            was_unlocked = self._password is not None
            self._clear()
        if was_unlocked:
            logger.info("Vault locked: %s", self._workspace.root)

    def touch_activity(self) -> None:
        """Reset the idle timer.

        Raises:
            VaultLocked: If the session is not unlocked.
        """
        self._check_idle()
        with self._lock.write():
            if self._password is None:
                raise VaultLocked()
            self._last_activity = self._clock()

    def sweep(self) -> bool:
        """Apply the idle timeout now; returns True if it locked the vault.

        Intended for an optional periodic timer; every query already applies
        the timeout lazily.
        """
        with self._lock.read():
            was_unlocked = self._password is not None
        return was_unlocked and not self.is_unlocked()

    def replace_password(self, new_password: str) -> None:
        """Hold ``new_password`` after a completed rotation or rollback."""
        with self._lock.write():
            if self._password is not None:
                self._password.clear()
            self._password = SecretStr(new_password)
            self._last_activity = self._clock()

    # ------------------------------------------------------------------
    # Record access
    # ------------------------------------------------------------------

    @contextmanager
    def access(self) -> Iterator[SecretStr]:
        """Gate one record read or write.

        Holds the rotation lock shared, checks the session is unlocked,
        records activity, and yields a copy of the master password that is
        cleared on exit.

        Raises:
            VaultLocked: If the session is locked.
            RotationInProgress: If an interrupted rotation has not been
                resumed or aborted; records are then under two passwords.
        """
        with self.rotation_lock.read():
            if self.has_pending_rotation():
                raise RotationInProgress(
                    "Records are unavailable until the interrupted password "
                    "rotation is resumed or aborted"
                )
            password = self.require_unlocked()
            try:
                self.touch_activity()
                yield password
            finally:
                password.clear()
