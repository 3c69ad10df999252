"""
VaultService — Async facade over one workspace's vault.

Every Argon2-bound or filesystem-bound call runs on a small thread pool so
the event loop of the host application (UI bridge, API server) never blocks
on key derivation. The service owns the workspace's :class:`VaultSession`
and :class:`PasswordsSubSession`; collaborators hold a reference to the
service and never to the resident password.

Usage::

    service = VaultService("/path/to/workspace")
    if not await service.is_setup():
        await service.setup("correct horse")
    raw = await service.encrypt_record({"title": "Note"}, "body")
    metadata, body = await service.decrypt_record(raw)
    await service.close()
"""
import asyncio
import logging
import threading
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from os import PathLike
from typing import Any

from pydantic import BaseModel

from . import record
from .config import VaultConfig
from .key_rotation import (
    ProgressCallback,
    abort_rotation,
    resume_rotation,
    rotate_master_password,
)
from .passwords import (
    PasswordContent,
    PasswordsSubSession,
    decrypt_password_content,
    encrypt_password_content,
)
from .secret import SecretStr
from .session_vault import VaultSession, VaultState
from .workspace import Workspace

logger = logging.getLogger("claudia.vault")


class VaultService:
    """Vault lifecycle and record crypto for one workspace."""

    def __init__(
        self,
        workspace: Workspace | str | PathLike,
        config: VaultConfig | None = None,
        executor: ThreadPoolExecutor | None = None,
        clock: Callable[[], float] | None = None,
    ):
        self._config = config or VaultConfig.from_env()
        if clock is None:
            self._session = VaultSession(workspace, self._config)
        else:
            self._session = VaultSession(workspace, self._config, clock=clock)
        self._passwords = PasswordsSubSession(self._session)
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self._config.max_workers,
            thread_name_prefix="claudia-vault",
        )
        self._closed = False

    def __repr__(self) -> str:
        return f"<VaultService {self._session.workspace.root}>"

    async def __aenter__(self) -> "VaultService":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    @property
    def session(self) -> VaultSession:
        return self._session

    @property
    def passwords(self) -> PasswordsSubSession:
        return self._passwords

    @property
    def config(self) -> VaultConfig:
        return self._config

    async def _run(self, func: Callable[..., Any], *args, **kwargs) -> Any:
        if self._closed:
            raise RuntimeError("VaultService is closed")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor, partial(func, *args, **kwargs),
        )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def is_setup(self) -> bool:
        return await self._run(self._session.is_setup)

    def is_unlocked(self) -> bool:
        return self._session.is_unlocked()

    def state(self) -> VaultState:
        return self._session.state

    def current_password(self) -> SecretStr | None:
        """Copy of the resident password, or None while locked.

        The caller owns the copy and must ``clear()`` it.
        """
        return self._session.current_password()

    def touch_activity(self) -> None:
        self._session.touch_activity()

    def has_pending_rotation(self) -> bool:
        return self._session.has_pending_rotation()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def setup(self, password: str) -> None:
        await self._run(self._session.setup, password)

    async def unlock(self, password: str) -> bool:
        return await self._run(self._session.unlock, password)

    def lock(self) -> None:
        self._passwords.lock()
        self._session.lock()

    async def change_password(
        self,
        old_password: str,
        new_password: str,
        *,
        cancel: threading.Event | None = None,
        progress: ProgressCallback | None = None,
    ) -> dict:
        """Rotate the master password and re-encrypt every record.

        Returns:
            Rotation stats (total, rotated, skipped, resumed).
        """
        return await self._run(
            rotate_master_password, self._session, old_password, new_password,
            cancel=cancel, progress=progress,
        )

    async def resume_change_password(
        self,
        old_password: str,
        new_password: str,
        *,
        cancel: threading.Event | None = None,
        progress: ProgressCallback | None = None,
    ) -> dict:
        return await self._run(
            resume_rotation, self._session, old_password, new_password,
            cancel=cancel, progress=progress,
        )

    async def abort_change_password(
        self,
        old_password: str,
        new_password: str,
        *,
        cancel: threading.Event | None = None,
        progress: ProgressCallback | None = None,
    ) -> dict:
        """Roll an interrupted rotation back to ``old_password``.

        Returns:
            Rollback stats (total, reverted, unchanged, skipped).
        """
        return await self._run(
            abort_rotation, self._session, old_password, new_password,
            cancel=cancel, progress=progress,
        )

    async def close(self) -> None:
        """Lock both sessions and release the worker threads."""
        if self._closed:
            return
        self._passwords.lock()
        self._session.lock()
        self._closed = True
        if self._owns_executor:
            self._executor.shutdown(wait=True)
        logger.debug("Vault service closed: %s", self._session.workspace.root)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def _with_password(self, func: Callable[..., Any], *args) -> Any:
        with self._session.access() as password:
            return func(*args, password.reveal(), self._config.kdf)

    async def encrypt_record(
        self, frontmatter: Mapping[str, Any] | BaseModel, body: str,
    ) -> str:
        """Serialize and encrypt a record with the resident password.

        Raises:
            VaultLocked: If the vault is locked.
        """
        return await self._run(
            self._with_password, record.serialize_and_encrypt, frontmatter, body,
        )

    async def decrypt_record(self, raw: str) -> tuple[dict[str, Any], str]:
        """Decrypt an encrypted record into ``(metadata, body)``."""
        return await self._run(self._with_password, record.decrypt_record, raw)

    async def read_record(self, raw: str) -> tuple[dict[str, Any], str]:
        """Read a record in either the encrypted or the legacy layout."""
        return await self._run(self._with_password, record.read_record, raw)

    async def read_metadata(self, raw: str) -> dict[str, Any]:
        return await self._run(self._with_password, record.read_metadata, raw)

    @staticmethod
    def is_encrypted_format(raw: str) -> bool:
        return record.is_encrypted_format(raw)

    # ------------------------------------------------------------------
    # Passwords access
    # ------------------------------------------------------------------

    async def unlock_passwords(self, password: str) -> bool:
        return await self._run(self._passwords.unlock, password)

    def lock_passwords(self) -> None:
        self._passwords.lock()

    def is_passwords_unlocked(self) -> bool:
        return self._passwords.is_unlocked()

    def _with_passwords_access(self, func: Callable[..., Any], *args) -> Any:
        self._passwords.require_unlocked()
        result = self._with_password(func, *args)
        self._passwords.touch_activity()
        return result

    async def encrypt_password_content(self, content: PasswordContent) -> str:
        """Encrypt a password entry.

        Raises:
            VaultLocked: If the vault or the passwords sub-session is locked.
        """
        return await self._run(
            self._with_passwords_access, encrypt_password_content, content,
        )

    async def decrypt_password_content(self, blob: str) -> PasswordContent:
        return await self._run(
            self._with_passwords_access, decrypt_password_content, blob,
        )
