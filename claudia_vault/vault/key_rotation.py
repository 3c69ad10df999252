"""
Vault Key Rotation — Re-encryption of every record when the master password changes.

Each record file is decrypted with the old password and rewritten atomically
under the new one. Progress is recorded in a journal
(``<workspace>/.rotation_journal``, JSON lines) so a crash or cancellation
mid-walk can be resumed with :func:`resume_rotation` instead of leaving the
workspace in an unknown mix of old and new passwords. The new credential
hash is staged in the journal and only replaces the stored hash after every
record has been rewritten.

Security Note:
    Plaintext exists in memory only while a single record is re-encrypted.
    Never log plaintext, ciphertext, passwords or hashes; log paths and counts.
"""
import time
import logging
import threading
from collections.abc import Callable
from pathlib import Path

import orjson

from .credentials import hash_password, verify_password
from .exceptions import (
    DecryptionFailed,
    IncorrectPassword,
    NotSetUp,
    RotationCancelled,
    RotationInProgress,
    VaultError,
    VaultIOError,
)
from .record import (
    EncryptedFile,
    create_encrypted_file,
    decrypt_content,
    decrypt_metadata,
    is_encrypted_format,
    parse_encrypted_file,
)
from .session_vault import VaultSession
from .workspace import OWNER_ONLY, Workspace, atomic_write_text, read_text

logger = logging.getLogger("claudia.vault")

ProgressCallback = Callable[[int, int, str], None]


# ---------------------------------------------------------------------------
# Journal
# ---------------------------------------------------------------------------

class RotationJournal:
    """Append-only progress log of one rotation.

    Line 1 is a header ``{"new_hash": ..., "started_at": ...}``; every further
    line is ``{"rotated": "<workspace-relative path>"}``.
    """

    def __init__(self, workspace: Workspace):
        self._workspace = workspace
        self.path = workspace.journal_path

    def exists(self) -> bool:
        return self.path.is_file()

    def start(self, new_hash: str) -> None:
        header = orjson.dumps({"new_hash": new_hash, "started_at": time.time()})
        atomic_write_text(self.path, header.decode("utf-8") + "\n", mode=OWNER_ONLY)

    def mark(self, relative: str) -> None:
        line = orjson.dumps({"rotated": relative}) + b"\n"
        try:
            with open(self.path, "ab") as fh:
                fh.write(line)
                fh.flush()
        except OSError as err:
            raise VaultIOError(f"Failed to update rotation journal: {err}") from err

    def load(self) -> tuple[str, set[str]]:
        """Return ``(new_hash, rotated_paths)``.

        A truncated final line (crash during append) is ignored.

        Raises:
            VaultError: If the journal header is unreadable.
        """
        lines = read_text(self.path).splitlines()
        try:
            header = orjson.loads(lines[0])
            new_hash = header["new_hash"]
        except (IndexError, KeyError, TypeError, orjson.JSONDecodeError):
            raise VaultError(f"Rotation journal is corrupt: {self.path}") from None
        rotated: set[str] = set()
        for line in lines[1:]:
            try:
                entry = orjson.loads(line)
            except orjson.JSONDecodeError:
                logger.warning("Ignoring truncated rotation journal entry")
                continue
            if isinstance(entry, dict) and "rotated" in entry:
                rotated.add(entry["rotated"])
        return new_hash, rotated

    def finish(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as err:
            raise VaultIOError(f"Failed to remove rotation journal: {err}") from err


# ---------------------------------------------------------------------------
# Rotation
# ---------------------------------------------------------------------------

def _readable_with(encrypted: EncryptedFile, password: str, session: VaultSession) -> bool:
    try:
        decrypt_metadata(encrypted.metadata, password, session.config.kdf)
    except DecryptionFailed:
        return False
    return True


def _rotate_files(
    session: VaultSession,
    journal: RotationJournal,
    old_password: str,
    new_password: str,
    already_rotated: set[str],
    cancel: threading.Event | None,
    progress: ProgressCallback | None,
    resuming: bool,
) -> dict:
    workspace = session.workspace
    params = session.config.kdf
    files = list(workspace.iter_record_files())
    stats = {"total": len(files), "rotated": 0, "skipped": 0, "resumed": 0}

    for done, path in enumerate(files):
        if cancel is not None and cancel.is_set():
            logger.warning(
                "Rotation cancelled after %d of %d file(s)", done, len(files),
            )
            raise RotationCancelled(
                f"Rotation cancelled after {done} of {len(files)} file(s); "
                f"resume to finish"
            )
        relative = workspace.relative(path)
        if progress is not None:
            progress(done, len(files), relative)

        raw = read_text(path)
        if not is_encrypted_format(raw):
            stats["skipped"] += 1
            continue

        if relative in already_rotated:
            # a journaled file may have been rewritten under the old password
            # since; only trust the journal once the file proves it
            try:
                if _readable_with(parse_encrypted_file(raw), new_password, session):
                    stats["resumed"] += 1
                    continue
            except VaultError:
                logger.error("Rotation failed at %s", relative)
                raise
            logger.warning("Journaled file %s is not under the new password", relative)

        try:
            encrypted = parse_encrypted_file(raw)
            try:
                metadata = decrypt_metadata(encrypted.metadata, old_password, params)
                body = decrypt_content(encrypted.content, old_password, params)
            except DecryptionFailed:
                # written under the new password just before a crash, but
                # never recorded in the journal
                if resuming and _readable_with(encrypted, new_password, session):
                    journal.mark(relative)
                    stats["resumed"] += 1
                    continue
                raise
            atomic_write_text(
                path, create_encrypted_file(metadata, body, new_password, params),
            )
        except VaultError:
            logger.error("Rotation failed at %s", relative)
            raise
        journal.mark(relative)
        stats["rotated"] += 1
        logger.debug("Re-encrypted %s", relative)

    if progress is not None:
        progress(len(files), len(files), "")
    return stats


def _complete(
    session: VaultSession, journal: RotationJournal, new_hash: str, new_password: str,
) -> None:
    session.workspace.write_master_hash(new_hash)
    journal.finish()
    session.replace_password(new_password)


def rotate_master_password(
    session: VaultSession,
    old_password: str,
    new_password: str,
    *,
    cancel: threading.Event | None = None,
    progress: ProgressCallback | None = None,
) -> dict:
    """Re-encrypt every record under ``new_password``.

    Args:
        session: The workspace's vault session.
        old_password: Current master password.
        new_password: Replacement master password.
        cancel: Checked before each file; when set, the rotation stops
            cleanly with the journal left in place.
        progress: Called as ``progress(done, total, relative_path)``.

    Returns:
        Stats dict with keys: total, rotated, skipped, resumed.

    Raises:
        NotSetUp: If the workspace has no master credential.
        RotationInProgress: If an interrupted rotation must be resumed or
            aborted first.
        IncorrectPassword: If ``old_password`` does not verify; no file is
            touched.
        RotationCancelled: If ``cancel`` was set during the walk.
    """
    workspace = session.workspace
    journal = RotationJournal(workspace)

    with session.rotation_lock.write():
        if not session.is_setup():
            raise NotSetUp()
        if journal.exists():
            raise RotationInProgress(
                "An interrupted password rotation must be resumed or aborted first"
            )
        if not verify_password(old_password, workspace.read_master_hash()):
            raise IncorrectPassword()

        logger.info("Starting master password rotation in %s", workspace.root)
        new_hash = hash_password(new_password, session.config.hash_params)
        journal.start(new_hash)

        stats = _rotate_files(
            session, journal, old_password, new_password,
            already_rotated=set(), cancel=cancel, progress=progress,
            resuming=False,
        )
        _complete(session, journal, new_hash, new_password)

    logger.info("Master password rotation complete: %s", stats)
    return stats


def resume_rotation(
    session: VaultSession,
    old_password: str,
    new_password: str,
    *,
    cancel: threading.Event | None = None,
    progress: ProgressCallback | None = None,
) -> dict:
    """Finish a rotation that was cancelled or interrupted.

    Both passwords are required: files not yet in the journal are still
    under the old one.

    Raises:
        VaultError: If there is no journal to resume.
        IncorrectPassword: If either password does not match.
    """
    workspace = session.workspace
    journal = RotationJournal(workspace)

    with session.rotation_lock.write():
        if not journal.exists():
            raise VaultError("No interrupted rotation to resume")
        new_hash, rotated = journal.load()
        stored = workspace.read_master_hash()

        if verify_password(new_password, stored):
            # crashed after the hash was written; only the journal is left
            journal.finish()
            session.replace_password(new_password)
            logger.info("Rotation journal cleared; hash already updated")
            return {"total": 0, "rotated": 0, "skipped": 0, "resumed": len(rotated)}

        if not verify_password(old_password, stored):
            raise IncorrectPassword()
        if not verify_password(new_password, new_hash):
            raise IncorrectPassword(
                "New password does not match the interrupted rotation"
            )

        logger.info(
            "Resuming master password rotation (%d file(s) already done)",
            len(rotated),
        )
        stats = _rotate_files(
            session, journal, old_password, new_password,
            already_rotated=rotated, cancel=cancel, progress=progress,
            resuming=True,
        )
        _complete(session, journal, new_hash, new_password)

    logger.info("Master password rotation resumed and complete: %s", stats)
    return stats


def _revert_file(
    path: Path,
    journaled: bool,
    old_password: str,
    new_password: str,
    session: VaultSession,
) -> str:
    """Put one record back under ``old_password``.

    Returns one of ``"reverted"``, ``"unchanged"`` or ``"skipped"``.
    """
    params = session.config.kdf
    raw = read_text(path)
    if not is_encrypted_format(raw):
        return "skipped"
    encrypted = parse_encrypted_file(raw)
    passwords = {"old": old_password, "new": new_password}
    order = ("new", "old") if journaled else ("old", "new")
    under = next(
        (name for name in order if _readable_with(encrypted, passwords[name], session)),
        None,
    )
    if under is None:
        logger.warning("Leaving %s: readable with neither password", path)
        return "skipped"
    if under == "old":
        return "unchanged"
    metadata = decrypt_metadata(encrypted.metadata, new_password, params)
    body = decrypt_content(encrypted.content, new_password, params)
    atomic_write_text(path, create_encrypted_file(metadata, body, old_password, params))
    return "reverted"


def abort_rotation(
    session: VaultSession,
    old_password: str,
    new_password: str,
    *,
    cancel: threading.Event | None = None,
    progress: ProgressCallback | None = None,
) -> dict:
    """Roll an interrupted rotation back to ``old_password``.

    Every record already rewritten under ``new_password`` is re-encrypted
    under the old one, then the journal is removed. Records readable with
    neither password are left untouched. A cancelled abort keeps the journal
    and can be repeated.

    Returns:
        Stats dict with keys: total, reverted, unchanged, skipped.

    Raises:
        VaultError: If there is no journal, or the new hash is already
            committed (use :func:`resume_rotation` to clear it).
        IncorrectPassword: If either password does not match.
        RotationCancelled: If ``cancel`` was set during the walk.
    """
    workspace = session.workspace
    journal = RotationJournal(workspace)

    with session.rotation_lock.write():
        if not journal.exists():
            raise VaultError("No interrupted rotation to abort")
        new_hash, rotated = journal.load()
        stored = workspace.read_master_hash()

        if verify_password(new_password, stored):
            raise VaultError(
                "Rotation already committed; resume it to clear the journal"
            )
        if not verify_password(old_password, stored):
            raise IncorrectPassword()
        if not verify_password(new_password, new_hash):
            raise IncorrectPassword(
                "New password does not match the interrupted rotation"
            )

        logger.info(
            "Rolling back master password rotation (%d file(s) to revert)",
            len(rotated),
        )
        files = list(workspace.iter_record_files())
        stats = {"total": len(files), "reverted": 0, "unchanged": 0, "skipped": 0}
        for done, path in enumerate(files):
            if cancel is not None and cancel.is_set():
                raise RotationCancelled(
                    f"Rollback cancelled after {done} of {len(files)} file(s)"
                )
            relative = workspace.relative(path)
            if progress is not None:
                progress(done, len(files), relative)
            try:
                outcome = _revert_file(
                    path, relative in rotated, old_password, new_password, session,
                )
            except VaultError:
                logger.error("Rollback failed at %s", relative)
                raise
            stats[outcome] += 1

        journal.finish()
        session.replace_password(old_password)

    logger.info("Master password rotation rolled back: %s", stats)
    return stats


def pending_rotation_files(session: VaultSession) -> list[Path]:
    """Paths the interrupted rotation has already rewritten."""
    journal = RotationJournal(session.workspace)
    if not journal.exists():
        return []
    _, rotated = journal.load()
    return [session.workspace.resolve(rel) for rel in sorted(rotated)]


