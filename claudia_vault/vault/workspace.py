"""
Workspace layout — The files of one workspace that the vault touches.

    <workspace>/
        .master_password_hash     Argon2id PHC string (0o600)
        .rotation_journal         present only while a rotation is unfinished
        folders/**/*.md           note / task / password records
        .trash/**/*.md            trashed records (still encrypted)

All writes go through a temporary file in the same directory followed by
``os.replace``, so a crash never leaves a half-written record or hash.
"""
import os
import logging
import tempfile
from collections.abc import Iterator
from pathlib import Path

from .exceptions import VaultIOError

logger = logging.getLogger("claudia.vault")

MASTER_HASH_FILENAME = ".master_password_hash"
ROTATION_JOURNAL_FILENAME = ".rotation_journal"
FOLDERS_DIRNAME = "folders"
TRASH_DIRNAME = ".trash"
RECORD_SUFFIX = ".md"

OWNER_ONLY = 0o600


def atomic_write_text(path: Path, text: str, mode: int | None = None) -> None:
    """Replace ``path`` with ``text`` in one step.

    Args:
        path: Destination file.
        text: Full new contents.
        mode: Optional permission bits applied before the rename.

    Raises:
        VaultIOError: If any filesystem step fails.
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.name}.", suffix=".tmp", dir=path.parent,
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as fh:
                fh.write(text)
                fh.flush()
                os.fsync(fh.fileno())
            if mode is not None and os.name == "posix":
                os.chmod(tmp_name, mode)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
    except OSError as err:
        raise VaultIOError(f"Failed to write {path}: {err}") from err


def read_text(path: Path) -> str:
    """Read a UTF-8 file, wrapping filesystem errors.

    Raises:
        VaultIOError: If the file cannot be read.
    """
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as err:
        raise VaultIOError(f"Failed to read {path}: {err}") from err


class Workspace:
    """Paths and file helpers for a single workspace directory."""

    def __init__(self, root: str | os.PathLike):
        self.root = Path(root)

    def __repr__(self) -> str:
        return f"<Workspace {self.root}>"

    @property
    def master_hash_path(self) -> Path:
        return self.root / MASTER_HASH_FILENAME

    @property
    def journal_path(self) -> Path:
        return self.root / ROTATION_JOURNAL_FILENAME

    @property
    def folders_dir(self) -> Path:
        return self.root / FOLDERS_DIRNAME

    @property
    def trash_dir(self) -> Path:
        return self.root / TRASH_DIRNAME

    # ------------------------------------------------------------------
    # Master credential hash
    # ------------------------------------------------------------------

    def has_master_hash(self) -> bool:
        return self.master_hash_path.is_file()

    def read_master_hash(self) -> str:
        return read_text(self.master_hash_path).strip()

    def write_master_hash(self, hash_string: str) -> None:
        atomic_write_text(self.master_hash_path, hash_string, mode=OWNER_ONLY)

    def create_master_hash(self, hash_string: str) -> None:
        """Write the hash only if none exists yet.

        Raises:
            FileExistsError: If a hash file is already present.
            VaultIOError: On any other filesystem failure.
        """
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            fd = os.open(
                self.master_hash_path,
                os.O_WRONLY | os.O_CREAT | os.O_EXCL,
                OWNER_ONLY,
            )
        except FileExistsError:
            raise
        except OSError as err:
            raise VaultIOError(
                f"Failed to create {self.master_hash_path}: {err}"
            ) from err
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(hash_string)
                fh.flush()
                os.fsync(fh.fileno())
        except OSError as err:
            raise VaultIOError(
                f"Failed to write {self.master_hash_path}: {err}"
            ) from err

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def record_roots(self) -> list[Path]:
        return [self.folders_dir, self.trash_dir]

    def iter_record_files(self) -> Iterator[Path]:
        """Yield every ``.md`` record file, in a stable order.

        Hidden files are skipped; hidden directories below a record root
        are skipped too.
        """
        for base in self.record_roots():
            if not base.is_dir():
                continue
            for dirpath, dirnames, filenames in os.walk(base):
                dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
                for name in sorted(filenames):
                    if name.startswith(".") or not name.endswith(RECORD_SUFFIX):
                        continue
                    yield Path(dirpath) / name

    def relative(self, path: Path) -> str:
        """Workspace-relative POSIX path used in the rotation journal."""
        return Path(path).relative_to(self.root).as_posix()

    def resolve(self, relative: str) -> Path:
        return self.root / relative
