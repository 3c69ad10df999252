"""
Tests for master password rotation.

Tests cover:
- Re-encryption of every record under folders/ and .trash/
- Wrong old password leaves the workspace untouched
- Legacy plaintext files are skipped
- Cancellation, the journal, and resume
- Recovery from a crash between file write and journal update
- Rolling an interrupted rotation back to the old password
"""
import threading

import pytest

from claudia_vault.vault.credentials import verify_password
from claudia_vault.vault.exceptions import (
    DecryptionFailed,
    IncorrectPassword,
    RotationCancelled,
    RotationInProgress,
    VaultError,
)
from claudia_vault.vault.key_rotation import (
    RotationJournal,
    abort_rotation,
    pending_rotation_files,
    resume_rotation,
    rotate_master_password,
)
from claudia_vault.vault.record import decrypt_record, encrypt_record

from .conftest import NEW_PASSWORD, PASSWORD

LEGACY = "---\ntitle: Old note\n---\n\nplain body\n"


def _write_record(workspace, relative, title, params, password=PASSWORD):
    path = workspace.root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(encrypt_record({"title": title}, f"body of {title}", password, params))
    return path


@pytest.fixture
def populated(unlocked, workspace, params):
    """An unlocked session with records in folders/ and .trash/."""
    paths = [
        _write_record(workspace, "folders/notes/a.md", "A", params),
        _write_record(workspace, "folders/notes/b.md", "B", params),
        _write_record(workspace, "folders/tasks/c.md", "C", params),
        _write_record(workspace, ".trash/d.md", "D", params),
    ]
    legacy = workspace.root / "folders/notes/legacy.md"
    legacy.write_text(LEGACY)
    (workspace.root / "folders/notes/readme.txt").write_text("not a record")
    return unlocked, paths, legacy


def _snapshot(workspace):
    return {
        p: p.read_bytes() for p in sorted(workspace.root.rglob("*")) if p.is_file()
    }


class TestRotation:
    """Tests for rotate_master_password."""

    def test_happy_path(self, populated, workspace, params):
        session, paths, legacy = populated
        stats = rotate_master_password(session, PASSWORD, NEW_PASSWORD)

        assert stats == {"total": 5, "rotated": 4, "skipped": 1, "resumed": 0}
        for path in paths:
            raw = path.read_text()
            with pytest.raises(DecryptionFailed):
                decrypt_record(raw, PASSWORD, params)
            metadata, body = decrypt_record(raw, NEW_PASSWORD, params)
            assert body == f"body of {metadata['title']}"
        assert legacy.read_text() == LEGACY
        assert verify_password(NEW_PASSWORD, workspace.read_master_hash())
        assert not verify_password(PASSWORD, workspace.read_master_hash())
        assert not workspace.journal_path.exists()
        assert session.current_password().reveal() == NEW_PASSWORD

    def test_unlock_with_new_password_after(self, populated):
        session, _, _ = populated
        rotate_master_password(session, PASSWORD, NEW_PASSWORD)
        session.lock()
        assert session.unlock(PASSWORD) is False
        assert session.unlock(NEW_PASSWORD) is True

    def test_wrong_old_password_touches_nothing(self, populated, workspace):
        session, _, _ = populated
        before = _snapshot(workspace)
        with pytest.raises(IncorrectPassword):
            rotate_master_password(session, "wrong", NEW_PASSWORD)
        assert _snapshot(workspace) == before
        assert session.current_password().reveal() == PASSWORD

    def test_empty_workspace(self, unlocked, workspace):
        stats = rotate_master_password(unlocked, PASSWORD, NEW_PASSWORD)
        assert stats["total"] == 0
        assert verify_password(NEW_PASSWORD, workspace.read_master_hash())

    def test_works_while_locked(self, populated, params):
        """Rotation verifies the old password itself."""
        session, paths, _ = populated
        session.lock()
        rotate_master_password(session, PASSWORD, NEW_PASSWORD)
        assert decrypt_record(paths[0].read_text(), NEW_PASSWORD, params)
        assert session.is_unlocked()

    def test_progress_callback(self, populated):
        session, _, _ = populated
        calls = []
        rotate_master_password(
            session, PASSWORD, NEW_PASSWORD,
            progress=lambda done, total, rel: calls.append((done, total, rel)),
        )
        assert calls[0] == (0, 5, "folders/notes/a.md")
        assert calls[4] == (4, 5, ".trash/d.md")
        assert calls[-1] == (5, 5, "")

    def test_foreign_record_aborts_with_journal(self, populated, workspace, params):
        """A record under another password stops the walk; rolling back recovers."""
        session, paths, _ = populated
        foreign = _write_record(
            workspace, "folders/tasks/z.md", "Z", params, password="other",
        )
        with pytest.raises(DecryptionFailed):
            rotate_master_password(session, PASSWORD, NEW_PASSWORD)
        assert workspace.journal_path.exists()
        assert verify_password(PASSWORD, workspace.read_master_hash())
        with pytest.raises(RotationInProgress):
            rotate_master_password(session, PASSWORD, NEW_PASSWORD)

        stats = abort_rotation(session, PASSWORD, NEW_PASSWORD)
        assert stats == {"total": 6, "reverted": 3, "unchanged": 1, "skipped": 2}
        assert not workspace.journal_path.exists()
        for path in paths:
            decrypt_record(path.read_text(), PASSWORD, params)
        assert decrypt_record(foreign.read_text(), "other", params)[1] == "body of Z"
        assert session.current_password().reveal() == PASSWORD
        with session.access():
            pass

        foreign.unlink()
        stats = rotate_master_password(session, PASSWORD, NEW_PASSWORD)
        assert stats["rotated"] == 4


class TestCancelAndResume:
    """Tests for cancellation, the journal, and resume_rotation."""

    def _cancel_after(self, count):
        cancel = threading.Event()

        def progress(done, total, rel):
            if done + 1 >= count:
                cancel.set()

        return cancel, progress

    def test_cancel_leaves_journal(self, populated, workspace, params):
        session, paths, _ = populated
        cancel, progress = self._cancel_after(2)
        with pytest.raises(RotationCancelled):
            rotate_master_password(
                session, PASSWORD, NEW_PASSWORD, cancel=cancel, progress=progress,
            )
        assert session.has_pending_rotation()
        rotated = pending_rotation_files(session)
        assert len(rotated) == 2
        for path in rotated:
            decrypt_record(path.read_text(), NEW_PASSWORD, params)
        # the stored hash still belongs to the old password
        assert verify_password(PASSWORD, workspace.read_master_hash())

    def test_rotate_refuses_pending_journal(self, populated):
        session, _, _ = populated
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(RotationCancelled):
            rotate_master_password(session, PASSWORD, NEW_PASSWORD, cancel=cancel)
        with pytest.raises(RotationInProgress):
            rotate_master_password(session, PASSWORD, NEW_PASSWORD)

    def test_resume_completes(self, populated, workspace, params):
        session, paths, legacy = populated
        cancel, progress = self._cancel_after(4)
        with pytest.raises(RotationCancelled):
            rotate_master_password(
                session, PASSWORD, NEW_PASSWORD, cancel=cancel, progress=progress,
            )

        stats = resume_rotation(session, PASSWORD, NEW_PASSWORD)
        assert stats["resumed"] == 3
        assert stats["rotated"] + stats["resumed"] + stats["skipped"] == stats["total"]
        for path in paths:
            decrypt_record(path.read_text(), NEW_PASSWORD, params)
        assert legacy.read_text() == LEGACY
        assert not workspace.journal_path.exists()
        assert verify_password(NEW_PASSWORD, workspace.read_master_hash())

    def test_resume_requires_same_new_password(self, populated):
        session, _, _ = populated
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(RotationCancelled):
            rotate_master_password(session, PASSWORD, NEW_PASSWORD, cancel=cancel)
        with pytest.raises(IncorrectPassword):
            resume_rotation(session, PASSWORD, "a different new password")
        with pytest.raises(IncorrectPassword):
            resume_rotation(session, "wrong old", NEW_PASSWORD)

    def test_resume_without_journal(self, populated):
        session, _, _ = populated
        with pytest.raises(VaultError):
            resume_rotation(session, PASSWORD, NEW_PASSWORD)

    def test_resume_after_unjournaled_write(self, populated, workspace, params):
        """A file rewritten just before a crash is detected by trial decrypt."""
        session, paths, _ = populated
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(RotationCancelled):
            rotate_master_password(session, PASSWORD, NEW_PASSWORD, cancel=cancel)
        # simulate: file rewritten under the new password, journal not updated
        paths[0].write_text(
            encrypt_record({"title": "A"}, "body of A", NEW_PASSWORD, params)
        )
        stats = resume_rotation(session, PASSWORD, NEW_PASSWORD)
        assert stats["resumed"] == 1
        for path in paths:
            decrypt_record(path.read_text(), NEW_PASSWORD, params)

    def test_resume_after_hash_written(self, populated, workspace):
        """Crash after the hash update only leaves the journal to clear."""
        session, _, _ = populated
        rotate_master_password(session, PASSWORD, NEW_PASSWORD)
        RotationJournal(workspace).start("$argon2id$stale")
        stats = resume_rotation(session, PASSWORD, NEW_PASSWORD)
        assert stats["rotated"] == 0
        assert not workspace.journal_path.exists()

    def test_truncated_journal_line_ignored(self, populated, workspace):
        session, _, _ = populated
        journal = RotationJournal(workspace)
        journal.start("$argon2id$x")
        journal.mark("folders/notes/a.md")
        with open(journal.path, "a", encoding="utf-8") as fh:
            fh.write('{"rotated": "folders/no')
        new_hash, rotated = journal.load()
        assert new_hash == "$argon2id$x"
        assert rotated == {"folders/notes/a.md"}

    def test_corrupt_journal_header(self, workspace):
        journal = RotationJournal(workspace)
        workspace.root.mkdir(parents=True, exist_ok=True)
        journal.path.write_text("not json\n")
        with pytest.raises(VaultError, match="corrupt"):
            journal.load()

    def test_unlock_reports_pending(self, populated):
        session, _, _ = populated
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(RotationCancelled):
            rotate_master_password(session, PASSWORD, NEW_PASSWORD, cancel=cancel)
        session.lock()
        assert session.unlock(PASSWORD) is True
        assert session.has_pending_rotation()

    def test_records_refused_while_pending(self, populated):
        """Record access would write under the old password; it is refused."""
        session, _, _ = populated
        cancel, progress = self._cancel_after(1)
        with pytest.raises(RotationCancelled):
            rotate_master_password(
                session, PASSWORD, NEW_PASSWORD, cancel=cancel, progress=progress,
            )
        with pytest.raises(RotationInProgress):
            with session.access():
                pass
        resume_rotation(session, PASSWORD, NEW_PASSWORD)
        with session.access() as password:
            assert password.reveal() == NEW_PASSWORD

    def test_resume_rechecks_journaled_files(self, populated, workspace, params):
        """A journaled record rewritten under the old password is rotated again."""
        session, paths, _ = populated
        cancel, progress = self._cancel_after(1)
        with pytest.raises(RotationCancelled):
            rotate_master_password(
                session, PASSWORD, NEW_PASSWORD, cancel=cancel, progress=progress,
            )
        assert pending_rotation_files(session) == [paths[0]]
        paths[0].write_text(
            encrypt_record({"title": "A"}, "edited body", PASSWORD, params)
        )

        stats = resume_rotation(session, PASSWORD, NEW_PASSWORD)
        assert stats["resumed"] == 0
        assert stats["rotated"] == 4
        assert decrypt_record(paths[0].read_text(), NEW_PASSWORD, params) == (
            {"title": "A"}, "edited body",
        )
        for path in paths[1:]:
            decrypt_record(path.read_text(), NEW_PASSWORD, params)


class TestAbort:
    """Tests for abort_rotation."""

    def _cancelled_after(self, session, count):
        cancel = threading.Event()

        def progress(done, total, rel):
            if done + 1 >= count:
                cancel.set()

        with pytest.raises(RotationCancelled):
            rotate_master_password(
                session, PASSWORD, NEW_PASSWORD, cancel=cancel, progress=progress,
            )

    def test_abort_restores_old_password(self, populated, workspace, params):
        session, paths, legacy = populated
        self._cancelled_after(session, 2)
        stats = abort_rotation(session, PASSWORD, NEW_PASSWORD)
        assert stats["reverted"] == 2
        assert stats["unchanged"] == 2
        assert stats["skipped"] == 1
        for path in paths:
            decrypt_record(path.read_text(), PASSWORD, params)
        assert legacy.read_text() == LEGACY
        assert not session.has_pending_rotation()
        assert verify_password(PASSWORD, workspace.read_master_hash())

    def test_abort_reverts_unjournaled_write(self, populated, params):
        """A file rewritten under the new password before a crash is reverted."""
        session, paths, _ = populated
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(RotationCancelled):
            rotate_master_password(session, PASSWORD, NEW_PASSWORD, cancel=cancel)
        assert pending_rotation_files(session) == []
        paths[0].write_text(
            encrypt_record({"title": "A"}, "body of A", NEW_PASSWORD, params)
        )
        stats = abort_rotation(session, PASSWORD, NEW_PASSWORD)
        assert stats["reverted"] == 1
        decrypt_record(paths[0].read_text(), PASSWORD, params)

    def test_abort_requires_passwords(self, populated):
        session, _, _ = populated
        self._cancelled_after(session, 1)
        with pytest.raises(IncorrectPassword):
            abort_rotation(session, PASSWORD, "a different new password")
        with pytest.raises(IncorrectPassword):
            abort_rotation(session, "wrong old", NEW_PASSWORD)
        assert session.has_pending_rotation()

    def test_abort_without_journal(self, populated):
        session, _, _ = populated
        with pytest.raises(VaultError, match="abort"):
            abort_rotation(session, PASSWORD, NEW_PASSWORD)

    def test_abort_after_commit(self, populated, workspace):
        """Once the new hash is written there is nothing to roll back."""
        session, _, _ = populated
        rotate_master_password(session, PASSWORD, NEW_PASSWORD)
        RotationJournal(workspace).start("$argon2id$stale")
        with pytest.raises(VaultError, match="committed"):
            abort_rotation(session, PASSWORD, NEW_PASSWORD)
