"""End-to-end tests for SyncEngine against a local bare remote."""

from __future__ import annotations

import time
from unittest.mock import patch

import pytest

from conftest import git, write_file

from antigravity_sync.core.config import SyncConfig
from antigravity_sync.core.credentials import CredentialStore
from antigravity_sync.core.errors import ConfigurationError, PasswordMismatchError
from antigravity_sync.core.events import EventBus
from antigravity_sync.sync.engine import SyncEngine, SyncState
from antigravity_sync.sync.lock import SyncLock


def _local(engine: SyncEngine):
    return engine.config_loader().local_path


def _commit_count(engine: SyncEngine) -> int:
    return int(git("rev-list", "--count", "HEAD", cwd=engine.config_loader().repo_path))


class TestSyncPropagation:
    def test_file_reaches_second_replica(self, make_replica):
        a = make_replica("a")
        b = make_replica("b")
        write_file(_local(a) / "knowledge" / "topic.md", "hello from a")

        assert a.sync() is True
        assert b.sync() is True

        assert (_local(b) / "knowledge" / "topic.md").read_text() == "hello from a"
        assert a.state is SyncState.SYNCED
        assert a.last_sync is not None

    def test_excluded_files_stay_local(self, make_replica):
        a = make_replica("a")
        b = make_replica("b")
        write_file(_local(a) / "brain" / "notes.md", "keep")
        write_file(_local(a) / "brain" / "debug.log", "noise")
        write_file(_local(a) / "brain" / "credentials.json", "{}")

        a.sync()
        b.sync()

        assert (_local(b) / "brain" / "notes.md").exists()
        assert not (_local(b) / "brain" / "debug.log").exists()
        assert not (_local(b) / "brain" / "credentials.json").exists()

    def test_unmanaged_folder_not_synced(self, make_replica):
        a = make_replica("a", sync_folders=("knowledge",))
        b = make_replica("b")
        write_file(_local(a) / "knowledge" / "k.md", "yes")
        write_file(_local(a) / "brain" / "b.md", "no")

        a.sync()
        b.sync()

        assert (_local(b) / "knowledge" / "k.md").exists()
        assert not (_local(b) / "brain").exists()

    def test_second_sync_without_changes_adds_no_commit(self, make_replica):
        a = make_replica("a")
        write_file(_local(a) / "knowledge" / "topic.md", "stable")

        a.sync()
        before = _commit_count(a)
        a.sync()
        a.push()

        assert _commit_count(a) == before

    def test_newer_local_edit_kept_and_remote_saved(self, make_replica):
        a = make_replica("a")
        b = make_replica("b")
        write_file(_local(a) / "knowledge" / "n.md", "v1")
        a.sync()
        b.sync()

        write_file(_local(a) / "knowledge" / "n.md", "from a", mtime=time.time() - 100)
        a.sync()
        write_file(_local(b) / "knowledge" / "n.md", "from b, longer", mtime=time.time() + 100)
        b.sync()

        assert (_local(b) / "knowledge" / "n.md").read_text() == "from b, longer"
        conflicts = b.config_loader().conflicts_dir
        saved = [p.read_text() for p in conflicts.rglob("*") if p.is_file()]
        assert "from a" in saved

        a.sync()
        assert (_local(a) / "knowledge" / "n.md").read_text() == "from b, longer"

    def test_push_does_not_revert_other_replica_edit(self, make_replica, bare_remote):
        a = make_replica("a")
        b = make_replica("b")
        write_file(_local(a) / "knowledge" / "f.md", "base")
        a.sync()
        b.sync()

        write_file(_local(a) / "knowledge" / "f.md", "edited on a")
        a.sync()
        write_file(_local(b) / "knowledge" / "other.md", "unrelated")
        assert b.push() is True

        assert git("show", "main:.antigravity-sync/knowledge/f.md", cwd=bare_remote) == "edited on a"
        assert git("show", "main:.antigravity-sync/knowledge/other.md", cwd=bare_remote) == "unrelated"
        assert (_local(b) / "knowledge" / "f.md").read_text() == "edited on a"

    def test_plain_local_edit_writes_no_conflict_copy(self, make_replica, bare_remote):
        a = make_replica("a")
        write_file(_local(a) / "knowledge" / "f.md", "v1", mtime=time.time() - 600)
        a.sync()

        write_file(_local(a) / "knowledge" / "f.md", "v2, edited")
        a.sync()

        conflicts = a.config_loader().conflicts_dir
        assert [p for p in conflicts.rglob("*") if p.is_file()] == []
        assert git("show", "main:.antigravity-sync/knowledge/f.md", cwd=bare_remote) == "v2, edited"


class TestExclusion:
    def test_lock_held_by_other_process_skips(self, make_replica):
        a = make_replica("a")
        write_file(_local(a) / "knowledge" / "topic.md", "x")
        lock = SyncLock(a.config_loader().repo_path)
        assert lock.acquire()
        try:
            assert a.sync() is False
        finally:
            lock.release()

        repo_path = a.config_loader().repo_path
        assert not (repo_path / ".git").exists()
        assert not (repo_path / ".antigravity-sync").exists()

    def test_lock_released_after_sync(self, make_replica):
        a = make_replica("a")
        a.sync()
        assert not SyncLock(a.config_loader().repo_path).is_locked()

    def test_in_process_busy_flag_skips(self, make_replica):
        a = make_replica("a")
        a._busy = True
        assert a.sync() is False
        assert a.pull() is None

    def test_lock_released_after_failure(self, make_replica):
        a = make_replica("a")
        with patch.object(a, "_pull_cycle", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError):
                a.sync()
        assert not SyncLock(a.config_loader().repo_path).is_locked()
        assert a.state is SyncState.ERROR
        assert a.last_error == "boom"
        assert a.sync() is True


class TestPassword:
    def test_first_device_publishes_hash(self, make_replica):
        a = make_replica("a", password="secret")
        a.sync()
        metadata = a.config_loader().metadata_dir
        assert (metadata / "password.sha256").exists()
        log = git("log", "--format=%s", cwd=a.config_loader().repo_path)
        assert "Sync: set sync password" in log

    def test_wrong_password_rejected(self, make_replica):
        make_replica("a", password="secret").sync()
        b = make_replica("b", password="guess")
        write_file(_local(b) / "knowledge" / "b.md", "should not leave b")

        with pytest.raises(PasswordMismatchError):
            b.sync()

        assert b.state is SyncState.ERROR
        c = make_replica("c", password="secret")
        c.sync()
        assert not (_local(c) / "knowledge" / "b.md").exists()

    def test_matching_password_syncs(self, make_replica):
        a = make_replica("a", password="secret")
        write_file(_local(a) / "knowledge" / "a.md", "shared")
        a.sync()

        b = make_replica("b", password="secret")
        assert b.sync() is True
        assert (_local(b) / "knowledge" / "a.md").read_text() == "shared"

    def test_missing_password_is_configuration_error(self, make_replica):
        a = make_replica("a", password="secret")
        a.credentials.delete_password(a.config_loader().repository_url)
        with pytest.raises(ConfigurationError):
            a.sync()

    def test_reset_password(self, make_replica):
        a = make_replica("a", password="old")
        a.sync()

        a.reset_password("new")

        assert a.credentials.get_password(a.config_loader().repository_url) == "new"
        assert make_replica("b", password="new").sync() is True
        with pytest.raises(PasswordMismatchError):
            make_replica("c", password="old").sync()
        assert any(e.data.get("audit") for e in a.events.recent())

    def test_reset_password_rejects_empty(self, make_replica):
        with pytest.raises(ConfigurationError):
            make_replica("a", password="old").reset_password("")


class TestConfiguration:
    def test_missing_token(self, make_replica):
        a = make_replica("a")
        a.credentials.delete_token(a.config_loader().repository_url)
        with pytest.raises(ConfigurationError):
            a.sync()
        assert a.state is SyncState.NOT_CONFIGURED

    def test_not_configured(self, tmp_path):
        engine = SyncEngine(config_loader=SyncConfig, credentials=CredentialStore(tmp_path / "c.json"))
        with pytest.raises(ConfigurationError):
            engine.sync()

    def test_configure_rejects_bad_url(self, tmp_path):
        engine = SyncEngine(config_loader=SyncConfig, credentials=CredentialStore(tmp_path / "c.json"))
        with pytest.raises(ConfigurationError):
            engine.configure("ftp://example.com/repo", "token")

    def test_configure_rolls_back_on_failure(self, tmp_path):
        saved = []
        credentials = CredentialStore(tmp_path / "c.json")
        engine = SyncEngine(
            config_loader=SyncConfig,
            credentials=credentials,
            config_saver=lambda key, value: saved.append((key, value)),
        )
        url = "https://github.com/me/antigravity-data.git"

        with patch("antigravity_sync.sync.engine.GitRepository.verify_access"), patch.object(
            engine, "initialize", side_effect=RuntimeError("clone failed")
        ):
            with pytest.raises(RuntimeError):
                engine.configure(url, "tok", "pw")

        assert credentials.get_token(url) is None
        assert credentials.get_password(url) is None
        assert saved == [("sync.repository_url", url), ("sync.repository_url", "")]
        assert engine.state is SyncState.NOT_CONFIGURED

    def test_configure_keeps_settings_on_success(self, tmp_path):
        saved = []
        credentials = CredentialStore(tmp_path / "c.json")
        engine = SyncEngine(
            config_loader=SyncConfig,
            credentials=credentials,
            config_saver=lambda key, value: saved.append((key, value)),
        )
        url = "https://github.com/me/antigravity-data.git"

        with patch("antigravity_sync.sync.engine.GitRepository.verify_access") as verify, patch.object(
            engine, "initialize", return_value=True
        ):
            engine.configure(url, "tok", "pw")

        verify.assert_called_once_with(url, "tok")
        assert credentials.get_token(url) == "tok"
        assert credentials.get_password(url) == "pw"
        assert saved == [("sync.repository_url", url)]

    def test_disconnect_forgets_credentials(self, make_replica):
        a = make_replica("a", password="pw")
        url = a.config_loader().repository_url
        a.disconnect()
        assert a.credentials.get_token(url) is None
        assert a.credentials.get_password(url) is None
        assert a.state is SyncState.NOT_CONFIGURED


class TestStatus:
    def test_unconfigured(self, tmp_path):
        engine = SyncEngine(config_loader=SyncConfig, credentials=CredentialStore(tmp_path / "c.json"))
        status = engine.get_status()
        assert status.state is SyncState.NOT_CONFIGURED
        assert status.repository == ""
        assert status.to_dict()["state"] == "not_configured"

    def test_configured_before_first_sync_is_idle(self, make_replica):
        status = make_replica("a").get_status()
        assert status.state is SyncState.IDLE
        assert status.pending_changes == 0

    def test_after_sync(self, make_replica):
        a = make_replica("a")
        write_file(_local(a) / "knowledge" / "topic.md", "x")
        a.sync()

        status = a.get_status()
        assert status.state is SyncState.SYNCED
        assert status.pending_changes == 0
        assert status.to_dict()["last_sync"] is not None

    def test_detailed_lists_changed_files(self, make_replica):
        a = make_replica("a")
        write_file(_local(a) / "knowledge" / "topic.md", "x")
        a.sync()
        data_root = a.config_loader().data_root
        for i in range(3):
            write_file(data_root / "knowledge" / f"new{i}.md", str(i))

        detailed = a.get_detailed_status(limit=2)

        assert detailed.pending_changes == 3
        assert detailed.total_files == 3
        assert len(detailed.changed_files) == 2
        assert (detailed.ahead, detailed.behind) == (0, 0)
        assert detailed.last_commit_date

    def test_events_reach_subscribers(self, make_replica):
        a = make_replica("a")
        seen = []
        a.events = EventBus()
        a.events.subscribe(seen.append)
        a.sync()
        states = [e.state for e in seen if e.kind == "state"]
        assert states[-1] == "synced"
        assert any(e.kind == "stats" for e in seen)
