"""Tests for configuration loading and saving."""

from __future__ import annotations

from pathlib import Path

from antigravity_sync.core.config import (
    DEFAULT_SYNC_FOLDERS,
    SyncConfig,
    get_config_value,
    load_config,
    load_sync_config,
    save_config,
    set_folder_enabled,
)


class TestLoadConfig:
    def test_defaults(self):
        config = load_config()
        assert config["sync"]["sync_interval_minutes"] == 5
        assert config["sync"]["branch"] == "main"
        assert config["merge"]["size_diff_threshold"] == 0.2

    def test_global_overrides_defaults(self, isolated_global_config):
        isolated_global_config.parent.mkdir(parents=True)
        isolated_global_config.write_text('[sync]\nauto_sync = false\n')
        config = load_config()
        assert config["sync"]["auto_sync"] is False
        assert config["sync"]["sync_interval_minutes"] == 5

    def test_env_override_file(self, tmp_path, monkeypatch, isolated_global_config):
        isolated_global_config.parent.mkdir(parents=True)
        isolated_global_config.write_text('[sync]\nbranch = "dev"\nsync_interval_minutes = 10\n')
        override = tmp_path / "override.toml"
        override.write_text("[sync]\nsync_interval_minutes = 1\n")
        monkeypatch.setenv("ANTIGRAVITY_SYNC_CONFIG", str(override))

        config = load_config()
        assert config["sync"]["branch"] == "dev"
        assert config["sync"]["sync_interval_minutes"] == 1


class TestSaveConfig:
    def test_round_trip_typed_values(self):
        save_config("sync.auto_sync", "false")
        save_config("sync.sync_interval_minutes", "15")
        save_config("merge.size_diff_threshold", "0.5")
        save_config("sync.repository_url", "https://github.com/u/r.git")

        config = load_config()
        assert config["sync"]["auto_sync"] is False
        assert config["sync"]["sync_interval_minutes"] == 15
        assert config["merge"]["size_diff_threshold"] == 0.5
        assert config["sync"]["repository_url"] == "https://github.com/u/r.git"

    def test_comma_list(self):
        save_config("sync.exclude_patterns", "*.tmp, *.bak")
        assert load_sync_config().exclude_patterns == ("*.tmp", "*.bak")

    def test_single_item_list_setting(self):
        save_config("sync.sync_folders", "knowledge")
        assert load_sync_config().sync_folders == ("knowledge",)

    def test_writes_to_env_file_when_set(self, tmp_path, monkeypatch):
        override = tmp_path / "custom.toml"
        monkeypatch.setenv("ANTIGRAVITY_SYNC_CONFIG", str(override))
        save_config("sync.branch", "trunk")
        assert 'branch = "trunk"' in override.read_text()


class TestGetConfigValue:
    def test_nested(self):
        assert get_config_value({"a": {"b": 1}}, "a.b") == 1

    def test_missing(self):
        assert get_config_value({"a": {"b": 1}}, "a.c") is None
        assert get_config_value({"a": 1}, "a.b") is None


class TestSyncConfig:
    def test_from_defaults(self):
        config = load_sync_config()
        assert config.sync_folders == tuple(DEFAULT_SYNC_FOLDERS)
        assert config.repo_subdir == ".antigravity-sync"
        assert config.interval_seconds == 300
        assert config.merge.lock_stale_seconds == 300

    def test_derived_paths(self, tmp_path):
        config = SyncConfig(repo_path=tmp_path / "repo")
        assert config.data_root == tmp_path / "repo" / ".antigravity-sync"
        assert config.metadata_dir == config.data_root / ".sync"
        assert config.conflicts_dir == config.data_root / ".conflicts"

    def test_paths_expanded(self):
        config = SyncConfig.from_dict({"sync": {"local_path": "~/x"}})
        assert config.local_path == Path.home() / "x"

    def test_duplicate_folders_removed(self):
        config = SyncConfig.from_dict({"sync": {"sync_folders": ["brain", "brain", "skills"]}})
        assert config.sync_folders == ("brain", "skills")

    def test_binary_like(self):
        policy = load_sync_config().merge
        assert policy.is_binary_like("conversations/a.pb")
        assert policy.is_binary_like("IMG.PNG")
        assert not policy.is_binary_like("notes.pbtxt")
        assert not policy.is_binary_like("notes.md")


class TestFolders:
    def test_enable_and_disable(self):
        folders = set_folder_enabled("custom", True)
        assert "custom" in folders
        assert "custom" in load_sync_config().sync_folders

        folders = set_folder_enabled("brain", False)
        assert "brain" not in folders
        assert "brain" not in load_sync_config().sync_folders

    def test_enable_twice_is_noop(self):
        set_folder_enabled("custom", True)
        assert set_folder_enabled("custom", True).count("custom") == 1
