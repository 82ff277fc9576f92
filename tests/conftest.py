"""Shared fixtures: temp git remotes, replicas and isolated configuration."""

from __future__ import annotations

import os
import subprocess
import time
from pathlib import Path

import pytest

from antigravity_sync.core.config import SyncConfig
from antigravity_sync.core.credentials import CredentialStore
from antigravity_sync.core.events import EventBus
from antigravity_sync.sync.engine import SyncEngine
from antigravity_sync.sync.repository import GitRepository


def git(*args, cwd, env=None) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=str(cwd),
        check=True,
        capture_output=True,
        text=True,
        env={**os.environ, **(env or {})},
    )
    return result.stdout.strip()


def write_file(path: Path, content: str | bytes, mtime: float | None = None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        path.write_bytes(content)
    else:
        path.write_text(content, encoding="utf-8")
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


def future_date(seconds: int = 3600) -> str:
    """A commit date *seconds* from now, in git's ``<epoch> +0000`` form."""
    return f"{int(time.time()) + seconds} +0000"


@pytest.fixture(autouse=True)
def isolated_global_config(tmp_path, monkeypatch):
    """Keep tests away from the user's real config."""
    config_path = tmp_path / "global_ags" / "config.toml"
    monkeypatch.setattr("antigravity_sync.core.config._GLOBAL_CONFIG_PATH", config_path)
    monkeypatch.delenv("ANTIGRAVITY_SYNC_CONFIG", raising=False)
    return config_path


@pytest.fixture
def git_repo(tmp_path):
    """Create a real git repo in a temp directory."""
    repo = tmp_path / "repo"
    repo.mkdir()
    git("init", "-b", "main", str(repo), cwd=tmp_path)
    git("config", "user.email", "test@test.com", cwd=repo)
    git("config", "user.name", "Test", cwd=repo)
    git("commit", "--allow-empty", "-m", "init", cwd=repo)
    return repo


@pytest.fixture
def bare_remote(tmp_path):
    """An empty bare repository standing in for the hosted remote."""
    remote = tmp_path / "remote.git"
    git("init", "--bare", "-b", "main", str(remote), cwd=tmp_path)
    return remote


@pytest.fixture
def make_clone(tmp_path, bare_remote):
    """Factory for GitRepository working copies of the bare remote."""

    def factory(name: str) -> GitRepository:
        repo = GitRepository(tmp_path / name, str(bare_remote), token="test-token", events=EventBus())
        repo.ensure_repository()
        return repo

    return factory


@pytest.fixture
def make_replica(tmp_path, bare_remote):
    """Factory for SyncEngines that share the bare remote, one per simulated machine."""

    def factory(name: str, password: str | None = None, **overrides) -> SyncEngine:
        base = tmp_path / name
        options = dict(
            repository_url=str(bare_remote),
            local_path=base / "local",
            repo_path=base / "repo",
            sync_password_enabled=password is not None,
        )
        options.update(overrides)
        config = SyncConfig(**options)
        config.local_path.mkdir(parents=True, exist_ok=True)

        credentials = CredentialStore(base / "credentials.json")
        credentials.set_token(config.repository_url, "test-token")
        if password is not None:
            credentials.set_password(config.repository_url, password)

        return SyncEngine(
            config_loader=lambda: config,
            credentials=credentials,
            config_saver=lambda key, value: None,
            hostname=name,
        )

    return factory
