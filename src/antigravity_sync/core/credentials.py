"""Credential store: access tokens and sync passwords keyed by repository URL.

The store is a single JSON file restricted to the owner (0600). Keys are the
clean form of the repository URL, so ``git@host:a/b.git`` and
``https://host/a/b`` resolve to the same entry.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

from .git_utils import clean_remote_url

_DEFAULT_STORE_PATH = Path.home() / ".antigravity-sync" / "credentials.json"


class CredentialStore:
    """get/set/delete for tokens and sync passwords."""

    def __init__(self, path: str | Path | None = None):
        self.path = Path(path) if path else _DEFAULT_STORE_PATH

    def get_token(self, repo_url: str) -> str | None:
        return self._get("tokens", repo_url)

    def set_token(self, repo_url: str, token: str) -> None:
        self._set("tokens", repo_url, token)

    def delete_token(self, repo_url: str) -> None:
        self._delete("tokens", repo_url)

    def get_password(self, repo_url: str) -> str | None:
        return self._get("passwords", repo_url)

    def set_password(self, repo_url: str, password: str) -> None:
        self._set("passwords", repo_url, password)

    def delete_password(self, repo_url: str) -> None:
        self._delete("passwords", repo_url)

    def _key(self, repo_url: str) -> str:
        return clean_remote_url(repo_url)

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.chmod(self.path, 0o600)

    def _get(self, section: str, repo_url: str) -> str | None:
        if not repo_url:
            return None
        value = self._load().get(section, {}).get(self._key(repo_url))
        return value or None

    def _set(self, section: str, repo_url: str, value: str) -> None:
        data = self._load()
        data.setdefault(section, {})[self._key(repo_url)] = value
        self._save(data)

    def _delete(self, section: str, repo_url: str) -> None:
        if not repo_url:
            return
        data = self._load()
        if data.get(section, {}).pop(self._key(repo_url), None) is not None:
            self._save(data)
