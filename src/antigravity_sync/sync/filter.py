"""FilterEngine: decides which paths under the working directory are eligible for sync."""

from __future__ import annotations

import os
from pathlib import Path

from pathspec import GitIgnoreSpec

from .artifacts import ARTIFACT_PATTERNS

IGNORE_FILE_NAME = ".antigravityignore"

# Always excluded; user patterns can add to this list but never remove from it.
DEFAULT_EXCLUDES = [
    # Engine internals
    ".sync/",
    ".conflicts/",
    ".git/",
    ".sync.lock",
    *ARTIFACT_PATTERNS,
    # Assistant internals that are not worth syncing
    "antigravity-browser-profile/",
    "**/browser_recordings/",
    "**/code_tracker/",
    "**/context_state/",
    "**/implicit/",
    "**/playground/",
    # Machine-specific files
    "**/browserAllowlist.txt",
    "**/browserOnboardingStatus.txt",
    "**/installation_id",
    "**/user_settings.pb",
    # OAuth and credentials
    "google_accounts.json",
    "oauth_creds.json",
    "**/credentials.json",
    "**/secrets.json",
    "**/*.key",
    "**/*.pem",
    # Large media
    "**/*.webm",
    "**/*.mp4",
    "**/*.mov",
    "**/*.webp",
    # Logs and dependencies (conversations are .pb files, keep those)
    "**/*.log",
    "**/node_modules/",
    # OS housekeeping
    ".DS_Store",
    "Thumbs.db",
]


def _to_posix(relative_path: str) -> str:
    return relative_path.replace(os.sep, "/").lstrip("/")


class FilterEngine:
    """Classifies relative paths as included or excluded.

    Patterns come from three sources, in order: the built-in list, the
    ``exclude_patterns`` setting, and ``.antigravityignore`` in the working
    directory. Any match excludes, so order only matters for readability.
    """

    def __init__(self, local_path: str | Path, exclude_patterns=(), sync_folders=()):
        self.local_path = Path(local_path)
        self.sync_folders = [f for f in sync_folders if f]
        user_patterns = [p.strip() for p in exclude_patterns if p and p.strip()]
        user_patterns.extend(self._load_ignore_file())
        self.patterns: list[str] = [*DEFAULT_EXCLUDES, *user_patterns]
        # Separate specs so a user "!pattern" cannot re-include a built-in exclusion.
        self._builtin = GitIgnoreSpec.from_lines(DEFAULT_EXCLUDES)
        self._user = GitIgnoreSpec.from_lines(user_patterns)

    def _load_ignore_file(self) -> list[str]:
        ignore_path = self.local_path / IGNORE_FILE_NAME
        if not ignore_path.is_file():
            return []
        lines = ignore_path.read_text(encoding="utf-8").splitlines()
        return [line.strip() for line in lines if line.strip() and not line.strip().startswith("#")]

    def should_ignore(self, relative_path: str) -> bool:
        rel = _to_posix(relative_path)
        return self._builtin.match_file(rel) or self._user.match_file(rel)

    def is_included(self, relative_path: str) -> bool:
        """True when *relative_path* is inside the managed folders and not excluded."""
        rel = _to_posix(relative_path)
        if self.sync_folders and rel.split("/", 1)[0] not in self.sync_folders:
            return False
        return not self.should_ignore(rel)

    def filter_files(self, files: list[str]) -> list[str]:
        return [f for f in files if not self.should_ignore(f)]

    def get_files_to_sync(self) -> list[str]:
        """Walk the managed folders (or the whole working directory when none are set)."""
        files: list[str] = []
        if not self.local_path.is_dir():
            return files

        if self.sync_folders:
            for folder in self.sync_folders:
                if (self.local_path / folder).is_dir() and not self.should_ignore(f"{folder}/"):
                    self._walk(folder, files)
        else:
            self._walk("", files)

        return sorted(files)

    def _walk(self, relative_dir: str, files: list[str]) -> None:
        root = self.local_path / relative_dir if relative_dir else self.local_path
        for dirpath, dirnames, filenames in os.walk(root):
            rel_dir = Path(dirpath).relative_to(self.local_path).as_posix()
            prefix = "" if rel_dir == "." else f"{rel_dir}/"

            dirnames[:] = sorted(d for d in dirnames if not self.should_ignore(f"{prefix}{d}/"))
            for name in filenames:
                rel = f"{prefix}{name}"
                if not self.should_ignore(rel):
                    files.append(rel)

    @staticmethod
    def default_excludes() -> list[str]:
        return list(DEFAULT_EXCLUDES)
