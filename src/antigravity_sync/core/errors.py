"""Error taxonomy for sync operations."""

from __future__ import annotations


class SyncError(Exception):
    """Base class for every failure raised by the sync engine."""


class ConfigurationError(SyncError):
    """Repository URL, access token or sync password is missing or invalid."""


class AccessError(SyncError):
    """The remote rejected our credentials (401/403)."""


class NotFoundError(SyncError):
    """The remote repository does not exist or cannot be reached by this token."""


class NetworkError(SyncError):
    """Transient connectivity failure; the next scheduled run retries."""


class PasswordMismatchError(SyncError):
    """The local sync password does not match the hash stored in the repository."""


class MergeFailure(SyncError):
    """Smart Merge could not publish its result, even after one retry."""


class GitCommandError(SyncError):
    """A git subprocess exited non-zero."""

    def __init__(self, args: list[str], returncode: int, stderr: str = "", stdout: str = ""):
        self.git_args = list(args)
        self.returncode = returncode
        self.stderr = stderr
        self.stdout = stdout
        detail = (stderr or stdout).strip()
        super().__init__(f"git {' '.join(args)} failed ({returncode}): {detail}")

    @property
    def output(self) -> str:
        return f"{self.stdout}\n{self.stderr}"
