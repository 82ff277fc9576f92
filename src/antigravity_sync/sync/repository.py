"""Local git working copy: clone/init, remote wiring, fetch, pull, commit, push.

Every network command carries the access token only for that invocation; the
``origin`` remote always stores the credential-free URL.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from ..core.errors import GitCommandError, MergeFailure, SyncError
from ..core.events import EventBus
from ..core.git_utils import classify_git_error, clean_remote_url, run_git
from .lock import LOCK_FILE_NAME

logger = logging.getLogger(__name__)

STASH_MESSAGE = "antigravity-sync-temp"
COMMITTER_NAME = "Antigravity Sync"
COMMITTER_EMAIL = "sync@antigravity.local"

_CONFLICT_CODES = {"DD", "AU", "UD", "UA", "DU", "AA", "UU"}

# Output fragments of a pull that cannot be applied linearly.
_MERGE_NEEDED_MARKERS = (
    "divergent",
    "reconcile",
    "conflict",
    "exiting",
    "unresolved",
    "needs merge",
    "could not write index",
    "index.lock",
    "could not apply",
    "unmerged",
)
_REJECTED_MARKERS = ("rejected", "non-fast-forward", "fetch first", "failed to push some refs")

Resolver = Callable[[bool], object]


def needs_merge(output: str) -> bool:
    lowered = output.lower()
    return any(marker in lowered for marker in _MERGE_NEEDED_MARKERS)


def is_push_rejected(exc: GitCommandError) -> bool:
    lowered = exc.output.lower()
    return any(marker in lowered for marker in _REJECTED_MARKERS) and "permission" not in lowered


class GitRepository:
    """The replica's versioned working tree."""

    def __init__(
        self,
        repo_path: str | Path,
        remote_url: str,
        token: str | None = None,
        branch: str = "main",
        events: EventBus | None = None,
    ):
        self.repo_path = Path(repo_path)
        self.remote_url = remote_url
        self.clean_url = clean_remote_url(remote_url)
        self.token = token
        self.branch = branch
        self.events = events or EventBus()

    @property
    def remote_ref(self) -> str:
        return f"origin/{self.branch}"

    def _log(self, message: str, severity: str = "info") -> None:
        self.events.log(f"[git] {message}", severity)

    def _git(self, args: list[str], check: bool = True, timeout: float = 60, text: bool = True):
        return run_git(args, cwd=self.repo_path, check=check, timeout=timeout, text=text)

    def _net(self, args: list[str], timeout: float = 120, cwd: Path | None = None):
        """Run a command that talks to the remote, with the token attached."""
        return run_git(
            args,
            cwd=cwd or self.repo_path,
            timeout=timeout,
            token=self.token,
            remote_url=self.remote_url,
        )

    # -- access and setup -------------------------------------------------

    @staticmethod
    def verify_access(remote_url: str, token: str | None, cwd: str | Path | None = None) -> None:
        """Read-only ``ls-remote`` against *remote_url*. Raises AccessError/NotFoundError/NetworkError."""
        try:
            run_git(
                ["ls-remote", "--heads", clean_remote_url(remote_url)],
                cwd=cwd or Path.home(),
                timeout=30,
                token=token,
                remote_url=remote_url,
            )
        except GitCommandError as exc:
            raise classify_git_error(exc) from exc

    def is_repository(self) -> bool:
        if not (self.repo_path / ".git").exists():
            return False
        result = self._git(["rev-parse", "--is-inside-work-tree"], check=False)
        return result.returncode == 0 and result.stdout.strip() == "true"

    def has_commits(self) -> bool:
        return self._git(["rev-parse", "--verify", "--quiet", "HEAD"], check=False).returncode == 0

    def has_remote_branch(self) -> bool:
        result = self._git(["rev-parse", "--verify", "--quiet", f"refs/remotes/{self.remote_ref}"], check=False)
        return result.returncode == 0

    def ensure_repository(self) -> None:
        """Make sure a usable working copy exists and points at the configured remote."""
        self.repo_path.mkdir(parents=True, exist_ok=True)

        if not self.is_repository():
            # The sync lock marker may already sit at the root, so a plain
            # `git clone` into this directory is not possible. init + fetch +
            # checkout below produces the same working copy.
            if any(not p.name.startswith(LOCK_FILE_NAME) for p in self.repo_path.iterdir()):
                self._log("Existing files without .git, initializing in place")
            else:
                self._log(f"Cloning {self.clean_url}")
            self._git(["init", "-b", self.branch])

        self._git(["config", "--local", "user.name", COMMITTER_NAME])
        self._git(["config", "--local", "user.email", COMMITTER_EMAIL])
        self._git(["config", "--local", "commit.gpgsign", "false"])
        self._ensure_origin()
        self._exclude_lock_file()

        if not self.has_commits():
            self.fetch()
            if self.has_remote_branch():
                self._adopt_remote_branch()
            else:
                self._log("Remote is empty, creating the first commit")
                self._git(["symbolic-ref", "HEAD", f"refs/heads/{self.branch}"])
                self._git(["commit", "--allow-empty", "-m", "Initial commit"])

    def _adopt_remote_branch(self) -> None:
        self._log(f"Checking out {self.remote_ref}")
        try:
            self._git(["checkout", "-B", self.branch, self.remote_ref])
        except GitCommandError:
            # Untracked files would be overwritten: keep them as local changes
            # on top of the remote branch and only fill in what is missing.
            self._log("Keeping existing files as local changes on top of the remote branch", "warning")
            self._git(["symbolic-ref", "HEAD", f"refs/heads/{self.branch}"])
            self._git(["reset", "-q", self.remote_ref])
            self._git(["checkout-index", "--all"], check=False)

    def _ensure_origin(self) -> None:
        result = self._git(["remote", "get-url", "origin"], check=False)
        if result.returncode != 0:
            self._git(["remote", "add", "origin", self.clean_url])
        elif result.stdout.strip() != self.clean_url:
            self._git(["remote", "set-url", "origin", self.clean_url])

    def _exclude_lock_file(self) -> None:
        exclude = self.repo_path / ".git" / "info" / "exclude"
        exclude.parent.mkdir(parents=True, exist_ok=True)
        entry = f"/{LOCK_FILE_NAME}*"
        existing = exclude.read_text(encoding="utf-8") if exclude.exists() else ""
        if entry not in existing.splitlines():
            if existing and not existing.endswith("\n"):
                existing += "\n"
            exclude.write_text(existing + entry + "\n", encoding="utf-8")

    # -- working tree state -----------------------------------------------

    def status_entries(self) -> list[tuple[str, str]]:
        """``(XY code, path)`` pairs from ``git status --porcelain``."""
        out = self._git(["status", "--porcelain", "-z", "--untracked-files=all"]).stdout
        parts = out.split("\0")
        entries: list[tuple[str, str]] = []
        i = 0
        while i < len(parts):
            entry = parts[i]
            i += 1
            if len(entry) < 4:
                continue
            code, path = entry[:2], entry[3:]
            if code[0] in "RC":
                # Renames and copies are followed by the original path.
                i += 1
            entries.append((code, path))
        return entries

    def has_conflicts(self) -> bool:
        return any(code in _CONFLICT_CODES for code, _ in self.status_entries())

    def pending_changes(self) -> int:
        return len(self.status_entries())

    def changed_files(self, limit: int = 10) -> tuple[list[str], int]:
        paths = [path for _, path in self.status_entries()]
        return paths[:limit], len(paths)

    def head_sha(self) -> str | None:
        result = self._git(["rev-parse", "--verify", "--quiet", "HEAD"], check=False)
        return result.stdout.strip() if result.returncode == 0 else None

    def last_commit_date(self) -> str | None:
        result = self._git(["log", "-1", "--format=%cI"], check=False)
        value = result.stdout.strip()
        return value if result.returncode == 0 and value else None

    def ahead_behind(self, fetch: bool = True) -> tuple[int, int]:
        if fetch:
            try:
                self.fetch()
            except SyncError:
                logger.debug("Fetch for ahead/behind failed", exc_info=True)
        if not self.has_remote_branch():
            result = self._git(["rev-list", "--count", "HEAD"], check=False)
            return (int(result.stdout.strip() or 0), 0) if result.returncode == 0 else (0, 0)
        result = self._git(["rev-list", "--left-right", "--count", f"HEAD...{self.remote_ref}"], check=False)
        if result.returncode != 0:
            return 0, 0
        ahead, behind = result.stdout.split()
        return int(ahead), int(behind)

    # -- object lookups used by Smart Merge ------------------------------

    def diff_names(self, a: str, b: str) -> list[str]:
        out = self._git(["diff", "--name-only", "-z", a, b]).stdout
        return [p for p in out.split("\0") if p]

    def show_bytes(self, rev: str, path: str) -> bytes | None:
        result = self._git(["cat-file", "blob", f"{rev}:{path}"], check=False, text=False)
        return result.stdout if result.returncode == 0 else None

    def _commit_time(self, args: list[str]) -> float | None:
        result = self._git(["log", "-1", "--format=%ct", *args], check=False)
        value = result.stdout.strip()
        if result.returncode != 0 or not value:
            return None
        try:
            return float(value)
        except ValueError:
            return None

    def last_change_time(self, rev: str, path: str) -> float | None:
        return self._commit_time([rev, "--", path])

    def deletion_time(self, rev: str, path: str) -> float | None:
        return self._commit_time(["--diff-filter=D", rev, "--", path])

    # -- sync primitives --------------------------------------------------

    def fetch(self) -> None:
        try:
            self._net(["fetch", "origin"])
        except GitCommandError as exc:
            raise classify_git_error(exc) from exc

    def stash_push(self) -> None:
        self._git(["stash", "push", "--include-untracked", "-m", STASH_MESSAGE])

    def stash_pop(self) -> bool:
        result = self._git(["stash", "pop"], check=False)
        if result.returncode != 0:
            self._log(f"Restoring set-aside changes failed, they stay in the stash: {result.stderr.strip()}", "warning")
            return False
        return True

    def abort_in_progress(self) -> None:
        """Abort a half-finished rebase or merge, if any."""
        for args in (["rebase", "--abort"], ["merge", "--abort"]):
            result = self._git(args, check=False)
            logger.debug("git %s -> %s %s", " ".join(args), result.returncode, result.stderr.strip())

    def cleanup_index_lock(self) -> None:
        lock_path = self.repo_path / ".git" / "index.lock"
        if lock_path.exists():
            lock_path.unlink()
            self._log("Removed stale .git/index.lock")

    def pull(self, resolver: Resolver | None = None):
        """Linear pull that sets aside and restores uncommitted changes.

        When the pull cannot be applied linearly, *resolver* (Smart Merge) is
        called with whether a stash is pending, and its result is returned.
        Returns None for an ordinary pull.
        """
        if self.has_conflicts():
            self._log("Unresolved merge state found, running Smart Merge", "warning")
            return self._resolve(resolver, had_stash=False, output="unresolved conflicts")

        entries = self.status_entries()
        had_stash = bool(entries)
        if had_stash:
            self._log(f"Setting aside {len(entries)} local change(s)")
            self.stash_push()

        try:
            self._net(["pull", "--rebase", "origin", self.branch])
        except GitCommandError as exc:
            output = exc.output
            if "couldn't find remote ref" in output.lower():
                self._log("Remote branch does not exist yet, nothing to pull")
                if had_stash:
                    self.stash_pop()
                return None
            if needs_merge(output):
                self._log("Pull cannot fast-forward, running Smart Merge", "warning")
                return self._resolve(resolver, had_stash=had_stash, output=output)
            if had_stash:
                self.stash_pop()
            raise classify_git_error(exc) from exc

        if had_stash:
            self.stash_pop()
        return None

    def _resolve(self, resolver: Resolver | None, had_stash: bool, output: str):
        if resolver is None:
            self.abort_in_progress()
            if had_stash:
                self.stash_pop()
            raise MergeFailure(f"Pull needs a merge and no resolver is configured: {output.strip()}")
        return resolver(had_stash)

    def pull_merge(self) -> None:
        """Non-rebasing pull, used as the single retry after a rejected push."""
        try:
            self._net(["pull", "--no-rebase", "--no-edit", "origin", self.branch])
        except GitCommandError as exc:
            self._git(["merge", "--abort"], check=False)
            raise MergeFailure(f"Retry pull failed: {exc.stderr.strip()}") from exc

    def unstage_all(self) -> None:
        self._git(["reset", "-q", "HEAD"])

    def restore_path(self, rev: str, path: str) -> None:
        self._git(["checkout", rev, "--", path])

    def merge_base(self, a: str, b: str) -> str | None:
        result = self._git(["merge-base", a, b], check=False)
        return result.stdout.strip() if result.returncode == 0 else None

    def is_ancestor(self, ancestor: str, descendant: str = "HEAD") -> bool:
        return self._git(["merge-base", "--is-ancestor", ancestor, descendant], check=False).returncode == 0

    def commit_merge(self, message: str, other: str) -> str | None:
        """Record the staged tree as a merge of HEAD and *other*.

        Falls back to an ordinary commit when *other* is already contained in
        HEAD. The branch then fast-forwards *other*, so the push needs no force.
        """
        if self.is_ancestor(other):
            return self.commit(message)
        tree = self._git(["write-tree"]).stdout.strip()
        sha = self._git(["commit-tree", tree, "-p", "HEAD", "-p", other, "-m", message]).stdout.strip()
        self._git(["update-ref", "-m", message, "HEAD", sha])
        return sha

    def stage_all(self) -> None:
        self._git(["add", "-A"])

    def stage_paths(self, paths: list[str]) -> None:
        if paths:
            self._git(["add", "--", *paths])

    def commit(self, message: str) -> str | None:
        """Commit staged changes. A clean tree is a normal outcome and returns None."""
        if self._git(["diff", "--cached", "--quiet"], check=False).returncode == 0:
            return None
        self._git(["commit", "-m", message])
        return self.head_sha()

    def push(self) -> None:
        """Push the tracked branch, creating the upstream link on first push.

        A rejected (non-fast-forward) push re-raises the raw GitCommandError so
        callers can pull and retry; everything else is classified.
        """
        try:
            self._net(["push", "--set-upstream", "origin", self.branch])
        except GitCommandError as exc:
            if is_push_rejected(exc):
                raise
            raise classify_git_error(exc) from exc


def sync_commit_message(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"Sync: {now.isoformat(timespec='seconds')}"
