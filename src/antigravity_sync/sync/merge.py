"""Smart Merge: per-file conflict resolution when a linear pull is impossible.

The winner of each differing path is chosen by a pure rule (``decide``):

1. a side that is absent loses, unless the remote side was deleted after the
   local edit;
2. binary-like files whose sizes differ by more than the threshold keep the
   larger version;
3. otherwise the more recently changed version wins, and ties keep local.

The losing version is always written to the conflicts area when its bytes are
unique, so nothing is ever silently dropped.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from pathlib import Path

from ..core.config import MergePolicy
from ..core.errors import GitCommandError, MergeFailure
from .artifacts import conflict_name, conflict_stamp, device_tag
from .repository import GitRepository, is_push_rejected

logger = logging.getLogger(__name__)

MERGE_COMMIT_MESSAGE = "Sync: smart merge (larger/newer wins)"


class Winner(str, enum.Enum):
    LOCAL = "local"
    REMOTE = "remote"
    NONE = "none"


@dataclass(frozen=True)
class FileSide:
    """One side of a differing path.

    For a remote deletion, ``deleted`` is set and ``mtime`` is the time of the
    deleting commit.
    """

    size: int
    mtime: float
    deleted: bool = False


@dataclass(frozen=True)
class MergeDecision:
    path: str
    winner: Winner
    reason: str


@dataclass
class MergeReport:
    decisions: list[MergeDecision] = field(default_factory=list)
    artifacts: list[Path] = field(default_factory=list)
    commit: str | None = None
    pushed: bool = False

    def count(self, winner: Winner) -> int:
        return sum(1 for d in self.decisions if d.winner is winner)


def decide(
    local: FileSide | None,
    remote: FileSide | None,
    policy: MergePolicy,
    binary: bool = False,
) -> tuple[Winner, str]:
    """Pick the surviving version of one path. Pure and deterministic."""
    if local is None and (remote is None or remote.deleted):
        return Winner.NONE, "absent on both sides"
    if local is None:
        return Winner.REMOTE, "missing locally"
    if remote is None:
        return Winner.LOCAL, "missing remotely"
    if remote.deleted:
        if remote.mtime > local.mtime:
            return Winner.REMOTE, "deleted remotely after the local edit"
        return Winner.LOCAL, "edited locally after the remote deletion"

    if binary:
        largest = max(local.size, remote.size)
        if largest > 0 and abs(local.size - remote.size) / largest > policy.size_diff_threshold:
            if local.size >= remote.size:
                return Winner.LOCAL, "larger binary-like file"
            return Winner.REMOTE, "larger binary-like file"

    if remote.mtime > local.mtime:
        return Winner.REMOTE, "newer"
    return Winner.LOCAL, "newer" if local.mtime > remote.mtime else "tie keeps local"


class SmartMerge:
    """Resolves a failed pull into a merge commit that fast-forwards the remote."""

    def __init__(
        self,
        repo: GitRepository,
        policy: MergePolicy,
        conflicts_dir: str | Path,
        data_root: str | Path,
        hostname: str | None = None,
    ):
        self.repo = repo
        self.policy = policy
        self.conflicts_dir = Path(conflicts_dir)
        self.data_root = Path(data_root)
        self.tag = device_tag(hostname)
        try:
            prefix = self.data_root.relative_to(repo.repo_path).as_posix()
        except ValueError:
            prefix = ""
        self._prefix = "" if prefix in ("", ".") else f"{prefix}/"
        self._base: str | None = None

    def __call__(self, had_stash: bool) -> MergeReport:
        return self.run(had_stash)

    def _log(self, message: str, severity: str = "info") -> None:
        self.repo.events.log(f"[merge] {message}", severity)

    def run(self, had_stash: bool = False) -> MergeReport:
        repo = self.repo
        report = MergeReport()

        repo.abort_in_progress()
        repo.cleanup_index_lock()
        if had_stash:
            repo.stash_pop()
        repo.unstage_all()

        repo.fetch()
        if not repo.has_remote_branch():
            self._log("Remote branch is missing, nothing to merge", "warning")
            return report

        stamp = conflict_stamp()
        # Last state both sides agreed on; a local file equal to it holds no unique edits.
        self._base = repo.merge_base("HEAD", repo.remote_ref)
        paths = repo.diff_names("HEAD", repo.remote_ref)
        self._log(f"Resolving {len(paths)} differing path(s)")

        failures: list[str] = []
        for path in paths:
            try:
                report.decisions.append(self._resolve_path(path, stamp, report))
            except (OSError, GitCommandError) as exc:
                logger.warning("Smart Merge failed on %s", path, exc_info=True)
                failures.append(f"{path}: {exc}")
        if failures:
            raise MergeFailure("Could not resolve " + "; ".join(failures))

        repo.stage_all()
        report.commit = repo.commit_merge(MERGE_COMMIT_MESSAGE, repo.remote_ref)
        self._log(
            f"Merged: {report.count(Winner.LOCAL)} local, {report.count(Winner.REMOTE)} remote, "
            f"{len(report.artifacts)} conflict copie(s)",
            "success",
        )

        self._publish(report)
        return report

    def _publish(self, report: MergeReport) -> None:
        try:
            self.repo.push()
        except GitCommandError as exc:
            if not is_push_rejected(exc):
                raise MergeFailure(f"Push failed after merge: {exc.stderr.strip()}") from exc
            # Someone pushed between our fetch and our push.
            self._log("Push rejected after merge, pulling once and retrying", "warning")
            self.repo.pull_merge()
            try:
                self.repo.push()
            except GitCommandError as exc:
                raise MergeFailure(f"Push failed after merge retry: {exc.stderr.strip()}") from exc
        report.pushed = True

    def _resolve_path(self, path: str, stamp: str, report: MergeReport) -> MergeDecision:
        repo = self.repo
        local_file = repo.repo_path / path

        local = None
        if local_file.is_file():
            st = local_file.stat()
            local = FileSide(size=st.st_size, mtime=st.st_mtime)

        remote_bytes = repo.show_bytes(repo.remote_ref, path)
        if remote_bytes is not None:
            remote = FileSide(size=len(remote_bytes), mtime=repo.last_change_time(repo.remote_ref, path) or 0.0)
        else:
            deleted_at = repo.deletion_time(repo.remote_ref, path)
            remote = FileSide(size=0, mtime=deleted_at, deleted=True) if deleted_at is not None else None

        local_bytes = local_file.read_bytes() if local is not None else None
        if local_bytes is not None and local_bytes == remote_bytes:
            return MergeDecision(path, Winner.NONE, "identical")

        winner, reason = decide(local, remote, self.policy, binary=self.policy.is_binary_like(path))
        logger.debug("%s -> %s (%s)", path, winner.value, reason)

        if winner is Winner.REMOTE:
            if local_bytes is not None:
                base_bytes = repo.show_bytes(self._base, path) if self._base else None
                if base_bytes is None or base_bytes != local_bytes:
                    report.artifacts.append(self._write_artifact(path, local_bytes, stamp))
            if remote_bytes is not None:
                repo.restore_path(repo.remote_ref, path)
            elif local_file.exists():
                local_file.unlink()
        elif winner is Winner.LOCAL and remote_bytes is not None:
            report.artifacts.append(self._write_artifact(path, remote_bytes, stamp))

        return MergeDecision(path, winner, reason)

    def _write_artifact(self, path: str, content: bytes, stamp: str) -> Path:
        inner = path[len(self._prefix) :] if self._prefix and path.startswith(self._prefix) else path
        artifact = self.conflicts_dir / conflict_name(inner, self.tag, stamp)
        artifact.parent.mkdir(parents=True, exist_ok=True)
        artifact.write_bytes(content)
        self._log(f"Saved losing version of {path} as {artifact.name}")
        return artifact
