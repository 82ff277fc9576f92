"""Copy files between the working directory and the repository's data root.

Size plus modification time is the cheap change oracle; byte comparison only
breaks ties. Pulling never overwrites a local file that is newer than the
repository copy: the repository version goes to the conflicts area instead.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import asdict, dataclass
from pathlib import Path

from .artifacts import conflict_stamp, is_artifact, remote_name

logger = logging.getLogger(__name__)

METADATA_DIRS = {".sync", ".conflicts", ".git"}
_CHUNK = 1024 * 1024


@dataclass
class PullStats:
    copied: int = 0
    skipped_local_newer: int = 0
    conflict_copies: int = 0
    skipped_conflict_files: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class FileRecord:
    relative_path: str
    size: int
    mtime: float

    @classmethod
    def from_path(cls, path: Path, relative_path: str) -> FileRecord:
        st = path.stat()
        return cls(relative_path=relative_path, size=st.st_size, mtime=st.st_mtime)


def files_equal(a: str | Path, b: str | Path) -> bool:
    """Byte comparison, short-circuiting on size."""
    try:
        if os.path.getsize(a) != os.path.getsize(b):
            return False
        with open(a, "rb") as fa, open(b, "rb") as fb:
            while True:
                chunk_a = fa.read(_CHUNK)
                chunk_b = fb.read(_CHUNK)
                if chunk_a != chunk_b:
                    return False
                if not chunk_a:
                    return True
    except FileNotFoundError:
        return False


def _same_stat(src: os.stat_result, dst: os.stat_result) -> bool:
    # Millisecond resolution: some filesystems truncate the nanosecond part on copy.
    return src.st_size == dst.st_size and src.st_mtime_ns // 1_000_000 == dst.st_mtime_ns // 1_000_000


class ChangeCopier:
    def __init__(
        self,
        local_path: str | Path,
        data_root: str | Path,
        conflicts_dir: str | Path,
        mtime_tolerance: float = 1.0,
    ):
        self.local_path = Path(local_path)
        self.data_root = Path(data_root)
        self.conflicts_dir = Path(conflicts_dir)
        self.mtime_tolerance = mtime_tolerance

    def copy_local_to_repo(self, files: list[str]) -> int:
        """Copy *files* (relative to the working directory) into the data root. Returns count copied."""
        copied = 0
        for relative_path in files:
            src = self.local_path / relative_path
            dst = self.data_root / relative_path
            try:
                src_stat = src.stat()
            except FileNotFoundError:
                continue

            try:
                if _same_stat(src_stat, dst.stat()):
                    continue
            except FileNotFoundError:
                pass

            dst.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src, dst)
            copied += 1

        if copied:
            logger.info("Copied %d file(s) into the repository", copied)
        return copied

    def copy_repo_to_local(
        self,
        folders: list[str] | tuple[str, ...] = (),
        incoming: set[str] | None = None,
    ) -> PullStats:
        """Copy the mirrored managed folders back into the working directory.

        *incoming* holds the paths the preceding pull changed. A newer local file
        outside that set is an outgoing edit, not a conflict: it is left alone
        and the push half of the cycle carries it to the repository. With
        *incoming* None every newer local file is treated as a conflict.
        """
        stats = PullStats()
        stamp = conflict_stamp()

        if folders:
            roots = [f for f in folders if f not in METADATA_DIRS]
        elif self.data_root.is_dir():
            roots = sorted(p.name for p in self.data_root.iterdir() if p.is_dir() and p.name not in METADATA_DIRS)
        else:
            roots = []

        for folder in roots:
            folder_path = self.data_root / folder
            if not folder_path.is_dir():
                continue
            for dirpath, dirnames, filenames in os.walk(folder_path):
                dirnames[:] = sorted(d for d in dirnames if d not in METADATA_DIRS)
                for name in sorted(filenames):
                    remote_file = Path(dirpath) / name
                    relative_path = remote_file.relative_to(self.data_root).as_posix()
                    if is_artifact(name):
                        stats.skipped_conflict_files += 1
                        continue
                    self._pull_one(relative_path, remote_file, stamp, stats, incoming)

        logger.info(
            "Pulled into working directory: copied=%d local_newer=%d conflict_copies=%d",
            stats.copied,
            stats.skipped_local_newer,
            stats.conflict_copies,
        )
        return stats

    def _pull_one(
        self,
        relative_path: str,
        remote_file: Path,
        stamp: str,
        stats: PullStats,
        incoming: set[str] | None = None,
    ) -> None:
        local_file = self.local_path / relative_path
        remote = FileRecord.from_path(remote_file, relative_path)

        if local_file.exists():
            local = FileRecord.from_path(local_file, relative_path)
            delta = local.mtime - remote.mtime
            if local.size == remote.size and (abs(delta) <= self.mtime_tolerance or files_equal(local_file, remote_file)):
                return

            if delta > self.mtime_tolerance:
                if incoming is not None and relative_path not in incoming:
                    return
                # Sizes differ or bytes differ here, so the remote version is unique content.
                artifact = self.conflicts_dir / remote_name(relative_path, stamp)
                artifact.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(remote_file, artifact)
                stats.conflict_copies += 1
                stats.skipped_local_newer += 1
                logger.info("Kept newer local %s; repository version saved as %s", relative_path, artifact)
                return

        local_file.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(remote_file, local_file)
        stats.copied += 1
