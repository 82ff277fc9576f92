"""Conflict artifact naming.

    notes.md -> notes.conflict-laptop-20260101-120000.md   (Smart Merge)
    notes.md -> notes.remote-20260101-120000.md            (pull, local newer)
"""

from __future__ import annotations

import re
import socket
from datetime import datetime, timezone
from pathlib import PurePosixPath

CONFLICT_MARKER = ".conflict-"
REMOTE_MARKER = ".remote-"

_STAMP_GLOB = "[0-9]" * 8 + "-" + "[0-9]" * 6
_STAMP_RE = r"\d{8}-\d{6}"

# gitignore-style patterns that match every artifact name, used by FilterEngine.
ARTIFACT_PATTERNS = [
    f"*{CONFLICT_MARKER}*-{_STAMP_GLOB}*",
    f"*{REMOTE_MARKER}{_STAMP_GLOB}*",
]

_ARTIFACT_RE = re.compile(
    rf"({re.escape(CONFLICT_MARKER)}.+-{_STAMP_RE}|{re.escape(REMOTE_MARKER)}{_STAMP_RE})"
)


def conflict_stamp(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime("%Y%m%d-%H%M%S")


def device_tag(hostname: str | None = None) -> str:
    host = hostname if hostname is not None else socket.gethostname()
    return re.sub(r"[^a-zA-Z0-9_.-]", "_", host or "device")[:32] or "device"


def _with_suffix(relative_path: str, suffix: str) -> str:
    path = PurePosixPath(relative_path)
    name = path.name
    # Dotfiles keep their whole name as the stem.
    if "." in name.lstrip("."):
        dot = name.rindex(".")
        stem, ext = name[:dot], name[dot:]
    else:
        stem, ext = name, ""
    return str(path.with_name(f"{stem}{suffix}{ext}"))


def conflict_name(relative_path: str, tag: str, stamp: str) -> str:
    return _with_suffix(relative_path, f"{CONFLICT_MARKER}{tag}-{stamp}")


def remote_name(relative_path: str, stamp: str) -> str:
    return _with_suffix(relative_path, f"{REMOTE_MARKER}{stamp}")


def is_artifact(name: str) -> bool:
    """True when a file name carries either conflict marker."""
    return _ARTIFACT_RE.search(PurePosixPath(name).name) is not None
