"""Sync password: a salted SHA-256 digest stored inside the repository.

Replicas compare their locally stored password against this digest before
syncing, so a device with the wrong password never touches shared history.
"""

from __future__ import annotations

import hashlib
import hmac
import os
from pathlib import Path

from ..core.git_utils import clean_remote_url, repo_key

PASSWORD_FILE_NAME = "password.sha256"


def hash_password(repo_url: str, password: str) -> str:
    # The host/path identity is the salt: https and ssh forms of one repo agree.
    identity = repo_key(repo_url) or clean_remote_url(repo_url)
    return hashlib.sha256(f"{identity}:{password}".encode("utf-8")).hexdigest()


def password_file(metadata_dir: str | Path) -> Path:
    return Path(metadata_dir) / PASSWORD_FILE_NAME


def read_password_hash(metadata_dir: str | Path) -> str | None:
    path = password_file(metadata_dir)
    if not path.is_file():
        return None
    value = path.read_text(encoding="utf-8").strip()
    return value or None


def write_password_hash(metadata_dir: str | Path, digest: str) -> Path:
    path = password_file(metadata_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(digest + "\n")
    os.chmod(path, 0o600)
    return path


def verify_password(repo_url: str, password: str, digest: str) -> bool:
    return hmac.compare_digest(hash_password(repo_url, password), digest.strip().lower())
