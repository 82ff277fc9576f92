"""Git subprocess runner and repository URL helpers."""

from __future__ import annotations

import base64
import os
import re
import subprocess
import threading
from urllib.parse import urlparse

from .errors import AccessError, GitCommandError, NetworkError, NotFoundError, SyncError

# One git subprocess at a time per process; concurrent writers corrupt .git/index.
_GIT_LOCK = threading.Lock()

KNOWN_PROVIDERS = (
    "github.com",
    "gitlab.com",
    "bitbucket.org",
    "gitee.com",
    "codeberg.org",
    "sr.ht",
    "dev.azure.com",
)

_ACCESS_MARKERS = (
    "401",
    "403",
    "authentication failed",
    "could not read username",
    "could not read password",
    "invalid username or password",
    "permission denied",
    "terminal prompts disabled",
)
_NOT_FOUND_MARKERS = (
    "404",
    "repository not found",
    "not found",
    "does not appear to be a git repository",
    "no such file or directory",
)
_NETWORK_MARKERS = (
    "could not resolve host",
    "failed to connect",
    "connection timed out",
    "connection refused",
    "network is unreachable",
    "operation timed out",
    "unable to access",
    "ssl",
    "timed out",
)


def run_git(
    args: list[str],
    cwd: str | os.PathLike,
    check: bool = True,
    timeout: float = 60,
    token: str | None = None,
    remote_url: str | None = None,
    text: bool = True,
) -> subprocess.CompletedProcess:
    """Run ``git <args>`` in *cwd*.

    When *token* is given it is attached for this invocation only as an HTTP
    Authorization header, so nothing credential-related lands in .git/config.
    """
    cmd = ["git"]
    if token:
        cmd += ["-c", f"http.extraHeader=Authorization: Basic {basic_auth_value(remote_url or '', token)}"]
    cmd += args

    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"
    env["LC_ALL"] = "C"

    with _GIT_LOCK:
        try:
            result = subprocess.run(
                cmd,
                cwd=str(cwd),
                capture_output=True,
                text=text,
                timeout=timeout,
                env=env,
            )
        except subprocess.TimeoutExpired as exc:
            raise NetworkError(f"git {args[0]} timed out after {timeout:.0f}s") from exc

    if check and result.returncode != 0:
        stderr = result.stderr if text else result.stderr.decode("utf-8", "replace")
        stdout = result.stdout if text else ""
        raise GitCommandError(args, result.returncode, stderr=stderr, stdout=stdout)
    return result


def basic_auth_value(remote_url: str, token: str) -> str:
    """Base64 ``user:token`` pair; GitLab wants ``oauth2`` as the user name."""
    user = "oauth2" if "gitlab" in remote_url.lower() else "x-access-token"
    return base64.b64encode(f"{user}:{token}".encode()).decode("ascii")


def classify_git_error(exc: GitCommandError) -> SyncError:
    """Map a failed network command onto the error taxonomy."""
    output = exc.output.lower()
    if any(marker in output for marker in _ACCESS_MARKERS):
        return AccessError(f"401 access token is invalid or lacks access to the repository: {exc.stderr.strip()}")
    if any(marker in output for marker in _NOT_FOUND_MARKERS):
        return NotFoundError(f"404 repository does not exist or is not accessible: {exc.stderr.strip()}")
    if any(marker in output for marker in _NETWORK_MARKERS):
        return NetworkError(f"network error talking to the remote: {exc.stderr.strip()}")
    return exc


def _normalize_path(pathname: str) -> str:
    path = pathname.strip().strip("/")
    if path.endswith(".git"):
        path = path[:-4]
    return path


def normalize_repo_identity(url: str) -> tuple[str, str] | None:
    """Return ``(host, path)`` for https, http, ssh:// and scp-style URLs."""
    trimmed = (url or "").strip()

    if trimmed.startswith("git@"):
        match = re.match(r"^git@([^:]+):(.+)$", trimmed)
        if not match:
            return None
        return match.group(1), _normalize_path(match.group(2))

    if trimmed.startswith(("ssh://", "http://", "https://")):
        parsed = urlparse(trimmed)
        if not parsed.hostname:
            return None
        return parsed.hostname, _normalize_path(parsed.path)

    return None


def repo_key(url: str) -> str | None:
    identity = normalize_repo_identity(url)
    if not identity:
        return None
    return f"{identity[0]}/{identity[1]}"


def clean_remote_url(url: str) -> str:
    """Credential-free https form of *url*; non-network URLs (local paths) are returned as-is."""
    identity = normalize_repo_identity(url)
    if not identity:
        return (url or "").strip()
    return f"https://{identity[0]}/{identity[1]}.git"


def validate_repo_url(url: str) -> str | None:
    """Return an error message, or None when the URL looks like a git remote."""
    if not url or not isinstance(url, str):
        return "Please enter a repository URL."
    if not url.startswith(("http://", "https://", "git@", "ssh://")):
        return "Repository URL must start with https://, ssh:// or git@."

    lowered = url.lower()
    is_known_provider = any(provider in lowered for provider in KNOWN_PROVIDERS)
    has_git_extension = lowered.endswith(".git")
    has_repo_path = re.search(r"[/:]([\w.-]+)/([\w.-]+?)(\.git)?/?$", url) is not None
    if not (is_known_provider or has_git_extension or has_repo_path):
        return "Repository URL does not look right, e.g. https://host/user/repo or git@host:user/repo.git"
    return None
