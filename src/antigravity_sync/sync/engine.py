"""SyncEngine: one sync cycle from working directory to remote and back.

A cycle is ``pull`` (remote -> repository -> working directory) followed by
``push`` (working directory -> repository -> remote). Each public operation
reloads configuration, takes the in-process single-flight flag and the
cross-process SyncLock, and releases both on every exit path.
"""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from ..core.config import SyncConfig, load_sync_config, save_config
from ..core.credentials import CredentialStore
from ..core.errors import ConfigurationError, GitCommandError, PasswordMismatchError
from ..core.events import EventBus, SyncEvent
from ..core.git_utils import validate_repo_url
from .copier import ChangeCopier, PullStats
from .filter import FilterEngine
from .lock import SyncLock
from .merge import SmartMerge
from .password import hash_password, read_password_hash, verify_password, write_password_hash
from .repository import GitRepository, is_push_rejected, sync_commit_message

logger = logging.getLogger(__name__)


class SyncState(str, enum.Enum):
    NOT_CONFIGURED = "not_configured"
    IDLE = "idle"
    PENDING = "pending"
    SYNCING = "syncing"
    PULLING = "pulling"
    PUSHING = "pushing"
    SYNCED = "synced"
    ERROR = "error"


@dataclass
class SyncStatus:
    state: SyncState
    last_sync: datetime | None = None
    pending_changes: int = 0
    repository: str = ""
    last_error: str | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["state"] = self.state.value
        data["last_sync"] = self.last_sync.isoformat() if self.last_sync else None
        return data


@dataclass
class DetailedStatus(SyncStatus):
    ahead: int = 0
    behind: int = 0
    changed_files: list[str] = field(default_factory=list)
    total_files: int = 0
    last_commit_date: str | None = None


class SyncEngine:
    """Orchestrates filtering, copying, git and Smart Merge for one replica."""

    def __init__(
        self,
        config_loader: Callable[[], SyncConfig] = load_sync_config,
        credentials: CredentialStore | None = None,
        events: EventBus | None = None,
        config_saver: Callable[[str, Any], None] = save_config,
        hostname: str | None = None,
    ):
        self.config_loader = config_loader
        self.config_saver = config_saver
        self.credentials = credentials or CredentialStore()
        self.events = events or EventBus()
        self.hostname = hostname

        self.state = SyncState.NOT_CONFIGURED
        self.last_sync: datetime | None = None
        self.last_error: str | None = None
        self.initialized = False

        self._busy = False
        self._busy_lock = threading.Lock()

        self.config: SyncConfig | None = None
        self.repo: GitRepository | None = None
        self.filter: FilterEngine | None = None
        self.copier: ChangeCopier | None = None
        self.merger: SmartMerge | None = None
        self.lock: SyncLock | None = None

    # -- plumbing ---------------------------------------------------------

    def _set_state(self, state: SyncState, message: str = "") -> None:
        self.state = state
        self.events.publish(SyncEvent(kind="state", state=state.value, message=message))

    def _load(self) -> tuple[SyncConfig, str]:
        config = self.config_loader()
        if not config.repository_url:
            raise ConfigurationError("Repository URL is not configured. Run `ags init` first.")
        token = self.credentials.get_token(config.repository_url)
        if not token:
            raise ConfigurationError("Access token is missing. Run `ags init` first.")
        return config, token

    def _build(self, config: SyncConfig, token: str) -> None:
        """Wire the per-cycle components from a fresh configuration snapshot."""
        self.config = config
        self.repo = GitRepository(config.repo_path, config.repository_url, token, config.branch, self.events)
        self.filter = FilterEngine(config.local_path, config.exclude_patterns, config.sync_folders)
        self.copier = ChangeCopier(
            config.local_path,
            config.data_root,
            config.conflicts_dir,
            mtime_tolerance=config.merge.mtime_tolerance_seconds,
        )
        self.merger = SmartMerge(self.repo, config.merge, config.conflicts_dir, config.data_root, self.hostname)
        self.lock = SyncLock(config.repo_path, config.merge.lock_stale_seconds)

    def _exclusive(self, name: str, body: Callable[[], Any], initialize: bool = True) -> tuple[bool, Any]:
        """Run *body* under the single-flight flag and the SyncLock.

        Returns ``(False, None)`` on contention, ``(True, result)`` otherwise.
        """
        with self._busy_lock:
            if self._busy:
                self.events.log(f"{name} skipped: another operation is already running")
                return False, None
            self._busy = True

        try:
            try:
                config, token = self._load()
            except ConfigurationError as exc:
                self._set_state(SyncState.NOT_CONFIGURED, str(exc))
                raise
            self._build(config, token)

            with self.lock.held() as acquired:
                if not acquired:
                    self.events.log(f"{name} skipped: another process holds the sync lock")
                    return False, None
                try:
                    if initialize and not self.initialized:
                        self._initialize_locked()
                    return True, body()
                except Exception as exc:
                    self.last_error = str(exc)
                    self._set_state(SyncState.ERROR, str(exc))
                    self.events.log(f"{name} failed: {exc}", "error")
                    raise
        finally:
            self._busy = False

    def _push_with_retry(self) -> None:
        try:
            self.repo.push()
        except GitCommandError as exc:
            if not is_push_rejected(exc):
                raise
            self.events.log("Push rejected, pulling remote changes and retrying once", "warning")
            self.repo.pull(resolver=self.merger)
            self.repo.push()

    def _ensure_metadata_dirs(self) -> None:
        self.config.metadata_dir.mkdir(parents=True, exist_ok=True)
        self.config.conflicts_dir.mkdir(parents=True, exist_ok=True)

    def _repo_relative(self, path) -> str:
        return path.relative_to(self.config.repo_path).as_posix()

    # -- initialization ---------------------------------------------------

    def initialize(self) -> bool:
        """Prepare the repository and verify the sync password. False on lock contention."""
        self.initialized = False
        acquired, _ = self._exclusive("Initialize", lambda: None)
        return acquired

    def _initialize_locked(self) -> None:
        config = self.config
        password = self.credentials.get_password(config.repository_url)
        if config.sync_password_enabled and not password:
            raise ConfigurationError("Sync password is not set. Run `ags init` or `ags reset-password`.")

        self.events.log(f"Initializing repository at {config.repo_path}")
        self.repo.ensure_repository()
        self.repo.pull(resolver=self.merger)
        self._ensure_metadata_dirs()

        if config.sync_password_enabled:
            self._check_password(password)

        files = self.filter.get_files_to_sync()
        self.copier.copy_local_to_repo(files)
        self.initialized = True
        self._set_state(SyncState.PENDING, f"{len(files)} file(s) in scope")

    def _check_password(self, password: str) -> None:
        url = self.config.repository_url
        digest = read_password_hash(self.config.metadata_dir)
        if digest is None:
            self.events.log("No sync password on the remote yet, storing this one")
            self._publish_password_hash(hash_password(url, password), "Sync: set sync password")
        elif not verify_password(url, password, digest):
            raise PasswordMismatchError(
                "Sync password does not match the one stored in the repository. "
                "Use `ags reset-password` if you changed it on another machine."
            )

    def _publish_password_hash(self, digest: str, message: str) -> None:
        path = write_password_hash(self.config.metadata_dir, digest)
        self.repo.stage_paths([self._repo_relative(path)])
        if self.repo.commit(message):
            self._push_with_retry()

    def configure(self, repo_url: str, token: str, password: str | None = None) -> None:
        """Validate and store the remote settings, then initialize.

        Access is verified before anything is written. If initialization
        fails, the previous URL, token and password are restored.
        """
        repo_url = (repo_url or "").strip()
        error = validate_repo_url(repo_url)
        if error:
            raise ConfigurationError(error)
        if not token:
            raise ConfigurationError("Access token is required.")

        self.events.log("Checking repository access")
        GitRepository.verify_access(repo_url, token)

        previous_url = self.config_loader().repository_url
        previous_token = self.credentials.get_token(repo_url)
        previous_password = self.credentials.get_password(repo_url)

        try:
            self.config_saver("sync.repository_url", repo_url)
            self.credentials.set_token(repo_url, token)
            if password:
                self.credentials.set_password(repo_url, password)
            if not self.initialize():
                raise ConfigurationError("Another sync is running; try again in a moment.")
        except Exception:
            logger.warning("Configuration failed, rolling back", exc_info=True)
            if previous_token:
                self.credentials.set_token(repo_url, previous_token)
            else:
                self.credentials.delete_token(repo_url)
            if previous_password:
                self.credentials.set_password(repo_url, previous_password)
            else:
                self.credentials.delete_password(repo_url)
            self.config_saver("sync.repository_url", previous_url)
            self.initialized = False
            self._set_state(SyncState.NOT_CONFIGURED, "configuration rolled back")
            raise

        self.events.log("Sync configured", "success")

    def disconnect(self) -> None:
        """Forget the remote and its stored credentials. Local files are kept."""
        url = self.config_loader().repository_url
        if url:
            self.credentials.delete_token(url)
            self.credentials.delete_password(url)
        self.config_saver("sync.repository_url", "")
        self.initialized = False
        self._set_state(SyncState.NOT_CONFIGURED, "disconnected")

    # -- sync operations --------------------------------------------------

    def sync(self) -> bool:
        """Full cycle. Returns False when skipped because another sync is running."""

        def cycle():
            self._set_state(SyncState.SYNCING)
            self._pull_cycle()
            self._push_cycle()
            self.last_sync = datetime.now(timezone.utc)
            self.last_error = None
            self._set_state(SyncState.SYNCED)
            self.events.log("Sync complete", "success")

        acquired, _ = self._exclusive("Sync", cycle)
        return acquired

    def push(self) -> bool:
        def body():
            # Pulled files reach the working directory before local files are copied out.
            self._pull_cycle()
            self._push_cycle()
            self.last_sync = datetime.now(timezone.utc)
            self._set_state(SyncState.SYNCED)

        acquired, _ = self._exclusive("Push", body)
        return acquired

    def pull(self) -> PullStats | None:
        def body():
            stats = self._pull_cycle()
            self.last_sync = datetime.now(timezone.utc)
            self._set_state(SyncState.SYNCED)
            return stats

        _, stats = self._exclusive("Pull", body)
        return stats

    def _incoming_paths(self, before: str | None) -> set[str] | None:
        """Data-root-relative paths the last pull changed, or None when unknown."""
        if before is None:
            return None
        after = self.repo.head_sha()
        if after == before:
            return set()
        prefix = self._repo_relative(self.config.data_root) + "/"
        return {p[len(prefix) :] for p in self.repo.diff_names(before, after) if p.startswith(prefix)}

    def _pull_cycle(self) -> PullStats:
        self._set_state(SyncState.PULLING)
        before = self.repo.head_sha()
        self.repo.pull(resolver=self.merger)
        self._ensure_metadata_dirs()
        incoming = self._incoming_paths(before)
        stats = self.copier.copy_repo_to_local(self.config.sync_folders, incoming=incoming)
        self.events.publish(SyncEvent(kind="stats", message="pull", data=stats.to_dict()))
        if stats.conflict_copies:
            self.events.log(
                f"Kept {stats.skipped_local_newer} newer local file(s); remote versions saved in .conflicts",
                "warning",
            )
        return stats

    def _push_cycle(self) -> str | None:
        self._set_state(SyncState.PUSHING)
        files = self.filter.get_files_to_sync()
        copied = self.copier.copy_local_to_repo(files)
        self.repo.stage_all()
        sha = self.repo.commit(sync_commit_message())
        ahead, _ = self.repo.ahead_behind(fetch=False)
        if sha or ahead:
            self._push_with_retry()
            self.events.log(f"Pushed {copied} changed file(s)", "success")
        else:
            self.events.log("Nothing to push")
        return sha

    # -- password ---------------------------------------------------------

    def reset_password(self, new_password: str, token: str | None = None) -> None:
        """Replace the repository's password hash. Requires a working access token."""
        if not new_password:
            raise ConfigurationError("New sync password must not be empty.")
        config = self.config_loader()
        if not config.repository_url:
            raise ConfigurationError("Repository URL is not configured. Run `ags init` first.")
        token = token or self.credentials.get_token(config.repository_url)
        if not token:
            raise ConfigurationError("Access token is required to reset the sync password.")

        GitRepository.verify_access(config.repository_url, token)
        if token != self.credentials.get_token(config.repository_url):
            self.credentials.set_token(config.repository_url, token)

        def body():
            self.repo.ensure_repository()
            self.repo.pull(resolver=self.merger)
            self._ensure_metadata_dirs()
            self._publish_password_hash(
                hash_password(self.config.repository_url, new_password),
                "Sync: reset sync password",
            )
            self.credentials.set_password(self.config.repository_url, new_password)
            self.initialized = False
            self.events.log("Sync password reset; other devices must use the new password", "warning", audit=True)

        acquired, _ = self._exclusive("Reset password", body, initialize=False)
        if not acquired:
            raise ConfigurationError("Another sync is running; try again in a moment.")

    # -- status -----------------------------------------------------------

    def _status_repo(self) -> tuple[SyncConfig, GitRepository | None]:
        config = self.config_loader()
        if not config.repository_url:
            return config, None
        token = self.credentials.get_token(config.repository_url)
        repo = GitRepository(config.repo_path, config.repository_url, token, config.branch, self.events)
        return config, repo if repo.is_repository() else None

    def get_status(self) -> SyncStatus:
        config, repo = self._status_repo()
        state = self.state
        if not config.repository_url:
            state = SyncState.NOT_CONFIGURED
        elif state is SyncState.NOT_CONFIGURED:
            state = SyncState.IDLE
        return SyncStatus(
            state=state,
            last_sync=self.last_sync,
            pending_changes=repo.pending_changes() if repo else 0,
            repository=config.repository_url,
            last_error=self.last_error,
        )

    def get_detailed_status(self, limit: int = 10) -> DetailedStatus:
        base = self.get_status()
        _, repo = self._status_repo()
        detailed = DetailedStatus(**vars(base))
        if repo is None:
            return detailed
        detailed.ahead, detailed.behind = repo.ahead_behind(fetch=True)
        detailed.changed_files, detailed.total_files = repo.changed_files(limit)
        detailed.last_commit_date = repo.last_commit_date()
        return detailed
