"""Configuration management: TOML-based, defaults <- global <- override file."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

_GLOBAL_CONFIG_PATH = Path.home() / ".antigravity-sync" / "config.toml"
_OVERRIDE_ENV = "ANTIGRAVITY_SYNC_CONFIG"

DEFAULT_SYNC_FOLDERS = ["knowledge", "brain", "conversations", "skills", "annotations"]

DEFAULT_BINARY_EXTENSIONS = [".pb", ".png", ".jpg", ".jpeg", ".webp", ".gif", ".bmp", ".bin", ".sqlite"]

DEFAULT_CONFIG: dict[str, Any] = {
    "sync": {
        "repository_url": "",
        "enabled": True,
        "auto_sync": True,
        "sync_interval_minutes": 5,
        "debounce_seconds": 300,
        "sync_folders": list(DEFAULT_SYNC_FOLDERS),
        "exclude_patterns": [],
        "local_path": "~/.gemini/antigravity",
        "repo_path": "~/.gemini-sync-repo",
        "repo_subdir": ".antigravity-sync",
        "branch": "main",
        "sync_password_enabled": True,
    },
    "merge": {
        "size_diff_threshold": 0.2,
        "mtime_tolerance_seconds": 1.0,
        "lock_stale_seconds": 300,
        "binary_extensions": list(DEFAULT_BINARY_EXTENSIONS),
    },
}


@dataclass(frozen=True)
class MergePolicy:
    """Tunable constants of the conflict heuristics."""

    size_diff_threshold: float = 0.2
    mtime_tolerance_seconds: float = 1.0
    lock_stale_seconds: float = 300
    binary_extensions: tuple[str, ...] = tuple(DEFAULT_BINARY_EXTENSIONS)

    def is_binary_like(self, path: str) -> bool:
        lowered = path.lower()
        return any(lowered.endswith(ext.lower()) for ext in self.binary_extensions)


@dataclass(frozen=True)
class SyncConfig:
    """Snapshot of the sync settings, read fresh at the start of every operation."""

    repository_url: str = ""
    enabled: bool = True
    auto_sync: bool = True
    sync_interval_minutes: float = 5
    debounce_seconds: float = 300
    sync_folders: tuple[str, ...] = tuple(DEFAULT_SYNC_FOLDERS)
    exclude_patterns: tuple[str, ...] = ()
    local_path: Path = Path("~/.gemini/antigravity").expanduser()
    repo_path: Path = Path("~/.gemini-sync-repo").expanduser()
    repo_subdir: str = ".antigravity-sync"
    branch: str = "main"
    sync_password_enabled: bool = True
    merge: MergePolicy = field(default_factory=MergePolicy)

    @property
    def data_root(self) -> Path:
        """Directory inside the repository that mirrors the managed folders."""
        return self.repo_path / self.repo_subdir

    @property
    def metadata_dir(self) -> Path:
        return self.data_root / ".sync"

    @property
    def conflicts_dir(self) -> Path:
        return self.data_root / ".conflicts"

    @property
    def interval_seconds(self) -> float:
        return float(self.sync_interval_minutes) * 60

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> SyncConfig:
        sync = config.get("sync", {})
        merge = config.get("merge", {})
        policy = MergePolicy(
            size_diff_threshold=float(merge.get("size_diff_threshold", 0.2)),
            mtime_tolerance_seconds=float(merge.get("mtime_tolerance_seconds", 1.0)),
            lock_stale_seconds=float(merge.get("lock_stale_seconds", 300)),
            binary_extensions=tuple(_as_list(merge.get("binary_extensions", DEFAULT_BINARY_EXTENSIONS))),
        )
        return cls(
            repository_url=str(sync.get("repository_url") or "").strip(),
            enabled=bool(sync.get("enabled", True)),
            auto_sync=bool(sync.get("auto_sync", True)),
            sync_interval_minutes=sync.get("sync_interval_minutes", 5),
            debounce_seconds=sync.get("debounce_seconds", 300),
            sync_folders=tuple(_dedupe(_as_list(sync.get("sync_folders", DEFAULT_SYNC_FOLDERS)))),
            exclude_patterns=tuple(_as_list(sync.get("exclude_patterns", []))),
            local_path=Path(sync.get("local_path") or "~/.gemini/antigravity").expanduser(),
            repo_path=Path(sync.get("repo_path") or "~/.gemini-sync-repo").expanduser(),
            repo_subdir=sync.get("repo_subdir") or ".antigravity-sync",
            branch=sync.get("branch") or "main",
            sync_password_enabled=bool(sync.get("sync_password_enabled", True)),
            merge=policy,
        )


def _as_list(value: Any) -> list[str]:
    # `config set` stores a single item as a plain string.
    if isinstance(value, str):
        return [value] if value else []
    return [str(v) for v in value or []]


def _dedupe(items: list[str]) -> list[str]:
    seen: list[str] = []
    for item in items:
        if item and item not in seen:
            seen.append(item)
    return seen


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge override into base."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def config_path() -> Path:
    """File that `save_config` writes to."""
    override = os.environ.get(_OVERRIDE_ENV)
    if override:
        return Path(override).expanduser()
    return _GLOBAL_CONFIG_PATH


def load_config() -> dict[str, Any]:
    """Load merged config: defaults <- global <- $ANTIGRAVITY_SYNC_CONFIG."""
    config = _deep_merge({}, DEFAULT_CONFIG)

    if _GLOBAL_CONFIG_PATH.exists():
        with open(_GLOBAL_CONFIG_PATH, "rb") as f:
            config = _deep_merge(config, tomllib.load(f))

    override = os.environ.get(_OVERRIDE_ENV)
    if override:
        override_path = Path(override).expanduser()
        if override_path.exists() and override_path != _GLOBAL_CONFIG_PATH:
            with open(override_path, "rb") as f:
                config = _deep_merge(config, tomllib.load(f))

    return config


def load_sync_config() -> SyncConfig:
    return SyncConfig.from_dict(load_config())


def save_config(key: str, value: Any) -> None:
    """Save a config value under a dotted key, e.g. ``sync.auto_sync``."""
    path = config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    existing: dict[str, Any] = {}
    if path.exists():
        with open(path, "rb") as f:
            existing = tomllib.load(f)

    parts = key.split(".")
    target = existing
    for part in parts[:-1]:
        if part not in target:
            target[part] = {}
        target = target[part]

    target[parts[-1]] = _parse_value(value) if isinstance(value, str) else value

    _write_toml(path, existing)


def get_config_value(config: dict, key: str) -> Any:
    """Get a nested config value by dotted key."""
    parts = key.split(".")
    current = config
    for part in parts:
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return None
    return current


def set_folder_enabled(folder: str, enabled: bool) -> list[str]:
    """Add or remove a managed folder. Returns the new folder list."""
    folders = list(load_sync_config().sync_folders)
    if enabled and folder not in folders:
        folders.append(folder)
    elif not enabled:
        folders = [f for f in folders if f != folder]
    save_config("sync.sync_folders", folders)
    return folders


def _parse_value(value: str) -> Any:
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    if "," in value:
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


def _write_toml(path: Path, data: dict) -> None:
    """Write dict as TOML (simple serializer for flat/nested dicts)."""
    lines: list[str] = []
    _write_toml_section(lines, data, [])
    path.write_text("\n".join(lines).lstrip("\n") + "\n", encoding="utf-8")


def _write_toml_section(lines: list[str], data: dict, prefix: list[str]) -> None:
    scalars = {k: v for k, v in data.items() if not isinstance(v, dict)}
    tables = {k: v for k, v in data.items() if isinstance(v, dict)}
    for key, value in scalars.items():
        if isinstance(value, list):
            lines.append(f"{key} = [")
            for item in value:
                lines.append(f"    {_toml_value(item)},")
            lines.append("]")
        else:
            lines.append(f"{key} = {_toml_value(value)}")
    for key, value in tables.items():
        section = ".".join(prefix + [key])
        lines.append(f"\n[{section}]")
        _write_toml_section(lines, value, prefix + [key])


def _toml_value(v: Any) -> str:
    if isinstance(v, bool):
        return "true" if v else "false"
    if isinstance(v, (int, float)):
        return str(v)
    if isinstance(v, str):
        escaped = v.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return str(v)
