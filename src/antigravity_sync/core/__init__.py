"""Core: configuration, credentials, git plumbing, events and errors."""

from .config import SyncConfig, MergePolicy, load_config, load_sync_config, save_config, get_config_value
from .credentials import CredentialStore
from .errors import (
    AccessError,
    ConfigurationError,
    GitCommandError,
    MergeFailure,
    NetworkError,
    NotFoundError,
    PasswordMismatchError,
    SyncError,
)
from .events import EventBus, SyncEvent

__all__ = [
    "SyncConfig",
    "MergePolicy",
    "load_config",
    "load_sync_config",
    "save_config",
    "get_config_value",
    "CredentialStore",
    "EventBus",
    "SyncEvent",
    "SyncError",
    "ConfigurationError",
    "AccessError",
    "NotFoundError",
    "NetworkError",
    "PasswordMismatchError",
    "MergeFailure",
    "GitCommandError",
]
