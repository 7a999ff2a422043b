from __future__ import annotations

from .config import config_sha256, load_config, resolve_runtime_secrets
from .config_schema import AppConfig
from .dedupe import dedupe
from .errors import ConfigError, FetchError, ReleaseError, StorageError, ValidationError
from .filter_builder import build_filter, build_poll_target
from .query_filter import QueryFilter

__all__ = [
    "AppConfig",
    "ConfigError",
    "FetchError",
    "QueryFilter",
    "ReleaseError",
    "StorageError",
    "ValidationError",
    "build_filter",
    "build_poll_target",
    "config_sha256",
    "dedupe",
    "load_config",
    "resolve_runtime_secrets",
]
