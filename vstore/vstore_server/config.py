"""
Configuration management for VStore Server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set AUTH_TOKENS and DATA_DIR explicitly
    - Token values are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .schema import BUILTIN_COLLECTIONS

logger = logging.getLogger(__name__)


class StorageBackend(Enum):
    """Supported storage engines."""

    SQLITE = "sqlite"
    MEMORY = "memory"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_list(name: str, default: str) -> tuple[str, ...]:
    raw = os.getenv(name, default)
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class HttpConfig:
    """HTTP server configuration.

    Attributes:
        host: Interface to bind
        port: Port to listen on
        base_path: URL prefix of the versioned API
        cors_origins: Allowed CORS origins ("*" allows any)
    """

    host: str = "0.0.0.0"
    port: int = 1337
    base_path: str = "/api/v3"
    cors_origins: tuple[str, ...] = ("*",)

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "1337")),
            base_path=os.getenv("HTTP_BASE_PATH", "/api/v3").rstrip("/"),
            cors_origins=_env_list("CORS_ORIGINS", "*"),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Record storage configuration.

    Attributes:
        backend: Storage engine to use
        data_dir: Directory for the SQLite database file
        db_filename: SQLite database file name
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    backend: StorageBackend = StorageBackend.SQLITE
    data_dir: str = "/var/lib/vstore"
    db_filename: str = "records.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        backend_str = os.getenv("STORAGE_BACKEND", "sqlite").lower()
        try:
            backend = StorageBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid STORAGE_BACKEND '{backend_str}'. Must be one of: sqlite, memory"
            )
        return cls(
            backend=backend,
            data_dir=os.getenv("DATA_DIR", "/var/lib/vstore"),
            db_filename=os.getenv("SQLITE_DB_FILENAME", "records.db"),
            wal_mode=_env_bool("SQLITE_WAL_MODE", "true"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class ApiConfig:
    """Behavior of the versioned API.

    Attributes:
        collections: Names of the enabled collections
        default_limit: Page size when a search gives no limit
        max_limit: Upper bound for any requested limit
    """

    collections: tuple[str, ...] = ("devicestatus", "entries", "treatments")
    default_limit: int = 10
    max_limit: int = 1000

    @classmethod
    def from_env(cls) -> ApiConfig:
        """Load configuration from environment variables."""
        return cls(
            collections=_env_list("ENABLED_COLLECTIONS", "devicestatus,entries,treatments"),
            default_limit=int(os.getenv("API_DEFAULT_LIMIT", "10")),
            max_limit=int(os.getenv("API_MAX_LIMIT", "1000")),
        )


@dataclass(frozen=True)
class AuthConfig:
    """Access token configuration.

    Token issuance lives outside this service. Deployments hand the resolved
    tokens in as a JSON object mapping each token to its subject and
    permission strings, e.g.::

        {"uploader-7f3a": {"subject": "uploader",
                           "permissions": ["api:devicestatus:create"]}}

    Attributes:
        tokens: Mapping of token -> {"subject": str, "permissions": [str]}
    """

    tokens: dict[str, dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> AuthConfig:
        """Load configuration from environment variables."""
        raw = os.getenv("AUTH_TOKENS", "")
        if not raw:
            return cls()
        try:
            tokens = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"AUTH_TOKENS is not valid JSON: {e.msg}")
        if not isinstance(tokens, dict):
            raise ValueError("AUTH_TOKENS must be a JSON object")
        return cls(tokens=tokens)


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        http: HTTP server configuration
        storage: Record storage configuration
        api: API behavior configuration
        auth: Access token configuration
        observability: Logging configuration
    """

    http: HttpConfig = field(default_factory=HttpConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            http=HttpConfig.from_env(),
            storage=StorageConfig.from_env(),
            api=ApiConfig.from_env(),
            auth=AuthConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.api.collections:
            raise ValueError("ENABLED_COLLECTIONS must name at least one collection")
        known = {c.name for c in BUILTIN_COLLECTIONS}
        unknown = [name for name in self.api.collections if name not in known]
        if unknown:
            raise ValueError(f"Unknown ENABLED_COLLECTIONS: {', '.join(unknown)}")

        if self.api.default_limit <= 0 or self.api.max_limit <= 0:
            raise ValueError("API_DEFAULT_LIMIT and API_MAX_LIMIT must be positive")
        if self.api.default_limit > self.api.max_limit:
            raise ValueError("API_DEFAULT_LIMIT cannot exceed API_MAX_LIMIT")

        for entry in self.auth.tokens.values():
            if not isinstance(entry, dict) or not entry.get("subject"):
                # Never echo the token itself
                raise ValueError("every AUTH_TOKENS entry needs a 'subject'")
            if not isinstance(entry.get("permissions", []), list):
                raise ValueError(f"permissions of subject {entry['subject']} must be a list")

        if not self.auth.tokens:
            logger.warning("AUTH_TOKENS is empty, every authenticated request will be rejected")

        if self.storage.backend == StorageBackend.SQLITE and not os.path.exists(
            self.storage.data_dir
        ):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on startup."
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "http_bind": f"{self.http.host}:{self.http.port}",
                "base_path": self.http.base_path,
                "storage_backend": self.storage.backend.value,
                "data_dir": self.storage.data_dir
                if self.storage.backend == StorageBackend.SQLITE
                else None,
                "collections": list(self.api.collections),
                "token_count": len(self.auth.tokens),
                "log_level": self.observability.log_level,
            },
        )
