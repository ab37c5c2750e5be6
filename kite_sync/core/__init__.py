"""
Core module for kite-sync.

This module provides the foundational components used throughout the application:
    - exceptions: Custom exception classes for error handling
    - config: Configuration loading and validation
    - database: Thread-safe SQLite database for entries, songs and preferences
    - logger: Logging system with multiple outputs

Usage:
    from kite_sync.core import (
        Config, load_config,
        Database,
        setup_logging, get_logger,
        KiteSyncError, ConfigError, DatabaseError
    )
"""

from kite_sync.core.config import (
    CacheConfig,
    Config,
    NetworkConfig,
    RemoteConfig,
    StorageConfig,
    load_config,
    parse_config,
)
from kite_sync.core.database import DELTA_CURSOR_KEY, Database
from kite_sync.core.exceptions import (
    ArtworkError,
    CacheError,
    ConfigError,
    ConsistencyError,
    DatabaseError,
    ExtractionError,
    KiteSyncError,
    MalformedURLError,
    RemoteServiceError,
)
from kite_sync.core.logger import (
    get_logger,
    log_metadata_failure,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    # Config
    "Config",
    "RemoteConfig",
    "StorageConfig",
    "CacheConfig",
    "NetworkConfig",
    "load_config",
    "parse_config",
    # Database
    "Database",
    "DELTA_CURSOR_KEY",
    # Exceptions
    "KiteSyncError",
    "ConfigError",
    "DatabaseError",
    "CacheError",
    "RemoteServiceError",
    "MalformedURLError",
    "ExtractionError",
    "ArtworkError",
    "ConsistencyError",
    # Logger
    "setup_logging",
    "get_logger",
    "log_metadata_failure",
    "shutdown_logging",
]
