"""
Configuration management for kite-sync.

This module handles loading, validating, and providing access to the
application configuration stored in config.yaml.

The configuration file contains:
    - Remote storage credentials and endpoints
    - Storage directory (database, logs, album art)
    - Song cache directory and capacity
    - Whether the current network is metered

Configuration File Location:
    By default config.yaml is read from the current working directory.
    The CLI accepts --config to point elsewhere.

Example config.yaml:
    remote:
      access_token: "your_access_token_here"
      api_url: "https://api.dropboxapi.com/2"
      content_url: "https://content.dropboxapi.com/2"
      root: "dropbox"
      timeout: 30

    storage:
      directory: "~/.kite-sync"

    cache:
      directory: null        # Optional: defaults to <storage>/songs
      capacity_mb: 512

    network:
      metered: false
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from kite_sync.core.exceptions import ConfigError


# Default configuration file name (in current working directory)
CONFIG_FILENAME = "config.yaml"

DEFAULT_API_URL = "https://api.dropboxapi.com/2"
DEFAULT_CONTENT_URL = "https://content.dropboxapi.com/2"
DEFAULT_ROOT = "dropbox"
DEFAULT_TIMEOUT = 30
DEFAULT_CAPACITY_MB = 512


@dataclass(frozen=True)
class RemoteConfig:
    """
    Remote storage service configuration.

    Attributes:
        access_token: OAuth bearer token for the storage API.
        api_url: Base URL for RPC endpoints (delta listing, temporary links).
        content_url: Base URL for content endpoints (file download).
        root: Root label stored on every entry (e.g. "dropbox").
        timeout: HTTP timeout in seconds for every request.
    """
    access_token: str
    api_url: str
    content_url: str
    root: str
    timeout: int


@dataclass(frozen=True)
class StorageConfig:
    """
    Local storage configuration.

    Attributes:
        directory: Absolute path holding the database, logs and album art.
                   Path expansion is performed (~ is expanded).
    """
    directory: Path

    @property
    def database_path(self) -> Path:
        return self.directory / "kite_sync.db"

    @property
    def album_art_directory(self) -> Path:
        return self.directory / "album_art"


@dataclass(frozen=True)
class CacheConfig:
    """
    Song cache configuration.

    Attributes:
        directory: Directory holding cached song files.
        capacity_bytes: Maximum total size of cached files; least recently
                        used files are evicted beyond it.
    """
    directory: Path
    capacity_bytes: int


@dataclass(frozen=True)
class NetworkConfig:
    """
    Network cost configuration.

    Attributes:
        metered: True when the current connection is cost- or quota-constrained.
                 Songs are then only downloaded when doubly justified.
    """
    metered: bool


@dataclass(frozen=True)
class Config:
    """
    Complete application configuration.

    Created by load_config() and immutable (frozen dataclass).

    Example:
        config = load_config()
        print(f"Database at: {config.storage.database_path}")
        print(f"Cache limit: {config.cache.capacity_bytes} bytes")
    """
    remote: RemoteConfig
    storage: StorageConfig
    cache: CacheConfig
    network: NetworkConfig


def load_config(config_path: Path | None = None) -> Config:
    """
    Load and validate configuration from config.yaml.

    Args:
        config_path: Optional explicit path to config file.
                     If None, looks for config.yaml in current working directory.

    Returns:
        Config: A frozen dataclass containing all configuration values.

    Raises:
        ConfigError: If the config file is not found, has invalid YAML syntax,
                     is missing required fields, or contains invalid values.

    Thread Safety:
        This function is NOT thread-safe. It should be called once at
        application startup.
    """
    if config_path is None:
        config_path = Path.cwd() / CONFIG_FILENAME

    if not config_path.exists():
        raise ConfigError(
            f"Configuration file not found: {config_path}",
            details={"file_path": str(config_path)}
        )

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            content = f.read()
    except IOError as e:
        raise ConfigError(
            f"Failed to read configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    try:
        raw_config = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Invalid YAML syntax in configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    if not isinstance(raw_config, dict):
        raise ConfigError(
            "Configuration file must contain a YAML dictionary",
            details={"file_path": str(config_path)}
        )

    return parse_config(raw_config)


def parse_config(raw_config: dict[str, Any]) -> Config:
    """
    Build a Config from an already parsed dictionary.

    Split from load_config() so tests and embedding applications can
    configure the service without a file on disk.
    """
    _validate_config(raw_config)

    remote_config = _parse_remote_config(raw_config["remote"])
    storage_config = _parse_storage_config(raw_config["storage"])
    cache_config = _parse_cache_config(raw_config.get("cache"), storage_config)
    network_config = _parse_network_config(raw_config.get("network"))

    return Config(
        remote=remote_config,
        storage=storage_config,
        cache=cache_config,
        network=network_config
    )


def _validate_config(raw_config: dict[str, Any]) -> None:
    required_sections = ["remote", "storage"]

    for section in required_sections:
        if section not in raw_config:
            raise ConfigError(
                f"Missing required section: '{section}'",
                details={"missing_section": section}
            )

        if not isinstance(raw_config[section], dict):
            raise ConfigError(
                f"Section '{section}' must be a dictionary",
                details={"section": section}
            )

    for section in ["cache", "network"]:
        value = raw_config.get(section)
        if value is not None and not isinstance(value, dict):
            raise ConfigError(
                f"Section '{section}' must be a dictionary",
                details={"section": section}
            )


def _parse_remote_config(remote_section: dict[str, Any]) -> RemoteConfig:
    """
    Parse and validate the remote configuration section.

    Raises:
        ConfigError: If access_token is missing or empty, or timeout is not
                     a positive integer.
    """
    access_token = remote_section.get("access_token", "")

    if not isinstance(access_token, str) or not access_token.strip():
        raise ConfigError(
            "'remote.access_token' must be a non-empty string",
            details={"field": "remote.access_token"}
        )

    values = {}
    for field, default in [
        ("api_url", DEFAULT_API_URL),
        ("content_url", DEFAULT_CONTENT_URL),
        ("root", DEFAULT_ROOT),
    ]:
        raw = remote_section.get(field)
        if raw is None:
            values[field] = default
        elif not isinstance(raw, str) or not raw.strip():
            raise ConfigError(
                f"'remote.{field}' must be a non-empty string",
                details={"field": f"remote.{field}"}
            )
        else:
            values[field] = raw.strip().rstrip("/")

    timeout = remote_section.get("timeout", DEFAULT_TIMEOUT)
    if isinstance(timeout, bool) or not isinstance(timeout, int) or timeout < 1:
        raise ConfigError(
            "'remote.timeout' must be a positive integer",
            details={"field": "remote.timeout", "value": timeout}
        )

    return RemoteConfig(
        access_token=access_token.strip(),
        api_url=values["api_url"],
        content_url=values["content_url"],
        root=values["root"],
        timeout=timeout
    )


def _parse_storage_config(storage_section: dict[str, Any]) -> StorageConfig:
    """
    Parse the storage section. Expands ~ and makes the path absolute.
    Does NOT create the directory (the CLI does that at startup).
    """
    directory = storage_section.get("directory", "")

    if not isinstance(directory, str) or not directory.strip():
        raise ConfigError(
            "'storage.directory' must be a non-empty string",
            details={"field": "storage.directory"}
        )

    return StorageConfig(directory=Path(directory.strip()).expanduser().resolve())


def _parse_cache_config(
    cache_section: dict[str, Any] | None,
    storage: StorageConfig
) -> CacheConfig:
    """
    Parse the cache section, applying defaults.

    Default directory: <storage>/songs
    Default capacity: 512 MB
    """
    directory = storage.directory / "songs"
    capacity_mb = DEFAULT_CAPACITY_MB

    if cache_section is not None:
        raw_dir = cache_section.get("directory")
        if raw_dir is not None:
            if not isinstance(raw_dir, str) or not raw_dir.strip():
                raise ConfigError(
                    "'cache.directory' must be a non-empty string or null",
                    details={"field": "cache.directory"}
                )
            directory = Path(raw_dir.strip()).expanduser().resolve()

        raw_capacity = cache_section.get("capacity_mb")
        if raw_capacity is not None:
            if isinstance(raw_capacity, bool) or not isinstance(raw_capacity, int) or raw_capacity < 1:
                raise ConfigError(
                    "'cache.capacity_mb' must be a positive integer",
                    details={"field": "cache.capacity_mb", "value": raw_capacity}
                )
            capacity_mb = raw_capacity

    return CacheConfig(directory=directory, capacity_bytes=capacity_mb * 1024 * 1024)


def _parse_network_config(network_section: dict[str, Any] | None) -> NetworkConfig:
    metered = False

    if network_section is not None:
        raw_metered = network_section.get("metered")
        if raw_metered is not None:
            if not isinstance(raw_metered, bool):
                raise ConfigError(
                    "'network.metered' must be true or false",
                    details={"field": "network.metered", "value": raw_metered}
                )
            metered = raw_metered

    return NetworkConfig(metered=metered)
