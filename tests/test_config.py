"""Tests for configuration loading"""

from pathlib import Path

import pytest

from kite_sync.core.config import load_config, parse_config
from kite_sync.core.exceptions import ConfigError


def minimal(**overrides):
    raw = {
        "remote": {"access_token": "token"},
        "storage": {"directory": "/tmp/kite-sync-test"},
    }
    raw.update(overrides)
    return raw


class TestConfig:
    """Test config parsing and validation"""

    def test_defaults(self):
        """Test values filled in for optional settings"""
        config = parse_config(minimal())

        assert config.remote.api_url == "https://api.dropboxapi.com/2"
        assert config.remote.content_url == "https://content.dropboxapi.com/2"
        assert config.remote.root == "dropbox"
        assert config.remote.timeout == 30
        assert config.cache.directory == config.storage.directory / "songs"
        assert config.cache.capacity_bytes == 512 * 1024 * 1024
        assert config.network.metered is False
        assert config.storage.database_path.name == "kite_sync.db"

    def test_explicit_values(self):
        """Test every section set explicitly"""
        config = parse_config(minimal(
            cache={"directory": "/tmp/songs", "capacity_mb": 10},
            network={"metered": True},
        ))

        assert config.cache.directory == Path("/tmp/songs").resolve()
        assert config.cache.capacity_bytes == 10 * 1024 * 1024
        assert config.network.metered is True

    def test_home_is_expanded(self):
        """Test ~ expansion"""
        config = parse_config(minimal(storage={"directory": "~/kite"}))

        assert "~" not in str(config.storage.directory)

    @pytest.mark.parametrize("raw", [
        {"storage": {"directory": "/tmp/x"}},
        minimal(remote={"access_token": ""}),
        minimal(remote={"access_token": "t", "timeout": 0}),
        minimal(storage={"directory": ""}),
        minimal(cache={"capacity_mb": -1}),
        minimal(cache={"capacity_mb": True}),
        minimal(network={"metered": "yes"}),
        minimal(network=["metered"]),
    ])
    def test_invalid(self, raw):
        """Test ConfigError for bad values"""
        with pytest.raises(ConfigError):
            parse_config(raw)

    def test_load_from_file(self, temp_dir):
        """Test reading YAML from disk"""
        path = temp_dir / "config.yaml"
        path.write_text(
            "remote:\n"
            "  access_token: abc\n"
            "storage:\n"
            f"  directory: {temp_dir}\n"
            "network:\n"
            "  metered: true\n",
            encoding="utf-8",
        )

        config = load_config(path)

        assert config.remote.access_token == "abc"
        assert config.network.metered is True

    def test_missing_file(self, temp_dir):
        """Test ConfigError when the file does not exist"""
        with pytest.raises(ConfigError):
            load_config(temp_dir / "nope.yaml")

    def test_invalid_yaml(self, temp_dir):
        """Test ConfigError for broken YAML"""
        path = temp_dir / "config.yaml"
        path.write_text("remote: [unclosed", encoding="utf-8")

        with pytest.raises(ConfigError):
            load_config(path)
