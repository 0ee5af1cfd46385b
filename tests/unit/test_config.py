"""Unit tests for configuration management."""

from pathlib import Path

import pytest
import yaml

from fundledger.utils.config import Config, load_backup_config, load_config
from fundledger.utils.exceptions import ConfigurationError


class TestConfig:
    """Test cases for Config class."""

    def test_from_file_valid_yaml(self, tmp_path: Path) -> None:
        """Test loading valid YAML configuration file."""
        config_file = tmp_path / "test_config.yaml"
        config_file.write_text(
            yaml.dump({"storage": {"db_path": "x.db"}, "logging": {"level": "DEBUG"}})
        )

        config = Config.from_file(config_file)
        assert config.get("storage.db_path") == "x.db"
        assert config.get("logging.level") == "DEBUG"

    def test_from_file_empty_yaml(self, tmp_path: Path) -> None:
        """Test loading empty YAML file."""
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")

        assert Config.from_file(config_file).to_dict() == {}

    def test_from_file_not_found(self) -> None:
        """Test loading non-existent file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError, match="Configuration file not found"):
            Config.from_file("nonexistent.yaml")

    def test_from_file_invalid_yaml(self, tmp_path: Path) -> None:
        """Test broken YAML raises ConfigurationError."""
        config_file = tmp_path / "broken.yaml"
        config_file.write_text("strategy: [200, 300\n")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            Config.from_file(config_file)

    def test_from_file_non_mapping_root(self, tmp_path: Path) -> None:
        """Test a YAML list at the root raises ConfigurationError."""
        config_file = tmp_path / "list.yaml"
        config_file.write_text("- 1\n- 2\n")

        with pytest.raises(ConfigurationError, match="must be a mapping"):
            Config.from_file(config_file)

    def test_get_default_value(self) -> None:
        """Test getting default value for missing key."""
        config = Config({"strategy": {"precision": 2}})

        assert config.get("strategy.precision") == 2
        assert config.get("strategy.missing", 7) == 7
        assert config.get("strategy.precision.deeper", "default") == "default"

    def test_bracket_notation_key_error(self) -> None:
        """Test bracket notation raises KeyError for missing key."""
        config = Config({"existing": "value"})

        assert config["existing"] == "value"
        with pytest.raises(KeyError, match="Configuration key not found"):
            _ = config["missing.key"]

    def test_to_dict_is_copy(self) -> None:
        """Test to_dict returns a copy of the data."""
        config = Config({"key": "value"})

        result = config.to_dict()
        assert result == {"key": "value"}
        assert result is not config._config


class TestLoadBackupConfig:
    """Test cases for backup credential loading."""

    def test_loads_from_env_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test credentials are read from a .env file."""
        monkeypatch.delenv("FUNDLEDGER_BACKUP_URL", raising=False)
        monkeypatch.delenv("FUNDLEDGER_BACKUP_TOKEN", raising=False)
        env_file = tmp_path / ".env"
        env_file.write_text(
            "FUNDLEDGER_BACKUP_URL=https://backup.test/\nFUNDLEDGER_BACKUP_TOKEN=secret\n"
        )

        creds = load_backup_config(env_file)

        assert creds == {"base_url": "https://backup.test", "token": "secret"}

    def test_missing_variables(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test missing credentials raise ConfigurationError."""
        monkeypatch.delenv("FUNDLEDGER_BACKUP_URL", raising=False)
        monkeypatch.delenv("FUNDLEDGER_BACKUP_TOKEN", raising=False)

        with pytest.raises(ConfigurationError, match="FUNDLEDGER_BACKUP_URL"):
            load_backup_config(tmp_path / "missing.env")


def test_load_default_config() -> None:
    """Integration test: Load the actual default.yaml config."""
    config = load_config()

    assert config.get("logging.level") is not None
    assert config.get("strategy.budget_presets") == [200, 300, 500]
    assert config.get("strategy.strong_dip_threshold") == -0.015
    assert config.get("holdings.epsilon") == 0.0001
