"""Configuration management for Fund Ledger.

Settings live in a YAML file (``config/default.yaml``); secrets for the
remote backup endpoint come from a ``.env`` file.
"""

import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from fundledger.utils.exceptions import ConfigurationError

ROOT_DIR = Path(__file__).parent.parent.parent


class Config:
    """YAML configuration with dot-notation access.

    Example:
        >>> config = Config.from_file("config/default.yaml")
        >>> config.get("strategy.default_budget", 200)
        200
    """

    def __init__(self, config_dict: dict[str, Any]) -> None:
        """Initialize with configuration dictionary.

        Args:
            config_dict: Configuration data as nested dictionary
        """
        self._config = config_dict

    @classmethod
    def from_file(cls, filepath: str | Path) -> "Config":
        """Load configuration from YAML file.

        Args:
            filepath: Path to YAML configuration file

        Returns:
            Config instance with loaded configuration

        Raises:
            FileNotFoundError: If config file doesn't exist
            ConfigurationError: If the file is not a YAML mapping
        """
        path = Path(filepath)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {filepath}")

        with open(path, "r", encoding="utf-8") as f:
            try:
                config_dict = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {filepath}: {e}") from e

        if config_dict is None:
            config_dict = {}
        if not isinstance(config_dict, dict):
            raise ConfigurationError(
                f"Configuration root must be a mapping, got {type(config_dict).__name__}"
            )

        return cls(config_dict)

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation.

        Args:
            key: Configuration key (e.g. "storage.db_path")
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        value: Any = self._config

        for part in key.split("."):
            if not isinstance(value, dict):
                return default
            value = value.get(part)
            if value is None:
                return default

        return value

    def __getitem__(self, key: str) -> Any:
        value = self.get(key)
        if value is None:
            raise KeyError(f"Configuration key not found: {key}")
        return value

    def to_dict(self) -> dict[str, Any]:
        """Get the full configuration as dictionary."""
        return self._config.copy()


def load_config(filepath: str | Path | None = None) -> Config:
    """Load the application configuration.

    Args:
        filepath: Path to YAML configuration file. If None, uses
            ``config/default.yaml`` under the project root.

    Returns:
        Config instance
    """
    if filepath is None:
        filepath = ROOT_DIR / "config" / "default.yaml"
    return Config.from_file(filepath)


def load_backup_config(env_file: str | Path | None = None) -> dict[str, str]:
    """Load remote backup credentials from a ``.env`` file.

    Variables already present in the process environment take precedence
    over the file.

    Args:
        env_file: Path to the .env file. If None, uses ``.env`` under the
            project root (a missing file is fine when the variables are
            already exported).

    Returns:
        Dict with ``base_url`` and ``token``

    Raises:
        ConfigurationError: If a required variable is missing
    """
    if env_file is None:
        env_file = ROOT_DIR / ".env"

    if Path(env_file).exists():
        load_dotenv(env_file)

    required_vars = ["FUNDLEDGER_BACKUP_URL", "FUNDLEDGER_BACKUP_TOKEN"]
    missing_vars = [var for var in required_vars if not os.getenv(var)]

    if missing_vars:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing_vars)}. "
            "Please check your .env file."
        )

    return {
        "base_url": os.environ["FUNDLEDGER_BACKUP_URL"].rstrip("/"),
        "token": os.environ["FUNDLEDGER_BACKUP_TOKEN"],
    }
