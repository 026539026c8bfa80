"""
Configuration management for ondeploy.

Loads and validates config.yaml from the ondeploy home directory
($ONDEPLOY_HOME, default ~/.config/ondeploy).
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from ondeploy.errors import ConfigurationError
from ondeploy.status_store import DEFAULT_STATUS_TABLE, STATUS_BACKENDS


class ConfigError(ConfigurationError):
    """Configuration validation error."""
    pass


LOG_FORMATS = ("structured", "pretty")


def get_ondeploy_home() -> Path:
    """Return the ondeploy home directory."""
    home = os.environ.get("ONDEPLOY_HOME")
    if home:
        return Path(home).expanduser()
    return Path("~/.config/ondeploy").expanduser()


def _expand(value: Optional[str]) -> Optional[Path]:
    if value is None or value == "":
        return None
    return Path(os.path.expandvars(str(value))).expanduser()


@dataclass
class OnDeployConfig:
    """
    ondeploy configuration.

    Attributes:
        database_path: SQLite database the scripts run against
        scripts: Script identifiers, in the order to run them
        status_backend: Where status records live: sqlite or file
        status_root: Directory for the file backend
        status_table: Table name for the sqlite backend
        script_modules: Modules imported at startup (and allowlisted for
            "module:attr" script identifiers)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: "structured" (JSON) or "pretty" (rich console)
        log_file: Optional log file path
        log_console: Also log to the console
        env_file: Optional .env file loaded before the config is used
    """
    database_path: Path
    scripts: List[str] = field(default_factory=list)
    status_backend: str = "sqlite"
    status_root: Optional[Path] = None
    status_table: str = DEFAULT_STATUS_TABLE
    script_modules: List[str] = field(default_factory=list)
    log_level: str = "INFO"
    log_format: str = "pretty"
    log_file: Optional[Path] = None
    log_console: bool = True
    env_file: Optional[Path] = None

    def validate(self) -> None:
        """Validate configuration values."""
        if self.status_backend not in STATUS_BACKENDS:
            raise ConfigError(
                f"status_backend must be one of {', '.join(STATUS_BACKENDS)}, "
                f"got: {self.status_backend}"
            )
        if self.status_backend == "file" and self.status_root is None:
            raise ConfigError("status_root is required for the file status backend")
        if self.log_format not in LOG_FORMATS:
            raise ConfigError(
                f"log_format must be one of {', '.join(LOG_FORMATS)}, got: {self.log_format}"
            )
        for name in ("scripts", "script_modules"):
            values = getattr(self, name)
            if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
                raise ConfigError(f"'{name}' must be a list of strings")

    @classmethod
    def from_dict(cls, data: Dict[str, Any], home: Optional[Path] = None) -> "OnDeployConfig":
        """Build a config from parsed YAML.

        Raises:
            ConfigError: If required keys are missing or values are invalid
        """
        home = home or get_ondeploy_home()
        if not data.get("database_path"):
            raise ConfigError("Missing required config key: database_path")

        status_root = _expand(data.get("status_root"))
        if status_root is None and data.get("status_backend") == "file":
            status_root = home / "status"

        config = cls(
            database_path=_expand(data["database_path"]),
            scripts=data.get("scripts") or [],
            status_backend=data.get("status_backend", "sqlite"),
            status_root=status_root,
            status_table=data.get("status_table", DEFAULT_STATUS_TABLE),
            script_modules=data.get("script_modules") or [],
            log_level=str(data.get("log_level", "INFO")).upper(),
            log_format=data.get("log_format", "pretty"),
            log_file=_expand(data.get("log_file")),
            log_console=bool(data.get("log_console", True)),
            env_file=_expand(data.get("env_file")),
        )
        config.validate()
        return config

    def __repr__(self) -> str:
        return (
            f"OnDeployConfig(database_path={str(self.database_path)!r}, "
            f"scripts={len(self.scripts)}, status_backend={self.status_backend})"
        )


def load_config(config_path: Optional[Path] = None) -> OnDeployConfig:
    """
    Load ondeploy configuration from YAML file.

    Args:
        config_path: Path to config file. Defaults to <home>/config.yaml

    Returns:
        OnDeployConfig instance

    Raises:
        FileNotFoundError: If the config file does not exist
        ConfigError: If config is invalid
    """
    home = get_ondeploy_home()
    if config_path is None:
        config_path = home / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(
            f"ondeploy config.yaml not found at {config_path}. Run 'ondeploy init' to create one."
        )

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax: {e}", e) from e

    if not data:
        raise ConfigError("Configuration file is empty")
    if not isinstance(data, dict):
        raise ConfigError("Configuration file must be a mapping")

    env_file = _expand(data.get("env_file"))
    if env_file and env_file.exists():
        load_dotenv(env_file)

    return OnDeployConfig.from_dict(data, home=home)
