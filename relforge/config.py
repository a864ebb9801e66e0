"""
Configuration management for relforge.

Loads and validates config.yaml from RELFORGE_HOME (default
~/.config/relforge). Every enumerated value (event log device type,
logging format) is parsed here, so components built from a loaded config
never see an invalid mode.

Example config.yaml:

    repos_dir: ~/.relforge/repos
    blobstore_dir: ~/.relforge/blobs
    event_log:
      device_type: text
    compiler:
      max_workers: 1
    agent:
      factory: mypkg.agent:create_client
      timeout_s: 600
    logging:
      level: INFO
      format: pretty
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from relforge.errors import ConfigError
from relforge.eventlog import EventLogConfig

LOG_FORMATS = ("pretty", "structured")


def get_relforge_home() -> Path:
    """Directory holding config.yaml ($RELFORGE_HOME or ~/.config/relforge)."""
    home = os.environ.get("RELFORGE_HOME")
    if home:
        return Path(home).expanduser()
    return Path("~/.config/relforge").expanduser()


@dataclass(frozen=True)
class AgentConfig:
    """How to reach the agent."""
    factory: Optional[str] = None
    timeout_s: Optional[float] = None


@dataclass(frozen=True)
class LoggingConfig:
    """Diagnostic logging settings."""
    level: str = "INFO"
    format: str = "pretty"
    file: Optional[Path] = None


@dataclass(frozen=True)
class RelforgeConfig:
    """
    Complete relforge configuration.

    Attributes:
        repos_dir: Directory of the record repositories
        blobstore_dir: Directory of the local blobstore
        event_log: Event log device settings
        max_workers: Packages compiled in parallel
        agent: Agent factory and call timeout
        log: Diagnostic logging settings
    """
    repos_dir: Path
    blobstore_dir: Path
    event_log: EventLogConfig = field(default_factory=EventLogConfig)
    max_workers: int = 1
    agent: AgentConfig = field(default_factory=AgentConfig)
    log: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RelforgeConfig":
        """
        Build and validate a config from a parsed YAML mapping.

        Raises:
            ConfigError: On missing keys or invalid values
        """
        for key in ("repos_dir", "blobstore_dir"):
            if not data.get(key):
                raise ConfigError(f"Missing required config key: {key}")

        compiler = data.get("compiler") or {}
        max_workers = compiler.get("max_workers", 1)
        if not isinstance(max_workers, int) or isinstance(max_workers, bool) or max_workers < 1:
            raise ConfigError(f"compiler.max_workers must be a positive integer, got {max_workers!r}")

        agent = data.get("agent") or {}
        timeout_s = agent.get("timeout_s")
        if timeout_s is not None:
            if isinstance(timeout_s, bool) or not isinstance(timeout_s, (int, float)) or timeout_s <= 0:
                raise ConfigError(f"agent.timeout_s must be a positive number, got {timeout_s!r}")

        log_section = data.get("logging") or {}
        level = str(log_section.get("level", "INFO")).upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ConfigError(f"Unknown logging level: {level}")
        log_format = str(log_section.get("format", "pretty")).lower()
        if log_format not in LOG_FORMATS:
            raise ConfigError(f"logging.format must be one of {', '.join(LOG_FORMATS)}, got {log_format!r}")
        log_file = log_section.get("file")

        return cls(
            repos_dir=Path(data["repos_dir"]).expanduser(),
            blobstore_dir=Path(data["blobstore_dir"]).expanduser(),
            event_log=EventLogConfig.from_dict(data.get("event_log")),
            max_workers=max_workers,
            agent=AgentConfig(factory=agent.get("factory"), timeout_s=timeout_s),
            log=LoggingConfig(
                level=level,
                format=log_format,
                file=Path(log_file).expanduser() if log_file else None,
            ),
        )


def load_config(config_path: Optional[Path | str] = None) -> RelforgeConfig:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to config file. Defaults to $RELFORGE_HOME/config.yaml

    Returns:
        RelforgeConfig instance

    Raises:
        FileNotFoundError: If the config file does not exist
        ConfigError: If the config is invalid
    """
    path = Path(config_path) if config_path else get_relforge_home() / "config.yaml"
    if not path.exists():
        raise FileNotFoundError(f"relforge config.yaml not found at {path}")

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax: {e}")

    if not data:
        raise ConfigError("Configuration file is empty")
    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a mapping")

    return RelforgeConfig.from_dict(data)
