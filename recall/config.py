"""Configuration management system for Recall.

This module provides a hierarchical configuration system using YAML files and
Python dataclasses. It supports loading, saving, and updating configuration
values at runtime with defaults for every setting.

Configuration Sections:
- sampler: Window polling settings
- storage: Database location
- web: Web API server configuration
- logging: Log level and optional log file

The blacklist and recent searches are not part of this file; they live in the
database settings table so the web API and the sampler share them.

Example:
    >>> from recall.config import ConfigManager
    >>> config_mgr = ConfigManager()
    >>> print(config_mgr.config.sampler.poll_interval_seconds)
    2.0
    >>> config_mgr.update('sampler', 'poll_interval_seconds', 5.0)
"""

import dataclasses
import logging
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional
import yaml

from .storage import default_data_dir

logger = logging.getLogger(__name__)


@dataclass
class SamplerConfig:
    """Window polling configuration.

    Attributes:
        enabled: Run the background sampler in the daemon (default: True)
        poll_interval_seconds: Time between active window checks (default: 2.0)
    """
    enabled: bool = True
    poll_interval_seconds: float = 2.0


@dataclass
class StorageConfig:
    """Database location.

    Attributes:
        data_dir: Directory holding the database (default: per-user data dir)
        db_filename: Database file name (default: memory.db)
    """
    data_dir: str = field(default_factory=lambda: str(default_data_dir()))
    db_filename: str = "memory.db"

    @property
    def db_path(self) -> Path:
        return Path(self.data_dir).expanduser() / self.db_filename


@dataclass
class WebConfig:
    """Web server configuration.

    Attributes:
        host: Host address to bind to (default: 127.0.0.1)
        port: Port number for the JSON API (default: 55556)
    """
    host: str = "127.0.0.1"
    port: int = 55556


@dataclass
class LoggingConfig:
    """Logging configuration.

    Attributes:
        level: Root log level name (default: INFO)
        file: Optional log file path, empty for stderr only
    """
    level: str = "INFO"
    file: str = ""


@dataclass
class Config:
    """Top-level configuration container."""
    sampler: SamplerConfig = field(default_factory=SamplerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    web: WebConfig = field(default_factory=WebConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


_SECTIONS = {
    'sampler': SamplerConfig,
    'storage': StorageConfig,
    'web': WebConfig,
    'logging': LoggingConfig,
}


class ConfigManager:
    """Manages configuration loading, saving, and updates.

    Attributes:
        DEFAULT_PATH: Default configuration file location
        path: Actual configuration file path being used
        config: Current configuration object

    Example:
        >>> config_mgr = ConfigManager()
        >>> config_mgr.config.web.port = 8080
        >>> config_mgr.save()
    """

    DEFAULT_PATH = Path("~/.config/recall/config.yaml").expanduser()

    def __init__(self, path: Optional[Path] = None):
        """Initialize ConfigManager.

        Args:
            path: Custom config file path (uses DEFAULT_PATH if None)
        """
        self.path = Path(path).expanduser() if path else self.DEFAULT_PATH
        self.config = self._load()

    def _load(self) -> Config:
        """Load configuration from YAML file.

        Returns:
            Config object with loaded or default values. Invalid YAML
            returns the default Config.
        """
        if self.path.exists():
            try:
                with open(self.path) as f:
                    data = yaml.safe_load(f) or {}
                logger.info(f"Loaded configuration from {self.path}")
                return self._dict_to_config(data)
            except (yaml.YAMLError, OSError, TypeError) as e:
                logger.warning(f"Failed to load config from {self.path}: {e}")
                logger.info("Using default configuration")
                return Config()
        else:
            logger.info(f"No config file at {self.path}, using defaults")
            return Config()

    def _dict_to_config(self, data: dict) -> Config:
        """Construct Config from a dictionary, merging with defaults.

        Unknown sections and keys are ignored.
        """
        if not isinstance(data, dict):
            raise TypeError(f"Config root must be a mapping, got {type(data).__name__}")

        sections = {}
        for name, section_type in _SECTIONS.items():
            section_data = data.get(name) or {}
            known_fields = {f.name for f in dataclasses.fields(section_type)}
            unknown = set(section_data) - known_fields
            if unknown:
                logger.debug(f"Ignoring unknown config fields in {name}: {unknown}")
            sections[name] = section_type(
                **{k: v for k, v in section_data.items() if k in known_fields}
            )
        return Config(**sections)

    def save(self) -> None:
        """Save current configuration to YAML file.

        Raises:
            OSError: If file write fails
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'w') as f:
                yaml.dump(
                    asdict(self.config),
                    f,
                    default_flow_style=False,
                    sort_keys=False,
                    indent=2
                )
            logger.info(f"Saved configuration to {self.path}")
        except OSError as e:
            logger.error(f"Failed to save config to {self.path}: {e}")
            raise

    def update(self, section: str, key: str, value) -> bool:
        """Update a single configuration value and save.

        Returns:
            True if value was changed and saved, False if unchanged or invalid
        """
        section_obj = getattr(self.config, section, None)
        if section not in _SECTIONS or section_obj is None:
            logger.warning(f"Invalid config section: {section}")
            return False

        if key not in {f.name for f in dataclasses.fields(section_obj)}:
            logger.warning(f"Invalid config key: {section}.{key}")
            return False

        old_value = getattr(section_obj, key)
        if old_value != value:
            setattr(section_obj, key, value)
            self.save()
            logger.info(f"Updated {section}.{key}: {old_value} -> {value}")
            return True

        logger.debug(f"No change for {section}.{key} (already {value})")
        return False

    def to_dict(self) -> dict:
        """Convert configuration to dictionary."""
        return asdict(self.config)


# Singleton instance for easy access throughout the application
_default_config_manager: Optional[ConfigManager] = None


def get_config_manager(path: Optional[Path] = None) -> ConfigManager:
    """Get or create the default ConfigManager instance.

    Args:
        path: Optional custom config path (only used on first call)
    """
    global _default_config_manager
    if _default_config_manager is None:
        _default_config_manager = ConfigManager(path)
    return _default_config_manager
