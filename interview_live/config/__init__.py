"""YAML configuration loader for interview-live."""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
import logging

from pydantic import ValidationError

from .settings import (
    SessionSettings,
    ConnectionSettings,
    AudioSettings,
    VideoSettings,
    build_device_config,
    build_connect_options,
)
from ..models.connection import ConnectOptions
from ..models.media import DeviceConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "interview_live.yaml"


class InterviewLiveConfig:
    """interview-live configuration loader."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to YAML config file. If None, looks for interview_live.yaml
                        in current directory and parent directories, falling back to
                        built-in defaults when none is found.
        """
        if config_path is None:
            self.config_file = self._find_config_file()
        else:
            self.config_file = Path(config_path)
            if not self.config_file.exists():
                raise FileNotFoundError(f"Configuration file not found: {self.config_file}")

        if self.config_file is None:
            logger.info("No configuration file found, using defaults")
            self.config: Dict[str, Any] = {}
        else:
            logger.info(f"Loading configuration from: {self.config_file}")
            self.config = self._load_config()

    @staticmethod
    def _find_config_file() -> Optional[Path]:
        current = Path.cwd()
        for directory in [current, *current.parents]:
            candidate = directory / CONFIG_FILENAME
            if candidate.exists():
                return candidate
        return None

    def _load_config(self) -> Dict[str, Any]:
        """Load and parse YAML configuration file."""
        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}") from e

        if not config:
            raise ValueError("Configuration file is empty")
        if not isinstance(config, dict):
            raise ValueError("Configuration file must contain a mapping at the top level")

        self._resolve_paths(config)

        logger.info("Configuration loaded successfully")
        return config

    def _resolve_paths(self, config: Dict[str, Any]) -> None:
        """Resolve relative paths in configuration relative to config file location."""
        config_dir = self.config_file.parent

        for section, key in (("connection", "credentials_path"),
                             ("storage", "data_directory"),
                             ("logging", "file_path")):
            value = config.get(section, {}).get(key) if isinstance(config.get(section), dict) else None
            if value and not os.path.isabs(value):
                config[section][key] = str(config_dir / value)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'session.time_limit_minutes').

        Args:
            key_path: Dot-separated key path
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key_path.split('.')
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value using dot notation.

        Args:
            key_path: Dot-separated path to config value (e.g., 'session.time_limit_minutes')
            value: Value to set
        """
        keys = key_path.split('.')
        config_dict = self.config

        for key in keys[:-1]:
            if key not in config_dict:
                config_dict[key] = {}
            config_dict = config_dict[key]

        config_dict[keys[-1]] = value
        logger.debug(f"Configuration key '{key_path}' set to: {value}")

    def _section(self, name: str, model):
        try:
            return model(**(self.get(name) or {}))
        except ValidationError as e:
            raise ValueError(f"Invalid '{name}' configuration: {e}") from e

    @property
    def session(self) -> SessionSettings:
        return self._section("session", SessionSettings)

    @property
    def connection(self) -> ConnectionSettings:
        return self._section("connection", ConnectionSettings)

    @property
    def audio(self) -> AudioSettings:
        return self._section("audio", AudioSettings)

    @property
    def video(self) -> VideoSettings:
        return self._section("video", VideoSettings)

    def get_device_config(self) -> DeviceConfig:
        return build_device_config(self.audio, self.video)

    def get_connect_options(self) -> ConnectOptions:
        return build_connect_options(self.connection, self.audio, self.video)

    def get_data_directory(self) -> str:
        """Get data directory path."""
        data_dir = self.get('storage.data_directory', 'data')
        return str(Path(data_dir).absolute())


__all__ = [
    "InterviewLiveConfig",
    "SessionSettings",
    "ConnectionSettings",
    "AudioSettings",
    "VideoSettings",
]
