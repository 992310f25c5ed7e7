"""Simple YAML configuration loader for AvatarSync."""

import copy
import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
import logging

from ..models.silence import SilenceConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "avatarsync.yaml"

DEFAULT_CONFIG: Dict[str, Any] = {
    'logging': {
        'level': 'INFO',
        'file_path': 'data/logs/avatarsync.log',
        'console_output': True,
        'loggers': {},
    },
    'audio': {
        'sample_rate': 24000,
        'channels': 1,
        'output_device_index': None,
    },
    'sync': {
        'synchronized': True,
        'auto_flush_timeout_seconds': 0.5,
        'sync_timeout_seconds': 5.0,
        'packet_gap_warning_ms': 100,
    },
    'viseme_service': {
        'url': 'ws://localhost:8000/stream-audio',
        'connect_timeout_seconds': 5.0,
        'max_reconnect_attempts': 3,
    },
    'silence_detection': {
        'silence_threshold_seconds': 10.0,
        'speech_volume_threshold': 0.05,
        'enabled': True,
        'min_time_between_nudges': 0.0,
        'max_nudges': 5,
        'response_window_seconds': 60.0,
        'indicator_seconds': 3.0,
        'termination_grace_seconds': 5.0,
        'volume_window_size': 10,
    },
    'session': {
        'keep_alive_interval_seconds': 30.0,
        'stats_report_interval_seconds': 30.0,
        'topic': 'stream.events',
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively overlay ``override`` onto a copy of ``base``."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def find_config_file(start: Optional[Path] = None) -> Optional[Path]:
    """Look for avatarsync.yaml in ``start`` (default: cwd) and its parents."""
    directory = (start or Path.cwd()).resolve()
    for candidate_dir in [directory, *directory.parents]:
        candidate = candidate_dir / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


class AvatarSyncConfig:
    """AvatarSync configuration loader."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to YAML config file. If None, looks for avatarsync.yaml
                        in current directory and parent directories, falling back
                        to built-in defaults.
        """
        if config_path is not None:
            self.config_file: Optional[Path] = Path(config_path)
            if not self.config_file.exists():
                raise FileNotFoundError(f"Configuration file not found: {self.config_file}")
        else:
            self.config_file = find_config_file()

        if self.config_file is None:
            logger.info(f"No {CONFIG_FILENAME} found, using built-in defaults")
            self.config = copy.deepcopy(DEFAULT_CONFIG)
        else:
            logger.info(f"Loading configuration from: {self.config_file}")
            self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load and parse YAML configuration file."""
        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}")

        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ValueError("Configuration file must contain a mapping at the top level")

        config = _merge(DEFAULT_CONFIG, loaded)
        self._resolve_paths(config)

        logger.info("Configuration loaded successfully")
        return config

    def _resolve_paths(self, config: Dict[str, Any]) -> None:
        """Resolve relative paths in configuration relative to config file location."""
        config_dir = self.config_file.parent

        # Resolve log file path
        if 'logging' in config and config['logging'].get('file_path'):
            log_path = config['logging']['file_path']
            if not os.path.isabs(log_path):
                config['logging']['file_path'] = str(config_dir / log_path)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'sync.synchronized').

        Args:
            key_path: Dot-separated key path (e.g., 'viseme_service.url')
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
            key_path: Dot-separated path to config value (e.g., 'sync.synchronized')
            value: Value to set
        """
        keys = key_path.split('.')
        config_dict = self.config

        # Navigate to the parent dictionary
        for key in keys[:-1]:
            if key not in config_dict:
                config_dict[key] = {}
            config_dict = config_dict[key]

        config_dict[keys[-1]] = value
        logger.debug(f"Configuration key '{key_path}' set to: {value}")

    def get_silence_config(self) -> SilenceConfig:
        """Build the silence policy from the silence_detection section.

        Raises:
            ValueError: If a silence setting is out of range
        """
        config = SilenceConfig.from_dict(self.get('silence_detection', {}))
        config.validate()
        return config
