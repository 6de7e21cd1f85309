"""Simple YAML configuration loader for VoiceStream."""

import copy
import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
import logging

from ..models.audio import AudioFormat

logger = logging.getLogger(__name__)

DEFAULTS: Dict[str, Any] = {
    "server": {
        "base_url": "http://localhost:8080",
        "timeout_seconds": 30.0,
        "chunk_timeout_seconds": 5.0,
    },
    "audio": {
        "sample_rate": 16000,
        "bit_depth": 16,
        "channels": 1,
        "fragment_millis": 250,
        "input_device_index": None,
    },
    "silence": {
        "threshold_millis": 1000,
        "amplitude_threshold": 10,
        "poll_interval_millis": 100,
    },
    "session": {
        "max_duration_seconds": 0,
        "drain_timeout_seconds": 5.0,
    },
    "storage": {
        "output_directory": "recordings",
    },
    "logging": {
        "level": "INFO",
        "file_path": "logs/voicestream.log",
        "console_output": True,
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class VoiceStreamConfig:
    """VoiceStream configuration loader."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to YAML config file. If None, the built-in
                        defaults are used and relative paths resolve against
                        the current directory.
        """
        self.config_file = Path(config_path) if config_path else None

        if self.config_file is None:
            logger.info("No configuration file given, using defaults")
            self.config = copy.deepcopy(DEFAULTS)
            return

        if not self.config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_file}")

        logger.info(f"Loading configuration from: {self.config_file}")
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load and parse YAML configuration file."""
        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}") from e

        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ValueError("Configuration file must contain a mapping")

        config = _merge(DEFAULTS, loaded)

        # Resolve relative paths
        self._resolve_paths(config)

        logger.info("Configuration loaded successfully")
        return config

    def _resolve_paths(self, config: Dict[str, Any]) -> None:
        """Resolve relative paths in configuration relative to config file location."""
        config_dir = self.config_file.parent

        output_dir = config['storage'].get('output_directory')
        if output_dir and not os.path.isabs(output_dir):
            config['storage']['output_directory'] = str(config_dir / output_dir)

        log_path = config['logging'].get('file_path')
        if log_path and not os.path.isabs(log_path):
            config['logging']['file_path'] = str(config_dir / log_path)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'silence.threshold_millis').

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
            key_path: Dot-separated path to config value (e.g., 'audio.sample_rate')
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

    def get_audio_format(self) -> AudioFormat:
        """Build the capture format from the audio section."""
        return AudioFormat(
            sample_rate=int(self.get('audio.sample_rate')),
            bit_depth=int(self.get('audio.bit_depth')),
            channel_count=int(self.get('audio.channels')),
        )

    def get_output_directory(self) -> str:
        """Get directory recordings are saved to."""
        output_dir = self.get('storage.output_directory', 'recordings')
        return str(Path(output_dir).absolute())
