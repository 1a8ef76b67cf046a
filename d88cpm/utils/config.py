#!/usr/bin/env python3
"""
Configuration Management System for d88cpm
Provides configuration handling with schema validation and persistence
"""

import json
import threading
from copy import deepcopy
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

import jsonschema


class ConfigError(Exception):
    """Base exception for configuration errors"""
    pass


class ConfigValidationError(ConfigError):
    """Exception for configuration validation errors"""
    pass


class Config:
    """
    Configuration management for d88cpm

    Values come from DEFAULT_CONFIG, overlaid section by section with the
    contents of a JSON file when one exists.
    """

    # Configuration schema for validation
    SCHEMA = {
        "type": "object",
        "properties": {
            "geometry": {
                "type": "object",
                "properties": {
                    "sector_size": {"type": "integer", "enum": [128, 256, 512, 1024]},
                    "sectors_per_track": {"type": "integer", "minimum": 1, "maximum": 255},
                    "tracks": {"type": "integer", "minimum": 2, "maximum": 255},
                    "block_size": {"type": "integer", "enum": [1024, 2048, 4096, 8192, 16384]},
                    "record_size": {"type": "integer", "enum": [128]},
                    "reserved_tracks": {"type": "integer", "minimum": 0},
                    "directory_blocks": {"type": "integer", "minimum": 1, "maximum": 16},
                    "preamble_size": {"type": "integer", "minimum": 0},
                    "header_size": {"type": "integer", "minimum": 0},
                    "sides": {"type": "integer", "enum": [1, 2]},
                    "fill_byte": {"type": "integer", "minimum": 0, "maximum": 255}
                },
                "additionalProperties": False
            },
            "logging": {
                "type": "object",
                "properties": {
                    "log_level": {"type": "string", "enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]},
                    "console_logging": {"type": "boolean"},
                    "file_logging": {"type": "boolean"},
                    "error_file_logging": {"type": "boolean"},
                    "structured_logging": {"type": "boolean"},
                    "use_colors": {"type": "boolean"},
                    "include_thread": {"type": "boolean"},
                    "log_directory": {"type": "string"},
                    "max_file_size": {"type": "integer", "minimum": 1024},
                    "backup_count": {"type": "integer", "minimum": 1, "maximum": 100}
                }
            },
            "write": {
                "type": "object",
                "properties": {
                    "transactional": {"type": "boolean"},
                    "verify": {"type": "boolean"}
                }
            },
            "cli": {
                "type": "object",
                "properties": {
                    "legacy_exit_codes": {"type": "boolean"}
                }
            }
        }
    }

    # Default configuration values
    DEFAULT_CONFIG = {
        "geometry": {
            "sector_size": 256,
            "sectors_per_track": 32,
            "tracks": 40,
            "block_size": 2048,
            "record_size": 128,
            "reserved_tracks": 2,
            "directory_blocks": 2,
            "preamble_size": 0x2B0,
            "header_size": 16,
            "sides": 2,
            "fill_byte": 0x1A
        },
        "logging": {
            "log_level": "WARNING",
            "console_logging": True,
            "file_logging": False,
            "error_file_logging": False,
            "structured_logging": False,
            "use_colors": True,
            "include_thread": False,
            "log_directory": "logs",
            "max_file_size": 10485760,  # 10MB
            "backup_count": 5
        },
        "write": {
            "transactional": False,
            "verify": False
        },
        "cli": {
            "legacy_exit_codes": False
        }
    }

    def __init__(self, config_file: Optional[Union[str, Path]] = None):
        """
        Initialize configuration manager

        Args:
            config_file: Path to configuration file; searched for when omitted
        """
        self._lock = threading.RLock()
        self._config = deepcopy(self.DEFAULT_CONFIG)

        if config_file:
            self._config_file = Path(config_file)
            if not self._config_file.exists():
                raise ConfigError(f"Config file not found: {self._config_file}")
        else:
            self._config_file = self._get_default_config_path()

        self.load()

    def _get_default_config_path(self) -> Path:
        """Get default configuration file path"""
        locations = [
            Path.cwd() / "d88cpm.json",
            Path.home() / ".config" / "d88cpm" / "config.json"
        ]

        # Use first existing file or default to first location
        for path in locations:
            if path.exists():
                return path

        return locations[0]

    def load(self, config_file: Optional[Union[str, Path]] = None) -> bool:
        """Load configuration from file; returns False when there is none"""
        config_path = Path(config_file) if config_file else self._config_file

        if not config_path.exists():
            return False

        try:
            with open(config_path, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Failed to load config {config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Config {config_path} must contain a JSON object")

        with self._lock:
            # Files written by save() nest the values under 'config'
            self._merge_config(data.get('config', data))

        self.check()
        return True

    def save(self, config_file: Optional[Union[str, Path]] = None) -> bool:
        """Save configuration to file"""
        config_path = Path(config_file) if config_file else self._config_file

        with self._lock:
            data = {
                'version': '1.0',
                'config': self._config,
                'saved_at': datetime.now().isoformat()
            }
            try:
                config_path.parent.mkdir(parents=True, exist_ok=True)
                with open(config_path, 'w') as f:
                    json.dump(data, f, indent=4, sort_keys=True)
            except OSError as e:
                raise ConfigError(f"Failed to save config {config_path}: {e}") from e

        return True

    def _merge_config(self, new_config: Dict):
        """Merge new configuration data into existing config"""
        for section, settings in new_config.items():
            if isinstance(settings, dict) and isinstance(self._config.get(section), dict):
                self._config[section].update(deepcopy(settings))
            else:
                self._config[section] = deepcopy(settings)

    def get(self, section: str, key: str, default: Any = None) -> Any:
        """Get a configuration value"""
        try:
            return self._config[section][key]
        except KeyError:
            return default

    def set(self, section: str, key: str, value: Any):
        """Set a configuration value"""
        with self._lock:
            if section not in self._config:
                self._config[section] = {}
            self._config[section][key] = value

    def get_section(self, section: str) -> Dict[str, Any]:
        """Get an entire configuration section"""
        return deepcopy(self._config.get(section, {}))

    def update(self, new_config: Dict):
        """Update configuration with new values"""
        with self._lock:
            self._merge_config(new_config)

    def validate(self) -> bool:
        """Validate current configuration against schema"""
        try:
            self.check()
            return True
        except ConfigValidationError:
            return False

    def check(self):
        """Raise ConfigValidationError when the configuration breaks the schema"""
        try:
            jsonschema.validate(instance=self._config, schema=self.SCHEMA)
        except jsonschema.ValidationError as e:
            path = '.'.join(str(p) for p in e.absolute_path) or '<root>'
            raise ConfigValidationError(f"{path}: {e.message}") from e

    def to_dict(self) -> Dict:
        """Return a deep copy of the entire configuration"""
        return deepcopy(self._config)

    def __contains__(self, key: str) -> bool:
        """Check if configuration has a specific section"""
        return key in self._config

    def __getitem__(self, section: str) -> Dict[str, Any]:
        """Get configuration section using dict-like access"""
        return self.get_section(section)
