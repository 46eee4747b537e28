"""
Configuration management for mity.

This module handles loading and merging configuration from:
1. Built-in defaults (config/defaults.yaml)
2. User-specified config files (--config)
3. Environment variables
4. Command-line overrides
"""

from __future__ import annotations
import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional, FrozenSet, List
from dataclasses import dataclass


DEFAULT_BLACKLIST: List[int] = list(range(302, 319)) + [3105, 3106, 3107]


@dataclass
class MityConfig:
    """
    Complete mity configuration.

    Holds caller thresholds, normalisation filter thresholds, the blacklist of
    artifact-prone positions and external tool settings.
    """

    # Thresholds passed to the variant caller
    call: Dict[str, Any]

    # Thresholds used by the normalisation filter
    filter: Dict[str, Any]

    # Blacklisted positions: "default" plus optional per-build lists
    blacklist: Dict[str, Any]

    # Tool-specific settings
    tools: Dict[str, Any]

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> MityConfig:
        """
        Load configuration from files and environment.

        Args:
            config_path: Optional path to user config file

        Returns:
            Merged configuration object
        """
        config = cls._load_defaults()

        if config_path and config_path.exists():
            user_config = cls._load_yaml(config_path)
            config = cls._merge_configs(config, user_config)

        config = cls._apply_env_overrides(config)

        return cls(
            call=config.get("call", {}),
            filter=config.get("filter", {}),
            blacklist=config.get("blacklist", {}),
            tools=config.get("tools", {}),
        )

    @staticmethod
    def _load_defaults() -> Dict[str, Any]:
        """Load built-in default configuration."""
        defaults_path = Path(__file__).parent / "config" / "defaults.yaml"
        if not defaults_path.exists():
            return {
                "call": {
                    "min_mq": 30,
                    "min_bq": 24,
                    "min_af": 0.01,
                    "min_ac": 4,
                    "p": 0.002,
                },
                "filter": {
                    "min_dp": 15,
                    "min_mqmr": 30.0,
                    "min_aqr": 20.0,
                    "sb_range": [0.1, 0.9],
                    "max_qual": 10000.0,
                },
                "blacklist": {"default": list(DEFAULT_BLACKLIST)},
                "tools": {},
            }
        return MityConfig._load_yaml(defaults_path)

    @staticmethod
    def _load_yaml(path: Path) -> Dict[str, Any]:
        """Load YAML configuration file."""
        try:
            with open(path, "r") as f:
                return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in config file {path}: {e}")
        except OSError as e:
            raise FileNotFoundError(f"Could not read config file {path}: {e}")

    @staticmethod
    def _merge_configs(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge two configuration dictionaries."""
        result = base.copy()

        for key, value in overlay.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = MityConfig._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    @staticmethod
    def _apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration."""
        env_mappings = {
            "MITY_MIN_MQ": ("call", "min_mq", int),
            "MITY_MIN_BQ": ("call", "min_bq", int),
            "MITY_MIN_AF": ("call", "min_af", float),
            "MITY_MIN_AC": ("call", "min_ac", int),
            "MITY_P": ("call", "p", float),
            "MITY_MIN_DP": ("filter", "min_dp", int),
        }

        for env_var, (section, key, type_func) in env_mappings.items():
            value = os.environ.get(env_var)
            if value is not None:
                try:
                    if section not in config:
                        config[section] = {}
                    config[section][key] = type_func(value)
                except ValueError:
                    raise ValueError(f"Invalid value for {env_var}: {value}")

        return config

    def get_call_threshold(self, key: str, default: Any = None) -> Any:
        """Get a caller threshold with fallback."""
        return self.call.get(key, default)

    def get_filter_setting(self, key: str, default: Any = None) -> Any:
        """Get a normalisation filter setting with fallback."""
        return self.filter.get(key, default)

    def get_blacklist(self, build: Optional[str] = None) -> FrozenSet[int]:
        """
        Blacklisted positions for a genome build.

        A build-specific list replaces the default list entirely.
        """
        positions = None
        if build is not None:
            positions = self.blacklist.get(build)
        if positions is None:
            positions = self.blacklist.get("default", DEFAULT_BLACKLIST)
        return frozenset(int(p) for p in positions)

    def get_tool(self, tool: str) -> str:
        """Executable name for a tool, allowing overrides such as a full path."""
        return str(self.tools.get(tool, {}).get("executable", tool))


_config: Optional[MityConfig] = None


def get_config() -> MityConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = MityConfig.load()
    return _config


def set_config(config: MityConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def load_config(config_path: Optional[Path] = None) -> MityConfig:
    """Load and set configuration from file."""
    config = MityConfig.load(config_path)
    set_config(config)
    return config
