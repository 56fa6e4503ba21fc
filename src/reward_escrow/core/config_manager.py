"""
Reward Escrow Configuration Manager

Centralized configuration management supporting:
- Environment-based configs (development/staging/production)
- Config file loading (YAML/JSON)
- Command-line override support
- Environment variable support (ESCROW_*)
- Config validation
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from dotenv import load_dotenv

from reward_escrow.core.constants import (
    DEFAULT_ACCOUNT_MERGING_DURATION,
    DEFAULT_MAX_ACCOUNT_MERGING_DURATION,
    DEFAULT_MAX_ESCROW_DURATION,
    DEFAULT_SETUP_DURATION,
)
from reward_escrow.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"
ENV_PREFIX = "ESCROW_"


class Environment(Enum):
    """Environment types"""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


def _split_addresses(value: Union[str, List[str], None]) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip().lower() for part in value.split(",") if part.strip()]
    return [str(part).strip().lower() for part in value if str(part).strip()]


@dataclass
class VestingConfig:
    """Vesting schedule limits"""
    max_escrow_duration: int = DEFAULT_MAX_ESCROW_DURATION
    setup_duration: int = DEFAULT_SETUP_DURATION

    def validate(self):
        """Validate vesting configuration"""
        if not isinstance(self.max_escrow_duration, int) or self.max_escrow_duration <= 0:
            raise ConfigurationError(
                f"Invalid max_escrow_duration: {self.max_escrow_duration}. Must be > 0"
            )
        if not isinstance(self.setup_duration, int) or self.setup_duration < 0:
            raise ConfigurationError(f"Invalid setup_duration: {self.setup_duration}. Must be >= 0")


@dataclass
class MergingConfig:
    """Account merging window settings"""
    account_merging_duration: int = DEFAULT_ACCOUNT_MERGING_DURATION
    max_account_merging_duration: int = DEFAULT_MAX_ACCOUNT_MERGING_DURATION

    def validate(self):
        """Validate merging configuration"""
        if not isinstance(self.max_account_merging_duration, int) or self.max_account_merging_duration <= 0:
            raise ConfigurationError(
                f"Invalid max_account_merging_duration: {self.max_account_merging_duration}. Must be > 0"
            )
        if (
            not isinstance(self.account_merging_duration, int)
            or not 0 < self.account_merging_duration <= self.max_account_merging_duration
        ):
            raise ConfigurationError(
                f"Invalid account_merging_duration: {self.account_merging_duration}. "
                f"Must be between 1-{self.max_account_merging_duration}"
            )


@dataclass
class AccessConfig:
    """Role assignments applied when the escrow is deployed"""
    owner_address: str = ""
    issuer_addresses: List[str] = field(default_factory=list)
    bridge_addresses: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.owner_address = (self.owner_address or "").strip().lower()
        self.issuer_addresses = _split_addresses(self.issuer_addresses)
        self.bridge_addresses = _split_addresses(self.bridge_addresses)

    def validate(self):
        """Validate access configuration"""
        if not self.owner_address:
            raise ConfigurationError("owner_address cannot be empty")


@dataclass
class LoggingConfig:
    """Logging configuration settings"""
    level: str = "INFO"
    log_file: str = "logs/escrow.json"
    environment: str = "development"
    enable_console: bool = True
    enable_file: bool = False

    def validate(self):
        """Validate logging configuration"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if str(self.level).upper() not in valid_levels:
            raise ConfigurationError(f"Invalid log level: {self.level}. Must be one of {valid_levels}")


class ConfigManager:
    """
    Configuration Manager for the reward escrow.

    Handles loading, validation, and access to configuration settings
    from multiple sources with proper precedence:
    1. Command-line arguments (highest priority)
    2. Environment variables (ESCROW_*)
    3. Environment-specific config files
    4. Default config file
    5. Built-in defaults (lowest priority)
    """

    def __init__(self,
                 environment: Optional[str] = None,
                 config_dir: Optional[str] = None,
                 cli_overrides: Optional[Dict[str, Any]] = None):
        """
        Initialize Configuration Manager

        Args:
            environment: Environment name (development/staging/production)
            config_dir: Directory containing config files
            cli_overrides: Command-line argument overrides ("section.key" -> value)
        """
        load_dotenv()

        self.environment = self._determine_environment(environment)
        self.config_dir = Path(config_dir).resolve() if config_dir else DEFAULT_CONFIG_DIR
        self.cli_overrides = cli_overrides or {}

        self.vesting: VestingConfig = None
        self.merging: MergingConfig = None
        self.access: AccessConfig = None
        self.logging: LoggingConfig = None

        self._raw_config: Dict[str, Any] = {}

        self._load_configuration()

    def _determine_environment(self, environment: Optional[str]) -> Environment:
        """
        Determine the environment to use

        Priority:
        1. Passed environment parameter
        2. ESCROW_ENVIRONMENT environment variable
        3. Default to DEVELOPMENT
        """
        if environment:
            env_str = environment.lower()
        else:
            env_str = os.getenv("ESCROW_ENVIRONMENT", "development").lower()

        env_mapping = {
            "dev": Environment.DEVELOPMENT,
            "development": Environment.DEVELOPMENT,
            "staging": Environment.STAGING,
            "stage": Environment.STAGING,
            "prod": Environment.PRODUCTION,
            "production": Environment.PRODUCTION,
        }

        return env_mapping.get(env_str, Environment.DEVELOPMENT)

    def _load_configuration(self):
        """Load configuration from all sources with proper precedence"""
        default_config = self._load_config_file("default")
        env_config = self._load_config_file(self.environment.value)
        merged_config = self._merge_configs(default_config, env_config)
        merged_config = self._apply_env_variables(merged_config)
        merged_config = self._apply_cli_overrides(merged_config)

        self._raw_config = merged_config

        self._parse_configuration(merged_config)
        self._validate_configuration()

        logger.debug(
            "Configuration loaded",
            extra={
                "event": "config.loaded",
                "environment": self.environment.value,
                "config_dir": str(self.config_dir),
            },
        )

    def _load_config_file(self, filename: str) -> Dict[str, Any]:
        """
        Load configuration from YAML or JSON file

        Args:
            filename: Config filename (without extension)

        Returns:
            Configuration dictionary
        """
        yaml_path = self.config_dir / f"{filename}.yaml"
        if yaml_path.exists():
            with open(yaml_path, "r", encoding="utf-8") as f:
                return yaml.safe_load(f) or {}

        json_path = self.config_dir / f"{filename}.json"
        if json_path.exists():
            with open(json_path, "r", encoding="utf-8") as f:
                return json.load(f)

        return {}

    def _merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """
        Deep merge two configuration dictionaries

        Args:
            base: Base configuration
            override: Override configuration

        Returns:
            Merged configuration
        """
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_env_variables(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply environment variable overrides (ESCROW_*)

        Environment variables format:
        ESCROW_SECTION_KEY=value

        Example:
        ESCROW_VESTING_MAX_ESCROW_DURATION=31556926
        ESCROW_ACCESS_OWNER_ADDRESS=0xabc...
        """
        result = {
            key: (value.copy() if isinstance(value, dict) else value)
            for key, value in config.items()
        }

        for key, value in os.environ.items():
            if not key.startswith(ENV_PREFIX):
                continue

            if key == "ESCROW_ENVIRONMENT":
                continue

            parts = key[len(ENV_PREFIX):].lower().split("_")

            if len(parts) < 2:
                continue

            section = parts[0]
            config_key = "_".join(parts[1:])

            if section not in ("vesting", "merging", "access", "logging"):
                continue

            if not isinstance(result.get(section), dict):
                result[section] = {}

            result[section][config_key] = self._parse_env_value(value)

        return result

    def _parse_env_value(self, value: str) -> Union[str, int, bool]:
        """
        Parse environment variable value to appropriate type

        Args:
            value: String value from environment variable

        Returns:
            Parsed value
        """
        if value.lower() in ("true", "yes", "on"):
            return True
        if value.lower() in ("false", "no", "off"):
            return False

        try:
            return int(value)
        except ValueError:
            pass

        return value

    def _apply_cli_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply command-line argument overrides

        Args:
            config: Current configuration

        Returns:
            Configuration with CLI overrides applied
        """
        result = config.copy()

        for key, value in self.cli_overrides.items():
            parts = key.split(".")

            if len(parts) == 1:
                result[key] = value
            elif len(parts) == 2:
                section, config_key = parts
                if not isinstance(result.get(section), dict):
                    result[section] = {}
                else:
                    result[section] = dict(result[section])
                result[section][config_key] = value

        return result

    def _parse_configuration(self, config: Dict[str, Any]):
        """
        Parse configuration into typed objects

        Args:
            config: Raw configuration dictionary
        """
        try:
            self.vesting = VestingConfig(**(config.get("vesting") or {}))
            self.merging = MergingConfig(**(config.get("merging") or {}))
            self.access = AccessConfig(**(config.get("access") or {}))
            self.logging = LoggingConfig(**(config.get("logging") or {}))
        except TypeError as exc:
            raise ConfigurationError(f"Unknown configuration key: {exc}") from exc

    def _validate_configuration(self):
        """Validate all configuration sections"""
        self.vesting.validate()
        self.merging.validate()
        self.access.validate()
        self.logging.validate()

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation key

        Args:
            key: Configuration key (e.g., "vesting.max_escrow_duration")
            default: Default value if key not found

        Returns:
            Configuration value
        """
        parts = key.split(".")
        value = self.to_dict()

        for part in parts:
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return default

        return value

    def get_section(self, section: str) -> Optional[Dict[str, Any]]:
        """Get entire configuration section as a dictionary"""
        return self.to_dict().get(section)

    def to_dict(self) -> Dict[str, Any]:
        """
        Export configuration to dictionary

        Returns:
            Complete configuration dictionary
        """
        return {
            "environment": self.environment.value,
            "vesting": asdict(self.vesting),
            "merging": asdict(self.merging),
            "access": asdict(self.access),
            "logging": asdict(self.logging),
        }
