"""
Configuration system using Pydantic for type-safe settings management.

Settings come from, in increasing priority: defaults, ``MCP_AUTO_INSTALL_*``
environment variables, and an optional YAML file. The host application's
config path is read from ``MCP_SETTINGS_PATH``, the variable the host
integration has always used.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from mcp_auto_install.exceptions import ConfigurationError

DEFAULT_CONFIG_DIR = Path.home() / ".mcp-auto-install"
DEFAULT_SERVERS_DIR = Path.home() / ".mcp" / "servers"


class AutoInstallSettings(BaseSettings):
    """Main settings for the registry, installer and reconciler."""

    model_config = SettingsConfigDict(
        env_prefix="MCP_AUTO_INSTALL_",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    config_dir: Path = Field(default=DEFAULT_CONFIG_DIR, description="Tool configuration directory")
    registry_path: Path | None = Field(default=None, description="Registry file (default: <config_dir>/registry.json)")
    bin_dir: Path | None = Field(default=None, description="Wrapper script directory (default: <config_dir>/bin)")
    servers_dir: Path = Field(default=DEFAULT_SERVERS_DIR, description="Root directory for cloned servers")
    external_config_path: Path | None = Field(
        default=None,
        validation_alias=AliasChoices("MCP_SETTINGS_PATH", "external_config_path"),
        description="Host application config file that receives run commands",
    )

    namespace: str = Field(default="@modelcontextprotocol", description="Package index scope to discover")
    sdk_package: str = Field(default="@modelcontextprotocol/sdk", description="Scope package that is not a server")
    npm_registry_url: str = Field(default="https://registry.npmjs.org", description="Package index base URL")
    discovery_timeout: float = Field(default=15.0, gt=0, description="Per-request timeout in seconds")
    discovery_retries: int = Field(default=3, ge=1, description="Attempts per index request")
    discovery_retry_delay: float = Field(default=1.0, ge=0, description="Fixed delay between attempts")
    discover_on_start: bool = Field(default=True, description="Refresh from the package index at startup")

    strict_registry: bool = Field(
        default=False,
        description="Abort on a corrupt registry file instead of starting from an empty one",
    )
    log_level: str = Field(default="WARNING", description="Minimum log level")

    @model_validator(mode="after")
    def _derive_paths(self) -> AutoInstallSettings:
        if self.registry_path is None:
            self.registry_path = self.config_dir / "registry.json"
        if self.bin_dir is None:
            self.bin_dir = self.config_dir / "bin"
        return self

    @classmethod
    def from_yaml(cls, config_path: str | Path, **overrides: Any) -> AutoInstallSettings:
        """Load settings from a YAML file with environment variable interpolation.

        Supports ``${VAR_NAME}`` and ``${VAR_NAME:-default}`` placeholders.

        Args:
            config_path: Path to the YAML file.
            **overrides: Values that take precedence over the file.

        Raises:
            ConfigurationError: If the file cannot be read, parsed or validated.
        """
        try:
            yaml_content = Path(config_path).read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file: {config_path}") from e

        try:
            yaml_content = cls._interpolate_env_vars(yaml_content)
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment variable reference in config: {e}") from e

        try:
            config_dict = yaml.safe_load(yaml_content) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax in {config_path}: {e}") from e
        if not isinstance(config_dict, dict):
            raise ConfigurationError("Configuration must be a YAML object, not a list or scalar")

        config_dict.update(overrides)
        try:
            return cls(**config_dict)
        except Exception as e:
            raise ConfigurationError(f"Failed to validate configuration: {e}") from e

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> AutoInstallSettings:
        """Load settings from ``config_path``, or ``<config_dir>/config.yaml`` if present."""
        if config_path is not None:
            return cls.from_yaml(config_path)
        default_path = cls().config_dir / "config.yaml"
        if default_path.exists():
            return cls.from_yaml(default_path)
        return cls()

    @staticmethod
    def _interpolate_env_vars(content: str) -> str:
        """Interpolate ${VAR_NAME} placeholders with environment variables.

        YAML comment lines are left untouched.

        Raises:
            ValueError: If a required environment variable is not set
        """
        pattern = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")

        def replace_var(match: re.Match[str]) -> str:
            var_name = match.group(1)
            default_value = match.group(2)
            value = os.getenv(var_name)

            if value is not None:
                return value
            elif default_value is not None:
                return default_value
            else:
                raise ValueError(f"Environment variable {var_name} is not set")

        def process_line(line: str) -> str:
            if line.lstrip().startswith("#"):
                return line
            return pattern.sub(replace_var, line)

        return "\n".join(process_line(line) for line in content.split("\n"))
