# SPDX-License-Identifier: MIT
"""Configuration management for the synchronization layer."""

import copy
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_BATCH_DELAY_SECONDS,
    DEFAULT_GATEWAY_BASE_URL,
    DEFAULT_GATEWAY_TIMEOUT_SECONDS,
    DEFAULT_GC_TIME_SECONDS,
    DEFAULT_MAX_BATCH_SIZE,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY_SECONDS,
    DEFAULT_STALE_TIME_SECONDS,
)


ENV_PREFIX = "NEWSLETTER_SYNC_"


class CacheSettings(BaseModel):
    """Configuration for the query cache and cross-view synchronization."""

    stale_time_seconds: float = Field(
        DEFAULT_STALE_TIME_SECONDS,
        ge=0.0,
        description="Seconds a fetched query counts as fresh",
    )
    gc_time_seconds: float = Field(
        DEFAULT_GC_TIME_SECONDS,
        ge=0.0,
        description="Seconds an unobserved query is retained before eviction",
    )
    enable_cross_feature_sync: bool = Field(
        True, description="Propagate newsletter updates into reading-queue views"
    )
    refetch_on_invalidate: bool = Field(
        True, description="Refetch observed queries as soon as they are invalidated"
    )


class BatchSettings(BaseModel):
    """Configuration for chunked bulk updates."""

    max_batch_size: int = Field(
        DEFAULT_MAX_BATCH_SIZE, ge=1, description="Maximum ids per remote call"
    )
    batch_delay_seconds: float = Field(
        DEFAULT_BATCH_DELAY_SECONDS, ge=0.0, description="Pause between chunks"
    )
    max_retries: int = Field(
        DEFAULT_MAX_RETRIES, ge=0, description="Retries for a failing chunk"
    )
    retry_delay_seconds: float = Field(
        DEFAULT_RETRY_DELAY_SECONDS, ge=0.0, description="Pause between attempts"
    )


class GatewaySettings(BaseModel):
    """Configuration for the remote data gateway."""

    base_url: str = Field(
        DEFAULT_GATEWAY_BASE_URL, description="PostgREST endpoint, e.g. <project>/rest/v1"
    )
    api_key: str | None = Field(None, description="Project API key")
    access_token: str | None = Field(None, description="User session token")
    user_id: str | None = Field(None, description="Signed-in user id")
    timeout_seconds: float = Field(
        DEFAULT_GATEWAY_TIMEOUT_SECONDS, gt=0.0, description="Per-request timeout"
    )


class AppConfig(BaseModel):
    """Main application configuration."""

    cache: CacheSettings = CacheSettings()
    batch: BatchSettings = BatchSettings()
    gateway: GatewaySettings = GatewaySettings()


class ConfigManager:
    """Manages application configuration from files and environment."""

    def __init__(self, config_path: Path | None = None):
        self.config_path = config_path or self._find_config_file()
        self._config: AppConfig | None = None

    def _find_config_file(self) -> Path | None:
        """Find configuration file in standard locations."""
        search_paths = [
            Path.cwd() / ".newsletter-sync" / "config.yaml",
            Path.cwd() / "config.yaml",
            Path.home() / ".config" / "newsletter-sync" / "config.yaml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return None

    def load_config(self) -> AppConfig:
        """Load configuration from file or create default."""
        if self._config is not None:
            return self._config

        config_data = self.get_default_config()

        if self.config_path and self.config_path.exists():
            with open(self.config_path, encoding="utf-8") as f:
                file_config = yaml.safe_load(f) or {}
            config_data = self._deep_merge_configs(config_data, file_config)

        config_data = self._apply_env_overrides(config_data)

        self._config = AppConfig(**config_data)
        return self._config

    def _deep_merge_configs(
        self, default_config: dict[str, Any], override_config: dict[str, Any]
    ) -> dict[str, Any]:
        """Recursively merge override config into default config.

        Sections are merged key by key, so a file may override a single
        setting and keep every other default.

        Example:
            Default: {"batch": {"max_batch_size": 50, "max_retries": 2}}
            Override: {"batch": {"max_retries": 5}}
            Result: {"batch": {"max_batch_size": 50, "max_retries": 5}}
        """
        result = copy.deepcopy(default_config)

        for key, value in override_config.items():
            if isinstance(result.get(key), dict) and isinstance(value, dict):
                result[key] = self._deep_merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_env_overrides(self, config_data: dict[str, Any]) -> dict[str, Any]:
        """Apply environment variable overrides to config.

        ``NEWSLETTER_SYNC_BATCH_MAX_RETRIES=5`` sets ``batch.max_retries``.
        Values are parsed as YAML scalars, so "true", "5" and "0.25" keep
        their types.
        """
        for key, value in os.environ.items():
            if not key.startswith(ENV_PREFIX):
                continue

            config_key = key[len(ENV_PREFIX) :].lower()
            section, _, setting = config_key.partition("_")
            section_field = AppConfig.model_fields.get(section)
            if section_field is None:
                continue

            section_model = type(section_field.default)
            setting_field = section_model.model_fields.get(setting)
            if setting_field is None:
                continue

            section_data = config_data.setdefault(section, {})
            if setting_field.annotation in (str, str | None):
                section_data[setting] = value or None
            else:
                section_data[setting] = yaml.safe_load(value)

        return config_data

    def get_complete_config_dict(self) -> dict[str, Any]:
        """Get the complete configuration as a dictionary for display."""
        config = self.load_config()
        return config.model_dump()

    def show_config(self) -> str:
        """Show the complete configuration in YAML format.

        Secrets are masked.

        Returns:
            YAML formatted configuration string
        """
        config_dict = self.get_complete_config_dict()
        for secret in ("api_key", "access_token"):
            if config_dict["gateway"].get(secret):
                config_dict["gateway"][secret] = "***"
        return yaml.dump(config_dict, default_flow_style=False, sort_keys=False)

    def get_default_config(self) -> dict[str, Any]:
        """Get the default configuration as a plain dictionary."""
        return AppConfig().model_dump()

    def create_default_config(self, output_path: Path) -> None:
        """Write the default configuration to ``output_path``."""
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            yaml.dump(
                self.get_default_config(), f, default_flow_style=False, sort_keys=False
            )


# Global config manager instance, used by the CLI entry points only
_config_manager_instance: ConfigManager | None = None


def get_config_manager(config_path: Path | None = None) -> ConfigManager:
    """Get or create the global config manager instance.

    Args:
        config_path: Optional path to config file (only used on first call)

    Returns:
        The global ConfigManager instance
    """
    global _config_manager_instance
    if _config_manager_instance is None:
        _config_manager_instance = ConfigManager(config_path)
    return _config_manager_instance


def set_config_manager(manager: ConfigManager) -> None:
    """Set the config manager instance (primarily for testing)."""
    global _config_manager_instance
    _config_manager_instance = manager


def reset_config_manager() -> None:
    """Reset the config manager instance (primarily for testing)."""
    global _config_manager_instance
    _config_manager_instance = None
