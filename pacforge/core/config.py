# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
pacforge Configuration System

Centralized configuration management supporting:
- Environment variables (PACFORGE_*)
- Config files (~/.config/pacforge/config.yaml, ./.pacforge.yaml)
- Programmatic defaults
- Pydantic validation
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger("pacforge.config")

PROVIDER_ORDER_KEYS = ("name", "source", "version")


# ============================================================================
# Configuration Models
# ============================================================================


class PathsConfig(BaseModel):
    """Path configuration"""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    clone_dir: Path = Field(
        default_factory=lambda: Path.home() / ".cache" / "pacforge" / "clone",
        description="Per-base working directories for fetched build recipes",
    )
    log_dir: Path = Field(
        default_factory=lambda: Path.home() / ".cache" / "pacforge" / "logs",
        description="Log files directory",
    )
    db_path: Path = Field(
        default=Path("/var/lib/pacman"),
        description="Host package database root (local/ and sync/)",
    )
    lock_file: Optional[Path] = Field(
        default=Path("/var/lib/pacman/db.lck"),
        description="Host package database lock file",
    )
    devel_file: Path = Field(
        default_factory=lambda: Path.home() / ".cache" / "pacforge" / "devel.yaml",
        description="Commits recorded for installed VCS packages",
    )

    @field_validator("*", mode="before")
    @classmethod
    def ensure_path(cls, v):
        """Convert strings to Path objects"""
        if isinstance(v, str):
            return Path(v).expanduser()
        return v


class RemoteConfig(BaseModel):
    """Remote source repository configuration"""

    aur_url: str = Field(
        default="https://aur.archlinux.org", description="Remote repository base URL"
    )
    timeout_seconds: float = Field(
        default=30.0, description="Network and fetch timeout (seconds)", gt=0
    )
    max_retries: int = Field(default=3, description="Metadata request retries", ge=0)
    max_args_per_request: int = Field(
        default=150, description="Names per metadata request", ge=1
    )
    fetch_concurrency: int = Field(
        default=4, description="Concurrent recipe fetches", ge=1
    )


class ResolverConfig(BaseModel):
    """Dependency resolution configuration"""

    provider_order: List[str] = Field(
        default_factory=lambda: list(PROVIDER_ORDER_KEYS),
        description="Tie-break order for ambiguous providers",
    )
    check_depends: bool = Field(
        default=False, description="Resolve check dependencies of source packages"
    )
    optional_depends: bool = Field(
        default=False, description="Resolve optional dependencies of targets"
    )
    ignore: List[str] = Field(
        default_factory=list, description="Glob patterns of packages never upgraded"
    )

    @field_validator("provider_order")
    @classmethod
    def validate_provider_order(cls, v):
        """Provider order must be a permutation of the known keys"""
        if sorted(v) != sorted(PROVIDER_ORDER_KEYS):
            raise ValueError(
                f"provider_order must be a permutation of {list(PROVIDER_ORDER_KEYS)}"
            )
        return v


class InstallConfig(BaseModel):
    """Build and install configuration"""

    as_deps: bool = Field(default=False, description="Install targets as dependencies")
    needed: bool = Field(default=True, description="Skip already satisfied targets")
    rebuild: bool = Field(default=False, description="Rebuild satisfied source targets")
    remove_make_deps: bool = Field(
        default=False, description="Remove make-only dependencies after the run"
    )
    sudo: str = Field(default="sudo", description="Privilege escalation command")
    pacman: str = Field(default="pacman", description="Package manager binary")
    makepkg: str = Field(default="makepkg", description="Build tool binary")
    git: str = Field(default="git", description="VCS binary used to fetch recipes")
    makepkg_flags: List[str] = Field(
        default_factory=list, description="Extra build tool flags"
    )
    upgrade_menu: bool = Field(
        default=True, description="Ask which upgrades to exclude before upgrading"
    )
    devel: bool = Field(default=False, description="Check VCS packages for new commits")


class ObservabilityConfig(BaseModel):
    """Logging configuration"""

    log_level: str = Field(default="INFO", description="Logging level")
    file_logs: bool = Field(default=True, description="Write rotating log files")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v_upper


class PacforgeConfig(BaseModel):
    """Complete pacforge configuration"""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    paths: PathsConfig = Field(default_factory=PathsConfig)
    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    resolver: ResolverConfig = Field(default_factory=ResolverConfig)
    install: InstallConfig = Field(default_factory=InstallConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


# ============================================================================
# Configuration Loader
# ============================================================================


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


# env var -> (section, key, converter)
_ENV_MAP = {
    "PACFORGE_CLONE_DIR": ("paths", "clone_dir", str),
    "PACFORGE_LOG_DIR": ("paths", "log_dir", str),
    "PACFORGE_DB_PATH": ("paths", "db_path", str),
    "PACFORGE_AUR_URL": ("remote", "aur_url", str),
    "PACFORGE_TIMEOUT": ("remote", "timeout_seconds", float),
    "PACFORGE_FETCH_CONCURRENCY": ("remote", "fetch_concurrency", int),
    "PACFORGE_CHECK_DEPENDS": ("resolver", "check_depends", _env_bool),
    "PACFORGE_IGNORE": ("resolver", "ignore", lambda v: [p for p in v.split(",") if p]),
    "PACFORGE_NEEDED": ("install", "needed", _env_bool),
    "PACFORGE_REMOVE_MAKE_DEPS": ("install", "remove_make_deps", _env_bool),
    "PACFORGE_UPGRADE_MENU": ("install", "upgrade_menu", _env_bool),
    "PACFORGE_DEVEL": ("install", "devel", _env_bool),
    "PACFORGE_LOG_LEVEL": ("observability", "log_level", str),
    "PACFORGE_NO_FILE_LOGS": ("observability", "file_logs", lambda v: not _env_bool(v)),
}


class ConfigLoader:
    """Load configuration from multiple sources"""

    @staticmethod
    def load_from_env() -> Dict[str, Any]:
        """Load configuration from environment variables"""
        config: Dict[str, Any] = {}
        for env_name, (section, key, convert) in _ENV_MAP.items():
            raw = os.getenv(env_name)
            if not raw:
                continue
            try:
                value = convert(raw)
            except ValueError as e:
                logger.error(f"Ignoring invalid {env_name}={raw!r}: {e}")
                continue
            config.setdefault(section, {})[key] = value
        return config

    @staticmethod
    def load_from_file(file_path: Path) -> Dict[str, Any]:
        """Load configuration from a YAML file"""
        if not file_path.exists():
            return {}

        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load config file {file_path}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.error(
                f"Ignoring config file {file_path}: expected a mapping, got {type(data).__name__}"
            )
            return {}
        return data

    @staticmethod
    def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge multiple configuration dictionaries"""
        result: Dict[str, Any] = {}
        for config in configs:
            for key, value in config.items():
                if (
                    key in result
                    and isinstance(result[key], dict)
                    and isinstance(value, dict)
                ):
                    result[key] = ConfigLoader.merge_configs(result[key], value)
                else:
                    result[key] = value
        return result


# ============================================================================
# Global Configuration Instance
# ============================================================================

_config: Optional[PacforgeConfig] = None


def get_config() -> PacforgeConfig:
    """
    Get global pacforge configuration

    Configuration is loaded from (in order of precedence):
    1. Environment variables (PACFORGE_*)
    2. .pacforge.yaml in current directory
    3. ~/.config/pacforge/config.yaml
    4. Default values
    """
    global _config

    if _config is None:
        _config = load_config()

    return _config


def load_config(
    config_file: Optional[Path] = None, env_override: bool = True
) -> PacforgeConfig:
    """
    Load configuration from all sources

    Args:
        config_file: Optional specific config file to load
        env_override: Whether environment variables override file config

    Returns:
        PacforgeConfig instance
    """
    configs = []

    default_locations = [
        Path.home() / ".config" / "pacforge" / "config.yaml",
        Path.cwd() / ".pacforge.yaml",
    ]

    for location in default_locations:
        if location.exists():
            file_config = ConfigLoader.load_from_file(location)
            if file_config:
                configs.append(file_config)
                logger.debug(f"Loaded config from {location}")

    if config_file:
        file_config = ConfigLoader.load_from_file(Path(config_file))
        if file_config:
            configs.append(file_config)
            logger.debug(f"Loaded config from {config_file}")

    if env_override:
        env_config = ConfigLoader.load_from_env()
        if env_config:
            configs.append(env_config)
            logger.debug("Loaded config from environment")

    merged = ConfigLoader.merge_configs(*configs) if configs else {}

    try:
        return PacforgeConfig(**merged)
    except ValueError as e:
        logger.error(f"Config validation failed: {e}")
        logger.warning("Using default configuration")
        return PacforgeConfig()


def reload_config() -> PacforgeConfig:
    """Reload global configuration"""
    global _config
    _config = load_config()
    logger.info("Configuration reloaded")
    return _config
