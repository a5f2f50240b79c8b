"""
settings_loader.py

Configuration management for the cluster post-processing core.
Loads and validates settings from YAML configuration with environment variable substitution.

Features:
- YAML configuration loading with validation
- Environment variable substitution (${VAR_NAME} syntax)
- Singleton pattern for global settings access
- Type-safe configuration with Pydantic models
- Falls back to defaults when no settings file exists
"""

import os
import re
import yaml
import logging
from typing import Any, Optional
from pydantic import BaseModel, Field, field_validator
from pathlib import Path

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models (Pydantic)
# =============================================================================

class ServiceSettings(BaseModel):
    """General service settings."""
    name: str = Field(default="cluster-postprocess", description="Service name")
    version: str = Field(default="0.1.0", description="Service version")
    environment: str = Field(default="production", description="Environment (development, staging, production)")


class PostProcessingSettings(BaseModel):
    """Defaults for the post-processing pipeline."""
    min_size: int = Field(default=1, ge=1, description="Minimum members per retained cluster")
    order_by: str = Field(default="size", description="Cluster ordering (size or best)")
    format: str = Field(default="vector", description="Output format (vector or list)")
    sil_cutoff: float = Field(default=0.0, ge=-1.0, le=1.0, description="Silhouette cutoff for sample removal")
    k_below: int = Field(default=2, ge=0, description="Search starts this far below a given k")
    k_above: int = Field(default=20, ge=0, description="Search ends this far above a given k")
    default_k_min: int = Field(default=2, ge=2, description="First k searched when no k is given")
    default_k_max: int = Field(default=20, ge=2, description="Last k searched when no k is given")

    @field_validator("order_by")
    @classmethod
    def validate_order_by(cls, v: str) -> str:
        if v not in ("size", "best"):
            raise ValueError("order_by must be 'size' or 'best'")
        return v

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v not in ("vector", "list"):
            raise ValueError("format must be 'vector' or 'list'")
        return v


class ExecutionSettings(BaseModel):
    """Candidate K search execution settings."""
    max_workers: int = Field(default=1, ge=1, description="Worker threads for candidate evaluation (1 = sequential)")
    timeout_seconds: Optional[float] = Field(default=None, gt=0.0, description="Time budget for a K search")


class HierarchicalSettings(BaseModel):
    """Agglomerative built-in algorithm settings."""
    linkage: str = Field(default="average", description="Linkage method (complete, average, single)")


class KMeansSettings(BaseModel):
    """K-Means built-in algorithm settings."""
    n_init: int = Field(default=10, ge=1, description="Number of centroid initializations")
    max_iter: int = Field(default=300, ge=1, description="Maximum iterations per run")
    random_state: Optional[int] = Field(default=42, description="Seed for reproducible clusterings")


class AlgorithmsSettings(BaseModel):
    """Built-in algorithm settings."""
    hierarchical01: HierarchicalSettings = Field(default_factory=lambda: HierarchicalSettings(linkage="complete"))
    hierarchicalK: HierarchicalSettings = Field(default_factory=lambda: HierarchicalSettings(linkage="average"))
    kmeansK: KMeansSettings = Field(default_factory=KMeansSettings)


class LoggingSettings(BaseModel):
    """Logging configuration."""
    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format (json or console)")
    file: Optional[str] = Field(default=None, description="Optional rotating log file path")
    warn_unused_args: bool = Field(default=True, description="Warn about post-processing args that do not apply")


class Settings(BaseModel):
    """Root configuration model."""
    service: ServiceSettings = Field(default_factory=ServiceSettings)
    post_processing: PostProcessingSettings = Field(default_factory=PostProcessingSettings)
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)
    algorithms: AlgorithmsSettings = Field(default_factory=AlgorithmsSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# =============================================================================
# Configuration Manager (Singleton)
# =============================================================================

class ConfigManager:
    """
    Singleton configuration manager that loads and caches settings.

    Features:
    - Loads YAML configuration from file
    - Substitutes environment variables using ${VAR_NAME} syntax
    - Validates configuration using Pydantic models
    - Provides global access to settings
    """

    _instance: Optional['ConfigManager'] = None
    _settings: Optional[Settings] = None

    def __new__(cls):
        """Ensure singleton pattern."""
        if cls._instance is None:
            cls._instance = super(ConfigManager, cls).__new__(cls)
        return cls._instance

    @classmethod
    def load_config(cls, config_path: Optional[str] = None) -> Settings:
        """
        Load configuration from YAML file with environment variable substitution.

        Args:
            config_path: Path to configuration file. If None, the default
                locations are searched and defaults are used when none exists.

        Returns:
            Settings object with validated configuration

        Raises:
            FileNotFoundError: If an explicit configuration file is not found
            ValueError: If configuration is invalid
        """
        if cls._settings is not None:
            return cls._settings

        if config_path is None:
            possible_paths = [
                Path(os.getenv("CLUSTERPOST_CONFIG", "config/settings.yaml")),
                Path("config/settings.yaml"),
            ]

            config_path_obj = None
            for path in possible_paths:
                if path.exists():
                    config_path_obj = path
                    break

            if config_path_obj is None:
                logger.warning(
                    f"Configuration file not found in any of: {[str(p) for p in possible_paths]}. "
                    "Using defaults."
                )
                cls._settings = Settings()
                return cls._settings
        else:
            config_path_obj = Path(config_path)
            if not config_path_obj.exists():
                raise FileNotFoundError(f"Configuration file not found: {config_path}")

        logger.info(f"Loading configuration from: {config_path_obj}")

        try:
            with open(config_path_obj, 'r') as f:
                raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.error(f"Failed to load YAML configuration: {e}")
            raise ValueError(f"Invalid YAML configuration: {e}")

        config_dict = cls._substitute_env_vars(raw_config or {})

        try:
            cls._settings = Settings(**config_dict)
            logger.info("Configuration loaded and validated successfully")
            return cls._settings
        except Exception as e:
            logger.error(f"Configuration validation failed: {e}")
            raise ValueError(f"Invalid configuration: {e}")

    @classmethod
    def get_settings(cls) -> Settings:
        """
        Get cached settings. Loads from default path if not already loaded.

        Returns:
            Settings object
        """
        if cls._settings is None:
            cls.load_config()
        return cls._settings

    @classmethod
    def _substitute_env_vars(cls, config: Any) -> Any:
        """
        Recursively substitute environment variables in configuration.

        Supports ${VAR_NAME} and ${VAR_NAME:default_value} syntax.

        Args:
            config: Configuration dictionary or value

        Returns:
            Configuration with substituted values
        """
        if isinstance(config, dict):
            return {k: cls._substitute_env_vars(v) for k, v in config.items()}
        elif isinstance(config, list):
            return [cls._substitute_env_vars(item) for item in config]
        elif isinstance(config, str):
            pattern = r'\$\{([^}:]+)(?::([^}]*))?\}'

            def replace_var(match):
                var_name = match.group(1)
                default_value = match.group(2) if match.group(2) is not None else ""
                return os.getenv(var_name, default_value)

            return re.sub(pattern, replace_var, config)
        else:
            return config

    @classmethod
    def reload_config(cls, config_path: Optional[str] = None) -> Settings:
        """
        Reload configuration from file.

        Args:
            config_path: Path to configuration file

        Returns:
            Reloaded Settings object
        """
        cls._settings = None
        return cls.load_config(config_path)


# =============================================================================
# Convenience Functions
# =============================================================================

def get_settings() -> Settings:
    """
    Get application settings (convenience function).

    Returns:
        Settings object
    """
    return ConfigManager.get_settings()
