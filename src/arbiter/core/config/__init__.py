"""Configuration models for Arbiter.

Pydantic models for loading and validating the YAML configuration. All
models are re-exported here, so ``from arbiter.core.config import ...``
works for every section.
"""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

from arbiter.core.config.intelligence import IntelligenceConfig
from arbiter.core.config.quality import QualityConfig, RefinementConfig
from arbiter.core.config.system import (
    AnalyticsConfig,
    BackendConfig,
    ConcurrencyConfig,
    LogConfig,
)
from arbiter.core.errors import ConfigurationError


class ArbiterConfig(BaseModel):
    """Root configuration.

    Every section has defaults, so an empty YAML document is a valid config.
    """

    analytics: AnalyticsConfig = Field(default_factory=AnalyticsConfig)
    quality: QualityConfig = Field(default_factory=QualityConfig)
    refinement: RefinementConfig = Field(default_factory=RefinementConfig)
    intelligence: IntelligenceConfig = Field(default_factory=IntelligenceConfig)
    concurrency: ConcurrencyConfig = Field(default_factory=ConcurrencyConfig)
    backend: BackendConfig = Field(default_factory=BackendConfig)
    logging: LogConfig = Field(default_factory=LogConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> ArbiterConfig:
        """Load configuration from a YAML file.

        Raises:
            ConfigurationError: If the file is unreadable, not YAML, or invalid.
        """
        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot read config {path}: {e}") from e
        return cls._validate_data(data, source=str(path))

    @classmethod
    def from_yaml_string(cls, yaml_str: str) -> ArbiterConfig:
        """Load configuration from a YAML string."""
        try:
            data = yaml.safe_load(yaml_str)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML: {e}") from e
        return cls._validate_data(data, source="<string>")

    @classmethod
    def _validate_data(cls, data: object, source: str) -> ArbiterConfig:
        try:
            return cls.model_validate(data or {})
        except ValidationError as e:
            raise ConfigurationError(f"Invalid config {source}: {e}") from e


__all__ = [
    "AnalyticsConfig",
    "ArbiterConfig",
    "BackendConfig",
    "ConcurrencyConfig",
    "IntelligenceConfig",
    "LogConfig",
    "QualityConfig",
    "RefinementConfig",
]
