"""Configuration Management for Dynabatch

This module provides centralized configuration for the batching scheduler,
its inference backend and logging. Operational sections are validated
dataclasses; the backend connection is a frozen Pydantic settings model that
reads ``DYNABATCH_BACKEND_*`` environment variables.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from .errors import ConfigurationError

BACKEND_KINDS = ("simulated", "http")


@dataclass
class SchedulerConfig:
    """Configuration for batch formation, backpressure and dispatch."""

    max_batch_size: int = 32
    preferred_batch_size: int = 16
    max_queue_delay_ms: float = 5.0
    backlog_limit: int = 1024
    max_inflight_batches: int = 2
    backend_timeout_s: float = 30.0

    def __post_init__(self):
        """Validate scheduler configuration."""
        if self.max_batch_size < 1:
            raise ValueError("max_batch_size must be at least 1")

        if self.preferred_batch_size < 1:
            raise ValueError("preferred_batch_size must be at least 1")

        if self.preferred_batch_size > self.max_batch_size:
            raise ValueError("preferred_batch_size cannot be larger than max_batch_size")

        if self.max_queue_delay_ms < 0:
            raise ValueError("max_queue_delay_ms must be non-negative")

        if self.backlog_limit < 1:
            raise ValueError("backlog_limit must be at least 1")

        if self.max_inflight_batches < 1:
            raise ValueError("max_inflight_batches must be at least 1")

        if self.backend_timeout_s <= 0:
            raise ValueError("backend_timeout_s must be positive")

    @property
    def max_queue_delay_s(self) -> float:
        """Maximum queue delay in seconds."""
        return self.max_queue_delay_ms / 1000.0


class BackendConfig(BaseSettings):
    """Inference backend selection and connection settings."""

    kind: str = Field(default="simulated", description="Backend type: simulated or http")
    url: Optional[str] = Field(default=None, description="Prediction endpoint for the http backend")
    latency_ms: float = Field(default=5.0, description="Simulated fixed latency per batch")
    per_item_ms: float = Field(default=0.5, description="Simulated latency added per batch item")
    failure_rate: float = Field(default=0.0, description="Simulated probability a batch call fails")
    seed: int = Field(default=42, description="Seed for simulated failure injection")

    @field_validator("kind")
    @classmethod
    def validate_kind(cls, v):
        v = v.lower().strip()
        if v not in BACKEND_KINDS:
            raise ValueError(f"Invalid backend kind: {v}")
        return v

    @field_validator("latency_ms", "per_item_ms")
    @classmethod
    def validate_latency(cls, v):
        if v < 0:
            raise ValueError("simulated latency must be non-negative")
        return v

    @field_validator("failure_rate")
    @classmethod
    def validate_failure_rate(cls, v):
        if not 0.0 <= v <= 1.0:
            raise ValueError("failure_rate must be between 0.0 and 1.0")
        return v

    model_config = {"frozen": True, "env_prefix": "DYNABATCH_BACKEND_"}


@dataclass
class LoggingConfig:
    """Configuration for logging and metrics."""

    log_level: str = "INFO"
    log_format: str = "console"
    enable_metrics: bool = True

    def __post_init__(self):
        """Validate logging configuration."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level not in valid_levels:
            raise ValueError(f"Invalid log level: {self.log_level}")

        valid_formats = ["console", "json"]
        if self.log_format not in valid_formats:
            raise ValueError(f"Invalid log format: {self.log_format}")


@dataclass
class DynabatchConfig:
    """Main configuration class for Dynabatch."""

    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    backend: BackendConfig = field(default_factory=BackendConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    debug: bool = False

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "DynabatchConfig":
        """Load configuration from environment variables."""

        if env_file:
            cls._load_env_file(env_file)

        scheduler = SchedulerConfig(
            max_batch_size=cls._get_int_env("MAX_BATCH_SIZE", 32),
            preferred_batch_size=cls._get_int_env("PREFERRED_BATCH_SIZE", 16),
            max_queue_delay_ms=cls._get_float_env("MAX_QUEUE_DELAY_MS", 5.0),
            backlog_limit=cls._get_int_env("BACKLOG_LIMIT", 1024),
            max_inflight_batches=cls._get_int_env("MAX_INFLIGHT_BATCHES", 2),
            backend_timeout_s=cls._get_float_env("BACKEND_TIMEOUT_S", 30.0),
        )

        # BackendConfig reads its own DYNABATCH_BACKEND_* variables
        backend = BackendConfig()

        logging = LoggingConfig(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "console"),
            enable_metrics=cls._get_bool_env("ENABLE_METRICS", True),
        )

        debug = cls._get_bool_env("DEBUG", False)

        return cls(scheduler=scheduler, backend=backend, logging=logging, debug=debug)

    @classmethod
    def from_yaml(cls, path: str) -> "DynabatchConfig":
        """Load configuration from a YAML file.

        The document may contain ``scheduler``, ``backend`` and ``logging``
        mappings plus a top-level ``debug`` flag. Missing sections fall back
        to defaults.
        """
        yaml_path = Path(path)
        if not yaml_path.exists():
            raise ConfigurationError("config_file", str(yaml_path), "an existing YAML file")

        with open(yaml_path, "r") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ConfigurationError("config_file", type(data).__name__, "a YAML mapping")

        known = {"scheduler", "backend", "logging", "debug"}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError("config_file", unknown, f"only sections {sorted(known)}")

        return cls(
            scheduler=SchedulerConfig(**(data.get("scheduler") or {})),
            backend=BackendConfig(**(data.get("backend") or {})),
            logging=LoggingConfig(**(data.get("logging") or {})),
            debug=bool(data.get("debug", False)),
        )

    @staticmethod
    def _load_env_file(env_file: str):
        """Load environment variables from file."""
        env_path = Path(env_file)
        if not env_path.exists():
            return

        with open(env_path, "r") as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, value = line.split("=", 1)
                    os.environ[key.strip()] = value.strip()

    @staticmethod
    def _get_bool_env(key: str, default: bool) -> bool:
        """Get boolean environment variable."""
        value = os.getenv(key, str(default)).lower()
        return value in ("true", "1", "yes", "on")

    @staticmethod
    def _get_int_env(key: str, default: int) -> int:
        """Get integer environment variable."""
        try:
            return int(os.getenv(key, str(default)))
        except ValueError:
            return default

    @staticmethod
    def _get_float_env(key: str, default: float) -> float:
        """Get float environment variable."""
        try:
            return float(os.getenv(key, str(default)))
        except ValueError:
            return default

    def validate(self) -> List[str]:
        """Validate the entire configuration and return any errors."""
        errors = []

        if self.backend.kind == "http" and not self.backend.url:
            errors.append("http backend requires DYNABATCH_BACKEND_URL")

        if self.scheduler.backlog_limit < self.scheduler.max_batch_size:
            errors.append("backlog_limit is smaller than max_batch_size; full batches can never form")

        if self.scheduler.max_queue_delay_s >= self.scheduler.backend_timeout_s:
            errors.append("max_queue_delay_ms should be well below backend_timeout_s")

        if self.scheduler.max_inflight_batches > 64:
            errors.append("max_inflight_batches > 64 may overload the backend")

        return errors

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "scheduler": {
                "max_batch_size": self.scheduler.max_batch_size,
                "preferred_batch_size": self.scheduler.preferred_batch_size,
                "max_queue_delay_ms": self.scheduler.max_queue_delay_ms,
                "backlog_limit": self.scheduler.backlog_limit,
                "max_inflight_batches": self.scheduler.max_inflight_batches,
                "backend_timeout_s": self.scheduler.backend_timeout_s,
            },
            "backend": {
                "kind": self.backend.kind,
                "url": self.backend.url,
                "latency_ms": self.backend.latency_ms,
                "per_item_ms": self.backend.per_item_ms,
                "failure_rate": self.backend.failure_rate,
                "seed": self.backend.seed,
            },
            "logging": {
                "log_level": self.logging.log_level,
                "log_format": self.logging.log_format,
                "enable_metrics": self.logging.enable_metrics,
            },
            "debug": self.debug,
        }

    def __str__(self) -> str:
        """String representation of configuration."""
        return (
            f"DynabatchConfig(max_batch_size={self.scheduler.max_batch_size}, "
            f"preferred_batch_size={self.scheduler.preferred_batch_size}, "
            f"max_queue_delay_ms={self.scheduler.max_queue_delay_ms}, "
            f"backend={self.backend.kind})"
        )


# Global configuration instance
_global_config: Optional[DynabatchConfig] = None


def get_config() -> DynabatchConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = DynabatchConfig.from_env()
    return _global_config


def set_config(config: DynabatchConfig):
    """Set the global configuration instance."""
    global _global_config

    errors = config.validate()
    if errors:
        raise ValueError(f"Configuration validation failed: {errors}")

    _global_config = config


def reset_config():
    """Reset the global configuration to default."""
    global _global_config
    _global_config = None
