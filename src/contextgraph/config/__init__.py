"""Application configuration helpers."""

from __future__ import annotations

from .env import env_float, env_int, optional_env_var, require_env_vars
from .errors import ConfigurationError, MissingConfigurationError, PolicyConfigurationError
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy
from .hydration import HydrationConfig, get_hydration_config
from .logging import configure_logging
from .policy import PolicyConfig, get_policy_config, load_policy, parse_policy
from .producers import ProducerServiceConfig, get_producer_config
from .storage import DatabaseConfig, StorageConfig, get_database_config, get_storage_config

__all__ = [
    "ConfigurationError",
    "DatabaseConfig",
    "HydrationConfig",
    "MissingConfigurationError",
    "PolicyConfig",
    "PolicyConfigurationError",
    "ProducerServiceConfig",
    "RateLimit",
    "ResilienceConfig",
    "RetryPolicy",
    "StorageConfig",
    "configure_logging",
    "env_float",
    "env_int",
    "get_database_config",
    "get_hydration_config",
    "get_policy_config",
    "get_producer_config",
    "get_storage_config",
    "load_policy",
    "optional_env_var",
    "parse_policy",
    "require_env_vars",
]
