"""Defaults for hydration runs and field-store access."""

from __future__ import annotations

from dataclasses import dataclass

from .env import env_float, env_int

DEFAULT_STORE_TIMEOUT_SECONDS = 5.0
DEFAULT_MAX_WRITE_ATTEMPTS = 3
DEFAULT_MAX_WORKERS = 4


@dataclass(frozen=True, slots=True)
class HydrationConfig:
    store_timeout_seconds: float = DEFAULT_STORE_TIMEOUT_SECONDS
    max_write_attempts: int = DEFAULT_MAX_WRITE_ATTEMPTS
    max_workers: int = DEFAULT_MAX_WORKERS


def get_hydration_config() -> HydrationConfig:
    return HydrationConfig(
        store_timeout_seconds=env_float(
            "CONTEXTGRAPH_STORE_TIMEOUT_SECONDS",
            DEFAULT_STORE_TIMEOUT_SECONDS,
            minimum=0.0,
        ),
        max_write_attempts=env_int(
            "CONTEXTGRAPH_MAX_WRITE_ATTEMPTS",
            DEFAULT_MAX_WRITE_ATTEMPTS,
            minimum=1,
        ),
        max_workers=env_int("CONTEXTGRAPH_MAX_WORKERS", DEFAULT_MAX_WORKERS, minimum=1),
    )
