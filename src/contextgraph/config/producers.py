"""Producer service configuration values."""

from __future__ import annotations

from dataclasses import dataclass

from .env import optional_env_var, require_env_vars
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy

PRODUCER_TIMEOUT_SECONDS = 15.0


@dataclass(frozen=True, slots=True)
class ProducerServiceConfig:
    """Where to fetch producer proposals from over HTTP."""

    base_url: str
    resilience: ResilienceConfig


def get_producer_config(
    *,
    base_url: str | None = None,
    resilience: ResilienceConfig | None = None,
) -> ProducerServiceConfig:
    if base_url is None:
        base_url = require_env_vars(("CONTEXTGRAPH_PRODUCER_URL",))["CONTEXTGRAPH_PRODUCER_URL"]
    token = optional_env_var("CONTEXTGRAPH_PRODUCER_TOKEN")
    headers = {"Accept": "application/json"}
    if token is not None:
        headers["Authorization"] = f"Bearer {token}"
    return ProducerServiceConfig(
        base_url=base_url,
        resilience=resilience
        or ResilienceConfig(
            name="producers",
            base_url=base_url,
            timeout_seconds=PRODUCER_TIMEOUT_SECONDS,
            retry=RetryPolicy(),
            ratelimit=RateLimit(max_calls=8, per_seconds=1.0),
            default_headers=headers,
        ),
    )
