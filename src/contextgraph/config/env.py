"""Reading settings from the process environment.

Blank values count as unset everywhere, so ``FOO=`` in a ``.env`` file does
not shadow a default.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from .errors import ConfigurationError, MissingConfigurationError

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence


def optional_env_var(name: str) -> str | None:
    raw = os.environ.get(name, "").strip()
    return raw or None


def require_env_vars(names: Sequence[str]) -> dict[str, str]:
    """Read every name in ``names``; one error lists all that are unset."""

    found = {name: optional_env_var(name) for name in names}
    unset = sorted(name for name, value in found.items() if value is None)
    if unset:
        raise MissingConfigurationError(f"Missing configuration for: {', '.join(unset)}")
    return {name: value for name, value in found.items() if value is not None}


def _numeric[N: (int, float)](
    name: str,
    default: N,
    minimum: N | None,
    parse: Callable[[str], N],
    kind: str,
) -> N:
    raw = optional_env_var(name)
    if raw is None:
        return default
    try:
        parsed = parse(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be {kind}, got {raw!r}") from exc
    if minimum is not None and parsed < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {parsed}")
    return parsed


def env_float(name: str, default: float, *, minimum: float | None = None) -> float:
    return _numeric(name, default, minimum, float, "a number")


def env_int(name: str, default: int, *, minimum: int | None = None) -> int:
    return _numeric(name, default, minimum, int, "an integer")
