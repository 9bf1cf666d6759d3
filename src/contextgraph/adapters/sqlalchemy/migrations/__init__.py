"""Alembic entry points for the field store schema.

Migrations ship inside the package. A source checkout may point
``[tool.alembic] script_location`` in ``pyproject.toml`` elsewhere, which is
how ``alembic revision`` finds them during development.
"""

from __future__ import annotations

import tomllib
from logging import getLogger
from pathlib import Path
from typing import TYPE_CHECKING, Final

from alembic import command
from alembic.config import Config

from contextgraph.config import get_database_config

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

log = getLogger(__name__)

MIGRATIONS_PATH: Final[Path] = Path(__file__).resolve().parent
CHECKOUT_ROOT: Final[Path] = MIGRATIONS_PATH.parents[4]


def _script_location() -> Path:
    try:
        with (CHECKOUT_ROOT / "pyproject.toml").open("rb") as handle:
            configured = tomllib.load(handle).get("tool", {}).get("alembic", {})
    except (OSError, tomllib.TOMLDecodeError):
        return MIGRATIONS_PATH
    location = configured.get("script_location")
    if not isinstance(location, str):
        return MIGRATIONS_PATH
    candidate = Path(location)
    if not candidate.is_absolute():
        candidate = CHECKOUT_ROOT / candidate
    return candidate if candidate.is_dir() else MIGRATIONS_PATH


def _alembic_config() -> Config:
    config = Config()
    config.set_main_option("script_location", str(_script_location()))
    return config


def upgrade_head(*, engine: Engine | None = None, database_uri: str | None = None) -> None:
    """Migrate the schema to the newest revision.

    With ``engine`` the upgrade runs inside one transaction on that engine,
    which keeps in-memory SQLite databases alive across the call.
    """

    config = _alembic_config()
    if engine is None:
        uri = database_uri or get_database_config().uri
        log.debug("Upgrading schema at %s", uri)
        # ConfigParser interpolation treats a bare % as a reference.
        config.set_main_option("sqlalchemy.url", uri.replace("%", "%%"))
        command.upgrade(config, "head")
        return
    with engine.begin() as connection:
        config.attributes["connection"] = connection
        command.upgrade(config, "head")
