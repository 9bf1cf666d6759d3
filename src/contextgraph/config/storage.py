"""Where the field store lives when no ``DATABASE_URI`` is given."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from .env import optional_env_var

APP_DIR_NAME: Final[str] = "contextgraph"
DEFAULT_DB_FILENAME: Final[str] = "contextgraph.db"


def default_data_dir() -> Path:
    """``$XDG_DATA_HOME/contextgraph``, or ``%LOCALAPPDATA%\\contextgraph`` on Windows."""

    if os.name == "nt":
        root = optional_env_var("LOCALAPPDATA")
        fallback = Path.home() / "AppData" / "Local"
    else:
        root = optional_env_var("XDG_DATA_HOME")
        fallback = Path.home() / ".local" / "share"
    return ((Path(root) if root else fallback) / APP_DIR_NAME).expanduser().resolve()


@dataclass(frozen=True, slots=True)
class StorageConfig:
    data_dir: Path
    database_filename: str = DEFAULT_DB_FILENAME

    def database_path(self, *, create_dir: bool = True) -> Path:
        data_dir = self.data_dir.expanduser().resolve()
        if create_dir:
            data_dir.mkdir(parents=True, exist_ok=True)
        return data_dir / self.database_filename

    def database_uri(self) -> str:
        return f"sqlite+pysqlite:///{self.database_path()}"


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    uri: str


def get_storage_config() -> StorageConfig:
    env_dir = optional_env_var("CONTEXTGRAPH_DATA_DIR")
    return StorageConfig(data_dir=Path(env_dir) if env_dir else default_data_dir())


def get_database_config(*, storage: StorageConfig | None = None) -> DatabaseConfig:
    """``DATABASE_URI`` wins; otherwise a SQLite file in the data directory."""

    env_uri = optional_env_var("DATABASE_URI")
    if env_uri:
        return DatabaseConfig(uri=env_uri)
    return DatabaseConfig(uri=(storage or get_storage_config()).database_uri())
