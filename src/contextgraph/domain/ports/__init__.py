from __future__ import annotations

from .importing import ImportContext, Importer
from .persistence import FieldStore

__all__ = [
    "FieldStore",
    "ImportContext",
    "Importer",
]
