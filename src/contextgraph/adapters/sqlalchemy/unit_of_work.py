"""Engine lifecycle and per-call unit of work for the SQL field store.

``startup()`` binds one process-wide engine and migrates it to head. Every
store call then opens its own :class:`SqlAlchemyUnitOfWork`.
"""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING, Literal

from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker

from contextgraph.adapters.sqlalchemy.migrations import upgrade_head
from contextgraph.adapters.sqlalchemy.repositories import SqlAlchemyFieldRepository
from contextgraph.config import get_database_config

if TYPE_CHECKING:
    from types import TracebackType

    from sqlalchemy.engine import Engine

log = getLogger(__name__)


class StartupError(RuntimeError):
    """The field store engine is missing, already bound, or a session is misused."""


@dataclass(slots=True)
class _EngineRegistry:
    engine: Engine | None = None
    _sessions: sessionmaker[Session] | None = None

    def bind(self, engine: Engine | None) -> None:
        self.engine = engine
        self._sessions = None

    def sessions(self) -> sessionmaker[Session]:
        if self.engine is None:
            raise StartupError("field store engine is not bound; call startup() first")
        if self._sessions is None:
            self._sessions = sessionmaker(bind=self.engine, expire_on_commit=False)
        return self._sessions


_REGISTRY = _EngineRegistry()


def startup(
    *,
    engine: Engine | None = None,
    database_uri: str | None = None,
    force: bool = False,
) -> None:
    """Bind the engine and bring its schema to head.

    A second call raises unless ``force`` is set, in which case the old engine
    is replaced without being disposed.
    """

    if _REGISTRY.engine is not None and not force:
        raise StartupError("field store engine already bound; pass force=True to rebind")
    bound = engine or create_engine(database_uri or get_database_config().uri, future=True)
    log.info("Opening field store at %s", bound.url.render_as_string(hide_password=True))
    upgrade_head(engine=bound)
    _REGISTRY.bind(bound)


def configured_engine() -> Engine | None:
    return _REGISTRY.engine


def is_started() -> bool:
    return _REGISTRY.engine is not None


def shutdown() -> None:
    if _REGISTRY.engine is not None:
        _REGISTRY.engine.dispose()
    _REGISTRY.bind(None)


class SqlAlchemyUnitOfWork:
    """One session per store call; rolls back when the block raises."""

    def __init__(self) -> None:
        self._sessions = _REGISTRY.sessions()
        self._session: Session | None = None

    def __enter__(self) -> SqlAlchemyUnitOfWork:
        if self._session is not None:
            raise StartupError("unit of work is already open")
        self._session = self._sessions()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        session, self._session = self.session, None
        try:
            if exc_type is not None:
                session.rollback()
        finally:
            session.close()
        return False

    @property
    def session(self) -> Session:
        if self._session is None:
            raise StartupError("unit of work is not open")
        return self._session

    @property
    def fields(self) -> SqlAlchemyFieldRepository:
        return SqlAlchemyFieldRepository(self.session)

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    def apply_timeout(self, timeout: float | None) -> None:
        """Bound how long statements in this unit of work may wait on locks."""

        if timeout is None:
            return
        millis = max(1, int(timeout * 1000))
        dialect = self.session.get_bind().dialect.name
        if dialect == "sqlite":
            self.session.execute(text(f"PRAGMA busy_timeout = {millis}"))
        elif dialect == "postgresql":
            self.session.execute(text(f"SET LOCAL statement_timeout = {millis}"))
