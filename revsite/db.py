from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .models import Base

logger = logging.getLogger(__name__)


def connect(database_url: str, create_schema: bool = True) -> sessionmaker[Session]:
    """Open the metadata store and return a session factory bound to it."""
    engine = create_engine(database_url)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    if create_schema:
        Base.metadata.create_all(engine)
    logger.debug("Connected to %s", engine.url.render_as_string(hide_password=True))
    return sessionmaker(bind=engine, expire_on_commit=False)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@contextmanager
def transaction(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    """Yield a session inside one transaction, committed on success and rolled back on error."""
    with session_factory() as session:
        with session.begin():
            yield session


def dispose(session_factory: sessionmaker[Session]) -> None:
    engine = session_factory.kw.get("bind")
    if isinstance(engine, Engine):
        engine.dispose()
