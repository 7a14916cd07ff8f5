from pathlib import Path

from loguru import logger
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pocket_notes.models import Base


def _casefold(value):
    if value is None:
        return None
    return str(value).casefold()


def create_db_engine(db_url: str) -> Engine:
    """Build an engine for ``db_url`` and create the tables.

    SQLite connections get a ``casefold()`` SQL function; the built-in
    ``lower()`` only folds ASCII.
    """
    url = make_url(db_url)
    kwargs = {}
    if url.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False}
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
        else:
            Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(db_url, echo=False, **kwargs)

    if engine.dialect.name == "sqlite":

        @event.listens_for(engine, "connect")
        def _register_functions(dbapi_connection, connection_record):
            dbapi_connection.create_function("casefold", 1, _casefold, deterministic=True)

    Base.metadata.create_all(engine)
    logger.info("Database initialized", db_url=db_url)
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
