from contextlib import contextmanager
from typing import Any, Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings


def is_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def create_db_engine(database_url: str, **engine_kwargs: Any) -> Engine:
    """Build an engine for ``database_url``.

    SQLite connections are shared between request threads and the background
    invalidation tasks, so the thread check is disabled and WAL is enabled
    for file databases. Extra keyword arguments go to ``create_engine``.
    """
    connect_args: dict[str, object] = dict(engine_kwargs.pop("connect_args", {}))
    if is_sqlite(database_url):
        connect_args.setdefault("check_same_thread", False)

    eng = create_engine(database_url, connect_args=connect_args, **engine_kwargs)
    if is_sqlite(database_url):
        in_memory = database_url in ("sqlite://", "sqlite:///:memory:")
        event.listen(
            eng,
            "connect",
            lambda dbapi_conn, _record: _sqlite_pragmas(dbapi_conn, wal=not in_memory),
        )
    return eng


def _sqlite_pragmas(dbapi_conn, *, wal: bool) -> None:
    cursor = dbapi_conn.cursor()
    if wal:
        cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def make_session_factory(bind: Engine) -> sessionmaker:
    # Summaries and records are returned after commit, so keep them loaded.
    return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)


engine = create_db_engine(get_settings().database_url)
SessionLocal = make_session_factory(engine)


class Base(DeclarativeBase):
    pass


@contextmanager
def session_scope(factory: Optional[sessionmaker] = None) -> Iterator[Session]:
    """Unit of work for code running outside a request.

    ``factory`` defaults to :data:`SessionLocal`; background invalidation
    passes the factory the request was served with.
    """
    session: Session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
