from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings


def create_ledger_engine(database_url: Optional[str] = None) -> Engine:
    settings = get_settings()
    url = database_url or settings.database_url
    connect_args: dict[str, object] = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = settings.db_timeout_secs
    elif url.startswith("postgresql"):
        connect_args["connect_timeout"] = int(settings.db_timeout_secs)
    eng = create_engine(url, connect_args=connect_args, pool_pre_ping=True)
    if url.startswith("sqlite"):
        event.listen(eng, "connect", _enable_sqlite_pragmas)
    return eng


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.close()


class Base(DeclarativeBase):
    pass


@lru_cache(maxsize=8)
def session_factory(database_url: Optional[str] = None) -> sessionmaker[Session]:
    """One sessionmaker per URL; ``None`` means the configured database."""
    return sessionmaker(
        bind=create_ledger_engine(database_url),
        autoflush=False,
        expire_on_commit=False,
    )


@contextmanager
def session_scope(database_url: Optional[str] = None) -> Iterator[Session]:
    session: Session = session_factory(database_url)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
