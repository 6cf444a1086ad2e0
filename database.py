from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings


def build_engine(database_url: str, **kwargs) -> Engine:
    connect_args: dict[str, object] = dict(kwargs.pop("connect_args", {}))
    is_sqlite = database_url.startswith("sqlite")
    if is_sqlite:
        connect_args["check_same_thread"] = False
    eng = create_engine(
        database_url, connect_args=connect_args, pool_pre_ping=True, **kwargs
    )
    if is_sqlite:
        event.listen(eng, "connect", _enable_sqlite_pragmas)
    return eng


def _unicode_lower(value: Optional[str]) -> Optional[str]:
    return value.lower() if isinstance(value, str) else value


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()
    # SQLite's built-in lower() only folds ASCII letters.
    dbapi_conn.create_function("lower", 1, _unicode_lower, deterministic=True)


engine = build_engine(get_settings().database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


@contextmanager
def session_scope() -> Iterator[Session]:
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine = engine) -> None:
    # Models must be imported so their tables register on Base.metadata.
    import models  # noqa: F401

    Base.metadata.create_all(bind=bind)
