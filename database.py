import threading
from contextlib import ExitStack, contextmanager
from typing import Iterator

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from config import get_settings

def _create_engine() -> Engine:
    settings = get_settings()
    connect_args: dict[str, object] = {}
    if settings.database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    from sqlalchemy import create_engine

    eng = create_engine(settings.database_url, connect_args=connect_args)
    if settings.database_url.startswith("sqlite"):
        event.listen(eng, "connect", _enable_sqlite_pragmas)
    return eng

def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA busy_timeout=5000;")
    cursor.close()

engine = _create_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

class Base(DeclarativeBase):
    pass

def init_db(bind: Engine = engine) -> None:
    # Importing models registers the tables on Base.metadata.
    import models  # noqa: F401

    Base.metadata.create_all(bind)

# One lock per entity-type collection. Mutations hold the lock for a single
# read-check-write-commit cycle; reads never take it.
LOCK_ORDER = ("users", "categories", "expenses")
_WRITE_LOCKS: dict[str, threading.RLock] = {
    name: threading.RLock() for name in LOCK_ORDER
}

@contextmanager
def write_lock(*collections: str) -> Iterator[None]:
    unknown = set(collections) - set(LOCK_ORDER)
    if unknown:
        raise KeyError(f"Unknown collection(s): {', '.join(sorted(unknown))}")
    with ExitStack() as stack:
        for name in LOCK_ORDER:
            if name in collections:
                stack.enter_context(_WRITE_LOCKS[name])
        yield
