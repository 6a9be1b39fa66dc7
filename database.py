from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

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
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


engine = _create_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


@contextmanager
def read_snapshot(session: Session) -> Iterator[Session]:
    """Run a group of reads against one consistent view of the database.

    If the session already has a transaction open, the reads join it and the
    caller keeps ownership of its boundary. Otherwise a fresh transaction is
    started and rolled back when the block exits.

    The sqlite3 driver only sends BEGIN ahead of writes, so on SQLite the
    BEGIN is issued here; the first read then pins the snapshot for the rest
    of the transaction. Other backends are asked for REPEATABLE READ.
    """
    owns_transaction = not session.in_transaction()
    if owns_transaction:
        session.begin()
    try:
        if session.get_bind().dialect.name == "sqlite":
            _begin_sqlite_read(session)
        elif owns_transaction:
            session.connection(
                execution_options={"isolation_level": "REPEATABLE READ"}
            )
        yield session
    finally:
        if owns_transaction:
            session.rollback()


def _begin_sqlite_read(session: Session) -> None:
    connection = session.connection()
    if not connection.connection.dbapi_connection.in_transaction:
        connection.exec_driver_sql("BEGIN")
