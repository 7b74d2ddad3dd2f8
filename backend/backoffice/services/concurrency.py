# Overview: Locking primitives shared by every unit of work.

from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.orm import scoped_session


def resolve_session(session):
    """The Session behind a scoped_session proxy (db.session), or session itself."""
    if isinstance(session, scoped_session):
        return session.registry()
    return session


def is_sqlite(session) -> bool:
    return resolve_session(session).get_bind().dialect.name == "sqlite"


def begin_write_transaction(session) -> None:
    """
    Start the transaction as a writer on SQLite.

    NOTE: SQLite has no row locks. BEGIN IMMEDIATE takes the database write
    lock up front, so a second terminal blocks until the first commits and then
    reads its committed effects. A transaction left open by earlier reads on
    the same session is committed first; BEGIN cannot be issued inside it and
    its snapshot would be stale.
    """
    real = resolve_session(session)
    if not is_sqlite(real):
        return
    if real.in_transaction():
        real.commit()
    real.execute(text("BEGIN IMMEDIATE"))


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()
