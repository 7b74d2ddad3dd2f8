"""
Ledger Store: transactional access to the back-office tables.

DESIGN PRINCIPLES:
- One LedgerStore wraps one SQLAlchemy session; the app factory builds it
  around db.session and hands it to every engine service
- Every state-changing operation runs inside exactly one unit_of_work()
- Nested unit_of_work() calls join the outermost one (one commit, one rollback)
- Collaborator callbacks (audit, notifications) run only after the commit and
  can never undo it
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Iterator

from .errors import NotFoundError
from .services.concurrency import begin_write_transaction, lock_for_update


logger = logging.getLogger(__name__)

_UOW_KEY = "backoffice.unit_of_work"


class UnitOfWork:
    """Handle for the transaction in progress."""

    def __init__(self, session):
        self.session = session
        self._after_commit: list[tuple[Callable, tuple, dict]] = []

    def add(self, obj):
        self.session.add(obj)
        return obj

    def delete(self, obj) -> None:
        self.session.delete(obj)

    def flush(self) -> None:
        self.session.flush()

    def query(self, *entities):
        return self.session.query(*entities)

    def locked(self, model, **filters):
        """First row matching filters, locked for the rest of the transaction."""
        return lock_for_update(self.session.query(model).filter_by(**filters)).first()

    def after_commit(self, fn: Callable, *args, **kwargs) -> None:
        self._after_commit.append((fn, args, kwargs))

    def _run_after_commit(self) -> None:
        for fn, args, kwargs in self._after_commit:
            try:
                fn(*args, **kwargs)
            except Exception:
                logger.exception("After-commit callback %s failed", getattr(fn, "__qualname__", fn))
        self._after_commit.clear()


class LedgerStore:
    def __init__(self, session):
        self.session = session

    @contextmanager
    def unit_of_work(self) -> Iterator[UnitOfWork]:
        """
        All-or-nothing block of reads and writes.

        Commits on normal exit, rolls back and re-raises on any exception.
        Business rules raise before writing, so a failed operation leaves no
        partial state behind.
        """
        outer = self.session.info.get(_UOW_KEY)
        if outer is not None:
            yield outer
            return

        begin_write_transaction(self.session)
        uow = UnitOfWork(self.session)
        self.session.info[_UOW_KEY] = uow
        try:
            yield uow
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        finally:
            self.session.info.pop(_UOW_KEY, None)

        uow._run_after_commit()

    def get(self, model, entity_id, label: str | None = None):
        """Row by primary key or NotFoundError."""
        obj = self.session.get(model, entity_id) if entity_id is not None else None
        if obj is None:
            raise NotFoundError(f"{label or model.__name__} not found")
        return obj

    def query(self, *entities):
        return self.session.query(*entities)
