from __future__ import annotations

from django.db import DEFAULT_DB_ALIAS, transaction


class _Rollback(Exception):
    pass


class UnitOfWork:
    """A group of writes that commit or fail together.

    Thin explicit wrapper over ``transaction.atomic`` so that functions needing
    multi-entity atomicity take the unit as an argument instead of relying on
    an ambient transaction. Nested units become savepoints.

        with UnitOfWork() as uow:
            InventoryStockGuard(uow).debit(item_id, 2, kind=...)
            recompute_costs(uow, job_card_id)
    """

    def __init__(self, using: str = DEFAULT_DB_ALIAS):
        self.using = using
        self._atomic = None

    @property
    def active(self) -> bool:
        return self._atomic is not None

    def begin(self) -> "UnitOfWork":
        if self._atomic is not None:
            raise RuntimeError("Unit of work already started.")
        self._atomic = transaction.atomic(using=self.using)
        self._atomic.__enter__()
        return self

    def commit(self) -> None:
        atomic = self._release()
        atomic.__exit__(None, None, None)

    def rollback(self) -> None:
        atomic = self._release()
        atomic.__exit__(_Rollback, _Rollback(), None)

    def ensure_active(self) -> None:
        if self._atomic is None:
            raise RuntimeError("This operation must run inside an active unit of work.")

    def on_commit(self, callback) -> None:
        """Run ``callback`` once the outermost transaction commits; dropped on rollback."""
        self.ensure_active()
        transaction.on_commit(callback, using=self.using)

    def _release(self):
        if self._atomic is None:
            raise RuntimeError("Unit of work is not active.")
        atomic, self._atomic = self._atomic, None
        return atomic

    def __enter__(self) -> "UnitOfWork":
        return self.begin()

    def __exit__(self, exc_type, exc, tb) -> bool:
        if self._atomic is None:
            return False
        atomic = self._release()
        atomic.__exit__(exc_type, exc, tb)
        return False
