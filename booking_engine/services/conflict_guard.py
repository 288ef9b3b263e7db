from contextlib import contextmanager
from threading import Lock
from typing import Iterator

from sqlalchemy import text
from sqlalchemy.orm import Session


class ProviderConflictGuard:
    """Serializes ledger check-then-write sections per provider.

    Inside one process a lock per provider id does the work. When the session
    talks to PostgreSQL, a transaction-scoped advisory lock keyed on the same
    id extends the guarantee to every process sharing the database; it is
    released by the commit or rollback that ends the transaction.
    """

    def __init__(self) -> None:
        self._registry_lock = Lock()
        # One entry per provider ever booked, kept for the life of the process.
        # Evicting could hand two threads different locks for the same provider.
        self._locks: dict[str, Lock] = {}

    def _lock_for(self, provider_id: str) -> Lock:
        lock = self._locks.get(provider_id)
        if lock is not None:
            return lock

        with self._registry_lock:
            lock = self._locks.get(provider_id)
            if lock is None:
                lock = Lock()
                self._locks[provider_id] = lock
            return lock

    @contextmanager
    def hold(self, provider_id: str, db: Session) -> Iterator[None]:
        lock = self._lock_for(provider_id)
        with lock:
            if db.get_bind().dialect.name == 'postgresql':
                db.execute(
                    text('SELECT pg_advisory_xact_lock(hashtext(:provider_id))'),
                    {'provider_id': provider_id},
                )
            yield
