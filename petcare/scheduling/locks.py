import threading
from contextlib import contextmanager

from sqlalchemy.dialects import postgresql, sqlite

from petcare import db
from petcare.models.reservation import SchedulingLock

# Dialects whose INSERT supports ON CONFLICT DO NOTHING
_UPSERT_INSERTS = {
    'postgresql': postgresql.insert,
    'sqlite': sqlite.insert,
}


class LockTimeout(Exception):
    def __init__(self, key):
        super().__init__(f'Timed out waiting for scheduling lock {key}')
        self.key = key


class ReservationLocks(object):
    """Serializes check-and-write for the same staff member or resource type.

    Two layers: a keyed in-process lock registry, then the matching
    SchedulingLock rows selected FOR UPDATE so other processes sharing the
    database wait as well. Keys are always taken in sorted order.
    """

    def __init__(self, timeout=5.0):
        self.timeout = timeout
        self._registry_guard = threading.Lock()
        self._locks = {}

    def _lock_for(self, key):
        with self._registry_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, keys):
        """Hold every key for the duration of the block; commit before leaving it"""
        keys = sorted(set(keys))
        acquired = []
        try:
            for key in keys:
                lock = self._lock_for(key)
                if not lock.acquire(timeout=self.timeout):
                    raise LockTimeout(key)
                acquired.append(lock)
            self._lock_rows(keys)
            yield keys
        finally:
            for lock in reversed(acquired):
                lock.release()

    def _lock_rows(self, keys):
        if not keys:
            return

        existing = {row.key for row in SchedulingLock.query.filter(SchedulingLock.key.in_(keys))}
        missing = [key for key in keys if key not in existing]
        if missing:
            insert = _UPSERT_INSERTS.get(db.engine.dialect.name)
            if insert is not None:
                statement = insert(SchedulingLock).values([{'key': key} for key in missing])
                db.session.execute(statement.on_conflict_do_nothing(index_elements=['key']))
            else:
                for key in missing:
                    db.session.add(SchedulingLock(key))
                db.session.flush()

        SchedulingLock.query.filter(
            SchedulingLock.key.in_(keys)
        ).order_by(SchedulingLock.key).with_for_update().all()
