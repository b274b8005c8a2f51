import os
import socket
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from job_tracking.domain.execution import ensure_utc
from job_tracking.locks.protocol import LockProvider
from job_tracking.storages.sqlalchemy import JobLockModel, SqlAlchemyDatabase


class SqlAlchemyLockProvider(LockProvider):
    """
    Lease lock stored as one row per lock name in the `job_tracking_locks` table.

    Acquisition inserts the row, or takes over a row whose lease has expired.
    Every instance sharing the database sees the same rows, which makes the lock
    effective across processes.

    Each acquisition writes its own token to `locked_by`, and the token is kept
    per thread, so a thread whose lease expired cannot release the lease another
    thread took over.
    """

    def __init__(self, database: SqlAlchemyDatabase, owner: Optional[str] = None):
        self.database = database
        self.owner = owner or f"{socket.gethostname()}:{os.getpid()}"
        self._local = threading.local()

    @property
    def _held(self) -> Dict[str, Tuple[str, timedelta]]:
        held = getattr(self._local, "held", None)
        if held is None:
            held = self._local.held = {}
        return held

    def try_acquire(self, lock_name: str, min_hold: timedelta, max_hold: timedelta) -> bool:
        now = datetime.now(timezone.utc)
        lock_until = now + max_hold
        token = f"{self.owner}:{uuid.uuid4().hex[:12]}"
        with self.database.session() as session:
            session.add(JobLockModel(name=lock_name, lock_until=lock_until, locked_at=now, locked_by=token))
            try:
                session.commit()
                acquired = True
            except IntegrityError:
                session.rollback()
                result = session.execute(
                    update(JobLockModel)
                    .where(JobLockModel.name == lock_name)
                    .where(JobLockModel.lock_until <= now)
                    .values(lock_until=lock_until, locked_at=now, locked_by=token)
                )
                session.commit()
                acquired = result.rowcount > 0
        if acquired:
            self._held[lock_name] = (token, min_hold)
        return acquired

    def release(self, lock_name: str) -> None:
        held = self._held.pop(lock_name, None)
        if held is None:
            return
        token, min_hold = held
        now = datetime.now(timezone.utc)
        with self.database.session() as session:
            db_lock = session.get(JobLockModel, lock_name)
            if db_lock is None or db_lock.locked_by != token:
                return
            db_lock.lock_until = max(now, ensure_utc(db_lock.locked_at) + min_hold)
            session.commit()
