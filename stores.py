"""
Storage backends for the presence ledger.

Both stores expose the same operations:

    get(identity)      -> ActiveSession or None
    add(session)       -> None if stored, else the session already open for that identity
    close(closed)      -> True if the matching active session was removed and
                          the closed session appended, False if it was already gone
    list()             -> active sessions, most recently started first
    count()            -> number of active sessions
    history(identity)  -> closed sessions (all members when identity is None), newest first
    history_durations(identity) -> duration in ms per closed session, None where unknown
"""
import threading
from contextlib import contextmanager
from datetime import timezone

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ledger import ActiveSession, ClosedSession, CheckoutActor, StorageUnavailable, as_utc
from models import ActiveCheckin, SessionHistory


class MemoryStore:
    """Process-local store. One lock covers every read-decide-write step."""

    def __init__(self):
        self._lock = threading.Lock()
        self._active = {}
        self._history = []

    def get(self, identity):
        with self._lock:
            return self._active.get(identity)

    def add(self, session):
        with self._lock:
            existing = self._active.get(session.identity)
            if existing is not None:
                return existing
            self._active[session.identity] = session
            return None

    def close(self, closed):
        with self._lock:
            current = self._active.get(closed.identity)
            if current is None or current.started_at != closed.started_at:
                return False
            del self._active[closed.identity]
            self._history.append(closed)
            return True

    def list(self):
        with self._lock:
            return sorted(self._active.values(), key=lambda s: s.started_at, reverse=True)

    def count(self):
        with self._lock:
            return len(self._active)

    def history(self, identity=None):
        with self._lock:
            rows = [c for c in self._history if identity is None or c.identity == identity]
        return sorted(rows, key=lambda c: c.started_at, reverse=True)

    def history_durations(self, identity):
        return [c.duration_ms for c in self.history(identity)]


def _to_db(value):
    return as_utc(value).replace(tzinfo=None)


def _from_db(value):
    return value.replace(tzinfo=timezone.utc)


def _active_from_row(row):
    return ActiveSession(identity=row.user_id, started_at=_from_db(row.checked_in_at))


def _closed_from_row(row):
    try:
        actor = CheckoutActor(row.actor)
    except ValueError:
        actor = CheckoutActor.ADMIN if row.forced_by_admin else CheckoutActor.SELF
    return ClosedSession(
        identity=row.user_id,
        started_at=_from_db(row.checked_in_at),
        ended_at=_from_db(row.checked_out_at),
        actor=actor,
    )


class SqlStore:
    """
    Store backed by the active_checkins / session_history tables.
    Must be used inside a Flask app context.
    """

    def __init__(self, db):
        self.db = db

    @contextmanager
    def _guard(self, action):
        try:
            yield
        except SQLAlchemyError as e:
            self.db.session.rollback()
            raise StorageUnavailable(f"Failed to {action}: {e}") from e

    def get(self, identity):
        with self._guard("read active check-in"):
            row = ActiveCheckin.query.filter_by(user_id=identity).first()
        return _active_from_row(row) if row else None

    def add(self, session):
        # Two attempts: a conflicting session can be checked out between our
        # failed insert and the lookup of who holds the slot.
        for _ in range(2):
            try:
                with self._guard("check in"):
                    self.db.session.add(ActiveCheckin(
                        user_id=session.identity,
                        checked_in_at=_to_db(session.started_at),
                    ))
                    self.db.session.commit()
                return None
            except StorageUnavailable as e:
                if not isinstance(e.__cause__, IntegrityError):
                    raise
            existing = self.get(session.identity)
            if existing is not None:
                return existing
        raise StorageUnavailable(f"Check-in for {session.identity} kept conflicting")

    def close(self, closed):
        with self._guard("check out"):
            removed = (
                ActiveCheckin.query
                .filter_by(user_id=closed.identity, checked_in_at=_to_db(closed.started_at))
                .delete(synchronize_session=False)
            )
            if not removed:
                self.db.session.rollback()
                return False
            self.db.session.add(SessionHistory(
                user_id=closed.identity,
                checked_in_at=_to_db(closed.started_at),
                checked_out_at=_to_db(closed.ended_at),
                duration_ms=closed.duration_ms,
                forced_by_admin=closed.forced,
                actor=closed.actor.value,
            ))
            self.db.session.commit()
        return True

    def list(self):
        with self._guard("list active check-ins"):
            rows = ActiveCheckin.query.order_by(ActiveCheckin.checked_in_at.desc()).all()
        return [_active_from_row(r) for r in rows]

    def count(self):
        with self._guard("count active check-ins"):
            return ActiveCheckin.query.count()

    def history(self, identity=None):
        with self._guard("read session history"):
            query = SessionHistory.query
            if identity is not None:
                query = query.filter_by(user_id=identity)
            rows = query.order_by(SessionHistory.checked_in_at.desc()).all()
        return [_closed_from_row(r) for r in rows]

    def history_durations(self, identity):
        """Raw duration_ms values for one member, None where the column is empty."""
        with self._guard("read session durations"):
            rows = SessionHistory.query.with_entities(SessionHistory.duration_ms).filter_by(user_id=identity).all()
        return [r[0] for r in rows]
