"""
Presence ledger for the check-in room.

Tracks who is currently checked in and records every finished session.
Check-in and check-out outcomes that a member can cause by pressing the
wrong button (already in, not in) come back as values, not exceptions;
only storage faults raise.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Union

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def mask_identity(identity: str) -> str:
    """Hide all but the last two characters of a member ID, e.g. 123456 -> ****56."""
    if len(identity) <= 2:
        return "*" * len(identity)
    return "*" * (len(identity) - 2) + identity[-2:]


class CheckoutActor(enum.Enum):
    SELF = "self"
    ADMIN = "admin"
    SCHEDULER = "scheduler"

    @property
    def forced(self) -> bool:
        return self is not CheckoutActor.SELF


@dataclass(frozen=True)
class ActiveSession:
    identity: str
    started_at: datetime


@dataclass(frozen=True)
class ClosedSession:
    identity: str
    started_at: datetime
    ended_at: datetime
    actor: CheckoutActor = CheckoutActor.SELF

    @property
    def duration(self) -> timedelta:
        return self.ended_at - self.started_at

    @property
    def duration_ms(self) -> int:
        return self.duration // timedelta(milliseconds=1)

    @property
    def forced(self) -> bool:
        return self.actor.forced


@dataclass(frozen=True)
class AlreadyCheckedIn:
    identity: str
    started_at: datetime


@dataclass(frozen=True)
class NotCheckedIn:
    identity: str


class StorageUnavailable(Exception):
    """The backing store could not be read or written; nothing was changed."""


class PresenceLedger:
    """
    Single owner of the active-session and session-history stores.

    `store` must provide get/add/close/list/count/history (see stores.py).
    """

    def __init__(self, store, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock

    def _at(self, at: Optional[datetime]) -> datetime:
        return as_utc(at) if at is not None else as_utc(self.clock())

    def check_in(self, identity: str, at: Optional[datetime] = None) -> Union[ActiveSession, AlreadyCheckedIn]:
        session = ActiveSession(identity=identity, started_at=self._at(at))
        existing = self.store.add(session)
        if existing is not None:
            return AlreadyCheckedIn(identity=identity, started_at=existing.started_at)
        logger.info("Checked in %s at %s", mask_identity(identity), session.started_at.isoformat())
        return session

    def check_out(self, identity: str, actor: CheckoutActor = CheckoutActor.SELF,
                  at: Optional[datetime] = None) -> Union[ClosedSession, NotCheckedIn]:
        active = self.store.get(identity)
        if active is None:
            return NotCheckedIn(identity=identity)

        ended_at = self._at(at)
        if ended_at < active.started_at:
            # Clock skew between the stored start and now; record a zero-length session.
            logger.warning(
                "Checkout time %s precedes check-in %s for %s; clamping duration to zero",
                ended_at.isoformat(), active.started_at.isoformat(), mask_identity(identity),
            )
            ended_at = active.started_at

        closed = ClosedSession(
            identity=identity,
            started_at=active.started_at,
            ended_at=ended_at,
            actor=actor,
        )
        # close() only succeeds against the exact session we read, so a
        # concurrent checkout of the same session makes this one a no-op.
        if not self.store.close(closed):
            return NotCheckedIn(identity=identity)
        logger.info("Checked out %s after %d ms (%s)", mask_identity(identity), closed.duration_ms, actor.value)
        return closed

    def status(self, identity: str) -> Optional[ActiveSession]:
        return self.store.get(identity)

    def count_active(self) -> int:
        return self.store.count()

    def list_active(self) -> List[ActiveSession]:
        return self.store.list()

    def force_checkout_all(self, actor: CheckoutActor = CheckoutActor.SCHEDULER,
                           at: Optional[datetime] = None) -> int:
        """Check out everyone who is in right now; returns how many were closed."""
        ended_at = self._at(at)
        closed = 0
        for active in self.store.list():
            try:
                result = self.check_out(active.identity, actor=actor, at=ended_at)
            except StorageUnavailable as e:
                logger.error("Forced checkout failed for %s: %s", mask_identity(active.identity), e)
                continue
            if isinstance(result, NotCheckedIn):
                # Left on their own between the listing and now.
                continue
            closed += 1
        logger.info("Forced checkout (%s) closed %d session(s)", actor.value, closed)
        return closed
