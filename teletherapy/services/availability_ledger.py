"""Per-therapist availability ledger.

Every "is this therapist free" question goes through
:func:`observe_and_reconcile`; stale rows can exist between sweeps and
are reset the moment they are seen.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.orm import Session

from teletherapy.core.clock import utcnow
from teletherapy.models.therapist_session import TherapistSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AvailabilityState:
    is_available: bool
    available_at: datetime | None = None
    appointment_id: int | None = None
    in_cooldown: bool = False

    @classmethod
    def from_ledger(cls, ledger: TherapistSession) -> "AvailabilityState":
        if not ledger.is_active:
            return cls(is_available=True)
        return cls(
            is_available=False,
            available_at=ledger.ends_at,
            appointment_id=ledger.appointment_id,
            in_cooldown=ledger.in_cooldown,
        )


def is_stale(ledger: TherapistSession, now: datetime) -> bool:
    if not ledger.is_active:
        return False
    return ledger.ends_at is None or ledger.ends_at <= now


def occupy(ledger: TherapistSession, appointment_id: int, starts_at: datetime, ends_at: datetime) -> None:
    ledger.is_active = True
    ledger.appointment_id = appointment_id
    ledger.started_at = starts_at
    ledger.ends_at = ends_at


def begin_cooldown(ledger: TherapistSession, now: datetime, buffer_minutes: int) -> None:
    ledger.is_active = True
    ledger.appointment_id = None
    ledger.started_at = None
    ledger.ends_at = now + timedelta(minutes=buffer_minutes)


def clear(ledger: TherapistSession) -> None:
    ledger.is_active = False
    ledger.appointment_id = None
    ledger.started_at = None
    ledger.ends_at = None


def get_ledger(db: Session, therapist_id: int) -> TherapistSession:
    """Load the therapist's ledger row, creating it idle if it is missing."""
    ledger = db.get(TherapistSession, therapist_id)
    if ledger is None:
        ledger = TherapistSession(therapist_id=therapist_id, is_active=False)
        db.add(ledger)
        db.flush()
    return ledger


def _column_is(column, value):
    return column.is_(None) if value is None else column == value


def _reload(db: Session, therapist_id: int) -> TherapistSession | None:
    ledger = db.get(TherapistSession, therapist_id)
    if ledger is not None:
        db.refresh(ledger)
    return ledger


def clear_if_unchanged(db: Session, ledger: TherapistSession) -> bool:
    """Reset ``ledger`` to idle unless another writer moved it since it was read.

    The UPDATE matches the appointment and end time this session observed,
    so a booking committed in between is never wiped. On a miss the row is
    reloaded to show the newer state. Does not commit.
    """
    if not ledger.is_active:
        return False
    result = db.execute(
        update(TherapistSession)
        .where(
            TherapistSession.therapist_id == ledger.therapist_id,
            TherapistSession.is_active.is_(True),
            _column_is(TherapistSession.appointment_id, ledger.appointment_id),
            _column_is(TherapistSession.ends_at, ledger.ends_at),
        )
        .values(is_active=False, appointment_id=None, started_at=None, ends_at=None)
        .execution_options(synchronize_session=False)
    )
    _reload(db, ledger.therapist_id)
    return result.rowcount == 1


def release_appointment(
    db: Session,
    therapist_id: int,
    appointment_id: int,
    cooldown_until: datetime | None = None,
) -> bool:
    """Move the ledger off ``appointment_id`` into cooldown, or idle when
    ``cooldown_until`` is None.

    Only a row still held by that appointment is touched. Returns whether it
    was. Does not commit.
    """
    result = db.execute(
        update(TherapistSession)
        .where(
            TherapistSession.therapist_id == therapist_id,
            TherapistSession.appointment_id == appointment_id,
        )
        .values(
            is_active=cooldown_until is not None,
            appointment_id=None,
            started_at=None,
            ends_at=cooldown_until,
        )
        .execution_options(synchronize_session=False)
    )
    _reload(db, therapist_id)
    return result.rowcount == 1


def observe_and_reconcile(db: Session, therapist_id: int, now: datetime | None = None) -> AvailabilityState:
    now = now or utcnow()
    changed = db.get(TherapistSession, therapist_id) is None
    ledger = get_ledger(db, therapist_id)

    if is_stale(ledger, now):
        if ledger.ends_at is None:
            logger.warning('Therapist %s ledger was active without an end time; resetting to idle', therapist_id)
        else:
            logger.info('Therapist %s ledger expired at %s; resetting to idle', therapist_id, ledger.ends_at)
        if not clear_if_unchanged(db, ledger):
            logger.info('Therapist %s ledger changed before it could be reset; keeping the newer state', therapist_id)
        changed = True

    if changed:
        db.commit()

    return AvailabilityState.from_ledger(ledger)


def occupy_if_idle(
    db: Session,
    therapist_id: int,
    appointment_id: int,
    starts_at: datetime,
    ends_at: datetime,
) -> bool:
    """Claim the ledger only if it is idle. Returns whether the claim won.

    Runs as a single conditional UPDATE so two concurrent bookings cannot
    both occupy the same therapist. Does not commit.
    """
    result = db.execute(
        update(TherapistSession)
        .where(
            TherapistSession.therapist_id == therapist_id,
            TherapistSession.is_active.is_(False),
        )
        .values(
            is_active=True,
            appointment_id=appointment_id,
            started_at=starts_at,
            ends_at=ends_at,
        )
        .execution_options(synchronize_session=False)
    )
    claimed = result.rowcount == 1
    if claimed:
        db.refresh(db.get(TherapistSession, therapist_id))
    return claimed
