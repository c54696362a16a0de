"""Join, end and cancel operations on a booked session."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from teletherapy.core import config
from teletherapy.core.clock import utcnow
from teletherapy.core.exceptions import ConflictError, NotFoundError, PersistenceError, UnauthorizedParticipantError
from teletherapy.models.appointment import Appointment
from teletherapy.models.user import User
from teletherapy.services import availability_ledger, session_window
from teletherapy.services.notifications import ANONYMOUS_TEEN_NAME

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JoinResult:
    meeting_link: str
    appointment: Appointment
    participant_info: dict


def get_appointment(db: Session, appointment_id: int) -> Appointment:
    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        raise NotFoundError('Appointment not found')
    return appointment


def participant_info(db: Session, appointment: Appointment, caller) -> dict:
    if caller.is_therapist:
        teen = db.get(User, appointment.user_id)
        other = {
            'name': ANONYMOUS_TEEN_NAME,
            'avatar': (teen.avatar if teen else None) or config.DEFAULT_TEEN_AVATAR,
        }
    else:
        other = {
            'name': appointment.therapist_name,
            'avatar': appointment.therapist_avatar,
        }
    return {'isTherapist': caller.is_therapist, 'otherParticipant': other}


def join_session(db: Session, appointment_id: int, caller, now: datetime | None = None) -> JoinResult:
    appointment = get_appointment(db, appointment_id)
    session_window.authorize_participant(appointment, caller)
    session_window.check_join(appointment, now or utcnow())

    return JoinResult(
        meeting_link=appointment.meeting_link,
        appointment=appointment,
        participant_info=participant_info(db, appointment, caller),
    )


def end_session(
    db: Session,
    appointment_id: int,
    buffer_minutes: int | None = None,
    now: datetime | None = None,
    ended_at: datetime | None = None,
) -> Appointment:
    """Complete a session and start the therapist's cooldown.

    Safe to call any number of times. The cooldown runs from ``ended_at``
    (defaults to ``now``); if it is already over, the ledger goes straight
    to idle. A ledger that holds a different appointment is not touched.
    """
    now = now or utcnow()
    ended_at = ended_at or now
    if buffer_minutes is None:
        buffer_minutes = config.COOLDOWN_BUFFER_MINUTES

    appointment = get_appointment(db, appointment_id)

    try:
        if appointment.mark_completed(now):
            logger.info('Appointment %s completed', appointment.id)

        cooldown_until = ended_at + timedelta(minutes=buffer_minutes)
        if cooldown_until <= now:
            cooldown_until = None
        if availability_ledger.release_appointment(db, appointment.therapist_id, appointment.id, cooldown_until):
            if cooldown_until is None:
                logger.info('Therapist %s is available again', appointment.therapist_id)
            else:
                logger.info('Therapist %s in cooldown until %s', appointment.therapist_id, cooldown_until)

        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError('Error ending session', str(exc)) from exc

    return appointment


def cancel_appointment(db: Session, appointment_id: int, caller, now: datetime | None = None) -> Appointment:
    """Move a scheduled appointment to cancelled and release the therapist.

    Refunds are handled elsewhere; this only records the transition.
    """
    now = now or utcnow()
    appointment = get_appointment(db, appointment_id)
    if not session_window.is_participant(appointment, caller):
        raise UnauthorizedParticipantError('You are not authorized to cancel this session')
    if appointment.is_terminal:
        raise ConflictError(f'Appointment is already {appointment.status}')

    try:
        appointment.mark_cancelled(now)
        availability_ledger.release_appointment(db, appointment.therapist_id, appointment.id)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError('Error cancelling appointment', str(exc)) from exc

    logger.info('Appointment %s cancelled by %s %s', appointment.id, caller.role, caller.id)
    return appointment


def list_sessions(db: Session, caller) -> list[Appointment]:
    column = Appointment.therapist_id if caller.is_therapist else Appointment.user_id
    return db.query(Appointment).filter(column == caller.id).order_by(Appointment.date.desc()).all()
