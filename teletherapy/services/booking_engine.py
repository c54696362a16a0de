"""Instant booking: validate, price, create the appointment, occupy the therapist."""

import logging
import math
import secrets
import string
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from fractions import Fraction

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from teletherapy.core import config
from teletherapy.core.clock import format_hhmm, utcnow
from teletherapy.core.exceptions import (
    NotFoundError,
    PersistenceError,
    TherapistBusyError,
    ValidationError,
)
from teletherapy.models.appointment import STATUS_SCHEDULED, Appointment
from teletherapy.models.therapist import Therapist
from teletherapy.models.user import User
from teletherapy.services import availability_ledger
from teletherapy.services.notifications import EmailNotifier, teen_confirmation, therapist_notice

logger = logging.getLogger(__name__)

_TOKEN_ALPHABET = string.ascii_lowercase + string.digits


@dataclass(frozen=True)
class BookingResult:
    appointment: Appointment
    can_join_at: datetime


def validate_duration(duration) -> int:
    if isinstance(duration, bool) or not isinstance(duration, int):
        raise ValidationError('Duration must be 30 or 60 minutes')
    if duration not in config.ALLOWED_SESSION_DURATIONS:
        raise ValidationError('Duration must be 30 or 60 minutes')
    return duration


def compute_amount(price_per_session: int, duration: int) -> int:
    """Scale the 30-minute baseline price linearly, rounding up."""
    return math.ceil(Fraction(price_per_session, config.PRICING_BASELINE_MINUTES) * duration)


def _random_token(length: int = 6) -> str:
    return ''.join(secrets.choice(_TOKEN_ALPHABET) for _ in range(length))


def generate_transaction_id() -> str:
    return f'FAKE_{time.time_ns() // 1_000_000}_{_random_token()}'


def generate_meeting_link() -> str:
    return f'{config.MEETING_BASE_URL}/{config.MEETING_ROOM_PREFIX}-{time.time_ns() // 1_000_000}-{_random_token()}'


def session_times(now: datetime, duration: int) -> tuple[datetime, datetime]:
    session_start = now + timedelta(minutes=config.JOIN_UNLOCK_MINUTES)
    return session_start, session_start + timedelta(minutes=duration)


def load_bookable_therapist(db: Session, therapist_id: int) -> Therapist:
    therapist = db.get(Therapist, therapist_id)
    if therapist is None:
        raise NotFoundError('Therapist not found')
    if not therapist.price_per_session:
        raise ValidationError('Therapist pricing is not configured')
    return therapist


def therapist_status(db: Session, therapist_id: int, now: datetime | None = None):
    """Current availability of a therapist, healing stale state on the way."""
    if db.get(Therapist, therapist_id) is None:
        raise NotFoundError('Therapist not found')
    try:
        state = availability_ledger.observe_and_reconcile(db, therapist_id, now)
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError('Error checking therapist status', str(exc)) from exc
    return state, availability_ledger.get_ledger(db, therapist_id)


def instant_book(
    db: Session,
    therapist_id: int,
    duration,
    user_id: int,
    now: datetime | None = None,
    notifier: EmailNotifier | None = None,
) -> BookingResult:
    if not therapist_id:
        raise ValidationError('Therapist ID and duration are required')
    duration = validate_duration(duration)
    therapist = load_bookable_therapist(db, therapist_id)

    now = now or utcnow()
    try:
        state = availability_ledger.observe_and_reconcile(db, therapist.id, now)
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError('Error creating booking', str(exc)) from exc
    if not state.is_available:
        raise TherapistBusyError(state.available_at)

    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError('User not found')

    session_start, session_end = session_times(now, duration)
    amount = compute_amount(therapist.price_per_session, duration)

    appointment = Appointment(
        user_id=user.id,
        therapist_id=therapist.id,
        therapist_name=therapist.name,
        therapist_avatar=therapist.profile_picture,
        date=session_start,
        start_time=format_hhmm(session_start),
        end_time=format_hhmm(session_end),
        duration=duration,
        type='video',
        status=STATUS_SCHEDULED,
        payment_amount=amount,
        payment_currency=config.PAYMENT_CURRENCY,
        payment_status='completed',
        payment_transaction_id=generate_transaction_id(),
        payment_paid_at=now,
        payment_method=config.PAYMENT_METHOD,
        meeting_link=generate_meeting_link(),
        created_at=now,
    )

    try:
        db.add(appointment)
        db.flush()
        # Last write: claim the therapist only if nobody else got there first.
        claimed = availability_ledger.occupy_if_idle(
            db, therapist.id, appointment.id, session_start, session_end,
        )
        if not claimed:
            db.rollback()
            winner = availability_ledger.get_ledger(db, therapist.id)
            logger.info('Booking for therapist %s lost the occupancy race', therapist.id)
            raise TherapistBusyError(winner.ends_at)
        db.commit()
        db.refresh(appointment)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Error creating instant booking for therapist %s', therapist.id)
        raise PersistenceError('Error creating booking', str(exc)) from exc

    logger.info(
        'Appointment %s booked with therapist %s from %s to %s',
        appointment.id, therapist.id, session_start, session_end,
    )

    send_booking_notifications(notifier or EmailNotifier(), appointment, therapist, user)

    return BookingResult(appointment=appointment, can_join_at=session_start)


def send_booking_notifications(notifier: EmailNotifier, appointment: Appointment, therapist: Therapist, user: User) -> None:
    details = {
        'therapistName': therapist.name,
        'date': appointment.date.strftime('%A, %B %d, %Y'),
        'startTime': appointment.start_time,
        'endTime': appointment.end_time,
        'duration': appointment.duration,
        'amount': appointment.payment_amount,
        'currency': appointment.payment_currency,
        'appointmentId': appointment.id,
    }

    try:
        if user.email:
            notifier.notify(user.email, *teen_confirmation(user.name or 'there', details))
    except Exception:
        logger.exception('Failed to email teen for appointment %s; booking kept', appointment.id)

    try:
        if therapist.email:
            notifier.notify(therapist.email, *therapist_notice(therapist.name, details))
    except Exception:
        logger.exception('Failed to email therapist for appointment %s; booking kept', appointment.id)
