import logging

from fastapi import APIRouter, Depends, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from teletherapy.auth.dependencies import Caller, get_current_caller, get_db
from teletherapy.core.clock import utcnow
from teletherapy.core.exceptions import BookingError, PersistenceError, UnauthorizedParticipantError
from teletherapy.services import booking_engine, session_lifecycle, session_window

router = APIRouter(tags=['booking'])

logger = logging.getLogger(__name__)


class InstantBookRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    therapist_id: int = Field(alias='therapistId')
    duration: StrictInt = 30

    @field_validator('therapist_id')
    @classmethod
    def validate_therapist_id(cls, value: int) -> int:
        if value <= 0:
            raise ValueError('Therapist ID and duration are required')
        return value


def respond(payload: dict, status_code: int = status.HTTP_200_OK) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))


def error_response(exc: BookingError) -> JSONResponse:
    return respond(exc.to_payload(), exc.status_code)


def unexpected_failure(message: str, exc: Exception) -> JSONResponse:
    logger.exception(message)
    return error_response(PersistenceError(message, str(exc)))


@router.post('/instant-book')
def instant_book(
    data: InstantBookRequest,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    if caller.is_therapist:
        return error_response(UnauthorizedParticipantError('Only teen accounts can book sessions'))

    try:
        result = booking_engine.instant_book(db, data.therapist_id, data.duration, caller.id)
    except BookingError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        db.rollback()
        return unexpected_failure('Error creating booking', exc)

    return respond({
        'success': True,
        'message': 'Session booked successfully! You can join in 5 minutes.',
        'data': {
            'appointment': result.appointment.as_dict(),
            'canJoinAt': result.can_join_at,
        },
    })


@router.get('/therapist-status/{therapist_id}')
def therapist_status(therapist_id: int, db: Session = Depends(get_db)):
    try:
        state, ledger = booking_engine.therapist_status(db, therapist_id)
    except BookingError as exc:
        return error_response(exc)

    return respond({
        'success': True,
        'data': {
            'isAvailable': state.is_available,
            'availableAt': state.available_at,
            'currentSession': ledger.as_dict(),
        },
    })


@router.post('/join-session/{appointment_id}')
def join_session(
    appointment_id: int,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        result = session_lifecycle.join_session(db, appointment_id, caller)
    except BookingError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return unexpected_failure('Error joining session', exc)

    return respond({
        'success': True,
        'data': {
            'meetingLink': result.meeting_link,
            'appointment': result.appointment.as_dict(),
            'participantInfo': result.participant_info,
        },
    })


@router.post('/end-session/{appointment_id}')
def end_session(
    appointment_id: int,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        appointment = session_lifecycle.get_appointment(db, appointment_id)
        session_window.authorize_participant(appointment, caller)
        session_lifecycle.end_session(db, appointment_id)
    except BookingError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return unexpected_failure('Error ending session', exc)

    return respond({'success': True, 'message': 'Session ended successfully'})


@router.post('/cancel/{appointment_id}')
def cancel_appointment(
    appointment_id: int,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        appointment = session_lifecycle.cancel_appointment(db, appointment_id, caller)
    except BookingError as exc:
        return error_response(exc)

    return respond({
        'success': True,
        'message': 'Appointment cancelled',
        'data': {'appointment': appointment.as_dict()},
    })


@router.get('/session-window/{appointment_id}')
def get_session_window(
    appointment_id: int,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        appointment = session_lifecycle.get_appointment(db, appointment_id)
        session_window.authorize_participant(appointment, caller)
    except BookingError as exc:
        return error_response(exc)

    window = session_window.describe_window(appointment, utcnow())
    return respond({'success': True, 'data': window.as_dict()})


@router.get('/my-sessions')
def list_my_sessions(
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        appointments = session_lifecycle.list_sessions(db, caller)
    except SQLAlchemyError as exc:
        return unexpected_failure('Error fetching sessions', exc)

    now = utcnow()
    return respond({
        'success': True,
        'data': [
            {**appointment.as_dict(), 'window': session_window.describe_window(appointment, now).as_dict()}
            for appointment in appointments
        ],
    })
