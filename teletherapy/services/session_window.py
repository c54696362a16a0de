"""Join/end timing rules for a booked session.

The server decides; clients get :func:`describe_window` snapshots to
drive their countdowns instead of recomputing the rule themselves.
The join window is anchored to the scheduled start (``appointment.date``),
never to when the booking was made.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from teletherapy.core import config
from teletherapy.core.exceptions import JoinTooEarlyError, SessionEndedError, UnauthorizedParticipantError
from teletherapy.models.appointment import Appointment

PHASE_UPCOMING = 'upcoming'
PHASE_JOINABLE = 'joinable'
PHASE_LIVE = 'live'
PHASE_ENDED = 'ended'


@dataclass(frozen=True)
class SessionWindow:
    phase: str
    can_join: bool
    can_join_at: datetime
    starts_at: datetime
    ends_at: datetime
    seconds_remaining: int
    timer_text: str

    def as_dict(self) -> dict:
        return {
            'phase': self.phase,
            'canJoin': self.can_join,
            'canJoinAt': self.can_join_at,
            'startsAt': self.starts_at,
            'endsAt': self.ends_at,
            'secondsRemaining': self.seconds_remaining,
            'timerText': self.timer_text,
        }


def join_lead_time() -> timedelta:
    return timedelta(minutes=config.JOIN_UNLOCK_MINUTES)


def session_bounds(appointment: Appointment) -> tuple[datetime, datetime]:
    start = appointment.date
    return start, start + timedelta(minutes=appointment.duration)


def join_opens_at(appointment: Appointment) -> datetime:
    start, _ = session_bounds(appointment)
    return start - join_lead_time()


def join_window_open(appointment: Appointment, now: datetime) -> bool:
    _, end = session_bounds(appointment)
    return join_opens_at(appointment) <= now <= end


def minutes_until(target: datetime, now: datetime) -> int:
    return math.ceil((target - now).total_seconds() / 60)


def is_participant(appointment: Appointment, caller) -> bool:
    if caller.is_therapist:
        return appointment.therapist_id == caller.id
    return appointment.user_id == caller.id


def authorize_participant(appointment: Appointment, caller) -> None:
    if not is_participant(appointment, caller):
        raise UnauthorizedParticipantError('You are not authorized to join this session')


def check_join(appointment: Appointment, now: datetime) -> None:
    """Raise unless ``now`` falls inside the join window of a live booking."""
    if appointment.is_terminal:
        raise SessionEndedError(f'This session is {appointment.status}')

    opens_at = join_opens_at(appointment)
    if now < opens_at:
        raise JoinTooEarlyError(minutes_until(opens_at, now), opens_at)

    _, end = session_bounds(appointment)
    if now > end:
        raise SessionEndedError()


def _split_minutes_seconds(delta: timedelta) -> tuple[int, int]:
    total = max(0, int(delta.total_seconds()))
    return total // 60, total % 60


def timer_text(appointment: Appointment, now: datetime) -> str:
    start, end = session_bounds(appointment)
    opens_at = join_opens_at(appointment)

    if now > end:
        return 'Session Ended'
    if now >= start:
        mins, secs = _split_minutes_seconds(end - now)
        return f'Ends in {mins}m {secs}s'
    if now >= opens_at:
        mins, secs = _split_minutes_seconds(start - now)
        return f'Starts in {mins}m {secs}s'

    total_minutes = max(0, int((opens_at - now).total_seconds()) // 60)
    hours, mins = divmod(total_minutes, 60)
    if hours > 0:
        return f'Available in {hours}h {mins}m'
    return f'Available in {mins}m'


def describe_window(appointment: Appointment, now: datetime) -> SessionWindow:
    start, end = session_bounds(appointment)
    opens_at = join_opens_at(appointment)

    if appointment.is_terminal or now > end:
        phase = PHASE_ENDED
    elif now >= start:
        phase = PHASE_LIVE
    elif now >= opens_at:
        phase = PHASE_JOINABLE
    else:
        phase = PHASE_UPCOMING

    if phase == PHASE_ENDED:
        remaining = 0
        text = 'Session Ended'
    else:
        remaining = max(0, int((end - now).total_seconds()))
        text = timer_text(appointment, now)

    return SessionWindow(
        phase=phase,
        can_join=phase in (PHASE_JOINABLE, PHASE_LIVE),
        can_join_at=opens_at,
        starts_at=start,
        ends_at=end,
        seconds_remaining=remaining,
        timer_text=text,
    )
