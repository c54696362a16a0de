"""Availability ledger: one row per therapist."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer
from teletherapy.database import Base


class TherapistSession(Base):
    """Whether a therapist is blocked from new bookings, and until when.

    ``is_active`` covers both a live session (``appointment_id`` set) and the
    post-session cooldown (``appointment_id`` null). ``ends_at`` is the
    instant the therapist becomes bookable again.
    """
    __tablename__ = "therapist_sessions"

    therapist_id = Column(Integer, ForeignKey("therapists.id", ondelete="CASCADE"), primary_key=True)
    is_active = Column(Boolean, nullable=False, default=False)
    appointment_id = Column(Integer, ForeignKey("appointments.id", ondelete="SET NULL"), nullable=True)
    started_at = Column(DateTime, nullable=True)
    ends_at = Column(DateTime, nullable=True)

    @property
    def in_cooldown(self) -> bool:
        return bool(self.is_active) and self.appointment_id is None

    def as_dict(self) -> dict:
        return {
            "isActive": bool(self.is_active),
            "appointmentId": self.appointment_id,
            "startedAt": self.started_at,
            "endsAt": self.ends_at,
        }
