"""Appointment model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from teletherapy.core.clock import utcnow
from teletherapy.database import Base

STATUS_SCHEDULED = "scheduled"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"
TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_CANCELLED})


class Appointment(Base):
    """Represents a booked video session."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    therapist_id = Column(Integer, ForeignKey("therapists.id"), nullable=False, index=True)
    therapist_name = Column(String)
    therapist_avatar = Column(String, nullable=True)
    date = Column(DateTime, nullable=False)  # canonical session start
    start_time = Column(String(5))
    end_time = Column(String(5))
    duration = Column(Integer, nullable=False)
    type = Column(String, default="video")
    status = Column(String, nullable=False, default=STATUS_SCHEDULED)

    payment_amount = Column(Integer, nullable=False)
    payment_currency = Column(String(3), nullable=False)
    payment_status = Column(String, nullable=False)
    payment_transaction_id = Column(String, unique=True, nullable=False)
    payment_paid_at = Column(DateTime, nullable=False)
    payment_method = Column(String, nullable=False)

    meeting_link = Column(String, unique=True, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def payment(self) -> dict:
        return {
            "amount": self.payment_amount,
            "currency": self.payment_currency,
            "status": self.payment_status,
            "transactionId": self.payment_transaction_id,
            "paidAt": self.payment_paid_at,
            "method": self.payment_method,
        }

    def mark_completed(self, now: datetime) -> bool:
        if self.is_terminal:
            return False
        self.status = STATUS_COMPLETED
        self.completed_at = now
        return True

    def mark_cancelled(self, now: datetime) -> bool:
        if self.is_terminal:
            return False
        self.status = STATUS_CANCELLED
        self.cancelled_at = now
        return True

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "therapistId": self.therapist_id,
            "therapistName": self.therapist_name,
            "therapistAvatar": self.therapist_avatar,
            "date": self.date,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "duration": self.duration,
            "type": self.type,
            "status": self.status,
            "payment": self.payment,
            "meetingLink": self.meeting_link,
            "createdAt": self.created_at,
        }
