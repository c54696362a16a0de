"""Therapist model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from teletherapy.core.clock import utcnow
from teletherapy.database import Base
from teletherapy.models.therapist_session import TherapistSession


class Therapist(Base):
    """Represents a therapist who can be instantly booked."""
    __tablename__ = "therapists"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=True)
    profile_picture = Column(String, nullable=True)
    price_per_session = Column(Integer, nullable=True)  # 30-minute baseline
    created_at = Column(DateTime, default=utcnow)

    current_session = relationship(
        TherapistSession,
        uselist=False,
        cascade="all, delete-orphan",
        foreign_keys=[TherapistSession.therapist_id],
    )

    @classmethod
    def create(cls, name: str, created_at: datetime | None = None, **fields) -> "Therapist":
        """New therapist with an idle availability ledger attached."""
        therapist = cls(name=name, created_at=created_at or utcnow(), **fields)
        therapist.current_session = TherapistSession(is_active=False)
        return therapist
