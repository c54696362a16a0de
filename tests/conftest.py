import os
from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')
os.environ.setdefault('SWEEPER_ENABLED', 'false')
os.environ.setdefault('EMAIL_ENABLED', 'false')

from teletherapy.database import Base  # noqa: E402
from teletherapy.models.appointment import Appointment  # noqa: E402
from teletherapy.models.therapist import Therapist  # noqa: E402
from teletherapy.models.therapist_session import TherapistSession  # noqa: E402
from teletherapy.models.user import User  # noqa: E402

T0 = datetime(2026, 3, 2, 10, 0)


class RecordingNotifier:
    def __init__(self, error: Exception | None = None):
        self.sent: list[tuple[str, str]] = []
        self.error = error

    def notify(self, recipient: str, subject: str, body: str) -> bool:
        if self.error is not None:
            raise self.error
        self.sent.append((recipient, subject))
        return True


@pytest.fixture
def session_factory():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    try:
        yield factory
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def teen(db) -> User:
    user = User(email='teen@example.com', name='Sam', avatar=None, role='teen')
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def therapist(db) -> Therapist:
    therapist = Therapist.create(
        name='Dr. Rao',
        email='rao@example.com',
        profile_picture='https://example.com/rao.png',
        price_per_session=600,
        created_at=T0,
    )
    db.add(therapist)
    db.commit()
    db.refresh(therapist)
    return therapist


def ledger_for(db, therapist_id: int) -> TherapistSession:
    db.expire_all()
    return db.get(TherapistSession, therapist_id)


def appointment_for(db, appointment_id: int) -> Appointment:
    db.expire_all()
    return db.get(Appointment, appointment_id)
