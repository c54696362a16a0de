from datetime import timedelta

import pytest
from conftest import T0, RecordingNotifier, ledger_for
from sqlalchemy.exc import OperationalError

from teletherapy.core.exceptions import (
    NotFoundError,
    PersistenceError,
    TherapistBusyError,
    UpstreamError,
    ValidationError,
)
from teletherapy.models.appointment import Appointment
from teletherapy.models.therapist import Therapist
from teletherapy.models.therapist_session import TherapistSession
from teletherapy.services import availability_ledger, booking_engine


@pytest.mark.parametrize(
    ('price', 'duration', 'expected'),
    [
        (500, 30, 500),
        (500, 60, 1000),
        (333, 60, 666),
        (100, 60, 200),
        (7, 60, 14),
    ],
)
def test_compute_amount_scales_baseline_and_rounds_up(price: int, duration: int, expected: int) -> None:
    assert booking_engine.compute_amount(price, duration) == expected


def test_compute_amount_rounds_fractional_rate_up() -> None:
    assert booking_engine.compute_amount(100, 45) == 150
    assert booking_engine.compute_amount(101, 45) == 152


@pytest.mark.parametrize('duration', [0, 15, 45, 90, '30', 30.0, True, None])
def test_validate_duration_rejects_anything_but_30_or_60(duration) -> None:
    with pytest.raises(ValidationError) as exception_info:
        booking_engine.validate_duration(duration)

    assert exception_info.value.message == 'Duration must be 30 or 60 minutes'


def test_generated_identifiers_are_unique() -> None:
    transaction_ids = {booking_engine.generate_transaction_id() for _ in range(50)}
    meeting_links = {booking_engine.generate_meeting_link() for _ in range(50)}

    assert len(transaction_ids) == 50
    assert len(meeting_links) == 50
    assert all(link.startswith('https://meet.jit.si/zenmind-') for link in meeting_links)


def test_instant_book_creates_appointment_and_occupies_therapist(db, therapist, teen, notifier) -> None:
    result = booking_engine.instant_book(db, therapist.id, 30, teen.id, now=T0, notifier=notifier)

    appointment = result.appointment
    assert appointment.date == T0 + timedelta(minutes=5)
    assert appointment.start_time == '10:05'
    assert appointment.end_time == '10:35'
    assert appointment.status == 'scheduled'
    assert appointment.therapist_name == 'Dr. Rao'
    assert appointment.payment == {
        'amount': 600,
        'currency': 'INR',
        'status': 'completed',
        'transactionId': appointment.payment_transaction_id,
        'paidAt': T0,
        'method': 'fake_payment',
    }
    assert appointment.payment_transaction_id.startswith('FAKE_')
    assert result.can_join_at == T0 + timedelta(minutes=5)

    ledger = ledger_for(db, therapist.id)
    assert ledger.is_active is True
    assert ledger.appointment_id == appointment.id
    assert ledger.started_at == T0 + timedelta(minutes=5)
    assert ledger.ends_at == T0 + timedelta(minutes=35)


def test_instant_book_notifies_teen_and_therapist(db, therapist, teen, notifier) -> None:
    booking_engine.instant_book(db, therapist.id, 60, teen.id, now=T0, notifier=notifier)

    recipients = [recipient for recipient, _ in notifier.sent]
    assert recipients == ['teen@example.com', 'rao@example.com']


@pytest.mark.parametrize(
    'error',
    [
        UpstreamError('SMTP down'),
        ValueError('Invalid recipient header'),
        UnicodeEncodeError('ascii', 'p\u00e4ss', 1, 2, 'ordinal not in range(128)'),
    ],
)
def test_instant_book_survives_notification_failure(db, therapist, teen, error) -> None:
    failing = RecordingNotifier(error=error)

    result = booking_engine.instant_book(db, therapist.id, 30, teen.id, now=T0, notifier=failing)

    assert result.appointment.id is not None
    assert db.query(Appointment).count() == 1


def test_second_booking_while_occupied_reports_available_at(db, therapist, teen, notifier) -> None:
    booking_engine.instant_book(db, therapist.id, 30, teen.id, now=T0, notifier=notifier)

    with pytest.raises(TherapistBusyError) as exception_info:
        booking_engine.instant_book(db, therapist.id, 30, teen.id, now=T0 + timedelta(minutes=1), notifier=notifier)

    assert exception_info.value.available_at == T0 + timedelta(minutes=35)
    assert exception_info.value.to_payload() == {
        'success': False,
        'message': 'Therapist is currently busy. Please try again later.',
        'availableAt': T0 + timedelta(minutes=35),
    }
    assert db.query(Appointment).count() == 1


def test_booking_allowed_once_previous_window_has_passed(db, therapist, teen, notifier) -> None:
    first = booking_engine.instant_book(db, therapist.id, 30, teen.id, now=T0, notifier=notifier)

    second = booking_engine.instant_book(
        db, therapist.id, 30, teen.id, now=T0 + timedelta(minutes=35), notifier=notifier,
    )

    assert second.appointment.id != first.appointment.id
    assert ledger_for(db, therapist.id).appointment_id == second.appointment.id


def test_booking_heals_corrupt_ledger_before_booking(db, therapist, teen, notifier) -> None:
    ledger = ledger_for(db, therapist.id)
    ledger.is_active = True
    ledger.ends_at = None
    db.commit()

    result = booking_engine.instant_book(db, therapist.id, 30, teen.id, now=T0, notifier=notifier)

    assert ledger_for(db, therapist.id).appointment_id == result.appointment.id


def test_lost_occupancy_race_rolls_back_appointment(db, therapist, teen, notifier, monkeypatch) -> None:
    def rival_claims_first(session, therapist_id, appointment_id, starts_at, ends_at):
        return False

    monkeypatch.setattr(availability_ledger, 'occupy_if_idle', rival_claims_first)

    with pytest.raises(TherapistBusyError):
        booking_engine.instant_book(db, therapist.id, 30, teen.id, now=T0, notifier=notifier)

    assert db.query(Appointment).count() == 0
    assert notifier.sent == []


def test_concurrent_bookings_cannot_both_occupy(session_factory, therapist, teen, notifier) -> None:
    first_db = session_factory()
    second_db = session_factory()
    try:
        # Both requests observe an idle therapist before either writes.
        assert availability_ledger.observe_and_reconcile(first_db, therapist.id, T0).is_available
        assert availability_ledger.observe_and_reconcile(second_db, therapist.id, T0).is_available

        booking_engine.instant_book(first_db, therapist.id, 30, teen.id, now=T0, notifier=notifier)
        claimed = availability_ledger.occupy_if_idle(
            second_db, therapist.id, 999, T0 + timedelta(minutes=5), T0 + timedelta(minutes=35),
        )
        second_db.rollback()
    finally:
        first_db.close()
        second_db.close()

    assert claimed is False


def test_booking_from_stale_cooldown_read_cannot_double_book(db, session_factory, therapist, teen, notifier) -> None:
    ledger = ledger_for(db, therapist.id)
    availability_ledger.begin_cooldown(ledger, T0 - timedelta(minutes=11), 10)
    db.commit()

    first_db = session_factory()
    second_db = session_factory()
    try:
        # The second request has already read the expired cooldown row.
        assert second_db.get(TherapistSession, therapist.id).ends_at == T0 - timedelta(minutes=1)

        first = booking_engine.instant_book(first_db, therapist.id, 30, teen.id, now=T0, notifier=notifier)
        first_id = first.appointment.id

        with pytest.raises(TherapistBusyError) as exception_info:
            booking_engine.instant_book(second_db, therapist.id, 30, teen.id, now=T0, notifier=notifier)
    finally:
        first_db.close()
        second_db.close()

    assert exception_info.value.available_at == T0 + timedelta(minutes=35)
    assert db.query(Appointment).filter(Appointment.status == 'scheduled').count() == 1
    assert ledger_for(db, therapist.id).appointment_id == first_id


@pytest.mark.parametrize(
    ('therapist_id', 'duration', 'error', 'message'),
    [
        (0, 30, ValidationError, 'Therapist ID and duration are required'),
        (1, 45, ValidationError, 'Duration must be 30 or 60 minutes'),
        (404, 30, NotFoundError, 'Therapist not found'),
    ],
)
def test_instant_book_input_failures(db, teen, notifier, therapist_id, duration, error, message) -> None:
    with pytest.raises(error) as exception_info:
        booking_engine.instant_book(db, therapist_id, duration, teen.id, now=T0, notifier=notifier)

    assert exception_info.value.message == message


def test_instant_book_requires_pricing(db, teen, notifier) -> None:
    therapist = Therapist.create(name='Unpriced', price_per_session=None)
    db.add(therapist)
    db.commit()

    with pytest.raises(ValidationError) as exception_info:
        booking_engine.instant_book(db, therapist.id, 30, teen.id, now=T0, notifier=notifier)

    assert exception_info.value.message == 'Therapist pricing is not configured'


def test_instant_book_busy_check_precedes_user_lookup(db, therapist, teen, notifier) -> None:
    booking_engine.instant_book(db, therapist.id, 30, teen.id, now=T0, notifier=notifier)

    with pytest.raises(TherapistBusyError):
        booking_engine.instant_book(db, therapist.id, 30, 12345, now=T0, notifier=notifier)


def test_instant_book_unknown_user(db, therapist, notifier) -> None:
    with pytest.raises(NotFoundError) as exception_info:
        booking_engine.instant_book(db, therapist.id, 30, 12345, now=T0, notifier=notifier)

    assert exception_info.value.message == 'User not found'
    assert ledger_for(db, therapist.id).is_active is False


def test_instant_book_wraps_persistence_failure(db, therapist, teen, notifier, monkeypatch) -> None:
    def broken_flush(*args, **kwargs):
        raise OperationalError('INSERT INTO appointments', {}, Exception('disk I/O error'))

    monkeypatch.setattr(db, 'flush', broken_flush)

    with pytest.raises(PersistenceError) as exception_info:
        booking_engine.instant_book(db, therapist.id, 30, teen.id, now=T0, notifier=notifier)

    assert exception_info.value.status_code == 500
    assert 'disk I/O error' in exception_info.value.error
