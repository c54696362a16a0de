"""Periodic reconciliation of sessions nobody explicitly ended."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from threading import Lock

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session, sessionmaker

from teletherapy.core import config
from teletherapy.core.clock import utcnow
from teletherapy.models.appointment import STATUS_SCHEDULED, Appointment
from teletherapy.models.therapist_session import TherapistSession
from teletherapy.services import availability_ledger, session_window
from teletherapy.services.session_lifecycle import end_session

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = 'session-sweep'


@dataclass
class SweepReport:
    completed: list[int] = field(default_factory=list)
    cleared: list[int] = field(default_factory=list)
    failures: int = 0
    skipped: bool = False


def ledger_expired(ledger: TherapistSession, now: datetime, buffer_minutes: int) -> bool:
    if not ledger.is_active:
        return False
    if ledger.ends_at is None:
        return True
    if ledger.in_cooldown:
        # Cooldown end times already include the buffer.
        return now >= ledger.ends_at
    return now > ledger.ends_at + timedelta(minutes=buffer_minutes)


class SessionSweeper:
    def __init__(
        self,
        session_factory: sessionmaker,
        interval_seconds: int | None = None,
        buffer_minutes: int | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds or config.SWEEP_INTERVAL_SECONDS
        self.buffer_minutes = config.COOLDOWN_BUFFER_MINUTES if buffer_minutes is None else buffer_minutes
        self._run_lock = Lock()
        self._scheduler: BackgroundScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        if self.running:
            return
        self._scheduler = BackgroundScheduler(timezone='UTC')
        self._scheduler.add_job(
            func=self.run_once,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=SWEEP_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=self.interval_seconds,
        )
        self._scheduler.start()
        logger.info('Session sweeper started (every %s seconds)', self.interval_seconds)

    def shutdown(self, wait: bool = True) -> None:
        if not self.running:
            return
        self._scheduler.shutdown(wait=wait)
        self._scheduler = None
        logger.info('Session sweeper stopped')

    def run_once(self, now: datetime | None = None) -> SweepReport:
        if not self._run_lock.acquire(blocking=False):
            logger.warning('Previous session sweep still running; skipping this tick')
            return SweepReport(skipped=True)
        try:
            now = now or utcnow()
            report = SweepReport()
            self._sweep_appointments(now, report)
            self._sweep_ledgers(now, report)
            if report.completed or report.cleared or report.failures:
                logger.info(
                    'Session sweep: %d completed, %d ledgers cleared, %d failures',
                    len(report.completed), len(report.cleared), report.failures,
                )
            return report
        finally:
            self._run_lock.release()

    def _sweep_appointments(self, now: datetime, report: SweepReport) -> None:
        with self.session_factory() as db:
            candidates = [
                appointment_id
                for (appointment_id,) in db.query(Appointment.id).filter(
                    Appointment.status == STATUS_SCHEDULED,
                    Appointment.date <= now,
                )
            ]

        for appointment_id in candidates:
            try:
                with self.session_factory() as db:
                    if self._complete_if_overdue(db, appointment_id, now):
                        report.completed.append(appointment_id)
            except Exception:
                report.failures += 1
                logger.exception('Failed to auto-end appointment %s', appointment_id)

    def _complete_if_overdue(self, db: Session, appointment_id: int, now: datetime) -> bool:
        appointment = db.get(Appointment, appointment_id)
        if appointment is None or appointment.is_terminal:
            return False
        _, scheduled_end = session_window.session_bounds(appointment)
        if now <= scheduled_end:
            return False
        logger.info('Auto-ending session %s (scheduled end %s)', appointment_id, scheduled_end)
        end_session(db, appointment_id, self.buffer_minutes, now=now, ended_at=scheduled_end)
        return True

    def _sweep_ledgers(self, now: datetime, report: SweepReport) -> None:
        with self.session_factory() as db:
            therapist_ids = [
                therapist_id
                for (therapist_id,) in db.query(TherapistSession.therapist_id).filter(
                    TherapistSession.is_active.is_(True),
                )
            ]

        for therapist_id in therapist_ids:
            try:
                with self.session_factory() as db:
                    ledger = db.get(TherapistSession, therapist_id)
                    if ledger is None or not ledger_expired(ledger, now, self.buffer_minutes):
                        continue
                    if availability_ledger.clear_if_unchanged(db, ledger):
                        db.commit()
                        report.cleared.append(therapist_id)
                        logger.info('Cleared expired session for therapist %s', therapist_id)
                    else:
                        db.rollback()
                        logger.info('Ledger for therapist %s changed during the sweep; left as is', therapist_id)
            except Exception:
                report.failures += 1
                logger.exception('Failed to clear ledger for therapist %s', therapist_id)
