"""Run one reconciliation sweep and print what it changed.

Usage:
    python -m teletherapy.run_sweep
"""
import logging
import sys

from teletherapy.database import SessionLocal
from teletherapy.models import appointment, therapist, therapist_session, user  # noqa: F401
from teletherapy.services.sweeper import SessionSweeper


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    report = SessionSweeper(SessionLocal).run_once()
    print(f"completed={report.completed} cleared={report.cleared} failures={report.failures}")
    if report.failures:
        sys.exit(1)


if __name__ == "__main__":
    main()
