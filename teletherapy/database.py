from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from teletherapy.core import config


def _engine_options(url: str) -> dict:
    if url.startswith('sqlite'):
        return {'connect_args': {'check_same_thread': False}}
    return {'pool_pre_ping': True}


engine = create_engine(config.DATABASE_URL, **_engine_options(config.DATABASE_URL))

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_session_ledger_checked = False


def ensure_session_ledger_schema(bind=None) -> None:
    """Add sweep indexes and give every therapist an idle ledger row."""
    global _session_ledger_checked

    if _session_ledger_checked:
        return

    bind = bind or engine

    with _schema_lock:
        if _session_ledger_checked:
            return

        inspector = inspect(bind)
        table_names = inspector.get_table_names()

        if 'therapists' not in table_names or 'therapist_sessions' not in table_names:
            _session_ledger_checked = True
            return

        with bind.begin() as connection:
            if 'appointments' in table_names:
                connection.execute(
                    text('CREATE INDEX IF NOT EXISTS idx_appointments_status_date ON appointments(status, date)')
                )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_therapist_sessions_active ON therapist_sessions(is_active)')
            )
            connection.execute(
                text(
                    'INSERT INTO therapist_sessions (therapist_id, is_active) '
                    'SELECT therapists.id, false FROM therapists '
                    'WHERE therapists.id NOT IN (SELECT therapist_id FROM therapist_sessions)'
                )
            )

        _session_ledger_checked = True
