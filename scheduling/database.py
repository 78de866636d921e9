from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from scheduling.core import config


def _connect_args(database_url: str) -> dict:
    # Bounds every storage round-trip made while committing a booking.
    if database_url.startswith("sqlite"):
        return {
            "timeout": config.BOOKING_COMMIT_TIMEOUT_SECONDS,
            "check_same_thread": False,
        }
    if database_url.startswith("postgresql"):
        timeout_ms = int(config.BOOKING_COMMIT_TIMEOUT_SECONDS * 1000)
        return {"options": f"-c statement_timeout={timeout_ms}"}
    return {}


def build_engine(database_url: str):
    return create_engine(
        database_url,
        echo=config.SQL_ECHO,
        connect_args=_connect_args(database_url),
    )


engine = build_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_scheduling_schema_checked = False


def ensure_scheduling_schema() -> None:
    global _scheduling_schema_checked

    if _scheduling_schema_checked:
        return

    with _schema_lock:
        if _scheduling_schema_checked:
            return

        # Registers every table on Base.metadata.
        from scheduling.models import appointment, calendar, provider  # noqa: F401

        Base.metadata.create_all(bind=engine)

        inspector = inspect(engine)
        if 'appointments' in inspector.get_table_names():
            with engine.begin() as connection:
                connection.execute(
                    text(
                        'CREATE INDEX IF NOT EXISTS idx_appointments_provider_date_status '
                        'ON appointments(provider_id, appointment_date, status)'
                    )
                )
                connection.execute(
                    text('CREATE INDEX IF NOT EXISTS idx_appointments_requester ON appointments(requester_id)')
                )

            columns = {column['name'] for column in inspector.get_columns('appointments')}
            if 'proposed_by' not in columns:
                with engine.begin() as connection:
                    connection.execute(
                        text("ALTER TABLE appointments ADD COLUMN proposed_by VARCHAR NOT NULL DEFAULT 'requester'")
                    )

        _scheduling_schema_checked = True
