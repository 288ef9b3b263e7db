from datetime import datetime, timezone
from threading import Lock

from sqlalchemy import DateTime, create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.types import TypeDecorator

from booking_engine.core import config


def _engine_options(database_url: str) -> dict:
    if database_url.startswith('sqlite'):
        return {'connect_args': {'check_same_thread': False}}
    return {'pool_pre_ping': True}


engine = create_engine(config.DATABASE_URL, echo=config.SQL_ECHO, **_engine_options(config.DATABASE_URL))

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_appointment_schema_checked = False


class UtcDateTime(TypeDecorator):
    """Stores naive UTC, hands back aware UTC.

    SQLite drops offsets and Postgres ``timestamp`` columns never had them, so
    the conversion happens here instead of at every call site.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError('Naive datetimes cannot be stored; normalize to UTC first.')
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_appointment_schema(bind: Engine | None = None) -> None:
    """Bring an existing ``appointments`` table up to the current column set."""
    global _appointment_schema_checked

    if _appointment_schema_checked and bind is None:
        return

    target = bind or engine

    with _schema_lock:
        if _appointment_schema_checked and bind is None:
            return

        inspector = inspect(target)

        if 'appointments' not in inspector.get_table_names():
            if bind is None:
                _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('requester_id', 'ALTER TABLE appointments ADD COLUMN requester_id VARCHAR(64)'),
            ('title', 'ALTER TABLE appointments ADD COLUMN title VARCHAR(255)'),
            ('notes', 'ALTER TABLE appointments ADD COLUMN notes TEXT'),
            ('external_event_ref', 'ALTER TABLE appointments ADD COLUMN external_event_ref VARCHAR(255)'),
            ('created_at', 'ALTER TABLE appointments ADD COLUMN created_at TIMESTAMP'),
            ('updated_at', 'ALTER TABLE appointments ADD COLUMN updated_at TIMESTAMP'),
        ]

        with target.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_provider_window '
                    'ON appointments(provider_id, start_time, end_time)'
                )
            )
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_requester_start '
                    'ON appointments(requester_id, start_time)'
                )
            )

        if bind is None:
            _appointment_schema_checked = True
