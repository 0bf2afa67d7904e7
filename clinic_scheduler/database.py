from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from clinic_scheduler.core import config


def build_engine(url: str, **kwargs) -> Engine:
    if url.startswith('sqlite'):
        connect_args = kwargs.setdefault('connect_args', {})
        connect_args.setdefault('check_same_thread', False)
        connect_args.setdefault('timeout', 30)
    return create_engine(url, **kwargs)


def build_session_factory(bind: Engine) -> sessionmaker:
    # Service calls hand detached appointments back to callers.
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=bind,
    )


engine = build_engine(config.DATABASE_URL, echo=config.DATABASE_ECHO)

SessionLocal = build_session_factory(engine)

Base = declarative_base()

_schema_lock = Lock()
_appointment_schema_checked = False
_ledger_schema_checked = False


def init_db(bind: Engine | None = None) -> None:
    # Registers every table on Base.metadata before create_all.
    from clinic_scheduler.models import appointment, doctor, ledger, schedule  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def ensure_appointment_schema(bind: Engine | None = None) -> None:
    """Bring an appointments table created by an older release up to date."""
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
            ('version', 'ALTER TABLE appointments ADD COLUMN version INTEGER NOT NULL DEFAULT 1'),
            ('payment_confirmed', 'ALTER TABLE appointments ADD COLUMN payment_confirmed BOOLEAN NOT NULL DEFAULT FALSE'),
            ('cancelled_by', 'ALTER TABLE appointments ADD COLUMN cancelled_by VARCHAR'),
            ('updated_at', 'ALTER TABLE appointments ADD COLUMN updated_at TIMESTAMP'),
        ]

        with target.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_doctor_date '
                    'ON appointments(doctor_id, appointment_date, status)'
                )
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_patient ON appointments(patient_id, appointment_date)')
            )

        if bind is None:
            _appointment_schema_checked = True


def ensure_ledger_schema(bind: Engine | None = None) -> None:
    """Add the unique slot index to a booked_slots table created without it."""
    global _ledger_schema_checked

    if _ledger_schema_checked and bind is None:
        return

    target = bind or engine
    with _schema_lock:
        if _ledger_schema_checked and bind is None:
            return

        inspector = inspect(target)

        if 'booked_slots' not in inspector.get_table_names():
            if bind is None:
                _ledger_schema_checked = True
            return

        slot_columns = ['doctor_id', 'slot_date', 'slot_minute']
        has_unique_slot = any(
            constraint['column_names'] == slot_columns
            for constraint in inspector.get_unique_constraints('booked_slots')
        ) or any(
            index['unique'] and index['column_names'] == slot_columns
            for index in inspector.get_indexes('booked_slots')
        )

        if not has_unique_slot:
            with target.begin() as connection:
                connection.execute(
                    text(
                        'CREATE UNIQUE INDEX IF NOT EXISTS uq_booked_slot_idx '
                        'ON booked_slots(doctor_id, slot_date, slot_minute)'
                    )
                )

        if bind is None:
            _ledger_schema_checked = True
