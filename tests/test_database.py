import pytest
from sqlalchemy import inspect, text
from sqlalchemy.exc import IntegrityError

from clinic_scheduler.database import build_engine, ensure_appointment_schema, ensure_ledger_schema


@pytest.fixture
def legacy_engine(tmp_path):
    engine = build_engine(f'sqlite:///{tmp_path / "legacy.db"}')
    try:
        yield engine
    finally:
        engine.dispose()


def test_ensure_appointment_schema_adds_missing_columns(legacy_engine) -> None:
    with legacy_engine.begin() as connection:
        connection.execute(
            text(
                'CREATE TABLE appointments ('
                'id INTEGER PRIMARY KEY, doctor_id INTEGER NOT NULL, patient_id INTEGER NOT NULL, '
                'appointment_date DATE NOT NULL, slot_minute INTEGER NOT NULL, fee_amount INTEGER NOT NULL, '
                'status VARCHAR NOT NULL, created_at TIMESTAMP)'
            )
        )
        connection.execute(
            text(
                "INSERT INTO appointments (doctor_id, patient_id, appointment_date, slot_minute, fee_amount, status) "
                "VALUES (1, 10, '2026-01-05', 480, 500, 'active')"
            )
        )

    ensure_appointment_schema(bind=legacy_engine)
    ensure_appointment_schema(bind=legacy_engine)

    inspector = inspect(legacy_engine)
    columns = {column['name'] for column in inspector.get_columns('appointments')}
    indexes = {index['name'] for index in inspector.get_indexes('appointments')}
    assert {'version', 'payment_confirmed', 'cancelled_by', 'updated_at'} <= columns
    assert {'idx_appointments_doctor_date', 'idx_appointments_patient'} <= indexes

    with legacy_engine.connect() as connection:
        version, payment_confirmed = connection.execute(
            text('SELECT version, payment_confirmed FROM appointments')
        ).one()
    assert version == 1
    assert not payment_confirmed


def test_ensure_appointment_schema_ignores_missing_table(legacy_engine) -> None:
    ensure_appointment_schema(bind=legacy_engine)

    assert inspect(legacy_engine).get_table_names() == []


def test_ensure_ledger_schema_adds_unique_slot_index(legacy_engine) -> None:
    with legacy_engine.begin() as connection:
        connection.execute(
            text(
                'CREATE TABLE booked_slots ('
                'id INTEGER PRIMARY KEY, doctor_id INTEGER NOT NULL, slot_date DATE NOT NULL, '
                'slot_minute INTEGER NOT NULL, reserved_at TIMESTAMP)'
            )
        )

    ensure_ledger_schema(bind=legacy_engine)

    insert = text("INSERT INTO booked_slots (doctor_id, slot_date, slot_minute) VALUES (1, '2026-01-05', 480)")
    with legacy_engine.begin() as connection:
        connection.execute(insert)
    with pytest.raises(IntegrityError):
        with legacy_engine.begin() as connection:
            connection.execute(insert)
