from datetime import date

import pytest

from clinic_scheduler.core.errors import InvalidScheduleConfig, OverlappingBlock
from clinic_scheduler.scheduling.availability import (
    BlockedInterval,
    DaySchedule,
    DoctorAvailability,
    Period,
    default_weekly_template,
)

MONDAY = date(2026, 1, 5)
SUNDAY = date(2026, 1, 4)


def test_period_parses_clock_strings() -> None:
    period = Period(is_available=True, start='8:00 AM', end='12:00')

    assert (period.start, period.end) == (480, 720)
    assert period.contains(480)
    assert not period.contains(720)


def test_default_template_opens_weekdays_and_closes_weekends() -> None:
    template = default_weekly_template()

    assert set(template) == {'monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday'}
    assert [name for name, _ in template['monday'].enabled_periods()] == ['morning', 'afternoon']
    assert template['sunday'].enabled_periods() == []


def test_is_open_follows_enabled_periods() -> None:
    availability = DoctorAvailability(doctor_id=1)

    assert availability.is_open(MONDAY, 480)
    assert availability.is_open(MONDAY, 16 * 60 + 30)
    assert not availability.is_open(MONDAY, 17 * 60)
    assert not availability.is_open(MONDAY, 7 * 60 + 30)
    assert not availability.is_open(SUNDAY, 600)


def test_disabled_day_ignores_enabled_periods() -> None:
    availability = DoctorAvailability(doctor_id=1)
    availability.set_day_schedule(
        'Monday',
        {'is_available': False, 'morning': {'is_available': True, 'start': '08:00', 'end': '12:00'}},
    )

    assert not availability.is_open(MONDAY, 480)


def test_set_day_schedule_rejects_inverted_period() -> None:
    availability = DoctorAvailability(doctor_id=1)

    with pytest.raises(InvalidScheduleConfig):
        availability.set_day_schedule(
            'monday',
            DaySchedule(is_available=True, morning=Period(is_available=True, start='12:00', end='08:00')),
        )


def test_set_day_schedule_rejects_overlapping_periods() -> None:
    availability = DoctorAvailability(doctor_id=1)
    schedule = DaySchedule(
        is_available=True,
        morning=Period(is_available=True, start='08:00', end='13:00'),
        afternoon=Period(is_available=True, start='12:00', end='17:00'),
    )

    with pytest.raises(InvalidScheduleConfig) as exception_info:
        availability.set_day_schedule('monday', schedule)

    assert 'overlap' in exception_info.value.detail


def test_set_weekly_template_rejects_unknown_day_and_keeps_other_days() -> None:
    availability = DoctorAvailability(doctor_id=1)

    with pytest.raises(InvalidScheduleConfig):
        availability.set_weekly_template({'funday': DaySchedule()})

    availability.set_weekly_template({'Sunday': {'is_available': True, 'morning': {'is_available': True, 'start': '09:00', 'end': '11:00'}}})

    assert availability.is_open(SUNDAY, 540)
    assert availability.is_open(MONDAY, 480)


def test_set_weekly_template_reports_malformed_time() -> None:
    availability = DoctorAvailability(doctor_id=1)

    with pytest.raises(InvalidScheduleConfig):
        availability.set_weekly_template({'monday': {'morning': {'start': 'soon', 'end': '12:00'}}})


@pytest.mark.parametrize('minutes', [9, 121, 0, True])
def test_set_slot_duration_enforces_bounds(minutes) -> None:
    availability = DoctorAvailability(doctor_id=1)

    with pytest.raises(InvalidScheduleConfig):
        availability.set_slot_duration(minutes)

    assert availability.slot_duration_minutes == 30


def test_set_max_patients_per_day_accepts_zero_and_rejects_negative() -> None:
    availability = DoctorAvailability(doctor_id=1)

    availability.set_max_patients_per_day(0)
    assert availability.max_patients_per_day == 0

    with pytest.raises(InvalidScheduleConfig):
        availability.set_max_patients_per_day(-1)


def test_blocked_interval_closes_covered_slots() -> None:
    availability = DoctorAvailability(doctor_id=1)
    availability.add_blocked_interval({'date': MONDAY, 'start': '09:00', 'end': '10:00', 'reason': ' Meeting '})

    assert availability.is_blocked(MONDAY, 540)
    assert availability.is_blocked(MONDAY, 570)
    assert not availability.is_blocked(MONDAY, 600)
    assert not availability.is_open(MONDAY, 540)
    assert availability.blocked_intervals[0].reason == 'Meeting'


def test_add_blocked_interval_rejects_overlap_on_same_date() -> None:
    availability = DoctorAvailability(doctor_id=1)
    availability.add_blocked_interval({'date': MONDAY, 'start': '09:00', 'end': '10:00'})

    with pytest.raises(OverlappingBlock):
        availability.add_blocked_interval({'date': MONDAY, 'start': '09:30', 'end': '11:00'})

    availability.add_blocked_interval({'date': MONDAY, 'start': '10:00', 'end': '11:00'})
    availability.add_blocked_interval({'date': date(2026, 1, 6), 'start': '09:30', 'end': '11:00'})

    assert len(availability.blocked_intervals) == 3


def test_add_blocked_interval_rejects_empty_range() -> None:
    availability = DoctorAvailability(doctor_id=1)

    with pytest.raises(InvalidScheduleConfig):
        availability.add_blocked_interval(BlockedInterval(date=MONDAY, start=600, end=600))


def test_remove_blocked_interval_by_id() -> None:
    availability = DoctorAvailability(
        doctor_id=1,
        blocked_intervals=[BlockedInterval(id=7, date=MONDAY, start=540, end=600)],
    )

    removed = availability.remove_blocked_interval(7)

    assert removed.id == 7
    assert availability.blocked_intervals == []
    with pytest.raises(InvalidScheduleConfig):
        availability.remove_blocked_interval(7)
