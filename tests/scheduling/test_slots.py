from datetime import date

import pytest

from clinic_scheduler.scheduling.availability import DaySchedule, DoctorAvailability, Period
from clinic_scheduler.scheduling.slots import SlotBuckets, generate_slots, iterate_slot_starts

MONDAY = date(2026, 1, 5)
SUNDAY = date(2026, 1, 4)


def _single_period_availability(start: str, end: str, duration: int = 30) -> DoctorAvailability:
    availability = DoctorAvailability(doctor_id=1)
    availability.set_day_schedule(
        'monday',
        DaySchedule(is_available=True, morning=Period(is_available=True, start=start, end=end)),
    )
    availability.set_slot_duration(duration)
    return availability


def test_iterate_slot_starts_keeps_only_whole_slots() -> None:
    assert iterate_slot_starts(480, 570, 30) == [480, 510, 540]
    assert iterate_slot_starts(480, 560, 30) == [480, 510]


@pytest.mark.parametrize(('start', 'end', 'duration'), [(480, 480, 30), (480, 500, 30), (480, 600, 0)])
def test_iterate_slot_starts_returns_nothing_for_short_or_empty_ranges(start: int, end: int, duration: int) -> None:
    assert iterate_slot_starts(start, end, duration) == []


def test_generate_slots_for_one_hour_morning() -> None:
    availability = _single_period_availability('08:00', '09:00')

    slots = generate_slots(availability, MONDAY)

    assert slots.formatted() == {
        'morning': ['8:00 AM', '8:30 AM'],
        'afternoon': [],
        'evening': [],
        'all': ['8:00 AM', '8:30 AM'],
    }


def test_generate_slots_uses_default_weekday_template() -> None:
    slots = generate_slots(DoctorAvailability(doctor_id=1), MONDAY)

    assert len(slots.morning) == 8
    assert len(slots.afternoon) == 10
    assert slots.evening == []
    assert slots.all[0] == 480
    assert slots.all[-1] == 16 * 60 + 30


def test_generate_slots_is_empty_on_closed_day() -> None:
    assert generate_slots(DoctorAvailability(doctor_id=1), SUNDAY).all == []


def test_generate_slots_respects_slot_duration() -> None:
    availability = _single_period_availability('08:00', '10:00', duration=45)

    assert generate_slots(availability, MONDAY).morning == [480, 525]


def test_slot_buckets_filtered_keeps_bucket_membership() -> None:
    buckets = SlotBuckets(morning=[480, 510], afternoon=[720], evening=[1080])

    filtered = buckets.filtered(lambda minute: minute != 510)

    assert filtered.morning == [480]
    assert filtered.afternoon == [720]
    assert filtered.all == [480, 720, 1080]
