"""Slot Generator: expand one date of a doctor's template into candidate starts.

Candidates ignore bookings and blocked intervals; callers filter those.
"""

from datetime import date

from pydantic import BaseModel, Field

from clinic_scheduler.core.timeslots import format_time
from clinic_scheduler.scheduling.availability import DoctorAvailability


class SlotBuckets(BaseModel):
    morning: list[int] = Field(default_factory=list)
    afternoon: list[int] = Field(default_factory=list)
    evening: list[int] = Field(default_factory=list)

    @property
    def all(self) -> list[int]:
        return sorted([*self.morning, *self.afternoon, *self.evening])

    def filtered(self, keep) -> 'SlotBuckets':
        return SlotBuckets(
            morning=[minute for minute in self.morning if keep(minute)],
            afternoon=[minute for minute in self.afternoon if keep(minute)],
            evening=[minute for minute in self.evening if keep(minute)],
        )

    def formatted(self) -> dict[str, list[str]]:
        return {
            'morning': [format_time(minute) for minute in self.morning],
            'afternoon': [format_time(minute) for minute in self.afternoon],
            'evening': [format_time(minute) for minute in self.evening],
            'all': [format_time(minute) for minute in self.all],
        }


def iterate_slot_starts(start: int, end: int, duration: int) -> list[int]:
    """Every start in [start, end) whose whole slot ends no later than ``end``."""
    starts: list[int] = []
    if duration <= 0:
        return starts

    current = start

    while current + duration <= end:
        starts.append(current)
        current += duration

    return starts


def generate_slots(availability: DoctorAvailability, slot_date: date) -> SlotBuckets:
    buckets = SlotBuckets()
    schedule = availability.day_schedule(slot_date)

    for name, period in schedule.enabled_periods():
        setattr(buckets, name, iterate_slot_starts(period.start, period.end, availability.slot_duration_minutes))

    return buckets
