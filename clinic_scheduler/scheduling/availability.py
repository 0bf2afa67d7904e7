"""Doctor availability: weekly template, blocked intervals, granularity, capacity.

Answers "is this doctor nominally open at date D, minute T?" without looking
at bookings. All times are minutes since midnight; string input is parsed
by the field validators so API payloads can use "08:00" or "8:00 AM".
"""

from datetime import date as Date

from pydantic import BaseModel, Field, ValidationError, field_validator

from clinic_scheduler.core import config
from clinic_scheduler.core.errors import InvalidScheduleConfig, InvalidSlotTime, OverlappingBlock
from clinic_scheduler.core.timeslots import MINUTES_PER_DAY, WEEKDAYS, format_24h, parse_time, weekday_name

PERIOD_NAMES = ('morning', 'afternoon', 'evening')


def _parse_minutes(value):
    try:
        return parse_time(value)
    except InvalidSlotTime as exc:
        raise ValueError(exc.detail) from exc


class Period(BaseModel):
    is_available: bool = False
    start: int
    end: int

    @field_validator('start', 'end', mode='before')
    @classmethod
    def parse_clock_time(cls, value):
        return _parse_minutes(value)

    def contains(self, minute: int) -> bool:
        return self.is_available and self.start <= minute < self.end


class DaySchedule(BaseModel):
    is_available: bool = False
    morning: Period = Field(default_factory=lambda: Period(start=8 * 60, end=12 * 60))
    afternoon: Period = Field(default_factory=lambda: Period(start=12 * 60, end=17 * 60))
    evening: Period = Field(default_factory=lambda: Period(start=17 * 60, end=21 * 60))

    def periods(self) -> list[tuple[str, Period]]:
        return [(name, getattr(self, name)) for name in PERIOD_NAMES]

    def enabled_periods(self) -> list[tuple[str, Period]]:
        if not self.is_available:
            return []
        return [(name, period) for name, period in self.periods() if period.is_available]

    def validate_invariants(self, day: str = 'day') -> None:
        enabled = self.enabled_periods()
        for name, period in enabled:
            if not 0 <= period.start < period.end <= MINUTES_PER_DAY:
                raise InvalidScheduleConfig(
                    f'{day.capitalize()} {name} must start before it ends '
                    f'({format_24h(period.start)}-{format_24h(period.end)}).'
                )

        ordered = sorted(enabled, key=lambda item: item[1].start)
        for (first_name, first), (second_name, second) in zip(ordered, ordered[1:]):
            if second.start < first.end:
                raise InvalidScheduleConfig(f'{day.capitalize()} {first_name} and {second_name} periods overlap.')


class BlockedInterval(BaseModel):
    id: int | None = None
    date: Date
    start: int
    end: int
    reason: str = ''

    @field_validator('start', 'end', mode='before')
    @classmethod
    def parse_clock_time(cls, value):
        return _parse_minutes(value)

    @field_validator('reason', mode='before')
    @classmethod
    def normalize_reason(cls, value):
        return (value or '').strip()

    def overlaps(self, other: 'BlockedInterval') -> bool:
        return self.date == other.date and self.start < other.end and other.start < self.end

    def covers(self, minute: int) -> bool:
        return self.start <= minute < self.end


def _weekday_schedule() -> DaySchedule:
    return DaySchedule(
        is_available=True,
        morning=Period(is_available=True, start='08:00', end='12:00'),
        afternoon=Period(is_available=True, start='12:00', end='17:00'),
        evening=Period(is_available=False, start='17:00', end='21:00'),
    )


def _weekend_schedule() -> DaySchedule:
    return DaySchedule(
        is_available=False,
        morning=Period(is_available=False, start='09:00', end='12:00'),
        afternoon=Period(is_available=False, start='12:00', end='14:00'),
        evening=Period(is_available=False, start='17:00', end='21:00'),
    )


def default_weekly_template() -> dict[str, DaySchedule]:
    """Mon-Fri 08:00-17:00 in two periods, weekends closed."""
    return {
        day: _weekday_schedule() if day not in ('saturday', 'sunday') else _weekend_schedule()
        for day in WEEKDAYS
    }


class DoctorAvailability(BaseModel):
    doctor_id: int
    weekly_template: dict[str, DaySchedule] = Field(default_factory=default_weekly_template)
    slot_duration_minutes: int = config.DEFAULT_SLOT_DURATION_MINUTES
    max_patients_per_day: int = config.DEFAULT_MAX_PATIENTS_PER_DAY
    blocked_intervals: list[BlockedInterval] = Field(default_factory=list)

    def day_schedule(self, slot_date: Date) -> DaySchedule:
        return self.weekly_template.get(weekday_name(slot_date)) or DaySchedule()

    def blocked_on(self, slot_date: Date) -> list[BlockedInterval]:
        return [interval for interval in self.blocked_intervals if interval.date == slot_date]

    def is_blocked(self, slot_date: Date, minute: int) -> bool:
        return any(interval.covers(minute) for interval in self.blocked_on(slot_date))

    def is_open(self, slot_date: Date, minute: int) -> bool:
        schedule = self.day_schedule(slot_date)
        if not any(period.contains(minute) for _, period in schedule.enabled_periods()):
            return False
        return not self.is_blocked(slot_date, minute)

    def set_weekly_template(self, template: dict[str, DaySchedule | dict]) -> None:
        """Replace the given days; days missing from ``template`` keep their schedule."""
        template = {day.strip().lower(): schedule for day, schedule in template.items()}
        unknown_days = set(template) - set(WEEKDAYS)
        if unknown_days:
            raise InvalidScheduleConfig(f'Invalid day: {", ".join(sorted(unknown_days))}.')

        updated = dict(self.weekly_template)
        for day, schedule in template.items():
            updated[day] = self._coerce_day(day, schedule)
        self.weekly_template = updated

    def set_day_schedule(self, day: str, schedule: DaySchedule | dict) -> None:
        normalized_day = day.strip().lower()
        if normalized_day not in WEEKDAYS:
            raise InvalidScheduleConfig(f'Invalid day: {day}.')

        self.weekly_template = {**self.weekly_template, normalized_day: self._coerce_day(normalized_day, schedule)}

    def set_slot_duration(self, minutes: int) -> None:
        if isinstance(minutes, bool) or not isinstance(minutes, int):
            raise InvalidScheduleConfig('Slot duration must be a whole number of minutes.')
        if not config.MIN_SLOT_DURATION_MINUTES <= minutes <= config.MAX_SLOT_DURATION_MINUTES:
            raise InvalidScheduleConfig(
                f'Slot duration must be between {config.MIN_SLOT_DURATION_MINUTES} '
                f'and {config.MAX_SLOT_DURATION_MINUTES} minutes.'
            )
        self.slot_duration_minutes = minutes

    def set_max_patients_per_day(self, limit: int) -> None:
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
            raise InvalidScheduleConfig('Max patients per day must be zero or a positive whole number.')
        self.max_patients_per_day = limit

    def add_blocked_interval(self, interval: BlockedInterval | dict) -> BlockedInterval:
        if isinstance(interval, dict):
            try:
                interval = BlockedInterval(**interval)
            except ValidationError as exc:
                raise InvalidScheduleConfig(_first_error(exc)) from exc

        if not 0 <= interval.start < interval.end <= MINUTES_PER_DAY:
            raise InvalidScheduleConfig('Blocked time must start before it ends.')

        for existing in self.blocked_on(interval.date):
            if existing.overlaps(interval):
                raise OverlappingBlock(
                    f'Blocked time overlaps {format_24h(existing.start)}-{format_24h(existing.end)} '
                    f'on {interval.date.isoformat()}.'
                )

        self.blocked_intervals = sorted(
            [*self.blocked_intervals, interval],
            key=lambda item: (item.date, item.start),
        )
        return interval

    def remove_blocked_interval(self, interval_id: int) -> BlockedInterval:
        for interval in self.blocked_intervals:
            if interval.id == interval_id:
                self.blocked_intervals = [item for item in self.blocked_intervals if item is not interval]
                return interval
        raise InvalidScheduleConfig('Blocked time not found.')

    @staticmethod
    def _coerce_day(day: str, schedule: DaySchedule | dict) -> DaySchedule:
        if isinstance(schedule, dict):
            try:
                schedule = DaySchedule(**schedule)
            except ValidationError as exc:
                raise InvalidScheduleConfig(_first_error(exc)) from exc
        schedule.validate_invariants(day)
        return schedule


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return InvalidScheduleConfig.detail
    return str(errors[0].get('msg', InvalidScheduleConfig.detail))
