"""Clock times as minutes since midnight.

Scheduling logic compares plain integers. Strings only exist at the edges:
``parse_time`` accepts "8:30 AM" or "08:30", and ``format_time`` renders the
12-hour form the API returns.
"""

import re
from datetime import date, time

from clinic_scheduler.core.errors import InvalidSlotTime

MINUTES_PER_DAY = 24 * 60

WEEKDAYS = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')

_TWELVE_HOUR_PATTERN = re.compile(r'^(\d{1,2}):(\d{2})\s*([AP]M)$', re.IGNORECASE)
_TWENTY_FOUR_HOUR_PATTERN = re.compile(r'^(\d{1,2}):(\d{2})$')


def parse_time(value: str | int | time) -> int:
    if isinstance(value, bool):
        raise InvalidSlotTime()

    if isinstance(value, int):
        if 0 <= value <= MINUTES_PER_DAY:
            return value
        raise InvalidSlotTime(f'Minute offset {value} is outside a day.')

    if isinstance(value, time):
        return value.hour * 60 + value.minute

    if not isinstance(value, str):
        raise InvalidSlotTime()

    normalized = value.strip()
    match = _TWELVE_HOUR_PATTERN.match(normalized)
    if match:
        hour, minute, period = int(match.group(1)), int(match.group(2)), match.group(3).upper()
        if not 1 <= hour <= 12 or minute > 59:
            raise InvalidSlotTime(f'Invalid time "{value}".')
        if period == 'PM' and hour != 12:
            hour += 12
        elif period == 'AM' and hour == 12:
            hour = 0
        return hour * 60 + minute

    match = _TWENTY_FOUR_HOUR_PATTERN.match(normalized)
    if match:
        hour, minute = int(match.group(1)), int(match.group(2))
        if (hour, minute) == (24, 0):
            return MINUTES_PER_DAY
        if hour > 23 or minute > 59:
            raise InvalidSlotTime(f'Invalid time "{value}".')
        return hour * 60 + minute

    raise InvalidSlotTime(f'Invalid time "{value}". Use "H:MM AM/PM" or "HH:MM".')


def format_time(minutes: int) -> str:
    hours, mins = divmod(minutes % MINUTES_PER_DAY, 60)
    period = 'PM' if hours >= 12 else 'AM'
    hour12 = hours % 12 or 12
    return f'{hour12}:{mins:02d} {period}'


def format_24h(minutes: int) -> str:
    if minutes == MINUTES_PER_DAY:
        return '24:00'
    hours, mins = divmod(minutes, 60)
    return f'{hours:02d}:{mins:02d}'


def weekday_name(slot_date: date) -> str:
    return WEEKDAYS[slot_date.weekday()]
