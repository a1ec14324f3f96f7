"""
Five-field cron expressions: minute hour day-of-month month day-of-week.
Supports '*', lists ('1,15'), ranges ('1-5') and steps ('*/15', '10-40/10').
Day-of-week 0 and 7 are Sunday.
"""
from datetime import datetime, timedelta
from typing import FrozenSet, Tuple

# (name, min, max)
FIELDS = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day", 1, 31),
    ("month", 1, 12),
    ("weekday", 0, 7),
)

# Upper bound for the minute-by-minute search (a bit over four years covers Feb 29)
MAX_SEARCH_DAYS = 366 * 4 + 1


class CronExpression:
    """Parsed cron expression"""

    def __init__(self, expression: str):
        self.expression = expression
        parts = expression.split()
        if len(parts) != 5:
            raise ValueError(f"Cron expression must have 5 fields: '{expression}'")

        values = [_parse_field(part, name, low, high) for part, (name, low, high) in zip(parts, FIELDS)]
        self.minutes, self.hours, self.days, self.months, weekdays = values
        # Python weekday: Monday=0 .. Sunday=6; cron: Sunday=0 (or 7), Monday=1
        self.weekdays = frozenset((value - 1) % 7 for value in weekdays)
        self.day_restricted = not parts[2].startswith("*")
        self.weekday_restricted = not parts[4].startswith("*")

    def _day_matches(self, moment: datetime) -> bool:
        day_ok = moment.day in self.days
        weekday_ok = moment.weekday() in self.weekdays
        # Standard cron: when both fields are restricted, either may match.
        # A field starting with "*" (such as "*/2") counts as unrestricted.
        if self.day_restricted and self.weekday_restricted:
            return day_ok or weekday_ok
        return day_ok and weekday_ok

    def matches(self, moment: datetime) -> bool:
        return (
            moment.minute in self.minutes
            and moment.hour in self.hours
            and moment.month in self.months
            and self._day_matches(moment)
        )

    def next_after(self, after: datetime) -> datetime:
        """First matching minute strictly after `after` (same tzinfo)"""
        moment = after.replace(second=0, microsecond=0) + timedelta(minutes=1)
        limit = moment + timedelta(days=MAX_SEARCH_DAYS)
        while moment <= limit:
            if moment.month not in self.months:
                moment = _first_of_next_month(moment)
                continue
            if not self._day_matches(moment):
                moment = (moment + timedelta(days=1)).replace(hour=0, minute=0)
                continue
            if moment.hour not in self.hours:
                moment = (moment + timedelta(hours=1)).replace(minute=0)
                continue
            if moment.minute not in self.minutes:
                moment += timedelta(minutes=1)
                continue
            return moment
        raise ValueError(f"Cron expression never matches: '{self.expression}'")


def _first_of_next_month(moment: datetime) -> datetime:
    if moment.month == 12:
        return moment.replace(year=moment.year + 1, month=1, day=1, hour=0, minute=0)
    return moment.replace(month=moment.month + 1, day=1, hour=0, minute=0)


def _parse_field(field: str, name: str, low: int, high: int) -> FrozenSet[int]:
    values = set()
    for part in field.split(","):
        if not part:
            raise ValueError(f"Empty value in cron {name} field")
        range_part, _, step_part = part.partition("/")
        step = 1
        if step_part:
            if not step_part.isdigit() or int(step_part) == 0:
                raise ValueError(f"Invalid step '{step_part}' in cron {name} field")
            step = int(step_part)

        if range_part == "*":
            start, end = low, high
        elif "-" in range_part:
            start, end = _parse_range(range_part, name)
        else:
            start = _parse_int(range_part, name)
            end = high if step_part else start

        if start < low or end > high or start > end:
            raise ValueError(f"Value out of range in cron {name} field: '{part}' ({low}-{high})")
        values.update(range(start, end + 1, step))
    return frozenset(values)


def _parse_range(text: str, name: str) -> Tuple[int, int]:
    start, _, end = text.partition("-")
    return _parse_int(start, name), _parse_int(end, name)


def _parse_int(text: str, name: str) -> int:
    if not text.isdigit():
        raise ValueError(f"Invalid value '{text}' in cron {name} field")
    return int(text)
