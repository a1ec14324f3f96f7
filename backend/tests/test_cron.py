"""
Tests for cron expression parsing and next-run computation
"""
from datetime import datetime, timezone

import pytest

from bizflow.workflow.cron import CronExpression


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


# 2026-10-17 is a Saturday
SATURDAY_10AM = _utc(2026, 10, 17, 10, 0)


@pytest.mark.parametrize("expression,after,expected", [
    ("0 9 * * 1-5", SATURDAY_10AM, _utc(2026, 10, 19, 9, 0)),
    ("*/15 * * * *", _utc(2026, 10, 17, 10, 7), _utc(2026, 10, 17, 10, 15)),
    ("*/15 * * * *", _utc(2026, 10, 17, 10, 15), _utc(2026, 10, 17, 10, 30)),
    ("30 8 1 * *", SATURDAY_10AM, _utc(2026, 11, 1, 8, 30)),
    ("0 12 * * 7", SATURDAY_10AM, _utc(2026, 10, 18, 12, 0)),
    ("0 12 * * 0", SATURDAY_10AM, _utc(2026, 10, 18, 12, 0)),
    ("0 0 1 1 *", SATURDAY_10AM, _utc(2027, 1, 1, 0, 0)),
    ("0 0 29 2 *", _utc(2026, 3, 1), _utc(2028, 2, 29, 0, 0)),
    ("10-40/10 14 * * *", SATURDAY_10AM, _utc(2026, 10, 17, 14, 10)),
    ("0 8,18 * * *", SATURDAY_10AM, _utc(2026, 10, 17, 18, 0)),
])
def test_next_after(expression, after, expected):
    assert CronExpression(expression).next_after(after) == expected


def test_day_of_month_or_weekday_when_both_restricted():
    # the 13th or any Friday: Friday 23rd comes before 13 November
    cron = CronExpression("0 0 13 * 5")
    assert cron.next_after(SATURDAY_10AM) == _utc(2026, 10, 23, 0, 0)


def test_next_after_is_strictly_later():
    cron = CronExpression("0 10 * * *")
    assert cron.next_after(SATURDAY_10AM) == _utc(2026, 10, 18, 10, 0)


def test_seconds_are_ignored():
    cron = CronExpression("* * * * *")
    assert cron.next_after(_utc(2026, 10, 17, 10, 0, 45, 123)) == _utc(2026, 10, 17, 10, 1)


def test_matches():
    cron = CronExpression("0 9 * * 1-5")
    assert cron.matches(_utc(2026, 10, 19, 9, 0))
    assert not cron.matches(_utc(2026, 10, 17, 9, 0))
    assert not cron.matches(_utc(2026, 10, 19, 9, 1))


@pytest.mark.parametrize("expression", [
    "* * *",
    "* * * * * *",
    "60 * * * *",
    "* 24 * * *",
    "* * 0 * *",
    "* * * 13 *",
    "* * * * 8",
    "*/0 * * * *",
    "a * * * *",
    "5-1 * * * *",
    "1,,2 * * * *",
])
def test_invalid_expressions(expression):
    with pytest.raises(ValueError):
        CronExpression(expression)


def test_never_matching_expression():
    with pytest.raises(ValueError, match="never matches"):
        CronExpression("0 0 31 2 *").next_after(SATURDAY_10AM)


def test_star_step_weekday_counts_as_unrestricted():
    # the 1st that also falls on Sun/Tue/Thu/Sat
    cron = CronExpression("0 0 1 * */2")
    assert cron.matches(_utc(2026, 2, 1, 0, 0))       # Sunday the 1st
    assert not cron.matches(_utc(2026, 4, 1, 0, 0))   # Wednesday the 1st
    assert not cron.matches(_utc(2026, 1, 6, 0, 0))   # Tuesday the 6th
    assert cron.next_after(SATURDAY_10AM) == _utc(2026, 11, 1, 0, 0)
