"""Tests for recurrence rules and task due dates."""

import pathlib
import sys
from datetime import date, datetime, timedelta

import pytest

# Allow importing the family_rewards package
sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

from family_rewards.errors import InvalidRule
from family_rewards.models import Task
from family_rewards.recurrence import (
    is_due_on,
    next_due_date,
    task_is_due,
    task_rule,
    validate_rule,
    weekday_index,
)


def test_weekday_index_starts_on_sunday():
    assert weekday_index(date(2024, 6, 2)) == 0  # Sunday
    assert weekday_index(date(2024, 6, 3)) == 1  # Monday
    assert weekday_index(date(2024, 6, 8)) == 6  # Saturday


def test_daily_rule_is_always_due():
    rule = {"type": "daily"}
    assert is_due_on(rule, date(2024, 2, 29))
    assert next_due_date(rule, date(2024, 12, 31)) == date(2025, 1, 1)


def test_weekly_next_due_date_is_in_set_and_strictly_after():
    rule = {"type": "weekly", "days_of_week": [1, 3, 5]}
    start = date(2024, 6, 1)
    for offset in range(21):
        from_date = start + timedelta(days=offset)
        nxt = next_due_date(rule, from_date)
        assert nxt > from_date
        assert weekday_index(nxt) in {1, 3, 5}
        assert nxt - from_date <= timedelta(days=7)


def test_weekly_rule_wraps_to_next_week():
    rule = {"type": "weekly", "days_of_week": [0]}
    # Sunday -> the following Sunday
    assert next_due_date(rule, date(2024, 6, 2)) == date(2024, 6, 9)
    assert is_due_on(rule, date(2024, 6, 9))
    assert not is_due_on(rule, date(2024, 6, 10))


def test_monthly_day_31_skips_short_months():
    rule = {"type": "monthly", "days_of_month": [31]}
    for day in range(1, 30):
        assert not is_due_on(rule, date(2024, 2, day))
    assert next_due_date(rule, date(2024, 2, 10)) == date(2024, 3, 31)
    assert next_due_date(rule, date(2024, 3, 31)) == date(2024, 5, 31)


def test_monthly_rule_multiple_days():
    rule = {"type": "monthly", "days_of_month": [15, 1]}
    assert is_due_on(rule, date(2024, 4, 15))
    assert next_due_date(rule, date(2024, 4, 15)) == date(2024, 5, 1)


@pytest.mark.parametrize(
    "rule",
    [
        None,
        {"type": "hourly"},
        {"type": "weekly", "days_of_week": []},
        {"type": "weekly", "days_of_week": [7]},
        {"type": "weekly", "days_of_week": [True]},
        {"type": "monthly", "days_of_month": [0]},
        {"type": "monthly", "days_of_month": [32]},
        {"type": "monthly"},
    ],
)
def test_invalid_rules_are_rejected(rule):
    with pytest.raises(InvalidRule):
        validate_rule(rule)


def test_validate_rule_normalizes_days():
    rule = validate_rule({"type": "weekly", "days_of_week": [5, 1, 5], "extra": 1})
    assert rule == {"type": "weekly", "days_of_week": [1, 5]}


def test_task_rule_requires_rule_only_for_recurring():
    assert task_rule("one-time", None) is None
    assert task_rule("recurring", {"type": "daily"}) == {"type": "daily"}
    with pytest.raises(InvalidRule):
        task_rule("recurring", None)
    with pytest.raises(InvalidRule):
        task_rule("bucket-list", {"type": "daily"})
    with pytest.raises(InvalidRule):
        task_rule("someday", None)


def test_task_is_due_respects_active_deadline_and_rule():
    one_time = Task(family_id=1, title="Clean room", deadline=datetime(2024, 6, 5, 18, 0))
    assert task_is_due(one_time, date(2024, 6, 5))
    assert not task_is_due(one_time, date(2024, 6, 6))

    one_time.is_active = False
    assert not task_is_due(one_time, date(2024, 6, 1))

    weekly = Task(
        family_id=1,
        title="Trash",
        task_type="recurring",
        recurrence={"type": "weekly", "days_of_week": [2]},
    )
    assert task_is_due(weekly, date(2024, 6, 4))  # Tuesday
    assert not task_is_due(weekly, date(2024, 6, 5))
