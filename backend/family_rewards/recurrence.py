"""Recurrence rules for repeating tasks.

A rule is stored on the task as a small JSON document:

* ``{"type": "daily"}``
* ``{"type": "weekly", "days_of_week": [1, 3, 5]}`` with 0 = Sunday
* ``{"type": "monthly", "days_of_month": [1, 15, 31]}``

Monthly days that a month does not have (31 in April, 30 in February) are
skipped for that month rather than clamped to the last day.  Everything
here is pure; the scheduler asks these functions on demand instead of
running a background job.
"""

from datetime import date, datetime, timedelta
from typing import Any, Mapping

from dateutil.rrule import rrule, WEEKLY, MONTHLY

from family_rewards.errors import InvalidRule

RECURRENCE_DAILY = "daily"
RECURRENCE_WEEKLY = "weekly"
RECURRENCE_MONTHLY = "monthly"
RECURRENCE_TYPES = (RECURRENCE_DAILY, RECURRENCE_WEEKLY, RECURRENCE_MONTHLY)

TASK_TYPE_ONE_TIME = "one-time"
TASK_TYPE_RECURRING = "recurring"
TASK_TYPE_BUCKET_LIST = "bucket-list"
TASK_TYPES = (TASK_TYPE_ONE_TIME, TASK_TYPE_RECURRING, TASK_TYPE_BUCKET_LIST)


def _int_set(values: Any, field: str, low: int, high: int) -> list[int]:
    if not isinstance(values, (list, tuple, set, frozenset)):
        raise InvalidRule(f"{field} must be a list")
    days = set()
    for value in values:
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidRule(f"{field} must contain integers")
        if not low <= value <= high:
            raise InvalidRule(f"{field} values must be between {low} and {high}")
        days.add(value)
    if not days:
        raise InvalidRule(f"{field} must not be empty")
    return sorted(days)


def validate_rule(rule: Mapping[str, Any] | None) -> dict:
    """Return a normalized copy of ``rule`` or raise ``InvalidRule``."""
    if not isinstance(rule, Mapping):
        raise InvalidRule("rule must be an object")
    kind = rule.get("type")
    if kind == RECURRENCE_DAILY:
        return {"type": RECURRENCE_DAILY}
    if kind == RECURRENCE_WEEKLY:
        return {
            "type": RECURRENCE_WEEKLY,
            "days_of_week": _int_set(rule.get("days_of_week"), "days_of_week", 0, 6),
        }
    if kind == RECURRENCE_MONTHLY:
        return {
            "type": RECURRENCE_MONTHLY,
            "days_of_month": _int_set(
                rule.get("days_of_month"), "days_of_month", 1, 31
            ),
        }
    raise InvalidRule(f"unknown recurrence type {kind!r}")


def weekday_index(day: date) -> int:
    """Weekday with 0 = Sunday ... 6 = Saturday."""
    return day.isoweekday() % 7


def is_due_on(rule: Mapping[str, Any], on_date: date) -> bool:
    """Return ``True`` if a task following ``rule`` is due on ``on_date``."""
    rule = validate_rule(rule)
    if rule["type"] == RECURRENCE_DAILY:
        return True
    if rule["type"] == RECURRENCE_WEEKLY:
        return weekday_index(on_date) in rule["days_of_week"]
    return on_date.day in rule["days_of_month"]


def next_due_date(rule: Mapping[str, Any], from_date: date) -> date:
    """Return the first date strictly after ``from_date`` on which ``rule`` is due."""
    rule = validate_rule(rule)
    if rule["type"] == RECURRENCE_DAILY:
        return from_date + timedelta(days=1)

    start = datetime.combine(from_date, datetime.min.time())
    if rule["type"] == RECURRENCE_WEEKLY:
        # dateutil counts Monday as 0
        schedule = rrule(
            WEEKLY,
            dtstart=start,
            byweekday=[(day - 1) % 7 for day in rule["days_of_week"]],
        )
    else:
        schedule = rrule(MONTHLY, dtstart=start, bymonthday=rule["days_of_month"])
    return schedule.after(start).date()


def task_is_due(task, on_date: date) -> bool:
    """Combine a task's active flag, deadline and recurrence for ``on_date``."""
    if not task.is_active or task.archived_at is not None:
        return False
    if task.task_type == TASK_TYPE_RECURRING:
        return is_due_on(task.recurrence, on_date)
    if task.deadline is not None and task.deadline.date() < on_date:
        return False
    return True


def task_rule(task_type: str, recurrence: Mapping[str, Any] | None) -> dict | None:
    """Validate the rule a task of ``task_type`` may carry.

    Recurring tasks need a valid rule; the other types must not have one.
    """
    if task_type not in TASK_TYPES:
        raise InvalidRule(f"unknown task type {task_type!r}")
    if task_type == TASK_TYPE_RECURRING:
        return validate_rule(recurrence)
    if recurrence is not None:
        raise InvalidRule(f"{task_type} tasks do not take a recurrence rule")
    return None
