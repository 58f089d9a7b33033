# tasks/ai_engine/recurrence.py
"""
Recurrence rule arithmetic.

Pure date functions: given a rule and the previous occurrence, compute the
next one. Days of week follow the 0 = Sunday ... 6 = Saturday convention
used in stored rules. Results are truncated to the start of the day and
keep the input's tzinfo.
"""

import calendar
import datetime
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from django.db import models
from django.utils import timezone
from django.utils.dateparse import parse_datetime
from django.utils.translation import gettext_lazy as _

DAY_NAMES = ['Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday']
_ORDINALS = ['', '1st', '2nd', '3rd', '4th', '5th']


class RecurrenceFrequency(models.TextChoices):
    DAILY = 'daily', _('Daily')
    WEEKLY = 'weekly', _('Weekly')
    MONTHLY = 'monthly', _('Monthly')
    YEARLY = 'yearly', _('Yearly')


@dataclass
class RecurrenceRule:
    frequency: str
    interval: int = 1
    days_of_week: Optional[List[int]] = None
    day_of_month: Optional[int] = None
    week_of_month: Optional[int] = None
    day_of_week_in_month: Optional[int] = None
    # Termination: whichever of end_date / count triggers first.
    end_date: Optional[datetime.datetime] = None
    count: Optional[int] = None
    created_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'frequency': str(self.frequency), 'interval': self.interval}
        if self.days_of_week:
            data['days_of_week'] = list(self.days_of_week)
        for name in ('day_of_month', 'week_of_month', 'day_of_week_in_month', 'count', 'created_at'):
            value = getattr(self, name)
            if value is not None:
                data[name] = value
        if self.end_date is not None:
            data['end_date'] = self.end_date.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RecurrenceRule':
        end_date = data.get('end_date')
        if isinstance(end_date, str):
            end_date = parse_datetime(end_date)
        return cls(
            frequency=data['frequency'],
            interval=data.get('interval') or 1,
            days_of_week=list(data['days_of_week']) if data.get('days_of_week') else None,
            day_of_month=data.get('day_of_month'),
            week_of_month=data.get('week_of_month'),
            day_of_week_in_month=data.get('day_of_week_in_month'),
            end_date=end_date,
            count=data.get('count'),
            created_at=data.get('created_at'),
        )


@dataclass
class NextOccurrence:
    next_date: datetime.datetime
    is_complete: bool
    occurrence_number: int


# ---------------------------------------------------------------------------
# Date helpers
# ---------------------------------------------------------------------------


def day_of_week(value: datetime.datetime) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (value.weekday() + 1) % 7


def start_of_day(value: datetime.datetime) -> datetime.datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def add_months(value: datetime.datetime, months: int) -> datetime.datetime:
    """Calendar month arithmetic; the day is clamped to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _is_after(a: datetime.datetime, b: datetime.datetime) -> bool:
    if timezone.is_naive(a) and timezone.is_aware(b):
        a = a.replace(tzinfo=b.tzinfo)
    elif timezone.is_aware(a) and timezone.is_naive(b):
        b = b.replace(tzinfo=a.tzinfo)
    return a > b


def _next_matching_weekday(start: datetime.datetime, days_of_week: List[int]) -> datetime.datetime:
    """First date strictly after ``start`` whose weekday is in ``days_of_week``."""
    current = start + datetime.timedelta(days=1)
    for _i in range(7):
        if day_of_week(current) in days_of_week:
            return current
        current = current + datetime.timedelta(days=1)
    return current


def _nth_weekday_in_month(year: int, month: int, weekday: int, week_number: int,
                          like: datetime.datetime) -> datetime.datetime:
    """e.g. the 2nd Tuesday. A 5th occurrence that does not exist spills into the next month."""
    current = like.replace(year=year, month=month, day=1, hour=0, minute=0, second=0, microsecond=0)
    while day_of_week(current) != weekday:
        current = current + datetime.timedelta(days=1)
    return current + datetime.timedelta(days=(week_number - 1) * 7)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def create_recurrence_rule(
    frequency: str,
    interval: int = 1,
    days_of_week: Optional[List[int]] = None,
    day_of_month: Optional[int] = None,
    week_of_month: Optional[int] = None,
    day_of_week_in_month: Optional[int] = None,
    end_date: Union[datetime.datetime, str, None] = None,
    count: Optional[int] = None,
) -> RecurrenceRule:
    if isinstance(end_date, str):
        end_date = parse_datetime(end_date)
    return RecurrenceRule(
        frequency=frequency,
        interval=interval or 1,
        days_of_week=list(days_of_week) if days_of_week else None,
        day_of_month=day_of_month,
        week_of_month=week_of_month,
        day_of_week_in_month=day_of_week_in_month,
        end_date=end_date,
        count=count,
        created_at=timezone.now().isoformat(),
    )


def next_occurrence(
    rule: RecurrenceRule,
    from_date: datetime.datetime,
    occurrence_count: int = 0
) -> Optional[NextOccurrence]:
    """
    The occurrence after ``from_date``, or None for an unknown frequency.

    ``is_complete`` is set (and ``next_date`` left at ``from_date``) once
    ``count`` occurrences happened or the end date is passed, including when
    the computed date itself lands after the end date.
    """
    done = NextOccurrence(next_date=from_date, is_complete=True, occurrence_number=occurrence_count)

    if rule.count is not None and occurrence_count >= rule.count:
        return done
    if rule.end_date is not None and _is_after(from_date, rule.end_date):
        return done

    interval = rule.interval or 1

    if rule.frequency == RecurrenceFrequency.DAILY:
        next_date = start_of_day(from_date) + datetime.timedelta(days=interval)

    elif rule.frequency == RecurrenceFrequency.WEEKLY:
        if rule.days_of_week:
            next_valid = _next_matching_weekday(from_date, rule.days_of_week)

            # Crossing into a later week jumps the remaining interval weeks.
            current_week_start = from_date - datetime.timedelta(days=day_of_week(from_date))
            next_week_start = next_valid - datetime.timedelta(days=day_of_week(next_valid))
            if _is_after(next_week_start, current_week_start):
                next_date = next_valid + datetime.timedelta(weeks=interval - 1)
            else:
                next_date = next_valid
        else:
            next_date = from_date + datetime.timedelta(weeks=interval)

    elif rule.frequency == RecurrenceFrequency.MONTHLY:
        target = add_months(from_date, interval)
        if rule.week_of_month is not None and rule.day_of_week_in_month is not None:
            next_date = _nth_weekday_in_month(
                target.year, target.month, rule.day_of_week_in_month, rule.week_of_month, like=target
            )
        elif rule.day_of_month is not None:
            days_in_month = calendar.monthrange(target.year, target.month)[1]
            next_date = target.replace(day=min(rule.day_of_month, days_in_month))
        else:
            next_date = target

    elif rule.frequency == RecurrenceFrequency.YEARLY:
        next_date = add_months(from_date, 12 * interval)

    else:
        return None

    if rule.end_date is not None and _is_after(next_date, rule.end_date):
        return done

    return NextOccurrence(
        next_date=start_of_day(next_date),
        is_complete=False,
        occurrence_number=occurrence_count + 1,
    )


def generate_occurrences(
    rule: RecurrenceRule,
    start_date: datetime.datetime,
    max_occurrences: int = 10,
    until_date: Optional[datetime.datetime] = None
) -> List[datetime.datetime]:
    """Occurrence dates beginning with ``start_date`` itself."""
    occurrences = [start_of_day(start_date)]
    current = start_date
    count = 1

    while count < max_occurrences:
        result = next_occurrence(rule, current, count)
        if result is None or result.is_complete:
            break
        if until_date is not None and _is_after(result.next_date, until_date):
            break

        occurrences.append(result.next_date)
        current = result.next_date
        count += 1

    return occurrences


def _day_suffix(day: int) -> str:
    if 11 <= day <= 13:
        return 'th'
    return {1: 'st', 2: 'nd', 3: 'rd'}.get(day % 10, 'th')


def describe_recurrence_rule(rule: RecurrenceRule) -> str:
    """Human readable, e.g. "Every 2 weeks on Monday, Wednesday"."""
    interval = rule.interval or 1
    unit = {
        RecurrenceFrequency.DAILY: 'day',
        RecurrenceFrequency.WEEKLY: 'week',
        RecurrenceFrequency.MONTHLY: 'month',
        RecurrenceFrequency.YEARLY: 'year',
    }.get(rule.frequency)
    if unit is None:
        return ''

    if interval == 1:
        description = str(RecurrenceFrequency(rule.frequency).label)
    else:
        description = f'Every {interval} {unit}s'

    if rule.frequency == RecurrenceFrequency.WEEKLY and rule.days_of_week:
        description += ' on ' + ', '.join(DAY_NAMES[d] for d in rule.days_of_week)

    if rule.frequency == RecurrenceFrequency.MONTHLY:
        if rule.week_of_month is not None and rule.day_of_week_in_month is not None:
            if 0 < rule.week_of_month < len(_ORDINALS):
                ordinal = _ORDINALS[rule.week_of_month]
            else:
                ordinal = f'{rule.week_of_month}th'
            description += f' on the {ordinal} {DAY_NAMES[rule.day_of_week_in_month]}'
        elif rule.day_of_month is not None:
            description += f' on the {rule.day_of_month}{_day_suffix(rule.day_of_month)}'

    if rule.end_date is not None:
        description += f' until {rule.end_date.date().isoformat()}'
    elif rule.count is not None:
        description += f', {rule.count} times'

    return description


def is_valid_recurrence_rule(rule: RecurrenceRule) -> bool:
    if rule.frequency not in RecurrenceFrequency.values:
        return False
    if rule.interval is not None and rule.interval < 1:
        return False
    if rule.days_of_week and any(d < 0 or d > 6 for d in rule.days_of_week):
        return False
    if rule.day_of_month is not None and not 1 <= rule.day_of_month <= 31:
        return False
    if rule.week_of_month is not None and not 1 <= rule.week_of_month <= 5:
        return False
    if rule.day_of_week_in_month is not None and not 0 <= rule.day_of_week_in_month <= 6:
        return False
    if rule.count is not None and rule.count < 1:
        return False
    return True


RECURRENCE_PRESETS: Dict[str, RecurrenceRule] = {
    'daily': RecurrenceRule(frequency=RecurrenceFrequency.DAILY),
    'weekdays': RecurrenceRule(frequency=RecurrenceFrequency.WEEKLY, days_of_week=[1, 2, 3, 4, 5]),
    'weekly': RecurrenceRule(frequency=RecurrenceFrequency.WEEKLY),
    'biweekly': RecurrenceRule(frequency=RecurrenceFrequency.WEEKLY, interval=2),
    'monthly': RecurrenceRule(frequency=RecurrenceFrequency.MONTHLY),
    'yearly': RecurrenceRule(frequency=RecurrenceFrequency.YEARLY),
}
