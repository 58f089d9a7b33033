from typing import Optional
import datetime
import math

from django.utils import timezone

# Assume four focused hours of work per day
PRODUCTIVE_MINUTES_PER_DAY = 240
END_OF_BUSINESS_HOUR = 17

# Extra business days of slack per priority
PRIORITY_BUFFER_DAYS = {
    'high': 1,
    'medium': 2,
    'low': 3,
}
DEFAULT_BUFFER_DAYS = 2


def suggest_due_date(
    estimated_minutes: Optional[int],
    priority: Optional[str] = None,
    now: Optional[datetime.datetime] = None
) -> datetime.datetime:
    """
    Deterministic due date: ceil(minutes / 240) working days plus a priority
    buffer, counted in business days (Saturday and Sunday skipped), at 17:00
    local time on the resulting day.

    estimated_minutes: task estimate; None or negative counts as zero
    priority: 'high' | 'medium' | 'low'; anything else uses the default buffer
    """
    if now is None:
        now = timezone.now()
    local_now = timezone.localtime(now) if timezone.is_aware(now) else now

    minutes = max(0, int(estimated_minutes or 0))
    working_days = math.ceil(minutes / PRODUCTIVE_MINUTES_PER_DAY)
    days_to_add = working_days + PRIORITY_BUFFER_DAYS.get(priority, DEFAULT_BUFFER_DAYS)

    due = local_now
    while days_to_add > 0:
        due = due + datetime.timedelta(days=1)
        if due.weekday() < 5:
            days_to_add -= 1

    return due.replace(hour=END_OF_BUSINESS_HOUR, minute=0, second=0, microsecond=0)
