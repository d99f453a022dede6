"""
Cron expression helpers.

Next-fire computation goes through APScheduler's CronTrigger (the same trigger
the tick loop library uses); syntax validation uses croniter, which rejects
malformed five-field expressions with clearer messages.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from apscheduler.triggers.cron import CronTrigger
from croniter import croniter

from ..utils.timeutils import ensure_utc, to_naive_utc

logger = logging.getLogger(__name__)


def resolve_timezone(tz_name: Optional[str], default: str = "Asia/Riyadh") -> ZoneInfo:
    name = (tz_name or default).strip() or default
    try:
        return ZoneInfo(name)
    except Exception:
        logger.warning("Invalid timezone '%s', falling back to UTC", name)
        return ZoneInfo("UTC")


def cron_validation_error(expression: str) -> Optional[str]:
    expr = (expression or "").strip()
    if not expr:
        return "Cron expression is required."

    parts = expr.split()
    if len(parts) != 5:
        return "Cron expression must have exactly 5 fields (minute hour day month day-of-week)."

    if not croniter.is_valid(expr):
        return f"Invalid cron expression: {expr}"
    return None


_DOW_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")


def _dow_number(token: str) -> int:
    token = token.strip().lower()
    if token.isdigit() and 0 <= int(token) <= 7:
        return int(token) % 7
    if token[:3] in _DOW_NAMES:
        return _DOW_NAMES.index(token[:3])
    raise ValueError(f"Invalid day-of-week value: {token}")


def crontab_day_of_week(field: str) -> str:
    """
    Translate a crontab day-of-week field (0 or 7 = Sunday) into APScheduler
    day names. APScheduler numbers weekdays from Monday, so numeric crontab
    values cannot be passed through as-is.
    """
    field = (field or "*").strip()
    if field in ("*", "?"):
        return "*"

    days: set[int] = set()
    for part in field.split(","):
        base, _, step_raw = part.partition("/")
        step = int(step_raw) if step_raw else 1
        if step < 1:
            raise ValueError(f"Invalid day-of-week step: {part}")
        if base == "*":
            start, end = 0, 6
        elif "-" in base:
            first, last = base.split("-", 1)
            start, end = _dow_number(first), _dow_number(last)
            # "5-7" means Fri-Sun; 7 normalizes to 0 above.
            if last.strip() == "7":
                end = 7
        else:
            start = _dow_number(base)
            end = 6 if step_raw else start

        span = range(start, end + 1) if end >= start else list(range(start, 7)) + list(range(0, end + 1))
        days.update(day % 7 for day in list(span)[::step])

    return ",".join(_DOW_NAMES[day] for day in sorted(days))


def build_cron_trigger(cron_expression: str, tz: ZoneInfo) -> CronTrigger:
    """Five-field crontab expression to a CronTrigger, with crontab weekday numbering."""
    fields = (cron_expression or "").split()
    if len(fields) != 5:
        raise ValueError(f"Wrong number of fields; got {len(fields)}, expected 5")
    minute, hour, day, month, day_of_week = fields
    return CronTrigger(
        minute=minute,
        hour=hour,
        day=day,
        month=month,
        day_of_week=crontab_day_of_week(day_of_week),
        timezone=tz,
    )


def next_fire_time(cron_expression: str, from_time: datetime, tz_name: Optional[str] = None) -> Optional[datetime]:
    """
    Next occurrence strictly after `from_time`, as naive UTC.

    `from_time` may be naive (treated as UTC) or aware. The cron fields are
    interpreted in `tz_name`. Returns None for an invalid expression.
    """
    tz = resolve_timezone(tz_name)
    try:
        trigger = build_cron_trigger(cron_expression, tz)
    except ValueError as exc:
        logger.warning("Cannot compute next fire time for '%s': %s", cron_expression, exc)
        return None

    now = ensure_utc(from_time).astimezone(tz)
    fire = trigger.get_next_fire_time(None, now)
    # CronTrigger may return `now` itself when it lands exactly on a boundary.
    if fire is not None and fire <= now:
        fire = trigger.get_next_fire_time(None, now + timedelta(seconds=1))
    return to_naive_utc(fire)
