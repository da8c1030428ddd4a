"""Reminder requests for the external notification scheduler.

Nothing here talks to an OS notification centre; the functions only decide
which reminders should exist given the current state, and the caller hands
the result to whatever scheduler the platform provides.
"""
from dataclasses import dataclass
from datetime import datetime, time, timedelta, tzinfo
from typing import List, Optional

from .days import date_key, local_zone
from .models import DayRecord, ProgramSettings, ProgressMode
from .targets import preview_target

MORNING_ID = 'next-morning-reminder'


@dataclass
class ReminderRequest:
    identifier: str
    fire_at: datetime
    title: str
    body: str


def _at(day, hour: int, minute: int, tz: tzinfo) -> datetime:
    return datetime.combine(day, time(hour, minute), tzinfo=tz)


def reminder_id(kind: str, when: datetime, tz: Optional[tzinfo] = None) -> str:
    return f'{kind}-{date_key(when, tz).isoformat()}'


def next_morning_reminder(now: datetime, settings: ProgramSettings, tz: Optional[tzinfo] = None) -> ReminderRequest:
    """Morning note for the next morning slot, with that day's number and target."""
    tz = tz if tz is not None else local_zone()
    fire_at = _at(date_key(now, tz), settings.morning_hour, settings.morning_minute, tz)
    if fire_at <= now:
        fire_at = _at(date_key(now, tz) + timedelta(days=1), settings.morning_hour, settings.morning_minute, tz)

    number, target = preview_target(fire_at, settings, tz)
    body = f'Your target today is {target} push-ups.'
    if settings.mode == ProgressMode.FLEXIBLE and target != number:
        body += ' Adaptive mode keeps your target steady until completed.'
    return ReminderRequest(identifier=MORNING_ID, fire_at=fire_at, title=f'Day {number}', body=body)


def plan_reminders(now: datetime, settings: ProgramSettings, record: DayRecord,
                   tz: Optional[tzinfo] = None) -> List[ReminderRequest]:
    """Reminders that should be pending after this state change.

    The evening reminder only exists while the day still has reps left; if
    its time has passed it moves to the next day. The morning reminder is
    always refreshed. Disabled notifications mean an empty plan, which tells
    the scheduler to cancel everything.
    """
    if not settings.notifications_enabled:
        return []
    tz = tz if tz is not None else local_zone()
    plan = []
    if record.remaining > 0:
        day = date_key(now, tz)
        fire_at = _at(day, settings.reminder_hour, settings.reminder_minute, tz)
        if fire_at <= now:
            fire_at = _at(day + timedelta(days=1), settings.reminder_hour, settings.reminder_minute, tz)
        plan.append(ReminderRequest(
            identifier=reminder_id('reminder', now, tz),
            fire_at=fire_at,
            title=f'{record.remaining} remaining',
            body='You can finish before the day ends.',
        ))
    plan.append(next_morning_reminder(now, settings, tz))
    return plan


def completion_notice(record: DayRecord, now: datetime) -> ReminderRequest:
    return ReminderRequest(
        identifier=f'completion-{record.date_key.isoformat()}',
        fire_at=now,
        title=f'Day {record.day_number} complete',
        body='Target reached. See you tomorrow.',
    )
