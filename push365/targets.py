import os
from datetime import date, tzinfo
from typing import Optional

from .days import DateLike, date_key, day_number, strict_target
from .models import ProgramSettings, ProgressMode

DEBUG_TARGET = os.environ.get('PUSH365_DEBUG_TARGET', '0') in {'1', 'true', 'True', 'yes'}


def resolve_target(number: int, settings: ProgramSettings) -> int:
    """Target for a day that is being created right now.

    Strict mode follows the day number. Flexible mode only climbs once the
    previous target was met, and falls back to the day number until the
    first completion.
    """
    if settings.mode == ProgressMode.STRICT:
        target = strict_target(number)
    elif settings.last_completed_target > 0:
        target = settings.last_completed_target + 1
    else:
        target = strict_target(number)
    if DEBUG_TARGET:
        print(f"[Target] mode={settings.mode.value} day={number} lastTarget={settings.last_completed_target} "
              f"lastDate={settings.last_completed_date_key} => target={target}")
    return target


def preview_target(when: DateLike, settings: ProgramSettings, tz: Optional[tzinfo] = None):
    """(day_number, target) a record for `when` would get if created now."""
    key: date = date_key(when, tz)
    number = day_number(key, settings.program_start_date)
    return number, resolve_target(number, settings)
