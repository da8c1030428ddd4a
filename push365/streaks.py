"""Streak bookkeeping over ProgramSettings.

Both functions mutate the settings they are given and compare on calendar
days only. Undoing a log never calls into this module: once a completion has
been counted it stays counted.
"""
from datetime import tzinfo
from typing import Optional

from .days import DateLike, date_key, days_between
from .models import ProgramSettings


def evaluate_missed_days(today: DateLike, settings: ProgramSettings, tz: Optional[tzinfo] = None) -> None:
    """Reset the current streak when at least one full day went by uncompleted."""
    today_key = date_key(today, tz)

    # first run only records the evaluation day
    if settings.last_streak_evaluated_date_key is None:
        settings.last_streak_evaluated_date_key = today_key
        return

    if settings.last_streak_evaluated_date_key == today_key:
        return

    if settings.last_completed_date_key is not None:
        if days_between(settings.last_completed_date_key, today_key) >= 2:
            settings.current_streak = 0

    settings.last_streak_evaluated_date_key = today_key


def record_completion(when: DateLike, settings: ProgramSettings, tz: Optional[tzinfo] = None) -> None:
    """Count a completed day; a second call for the same day does nothing."""
    key = date_key(when, tz)
    last = settings.last_completed_date_key

    if last == key:
        return

    if last is not None and days_between(last, key) == 1:
        settings.current_streak += 1
    else:
        settings.current_streak = 1

    settings.last_completed_date_key = key
    settings.longest_streak = max(settings.longest_streak, settings.current_streak)
