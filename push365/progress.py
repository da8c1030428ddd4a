import calendar
import os
import threading
from datetime import date, datetime, tzinfo
from typing import Callable, Dict, List, Optional

from .days import DateLike, add_days, date_key, day_number, local_zone, strict_target
from .models import DateFormatPreference, DayRecord, LogEntry, ProgramSettings, ProgressMode, parse_date
from .storage import RecordStore
from .streaks import evaluate_missed_days, record_completion
from .targets import resolve_target

DEBUG_PROGRESS = os.environ.get('PUSH365_DEBUG_PROGRESS', '0') in {'1', 'true', 'True', 'yes'}

SETTINGS_FIELDS = {
    'mode', 'tracking_start_date', 'notifications_enabled', 'morning_hour', 'morning_minute',
    'reminder_hour', 'reminder_minute', 'date_format_preference', 'display_name',
}


class ProgressStore:
    """Read/modify/write cycle for the day records and the settings singleton.

    Every public method runs under one re-entrant lock, so log and undo calls
    coming from the UI and from secondary devices never interleave. Each
    mutation is committed as a single unit of work; if the commit fails the
    store is rolled back and StoreError propagates to the caller.
    """

    def __init__(self, store: RecordStore, tz: Optional[tzinfo] = None, clock: Callable[[], datetime] = None):
        self.store = store
        self.tz = tz if tz is not None else local_zone()
        self.clock = clock or (lambda: datetime.now(self.tz))
        self._lock = threading.RLock()

    def now(self) -> datetime:
        return self.clock()

    def today(self) -> date:
        return date_key(self.now(), self.tz)

    # settings

    def _default_settings(self) -> ProgramSettings:
        today = self.today()
        return ProgramSettings(program_start_date=today, tracking_start_date=today, created_at=self.now())

    def get_or_create_settings(self) -> ProgramSettings:
        with self._lock:
            settings = self.store.fetch_settings()
            if settings is not None:
                return settings
            settings = self._default_settings()
            with self.store.transaction():
                self.store.insert(settings)
            return settings

    def complete_onboarding(self, start_date: DateLike = None, mode=ProgressMode.FLEXIBLE,
                            display_name: str = None, tracking_start_date: DateLike = None) -> ProgramSettings:
        """Seed the program. The start date can only be set again after a reset."""
        with self._lock:
            settings = self.get_or_create_settings()
            if settings.has_completed_onboarding:
                raise ValueError('onboarding already completed; reset the program first')
            with self.store.transaction():
                start = date_key(start_date, self.tz) if start_date is not None else self.today()
                settings.program_start_date = start
                if tracking_start_date is not None:
                    settings.tracking_start_date = date_key(tracking_start_date, self.tz)
                else:
                    settings.tracking_start_date = max(start, self.today())
                settings.mode = ProgressMode(mode)
                settings.display_name = display_name or None
                settings.has_completed_onboarding = True
            return settings

    def update_settings(self, **fields) -> ProgramSettings:
        """Change preferences. Existing day records keep the target they were created with."""
        unknown = set(fields) - SETTINGS_FIELDS
        if unknown:
            raise ValueError(f"unknown settings: {', '.join(sorted(unknown))}")
        with self._lock:
            settings = self.get_or_create_settings()
            with self.store.transaction():
                for name, value in fields.items():
                    if name == 'mode':
                        value = ProgressMode(value)
                    elif name == 'date_format_preference':
                        value = DateFormatPreference(value)
                    elif name == 'tracking_start_date':
                        if isinstance(value, str):
                            value = parse_date(value)
                        elif isinstance(value, date):
                            value = date_key(value, self.tz)
                        elif value is not None:
                            raise ValueError('tracking_start_date must be a date or YYYY-MM-DD string')
                    elif name in ('morning_hour', 'reminder_hour'):
                        value = int(value)
                        if not 0 <= value <= 23:
                            raise ValueError(f'{name} must be between 0 and 23')
                    elif name in ('morning_minute', 'reminder_minute'):
                        value = int(value)
                        if not 0 <= value <= 59:
                            raise ValueError(f'{name} must be between 0 and 59')
                    elif name == 'notifications_enabled':
                        value = bool(value)
                    setattr(settings, name, value)
            return settings

    def reset_program(self) -> ProgramSettings:
        """Purge every day record and start over with default settings."""
        with self._lock:
            with self.store.transaction():
                for record in self.store.fetch_records():
                    self.store.delete(record)
                current = self.store.fetch_settings()
                if current is not None:
                    self.store.delete(current)
                settings = self._default_settings()
                self.store.insert(settings)
            if DEBUG_PROGRESS:
                print(f"[Progress] reset program start={settings.program_start_date}")
            return settings

    # day records

    def get_or_create_day_record(self, when: DateLike = None) -> DayRecord:
        with self._lock:
            when = when if when is not None else self.now()
            settings = self.get_or_create_settings()
            with self.store.transaction():
                evaluate_missed_days(when, settings, self.tz)

            key = date_key(when, self.tz)
            record = self.store.fetch_record(key)
            if record is not None:
                return record

            number = day_number(key, settings.program_start_date)
            record = DayRecord(date_key=key, day_number=number, target=resolve_target(number, settings))
            with self.store.transaction():
                self.store.insert(record)
            if DEBUG_PROGRESS:
                print(f"[Progress] created day={key} number={number} target={record.target}")
            return record

    def add_log(self, amount: int, when: DateLike = None) -> DayRecord:
        """Log reps against a day, capped at what is left of its target.

        A day that is already complete takes no further logs. The first log
        that completes a day counts it towards the streak.
        """
        with self._lock:
            when = when if when is not None else self.now()
            record = self.get_or_create_day_record(when)
            was_complete = record.is_complete
            remaining = record.remaining
            if remaining == 0:
                return record

            with self.store.transaction():
                entry = LogEntry(timestamp=self.now(), amount=min(max(1, int(amount)), remaining))
                record.logs.append(entry)
                self.recompute_completed(record)

                if not was_complete and record.is_complete:
                    settings = self.get_or_create_settings()
                    record_completion(record.date_key, settings, self.tz)
                    settings.last_completed_target = record.target
                    settings.last_completed_date_key = record.date_key
                    if DEBUG_PROGRESS:
                        print(f"[Completion] Completed target {record.target} on {record.date_key}")
            return record

    def undo_last_log(self, when: DateLike = None) -> DayRecord:
        """Drop the most recent log of the day. Streak counters are left alone."""
        with self._lock:
            when = when if when is not None else self.now()
            record = self.get_or_create_day_record(when)
            latest = record.latest_log()
            if latest is None:
                return record
            with self.store.transaction():
                self.store.delete(latest)
                self.recompute_completed(record)
            return record

    @staticmethod
    def recompute_completed(record: DayRecord) -> None:
        record.completed = sum(entry.amount for entry in record.logs)

    # analytics

    def _tracked_records(self) -> List[DayRecord]:
        settings = self.get_or_create_settings()
        start = settings.tracking_start_date or settings.program_start_date
        return self.store.fetch_records(lambda r: r.date_key >= start)

    def lifetime_total(self) -> int:
        with self._lock:
            return sum(r.completed for r in self._tracked_records())

    def year_to_date_total(self) -> int:
        with self._lock:
            year = self.today().year
            return sum(r.completed for r in self._tracked_records() if r.date_key.year == year)

    def current_streak_from_records(self) -> int:
        """Consecutive completed days ending today.

        Today only breaks the chain once it is over, so an unfinished today
        starts the walk from yesterday.
        """
        with self._lock:
            by_day = {r.date_key: r for r in self._tracked_records()}
            day = self.today()
            if not (day in by_day and by_day[day].is_complete):
                day = add_days(day, -1)
            streak = 0
            while day in by_day and by_day[day].is_complete:
                streak += 1
                day = add_days(day, -1)
            return streak

    def longest_streak_from_records(self) -> int:
        with self._lock:
            longest = run = 0
            previous = None
            for record in self._tracked_records():
                if not record.is_complete:
                    run = 0
                elif previous is not None and (record.date_key - previous).days == 1 and run > 0:
                    run += 1
                else:
                    run = 1
                previous = record.date_key
                longest = max(longest, run)
            return longest

    def stats(self) -> Dict[str, int]:
        with self._lock:
            settings = self.get_or_create_settings()
            return {
                'lifetime_total': self.lifetime_total(),
                'year_to_date_total': self.year_to_date_total(),
                'current_streak': settings.current_streak,
                'longest_streak': settings.longest_streak,
                'current_streak_from_records': self.current_streak_from_records(),
                'longest_streak_from_records': self.longest_streak_from_records(),
                'days_recorded': len(self.store.fetch_records()),
            }

    def history(self, all_time: bool = False) -> List[dict]:
        """Calendar months, newest first, with one row per day.

        Only the current month is returned unless `all_time` is set, in which
        case every month back to the program start is included.
        """
        with self._lock:
            settings = self.get_or_create_settings()
            today = self.today()
            records = {r.date_key: r for r in self.store.fetch_records()}
            tracking_start = settings.tracking_start_date or settings.program_start_date

            months = [(today.year, today.month)]
            if all_time:
                year, month = today.year, today.month
                first = (settings.program_start_date.year, settings.program_start_date.month)
                while (year, month) > first:
                    year, month = (year - 1, 12) if month == 1 else (year, month - 1)
                    months.append((year, month))

            result = []
            for year, month in months:
                days = []
                for dom in range(1, calendar.monthrange(year, month)[1] + 1):
                    day = date(year, month, dom)
                    number = day_number(day, settings.program_start_date)
                    record = records.get(day)
                    days.append({
                        'date': day.isoformat(),
                        'day_of_month': dom,
                        'day_number': number,
                        'target': record.target if record else strict_target(number),
                        'completed': record.completed if record else 0,
                        'is_complete': bool(record and record.is_complete),
                        'is_today': day == today,
                        'is_future': day > today,
                        'tracked': day >= tracking_start,
                    })
                result.append({'year': year, 'month': month, 'days': days})
            return result
