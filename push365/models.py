import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import List, Optional


class ProgressMode(str, Enum):
    STRICT = 'strict'
    FLEXIBLE = 'flexible'

    @classmethod
    def parse(cls, value) -> 'ProgressMode':
        try:
            return cls(value)
        except ValueError:
            return cls.FLEXIBLE


class DateFormatPreference(str, Enum):
    AUTOMATIC = 'automatic'
    UK = 'uk'


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def parse_date(value) -> Optional[date]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def parse_datetime(value) -> Optional[datetime]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class LogEntry:
    timestamp: datetime
    amount: int
    id: str = field(default_factory=_new_id)

    def to_dict(self):
        return {'id': self.id, 'timestamp': self.timestamp.isoformat(), 'amount': self.amount}

    @classmethod
    def from_dict(cls, data) -> 'LogEntry':
        return cls(
            timestamp=parse_datetime(data['timestamp']),
            amount=int(data['amount']),
            id=data.get('id') or _new_id(),
        )


@dataclass
class DayRecord:
    date_key: date
    day_number: int
    target: int
    completed: int = 0
    logs: List[LogEntry] = field(default_factory=list)
    id: str = field(default_factory=_new_id)

    @property
    def remaining(self) -> int:
        return max(0, self.target - self.completed)

    @property
    def is_complete(self) -> bool:
        return self.completed >= self.target

    def latest_log(self) -> Optional[LogEntry]:
        """Most recent entry by timestamp; ties go to the one appended last."""
        latest = None
        for entry in self.logs:
            if latest is None or entry.timestamp >= latest.timestamp:
                latest = entry
        return latest

    def to_dict(self):
        return {
            'id': self.id,
            'date_key': self.date_key.isoformat(),
            'day_number': self.day_number,
            'target': self.target,
            'completed': self.completed,
            'logs': [entry.to_dict() for entry in self.logs],
        }

    @classmethod
    def from_dict(cls, data) -> 'DayRecord':
        return cls(
            date_key=parse_date(data['date_key']),
            day_number=int(data['day_number']),
            target=int(data['target']),
            completed=int(data.get('completed', 0)),
            logs=[LogEntry.from_dict(l) for l in data.get('logs', [])],
            id=data.get('id') or _new_id(),
        )


@dataclass
class ProgramSettings:
    program_start_date: date
    tracking_start_date: Optional[date] = None
    mode: ProgressMode = ProgressMode.FLEXIBLE
    current_streak: int = 0
    longest_streak: int = 0
    last_completed_date_key: Optional[date] = None
    last_streak_evaluated_date_key: Optional[date] = None
    last_completed_target: int = 0

    # Passed through for the reminder and display layers.
    notifications_enabled: bool = True
    morning_hour: int = 8
    morning_minute: int = 0
    reminder_hour: int = 18
    reminder_minute: int = 0
    date_format_preference: DateFormatPreference = DateFormatPreference.AUTOMATIC
    display_name: Optional[str] = None
    has_completed_onboarding: bool = False
    created_at: Optional[datetime] = None
    id: str = field(default_factory=_new_id)

    def __post_init__(self):
        if self.tracking_start_date is None:
            self.tracking_start_date = self.program_start_date
        self.mode = ProgressMode.parse(self.mode)
        try:
            self.date_format_preference = DateFormatPreference(self.date_format_preference)
        except ValueError:
            self.date_format_preference = DateFormatPreference.AUTOMATIC

    def to_dict(self):
        return {
            'id': self.id,
            'program_start_date': self.program_start_date.isoformat(),
            'tracking_start_date': _iso(self.tracking_start_date),
            'mode': self.mode.value,
            'current_streak': self.current_streak,
            'longest_streak': self.longest_streak,
            'last_completed_date_key': _iso(self.last_completed_date_key),
            'last_streak_evaluated_date_key': _iso(self.last_streak_evaluated_date_key),
            'last_completed_target': self.last_completed_target,
            'notifications_enabled': self.notifications_enabled,
            'morning_hour': self.morning_hour,
            'morning_minute': self.morning_minute,
            'reminder_hour': self.reminder_hour,
            'reminder_minute': self.reminder_minute,
            'date_format_preference': self.date_format_preference.value,
            'display_name': self.display_name,
            'has_completed_onboarding': self.has_completed_onboarding,
            'created_at': _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data) -> 'ProgramSettings':
        return cls(
            program_start_date=parse_date(data['program_start_date']),
            tracking_start_date=parse_date(data.get('tracking_start_date')),
            mode=data.get('mode', ProgressMode.FLEXIBLE.value),
            current_streak=int(data.get('current_streak', 0)),
            longest_streak=int(data.get('longest_streak', 0)),
            last_completed_date_key=parse_date(data.get('last_completed_date_key')),
            last_streak_evaluated_date_key=parse_date(data.get('last_streak_evaluated_date_key')),
            last_completed_target=int(data.get('last_completed_target', 0)),
            notifications_enabled=bool(data.get('notifications_enabled', True)),
            morning_hour=int(data.get('morning_hour', 8)),
            morning_minute=int(data.get('morning_minute', 0)),
            reminder_hour=int(data.get('reminder_hour', 18)),
            reminder_minute=int(data.get('reminder_minute', 0)),
            date_format_preference=data.get('date_format_preference', DateFormatPreference.AUTOMATIC.value),
            display_name=data.get('display_name'),
            has_completed_onboarding=bool(data.get('has_completed_onboarding', False)),
            created_at=parse_datetime(data.get('created_at')),
            id=data.get('id') or _new_id(),
        )
