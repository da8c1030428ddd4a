from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from push365.progress import ProgressStore
from push365.storage import JSONRecordStore

NEW_YORK = ZoneInfo('America/New_York')


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)

    def set_day(self, day, hour=9):
        self.now = datetime(day.year, day.month, day.day, hour, 0, tzinfo=self.now.tzinfo)


@pytest.fixture
def tz():
    return NEW_YORK


@pytest.fixture
def clock(tz):
    return Clock(datetime(2026, 1, 1, 9, 0, tzinfo=tz))


@pytest.fixture
def progress(tmp_path, tz, clock):
    return ProgressStore(JSONRecordStore(tmp_path / 'push365.json'), tz=tz, clock=clock)
