import json
import os
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from pathlib import Path
from typing import Callable, Optional

from .days import date_key, day_number, local_zone, strict_target
from .models import ProgressMode
from .storage import write_json_atomic
from .sync import DayState

DEBUG_WIDGET = os.environ.get('PUSH365_DEBUG_WIDGET', '0') in {'1', 'true', 'True', 'yes'}

SNAPSHOT_FILE = 'push365_widget_snapshot.json'
RELOAD_FILE = 'reload-requested'


class WidgetSnapshotStore:
    """Shared on-disk snapshot read by the widget rendering process.

    Every save (and clear) asks the widget host to re-render; by default that
    means touching a marker file next to the snapshot, which the rendering
    process watches.
    """

    def __init__(self, directory: Path, reload_signal: Callable[[], None] = None):
        self.directory = Path(directory)
        self.path = self.directory / SNAPSHOT_FILE
        self.reload_signal = reload_signal or self._touch_reload_marker

    def _touch_reload_marker(self):
        marker = self.directory / RELOAD_FILE
        marker.parent.mkdir(parents=True, exist_ok=True)
        marker.write_text(datetime.now().isoformat(), encoding='utf-8')

    def save(self, state: DayState) -> None:
        write_json_atomic(self.path, state.to_dict(include_undo=False))
        if DEBUG_WIDGET:
            print(f"[Widget] Saved snapshot - Day {state.day_number}, {state.completed}/{state.target}")
        self.reload_signal()

    def load(self) -> Optional[DayState]:
        if not self.path.exists():
            if DEBUG_WIDGET:
                print(f"[Widget] No snapshot at {self.path}")
            return None
        try:
            with open(self.path, 'r', encoding='utf-8') as fh:
                data = json.load(fh)
        except (OSError, ValueError) as e:
            print(f"[Widget] Failed to read snapshot: {e}")
            return None
        state = DayState.from_dict(data)
        if state is None:
            print("[Widget] Failed to decode snapshot")
        return state

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        self.reload_signal()


@dataclass
class WidgetEntry:
    day_number: int
    target: int
    completed: int
    has_data: bool
    refresh_at: datetime

    @property
    def remaining(self) -> int:
        return max(0, self.target - self.completed)

    @property
    def is_complete(self) -> bool:
        return self.has_data and self.completed >= self.target


def next_midnight(now: datetime, tz: Optional[tzinfo] = None) -> datetime:
    tz = tz if tz is not None else local_zone()
    tomorrow = date_key(now, tz) + timedelta(days=1)
    return datetime.combine(tomorrow, time(0, 0), tzinfo=tz)


def widget_entry(snapshot: Optional[DayState], now: datetime, tz: Optional[tzinfo] = None) -> WidgetEntry:
    """What the widget shows at `now`.

    A snapshot from an earlier day is rolled forward: the day number and
    target are projected from the program start and progression mode, and
    nothing counts as completed yet.
    """
    refresh_at = next_midnight(now, tz)
    if snapshot is None:
        return WidgetEntry(day_number=1, target=1, completed=0, has_data=False, refresh_at=refresh_at)

    today: date = date_key(now, tz)
    if snapshot.date_key is None or snapshot.date_key == today or snapshot.program_start_date is None:
        return WidgetEntry(day_number=snapshot.day_number, target=snapshot.target,
                           completed=snapshot.completed, has_data=True, refresh_at=refresh_at)

    number = day_number(today, snapshot.program_start_date)
    last_target = snapshot.last_completed_target if isinstance(snapshot.last_completed_target, int) else 0
    if snapshot.mode == ProgressMode.STRICT.value or last_target <= 0:
        target = strict_target(number)
    else:
        target = last_target + 1
    return WidgetEntry(day_number=number, target=target, completed=0, has_data=True, refresh_at=refresh_at)
