"""State propagation between the primary device and its secondaries.

The primary owns the ProgressStore. Every mutation it performs, local or
requested by a secondary, ends in exactly one authoritative DayState push.
Secondaries keep an optimistic projection for instant feedback and always
adopt the next authoritative state they receive, whichever channel it came
through. Each push carries a sequence number that only grows, so a stale
push arriving late (say the durable copy after a newer immediate one) is
recognised and ignored, while a repeat of the same push is a harmless
overwrite.
"""
import collections
import enum
import json
import threading
import time
import traceback
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Callable, Deque, List, Optional, Union

from .models import parse_date
from .progress import ProgressStore
from .storage import write_json_atomic
from .transport import DEBUG_SYNC, Transport, TransportError

CLEAR_SNAPSHOT = {'clearSnapshot': True}
INITIAL_STATE_REQUEST = {'request': 'initialState'}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _parse_timestamp(value) -> Optional[datetime]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None


@dataclass
class DayState:
    """Snapshot of today's progress as the primary sees it."""
    day_number: int
    target: int
    completed: int
    remaining: int
    is_complete: bool
    timestamp: datetime
    can_undo: Optional[bool] = None
    seq: int = 0
    # lets a widget project a later day without hearing from the primary
    date_key: Optional[date] = None
    program_start_date: Optional[date] = None
    mode: Optional[str] = None
    last_completed_target: Optional[int] = None

    def to_dict(self, include_undo: bool = True):
        data = {
            'dayNumber': self.day_number,
            'target': self.target,
            'completed': self.completed,
            'remaining': self.remaining,
            'isComplete': self.is_complete,
            'timestamp': self.timestamp.isoformat(),
            'seq': self.seq,
        }
        if include_undo and self.can_undo is not None:
            data['canUndo'] = self.can_undo
        if self.date_key is not None:
            data['dateKey'] = self.date_key.isoformat()
        if self.program_start_date is not None:
            data['programStartDate'] = self.program_start_date.isoformat()
        if self.mode is not None:
            data['mode'] = self.mode
        if self.last_completed_target is not None:
            data['lastCompletedTarget'] = self.last_completed_target
        return data

    @classmethod
    def from_dict(cls, data) -> Optional['DayState']:
        """Parse a pushed snapshot; anything malformed yields None."""
        if not isinstance(data, dict):
            return None
        for key in ('dayNumber', 'target', 'completed', 'remaining'):
            if not _is_int(data.get(key)):
                return None
        if not isinstance(data.get('isComplete'), bool):
            return None
        timestamp = _parse_timestamp(data.get('timestamp'))
        if timestamp is None:
            return None
        can_undo = data.get('canUndo')
        if can_undo is not None and not isinstance(can_undo, bool):
            return None
        seq = data.get('seq', 0)
        try:
            return cls(
                day_number=data['dayNumber'],
                target=data['target'],
                completed=data['completed'],
                remaining=data['remaining'],
                is_complete=data['isComplete'],
                timestamp=timestamp,
                can_undo=can_undo,
                seq=seq if _is_int(seq) else 0,
                date_key=parse_date(data.get('dateKey')),
                program_start_date=parse_date(data.get('programStartDate')),
                mode=data.get('mode'),
                last_completed_target=data.get('lastCompletedTarget'),
            )
        except ValueError:
            return None


@dataclass
class LogAction:
    amount: int
    client_timestamp: datetime = field(default_factory=_utcnow)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self):
        return {'type': 'log', 'amount': self.amount,
                'clientTimestamp': self.client_timestamp.isoformat(), 'id': self.id}


@dataclass
class UndoAction:
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self):
        return {'type': 'undo', 'id': self.id}


Action = Union[LogAction, UndoAction]


def parse_action(data) -> Optional[Action]:
    """Decode an action request; malformed requests yield None."""
    if not isinstance(data, dict):
        return None
    kind = data.get('type')
    action_id = data.get('id') if isinstance(data.get('id'), str) else uuid.uuid4().hex
    if kind in ('log', 'logPushups'):
        amount = data.get('amount')
        if not _is_int(amount):
            return None
        stamp = _parse_timestamp(data.get('clientTimestamp')) or _utcnow()
        return LogAction(amount=amount, client_timestamp=stamp, id=action_id)
    if kind in ('undo', 'undoLastLog'):
        return UndoAction(id=action_id)
    return None


class PrimarySync:
    """Applies actions to the ProgressStore and pushes authoritative state."""

    def __init__(self, progress: ProgressStore, widget=None, transports: List[Transport] = None):
        self.progress = progress
        self.widget = widget
        self.transports: List[Transport] = []
        self._lock = threading.RLock()
        self._last_seq = 0
        self._applied: Deque[str] = collections.deque(maxlen=256)
        for transport in transports or []:
            self.add_transport(transport)

    def add_transport(self, transport: Transport) -> None:
        transport.on_message = self.handle_message
        transport.on_transfer = self.handle_transfer
        self.transports.append(transport)

    def _next_seq(self) -> int:
        self._last_seq = max(self._last_seq + 1, time.time_ns() // 1000)
        return self._last_seq

    def current_state(self) -> DayState:
        with self._lock:
            record = self.progress.get_or_create_day_record()
            settings = self.progress.get_or_create_settings()
            return DayState(
                day_number=record.day_number,
                target=record.target,
                completed=record.completed,
                remaining=record.remaining,
                is_complete=record.is_complete,
                timestamp=self.progress.now(),
                can_undo=bool(record.logs),
                seq=self._next_seq(),
                date_key=record.date_key,
                program_start_date=settings.program_start_date,
                mode=settings.mode.value,
                last_completed_target=settings.last_completed_target,
            )

    def push_state(self) -> DayState:
        """Send the fresh state everywhere: widget storage and every secondary."""
        with self._lock:
            state = self.current_state()
            if self.widget is not None:
                self.widget.save(state)
            payload = state.to_dict()
            for transport in self.transports:
                self._deliver(transport, payload)
            return state

    def _deliver(self, transport: Transport, payload: dict) -> None:
        if transport.is_reachable:
            try:
                transport.send_message(payload)
                return
            except TransportError as e:
                print(f"[Sync] immediate push failed, falling back to durable transfer: {e}")
        transport.transfer(payload)

    def apply(self, action: Action) -> DayState:
        """Run one action against today and push the result."""
        with self._lock:
            if action.id in self._applied:
                if DEBUG_SYNC:
                    print(f"[Sync] duplicate action {action.id}, replying with current state")
                return self.push_state()
            if isinstance(action, LogAction):
                self.progress.add_log(action.amount)
            else:
                self.progress.undo_last_log()
            self._applied.append(action.id)
            if DEBUG_SYNC:
                print(f"[Sync] applied {action.to_dict()}")
            return self.push_state()

    def log(self, amount: int) -> DayState:
        return self.apply(LogAction(amount=amount))

    def undo(self) -> DayState:
        return self.apply(UndoAction())

    def reset(self) -> None:
        """Reset the program and tell every secondary to drop its cache."""
        with self._lock:
            self.progress.reset_program()
            if self.widget is not None:
                self.widget.clear()
            for transport in self.transports:
                self._deliver(transport, dict(CLEAR_SNAPSHOT))

    def handle_message(self, payload: dict) -> dict:
        """Request/reply entry point for secondaries."""
        if isinstance(payload, dict) and payload.get('request') == 'initialState':
            return self.current_state().to_dict()
        action = parse_action(payload)
        if action is None:
            if DEBUG_SYNC:
                print(f"[Sync] dropped malformed message: {payload!r}")
            return {'error': 'Invalid action'}
        return self.apply(action).to_dict()

    def handle_transfer(self, payload: dict) -> None:
        action = parse_action(payload)
        if action is None:
            if DEBUG_SYNC:
                print(f"[Sync] dropped malformed transfer: {payload!r}")
            return
        self.apply(action)


class ConnectionState(str, enum.Enum):
    DISCONNECTED = 'disconnected'
    REACHABLE = 'reachable'
    SYNCING = 'syncing'


class SecondarySync:
    """Cached projection of the primary's state plus a queue of unsent actions.

    Actions are applied optimistically and queued; the queue is sent oldest
    first whenever the primary is reachable. Any authoritative state that
    arrives replaces the projection outright.
    """

    def __init__(self, transport: Transport, widget=None, queue_path: Path = None,
                 clock: Callable[[], datetime] = None):
        self.transport = transport
        self.widget = widget
        self.queue_path = Path(queue_path) if queue_path else None
        self.clock = clock or _utcnow
        self.connection = ConnectionState.DISCONNECTED
        self.day_state: Optional[DayState] = None
        self.authoritative: Optional[DayState] = None
        self.pending: List[Action] = self._load_queue()
        self._last_seq = 0
        self._lock = threading.RLock()

        transport.on_message = self._on_push
        transport.on_transfer = self.receive
        transport.on_context = self.receive
        transport.on_reachability = self.on_reachability_changed

    def activate(self) -> None:
        """Ask for a first snapshot and send anything left from last time."""
        if self.transport.is_reachable:
            self.connection = ConnectionState.REACHABLE
            self.request_snapshot()
            self.flush()
        else:
            self.connection = ConnectionState.DISCONNECTED

    def request_snapshot(self) -> bool:
        try:
            reply = self.transport.send_message(dict(INITIAL_STATE_REQUEST))
        except TransportError as e:
            if DEBUG_SYNC:
                print(f"[Sync] snapshot request failed: {e}")
            self.connection = ConnectionState.DISCONNECTED
            return False
        return self.receive(reply)

    def _on_push(self, payload: dict) -> dict:
        self.receive(payload)
        return {'success': True}

    def receive(self, payload) -> bool:
        """Adopt an authoritative push. Returns False when it was dropped."""
        with self._lock:
            if isinstance(payload, dict) and payload.get('clearSnapshot') is True:
                self.day_state = None
                self.authoritative = None
                self._last_seq = 0
                if self.widget is not None:
                    self.widget.clear()
                return True

            state = DayState.from_dict(payload)
            if state is None:
                if DEBUG_SYNC:
                    print(f"[Sync] dropped malformed state: {payload!r}")
                return False
            if state.seq < self._last_seq:
                if DEBUG_SYNC:
                    print(f"[Sync] ignored stale state seq={state.seq} < {self._last_seq}")
                return False

            self._last_seq = state.seq
            self.authoritative = state
            self.day_state = state
            if self.widget is not None:
                self.widget.save(state)
            return True

    def log_pushups(self, amount: int) -> bool:
        with self._lock:
            current = self.day_state
            if current is None or current.is_complete:
                return False
            amount = max(1, int(amount))
            completed = current.completed + min(amount, current.remaining)
            self.day_state = replace(
                current,
                completed=completed,
                remaining=max(0, current.target - completed),
                is_complete=completed >= current.target,
                can_undo=True,
                timestamp=self.clock(),
            )
            self._enqueue(LogAction(amount=amount, client_timestamp=self.clock()))
            return True

    def undo_last_log(self) -> bool:
        with self._lock:
            current = self.day_state
            if current is None or not current.can_undo:
                return False
            # the real amount is only known to the primary
            completed = max(0, current.completed - 1)
            self.day_state = replace(
                current,
                completed=completed,
                remaining=max(0, current.target - completed),
                is_complete=completed >= current.target,
                can_undo=current.completed > 1,
                timestamp=self.clock(),
            )
            self._enqueue(UndoAction())
            return True

    def _enqueue(self, action: Action) -> None:
        self.pending.append(action)
        self._save_queue()
        if self.transport.is_reachable:
            self.flush()

    def flush(self) -> int:
        """Send queued actions oldest first; stops at the first failure."""
        with self._lock:
            if not self.transport.is_reachable or self.connection == ConnectionState.SYNCING:
                return 0
            self.connection = ConnectionState.SYNCING
            outcome = ConnectionState.REACHABLE
            sent = 0
            try:
                while self.pending:
                    action = self.pending[0]
                    try:
                        reply = self.transport.send_message(action.to_dict())
                    except TransportError as e:
                        print(f"[Sync] failed to send action, keeping it queued: {e}")
                        outcome = ConnectionState.DISCONNECTED
                        break
                    self.pending.pop(0)
                    self._save_queue()
                    sent += 1
                    if reply:
                        self.receive(reply)
            finally:
                # never left in SYNCING, or later flushes would be skipped
                self.connection = outcome
            return sent

    def on_reachability_changed(self, reachable: bool) -> None:
        if reachable:
            if self.connection == ConnectionState.DISCONNECTED:
                self.connection = ConnectionState.REACHABLE
            self.flush()
        else:
            self.connection = ConnectionState.DISCONNECTED

    def _load_queue(self) -> List[Action]:
        if not self.queue_path or not self.queue_path.exists():
            return []
        try:
            with open(self.queue_path, 'r', encoding='utf-8') as fh:
                raw = json.load(fh)
        except (OSError, ValueError) as e:
            print(f"[Sync] unreadable action queue {self.queue_path}: {e}")
            return []
        actions = [parse_action(item) for item in raw] if isinstance(raw, list) else []
        return [a for a in actions if a is not None]

    def _save_queue(self) -> None:
        if not self.queue_path:
            return
        try:
            write_json_atomic(self.queue_path, [a.to_dict() for a in self.pending])
        except OSError as e:
            print(f"[Sync] could not persist action queue: {e}\n{traceback.format_exc()}")
