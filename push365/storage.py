import json
import os
import tempfile
import traceback
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .models import DayRecord, LogEntry, ProgramSettings

DEBUG_DB = os.environ.get('PUSH365_DEBUG_DB', '0') in {'1', 'true', 'True', 'yes'}

FILE_VERSION = 1


class StoreError(Exception):
    """Persistence failed; nothing was committed."""


def write_json_atomic(path: Path, data) -> None:
    """Write JSON next to `path` and rename it into place."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix='.push365-', suffix='.json', dir=str(path.parent))
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as fh:
            json.dump(data, fh, indent=2, ensure_ascii=False)
        os.replace(tmp, path)
    except Exception:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


class RecordStore:
    """Unit of work over the settings singleton and the day records.

    Objects handed out by the fetch methods are live: mutate them, then call
    save() to commit everything in one write. A failed save rolls the store
    back to the last committed state and raises StoreError. Subclasses only
    provide _read_all() and _write_all().
    """

    def __init__(self):
        self._settings: Optional[ProgramSettings] = None
        self._records: Dict[date, DayRecord] = {}
        self._committed: Dict[date, dict] = {}
        self._deleted = set()
        self._loaded = False

    # backend hooks

    def _read_all(self):
        """Return (settings dict or None, list of record dicts)."""
        raise NotImplementedError

    def _write_all(self, settings: Optional[dict], records: List[dict], changed: List[dict], deleted: List[date]):
        raise NotImplementedError

    # loading

    def _ensure_loaded(self):
        if self._loaded:
            return
        try:
            settings, records = self._read_all()
            self._settings = ProgramSettings.from_dict(settings) if settings else None
            self._records = {}
            for raw in records:
                record = DayRecord.from_dict(raw)
                self._records[record.date_key] = record
        except StoreError:
            raise
        except Exception as e:
            print(f"[DB] Load error: {e}\n{traceback.format_exc()}")
            raise StoreError(f'could not load records: {e}') from e
        self._committed = {k: r.to_dict() for k, r in self._records.items()}
        self._deleted = set()
        self._loaded = True

    # queries

    def fetch_settings(self) -> Optional[ProgramSettings]:
        self._ensure_loaded()
        return self._settings

    def fetch_records(self, predicate: Callable[[DayRecord], bool] = None) -> List[DayRecord]:
        """All day records, oldest first, optionally filtered."""
        self._ensure_loaded()
        records = [self._records[k] for k in sorted(self._records)]
        if predicate is not None:
            records = [r for r in records if predicate(r)]
        return records

    def fetch_record(self, key: date) -> Optional[DayRecord]:
        self._ensure_loaded()
        return self._records.get(key)

    # mutations

    def insert(self, obj):
        self._ensure_loaded()
        if isinstance(obj, ProgramSettings):
            if self._settings is not None and self._settings is not obj:
                raise StoreError('settings already exist')
            self._settings = obj
        elif isinstance(obj, DayRecord):
            existing = self._records.get(obj.date_key)
            if existing is not None and existing is not obj:
                raise StoreError(f'a record for {obj.date_key} already exists')
            self._records[obj.date_key] = obj
            self._deleted.discard(obj.date_key)
        else:
            raise TypeError(f'cannot insert {type(obj).__name__}')

    def delete(self, obj):
        self._ensure_loaded()
        if isinstance(obj, ProgramSettings):
            if self._settings is obj:
                self._settings = None
        elif isinstance(obj, DayRecord):
            if self._records.get(obj.date_key) is obj:
                del self._records[obj.date_key]
                if obj.date_key in self._committed:
                    self._deleted.add(obj.date_key)
        elif isinstance(obj, LogEntry):
            for record in self._records.values():
                for i, entry in enumerate(record.logs):
                    if entry is obj:
                        del record.logs[i]
                        return
        else:
            raise TypeError(f'cannot delete {type(obj).__name__}')

    def save(self):
        self._ensure_loaded()
        try:
            all_records = {k: self._records[k].to_dict() for k in sorted(self._records)}
            changed = [d for k, d in all_records.items() if self._committed.get(k) != d]
            deleted = sorted(self._deleted)
            settings = self._settings.to_dict() if self._settings is not None else None
            if DEBUG_DB:
                print(f"[DB] save records={len(all_records)} changed={len(changed)} deleted={len(deleted)}")
            self._write_all(settings, list(all_records.values()), changed, deleted)
        except Exception as e:
            print(f"[DB] Save error: {e}\n{traceback.format_exc()}")
            self.rollback()
            if isinstance(e, StoreError):
                raise
            raise StoreError(f'could not save records: {e}') from e
        self._committed = all_records
        self._deleted = set()

    def rollback(self):
        """Drop uncommitted changes; the next access reloads from the backend."""
        self._loaded = False
        self._settings = None
        self._records = {}
        self._committed = {}
        self._deleted = set()

    @contextmanager
    def transaction(self):
        """Commit on success, roll back and re-raise on any error."""
        try:
            yield self
        except Exception:
            self.rollback()
            raise
        self.save()


class JSONRecordStore(RecordStore):
    """Records kept in a single JSON file, replaced atomically on save."""

    def __init__(self, path: Path):
        super().__init__()
        self.path = Path(path)

    def _read_all(self):
        if not self.path.exists():
            return None, []
        try:
            with open(self.path, 'r', encoding='utf-8') as fh:
                data = json.load(fh)
        except (OSError, ValueError) as e:
            raise StoreError(f'unreadable store {self.path}: {e}') from e
        return data.get('settings'), data.get('records', [])

    def _write_all(self, settings, records, changed, deleted):
        write_json_atomic(self.path, {'version': FILE_VERSION, 'settings': settings, 'records': records})


class MemoryRecordStore(RecordStore):
    """Keeps committed state in memory only."""

    def __init__(self):
        super().__init__()
        self._saved_settings = None
        self._saved_records = []

    def _read_all(self):
        return (dict(self._saved_settings) if self._saved_settings else None,
                json.loads(json.dumps(self._saved_records)))

    def _write_all(self, settings, records, changed, deleted):
        self._saved_settings = settings
        self._saved_records = json.loads(json.dumps(records))
