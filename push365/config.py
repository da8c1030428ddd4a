import os
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .days import local_zone


class ConfigError(Exception):
    pass


def load_env_file(path: Path) -> int:
    """Read KEY=VALUE lines into os.environ without overriding what is set."""
    path = Path(path)
    if not path.exists():
        return 0
    count = 0
    with open(path, 'r', encoding='utf-8') as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith('#') or '=' not in line:
                continue
            key, value = line.split('=', 1)
            key, value = key.strip(), value.strip().strip('"').strip("'")
            if key and key not in os.environ:
                os.environ[key] = value
                count += 1
    return count


def calendar_zone():
    name = os.environ.get('PUSH365_TZ')
    if not name:
        return local_zone()
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(f'unknown time zone {name!r}') from e


def data_path() -> Path:
    return Path(os.environ.get('PUSH365_DATA', str(Path.home() / '.push365.json'))).expanduser()


def widget_dir() -> Path:
    return Path(os.environ.get('PUSH365_WIDGET_DIR', str(Path.home() / '.push365-widget'))).expanduser()


def queue_path() -> Path:
    return Path(os.environ.get('PUSH365_QUEUE', str(Path.home() / '.push365-queue.json'))).expanduser()


def primary_url() -> str:
    return os.environ.get('PUSH365_PRIMARY_URL', 'http://127.0.0.1:8080').rstrip('/')


def http_timeout() -> float:
    raw = os.environ.get('PUSH365_HTTP_TIMEOUT', '5')
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f'PUSH365_HTTP_TIMEOUT must be a number, got {raw!r}') from e


def make_store():
    """Record store selected by PUSH365_STORE."""
    kind = os.environ.get('PUSH365_STORE', 'json').lower()
    if kind == 'json':
        from .storage import JSONRecordStore
        return JSONRecordStore(data_path())
    if kind == 'mysql':
        from .mysql_storage import MySQLRecordStore
        return MySQLRecordStore()
    raise ConfigError(f'PUSH365_STORE must be json or mysql, got {kind!r}')
