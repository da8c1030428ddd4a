from datetime import date

import pymysql
import pytest

from push365.models import DayRecord, ProgramSettings
from push365.mysql_storage import MySQLRecordStore
from push365.storage import StoreError


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self.rows = []

    def execute(self, sql, params=None):
        if self.conn.fail_on and self.conn.fail_on in sql:
            raise pymysql.err.OperationalError(2013, 'Lost connection')
        self.conn.statements.append((' '.join(sql.split()), params))
        self.rows = []

    def fetchone(self):
        return None

    def fetchall(self):
        return []


class FakeConnection:
    def __init__(self, log):
        self.statements = log['statements']
        self.fail_on = log.get('fail_on')
        self.log = log

    def cursor(self, *args):
        return FakeCursor(self)

    def commit(self):
        self.log['commits'] += 1

    def rollback(self):
        self.log['rollbacks'] += 1

    def close(self):
        pass


@pytest.fixture
def db(monkeypatch):
    log = {'statements': [], 'commits': 0, 'rollbacks': 0, 'fail_on': None}
    monkeypatch.setattr(pymysql, 'connect', lambda **kwargs: FakeConnection(log))
    return log


def test_tables_created_on_init(db):
    MySQLRecordStore({'host': 'db', 'user': 'u', 'password': 'p', 'database': 'push365'})
    created = [sql for sql, _ in db['statements'] if sql.startswith('CREATE TABLE')]
    assert len(created) == 3
    assert db['commits'] == 1


def test_only_changed_records_are_written(db):
    store = MySQLRecordStore({'host': 'db'})
    with store.transaction():
        store.insert(ProgramSettings(program_start_date=date(2026, 1, 1)))
        store.insert(DayRecord(date_key=date(2026, 1, 1), day_number=1, target=1))
        store.insert(DayRecord(date_key=date(2026, 1, 2), day_number=2, target=2))

    db['statements'].clear()
    with store.transaction():
        store.fetch_record(date(2026, 1, 2)).completed = 1
    replaced = [params for sql, params in db['statements'] if sql.startswith('REPLACE INTO day_records')]
    assert [p[0] for p in replaced] == ['2026-01-02']


def test_failed_write_rolls_back(db):
    store = MySQLRecordStore({'host': 'db'})
    db['fail_on'] = 'REPLACE INTO'
    with pytest.raises(StoreError):
        with store.transaction():
            store.insert(DayRecord(date_key=date(2026, 1, 1), day_number=1, target=1))
    assert db['rollbacks'] == 1
    assert store.fetch_record(date(2026, 1, 1)) is None
