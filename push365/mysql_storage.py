import os
import traceback
from contextlib import contextmanager
from typing import Dict, Optional

import pymysql

from .storage import DEBUG_DB, RecordStore


class MySQLRecordStore(RecordStore):
    """Same unit of work as the JSON store, persisted to MySQL.

    A save writes only the records that changed since the last commit, and
    does so inside one transaction.
    """

    def __init__(self, connection_config: Dict[str, str] = None):
        super().__init__()
        if connection_config is None:
            self.config = {
                'host': os.environ.get('MYSQL_HOST', 'localhost'),
                'user': os.environ.get('MYSQL_USER', 'push365_user'),
                'password': os.environ.get('MYSQL_PASSWORD', 'secure_password_here'),
                'database': os.environ.get('MYSQL_DATABASE', 'push365_db'),
                'charset': 'utf8mb4',
            }
        else:
            self.config = dict(connection_config)
        self.config['autocommit'] = False

        self._create_tables()

    @contextmanager
    def get_connection(self):
        """Context manager for database connections"""
        connection = None
        try:
            if DEBUG_DB:
                print(f"[DB] Connecting host={self.config.get('host')} user={self.config.get('user')} "
                      f"database={self.config.get('database')}")
            connection = pymysql.connect(**self.config)
            yield connection
        except Exception as e:
            print(f"[DB] Connection error: {e}\n{traceback.format_exc()}")
            if connection:
                try:
                    connection.rollback()
                except Exception:
                    pass
            raise
        finally:
            if connection:
                try:
                    connection.close()
                except Exception:
                    pass

    def _create_tables(self):
        """Create database tables if they don't exist"""
        with self.get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS program_settings (
                    id VARCHAR(32) PRIMARY KEY,
                    program_start_date DATE NOT NULL,
                    tracking_start_date DATE,
                    mode ENUM('strict', 'flexible') NOT NULL DEFAULT 'flexible',
                    current_streak INT NOT NULL DEFAULT 0,
                    longest_streak INT NOT NULL DEFAULT 0,
                    last_completed_date_key DATE NULL,
                    last_streak_evaluated_date_key DATE NULL,
                    last_completed_target INT NOT NULL DEFAULT 0,
                    notifications_enabled BOOLEAN DEFAULT TRUE,
                    morning_hour INT DEFAULT 8,
                    morning_minute INT DEFAULT 0,
                    reminder_hour INT DEFAULT 18,
                    reminder_minute INT DEFAULT 0,
                    date_format_preference VARCHAR(16) DEFAULT 'automatic',
                    display_name VARCHAR(255) NULL,
                    has_completed_onboarding BOOLEAN DEFAULT FALSE,
                    created_at VARCHAR(40) NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS day_records (
                    date_key DATE PRIMARY KEY,
                    id VARCHAR(32) NOT NULL,
                    day_number INT NOT NULL,
                    target INT NOT NULL,
                    completed INT NOT NULL DEFAULT 0
                )
            """)

            # timestamps are stored as ISO strings so the zone offset survives
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS log_entries (
                    id VARCHAR(32) PRIMARY KEY,
                    date_key DATE NOT NULL,
                    position INT NOT NULL,
                    timestamp VARCHAR(40) NOT NULL,
                    amount INT NOT NULL,
                    FOREIGN KEY (date_key) REFERENCES day_records(date_key) ON DELETE CASCADE,
                    INDEX idx_date_key (date_key)
                )
            """)

            conn.commit()

    def _read_all(self):
        with self.get_connection() as conn:
            cursor = conn.cursor(pymysql.cursors.DictCursor)

            cursor.execute("SELECT * FROM program_settings LIMIT 1")
            settings: Optional[dict] = cursor.fetchone()

            cursor.execute("SELECT id, date_key, day_number, target, completed FROM day_records ORDER BY date_key")
            records = {row['date_key']: dict(row, logs=[]) for row in cursor.fetchall()}

            cursor.execute("SELECT id, date_key, timestamp, amount FROM log_entries ORDER BY date_key, position")
            for row in cursor.fetchall():
                record = records.get(row['date_key'])
                if record is not None:
                    record['logs'].append({'id': row['id'], 'timestamp': row['timestamp'], 'amount': row['amount']})

            if DEBUG_DB:
                print(f"[DB] loaded settings={'yes' if settings else 'no'} records={len(records)}")
            return settings, list(records.values())

    def _write_all(self, settings, records, changed, deleted):
        with self.get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute("DELETE FROM program_settings")
            if settings is not None:
                columns = list(settings.keys())
                cursor.execute(
                    f"INSERT INTO program_settings ({', '.join(columns)}) "
                    f"VALUES ({', '.join(['%s'] * len(columns))})",
                    [settings[c] for c in columns],
                )

            for key in deleted:
                cursor.execute("DELETE FROM day_records WHERE date_key = %s", (key,))

            for record in changed:
                cursor.execute(
                    """
                    REPLACE INTO day_records (date_key, id, day_number, target, completed)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (record['date_key'], record['id'], record['day_number'], record['target'], record['completed']),
                )
                cursor.execute("DELETE FROM log_entries WHERE date_key = %s", (record['date_key'],))
                for position, entry in enumerate(record['logs']):
                    cursor.execute(
                        """
                        INSERT INTO log_entries (id, date_key, position, timestamp, amount)
                        VALUES (%s, %s, %s, %s, %s)
                        """,
                        (entry['id'], record['date_key'], position, entry['timestamp'], entry['amount']),
                    )

            conn.commit()
            if DEBUG_DB:
                print(f"[DB] committed changed={len(changed)} deleted={len(deleted)}")
