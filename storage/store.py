"""
SQLite state store for the bot.
Persists protected names, forgotten branch/PR tracking rows, AFK timers, vacations,
pending reminders and release-bot registrations. The schema is owned by the SQL
bundle in storage/migrations.
"""

import json
import logging
import os
import sqlite3
import threading
import time
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import List, Optional, Tuple

from models import (
    AfkTimer,
    ForgottenBranch,
    ForgottenPullRequest,
    ProtectedName,
    RbAuth,
    Reminder,
    Vacation,
    to_timestamp,
)
from .errors import InternalError, MigrationError, NotFoundError

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = os.path.join(os.path.dirname(__file__), 'migrations')

# noinspection SqlResolve
SQL_CREATE_MIGRATIONS = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    applied_at REAL NOT NULL
);
"""


def _path_from_dsn(dsn: Optional[str]) -> str:
    if not dsn:
        return ':memory:'
    for prefix in ('sqlite:///', 'sqlite://'):
        if dsn.startswith(prefix):
            return dsn[len(prefix):] or ':memory:'
    return dsn


def load_migration_bundle(directory: Optional[str] = None) -> List[Tuple[int, str, str]]:
    """Return [(version, file name, sql)] sorted by file name; version is the 1-based index."""
    directory = directory or MIGRATIONS_DIR
    names = sorted(n for n in os.listdir(directory) if n.endswith('.sql'))
    bundle = []
    for idx, name in enumerate(names, start=1):
        with open(os.path.join(directory, name), 'r', encoding='utf-8') as f:
            bundle.append((idx, name, f.read()))
    return bundle


class StateStore:
    def __init__(self, dsn: Optional[str] = None, migrations_dir: Optional[str] = None):
        """Open the store.

        :param dsn: SQLite file path, ``sqlite:///path`` or None for in-memory.
        :param migrations_dir: override for the migration bundle location (tests).
        """
        self.path = _path_from_dsn(dsn)
        self.migrations_dir = migrations_dir or MIGRATIONS_DIR
        try:
            self.conn = sqlite3.connect(self.path, check_same_thread=False)
        except sqlite3.Error as ex:
            raise InternalError(f"can't open database {self.path}: {ex}") from ex
        self._lock = threading.RLock()
        self._tx_depth = 0
        self._init_db()

    def _init_db(self):
        with self._cursor() as cur:
            cur.executescript(SQL_CREATE_MIGRATIONS)
            self._commit()

    def close(self):
        with self._lock:
            if self.conn is not None:
                try:
                    self.conn.close()
                finally:
                    self.conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @contextmanager
    def _cursor(self):
        with self._lock:
            if self.conn is None:
                raise InternalError("state store is closed")
            try:
                yield self.conn.cursor()
            except sqlite3.Error as ex:
                logger.error("state store query failed: %s", ex)
                raise InternalError(str(ex)) from ex

    def _commit(self):
        if not self._tx_depth:
            self.conn.commit()

    @contextmanager
    def transaction(self):
        """Group several mutations; commit on success, roll back on any exception."""
        with self._lock:
            self._tx_depth += 1
            try:
                yield self
            except Exception:
                self._tx_depth -= 1
                if not self._tx_depth:
                    self.conn.rollback()
                raise
            self._tx_depth -= 1
            if not self._tx_depth:
                try:
                    self.conn.commit()
                except sqlite3.Error as ex:
                    raise InternalError(str(ex)) from ex

    # --- migrations ---

    # noinspection SqlResolve
    def applied_migrations(self) -> List[Tuple[int, str]]:
        with self._cursor() as cur:
            cur.execute('SELECT version, name FROM schema_migrations ORDER BY version')
            return [(int(v), n) for v, n in cur.fetchall()]

    def validate_migrations(self) -> List[Tuple[int, str, str]]:
        """Check applied versions against the bundle and return the pending migrations.

        Raises MigrationError when an applied migration is unknown or renamed, or when a
        bundle migration is missing while a later one has been applied.
        """
        bundle = load_migration_bundle(self.migrations_dir)
        by_version = {v: name for v, name, _ in bundle}
        applied = dict(self.applied_migrations())
        for version, name in applied.items():
            if version not in by_version:
                raise MigrationError(f"applied migration {version} ({name}) is missing from the bundle")
            if by_version[version] != name:
                raise MigrationError(f"migration {version} was applied as {name} but the bundle has {by_version[version]}")
        last_applied = max(applied) if applied else 0
        for version, name, _ in bundle:
            if version < last_applied and version not in applied:
                raise MigrationError(f"migration {version} ({name}) was never applied but {last_applied} was")
        return [m for m in bundle if m[0] not in applied]

    # noinspection SqlResolve
    def apply_migrations(self, pending: List[Tuple[int, str, str]]) -> int:
        for version, name, sql in pending:
            logger.info("applying migration %s (%s)", version, name)
            with self._cursor() as cur:
                try:
                    cur.execute('BEGIN')
                    for statement in (s.strip() for s in sql.split(';')):
                        if statement:
                            cur.execute(statement)
                    cur.execute('INSERT INTO schema_migrations(version, name, applied_at) VALUES (?, ?, ?)', (version, name, time.time()))
                    cur.execute('COMMIT')
                except sqlite3.Error as ex:
                    cur.execute('ROLLBACK')
                    raise MigrationError(f"migration {name} failed: {ex}") from ex
        return len(pending)

    def migrate(self) -> int:
        """Validate the applied schema, then apply pending migrations. Returns how many ran."""
        return self.apply_migrations(self.validate_migrations())

    # --- protected names ---

    # noinspection SqlResolve
    def list_protected_names(self) -> List[ProtectedName]:
        with self._cursor() as cur:
            cur.execute('SELECT name, user_id, comment, created_at FROM protected_names ORDER BY name')
            return [ProtectedName.from_row(r) for r in cur.fetchall()]

    # noinspection SqlResolve
    def create_protected_name(self, item: ProtectedName) -> bool:
        """Insert a protected name. Returns False if the name is already protected."""
        with self._cursor() as cur:
            cur.execute(
                'INSERT OR IGNORE INTO protected_names(name, user_id, comment, created_at) VALUES (?, ?, ?, ?)',
                (item.name, item.user_id, item.comment, to_timestamp(item.created_at)),
            )
            self._commit()
            return cur.rowcount > 0

    # noinspection SqlResolve
    def delete_protected_name(self, name: str) -> int:
        with self._cursor() as cur:
            cur.execute('DELETE FROM protected_names WHERE name = ?', (name,))
            self._commit()
            return cur.rowcount

    # --- forgotten branches ---

    # noinspection SqlResolve
    def list_forgotten_branches(self) -> List[ForgottenBranch]:
        with self._cursor() as cur:
            cur.execute('SELECT repo_slug, name, first_seen_at FROM forgotten_branches')
            return [ForgottenBranch.from_row(r) for r in cur.fetchall()]

    # noinspection SqlResolve
    def create_forgotten_branch(self, row: ForgottenBranch):
        # first_seen_at is never overwritten once the row exists
        with self._cursor() as cur:
            cur.execute(
                'INSERT OR IGNORE INTO forgotten_branches(repo_slug, name, first_seen_at) VALUES (?, ?, ?)',
                (row.repo_slug, row.name, to_timestamp(row.first_seen_at)),
            )
            self._commit()

    # noinspection SqlResolve
    def delete_forgotten_branch(self, repo_slug: str, name: str) -> int:
        with self._cursor() as cur:
            cur.execute('DELETE FROM forgotten_branches WHERE repo_slug = ? AND name = ?', (repo_slug, name))
            self._commit()
            return cur.rowcount

    # --- forgotten pull requests ---

    # noinspection SqlResolve
    def list_forgotten_pull_requests(self) -> List[ForgottenPullRequest]:
        with self._cursor() as cur:
            cur.execute('SELECT repo_slug, pull_request_id, first_seen_at FROM forgotten_pull_requests')
            return [ForgottenPullRequest.from_row(r) for r in cur.fetchall()]

    # noinspection SqlResolve
    def create_forgotten_pull_request(self, row: ForgottenPullRequest):
        with self._cursor() as cur:
            cur.execute(
                'INSERT OR IGNORE INTO forgotten_pull_requests(repo_slug, pull_request_id, first_seen_at) VALUES (?, ?, ?)',
                (row.repo_slug, row.pull_request_id, to_timestamp(row.first_seen_at)),
            )
            self._commit()

    # noinspection SqlResolve
    def delete_forgotten_pull_request(self, repo_slug: str, pull_request_id: int) -> int:
        with self._cursor() as cur:
            cur.execute('DELETE FROM forgotten_pull_requests WHERE repo_slug = ? AND pull_request_id = ?', (repo_slug, int(pull_request_id)))
            self._commit()
            return cur.rowcount

    # --- AFK timers ---

    # noinspection SqlResolve
    def upsert_afk_timer(self, timer: AfkTimer):
        with self._cursor() as cur:
            cur.execute(
                'REPLACE INTO afk_timers(user_id, duration, updated_at) VALUES (?, ?, ?)',
                (timer.user_id, int(timer.duration.total_seconds()), to_timestamp(timer.updated_at)),
            )
            self._commit()

    # noinspection SqlResolve
    def get_afk_timer(self, user_id: str) -> AfkTimer:
        with self._cursor() as cur:
            cur.execute('SELECT user_id, duration, updated_at FROM afk_timers WHERE user_id = ?', (user_id,))
            row = cur.fetchone()
        if not row:
            raise NotFoundError(f"afk timer for {user_id} not found")
        return AfkTimer.from_row(row)

    # noinspection SqlResolve
    def list_afk_timers(self) -> List[AfkTimer]:
        with self._cursor() as cur:
            cur.execute('SELECT user_id, duration, updated_at FROM afk_timers')
            return [AfkTimer.from_row(r) for r in cur.fetchall()]

    # noinspection SqlResolve
    def delete_afk_timer(self, user_id: str) -> int:
        with self._cursor() as cur:
            cur.execute('DELETE FROM afk_timers WHERE user_id = ?', (user_id,))
            self._commit()
            return cur.rowcount

    # --- vacations ---

    # noinspection SqlResolve
    def upsert_vacation(self, vacation: Vacation):
        with self._cursor() as cur:
            cur.execute(
                'REPLACE INTO vacations(user_id, date_start, date_end, message) VALUES (?, ?, ?, ?)',
                (vacation.user_id, vacation.date_start.isoformat(), vacation.date_end.isoformat(), vacation.message),
            )
            self._commit()

    # noinspection SqlResolve
    def get_vacation(self, user_id: str) -> Vacation:
        with self._cursor() as cur:
            cur.execute('SELECT user_id, date_start, date_end, message FROM vacations WHERE user_id = ?', (user_id,))
            row = cur.fetchone()
        if not row:
            raise NotFoundError(f"vacation for {user_id} not found")
        return Vacation.from_row(row)

    # noinspection SqlResolve
    def get_active_vacations(self, as_of) -> List[Vacation]:
        """Vacations covering the given day (a date, or a datetime taken in UTC)."""
        if isinstance(as_of, datetime):
            as_of = as_of.astimezone(timezone.utc).date()
        day = as_of.isoformat() if isinstance(as_of, date) else str(as_of)
        with self._cursor() as cur:
            cur.execute('SELECT user_id, date_start, date_end, message FROM vacations WHERE date_start <= ? AND date_end >= ?', (day, day))
            return [Vacation.from_row(r) for r in cur.fetchall()]

    # noinspection SqlResolve
    def delete_vacation(self, user_id: str) -> int:
        with self._cursor() as cur:
            cur.execute('DELETE FROM vacations WHERE user_id = ?', (user_id,))
            self._commit()
            return cur.rowcount

    # --- reminders ---

    # noinspection SqlResolve
    def create_reminder(self, reminder: Reminder) -> int:
        with self._cursor() as cur:
            cur.execute(
                'INSERT INTO reminders(user_id, channel_id, thread_ts, reply_count, message, created_at) VALUES (?, ?, ?, ?, ?, ?)',
                (reminder.user_id, reminder.channel_id, reminder.thread_ts, reminder.reply_count, reminder.message, to_timestamp(reminder.created_at)),
            )
            self._commit()
            reminder.id = cur.lastrowid
            return reminder.id

    # noinspection SqlResolve
    def list_pending_reminders(self) -> List[Reminder]:
        with self._cursor() as cur:
            cur.execute('SELECT id, user_id, channel_id, thread_ts, reply_count, message, created_at FROM reminders ORDER BY id')
            return [Reminder.from_row(r) for r in cur.fetchall()]

    # noinspection SqlResolve
    def delete_reminder(self, reminder_id: int) -> int:
        with self._cursor() as cur:
            cur.execute('DELETE FROM reminders WHERE id = ?', (reminder_id,))
            self._commit()
            return cur.rowcount

    # --- release-bot registrations ---

    # noinspection SqlResolve
    def get_rb_auth(self, tg_user_id: int) -> RbAuth:
        with self._cursor() as cur:
            cur.execute(
                'SELECT tg_user_id, username, first_name, last_name, title, projects, updated_at FROM rb_auth WHERE tg_user_id = ?',
                (int(tg_user_id),),
            )
            row = cur.fetchone()
        if not row:
            raise NotFoundError(f"release bot user {tg_user_id} not registered")
        return RbAuth.from_row(row)

    # noinspection SqlResolve
    def upsert_rb_auth(self, auth: RbAuth):
        with self._cursor() as cur:
            cur.execute(
                'REPLACE INTO rb_auth(tg_user_id, username, first_name, last_name, title, projects, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?)',
                (auth.tg_user_id, auth.username, auth.first_name, auth.last_name, auth.title, json.dumps(auth.projects), to_timestamp(auth.updated_at)),
            )
            self._commit()


__all__ = ["StateStore", "load_migration_bundle", "MIGRATIONS_DIR"]
