from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from typing import Any, Iterator

from .runtime import utc_now


def _resolve_db_path(path: str) -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory, the journal file goes inside it.
    """
    p = os.path.abspath(path)
    if os.path.isdir(p):
        p = os.path.join(p, "events.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


class EventLog:
    """Append-only journal of what finks did, kept in SQLite."""

    def __init__(self, path: str, enabled: bool = True):
        self.path = _resolve_db_path(path)
        self.enabled = enabled
        self._initialized = False

    def connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def session(self) -> Iterator[sqlite3.Connection]:
        conn = self.connect()
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def init_db(self) -> None:
        if self._initialized:
            return
        with self.session() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS events (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  ts TEXT NOT NULL,
                  level TEXT NOT NULL,
                  app_name TEXT,
                  message TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
                """
            )
        self._initialized = True

    def log_event(self, level: str, message: str, app_name: str | None = None) -> None:
        if not self.enabled:
            return
        self.init_db()
        with self.session() as conn:
            conn.execute(
                "INSERT INTO events (ts, level, app_name, message) VALUES (?, ?, ?, ?)",
                (utc_now(), level.upper(), app_name, message),
            )

    def latest(self, limit: int = 100, app_name: str | None = None) -> list[dict[str, Any]]:
        self.init_db()
        with self.session() as conn:
            if app_name:
                rows = conn.execute(
                    "SELECT * FROM events WHERE app_name=? ORDER BY id DESC LIMIT ?",
                    (app_name, limit),
                ).fetchall()
            else:
                rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
            return [dict(r) for r in rows]
