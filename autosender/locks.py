import sqlite3
import time
from typing import Callable, Optional

from .db import immediate


class LockStore:
    """
    Keyed, TTL-bounded exclusivity markers in the shared database.

    Expired rows count as absent, so a lock left behind by a crashed
    worker frees itself once its TTL passes.
    """

    def __init__(self, conn: sqlite3.Connection, clock: Callable[[], float] = time.time):
        self.conn = conn
        self._clock = clock

    def set_if_absent(self, key: str, value: str, ttl_seconds: float) -> bool:
        now = self._clock()
        with immediate(self.conn):
            self.conn.execute("DELETE FROM locks WHERE key=? AND expires_at<=?", (key, now))
            cur = self.conn.execute(
                "INSERT OR IGNORE INTO locks(key, value, expires_at) VALUES(?,?,?)",
                (key, value, now + ttl_seconds),
            )
            return cur.rowcount == 1

    def set(self, key: str, value: str, ttl_seconds: float) -> None:
        self.conn.execute(
            "INSERT INTO locks(key, value, expires_at) VALUES(?,?,?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value, expires_at=excluded.expires_at",
            (key, value, self._clock() + ttl_seconds),
        )

    def get(self, key: str) -> Optional[str]:
        row = self.conn.execute(
            "SELECT value FROM locks WHERE key=? AND expires_at>?", (key, self._clock())
        ).fetchone()
        return row["value"] if row else None

    def delete(self, key: str) -> None:
        self.conn.execute("DELETE FROM locks WHERE key=?", (key,))
