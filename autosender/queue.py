import logging
import sqlite3
from dataclasses import replace
from typing import Iterable, List, Optional, Tuple

from .db import immediate
from .locks import LockStore
from .models import QueueTask
from .utils import now_iso

logger = logging.getLogger(__name__)

PROCESSING_LOCK_PREFIX = "processing:"
USER_PROCESSING_PREFIX = "user_processing:"
LOCK_TTL_SECONDS = 300
LOOKAHEAD = 10


class ApplicationQueue:
    """
    Durable FIFO of pending submissions shared by every worker on the database.

    dequeue() only hands out a task when both its application lock and its
    user's lock can be taken, so one user never has two submissions in flight.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        locks: Optional[LockStore] = None,
        lock_ttl_seconds: int = LOCK_TTL_SECONDS,
        lookahead: int = LOOKAHEAD,
    ):
        self.conn = conn
        self.locks = locks or LockStore(conn)
        self.lock_ttl_seconds = lock_ttl_seconds
        self.lookahead = lookahead

    # ---------- write side ----------
    def enqueue(self, task: QueueTask) -> None:
        self.conn.execute("INSERT INTO queue(payload) VALUES(?)", (task.to_json(),))
        logger.debug("Enqueued application %s for user %s", task.application_id, task.user_id)

    def enqueue_batch(self, tasks: Iterable[QueueTask]) -> None:
        rows = [(t.to_json(),) for t in tasks]
        if not rows:
            return
        with immediate(self.conn):
            self.conn.executemany("INSERT INTO queue(payload) VALUES(?)", rows)
        logger.debug("Enqueued %d applications", len(rows))

    def dequeue(self) -> Optional[QueueTask]:
        """Claim the first eligible task within the lookahead window, or None."""
        with immediate(self.conn):
            for seq, task in self._scan(limit=self.lookahead):
                user_key = USER_PROCESSING_PREFIX + task.user_id
                if self.locks.get(user_key) is not None:
                    continue

                app_key = PROCESSING_LOCK_PREFIX + task.application_id
                if not self.locks.set_if_absent(app_key, "1", self.lock_ttl_seconds):
                    continue

                self.locks.set(user_key, task.application_id, self.lock_ttl_seconds)
                self.conn.execute("DELETE FROM queue WHERE seq=?", (seq,))
                logger.debug("Dequeued application %s for processing", task.application_id)
                return task
        return None

    def release_lock(self, application_id: str, user_id: str) -> None:
        with immediate(self.conn):
            self.locks.delete(PROCESSING_LOCK_PREFIX + application_id)
            self.locks.delete(USER_PROCESSING_PREFIX + user_id)
        logger.debug("Released lock for application %s", application_id)

    def requeue(self, task: QueueTask) -> None:
        """Release the task's locks and put it back at the tail in one transaction."""
        with immediate(self.conn):
            self.release_lock(task.application_id, task.user_id)
            self.enqueue(replace(task, queued_at=now_iso()))
        logger.debug("Re-queued application %s", task.application_id)

    def remove_from_queue(self, application_id: str) -> bool:
        with immediate(self.conn):
            for seq, task in self._scan():
                if task.application_id == application_id:
                    self.conn.execute("DELETE FROM queue WHERE seq=?", (seq,))
                    logger.debug("Removed application %s from queue", application_id)
                    return True
        return False

    # ---------- read side ----------
    def is_processing(self, application_id: str) -> bool:
        return self.locks.get(PROCESSING_LOCK_PREFIX + application_id) is not None

    def is_user_processing(self, user_id: str) -> bool:
        return self.locks.get(USER_PROCESSING_PREFIX + user_id) is not None

    def get_queue_length(self) -> int:
        return self.conn.execute("SELECT COUNT(1) AS c FROM queue").fetchone()["c"]

    def get_queue_items(self, offset: int = 0, limit: Optional[int] = None) -> List[QueueTask]:
        return [task for _, task in self._scan(offset=offset, limit=limit)]

    def _scan(self, offset: int = 0, limit: Optional[int] = None) -> List[Tuple[int, QueueTask]]:
        rows = self.conn.execute(
            "SELECT seq, payload FROM queue ORDER BY seq ASC LIMIT ? OFFSET ?",
            (-1 if limit is None else limit, offset),
        ).fetchall()
        out = []
        for row in rows:
            try:
                out.append((row["seq"], QueueTask.from_json(row["payload"])))
            except (ValueError, KeyError, TypeError) as e:
                logger.error("Failed to deserialize queue item %s: %s", row["seq"], e)
        return out
