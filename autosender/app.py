import sqlite3
from dataclasses import dataclass
from typing import Optional

from .adapter import HttpSubmissionAdapter, SubmissionAdapter
from .config import Settings, api_key
from .db import connect_db, init_db
from .locks import LockStore
from .notifications import LoggingNotificationSink, NotificationSink
from .queue import ApplicationQueue
from .repository import ApplicationRecordStore, ProfileStore, ResumeStore, get_config
from .service import AutoSender
from .storage import FileStorage, LocalFileStorage
from .worker import ApplicationWorker


@dataclass
class App:
    conn: sqlite3.Connection
    settings: Settings
    queue: ApplicationQueue
    records: ApplicationRecordStore
    resumes: ResumeStore
    profiles: ProfileStore
    storage: FileStorage
    adapter: SubmissionAdapter
    notifier: NotificationSink
    service: AutoSender
    worker: ApplicationWorker

    def close(self) -> None:
        self.worker.stop()
        self.conn.close()


def build_app(
    path: Optional[str] = None,
    *,
    settings: Optional[Settings] = None,
    adapter: Optional[SubmissionAdapter] = None,
    storage: Optional[FileStorage] = None,
    notifier: Optional[NotificationSink] = None,
    worker_name: str = "worker-1",
) -> App:
    """Wire one connection's worth of components. Each worker process or thread gets its own App."""
    init_db(path)
    conn = connect_db(path)
    settings = settings or Settings.from_config(get_config(conn))

    queue = ApplicationQueue(
        conn,
        LockStore(conn),
        lock_ttl_seconds=settings.lock_ttl_seconds,
        lookahead=settings.lookahead,
    )
    records = ApplicationRecordStore(conn)
    resumes = ResumeStore(conn)
    profiles = ProfileStore(conn)
    storage = storage or LocalFileStorage(settings.storage_dir)
    adapter = adapter or HttpSubmissionAdapter(
        settings.submission_api_url,
        api_key(),
        retry_config=settings.retry_config(),
        breaker_config=settings.breaker_config(),
    )
    notifier = notifier or LoggingNotificationSink()

    service = AutoSender(records, queue, resumes)
    worker = ApplicationWorker(
        queue, records, resumes, profiles, storage, adapter, notifier,
        max_retries=settings.max_retries,
        poll_interval_ms=settings.poll_interval_ms,
        name=worker_name,
    )
    return App(conn, settings, queue, records, resumes, profiles, storage,
               adapter, notifier, service, worker)
