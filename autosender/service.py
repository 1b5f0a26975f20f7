import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from .exceptions import InvalidTransitionError, RecordNotFoundError
from .models import Application, QueueTask, CANCELLED, PENDING, is_valid_transition
from .queue import ApplicationQueue
from .repository import ApplicationRecordStore, Page, ResumeStore

logger = logging.getLogger(__name__)


@dataclass
class QueuedApplication:
    id: str
    job_id: str
    status: str
    queued_at: str


@dataclass
class BatchResult:
    batch_id: str
    applications: List[QueuedApplication] = field(default_factory=list)

    @property
    def total_count(self) -> int:
        return len(self.applications)


class AutoSender:
    """Caller-facing operations: queue a batch, cancel, and read application state."""

    def __init__(
        self,
        records: ApplicationRecordStore,
        queue: ApplicationQueue,
        resumes: Optional[ResumeStore] = None,
    ):
        self.records = records
        self.queue = queue
        self.resumes = resumes

    def queue_applications(
        self,
        user_id: str,
        resume_id: str,
        job_ids: Iterable[str],
        cover_letter: Optional[str] = None,
    ) -> BatchResult:
        if self.resumes is not None:
            resume = self.resumes.find_by_id(resume_id)
            if resume is None or resume.user_id != user_id:
                raise RecordNotFoundError("Resume", resume_id)

        batch_id = str(uuid.uuid4())
        result = BatchResult(batch_id=batch_id)
        tasks = []

        for job_id in job_ids:
            existing = self.records.find_active(user_id, job_id)
            if existing:
                logger.warning(
                    "Application already exists for user %s and job %s (%s, %s)",
                    user_id, job_id, existing.id, existing.status,
                )
                continue

            app = self.records.create(
                user_id=user_id,
                job_id=job_id,
                resume_id=resume_id,
                batch_id=batch_id,
                cover_letter=cover_letter,
            )
            result.applications.append(
                QueuedApplication(id=app.id, job_id=job_id, status=app.status, queued_at=app.created_at)
            )
            tasks.append(QueueTask(application_id=app.id, user_id=user_id,
                                   job_id=job_id, resume_id=resume_id))

        self.queue.enqueue_batch(tasks)
        logger.info("Queued %d applications in batch %s", result.total_count, batch_id)
        return result

    def cancel(self, application_id: str, user_id: Optional[str] = None) -> Application:
        app = self._owned(application_id, user_id)
        if not is_valid_transition(app.status, CANCELLED):
            raise InvalidTransitionError(app.status, CANCELLED)

        if app.status == PENDING:
            self.queue.remove_from_queue(application_id)

        app = self.records.update_status(application_id, CANCELLED)
        logger.info("Cancelled application %s", application_id)
        return app

    # ---------- reads ----------
    def get_application(self, application_id: str, user_id: Optional[str] = None) -> Application:
        return self._owned(application_id, user_id)

    def list_applications(
        self,
        user_id: Optional[str] = None,
        *,
        status: Optional[str] = None,
        job_id: Optional[str] = None,
        batch_id: Optional[str] = None,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        return self.records.list(
            user_id, status=status, job_id=job_id, batch_id=batch_id,
            from_date=from_date, to_date=to_date, page=page, limit=limit,
        )

    def get_batch(self, batch_id: str, user_id: Optional[str] = None) -> List[Application]:
        apps = self.records.list_by_batch(batch_id)
        if user_id is not None:
            apps = [a for a in apps if a.user_id == user_id]
        return apps

    def status_counts(self, user_id: Optional[str] = None) -> Dict[str, int]:
        return self.records.counts(user_id)

    def _owned(self, application_id: str, user_id: Optional[str]) -> Application:
        app = self.records.find_by_id(application_id)
        if app is None or (user_id is not None and app.user_id != user_id):
            raise RecordNotFoundError("Application", application_id)
        return app
