import logging
import signal
import threading
import time
from typing import List, Optional

from .adapter import SubmissionAdapter
from .exceptions import InvalidTransitionError, RecordNotFoundError
from .models import (
    ApplicantInfo, ProcessResult, QueueTask, SubmissionPayload,
    FAILED, PENDING, PROCESSING, SUBMITTED, SETTLED_STATUSES,
    APPLICATION_FAILED, APPLICATION_SUBMITTED, BATCH_COMPLETE,
)
from .notifications import Notification, NotificationSink, safe_notify
from .queue import ApplicationQueue
from .repository import ApplicationRecordStore, ProfileStore, ResumeStore
from .storage import FileStorage
from .utils import now_iso

logger = logging.getLogger(__name__)


class ApplicationWorker:
    """
    Polls the shared queue and drives each claimed task to its next status.

    Ticks run strictly one after another on a single background thread.
    Running several workers (threads or processes) against the same database
    is safe; the queue's lock pair keeps them from claiming the same task or
    the same user twice.
    """

    def __init__(
        self,
        queue: ApplicationQueue,
        records: ApplicationRecordStore,
        resumes: ResumeStore,
        profiles: ProfileStore,
        storage: FileStorage,
        adapter: SubmissionAdapter,
        notifier: NotificationSink,
        max_retries: int = 3,
        poll_interval_ms: int = 5000,
        name: str = "worker-1",
    ):
        self.queue = queue
        self.records = records
        self.resumes = resumes
        self.profiles = profiles
        self.storage = storage
        self.adapter = adapter
        self.notifier = notifier
        self.max_retries = max_retries
        self.poll_interval_ms = poll_interval_ms
        self.name = name

        self.is_running = False
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ---------- lifecycle ----------
    def start(self) -> None:
        if self.is_running:
            logger.warning("[%s] Worker is already running", self.name)
            return
        self.is_running = True
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        logger.info("[%s] Application worker started", self.name)

    def request_stop(self) -> None:
        """Signal-safe: clear the running flag and wake the poll loop without waiting."""
        self.is_running = False
        self._stop.set()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop polling. An in-flight tick is allowed to finish."""
        self.request_stop()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
        logger.info("[%s] Application worker stopped", self.name)

    def _run(self) -> None:
        while not self._stop.is_set():
            self.poll()
            self._stop.wait(self.poll_interval_ms / 1000.0)

    def poll(self) -> None:
        if not self.is_running:
            return
        try:
            self.process_queue()
        except Exception:
            logger.exception("[%s] Error in poll cycle", self.name)

    def get_status(self) -> dict:
        return {"is_running": self.is_running, "queue_length": self.queue.get_queue_length()}

    # ---------- one tick ----------
    def process_queue(self) -> Optional[QueueTask]:
        task = self.queue.dequeue()
        if task is None:
            return None

        logger.debug("[%s] Processing application %s", self.name, task.application_id)
        requeued = False
        try:
            self.records.update_status(task.application_id, PROCESSING)
            result = self.process_application(task)

            if result.success:
                self.records.update_status(
                    task.application_id,
                    SUBMITTED,
                    confirmation_id=result.confirmation_id,
                    submitted_at=now_iso(),
                )
                logger.info("[%s] Application %s submitted successfully", self.name, task.application_id)
                self._notify_submitted(task)
                self._notify_batch_if_complete(task.application_id)
            elif result.should_retry:
                requeued = self.handle_retry(task, result.error_message)
            else:
                self.records.update_status(task.application_id, FAILED, error_message=result.error_message)
                logger.warning("[%s] Application %s failed: %s",
                               self.name, task.application_id, result.error_message)
                self._notify_failed(task, result.error_message)
                self._notify_batch_if_complete(task.application_id)
        except (InvalidTransitionError, RecordNotFoundError) as e:
            # Stale or duplicate delivery; the record is already elsewhere in its lifecycle.
            logger.error("[%s] Dropping task for application %s: %s", self.name, task.application_id, e)
        except Exception as e:
            logger.exception("[%s] Error processing application %s", self.name, task.application_id)
            if not requeued and self._still_open(task.application_id):
                requeued = self.handle_retry(task, str(e) or e.__class__.__name__)
        finally:
            # requeue() already released this task's locks; another worker may hold them by now.
            if not requeued:
                self.queue.release_lock(task.application_id, task.user_id)
        return task

    def _still_open(self, application_id: str) -> bool:
        """False once the outcome has been written (submitted, failed or cancelled)."""
        app = self.records.find_by_id(application_id)
        if app is None or app.status in SETTLED_STATUSES:
            logger.error("[%s] Application %s already settled; not retrying", self.name, application_id)
            return False
        return True

    def process_application(self, task: QueueTask) -> ProcessResult:
        app = self.records.find_by_id(task.application_id)
        if app is None:
            return ProcessResult(success=False, should_retry=False, error_message="Application not found")

        resume = self.resumes.find_by_id(app.resume_id)
        if resume is None:
            return ProcessResult(success=False, should_retry=False, error_message="Resume not found")

        profile = self.profiles.find_by_user_id(app.user_id)
        if profile is None:
            return ProcessResult(success=False, should_retry=False, error_message="User profile not found")

        try:
            resume_bytes = self.storage.get_file(resume.storage_key)
        except Exception as e:
            logger.warning("[%s] Could not read resume %s: %s", self.name, resume.storage_key, e)
            return ProcessResult(success=False, should_retry=False, error_message="Failed to download resume file")

        payload = SubmissionPayload(
            resume_file=resume_bytes,
            cover_letter=app.cover_letter,
            applicant=ApplicantInfo(
                first_name=profile.first_name or "",
                last_name=profile.last_name or "",
                email=profile.email or "",
                phone=profile.phone or "",
            ),
        )
        result = self.adapter.submit(app.job_id, payload)
        return ProcessResult(
            success=result.success,
            should_retry=not result.success,
            confirmation_id=result.confirmation_id,
            error_message=result.error_message,
        )

    def handle_retry(self, task: QueueTask, error_message: Optional[str] = None) -> bool:
        """Requeue the task or fail it for good. Returns True when it went back on the queue."""
        retry_count = self.records.increment_retry_count(task.application_id)

        if retry_count <= self.max_retries:
            app = self.records.find_by_id(task.application_id)
            if app is not None and app.status != PENDING:
                self.records.update_status(task.application_id, PENDING, error_message=error_message)
            self.queue.requeue(task)
            logger.info("[%s] Application %s requeued for retry (%d/%d)",
                        self.name, task.application_id, retry_count, self.max_retries)
            return True

        final_message = f"Max retries exceeded. Last error: {error_message}"
        self.records.update_status(task.application_id, FAILED, error_message=final_message)
        logger.warning("[%s] Application %s failed after %d retries",
                       self.name, task.application_id, self.max_retries)
        self._notify_failed(task, final_message)
        self._notify_batch_if_complete(task.application_id)
        return False

    # ---------- notifications ----------
    def _notify_submitted(self, task: QueueTask) -> None:
        safe_notify(self.notifier, task.user_id, Notification(
            type=APPLICATION_SUBMITTED,
            title="Application Submitted",
            message="Your job application has been successfully submitted.",
            data={"applicationId": task.application_id, "jobId": task.job_id},
        ))

    def _notify_failed(self, task: QueueTask, error_message: Optional[str]) -> None:
        safe_notify(self.notifier, task.user_id, Notification(
            type=APPLICATION_FAILED,
            title="Application Failed",
            message=error_message or "Your job application could not be submitted.",
            data={"applicationId": task.application_id, "jobId": task.job_id,
                  "errorMessage": error_message},
        ))

    def _notify_batch_if_complete(self, application_id: str) -> None:
        app = self.records.find_by_id(application_id)
        if app is None:
            return
        batch = self.records.list_by_batch(app.batch_id)
        if any(a.status not in SETTLED_STATUSES for a in batch):
            return

        stats = {
            "total": len(batch),
            "submitted": sum(1 for a in batch if a.status == SUBMITTED),
            "failed": sum(1 for a in batch if a.status == FAILED),
        }
        safe_notify(self.notifier, app.user_id, Notification(
            type=BATCH_COMPLETE,
            title="Batch Applications Complete",
            message=(f"Batch processing complete: {stats['submitted']} submitted, "
                     f"{stats['failed']} failed out of {stats['total']} applications."),
            data={"batchId": app.batch_id, **stats},
        ))


def run_workers(workers: List[ApplicationWorker]) -> None:
    """Start every worker and block until SIGINT/SIGTERM or until all have stopped."""

    def _handler(signum, frame):
        logger.info("Received signal %s. Stopping workers", signum)
        for w in workers:
            w.request_stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _handler)

    for w in workers:
        w.start()
    try:
        # Short waits keep the main thread responsive to signals.
        while any(w.is_running for w in workers):
            time.sleep(0.5)
    finally:
        for w in workers:
            w.stop()
        logger.info("All workers stopped gracefully.")
