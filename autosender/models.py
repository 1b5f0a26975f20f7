import json
from dataclasses import dataclass, field, asdict
from typing import Dict, FrozenSet, List, Optional

from .utils import now_iso

# Application states
PENDING = "pending"
PROCESSING = "processing"
SUBMITTED = "submitted"
FAILED = "failed"
CANCELLED = "cancelled"

STATUSES = (PENDING, PROCESSING, SUBMITTED, FAILED, CANCELLED)
TERMINAL_STATUSES = frozenset({SUBMITTED, CANCELLED})

# A record in one of these states does not block a new application for the same job.
INACTIVE_STATUSES = frozenset({FAILED, CANCELLED})

# Batch is finished once every record is in one of these.
SETTLED_STATUSES = frozenset({SUBMITTED, FAILED, CANCELLED})

VALID_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    PENDING: frozenset({PROCESSING, CANCELLED}),
    PROCESSING: frozenset({SUBMITTED, FAILED, PENDING}),
    SUBMITTED: frozenset(),
    FAILED: frozenset({PENDING}),
    CANCELLED: frozenset(),
}


def is_valid_transition(current: str, new: str) -> bool:
    return new in VALID_TRANSITIONS.get(current, frozenset())


# Notification types
APPLICATION_SUBMITTED = "application_submitted"
APPLICATION_FAILED = "application_failed"
BATCH_COMPLETE = "batch_complete"


@dataclass
class QueueTask:
    application_id: str
    user_id: str
    job_id: str
    resume_id: str
    queued_at: str = field(default_factory=now_iso)

    def to_json(self) -> str:
        return json.dumps({
            "applicationId": self.application_id,
            "userId": self.user_id,
            "jobId": self.job_id,
            "resumeId": self.resume_id,
            "queuedAt": self.queued_at,
        })

    @classmethod
    def from_json(cls, raw: str) -> "QueueTask":
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("queue entry is not a JSON object")
        values = [data[k] for k in ("applicationId", "userId", "jobId", "resumeId", "queuedAt")]
        if not all(isinstance(v, str) for v in values):
            raise ValueError("queue entry fields must be strings")
        return cls(*values)


@dataclass
class Application:
    id: str
    user_id: str
    job_id: str
    resume_id: str
    batch_id: str
    status: str = PENDING
    retry_count: int = 0
    submitted_at: Optional[str] = None
    confirmation_id: Optional[str] = None
    error_message: Optional[str] = None
    cover_letter: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_row(cls, row) -> "Application":
        return cls(**{k: row[k] for k in row.keys()})

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Resume:
    id: str
    user_id: str
    storage_key: str
    title: str = ""


@dataclass
class Profile:
    user_id: str
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""


@dataclass
class ApplicantInfo:
    first_name: str
    last_name: str
    email: str
    phone: str


@dataclass
class SubmissionPayload:
    resume_file: bytes
    applicant: ApplicantInfo
    cover_letter: Optional[str] = None


@dataclass
class SubmissionResult:
    success: bool
    confirmation_id: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class JobPosting:
    id: str
    title: str
    company: str
    location: str
    description: str = ""
    requirements: List[str] = field(default_factory=list)
    category: str = "general"
    experience_level: str = "mid"
    posted_at: Optional[str] = None
    application_url: str = ""


@dataclass
class ProcessResult:
    success: bool
    should_retry: bool = False
    confirmation_id: Optional[str] = None
    error_message: Optional[str] = None
