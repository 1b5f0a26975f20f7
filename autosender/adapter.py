"""
Job board adapter.

Both remote capabilities run as `breaker.execute(with_retry(call))`: the retry
loop absorbs transient blips, and only an exhausted retry sequence counts as
one failure against that capability's breaker.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

import requests

from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from .exceptions import SubmissionError
from .models import JobPosting, SubmissionPayload, SubmissionResult
from .retry import DEFAULT_RETRY_CONFIG, RetryConfig, with_retry

EXPERIENCE_LEVELS = {
    "entry": "entry",
    "junior": "entry",
    "mid": "mid",
    "middle": "mid",
    "intermediate": "mid",
    "senior": "senior",
    "lead": "lead",
    "principal": "lead",
    "staff": "lead",
}


@dataclass
class SearchParams:
    query: Optional[str] = None
    location: Optional[str] = None
    category: Optional[str] = None
    page: int = 1


class SubmissionAdapter(ABC):
    @abstractmethod
    def submit(self, job_id: str, payload: SubmissionPayload) -> SubmissionResult:
        """Submit one application. Never raises; failures come back as success=False."""

    @abstractmethod
    def fetch(self, params: SearchParams) -> List[JobPosting]:
        pass


class HttpSubmissionAdapter(SubmissionAdapter):
    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        retry_config: RetryConfig = DEFAULT_RETRY_CONFIG,
        breaker_config: Optional[CircuitBreakerConfig] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 30,
        sleep: Optional[Callable[[float], Any]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.retry_config = retry_config
        self.session = session or requests.Session()
        self.timeout = timeout
        self.logger = logging.getLogger(self.__class__.__name__)
        self._sleep = sleep
        self.cached_jobs: List[JobPosting] = []

        # Job listing falls back to the last good result; submission has no fallback.
        self.fetch_breaker: CircuitBreaker[List[JobPosting]] = CircuitBreaker(
            "jobs-fetch", breaker_config, fallback=self._fallback_jobs,
        )
        self.submit_breaker: CircuitBreaker[SubmissionResult] = CircuitBreaker(
            "application-submit", breaker_config,
        )

    # ---------- fetch ----------
    def fetch(self, params: SearchParams) -> List[JobPosting]:
        self.logger.debug("Fetching jobs with params: %s", params)

        def guarded():
            result = with_retry(lambda: self._do_fetch(params), self.retry_config,
                                log=self.logger, sleep=self._sleep)
            if not result.success:
                self.logger.error("Failed to fetch jobs after %d attempts", result.attempts)
                raise result.error
            return result.data

        jobs = self.fetch_breaker.execute(guarded)
        if jobs:
            self.cached_jobs = jobs
        return jobs

    def _fallback_jobs(self) -> List[JobPosting]:
        self.logger.warning("Using cached jobs as fallback")
        return list(self.cached_jobs)

    def _do_fetch(self, params: SearchParams) -> List[JobPosting]:
        query = {"page": str(params.page)}
        if params.query:
            query["q"] = params.query
        if params.location:
            query["location"] = params.location
        if params.category:
            query["category"] = params.category

        response = self.session.get(
            f"{self.base_url}/jobs",
            params=query,
            headers={"Content-Type": "application/json", "Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout,
        )
        if not response.ok:
            raise SubmissionError(f"Job board API error: {response.status_code} {response.reason}")
        return self.map_jobs(response.json())

    # ---------- submit ----------
    def submit(self, job_id: str, payload: SubmissionPayload) -> SubmissionResult:
        self.logger.debug("Submitting application for job: %s", job_id)

        def guarded():
            result = with_retry(lambda: self._do_submit(job_id, payload), self.retry_config,
                                log=self.logger, sleep=self._sleep)
            if not result.success:
                raise result.error or SubmissionError("Unknown error after retries")
            return result.data

        try:
            return self.submit_breaker.execute(guarded)
        except Exception as e:
            return SubmissionResult(success=False, error_message=str(e) or e.__class__.__name__)

    def _do_submit(self, job_id: str, payload: SubmissionPayload) -> SubmissionResult:
        applicant = payload.applicant
        data = {
            "firstName": applicant.first_name,
            "lastName": applicant.last_name,
            "email": applicant.email,
            "phone": applicant.phone,
        }
        if payload.cover_letter:
            data["coverLetter"] = payload.cover_letter

        response = self.session.post(
            f"{self.base_url}/jobs/{job_id}/apply",
            headers={"Authorization": f"Bearer {self.api_key}"},
            data=data,
            files={"resume": ("resume.pdf", payload.resume_file, "application/pdf")},
            timeout=self.timeout,
        )
        if not response.ok:
            try:
                error_body = response.json()
            except ValueError:
                error_body = None
            message = error_body.get("message") if isinstance(error_body, dict) else None
            raise SubmissionError(message or f"HTTP {response.status_code}: {response.reason}")

        body = response.json()
        return SubmissionResult(success=True, confirmation_id=body.get("confirmationId") or body.get("id"))

    # ---------- mapping ----------
    def map_jobs(self, data: Any) -> List[JobPosting]:
        if isinstance(data, list):
            items = data
        else:
            items = data.get("jobs") or data.get("results") or []

        jobs = []
        for job in items:
            job_id = str(job.get("id") or job.get("_id") or "")
            jobs.append(JobPosting(
                id=job_id,
                title=job.get("title") or job.get("jobTitle") or "",
                company=job.get("company") or job.get("companyName") or "",
                location=job.get("location") or job.get("city") or "",
                description=job.get("description") or job.get("jobDescription") or "",
                requirements=parse_requirements(job.get("requirements")),
                category=job.get("category") or job.get("jobCategory") or "general",
                experience_level=map_experience_level(job.get("experienceLevel") or job.get("level")),
                posted_at=job.get("postedAt") or job.get("createdAt") or job.get("publishedDate"),
                application_url=(job.get("applicationUrl") or job.get("applyUrl")
                                 or f"{self.base_url}/jobs/{job_id}/apply"),
            ))
        return jobs


def parse_requirements(requirements: Any) -> List[str]:
    if isinstance(requirements, list):
        out = []
        for r in requirements:
            if isinstance(r, str):
                out.append(r)
            elif isinstance(r, dict):
                text = r.get("text") or r.get("description")
                if text:
                    out.append(text)
        return out
    if isinstance(requirements, str):
        return [r.strip() for r in re.split(r"[,;\n]", requirements) if r.strip()]
    return []


def map_experience_level(level: Optional[str]) -> str:
    return EXPERIENCE_LEVELS.get((level or "").lower().strip(), "mid")
