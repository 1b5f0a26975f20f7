"""Shared fixtures: a throwaway database, a controllable clock and in-memory collaborators."""

from typing import Dict, List, Tuple

import pytest

from autosender.adapter import SubmissionAdapter
from autosender.app import build_app
from autosender.config import Settings
from autosender.db import connect_db, init_db
from autosender.models import Profile, Resume, SubmissionResult
from autosender.notifications import NotificationSink
from autosender.storage import FileStorage


class FakeClock:
    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, amount: float) -> None:
        self.now += amount


class ScriptedAdapter(SubmissionAdapter):
    """Returns queued results in order; repeats the last one when the script runs out."""

    def __init__(self, results=None):
        self.results: List[SubmissionResult] = list(results or [SubmissionResult(True, "CONF-1")])
        self.calls: List[Tuple[str, object]] = []

    def submit(self, job_id, payload):
        self.calls.append((job_id, payload))
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]

    def fetch(self, params):
        return []


class RecordingSink(NotificationSink):
    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    def notify(self, user_id, notification):
        if self.fail:
            raise RuntimeError("mail server down")
        self.sent.append((user_id, notification))

    def types(self) -> List[str]:
        return [n.type for _, n in self.sent]


class MemoryStorage(FileStorage):
    def __init__(self):
        self.files: Dict[str, bytes] = {}

    def get_file(self, key):
        return self.files[key]

    def put_file(self, key, data):
        self.files[key] = data
        return key


@pytest.fixture
def db_file(tmp_path):
    path = str(tmp_path / "autosender.db")
    init_db(path)
    return path


@pytest.fixture
def conn(db_file):
    c = connect_db(db_file)
    yield c
    c.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def adapter():
    return ScriptedAdapter()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def make_app(db_file, storage, sink):
    """Build an App on the test database; keyword overrides go to build_app."""
    apps = []

    def _make(adapter=None, max_retries=3, **kwargs):
        settings = kwargs.pop("settings", None) or Settings(max_retries=max_retries, poll_interval_ms=10)
        app = build_app(
            db_file,
            settings=settings,
            adapter=adapter or ScriptedAdapter(),
            storage=kwargs.pop("storage", storage),
            notifier=kwargs.pop("notifier", sink),
            **kwargs,
        )
        apps.append(app)
        return app

    yield _make
    for app in apps:
        app.close()


@pytest.fixture
def seed_user():
    """Register a resume file and a profile for `user_id` on an App."""

    def _seed(app, user_id="user-1", resume_id="resume-1"):
        key = app.storage.put_file(f"{user_id}/{resume_id}.pdf", b"%PDF-1.4 resume")
        app.resumes.save(Resume(id=resume_id, user_id=user_id, storage_key=key, title="CV"))
        app.profiles.save(Profile(user_id=user_id, first_name="Ada", last_name="Lovelace",
                                  email="ada@example.com", phone="555-0100"))
        return resume_id

    return _seed


@pytest.fixture
def scripted():
    return ScriptedAdapter


@pytest.fixture
def recording_sink():
    return RecordingSink
