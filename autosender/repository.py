import math
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from .config import validate_config_value
from .db import immediate
from .exceptions import InvalidTransitionError, RecordNotFoundError
from .models import (
    Application, Profile, Resume, PENDING, STATUSES, INACTIVE_STATUSES,
    is_valid_transition,
)
from .utils import new_id, now_iso, to_iso


# ---------- Config ----------
def get_config(conn) -> Dict[str, str]:
    cur = conn.execute("SELECT key, value FROM config")
    return {r["key"]: r["value"] for r in cur.fetchall()}


def set_config(conn, key: str, value: str):
    value = validate_config_value(key, value)
    conn.execute(
        "INSERT INTO config(key,value) VALUES(?,?) "
        "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
        (key, value),
    )


# ---------- Applications ----------
@dataclass
class Page:
    data: List[Application] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


class ApplicationRecordStore:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def create(
        self,
        *,
        user_id: str,
        job_id: str,
        resume_id: str,
        batch_id: str,
        cover_letter: Optional[str] = None,
    ) -> Application:
        ts = now_iso()
        app = Application(
            id=new_id(),
            user_id=user_id,
            job_id=job_id,
            resume_id=resume_id,
            batch_id=batch_id,
            status=PENDING,
            cover_letter=cover_letter,
            created_at=ts,
            updated_at=ts,
        )
        self.conn.execute(
            """INSERT INTO applications
               (id, user_id, job_id, resume_id, batch_id, status, retry_count,
                cover_letter, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?, ?)""",
            (app.id, user_id, job_id, resume_id, batch_id, PENDING, cover_letter, ts, ts),
        )
        return app

    def find_by_id(self, application_id: str) -> Optional[Application]:
        row = self.conn.execute(
            "SELECT * FROM applications WHERE id=?", (application_id,)
        ).fetchone()
        return Application.from_row(row) if row else None

    def find_active(self, user_id: str, job_id: str) -> Optional[Application]:
        """A record for this user and job that still blocks a new application."""
        marks = ",".join("?" * len(INACTIVE_STATUSES))
        row = self.conn.execute(
            f"SELECT * FROM applications WHERE user_id=? AND job_id=? AND status NOT IN ({marks}) "
            "ORDER BY created_at DESC LIMIT 1",
            (user_id, job_id, *sorted(INACTIVE_STATUSES)),
        ).fetchone()
        return Application.from_row(row) if row else None

    def update_status(
        self,
        application_id: str,
        status: str,
        *,
        confirmation_id: Optional[str] = None,
        error_message: Optional[str] = None,
        submitted_at: Optional[str] = None,
    ) -> Application:
        """Apply a status change after checking it against the transition table."""
        if status not in STATUSES:
            raise ValueError(f"Unknown status: {status}")
        with immediate(self.conn):
            app = self.find_by_id(application_id)
            if app is None:
                raise RecordNotFoundError("Application", application_id)
            if not is_valid_transition(app.status, status):
                raise InvalidTransitionError(app.status, status)

            app.status = status
            if confirmation_id:
                app.confirmation_id = confirmation_id
            if error_message:
                app.error_message = error_message[:1000]
            if submitted_at:
                app.submitted_at = submitted_at
            app.updated_at = now_iso()

            self.conn.execute(
                """UPDATE applications
                   SET status=?, confirmation_id=?, error_message=?, submitted_at=?, updated_at=?
                   WHERE id=?""",
                (app.status, app.confirmation_id, app.error_message, app.submitted_at,
                 app.updated_at, app.id),
            )
        return app

    def increment_retry_count(self, application_id: str) -> int:
        with immediate(self.conn):
            cur = self.conn.execute(
                "UPDATE applications SET retry_count=retry_count+1, updated_at=? WHERE id=?",
                (now_iso(), application_id),
            )
            if cur.rowcount != 1:
                raise RecordNotFoundError("Application", application_id)
            return self.conn.execute(
                "SELECT retry_count FROM applications WHERE id=?", (application_id,)
            ).fetchone()["retry_count"]

    # ---------- Queries ----------
    def list(
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
        if page < 1 or limit < 1:
            raise ValueError("page and limit must be >= 1")
        where, params = [], []
        for column, value in (("user_id", user_id), ("status", status),
                              ("job_id", job_id), ("batch_id", batch_id)):
            if value is not None:
                where.append(f"{column}=?")
                params.append(value)
        if from_date is not None:
            where.append("created_at>=?")
            params.append(to_iso(from_date))
        if to_date is not None:
            where.append("created_at<=?")
            params.append(to_iso(to_date))
        clause = f" WHERE {' AND '.join(where)}" if where else ""

        total = self.conn.execute(
            f"SELECT COUNT(1) AS c FROM applications{clause}", params
        ).fetchone()["c"]
        rows = self.conn.execute(
            f"SELECT * FROM applications{clause} ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
            (*params, limit, (page - 1) * limit),
        ).fetchall()
        return Page(data=[Application.from_row(r) for r in rows], total=total, page=page, limit=limit)

    def list_by_batch(self, batch_id: str) -> List[Application]:
        rows = self.conn.execute(
            "SELECT * FROM applications WHERE batch_id=? ORDER BY created_at ASC, rowid ASC",
            (batch_id,),
        ).fetchall()
        return [Application.from_row(r) for r in rows]

    def counts(self, user_id: Optional[str] = None) -> Dict[str, int]:
        out = {s: 0 for s in STATUSES}
        if user_id is None:
            rows = self.conn.execute(
                "SELECT status, COUNT(1) AS c FROM applications GROUP BY status"
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT status, COUNT(1) AS c FROM applications WHERE user_id=? GROUP BY status",
                (user_id,),
            ).fetchall()
        for r in rows:
            out[r["status"]] = r["c"]
        return out


# ---------- Resumes / profiles ----------
class ResumeStore:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def save(self, resume: Resume) -> Resume:
        self.conn.execute(
            "INSERT INTO resumes(id, user_id, storage_key, title) VALUES(?,?,?,?) "
            "ON CONFLICT(id) DO UPDATE SET user_id=excluded.user_id, "
            "storage_key=excluded.storage_key, title=excluded.title",
            (resume.id, resume.user_id, resume.storage_key, resume.title),
        )
        return resume

    def find_by_id(self, resume_id: str) -> Optional[Resume]:
        row = self.conn.execute("SELECT * FROM resumes WHERE id=?", (resume_id,)).fetchone()
        if not row:
            return None
        return Resume(id=row["id"], user_id=row["user_id"],
                      storage_key=row["storage_key"], title=row["title"])


class ProfileStore:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def save(self, profile: Profile) -> Profile:
        self.conn.execute(
            "INSERT INTO profiles(user_id, first_name, last_name, email, phone) VALUES(?,?,?,?,?) "
            "ON CONFLICT(user_id) DO UPDATE SET first_name=excluded.first_name, "
            "last_name=excluded.last_name, email=excluded.email, phone=excluded.phone",
            (profile.user_id, profile.first_name, profile.last_name, profile.email, profile.phone),
        )
        return profile

    def find_by_user_id(self, user_id: str) -> Optional[Profile]:
        row = self.conn.execute("SELECT * FROM profiles WHERE user_id=?", (user_id,)).fetchone()
        if not row:
            return None
        return Profile(user_id=row["user_id"], first_name=row["first_name"],
                       last_name=row["last_name"], email=row["email"], phone=row["phone"])
