"""
BookWeaver — Job State Store
============================
In-memory store for all active and recent book-writing jobs.
Backed by a JSON file for persistence across server restarts.
"""

from __future__ import annotations

import json
import threading
import time
import uuid
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Optional

from bookweaver import config

MAX_LOG_LINES = 500


@dataclass
class Job:
    job_id: str
    book_id: str
    status: str = "pending"  # pending | processing | completed | failed | cancelled
    mode: str = "sequential"  # sequential | batch
    stage: str = "init"
    progress_percentage: float = 0.0  # 0-100
    message: str = ""
    is_recoverable: bool = False  # True if re-running resumes from the checkpoint
    current_chapter: Optional[int] = None
    current_page: Optional[int] = None
    docx_path: Optional[str] = None
    cancel_requested: bool = False
    log_lines: list[dict] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    config: dict = field(default_factory=dict)  # theme, chapters, pages_per_chapter, language

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "Job":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in d.items() if k in known})


class JobStore:
    """Thread-safe in-memory job store with JSON persistence."""

    def __init__(self, path: Path | None = None):
        self.path = Path(path) if path else config.JOBS_FILE
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()
        self._load()

    def create(self, book_id: str, mode: str = "sequential", job_config: dict | None = None) -> Job:
        job_id = str(uuid.uuid4())[:8]
        job = Job(job_id=job_id, book_id=book_id, mode=mode, config=job_config or {})
        self._jobs[job_id] = job
        self.save()
        return job

    def get(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def update(self, job_id: str, **kwargs) -> Optional[Job]:
        job = self._jobs.get(job_id)
        if not job:
            return None
        for k, v in kwargs.items():
            if hasattr(job, k):
                setattr(job, k, v)
        job.updated_at = time.time()
        return job

    def append_log(self, job_id: str, message: str, level: str = "INFO", source: str = "Writer"):
        job = self._jobs.get(job_id)
        if job:
            entry = {
                "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
                "level": level,
                "source": source,
                "message": message,
            }
            job.log_lines.append(entry)
            if len(job.log_lines) > MAX_LOG_LINES:
                job.log_lines = job.log_lines[-MAX_LOG_LINES:]

    def request_cancel(self, job_id: str) -> Optional[Job]:
        return self.update(job_id, cancel_requested=True, message="Cancellation requested")

    def active_job_for_book(self, book_id: str) -> Optional[Job]:
        for job in self._jobs.values():
            if job.book_id == book_id and job.status in ("pending", "processing"):
                return job
        return None

    def recover_interrupted(self) -> int:
        """Mark jobs left 'processing' by a previous server as failed and resumable."""
        count = 0
        for job in self._jobs.values():
            if job.status == "processing":
                self.update(
                    job.job_id,
                    status="failed",
                    message="Job interrupted by server restart. You can resume.",
                    is_recoverable=True,
                )
                count += 1
        self.save()
        return count

    def all_jobs(self) -> list[dict]:
        return [j.to_dict() for j in self._jobs.values()]

    def save(self):
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            serializable = {jid: j.to_dict() for jid, j in self._jobs.items()}
            self.path.write_text(json.dumps(serializable, indent=2), encoding="utf-8")

    def _load(self):
        if not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            print(f"[Jobs] ⚠️ Could not load {self.path.name}, starting empty: {e}")
            return
        for jid, jdict in data.items():
            self._jobs[jid] = Job.from_dict(jdict)
