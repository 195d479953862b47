import threading
import time
from typing import Callable, Dict, List, Optional
from backend.config.settings import settings, JobStoreConfig
from backend.core.errors import JobNotFoundError
from backend.models.document import SessionRecord
from backend.models.job import IngestionJob, JobStatus, TERMINAL_STATUSES
from backend.storage.base import JobStore, SessionStore, EmbeddingCache


def assemble_sections(sections: Dict[int, str]) -> str:
    """Presentation order is batch order, whatever order the sections arrived in."""
    return "".join(sections[i] for i in sorted(sections))


class InMemoryJobStore(JobStore):
    """
    Process-local JobStore for stand-alone mode and tests.
    A single lock serialises every mutation, so increments never lose updates.
    """

    def __init__(self, config: Optional[JobStoreConfig] = None, clock: Callable[[], float] = time.monotonic):
        self.config = config or settings.job_store
        self._clock = clock
        self._lock = threading.Lock()
        self._jobs: Dict[str, dict] = {}

    def _live(self, job_id: str) -> Optional[dict]:
        entry = self._jobs.get(job_id)
        if entry is None:
            return None
        if entry["expires_at"] <= self._clock():
            del self._jobs[job_id]
            return None
        return entry

    def _require(self, job_id: str) -> dict:
        entry = self._live(job_id)
        if entry is None:
            raise JobNotFoundError(job_id)
        return entry

    def create(self, job: IngestionJob) -> None:
        with self._lock:
            self._jobs[job.job_id] = {
                "job": job.model_dump(exclude={"extracted_text"}),
                "sections": {},
                "done": set(),
                "failed": set(),
                "expires_at": self._clock() + self.config.job_ttl_seconds,
            }

    def append_text(self, job_id: str, batch_index: int, label: str, text: str) -> None:
        with self._lock:
            entry = self._require(job_id)
            entry["sections"][batch_index] = f"\n\n{label}\n\n{text}"

    def _increment(self, job_id: str, field: str, index_set: str, batch_index: Optional[int],
                   skip_if_in: Optional[str] = None) -> int:
        with self._lock:
            entry = self._require(job_id)
            if batch_index is not None:
                if batch_index in entry[index_set]:
                    return entry["job"][field]
                if skip_if_in and batch_index in entry[skip_if_in]:
                    return entry["job"][field]
                entry[index_set].add(batch_index)
            entry["job"][field] += 1
            return entry["job"][field]

    def increment_completed(self, job_id: str, batch_index: Optional[int] = None) -> int:
        return self._increment(job_id, "completed_batches", "done", batch_index)

    def increment_failed(self, job_id: str, batch_index: Optional[int] = None) -> int:
        return self._increment(job_id, "failed_batches", "failed", batch_index, skip_if_in="done")

    def set_status(self, job_id: str, status: JobStatus, error: Optional[str] = None) -> bool:
        with self._lock:
            entry = self._require(job_id)
            current = JobStatus(entry["job"]["status"])
            if current in TERMINAL_STATUSES and current != status:
                return False
            entry["job"]["status"] = status
            if error is not None:
                entry["job"]["error"] = error
            return True

    def read(self, job_id: str, include_text: bool = True) -> Optional[IngestionJob]:
        with self._lock:
            entry = self._live(job_id)
            if entry is None:
                return None
            text = assemble_sections(entry["sections"]) if include_text else ""
            return IngestionJob(extracted_text=text, **entry["job"])

    def delete(self, job_id: str) -> None:
        with self._lock:
            self._jobs.pop(job_id, None)

    def ping(self) -> bool:
        return True


class InMemorySessionStore(SessionStore):
    """Records expire session_ttl_seconds after their last write; callers get copies."""

    def __init__(self, config: Optional[JobStoreConfig] = None, clock: Callable[[], float] = time.monotonic):
        self.config = config or settings.job_store
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: Dict[str, tuple] = {}

    def _live(self, session_id: str) -> Optional[SessionRecord]:
        entry = self._sessions.get(session_id)
        if entry is None:
            return None
        record, expires_at = entry
        if expires_at <= self._clock():
            del self._sessions[session_id]
            return None
        return record

    def _save(self, record: SessionRecord) -> None:
        self._sessions[record.session_id] = (record, self._clock() + self.config.session_ttl_seconds)

    def get(self, session_id: str) -> Optional[SessionRecord]:
        with self._lock:
            record = self._live(session_id)
            return record.model_copy(deep=True) if record else None

    def ensure(self, session_id: str) -> SessionRecord:
        with self._lock:
            record = self._live(session_id)
            if record is None:
                now = int(time.time() * 1000)
                record = SessionRecord(session_id=session_id, created_at=now, last_active=now)
                self._save(record)
            return record.model_copy(deep=True)

    def add_document(self, session_id: str, filename: str) -> SessionRecord:
        with self._lock:
            record = self._live(session_id)
            if record is None:
                now = int(time.time() * 1000)
                record = SessionRecord(session_id=session_id, created_at=now, last_active=now)
                self._save(record)
            if filename not in record.documents:
                record.documents.append(filename)
                record.last_active = int(time.time() * 1000)
                self._save(record)
            return record.model_copy(deep=True)


class InMemoryEmbeddingCache(EmbeddingCache):
    def __init__(self):
        self._items: Dict[str, List[float]] = {}

    def get_many(self, keys: List[str]) -> Dict[str, List[float]]:
        return {k: self._items[k] for k in keys if k in self._items}

    def set_many(self, items: Dict[str, List[float]]) -> None:
        self._items.update(items)
