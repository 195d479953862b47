from abc import ABC, abstractmethod
from typing import List, Dict, Optional
from backend.models.chunk import VectorRecord
from backend.models.document import SessionRecord
from backend.models.job import IngestionJob, JobStatus

class JobStore(ABC):
    """
    Shared per-job record mutated concurrently by batch workers.
    Counter updates are atomic; a batch index is counted at most once.
    """

    @abstractmethod
    def create(self, job: IngestionJob) -> None:
        pass

    @abstractmethod
    def append_text(self, job_id: str, batch_index: int, label: str, text: str) -> None:
        """Stores the labeled section for batch_index, replacing a previous delivery's section."""
        pass

    @abstractmethod
    def increment_completed(self, job_id: str, batch_index: Optional[int] = None) -> int:
        """Returns the new completed count. With a batch_index, repeat calls for it are no-ops."""
        pass

    @abstractmethod
    def increment_failed(self, job_id: str, batch_index: Optional[int] = None) -> int:
        """A batch index already counted as completed is never counted as failed."""
        pass

    @abstractmethod
    def set_status(self, job_id: str, status: JobStatus, error: Optional[str] = None) -> bool:
        """Returns False when the job already holds a different terminal status."""
        pass

    @abstractmethod
    def read(self, job_id: str, include_text: bool = True) -> Optional[IngestionJob]:
        pass

    @abstractmethod
    def delete(self, job_id: str) -> None:
        pass

    @abstractmethod
    def ping(self) -> bool:
        pass

class SessionStore(ABC):
    @abstractmethod
    def get(self, session_id: str) -> Optional[SessionRecord]:
        pass

    @abstractmethod
    def ensure(self, session_id: str) -> SessionRecord:
        pass

    @abstractmethod
    def add_document(self, session_id: str, filename: str) -> SessionRecord:
        pass

class EmbeddingCache(ABC):
    """Embeddings keyed by content hash, shared across documents and sessions."""

    @abstractmethod
    def get_many(self, keys: List[str]) -> Dict[str, List[float]]:
        pass

    @abstractmethod
    def set_many(self, items: Dict[str, List[float]]) -> None:
        pass

class VectorStore(ABC):
    @abstractmethod
    def upsert(self, records: List[VectorRecord]) -> None:
        pass

    @abstractmethod
    def search(self, vector: List[float], top_k: int, session_id: Optional[str] = None) -> List[Dict]:
        pass

    @abstractmethod
    def delete_session(self, session_id: str) -> None:
        pass

    @abstractmethod
    def collection_exists(self) -> bool:
        pass

class SourceStore(ABC):
    @abstractmethod
    def save(self, filename: str, file_bytes: bytes) -> str:
        """Persists uploaded bytes and returns a source_ref."""
        pass

    @abstractmethod
    def fetch(self, source_ref: str) -> bytes:
        pass
