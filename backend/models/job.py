from enum import Enum
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

class JobStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    complete = "complete"
    error = "error"

TERMINAL_STATUSES = (JobStatus.complete, JobStatus.error)

class IngestionJob(BaseModel):
    """Snapshot of one job record as held by the JobStore."""
    job_id: str
    session_id: str
    filename: str
    source_ref: str
    total_batches: int               # fixed at creation
    completed_batches: int = 0       # successes + recorded failures
    failed_batches: int = 0
    status: JobStatus = JobStatus.pending
    estimated_pages: int
    created_at: int                  # epoch millis
    error: str | None = None
    extracted_text: str = ""         # sections joined in batch_index order

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

class JobStatusResponse(BaseModel):
    job_id: str
    session_id: str
    filename: str
    status: JobStatus
    total_batches: int
    completed_batches: int
    failed_batches: int
    estimated_pages: int
    text_length: int
    created_at: int
    error: str | None = None

    @classmethod
    def from_job(cls, job: IngestionJob) -> "JobStatusResponse":
        return cls(
            text_length=len(job.extracted_text),
            **job.model_dump(exclude={"extracted_text", "source_ref"})
        )

class BatchPayload(BaseModel):
    """Work item delivered by the queue to a batch worker (camelCase on the wire)."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    job_id: str
    source_ref: str
    filename: str
    session_id: str
    batch_index: int                 # 0-based, defines ordering
    start_page: int                  # 1-based, inclusive
    end_page: int                    # 1-based, inclusive
    total_pages: int

    @property
    def dedup_key(self) -> str:
        return f"{self.session_id}:{self.job_id}:{self.batch_index}"

    @property
    def section_label(self) -> str:
        return f"=== BATCH {self.batch_index + 1}: PAGES {self.start_page}-{self.end_page} ==="

class BatchResult(BaseModel):
    job_id: str
    batch_index: int
    success: bool
    appended_text: bool = False
    text_length: int = 0
    pages_processed: int = 0
    completed: int | None = None
    total_batches: int | None = None
    duration_ms: int = 0
    error: str | None = None

class JobPlan(BaseModel):
    job_id: str
    session_id: str
    filename: str
    source_ref: str
    estimated_pages: int
    estimate_confident: bool
    file_size: int
    batches: list[tuple[int, int]]   # (start_page, end_page), 1-based inclusive

class DispatchResult(BaseModel):
    job_id: str
    total_batches: int
    published: int
    failed_publishes: list[int] = []
