import pytest
from backend.config.settings import JobStoreConfig
from backend.models.job import BatchPayload, IngestionJob, JobStatus
from backend.storage.memory_store import InMemoryJobStore


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def job_store(clock):
    return InMemoryJobStore(JobStoreConfig(job_ttl_seconds=3600), clock=clock)


@pytest.fixture
def new_job():
    def factory(job_id="job_1", total_batches=4, **overrides):
        fields = dict(
            job_id=job_id,
            session_id="session_1",
            filename="report.pdf",
            source_ref="local://abc.pdf",
            total_batches=total_batches,
            status=JobStatus.processing,
            estimated_pages=total_batches * 50,
            created_at=1700000000000,
        )
        fields.update(overrides)
        return IngestionJob(**fields)
    return factory


@pytest.fixture
def new_batch():
    def factory(batch_index, job_id="job_1", pages_per_batch=50, total_pages=200):
        return BatchPayload(
            job_id=job_id,
            source_ref="local://abc.pdf",
            filename="report.pdf",
            session_id="session_1",
            batch_index=batch_index,
            start_page=batch_index * pages_per_batch + 1,
            end_page=min((batch_index + 1) * pages_per_batch, total_pages),
            total_pages=total_pages,
        )
    return factory
