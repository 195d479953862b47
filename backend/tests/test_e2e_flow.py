from unittest.mock import MagicMock
import numpy as np
import pytest
from backend.config.settings import (
    BatchingConfig, ChunkingConfig, JobStoreConfig, QdrantConfig, QueueConfig, StreamingConfig
)
from backend.core.chunk.chunker import Chunker
from backend.core.dispatch.coordinator import DispatchCoordinator
from backend.core.errors import ExtractionError
from backend.core.pipeline.indexing import IndexingPipeline
from backend.core.pipeline.ingestion import IngestionPipeline
from backend.core.pipeline.progress import ProgressStreamer
from backend.core.plan.batch_planner import BatchPlanner
from backend.core.worker.batch_worker import BatchWorker
from backend.models.events import EventType
from backend.storage.memory_store import InMemoryJobStore, InMemorySessionStore
from backend.storage.qdrant_store import QdrantLocalStore
from backend.workers.thread_queue import ThreadBatchQueue

PDF_200_PAGES = b"%PDF-1.7\n1 0 obj << /Type /Pages /Count 200 >>\n" + b"\0" * 4000


def _extract(data, start_page, end_page, total_pages):
    if start_page == 51:
        raise ExtractionError("model unavailable")
    pages = []
    for page in range(start_page, end_page + 1, 10):
        pages.append(f"=== PAGE {page} ===\n\nPage {page} reports revenue of {page * 1000} and "
                     f"operating margin of {page % 30} percent across all reporting segments.")
    return "\n\n".join(pages), end_page - start_page + 1


@pytest.fixture
def system():
    job_store = InMemoryJobStore(JobStoreConfig())
    source_store = MagicMock()
    source_store.fetch.return_value = PDF_200_PAGES
    extractor = MagicMock()
    extractor.extract.side_effect = _extract

    worker = BatchWorker(job_store, source_store, extractor)
    queue = ThreadBatchQueue(worker.process, QueueConfig(worker_threads=4, retry_delay_seconds=0))
    queue.start()

    embedder = MagicMock()
    embedder.embed_texts.side_effect = lambda texts: np.ones((len(texts), 4), dtype=np.float32)
    vector_store = QdrantLocalStore(QdrantConfig(mode="memory", collection_name="e2e_chunks"), vector_dim=4)
    sessions = InMemorySessionStore()
    indexer = IndexingPipeline(Chunker(ChunkingConfig()), embedder, vector_store, sessions)

    streaming = StreamingConfig(poll_interval=0.05, max_attempts=200)
    coordinator = DispatchCoordinator(job_store, source_store, queue,
                                      planner=BatchPlanner(BatchingConfig(pages_per_batch=50, max_batches=12)),
                                      config=QueueConfig(max_retries=2))
    pipeline = IngestionPipeline(coordinator, ProgressStreamer(job_store, indexer, streaming), streaming)

    yield pipeline, job_store, vector_store, sessions
    queue.stop()


def test_two_hundred_page_document_with_one_failed_batch(system):
    pipeline, job_store, vector_store, sessions = system

    events = list(pipeline.run("local://abc.pdf", "annual_report.pdf", "session_e2e"))

    messages = [e.message for e in events]
    assert "Document: 200 pages (~0.0 MB)" in messages
    assert "Job created, queuing 4 batches" in messages
    assert "4/4 batches queued" in messages

    progress = [e.progress for e in events]
    assert progress == sorted(progress)
    assert events[-1].event == EventType.complete
    assert any(e.code == "partial_extraction" for e in events)
    assert any(e.event == EventType.file_complete for e in events)

    job_id = events[-1].job_id
    assert job_store.read(job_id) is None

    count = vector_store.count("session_e2e")
    assert count > 0
    hits = vector_store.search([1.0, 1.0, 1.0, 1.0], top_k=50, session_id="session_e2e")
    pages = {h["payload"]["page_number"] for h in hits}
    assert not any(51 <= p <= 100 for p in pages)
    assert sessions.get("session_e2e").documents == ["annual_report.pdf"]


def test_unreadable_source_ends_with_error_event(system):
    pipeline, _, _, _ = system
    pipeline.coordinator.source_store.fetch.side_effect = OSError("disk gone")

    events = list(pipeline.run("local://abc.pdf", "annual_report.pdf", "session_e2e"))

    assert events[-1].event == EventType.error
    assert events[-1].code == "dispatch_failed"
