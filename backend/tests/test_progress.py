from unittest.mock import MagicMock
from backend.config.settings import ChunkingConfig, StreamingConfig
from backend.core.chunk.chunker import Chunker
from backend.core.pipeline.indexing import IndexingPipeline
from backend.core.pipeline.progress import ProgressStreamer
from backend.models.document import IndexResult, IndexStatus
from backend.models.events import EventType
from backend.models.job import JobStatus

CONFIG = StreamingConfig(poll_interval=2.0, max_attempts=3)


def _streamer(job_store, indexer=None, config=CONFIG):
    sleep = MagicMock()
    if indexer is None:
        indexer = MagicMock()
        indexer.index_text.return_value = IndexResult(status=IndexStatus.indexed, chunks=7, text_length=5000)
    return ProgressStreamer(job_store, indexer, config, sleep=sleep), sleep


def _finish_job(job_store, job_id="job_1", total=2, text="Quarterly revenue grew strongly. " * 20):
    for i in range(total):
        job_store.append_text(job_id, i, f"=== BATCH {i + 1}: PAGES {i * 50 + 1}-{(i + 1) * 50} ===", text)
        job_store.increment_completed(job_id, i)
    job_store.set_status(job_id, JobStatus.complete)


def test_complete_job_is_indexed_and_deleted(job_store, new_job):
    job_store.create(new_job(total_batches=2))
    _finish_job(job_store)
    streamer, _ = _streamer(job_store)

    events = list(streamer.stream("job_1", "session_1", "report.pdf"))

    kinds = [e.event for e in events]
    assert kinds[-1] == EventType.complete
    assert events[-1].progress == 100
    assert EventType.file_complete in kinds
    assert any(e.message == "Indexed 7 chunks" and e.progress == 95 for e in events)

    args = streamer.indexer.index_text.call_args.args
    assert "=== BATCH 1: PAGES 1-50 ===" in args[0]
    assert args[1:] == ("report.pdf", "session_1")
    assert job_store.read("job_1") is None


def test_limited_text_skips_indexing(job_store, new_job):
    job_store.create(new_job(total_batches=1))
    job_store.append_text("job_1", 0, "", "x" * 80)
    job_store.increment_completed("job_1", 0)
    job_store.set_status("job_1", JobStatus.complete)
    assert len(job_store.read("job_1").extracted_text.strip()) == 80

    vector_store = MagicMock()
    embedder = MagicMock()
    indexer = IndexingPipeline(Chunker(ChunkingConfig()), embedder, vector_store)
    streamer, _ = _streamer(job_store, indexer=indexer)

    events = list(streamer.stream("job_1", "session_1", "scan.pdf"))

    warnings = [e for e in events if e.event == EventType.warning]
    assert [w.code for w in warnings] == ["limited_text"]
    assert "Limited text" in warnings[0].message
    assert events[-1].event == EventType.complete
    assert EventType.file_complete not in [e.event for e in events]
    vector_store.upsert.assert_not_called()
    embedder.embed_texts.assert_not_called()


def test_timeout_emits_error_and_deletes_job(job_store, new_job):
    job_store.create(new_job(total_batches=4))
    streamer, sleep = _streamer(job_store)

    events = list(streamer.stream("job_1", "session_1", "report.pdf"))

    assert events[-1].event == EventType.error
    assert events[-1].code == "timeout"
    assert sum(1 for e in events if e.event == EventType.status) == 3
    assert sleep.call_count == 2
    sleep.assert_called_with(2.0)
    assert job_store.read("job_1") is None


def test_failed_job_emits_error(job_store, new_job):
    job_store.create(new_job())
    job_store.set_status("job_1", JobStatus.error, error="Failed to queue 3 of 4 batches")
    streamer, _ = _streamer(job_store)

    events = list(streamer.stream("job_1", "session_1", "report.pdf"))

    assert len(events) == 1
    assert events[0].code == "job_failed"
    assert events[0].message == "Failed to queue 3 of 4 batches"
    streamer.indexer.index_text.assert_not_called()
    assert job_store.read("job_1") is None


def test_missing_job_emits_error(job_store):
    streamer, _ = _streamer(job_store)
    events = list(streamer.stream("job_gone", "session_1", "report.pdf"))
    assert [e.code for e in events] == ["job_not_found"]


def test_progress_never_decreases(new_job):
    snapshots = [
        new_job(total_batches=4, completed_batches=2),
        new_job(total_batches=4, completed_batches=1),
        new_job(total_batches=4, completed_batches=3),
    ]
    store = MagicMock()
    store.read.side_effect = snapshots
    streamer, _ = _streamer(store)

    progress = [e.progress for e in streamer.stream("job_1", "session_1", "report.pdf")
                if e.event == EventType.status]

    assert progress == [50, 50, 65]


def test_poll_errors_are_retried(job_store, new_job):
    job_store.create(new_job(total_batches=1))
    _finish_job(job_store, total=1)
    real_read = job_store.read
    store = MagicMock(wraps=job_store)
    store.read.side_effect = [ConnectionError("redis blip"), real_read("job_1", include_text=False),
                              real_read("job_1")]
    streamer, _ = _streamer(store)

    events = list(streamer.stream("job_1", "session_1", "report.pdf"))
    assert events[-1].event == EventType.complete


def test_client_disconnect_keeps_job(job_store, new_job):
    job_store.create(new_job(total_batches=4))
    streamer, _ = _streamer(job_store, config=StreamingConfig(max_attempts=50))

    stream = streamer.stream("job_1", "session_1", "report.pdf")
    first = next(stream)
    stream.close()

    assert first.event == EventType.status
    assert job_store.read("job_1") is not None


def test_indexing_failure_is_reported_as_warning(job_store, new_job):
    job_store.create(new_job(total_batches=1))
    _finish_job(job_store, total=1)
    indexer = MagicMock()
    indexer.index_text.side_effect = RuntimeError("qdrant unreachable")
    streamer, _ = _streamer(job_store, indexer=indexer)

    events = list(streamer.stream("job_1", "session_1", "report.pdf"))

    assert any(e.code == "indexing_failed" for e in events)
    assert events[-1].event == EventType.complete


def test_partial_extraction_warns(job_store, new_job):
    job_store.create(new_job(total_batches=2))
    job_store.increment_failed("job_1", 1)
    job_store.increment_completed("job_1", 1)
    _finish_job(job_store, total=1)
    streamer, _ = _streamer(job_store)

    events = list(streamer.stream("job_1", "session_1", "report.pdf"))
    assert any(e.code == "partial_extraction" for e in events)
