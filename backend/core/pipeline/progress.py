import logging
import time
from enum import Enum
from typing import Callable, Iterator, Optional
from backend.config.settings import settings, StreamingConfig
from backend.core.pipeline.indexing import IndexingPipeline
from backend.models.document import IndexStatus
from backend.models.events import EventType, ProgressEvent
from backend.models.job import IngestionJob, JobStatus
from backend.storage.base import JobStore

logger = logging.getLogger(__name__)

STATUS_LOG_INTERVAL = 10.0


class StreamState(str, Enum):
    awaiting_dispatch = "awaiting_dispatch"
    polling = "polling"
    complete = "complete"
    error = "error"
    timeout = "timeout"

FINISHED_STATES = (StreamState.complete, StreamState.error, StreamState.timeout)


class ProgressStreamer:
    """
    Polls the job record at a fixed interval and relays progress as events.
    - Extraction maps onto [queued_progress, extraction_end_progress]; indexing follows.
    - Progress never decreases.
    - max_attempts polls is the hard timeout.
    - The job record is deleted once the stream reaches a terminal state. A client
      disconnect leaves it to expire by TTL while workers finish.
    """

    def __init__(self,
                 job_store: JobStore,
                 indexer: IndexingPipeline,
                 config: Optional[StreamingConfig] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic):
        self.job_store = job_store
        self.indexer = indexer
        self.config = config or settings.streaming
        self._sleep = sleep
        self._clock = clock

    def extraction_progress(self, completed: int, total: int) -> int:
        start = self.config.queued_progress
        end = self.config.extraction_end_progress
        if total <= 0:
            return start
        ratio = min(completed, total) / total
        return start + int(ratio * (end - start))

    def stream(self, job_id: str, session_id: str, filename: str) -> Iterator[ProgressEvent]:
        cfg = self.config
        state = StreamState.awaiting_dispatch
        progress = cfg.queued_progress
        last_status = None
        last_log = self._clock()

        def event(kind: EventType, message: str, **kwargs) -> ProgressEvent:
            return ProgressEvent(event=kind, message=message, progress=kwargs.pop("at", progress),
                                 session_id=session_id, job_id=job_id, **kwargs)

        try:
            for attempt in range(1, cfg.max_attempts + 1):
                if attempt > 1:
                    self._sleep(cfg.poll_interval)

                try:
                    job = self.job_store.read(job_id, include_text=False)
                except Exception as e:
                    logger.warning(f"[{job_id}] Poll {attempt} failed: {e}")
                    continue

                if job is None:
                    state = StreamState.error
                    logger.error(f"[{job_id}] Job record missing or expired")
                    yield event(EventType.error, "Job not found or expired", code="job_not_found")
                    return

                state = StreamState.polling
                progress = max(progress, self.extraction_progress(job.completed_batches, job.total_batches))
                status_line = f"{job.status.value} {job.completed_batches}/{job.total_batches}"
                now = self._clock()
                if status_line != last_status or now - last_log >= STATUS_LOG_INTERVAL:
                    logger.info(f"[{job_id}] Poll {attempt}: {status_line} ({job.failed_batches} failed)")
                    last_status = status_line
                    last_log = now

                if job.status == JobStatus.complete:
                    state = StreamState.complete
                    yield from self._finish(job_id, session_id, filename, event)
                    return

                if job.status == JobStatus.error:
                    state = StreamState.error
                    yield event(EventType.error, job.error or "Document processing failed", code="job_failed")
                    return

                yield event(
                    EventType.status,
                    f"Extracting: {job.completed_batches}/{job.total_batches} batches done",
                    data={"completed_batches": job.completed_batches, "total_batches": job.total_batches}
                )

            state = StreamState.timeout
            logger.error(f"[{job_id}] Timed out after {cfg.max_attempts} polls")
            yield event(EventType.error, "Processing timed out", code="timeout")
        finally:
            if state in FINISHED_STATES:
                self._cleanup(job_id)

    def _finish(self, job_id: str, session_id: str, filename: str, event) -> Iterator[ProgressEvent]:
        cfg = self.config
        job = self.job_store.read(job_id)
        if job is None:
            yield event(EventType.error, "Job expired before indexing", code="job_not_found")
            return

        yield event(EventType.status, f"Extraction complete, indexing {filename}...", at=cfg.indexing_progress)
        if job.failed_batches:
            yield event(
                EventType.warning,
                f"{job.failed_batches} of {job.total_batches} batches failed; some pages may be missing",
                at=cfg.indexing_progress, code="partial_extraction",
                data={"failed_batches": job.failed_batches}
            )

        yield from self._index(job, session_id, filename, event)
        yield event(EventType.complete, "Processing complete", at=100,
                    data={"filename": filename, "text_length": len(job.extracted_text)})

    def _index(self, job: IngestionJob, session_id: str, filename: str, event) -> Iterator[ProgressEvent]:
        cfg = self.config
        try:
            result = self.indexer.index_text(job.extracted_text, filename, session_id)
        except Exception as e:
            logger.exception(f"[{job.job_id}] Indexing failed")
            yield event(EventType.warning, f"Indexing failed: {e}", at=cfg.indexed_progress, code="indexing_failed")
            return

        if result.status == IndexStatus.insufficient_text:
            yield event(
                EventType.warning,
                f"Limited text extracted from {filename} ({result.text_length} chars); document was not indexed",
                at=cfg.indexed_progress, code="limited_text",
                data={"filename": filename, "text_length": result.text_length}
            )
            return

        yield event(EventType.status, f"Indexed {result.chunks} chunks", at=cfg.indexed_progress)
        yield event(
            EventType.file_complete, f"{filename} is ready", at=cfg.indexed_progress,
            data={"filename": filename, "chunks": result.chunks, "text_length": result.text_length}
        )

    def _cleanup(self, job_id: str) -> None:
        try:
            self.job_store.delete(job_id)
            logger.info(f"[{job_id}] Job record deleted")
        except Exception as e:
            logger.warning(f"[{job_id}] Failed to delete job record: {e}")
