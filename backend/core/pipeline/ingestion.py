import logging
from typing import Iterator, Optional
from backend.config.settings import settings, StreamingConfig
from backend.core.dispatch.coordinator import DispatchCoordinator
from backend.core.pipeline.progress import ProgressStreamer
from backend.models.events import EventType, ProgressEvent

logger = logging.getLogger(__name__)


class IngestionPipeline:
    """
    Orchestrates the ingestion of one document as a stream of progress events:
    fetch -> estimate & plan -> create job -> publish batches -> poll -> index

    Never raises into the caller; every failure ends the stream with an error event.
    """

    def __init__(self,
                 coordinator: DispatchCoordinator,
                 streamer: ProgressStreamer,
                 config: Optional[StreamingConfig] = None):
        self.coordinator = coordinator
        self.streamer = streamer
        self.config = config or settings.streaming

    def run(self, source_ref: str, filename: str, session_id: str) -> Iterator[ProgressEvent]:
        cfg = self.config
        job_id = None

        def status(message: str, progress: int, **kwargs) -> ProgressEvent:
            return ProgressEvent(event=EventType.status, message=message, progress=progress,
                                 session_id=session_id, job_id=job_id, **kwargs)

        try:
            yield status(f"Fetching {filename}...", cfg.fetch_progress)

            plan = self.coordinator.prepare(source_ref, filename, session_id)
            size_mb = plan.file_size / (1024 * 1024)
            yield status(
                f"Document: {plan.estimated_pages} pages (~{size_mb:.1f} MB)", cfg.analysed_progress,
                data={"estimated_pages": plan.estimated_pages, "estimate_confident": plan.estimate_confident}
            )

            self.coordinator.create_job(plan)
            job_id = plan.job_id
            yield status(f"Job created, queuing {len(plan.batches)} batches", cfg.job_created_progress)

            result = self.coordinator.publish(plan)
            yield status(f"{result.published}/{result.total_batches} batches queued", cfg.queued_progress,
                         data={"total_batches": result.total_batches})
            if result.failed_publishes:
                yield ProgressEvent(
                    event=EventType.warning,
                    message=f"{len(result.failed_publishes)} batches could not be queued and will be skipped",
                    progress=cfg.queued_progress, session_id=session_id, job_id=job_id,
                    code="publish_partial", data={"failed_batches": result.failed_publishes}
                )
        except Exception as e:
            logger.exception(f"[{job_id or filename}] Ingestion dispatch failed")
            if job_id:
                self._discard(job_id)
            yield ProgressEvent(event=EventType.error, message=f"Processing failed: {e}", progress=0,
                                session_id=session_id, job_id=job_id, code="dispatch_failed")
            return

        try:
            yield from self.streamer.stream(job_id, session_id, filename)
        except Exception as e:
            logger.exception(f"[{job_id}] Progress stream failed")
            yield ProgressEvent(event=EventType.error, message=f"Processing failed: {e}", progress=0,
                                session_id=session_id, job_id=job_id, code="stream_failed")

    def _discard(self, job_id: str) -> None:
        try:
            self.coordinator.job_store.delete(job_id)
        except Exception as e:
            logger.warning(f"[{job_id}] Failed to delete job record: {e}")
