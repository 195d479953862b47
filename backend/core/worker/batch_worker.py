import logging
import time
from backend.core.errors import JobNotFoundError
from backend.core.extract.extraction_client import ExtractionClient
from backend.models.job import BatchPayload, BatchResult, JobStatus
from backend.storage.base import JobStore, SourceStore

logger = logging.getLogger(__name__)


class BatchWorker:
    """
    Processes one page-range batch of one job:
    fetch source -> extract range -> store labeled section -> count completion.

    Delivery is at-least-once. Sections are keyed by batch index and counters
    by batch-index sets, so a redelivered batch neither duplicates text nor
    double counts. A failed batch still counts toward completion.
    """

    def __init__(self,
                 job_store: JobStore,
                 source_store: SourceStore,
                 extraction_client: ExtractionClient):
        self.job_store = job_store
        self.source_store = source_store
        self.extraction_client = extraction_client

    def process(self, batch: BatchPayload) -> BatchResult:
        start_time = time.time()
        tag = f"[{batch.job_id}][batch {batch.batch_index}]"
        logger.info(f"{tag} Processing pages {batch.start_page}-{batch.end_page} of {batch.total_pages}")

        try:
            data = self.source_store.fetch(batch.source_ref)
            logger.info(f"{tag} Source fetched ({len(data)} bytes)")

            text, pages = self.extraction_client.extract(
                data, batch.start_page, batch.end_page, batch.total_pages
            )

            appended = False
            if pages > 0 and text.strip():
                self.job_store.append_text(batch.job_id, batch.batch_index, batch.section_label, text)
                appended = True
            else:
                logger.warning(f"{tag} No text extracted ({pages} pages in range)")

            completed = self.job_store.increment_completed(batch.job_id, batch.batch_index)
            total = self._complete_if_done(batch.job_id, completed)

            duration_ms = int((time.time() - start_time) * 1000)
            logger.info(f"{tag} Done: {len(text)} chars, progress {completed}/{total}, {duration_ms}ms")
            return BatchResult(
                job_id=batch.job_id,
                batch_index=batch.batch_index,
                success=True,
                appended_text=appended,
                text_length=len(text),
                pages_processed=pages,
                completed=completed,
                total_batches=total,
                duration_ms=duration_ms
            )

        except JobNotFoundError:
            # Job was deleted by the streamer or expired; nothing left to account for
            logger.warning(f"{tag} Job record no longer exists; dropping batch")
            return BatchResult(job_id=batch.job_id, batch_index=batch.batch_index, success=False,
                               error="Job not found")

        except Exception as e:
            logger.error(f"{tag} Batch failed: {e}")
            return self._record_failure(batch, e, start_time)

    def _record_failure(self, batch: BatchPayload, error: Exception, start_time: float) -> BatchResult:
        """Counts the batch as failed *and* completed so the job still terminates."""
        completed = None
        total = None
        try:
            self.job_store.increment_failed(batch.job_id, batch.batch_index)
            completed = self.job_store.increment_completed(batch.job_id, batch.batch_index)
            total = self._complete_if_done(batch.job_id, completed)
            logger.info(f"[{batch.job_id}][batch {batch.batch_index}] Failure recorded, progress {completed}/{total}")
        except JobNotFoundError:
            logger.warning(f"[{batch.job_id}][batch {batch.batch_index}] Job gone while recording failure")

        return BatchResult(
            job_id=batch.job_id,
            batch_index=batch.batch_index,
            success=False,
            completed=completed,
            total_batches=total,
            duration_ms=int((time.time() - start_time) * 1000),
            error=str(error)
        )

    def _complete_if_done(self, job_id: str, completed: int) -> int:
        """
        Re-reads the fixed total after the increment. Every worker that sees
        completed >= total writes 'complete'; repeat writes are no-ops.
        """
        job = self.job_store.read(job_id, include_text=False)
        if job is None:
            raise JobNotFoundError(job_id)
        if completed >= job.total_batches:
            if self.job_store.set_status(job_id, JobStatus.complete):
                logger.info(f"[{job_id}] All {job.total_batches} batches accounted for; job complete")
        return job.total_batches
