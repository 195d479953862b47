import logging
import time
import uuid
from typing import Optional
from backend.config.settings import settings, QueueConfig
from backend.core.errors import DispatchError
from backend.core.plan.batch_planner import BatchPlanner
from backend.models.job import BatchPayload, DispatchResult, IngestionJob, JobPlan, JobStatus
from backend.storage.base import JobStore, SourceStore
from backend.workers.base import BatchQueue

logger = logging.getLogger(__name__)


def new_job_id() -> str:
    return f"job_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


def new_session_id() -> str:
    return f"session_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class DispatchCoordinator:
    """
    Creates a job and fans its batches out to the queue.
    Order matters: the job record (with total_batches fixed) is written
    before the first batch is published, so every worker's completion
    check compares against the real total.
    """

    def __init__(self,
                 job_store: JobStore,
                 source_store: SourceStore,
                 batch_queue: BatchQueue,
                 planner: Optional[BatchPlanner] = None,
                 config: Optional[QueueConfig] = None):
        self.job_store = job_store
        self.source_store = source_store
        self.batch_queue = batch_queue
        self.planner = planner or BatchPlanner()
        self.config = config or settings.queue

    def start_job(self, source_ref: str, filename: str, session_id: str) -> str:
        plan = self.prepare(source_ref, filename, session_id)
        self.create_job(plan)
        self.publish(plan)
        return plan.job_id

    def prepare(self, source_ref: str, filename: str, session_id: str) -> JobPlan:
        """Fetches the source once to estimate pages and plan batches."""
        data = self.source_store.fetch(source_ref)
        if not data:
            raise DispatchError(f"Source {source_ref} is empty")

        estimate = self.planner.estimate_pages(data)
        batches = self.planner.plan(estimate.pages)
        plan = JobPlan(
            job_id=new_job_id(),
            session_id=session_id,
            filename=filename,
            source_ref=source_ref,
            estimated_pages=estimate.pages,
            estimate_confident=estimate.confident,
            file_size=estimate.file_size,
            batches=batches
        )
        logger.info(f"[{plan.job_id}] Planned {len(batches)} batches for {filename} (~{estimate.pages} pages)")
        return plan

    def create_job(self, plan: JobPlan) -> IngestionJob:
        job = IngestionJob(
            job_id=plan.job_id,
            session_id=plan.session_id,
            filename=plan.filename,
            source_ref=plan.source_ref,
            total_batches=len(plan.batches),
            status=JobStatus.processing,
            estimated_pages=plan.estimated_pages,
            created_at=int(time.time() * 1000)
        )
        self.job_store.create(job)
        logger.info(f"[{plan.job_id}] Job created")
        return job

    def publish(self, plan: JobPlan) -> DispatchResult:
        total = len(plan.batches)
        published = 0
        failed = []

        for batch_index, (start_page, end_page) in enumerate(plan.batches):
            payload = BatchPayload(
                job_id=plan.job_id,
                source_ref=plan.source_ref,
                filename=plan.filename,
                session_id=plan.session_id,
                batch_index=batch_index,
                start_page=start_page,
                end_page=end_page,
                total_pages=plan.estimated_pages
            )
            try:
                message_id = self.batch_queue.publish(payload, retries=self.config.max_retries)
                published += 1
                logger.info(f"[{plan.job_id}] Batch {batch_index} published (pages {start_page}-{end_page}, id {message_id})")
            except Exception as e:
                failed.append(batch_index)
                logger.error(f"[{plan.job_id}] Publish FAILED for batch {batch_index}: {e}")

        logger.info(f"[{plan.job_id}] Publishing complete: {published}/{total} queued")

        if published == 0 or len(failed) * 2 > total:
            message = f"Failed to queue {len(failed)} of {total} batches"
            self.job_store.set_status(plan.job_id, JobStatus.error, error=message)
            raise DispatchError(message)

        # Unpublished batches will never run; count them as failed so the job can finish
        for batch_index in failed:
            self.job_store.increment_failed(plan.job_id, batch_index)
            completed = self.job_store.increment_completed(plan.job_id, batch_index)
            if completed >= total:
                self.job_store.set_status(plan.job_id, JobStatus.complete)

        return DispatchResult(
            job_id=plan.job_id,
            total_batches=total,
            published=published,
            failed_publishes=failed
        )
