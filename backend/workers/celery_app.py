import logging
from typing import Optional
import redis
from celery import Celery
from backend.config.settings import settings, QueueConfig
from backend.core.errors import PublishError
from backend.core.worker.batch_worker import BatchWorker
from backend.models.job import BatchPayload
from backend.workers.base import BatchQueue

logger = logging.getLogger(__name__)

celery_app = Celery(
    "arthyx_ingest",
    broker=settings.queue.broker_url,
    backend=settings.queue.broker_url
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Redeliver batches whose worker died mid-flight
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

_batch_worker: Optional[BatchWorker] = None


def configure_worker(worker: BatchWorker) -> None:
    global _batch_worker
    _batch_worker = worker


def get_worker() -> BatchWorker:
    """Components are built once per worker process, on the first task it receives."""
    global _batch_worker
    if _batch_worker is None:
        from backend.bootstrap import build_components
        logger.info("Building batch worker components for this process...")
        _batch_worker = build_components(settings, start_queue=False).batch_worker
    return _batch_worker


@celery_app.task(bind=True, name="process_batch")
def process_batch_task(self, payload: dict, max_retries: int = 2):
    batch = BatchPayload.model_validate(payload)
    try:
        result = get_worker().process(batch)
    except Exception as e:
        # Extraction failures are accounted inside the worker; only infrastructure errors land here
        logger.warning(f"[{batch.job_id}][batch {batch.batch_index}] Task error: {e}. Retrying...")
        raise self.retry(exc=e, max_retries=max_retries, countdown=settings.queue.retry_delay_seconds)
    return result.model_dump()


class CeleryBatchQueue(BatchQueue):
    """
    Publishes batches to Celery over Redis.
    Dedup keys are claimed with SET NX so a resubmitted batch is not fanned out twice.
    """

    def __init__(self, redis_client: redis.Redis, config: Optional[QueueConfig] = None, task=None):
        self.redis = redis_client
        self.config = config or settings.queue
        self.task = task or process_batch_task

    def publish(self, payload: BatchPayload, retries: int) -> str:
        dedup_key = f"dedup:{payload.dedup_key}"
        if not self.redis.set(dedup_key, "1", nx=True, ex=self.config.dedup_ttl_seconds):
            logger.info(f"Duplicate batch {payload.dedup_key} suppressed")
            return payload.dedup_key

        try:
            result = self.task.apply_async(
                kwargs={"payload": payload.model_dump(by_alias=True), "max_retries": retries},
                task_id=payload.dedup_key,
                retry=True,
                retry_policy={
                    "max_retries": retries,
                    "interval_start": 0,
                    "interval_step": 0.5,
                    "interval_max": 2,
                }
            )
        except Exception as e:
            # Release the claim so a later resubmission can go through
            self.redis.delete(dedup_key)
            raise PublishError(f"Failed to publish {payload.dedup_key}: {e}") from e
        return result.id


def run_worker():
    """Fallback for manual running"""
    logging.basicConfig(level=logging.INFO)
    logger.info("Starting batch worker as Celery node...")
    celery_app.start(argv=["worker", "--loglevel=info", "-P", "solo"])


if __name__ == "__main__":
    run_worker()
