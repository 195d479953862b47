import logging
import queue
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional
from backend.config.settings import settings, QueueConfig
from backend.core.errors import PublishError
from backend.models.job import BatchPayload, BatchResult
from backend.workers.base import BatchQueue

logger = logging.getLogger(__name__)

Handler = Callable[[BatchPayload], BatchResult]


@dataclass
class _QueueItem:
    message_id: str
    payload: BatchPayload
    retries_left: int
    attempt: int = 1


class ThreadBatchQueue(BatchQueue):
    """
    In-process queue for stand-alone mode: a pool of daemon threads pulls batches,
    so batches of one job run concurrently and in no particular order.
    A handler exception redelivers the item until its retries are used up.
    """

    def __init__(self,
                 handler: Optional[Handler] = None,
                 config: Optional[QueueConfig] = None,
                 maxsize: int = 0,
                 clock: Callable[[], float] = time.monotonic):
        self.config = config or settings.queue
        self._handler = handler
        self._queue: "queue.Queue[_QueueItem]" = queue.Queue(maxsize=maxsize)
        self._clock = clock
        self._lock = threading.Lock()
        self._seen: Dict[str, tuple] = {}   # dedup key -> (message_id, expires_at)
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    def set_handler(self, handler: Handler) -> None:
        self._handler = handler

    def start(self) -> None:
        if self._threads:
            return
        if self._handler is None:
            raise RuntimeError("ThreadBatchQueue needs a handler before start()")
        for i in range(self.config.worker_threads):
            thread = threading.Thread(target=self._loop, name=f"batch-worker-{i}", daemon=True)
            thread.start()
            self._threads.append(thread)
        logger.info(f"Internal batch queue started with {len(self._threads)} worker threads")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = []

    def join(self) -> None:
        """Blocks until every published item (including redeliveries) was handled."""
        self._queue.join()

    def publish(self, payload: BatchPayload, retries: int) -> str:
        key = payload.dedup_key
        now = self._clock()
        with self._lock:
            self._evict_expired(now)
            existing = self._seen.get(key)
            if existing and existing[1] > now:
                logger.info(f"Duplicate batch {key} suppressed")
                return existing[0]

            message_id = uuid.uuid4().hex
            try:
                self._queue.put_nowait(_QueueItem(message_id=message_id, payload=payload, retries_left=retries))
            except queue.Full as e:
                raise PublishError(f"Queue full, cannot publish {key}") from e
            self._seen[key] = (message_id, now + self.config.dedup_ttl_seconds)
            return message_id

    def _evict_expired(self, now: float) -> None:
        # Entries are inserted with a fixed TTL, so insertion order is expiry order
        while self._seen:
            key, (_, expires_at) = next(iter(self._seen.items()))
            if expires_at > now:
                break
            del self._seen[key]

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                item = self._queue.get(timeout=0.5)
            except queue.Empty:
                continue
            try:
                self._deliver(item)
            finally:
                self._queue.task_done()

    def _deliver(self, item: _QueueItem) -> None:
        try:
            self._handler(item.payload)
        except Exception as e:
            if item.retries_left > 0:
                logger.warning(
                    f"Delivery {item.attempt} of {item.payload.dedup_key} failed: {e}. "
                    f"Redelivering ({item.retries_left} retries left)"
                )
                if self.config.retry_delay_seconds:
                    time.sleep(self.config.retry_delay_seconds)
                self._queue.put(_QueueItem(
                    message_id=item.message_id,
                    payload=item.payload,
                    retries_left=item.retries_left - 1,
                    attempt=item.attempt + 1
                ))
            else:
                logger.error(f"Giving up on {item.payload.dedup_key} after {item.attempt} deliveries: {e}")
