from abc import ABC, abstractmethod
from backend.models.job import BatchPayload

class BatchQueue(ABC):
    """
    Hands batches to workers with at-least-once delivery.
    Each item carries its own bounded retry count; items sharing a dedup key
    (session + job + batch index) are published once.
    """

    @abstractmethod
    def publish(self, payload: BatchPayload, retries: int) -> str:
        """Returns a message id. Raises PublishError when the item could not be queued."""
        pass
