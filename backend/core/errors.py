class IngestError(RuntimeError):
    """Base exception for ingestion failures."""


class SourceFetchError(IngestError):
    """Source bytes could not be loaded from the given reference."""


class ExtractionError(IngestError):
    """The Extraction Service failed after all retries."""


class RateLimitError(ExtractionError):
    """The Extraction Service signalled rate limiting (429 / quota / exhausted)."""


class PublishError(IngestError):
    """A batch could not be handed to the queue."""


class DispatchError(IngestError):
    """Too few batches were published for the job to make progress."""


class JobNotFoundError(IngestError):
    """The job record is missing, deleted or expired."""
