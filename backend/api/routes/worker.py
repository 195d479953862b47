import logging
from fastapi import APIRouter, Depends, Request

from backend.core.worker.batch_worker import BatchWorker
from backend.models.job import BatchPayload, BatchResult

router = APIRouter()
logger = logging.getLogger(__name__)

def get_batch_worker(request: Request) -> BatchWorker:
    return request.app.state.batch_worker

@router.post("/process-batch", response_model=BatchResult, summary="Process one batch pushed by an HTTP queue")
def process_batch(payload: BatchPayload, worker: BatchWorker = Depends(get_batch_worker)):
    """
    Always answers 200: failures are already counted in the job record,
    and a non-2xx would make the queue redeliver a batch that was accounted for.
    """
    try:
        return worker.process(payload)
    except Exception as e:
        logger.exception(f"[{payload.job_id}][batch {payload.batch_index}] Unhandled worker error")
        return BatchResult(job_id=payload.job_id, batch_index=payload.batch_index, success=False, error=str(e))
