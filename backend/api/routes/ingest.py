import logging
from fastapi import APIRouter, UploadFile, File, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from backend.core.dispatch.coordinator import new_session_id
from backend.core.pipeline.ingestion import IngestionPipeline
from backend.models.document import IngestRequest, UploadResponse
from backend.models.job import JobStatusResponse
from backend.storage.base import JobStore, SourceStore

router = APIRouter()
logger = logging.getLogger(__name__)

# Dependencies to get components from app state
def get_ingestion_pipeline(request: Request) -> IngestionPipeline:
    return request.app.state.ingestion_pipeline

def get_source_store(request: Request) -> SourceStore:
    return request.app.state.source_store

def get_job_store(request: Request) -> JobStore:
    return request.app.state.job_store

@router.post("/upload", response_model=UploadResponse, summary="Store a document and return its source reference")
async def upload_file(
    file: UploadFile = File(...),
    source_store: SourceStore = Depends(get_source_store)
):
    if not file.filename:
        raise HTTPException(status_code=400, detail="A filename is required.")

    try:
        file_bytes = await file.read()
        if not file_bytes:
            raise HTTPException(status_code=400, detail="Uploaded file is empty.")

        source_ref = source_store.save(file.filename, file_bytes)
        logger.info(f"Uploaded '{file.filename}' ({len(file_bytes)} bytes) as {source_ref}")
        return UploadResponse(source_ref=source_ref, filename=file.filename, size=len(file_bytes))
    finally:
        await file.close()

@router.post("/ingest", summary="Ingest a stored document, streaming progress as server-sent events")
def ingest_document(
    body: IngestRequest,
    pipeline: IngestionPipeline = Depends(get_ingestion_pipeline)
):
    """
    Dispatches the document's batches and streams progress until it is indexed.
    The session id is returned in the X-Session-Id header.
    """
    if not body.source_ref.strip() or not body.filename.strip():
        raise HTTPException(status_code=400, detail="source_ref and filename are required.")

    session_id = body.session_id or new_session_id()
    logger.info(f"[{session_id}] Ingest requested for '{body.filename}' ({body.source_ref})")

    def event_stream():
        for event in pipeline.run(body.source_ref, body.filename, session_id):
            yield event.to_sse()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "X-Session-Id": session_id,
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no"
        }
    )

@router.get("/jobs/{job_id}", response_model=JobStatusResponse, summary="Get a snapshot of an ingestion job")
def get_job(job_id: str, job_store: JobStore = Depends(get_job_store)):
    job = job_store.read(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job ID not found.")
    return JobStatusResponse.from_job(job)
