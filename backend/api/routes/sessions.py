import logging
from fastapi import APIRouter, Depends, HTTPException, Request

from backend.models.document import SessionRecord
from backend.storage.base import SessionStore, VectorStore

router = APIRouter()
logger = logging.getLogger(__name__)

# Dependencies for stores (from app.state)
def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store

def get_vector_store(request: Request) -> VectorStore:
    return request.app.state.vector_store

@router.get("/sessions/{session_id}", response_model=SessionRecord, summary="Get a session and its indexed documents")
def get_session(session_id: str, session_store: SessionStore = Depends(get_session_store)):
    record = session_store.get(session_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Session not found.")
    return record

@router.delete("/sessions/{session_id}/vectors", summary="Delete every vector indexed for a session")
def delete_session_vectors(
    session_id: str,
    vector_store: VectorStore = Depends(get_vector_store)
):
    try:
        vector_store.delete_session(session_id)
    except Exception:
        logger.exception(f"[{session_id}] Failed to delete session vectors")
        raise HTTPException(status_code=500, detail="Could not delete session vectors.")

    logger.info(f"[{session_id}] Session vectors deleted")
    return {"status": "success", "session_id": session_id}
