from pydantic import BaseModel, Field
from enum import Enum

class PageEstimate(BaseModel):
    pages: int
    confident: bool                  # True only when a /Count entry was found
    method: str                      # "count" | "page_refs" | "byte_ratio" | "image"
    file_size: int

class IngestRequest(BaseModel):
    source_ref: str
    filename: str
    session_id: str | None = None

class UploadResponse(BaseModel):
    source_ref: str
    filename: str
    size: int

class IndexStatus(str, Enum):
    indexed = "indexed"
    insufficient_text = "insufficient_text"

class IndexResult(BaseModel):
    status: IndexStatus
    chunks: int = 0
    text_length: int = 0

class SessionRecord(BaseModel):
    session_id: str
    documents: list[str] = Field(default_factory=list)
    created_at: int
    last_active: int
