from enum import Enum
from pydantic import BaseModel

class ChunkType(str, Enum):
    text = "text"
    table = "table"
    header = "header"

class PageSection(BaseModel):
    page_number: int
    content: str

class DocumentChunk(BaseModel):
    content: str
    page_number: int                 # best-effort attribution
    chunk_index: int                 # absolute position in document
    type: ChunkType = ChunkType.text
    overlap_chars: int = 0           # leading chars copied from the previous chunk

class VectorMetadata(BaseModel):
    record_id: str
    session_id: str
    filename: str
    page_number: int
    chunk_index: int
    total_chunks: int
    chunk_type: ChunkType
    content: str

class VectorRecord(BaseModel):
    id: str                          # session + sanitized filename + chunk index
    embedding: list[float]
    metadata: VectorMetadata
