import re
from typing import List
import numpy as np
from backend.models.chunk import DocumentChunk, VectorMetadata, VectorRecord

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def sanitize_filename(filename: str) -> str:
    return _UNSAFE_CHARS.sub("_", filename)


def record_id(session_id: str, filename: str, chunk_index: int) -> str:
    """Stable per (session, document, position), so re-indexing overwrites instead of duplicating."""
    return f"{session_id}_{sanitize_filename(filename)}_{chunk_index}"


class MetadataBuilder:
    """
    Pairs chunks with their embeddings and builds the vector records.
    """

    def build_records(self,
                      chunks: List[DocumentChunk],
                      embeddings: np.ndarray,
                      filename: str,
                      session_id: str) -> List[VectorRecord]:
        if len(chunks) != len(embeddings):
            raise ValueError(f"Got {len(embeddings)} embeddings for {len(chunks)} chunks")

        total_chunks = len(chunks)
        records = []
        for chunk, embedding in zip(chunks, embeddings):
            rid = record_id(session_id, filename, chunk.chunk_index)
            records.append(VectorRecord(
                id=rid,
                embedding=[float(x) for x in embedding],
                metadata=VectorMetadata(
                    record_id=rid,
                    session_id=session_id,
                    filename=filename,
                    page_number=chunk.page_number,
                    chunk_index=chunk.chunk_index,
                    total_chunks=total_chunks,
                    chunk_type=chunk.type,
                    content=chunk.content
                )
            ))
        return records
