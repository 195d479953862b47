import logging
from typing import Optional
from backend.core.chunk.chunker import Chunker
from backend.core.chunk.metadata_builder import MetadataBuilder
from backend.core.embed.embedder import Embedder
from backend.models.document import IndexResult, IndexStatus
from backend.storage.base import SessionStore, VectorStore

logger = logging.getLogger(__name__)


class IndexingPipeline:
    """
    Orchestrates indexing of an assembled document:
    chunk -> embed -> build records -> upsert -> record in session
    """

    def __init__(self,
                 chunker: Chunker,
                 embedder: Embedder,
                 vector_store: VectorStore,
                 session_store: Optional[SessionStore] = None,
                 metadata_builder: Optional[MetadataBuilder] = None):
        self.chunker = chunker
        self.embedder = embedder
        self.vector_store = vector_store
        self.session_store = session_store
        self.metadata_builder = metadata_builder or MetadataBuilder()

    def index_text(self, full_text: str, filename: str, session_id: str) -> IndexResult:
        text_length = len(full_text.strip())
        if text_length < self.chunker.config.min_index_chars:
            logger.warning(f"[{session_id}] Only {text_length} chars extracted from {filename}; skipping indexing")
            return IndexResult(status=IndexStatus.insufficient_text, text_length=text_length)

        chunks = self.chunker.chunk_text(full_text)
        if not chunks:
            logger.warning(f"[{session_id}] No chunks produced for {filename}")
            return IndexResult(status=IndexStatus.insufficient_text, text_length=text_length)
        logger.info(f"[{session_id}] {filename}: {len(chunks)} chunks from {text_length} chars")

        embeddings = self.embedder.embed_texts([c.content for c in chunks])
        records = self.metadata_builder.build_records(chunks, embeddings, filename, session_id)

        if self.session_store is not None:
            self.session_store.ensure(session_id)
        self.vector_store.upsert(records)
        if self.session_store is not None:
            self.session_store.add_document(session_id, filename)

        logger.info(f"[{session_id}] Indexed {len(records)} chunks for {filename}")
        return IndexResult(status=IndexStatus.indexed, chunks=len(records), text_length=text_length)
