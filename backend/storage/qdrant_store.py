import hashlib
import logging
import uuid
from typing import List, Dict, Optional
from qdrant_client import QdrantClient
from qdrant_client.http import models as rest
from backend.config.settings import settings, QdrantConfig
from backend.models.chunk import VectorRecord
from backend.storage.base import VectorStore

logger = logging.getLogger(__name__)


def _to_uuid(record_id: str) -> str:
    """Convert an app-level record id to a deterministic UUID (Qdrant-compatible point ID).
    Same record id -> same point, so re-indexing overwrites instead of duplicating.
    """
    digest = hashlib.sha256(record_id.encode("utf-8")).hexdigest()
    return str(uuid.UUID(digest[:32]))


class QdrantLocalStore(VectorStore):
    """
    Implements VectorStore using Qdrant (embedded local path, in-memory, or a server URL).
    """

    def __init__(self, config: Optional[QdrantConfig] = None, vector_dim: Optional[int] = None):
        self.config = config or settings.qdrant
        self.vector_dim = vector_dim or settings.embedding.vector_dim
        if self.config.mode == "memory":
            self.client = QdrantClient(location=":memory:")
        elif self.config.mode == "cloud":
            self.client = QdrantClient(url=self.config.cloud_url)
        else:
            self.client = QdrantClient(path=self.config.local_path)
        self._ensure_collection()

    def _ensure_collection(self):
        if not self.collection_exists():
            logger.info(f"Creating Qdrant collection: {self.config.collection_name}")
            self.client.create_collection(
                collection_name=self.config.collection_name,
                vectors_config=rest.VectorParams(
                    size=self.vector_dim,
                    distance=rest.Distance.COSINE
                ),
                hnsw_config=rest.HnswConfigDiff(
                    m=self.config.hnsw_m,
                    ef_construct=self.config.hnsw_ef_construct
                )
            )
            # Create payload indexes for faster filtering
            for field in ["session_id", "filename", "page_number"]:
                self.client.create_payload_index(
                    collection_name=self.config.collection_name,
                    field_name=field,
                    field_schema=rest.PayloadSchemaType.KEYWORD if field != "page_number" else rest.PayloadSchemaType.INTEGER
                )

    def collection_exists(self) -> bool:
        collections = self.client.get_collections().collections
        return any(c.name == self.config.collection_name for c in collections)

    def upsert(self, records: List[VectorRecord]) -> None:
        points = [
            rest.PointStruct(
                id=_to_uuid(record.id),
                vector=record.embedding,
                payload=record.metadata.model_dump(mode="json")
            )
            for record in records
        ]

        if points:
            logger.info(f"Upserting {len(points)} vectors")
            self.client.upsert(
                collection_name=self.config.collection_name,
                points=points
            )

    @staticmethod
    def _session_filter(session_id: str) -> rest.Filter:
        return rest.Filter(
            must=[
                rest.FieldCondition(
                    key="session_id",
                    match=rest.MatchValue(value=session_id)
                )
            ]
        )

    def search(self, vector: List[float], top_k: int, session_id: Optional[str] = None) -> List[Dict]:
        results = self.client.query_points(
            collection_name=self.config.collection_name,
            query=vector,
            limit=top_k,
            query_filter=self._session_filter(session_id) if session_id else None,
            search_params=rest.SearchParams(
                hnsw_ef=self.config.hnsw_ef
            ),
            with_payload=True
        ).points

        return [
            {
                # Return the app-level record id from payload, not the internal Qdrant UUID
                "record_id": r.payload.get("record_id", str(r.id)),
                "score": r.score,
                "payload": r.payload
            }
            for r in results
        ]

    def count(self, session_id: Optional[str] = None) -> int:
        return self.client.count(
            collection_name=self.config.collection_name,
            count_filter=self._session_filter(session_id) if session_id else None,
            exact=True
        ).count

    def delete_session(self, session_id: str) -> None:
        self.client.delete(
            collection_name=self.config.collection_name,
            points_selector=rest.FilterSelector(filter=self._session_filter(session_id))
        )
