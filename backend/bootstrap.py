import logging
from dataclasses import dataclass
from backend.config.settings import AppSettings
from backend.core.chunk.chunker import Chunker
from backend.core.dispatch.coordinator import DispatchCoordinator
from backend.core.embed.embedder import Embedder
from backend.core.extract.extraction_client import ExtractionClient
from backend.core.pipeline.indexing import IndexingPipeline
from backend.core.pipeline.ingestion import IngestionPipeline
from backend.core.pipeline.progress import ProgressStreamer
from backend.core.plan.batch_planner import BatchPlanner
from backend.core.worker.batch_worker import BatchWorker
from backend.storage.base import EmbeddingCache, JobStore, SessionStore, SourceStore, VectorStore
from backend.storage.file_store import LocalSourceStore
from backend.storage.memory_store import InMemoryEmbeddingCache, InMemoryJobStore, InMemorySessionStore
from backend.storage.qdrant_store import QdrantLocalStore
from backend.storage.redis_store import (
    RedisEmbeddingCache, RedisJobStore, RedisSessionStore, create_redis_client
)
from backend.workers.base import BatchQueue
from backend.workers.thread_queue import ThreadBatchQueue

logger = logging.getLogger(__name__)


@dataclass
class Components:
    job_store: JobStore
    session_store: SessionStore
    embedding_cache: EmbeddingCache
    source_store: SourceStore
    vector_store: VectorStore
    batch_worker: BatchWorker
    batch_queue: BatchQueue
    coordinator: DispatchCoordinator
    indexer: IndexingPipeline
    streamer: ProgressStreamer
    ingestion_pipeline: IngestionPipeline

    def shutdown(self) -> None:
        if isinstance(self.batch_queue, ThreadBatchQueue):
            self.batch_queue.stop()


def build_components(settings: AppSettings, start_queue: bool = True) -> Components:
    """Wires every component once per process from settings."""
    if settings.job_store.backend == "redis":
        client = create_redis_client(settings.job_store.redis_url)
        job_store = RedisJobStore(client, settings.job_store)
        session_store = RedisSessionStore(client, settings.job_store)
        embedding_cache = RedisEmbeddingCache(client, settings.embedding)
    else:
        job_store = InMemoryJobStore(settings.job_store)
        session_store = InMemorySessionStore(settings.job_store)
        embedding_cache = InMemoryEmbeddingCache()
    logger.info(f"Job store backend: {settings.job_store.backend}")

    source_store = LocalSourceStore(settings.storage)
    vector_store = QdrantLocalStore(settings.qdrant, vector_dim=settings.embedding.vector_dim)

    extraction_client = ExtractionClient(settings.extraction, api_key=settings.openrouter_api_key)
    batch_worker = BatchWorker(job_store, source_store, extraction_client)

    if settings.queue.backend == "celery":
        # Imported here so stand-alone mode does not configure a Celery app
        from backend.workers.celery_app import CeleryBatchQueue
        batch_queue = CeleryBatchQueue(create_redis_client(settings.queue.broker_url), settings.queue)
    else:
        batch_queue = ThreadBatchQueue(handler=batch_worker.process, config=settings.queue)
        if start_queue:
            batch_queue.start()
    logger.info(f"Batch queue backend: {settings.queue.backend}")

    coordinator = DispatchCoordinator(
        job_store, source_store, batch_queue,
        planner=BatchPlanner(settings.batching),
        config=settings.queue
    )
    indexer = IndexingPipeline(
        chunker=Chunker(settings.chunking),
        embedder=Embedder(settings.embedding, cache=embedding_cache),
        vector_store=vector_store,
        session_store=session_store
    )
    streamer = ProgressStreamer(job_store, indexer, settings.streaming)
    ingestion_pipeline = IngestionPipeline(coordinator, streamer, settings.streaming)

    return Components(
        job_store=job_store,
        session_store=session_store,
        embedding_cache=embedding_cache,
        source_store=source_store,
        vector_store=vector_store,
        batch_worker=batch_worker,
        batch_queue=batch_queue,
        coordinator=coordinator,
        indexer=indexer,
        streamer=streamer,
        ingestion_pipeline=ingestion_pipeline
    )
