from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel
import yaml
import os

class BatchingConfig(BaseModel):
    pages_per_batch: int = 50
    max_batches: int = 12
    bytes_per_page: int = 12000          # fallback ratio when no page markers are found
    scan_bytes: int = 100000             # how much of the source the estimator inspects

class JobStoreConfig(BaseModel):
    backend: str = "redis"               # "redis" | "memory"
    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = "job"
    job_ttl_seconds: int = 3600
    session_ttl_seconds: int = 86400

class QueueConfig(BaseModel):
    backend: str = "thread"              # "thread" | "celery"
    broker_url: str = "redis://localhost:6379/1"
    max_retries: int = 2
    retry_delay_seconds: int = 5
    worker_threads: int = 4
    dedup_ttl_seconds: int = 3600

class StreamingConfig(BaseModel):
    poll_interval: float = 2.0
    max_attempts: int = 180
    # Progress anchors on the 0-100 scale
    fetch_progress: int = 5
    analysed_progress: int = 10
    job_created_progress: int = 15
    queued_progress: int = 20
    extraction_end_progress: int = 80
    indexing_progress: int = 85
    indexed_progress: int = 95

class ChunkingConfig(BaseModel):
    target_size: int = 1000
    min_size: int = 200
    overlap_percent: int = 15
    min_chunk_chars: int = 50
    min_index_chars: int = 100
    max_chunks: int = 50

class EmbeddingConfig(BaseModel):
    model_name: str = "BAAI/bge-base-en-v1.5"
    batch_size: int = 10
    vector_dim: int = 768
    max_chars: int = 1500
    normalise: bool = True
    cache_ttl_seconds: int = 7 * 86400

class QdrantConfig(BaseModel):
    mode: str = "local"                  # "local" | "cloud" | "memory"
    local_path: str = "./data/qdrant_store"
    cloud_url: str = ""
    collection_name: str = "document_chunks"
    hnsw_m: int = 16
    hnsw_ef_construct: int = 100
    hnsw_ef: int = 64

class ExtractionConfig(BaseModel):
    base_url: str = "https://openrouter.ai/api/v1"
    model: str = "google/gemini-2.0-flash-001"
    max_tokens: int = 8192
    temperature: float = 0.0
    max_retries: int = 3
    base_delay: float = 2.0
    rate_limit_base_delay: float = 10.0
    timeout: float = 120.0

class StorageConfig(BaseModel):
    uploads_path: str = "./data/uploads"

class AppSettings(BaseSettings):
    batching: BatchingConfig = BatchingConfig()
    job_store: JobStoreConfig = JobStoreConfig()
    queue: QueueConfig = QueueConfig()
    streaming: StreamingConfig = StreamingConfig()
    chunking: ChunkingConfig = ChunkingConfig()
    embedding: EmbeddingConfig = EmbeddingConfig()
    qdrant: QdrantConfig = QdrantConfig()
    extraction: ExtractionConfig = ExtractionConfig()
    storage: StorageConfig = StorageConfig()
    openrouter_api_key: str = ""
    redis_url: str = ""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

def load_settings(config_path: str = "backend/config/config.yaml") -> AppSettings:
    """Loads settings from config.yaml and applies env overrides."""

    paths_to_try = [
        config_path,
        "config.yaml",
        "config/config.yaml",
        os.path.join(os.path.dirname(__file__), "config.yaml")
    ]

    yaml_data = {}
    for path in paths_to_try:
        if os.path.exists(path):
            with open(path, "r", encoding="utf-8") as f:
                yaml_data = yaml.safe_load(f) or {}
            break

    job_store = JobStoreConfig(**yaml_data.get("job_store", {}))
    queue = QueueConfig(**yaml_data.get("queue", {}))

    # Env-level overrides (secrets and connection strings never live in config.yaml)
    env = AppSettings()
    if env.redis_url:
        job_store.redis_url = env.redis_url
        queue.broker_url = env.redis_url

    return AppSettings(
        batching=BatchingConfig(**yaml_data.get("batching", {})),
        job_store=job_store,
        queue=queue,
        streaming=StreamingConfig(**yaml_data.get("streaming", {})),
        chunking=ChunkingConfig(**yaml_data.get("chunking", {})),
        embedding=EmbeddingConfig(**yaml_data.get("embedding", {})),
        qdrant=QdrantConfig(**yaml_data.get("qdrant", {})),
        extraction=ExtractionConfig(**yaml_data.get("extraction", {})),
        storage=StorageConfig(**yaml_data.get("storage", {})),
        openrouter_api_key=env.openrouter_api_key,
        redis_url=env.redis_url
    )

# Global settings instance
settings = load_settings()
