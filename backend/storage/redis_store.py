import json
import logging
import time
from typing import Dict, List, Optional
import redis
from backend.config.settings import settings, JobStoreConfig, EmbeddingConfig
from backend.core.errors import JobNotFoundError
from backend.models.document import SessionRecord
from backend.models.job import IngestionJob, JobStatus
from backend.storage.base import JobStore, SessionStore, EmbeddingCache
from backend.storage.memory_store import assemble_sections

logger = logging.getLogger(__name__)

# KEYS: job hash, index set[, set that suppresses the increment]
# ARGV: counter field, batch index ('' = unconditional)
_INCREMENT_LUA = """
if redis.call('EXISTS', KEYS[1]) == 0 then return -1 end
if ARGV[2] ~= '' then
  if #KEYS >= 3 and redis.call('SISMEMBER', KEYS[3], ARGV[2]) == 1 then
    return tonumber(redis.call('HGET', KEYS[1], ARGV[1]))
  end
  if redis.call('SADD', KEYS[2], ARGV[2]) == 0 then
    return tonumber(redis.call('HGET', KEYS[1], ARGV[1]))
  end
  local ttl = redis.call('TTL', KEYS[1])
  if ttl > 0 then redis.call('EXPIRE', KEYS[2], ttl) end
end
return redis.call('HINCRBY', KEYS[1], ARGV[1], 1)
"""

# KEYS: job hash, sections hash | ARGV: batch index, section text
_APPEND_LUA = """
if redis.call('EXISTS', KEYS[1]) == 0 then return -1 end
redis.call('HSET', KEYS[2], ARGV[1], ARGV[2])
local ttl = redis.call('TTL', KEYS[1])
if ttl > 0 then redis.call('EXPIRE', KEYS[2], ttl) end
return 1
"""

# KEYS: job hash | ARGV: status, error ('' = keep)
_SET_STATUS_LUA = """
if redis.call('EXISTS', KEYS[1]) == 0 then return -1 end
local current = redis.call('HGET', KEYS[1], 'status')
if (current == 'complete' or current == 'error') and current ~= ARGV[1] then return 0 end
redis.call('HSET', KEYS[1], 'status', ARGV[1])
if ARGV[2] ~= '' then redis.call('HSET', KEYS[1], 'error', ARGV[2]) end
return 1
"""


def create_redis_client(url: str) -> redis.Redis:
    return redis.Redis.from_url(url, decode_responses=True, socket_connect_timeout=5)


class RedisJobStore(JobStore):
    """
    JobStore over Redis hashes.
    job:{id}           -> scalar fields and counters
    job:{id}:sections  -> batch_index -> labeled section text
    job:{id}:done      -> batch indices counted as completed
    job:{id}:failed    -> batch indices counted as failed
    Every key shares the job's TTL so a crashed job never leaks state.
    """

    def __init__(self, client: redis.Redis, config: Optional[JobStoreConfig] = None):
        self.client = client
        self.config = config or settings.job_store
        self._increment = client.register_script(_INCREMENT_LUA)
        self._append = client.register_script(_APPEND_LUA)
        self._set_status = client.register_script(_SET_STATUS_LUA)

    def _key(self, job_id: str, suffix: str = "") -> str:
        base = f"{self.config.key_prefix}:{job_id}"
        return f"{base}:{suffix}" if suffix else base

    def create(self, job: IngestionJob) -> None:
        mapping = job.model_dump(mode="json", exclude={"extracted_text"}, exclude_none=True)
        pipe = self.client.pipeline(transaction=True)
        pipe.hset(self._key(job.job_id), mapping={k: str(v) for k, v in mapping.items()})
        pipe.expire(self._key(job.job_id), self.config.job_ttl_seconds)
        pipe.execute()

    def append_text(self, job_id: str, batch_index: int, label: str, text: str) -> None:
        result = self._append(
            keys=[self._key(job_id), self._key(job_id, "sections")],
            args=[batch_index, f"\n\n{label}\n\n{text}"]
        )
        if int(result) < 0:
            raise JobNotFoundError(job_id)

    def _run_increment(self, job_id: str, field: str, index_set: str, batch_index: Optional[int],
                       skip_if_in: Optional[str] = None) -> int:
        keys = [self._key(job_id), self._key(job_id, index_set)]
        if skip_if_in:
            keys.append(self._key(job_id, skip_if_in))
        result = int(self._increment(keys=keys, args=[field, "" if batch_index is None else batch_index]))
        if result < 0:
            raise JobNotFoundError(job_id)
        return result

    def increment_completed(self, job_id: str, batch_index: Optional[int] = None) -> int:
        return self._run_increment(job_id, "completed_batches", "done", batch_index)

    def increment_failed(self, job_id: str, batch_index: Optional[int] = None) -> int:
        return self._run_increment(job_id, "failed_batches", "failed", batch_index, skip_if_in="done")

    def set_status(self, job_id: str, status: JobStatus, error: Optional[str] = None) -> bool:
        result = int(self._set_status(keys=[self._key(job_id)], args=[status.value, error or ""]))
        if result < 0:
            raise JobNotFoundError(job_id)
        return result == 1

    def read(self, job_id: str, include_text: bool = True) -> Optional[IngestionJob]:
        if not include_text:
            fields = self.client.hgetall(self._key(job_id))
            return IngestionJob(**fields) if fields else None

        pipe = self.client.pipeline(transaction=False)
        pipe.hgetall(self._key(job_id))
        pipe.hgetall(self._key(job_id, "sections"))
        fields, sections = pipe.execute()
        if not fields:
            return None
        text = assemble_sections({int(k): v for k, v in sections.items()})
        return IngestionJob(extracted_text=text, **fields)

    def delete(self, job_id: str) -> None:
        self.client.delete(
            self._key(job_id),
            self._key(job_id, "sections"),
            self._key(job_id, "done"),
            self._key(job_id, "failed")
        )

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False


class RedisSessionStore(SessionStore):
    def __init__(self, client: redis.Redis, config: Optional[JobStoreConfig] = None):
        self.client = client
        self.config = config or settings.job_store

    def _save(self, record: SessionRecord) -> None:
        self.client.setex(f"session:{record.session_id}", self.config.session_ttl_seconds, record.model_dump_json())

    def get(self, session_id: str) -> Optional[SessionRecord]:
        data = self.client.get(f"session:{session_id}")
        return SessionRecord.model_validate_json(data) if data else None

    def ensure(self, session_id: str) -> SessionRecord:
        record = self.get(session_id)
        if record is None:
            now = int(time.time() * 1000)
            record = SessionRecord(session_id=session_id, created_at=now, last_active=now)
            self._save(record)
            logger.info(f"Session created: {session_id}")
        return record

    def add_document(self, session_id: str, filename: str) -> SessionRecord:
        record = self.ensure(session_id)
        if filename not in record.documents:
            record.documents.append(filename)
            record.last_active = int(time.time() * 1000)
            self._save(record)
        return record


class RedisEmbeddingCache(EmbeddingCache):
    def __init__(self, client: redis.Redis, config: Optional[EmbeddingConfig] = None):
        self.client = client
        self.config = config or settings.embedding

    def get_many(self, keys: List[str]) -> Dict[str, List[float]]:
        if not keys:
            return {}
        values = self.client.mget([f"emb:{k}" for k in keys])
        return {k: json.loads(v) for k, v in zip(keys, values) if v}

    def set_many(self, items: Dict[str, List[float]]) -> None:
        if not items:
            return
        pipe = self.client.pipeline(transaction=False)
        for key, vector in items.items():
            pipe.setex(f"emb:{key}", self.config.cache_ttl_seconds, json.dumps(vector))
        pipe.execute()
