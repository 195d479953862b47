import hashlib
import logging
from typing import Dict, List, Optional
import numpy as np
from sentence_transformers import SentenceTransformer
from backend.config.settings import settings, EmbeddingConfig
from backend.storage.base import EmbeddingCache

logger = logging.getLogger(__name__)


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class Embedder:
    """
    Handles embedding generation for document chunks.
    - Model is loaded on first use.
    - Embeddings are cached by content hash across documents and sessions.
    - A batch that fails to embed gets zero vectors so indexing still completes.
    """

    def __init__(self, config: Optional[EmbeddingConfig] = None, cache: Optional[EmbeddingCache] = None):
        self.config = config or settings.embedding
        self.cache = cache
        self._model = None

    @property
    def model(self) -> SentenceTransformer:
        if self._model is None:
            logger.info(f"Loading embedding model: {self.config.model_name}...")
            self._model = SentenceTransformer(self.config.model_name, device="cpu")
        return self._model

    def embed_texts(self, texts: List[str]) -> np.ndarray:
        """Returns one row per input text, in input order."""
        if not texts:
            return np.zeros((0, self.config.vector_dim), dtype=np.float32)

        prepared = [t[:self.config.max_chars] for t in texts]
        keys = [content_hash(t) for t in prepared]

        vectors: Dict[str, List[float]] = {}
        if self.cache is not None:
            try:
                vectors.update(self.cache.get_many(list(set(keys))))
            except Exception as e:
                logger.warning(f"Embedding cache lookup failed: {e}")

        missing = []
        seen = set()
        for key, text in zip(keys, prepared):
            if key not in vectors and key not in seen:
                seen.add(key)
                missing.append((key, text))
        logger.info(f"Embedding {len(texts)} texts ({len(texts) - len(missing)} cached)")

        batch_size = self.config.batch_size
        for start in range(0, len(missing), batch_size):
            batch = missing[start:start + batch_size]
            vectors.update(self._embed_batch(batch))

        return np.array([vectors[k] for k in keys], dtype=np.float32)

    def _embed_batch(self, batch) -> Dict[str, List[float]]:
        batch_texts = [text for _, text in batch]
        try:
            embeddings = self.model.encode(
                batch_texts,
                batch_size=self.config.batch_size,
                show_progress_bar=False,
                normalize_embeddings=self.config.normalise
            )
        except Exception as e:
            # Zero vectors are never cached, so a later run retries these texts
            logger.error(f"Embedding batch of {len(batch)} failed, using zero vectors: {e}")
            return {key: [0.0] * self.config.vector_dim for key, _ in batch}

        computed = {key: np.asarray(embeddings[i]).tolist() for i, (key, _) in enumerate(batch)}
        if self.cache is not None:
            try:
                self.cache.set_many(computed)
            except Exception as e:
                logger.warning(f"Embedding cache write failed: {e}")
        return computed
