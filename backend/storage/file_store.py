import hashlib
import logging
import os
from typing import Optional
import httpx
from backend.config.settings import settings, StorageConfig
from backend.core.errors import SourceFetchError
from backend.storage.base import SourceStore

logger = logging.getLogger(__name__)

LOCAL_SCHEME = "local://"

class LocalSourceStore(SourceStore):
    """
    Implements SourceStore using the local disk.
    - Uploaded bytes are stored content-addressed (sha256 + extension).
    - http(s) refs (blob URLs) are fetched on every call; workers never share a buffer.
    """

    def __init__(self, config: Optional[StorageConfig] = None, timeout: float = 60.0):
        self.config = config or settings.storage
        self.uploads_path = self.config.uploads_path
        self.timeout = timeout
        os.makedirs(self.uploads_path, exist_ok=True)

    def save(self, filename: str, file_bytes: bytes) -> str:
        digest = hashlib.sha256(file_bytes).hexdigest()[:32]
        ext = os.path.splitext(filename)[1].lower()
        name = f"{digest}{ext}"
        path = os.path.join(self.uploads_path, name)
        if not os.path.exists(path):
            with open(path, "wb") as f:
                f.write(file_bytes)
        return f"{LOCAL_SCHEME}{name}"

    def fetch(self, source_ref: str) -> bytes:
        if source_ref.startswith(("http://", "https://")):
            return self._fetch_remote(source_ref)

        if not source_ref.startswith(LOCAL_SCHEME):
            raise SourceFetchError(f"Unsupported source reference: {source_ref}")

        name = source_ref[len(LOCAL_SCHEME):]
        # Refs come from clients; never resolve outside the uploads directory
        if os.path.basename(name) != name:
            raise SourceFetchError(f"Invalid source reference: {source_ref}")

        path = os.path.join(self.uploads_path, name)
        if not os.path.exists(path):
            raise SourceFetchError(f"Source not found: {source_ref}")
        with open(path, "rb") as f:
            return f.read()

    def _fetch_remote(self, url: str) -> bytes:
        try:
            with httpx.Client(timeout=self.timeout, follow_redirects=True) as client:
                response = client.get(url)
                response.raise_for_status()
                return response.content
        except httpx.HTTPError as e:
            raise SourceFetchError(f"Failed to fetch source: {e}") from e
