import base64
import logging
import random
import time
import httpx
from typing import Any, Callable, Dict, List, Optional, Tuple
from backend.config.settings import settings, ExtractionConfig
from backend.core.errors import ExtractionError, RateLimitError
from backend.core.parse.pdf_slicer import PDFSlicer, detect_mime

logger = logging.getLogger(__name__)

_RATE_LIMIT_MARKERS = ("429", "rate limit", "rate-limit", "ratelimit", "quota", "resource_exhausted", "too many requests")

EXTRACTION_PROMPT = """Extract ALL text from this document batch (pages {start}-{end} of {total}).

REQUIREMENTS:
1. Mark each page: === PAGE X === (X is the page number in the full document)
2. Extract EVERY word, number and symbol exactly
3. Tables: markdown | format with all rows and columns
4. Financial data: exact amounts, currency symbols, percentages and ratios
5. Non-Latin scripts: proper Unicode
6. Charts/images: describe the key data points
7. Do NOT summarize - complete verbatim extraction

Extract pages {start}-{end}:"""


def is_rate_limit_error(error: Optional[BaseException]) -> bool:
    """Rate limits are recognised by error content; providers do not share a structured code."""
    if error is None:
        return False
    if isinstance(error, RateLimitError):
        return True
    message = str(error).lower()
    return any(marker in message for marker in _RATE_LIMIT_MARKERS)


class ExtractionClient:
    """
    OpenRouter API client for verbatim page-range extraction.
    - Slices the assigned pages out of the full PDF before upload.
    - Retries with exponential backoff; rate limits back off from a larger base delay.
    """

    def __init__(self,
                 config: Optional[ExtractionConfig] = None,
                 api_key: Optional[str] = None,
                 slicer: Optional[PDFSlicer] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.config = config or settings.extraction
        self.api_key = api_key if api_key is not None else settings.openrouter_api_key
        self.slicer = slicer or PDFSlicer()
        self._sleep = sleep
        self.base_url = f"{self.config.base_url.rstrip('/')}/chat/completions"
        self.headers = {
            "Authorization": f"Bearer {self.api_key}" if self.api_key else "",
            "X-Title": "Arthyx Ingest",
            "Content-Type": "application/json"
        }

    def extract(self, data: bytes, start_page: int, end_page: int, total_pages: int) -> Tuple[str, int]:
        """
        Returns (text, pages_processed) for the 1-based inclusive range.
        pages_processed is 0 when the estimate overshot and the range holds no real pages.
        """
        mime = detect_mime(data)

        if mime == "application/pdf":
            batch_bytes, pages = self.slicer.slice(data, start_page, end_page)
            if pages == 0:
                return "", 0
            attachment = {
                "type": "file",
                "file": {
                    "filename": f"pages_{start_page}-{end_page}.pdf",
                    "file_data": f"data:application/pdf;base64,{base64.b64encode(batch_bytes).decode('ascii')}"
                }
            }
        elif mime is not None:
            # Images are a single page; only the first batch carries them
            if start_page > 1:
                return "", 0
            pages = 1
            attachment = {
                "type": "image_url",
                "image_url": {"url": f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"}
            }
        else:
            # Unknown binary: treat as plain text, no model call needed
            if start_page > 1:
                return "", 0
            return data.decode("utf-8", errors="ignore"), 1

        prompt = EXTRACTION_PROMPT.format(start=start_page, end=end_page, total=total_pages)
        messages = [{"role": "user", "content": [{"type": "text", "text": prompt}, attachment]}]
        text = self._complete(messages)
        return text, pages

    def _complete(self, messages: List[Dict[str, Any]]) -> str:
        payload = {
            "model": self.config.model,
            "messages": messages,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "stream": False
        }

        if not self.api_key:
            logger.warning("OPENROUTER_API_KEY is not set. Extraction calls will fail.")

        last_error: Optional[Exception] = None
        for attempt in range(self.config.max_retries):
            try:
                with httpx.Client(timeout=self.config.timeout) as client:
                    response = client.post(self.base_url, headers=self.headers, json=payload)

                    if response.status_code == 429:
                        raise RateLimitError(f"Rate limited (429): {response.text[:200]}")

                    response.raise_for_status()
                    data = response.json()
                    # OpenRouter reports some upstream failures inside a 200 body
                    if data.get("error"):
                        raise ExtractionError(f"Provider error: {data['error']}")
                    return data["choices"][0]["message"]["content"] or ""
            except Exception as e:
                last_error = e
                if attempt == self.config.max_retries - 1:
                    break
                base = self.config.rate_limit_base_delay if is_rate_limit_error(e) else self.config.base_delay
                delay = base * (2 ** attempt) + random.uniform(0, 1)
                logger.warning(f"Extraction failed: {e}. Retrying in {delay:.2f}s... (Attempt {attempt + 1}/{self.config.max_retries})")
                self._sleep(delay)

        if is_rate_limit_error(last_error):
            raise RateLimitError(f"Rate limited after {self.config.max_retries} attempts: {last_error}") from last_error
        raise ExtractionError(f"Extraction failed after {self.config.max_retries} attempts: {last_error}") from last_error
