import logging
import math
import re
from typing import List, Optional, Tuple
from backend.config.settings import settings, BatchingConfig
from backend.core.parse.pdf_slicer import detect_mime
from backend.models.document import PageEstimate

logger = logging.getLogger(__name__)

_COUNT_PATTERN = re.compile(rb"/Count\s+(\d+)")
_PAGE_PATTERN = re.compile(rb"/Type\s*/Page[^s]")


class BatchPlanner:
    """
    Splits a document into bounded page-range batches.
    - Page counts are estimated by scanning raw bytes; the estimate is advisory.
    - The batch count is capped; pages past the cap are dropped, not errored.
    """

    def __init__(self, config: Optional[BatchingConfig] = None):
        self.config = config or settings.batching

    def estimate_pages(self, data: bytes) -> PageEstimate:
        size = len(data)
        mime = detect_mime(data)
        if mime is not None and mime.startswith("image/"):
            return PageEstimate(pages=1, confident=True, method="image", file_size=size)

        head = data[:self.config.scan_bytes]
        ratio_pages = max(1, math.ceil(size / self.config.bytes_per_page))

        counts = [int(m) for m in _COUNT_PATTERN.findall(head)]
        if counts and max(counts) > 0:
            # Nested page trees repeat /Count; the root holds the largest value
            estimate = PageEstimate(pages=max(counts), confident=True, method="count", file_size=size)
        else:
            page_refs = len(_PAGE_PATTERN.findall(head))
            if page_refs:
                estimate = PageEstimate(pages=max(page_refs, ratio_pages), confident=False, method="page_refs", file_size=size)
            else:
                estimate = PageEstimate(pages=ratio_pages, confident=False, method="byte_ratio", file_size=size)

        logger.info(f"Page count estimated: {estimate.pages} ({estimate.method}, {size} bytes)")
        return estimate

    def plan(self,
             estimated_pages: int,
             pages_per_batch: Optional[int] = None,
             max_batches: Optional[int] = None) -> List[Tuple[int, int]]:
        """
        Returns ordered (start_page, end_page) pairs, 1-based and inclusive.
        Covers [1, min(estimated_pages, max_batches * pages_per_batch)].
        """
        per_batch = pages_per_batch or self.config.pages_per_batch
        cap = max_batches or self.config.max_batches
        if estimated_pages <= 0:
            return []
        if per_batch <= 0 or cap <= 0:
            raise ValueError("pages_per_batch and max_batches must be positive")

        num_batches = min(math.ceil(estimated_pages / per_batch), cap)
        batches = []
        for i in range(num_batches):
            start_page = i * per_batch + 1
            end_page = min((i + 1) * per_batch, estimated_pages)
            batches.append((start_page, end_page))

        dropped = estimated_pages - batches[-1][1]
        if dropped > 0:
            logger.warning(f"Batch cap {cap} reached; {dropped} trailing pages will not be extracted")
        return batches
