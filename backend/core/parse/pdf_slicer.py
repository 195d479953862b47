import logging
from typing import Optional, Tuple
import fitz  # PyMuPDF

logger = logging.getLogger(__name__)

_MAGIC = [
    (b"%PDF", "application/pdf"),
    (b"\x89PNG", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF8", "image/gif"),
]


def detect_mime(data: bytes) -> Optional[str]:
    """Sniffs the document type from leading bytes; None when unrecognised."""
    head = data[:16]
    # PDFs may carry junk before the header
    if b"%PDF" in data[:1024]:
        return "application/pdf"
    for magic, mime in _MAGIC:
        if head.startswith(magic):
            return mime
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"
    return None


class PDFSlicer:
    """
    Copies a 1-based inclusive page range out of a PDF into a new, smaller PDF.
    The requested range is clamped to the real page count, since batch plans come
    from an estimate that may be wrong in either direction.
    """

    def slice(self, data: bytes, start_page: int, end_page: int) -> Tuple[bytes, int]:
        """Returns (pdf_bytes, pages_copied). pages_copied == 0 when the range lies past the end."""
        with fitz.open(stream=data, filetype="pdf") as doc:
            page_count = doc.page_count
            first = max(0, start_page - 1)
            last = min(page_count, end_page) - 1

            if first > last:
                logger.info(f"Range {start_page}-{end_page} is beyond the document ({page_count} pages)")
                return b"", 0

            with fitz.open() as batch_doc:
                batch_doc.insert_pdf(doc, from_page=first, to_page=last)
                batch_bytes = batch_doc.tobytes(garbage=3, deflate=True)

        pages = last - first + 1
        logger.info(
            f"Sliced pages {first + 1}-{last + 1} ({pages} pages, "
            f"{len(batch_bytes)} of {len(data)} bytes)"
        )
        return batch_bytes, pages

    def page_count(self, data: bytes) -> int:
        with fitz.open(stream=data, filetype="pdf") as doc:
            return doc.page_count
