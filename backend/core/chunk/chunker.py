import logging
import re
from typing import List, Optional, Tuple
from backend.config.settings import settings, ChunkingConfig
from backend.models.chunk import ChunkType, DocumentChunk, PageSection

logger = logging.getLogger(__name__)

# "=== PAGE 7 ===", "=== SECTION 2 ===", "=== BATCH 3: PAGES 101-150 ==="
_MARKER = re.compile(
    r"===\s*(PAGE|BATCH|SECTION)\s+(\d+)(?::\s*PAGES?\s+(\d+)\s*-\s*(\d+))?\s*===",
    re.IGNORECASE
)
_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_TABLE_SEPARATOR = re.compile(r"\|\s*:?-{3,}")
_DIGIT_PIPE = re.compile(r"\d\s*\||\|\s*\d")
_MARKDOWN_HEADING = re.compile(r"^#{1,6}\s+\S")


def classify_chunk(content: str) -> ChunkType:
    lines = content.strip().splitlines()
    first_line = lines[0].strip() if lines else ""

    if "|" in content and (_TABLE_SEPARATOR.search(content) or _DIGIT_PIPE.search(content)):
        return ChunkType.table

    if _MARKDOWN_HEADING.match(first_line):
        return ChunkType.header

    letters = sum(1 for c in first_line if c.isalpha())
    if letters >= 2 and len(first_line) <= 60 and first_line == first_line.upper():
        return ChunkType.header

    return ChunkType.text


class Chunker:
    """
    Page-bounded, paragraph-aware chunking of assembled extraction output.
    - Page attribution comes from the section markers left by workers and the extraction model.
    - Paragraphs accumulate up to target_size; a closed chunk seeds the next
      with a trailing overlap of overlap_percent of the target.
    - Output is deterministic for a given text and config.
    """

    def __init__(self, config: Optional[ChunkingConfig] = None):
        self.config = config or settings.chunking

    def split_sections(self, text: str) -> List[PageSection]:
        sections = []
        last_index = 0
        current_page = 1
        batch_start = None

        for match in _MARKER.finditer(text):
            content = text[last_index:match.start()].strip()
            if content:
                sections.append(PageSection(page_number=current_page, content=content))

            kind = match.group(1).upper()
            number = int(match.group(2))
            # Batch markers carry a range; attribute to its first page until a PAGE marker refines it
            if kind == "BATCH" and match.group(3):
                batch_start = int(match.group(3))
                current_page = batch_start
            elif kind == "PAGE" and batch_start and number < batch_start:
                # The model sees the slice numbered from 1
                current_page = batch_start + number - 1
            else:
                current_page = number
            last_index = match.end()

        tail = text[last_index:].strip()
        if tail:
            sections.append(PageSection(page_number=current_page, content=tail))

        if not sections and text.strip():
            sections.append(PageSection(page_number=1, content=text.strip()))
        return sections

    def chunk_text(self, text: str) -> List[DocumentChunk]:
        """Returns [] when the text is below min_index_chars."""
        if len(text.strip()) < self.config.min_index_chars:
            return []

        chunks: List[DocumentChunk] = []
        for section in self.split_sections(text):
            for content, overlap in self._split_section(section.content):
                if len(chunks) >= self.config.max_chunks:
                    logger.info(f"Chunk cap of {self.config.max_chunks} reached; dropping the rest")
                    return chunks
                if len(content) < self.config.min_chunk_chars:
                    continue
                chunks.append(DocumentChunk(
                    content=content,
                    page_number=section.page_number,
                    chunk_index=len(chunks),
                    type=classify_chunk(content),
                    overlap_chars=overlap
                ))
        return chunks

    def _split_section(self, content: str) -> List[Tuple[str, int]]:
        """Returns (chunk_text, overlap_chars) pairs for one page section."""
        pieces = []
        for paragraph in _PARAGRAPH_BREAK.split(content):
            paragraph = paragraph.strip()
            if paragraph:
                pieces.extend(self._split_long_paragraph(paragraph))

        results = []
        current = ""
        overlap = 0
        for piece in pieces:
            if not current:
                current = piece
                continue

            if len(current) + 2 + len(piece) > self.config.target_size and len(current) >= self.config.min_size:
                results.append((current, overlap))
                tail = self._overlap_tail(current)
                if tail:
                    current = f"{tail}\n\n{piece}"
                    overlap = len(tail) + 2
                else:
                    current = piece
                    overlap = 0
            else:
                current = f"{current}\n\n{piece}"

        if current:
            results.append((current, overlap))
        return results

    def _split_long_paragraph(self, paragraph: str) -> List[str]:
        """Hard-wraps a paragraph longer than the target at whitespace."""
        target = self.config.target_size
        parts = []
        while len(paragraph) > target:
            cut = paragraph.rfind(" ", 0, target)
            if cut <= 0:
                cut = target
            parts.append(paragraph[:cut].rstrip())
            paragraph = paragraph[cut:].lstrip()
        if paragraph:
            parts.append(paragraph)
        return parts

    def _overlap_tail(self, chunk: str) -> str:
        size = self.config.target_size * self.config.overlap_percent // 100
        if size <= 0:
            return ""
        if len(chunk) <= size:
            return chunk.strip()
        tail = chunk[-size:]
        # Start on a word boundary
        boundary = re.search(r"\s", tail)
        if boundary:
            tail = tail[boundary.end():]
        return tail.strip()
