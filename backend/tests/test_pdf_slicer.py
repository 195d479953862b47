import fitz
import pytest
from backend.core.parse.pdf_slicer import PDFSlicer, detect_mime


@pytest.fixture
def five_page_pdf() -> bytes:
    with fitz.open() as doc:
        for i in range(5):
            page = doc.new_page()
            page.insert_text((72, 72), f"Page {i + 1} content")
        return doc.tobytes()


def test_slice_copies_requested_pages(five_page_pdf):
    slicer = PDFSlicer()
    data, pages = slicer.slice(five_page_pdf, 2, 3)

    assert pages == 2
    assert slicer.page_count(data) == 2
    with fitz.open(stream=data, filetype="pdf") as doc:
        assert "Page 2 content" in doc[0].get_text()


def test_slice_clamps_to_real_page_count(five_page_pdf):
    data, pages = PDFSlicer().slice(five_page_pdf, 4, 50)
    assert pages == 2


def test_slice_past_the_end_is_empty(five_page_pdf):
    assert PDFSlicer().slice(five_page_pdf, 6, 10) == (b"", 0)


@pytest.mark.parametrize("head,mime", [
    (b"%PDF-1.7", "application/pdf"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff\xe0", "image/jpeg"),
    (b"GIF89a", "image/gif"),
    (b"RIFF\x00\x00\x00\x00WEBPVP8 ", "image/webp"),
    (b"hello world", None),
])
def test_detect_mime(head, mime):
    assert detect_mime(head + b"\0" * 32) == mime
