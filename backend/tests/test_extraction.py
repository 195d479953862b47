from unittest.mock import MagicMock, patch
import httpx
import pytest
from backend.config.settings import ExtractionConfig
from backend.core.errors import ExtractionError, RateLimitError
from backend.core.extract.extraction_client import ExtractionClient, is_rate_limit_error

CONFIG = ExtractionConfig(max_retries=3, base_delay=2.0, rate_limit_base_delay=10.0)
PDF = b"%PDF-1.7\nfull document"


def _response(status_code=200, content="=== PAGE 1 ===\nHello", body=None):
    response = MagicMock()
    response.status_code = status_code
    response.text = "rate limit exceeded" if status_code == 429 else ""
    response.json.return_value = body if body is not None else {"choices": [{"message": {"content": content}}]}
    return response


def _client(slice_result=(b"%PDF-sliced", 50)):
    slicer = MagicMock()
    slicer.slice.return_value = slice_result
    sleep = MagicMock()
    return ExtractionClient(CONFIG, api_key="test-key", slicer=slicer, sleep=sleep), sleep


@patch("backend.core.extract.extraction_client.httpx.Client")
def test_pdf_range_is_sliced_and_sent(client_cls):
    post = client_cls.return_value.__enter__.return_value.post
    post.return_value = _response()
    client, _ = _client()

    text, pages = client.extract(PDF, 51, 100, 200)

    assert (text, pages) == ("=== PAGE 1 ===\nHello", 50)
    client.slicer.slice.assert_called_once_with(PDF, 51, 100)
    payload = post.call_args.kwargs["json"]
    content = payload["messages"][0]["content"]
    assert "pages 51-100 of 200" in content[0]["text"]
    assert content[1]["type"] == "file"
    assert content[1]["file"]["file_data"].startswith("data:application/pdf;base64,")
    assert post.call_args.kwargs["headers"]["Authorization"] == "Bearer test-key"


@patch("backend.core.extract.extraction_client.httpx.Client")
def test_range_past_the_end_skips_the_model(client_cls):
    client, _ = _client(slice_result=(b"", 0))
    assert client.extract(PDF, 151, 200, 200) == ("", 0)
    client_cls.assert_not_called()


@patch("backend.core.extract.extraction_client.httpx.Client")
def test_image_goes_to_first_batch_only(client_cls):
    post = client_cls.return_value.__enter__.return_value.post
    post.return_value = _response(content="receipt text")
    client, _ = _client()
    image = b"\x89PNG\r\n\x1a\n" + b"\0" * 64

    assert client.extract(image, 1, 1, 1) == ("receipt text", 1)
    assert post.call_args.kwargs["json"]["messages"][0]["content"][1]["type"] == "image_url"
    assert client.extract(image, 51, 100, 100) == ("", 0)


@patch("backend.core.extract.extraction_client.httpx.Client")
def test_rate_limits_back_off_from_larger_base(client_cls):
    post = client_cls.return_value.__enter__.return_value.post
    post.side_effect = [_response(429), _response(429), _response()]
    client, sleep = _client()

    text, _ = client.extract(PDF, 1, 50, 50)

    assert text == "=== PAGE 1 ===\nHello"
    delays = [c.args[0] for c in sleep.call_args_list]
    assert len(delays) == 2
    assert 10.0 <= delays[0] < 11.0
    assert 20.0 <= delays[1] < 21.0


@patch("backend.core.extract.extraction_client.httpx.Client")
def test_other_errors_use_base_delay_then_raise(client_cls):
    post = client_cls.return_value.__enter__.return_value.post
    post.side_effect = httpx.ConnectError("connection refused")
    client, sleep = _client()

    with pytest.raises(ExtractionError) as exc_info:
        client.extract(PDF, 1, 50, 50)

    assert not isinstance(exc_info.value, RateLimitError)
    assert post.call_count == 3
    delays = [c.args[0] for c in sleep.call_args_list]
    assert 2.0 <= delays[0] < 3.0
    assert 4.0 <= delays[1] < 5.0


@patch("backend.core.extract.extraction_client.httpx.Client")
def test_persistent_rate_limit_raises_rate_limit_error(client_cls):
    client_cls.return_value.__enter__.return_value.post.return_value = _response(429)
    client, _ = _client()
    with pytest.raises(RateLimitError):
        client.extract(PDF, 1, 50, 50)


@patch("backend.core.extract.extraction_client.httpx.Client")
def test_error_inside_ok_body_is_retried(client_cls):
    post = client_cls.return_value.__enter__.return_value.post
    post.side_effect = [_response(body={"error": {"message": "RESOURCE_EXHAUSTED"}}), _response()]
    client, sleep = _client()

    assert client.extract(PDF, 1, 50, 50)[0] == "=== PAGE 1 ===\nHello"
    assert sleep.call_args.args[0] >= 10.0


def test_unknown_bytes_are_read_as_text():
    client, _ = _client()
    assert client.extract(b"plain notes", 1, 1, 1) == ("plain notes", 1)


@pytest.mark.parametrize("message,expected", [
    ("HTTP 429 Too Many Requests", True),
    ("Quota exceeded for model", True),
    ("RESOURCE_EXHAUSTED", True),
    ("Rate limit reached", True),
    ("connection refused", False),
])
def test_rate_limit_detection(message, expected):
    assert is_rate_limit_error(Exception(message)) is expected
