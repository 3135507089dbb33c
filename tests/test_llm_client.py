import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from pagecrafter import llm_client
from pagecrafter.extraction import run_pipeline
from pagecrafter.pipelines import DOCUMENT_PIPELINE


def make_chunk(text_fragment, thought=False):
    part = {"text": text_fragment}
    if thought:
        part["thought"] = True
    return ("data: " + json.dumps({"candidates": [{"content": {"parts": [part]}}]})).encode("utf-8")


@pytest.fixture
def with_key(monkeypatch):
    monkeypatch.setattr(llm_client, "GEMINI_API_KEY", "fake_key")
    monkeypatch.setattr(llm_client, "GEMINI_MODEL", "gemini-2.5-flash")


def _response(lines, status_code=200):
    resp = MagicMock()
    resp.status_code = status_code
    resp.text = "upstream says no"
    resp.iter_lines.return_value = lines
    return resp


def test_missing_key_raises_before_any_request(monkeypatch):
    monkeypatch.setattr(llm_client, "GEMINI_API_KEY", "")
    with patch("requests.post") as mock_post:
        with pytest.raises(llm_client.MissingCredentialsError):
            llm_client.stream_text("anything")
        mock_post.assert_not_called()


def test_status_reflects_key(monkeypatch):
    monkeypatch.setattr(llm_client, "GEMINI_API_KEY", "")
    assert llm_client.status()["has_token"] is False
    monkeypatch.setattr(llm_client, "GEMINI_API_KEY", "k")
    body = llm_client.status()
    assert body["has_token"] is True
    assert body["provider"] == "gemini"


@patch("requests.post")
def test_streams_text_fragments_in_order(mock_post, with_key):
    mock_post.return_value = _response(
        [
            make_chunk("RESPONSE: Here "),
            b"",
            make_chunk("thinking about it", thought=True),
            make_chunk("is your doc.\nJSON_START\n{\"title\": "),
            b"data: {not json",
            make_chunk("\"Split\", \"sections\": []}\nJSON_END"),
        ]
    )

    fragments = list(llm_client.stream_text("prompt"))

    assert fragments[0] == "RESPONSE: Here "
    assert "thinking about it" not in fragments
    result = run_pipeline(fragments, DOCUMENT_PIPELINE)
    assert result.response_text == "Here is your doc."
    assert result.document == {"title": "Split", "sections": []}

    _, kwargs = mock_post.call_args
    assert kwargs["stream"] is True
    assert kwargs["params"]["alt"] == "sse"
    assert kwargs["json"]["contents"][0]["parts"][0]["text"] == "prompt"


@patch("requests.post")
def test_empty_stream_yields_nothing(mock_post, with_key):
    mock_post.return_value = _response([])
    assert list(llm_client.stream_text("prompt")) == []


@patch("requests.post")
def test_http_error_is_generation_error(mock_post, with_key):
    mock_post.return_value = _response([], status_code=503)
    with pytest.raises(llm_client.GenerationError):
        list(llm_client.stream_text("prompt"))


@patch("requests.post")
def test_connection_error_is_generation_error(mock_post, with_key):
    mock_post.side_effect = requests.ConnectionError("down")
    with pytest.raises(llm_client.GenerationError):
        list(llm_client.stream_text("prompt"))


@patch("requests.post")
def test_stream_broken_mid_way_is_generation_error(mock_post, with_key):
    def lines():
        yield make_chunk("RESPONSE: partial")
        raise requests.exceptions.ChunkedEncodingError("connection reset")

    mock_post.return_value = _response(lines())
    with pytest.raises(llm_client.GenerationError):
        run_pipeline(llm_client.stream_text("prompt"), DOCUMENT_PIPELINE)


@patch("requests.post")
def test_error_event_in_stream_is_generation_error(mock_post, with_key):
    mock_post.return_value = _response([b'data: {"error": {"code": 429, "message": "quota"}}'])
    with pytest.raises(llm_client.GenerationError, match="quota"):
        list(llm_client.stream_text("prompt"))
