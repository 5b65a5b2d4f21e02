from unittest.mock import MagicMock, patch

import pytest
import requests

from eventsync.runtime.http import FetchError, HttpClient, HttpClientOptions


def response(status=200, text="", json_data=None, json_error=None):
    resp = MagicMock()
    resp.status_code = status
    resp.ok = 200 <= status < 400
    resp.text = text
    resp.encoding = "utf-8"
    if json_error:
        resp.json.side_effect = json_error
    else:
        resp.json.return_value = json_data
    return resp


@pytest.fixture
def client():
    c = HttpClient(options=HttpClientOptions(max_retries=2, backoff_mode="none", min_delay_s=0, jitter_s=0))
    yield c
    c.close()


def test_get_text(client):
    """Test that a successful response returns its text."""
    with patch.object(client._session, "get", return_value=response(text="<html/>")) as get:
        assert client.get_text("https://example.com/") == "<html/>"
    assert get.call_args.kwargs["timeout"] == 20.0


def test_retries_transient_status(client):
    """Test that 503 responses are retried until success."""
    replies = [response(503), response(503), response(text="ok")]
    with patch.object(client._session, "get", side_effect=replies) as get:
        assert client.get_text("https://example.com/") == "ok"
    assert get.call_count == 3


def test_retries_exhausted(client):
    """Test that exhausted retries raise FetchError with the last status."""
    with patch.object(client._session, "get", return_value=response(502)) as get:
        with pytest.raises(FetchError) as exc_info:
            client.get("https://example.com/")
    assert get.call_count == 3
    assert exc_info.value.status_code == 502


def test_non_retryable_status_fails_fast(client):
    """Test that a 404 is not retried."""
    with patch.object(client._session, "get", return_value=response(404)) as get:
        with pytest.raises(FetchError) as exc_info:
            client.get("https://example.com/missing")
    assert get.call_count == 1
    assert exc_info.value.status_code == 404
    assert exc_info.value.url == "https://example.com/missing"


def test_network_error_retried(client):
    """Test that connection errors are retried."""
    replies = [requests.ConnectionError("reset"), response(text="ok")]
    with patch.object(client._session, "get", side_effect=replies):
        assert client.get_text("https://example.com/") == "ok"


def test_get_json(client):
    """Test JSON decoding and the Accept header."""
    with patch.object(client._session, "get", return_value=response(json_data={"results": []})) as get:
        assert client.get_json("https://example.com/api", headers={"Referer": "https://example.com/"}) == {
            "results": []
        }
    headers = get.call_args.kwargs["headers"]
    assert headers["Accept"] == "application/json"
    assert headers["Referer"] == "https://example.com/"


def test_get_json_invalid_body(client):
    """Test that an invalid JSON body raises FetchError."""
    with patch.object(client._session, "get", return_value=response(json_error=ValueError("bad json"))):
        with pytest.raises(FetchError):
            client.get_json("https://example.com/api")
