"""Tests for the shared HTTP helpers."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from common import http_client


@pytest.fixture(autouse=True)
def _clear_cache():
    http_client.clear_cache()
    yield
    http_client.clear_cache()


def _response(status=200, text='{"ok": true}'):
    response = MagicMock()
    response.status_code = status
    response.headers = {"Content-Type": "application/json"}
    response.text = text
    return response


class TestRobustRequest:
    """Retries, caching and transport failures."""

    @patch("common.http_client.requests.request")
    def test_get_json_parses_body(self, mock_request):
        """200 responses are decoded."""
        mock_request.return_value = _response()

        status, _, data = http_client.get_json("https://api.example/x")

        assert status == 200
        assert data == {"ok": True}

    @patch("common.http_client.requests.request")
    def test_get_json_caches(self, mock_request):
        """Cached GETs hit the network once."""
        mock_request.return_value = _response()

        http_client.get_json("https://api.example/x")
        http_client.get_json("https://api.example/x")

        assert mock_request.call_count == 1

    @patch("common.http_client.requests.request")
    def test_uncached_get(self, mock_request):
        """use_cache=False always goes to the network."""
        mock_request.return_value = _response()

        http_client.get_json("https://api.example/x", use_cache=False)
        http_client.get_json("https://api.example/x", use_cache=False)

        assert mock_request.call_count == 2

    @patch("common.http_client.requests.request")
    def test_non_200_has_no_data(self, mock_request):
        """Error responses return the status without data."""
        mock_request.return_value = _response(404, "not found")

        assert http_client.get_json("https://api.example/x") == (404, {"Content-Type": "application/json"}, None)

    @patch("common.http_client.requests.request")
    def test_transport_failure_returns_zero(self, mock_request, caplog):
        """Timeouts and connection errors retry, then return status 0."""
        mock_request.side_effect = requests.ConnectionError("refused")

        status, _, data = http_client.get_json("https://api.example/x?token=secret")

        assert status == 0
        assert data is None
        assert mock_request.call_count == 3
        assert "secret" not in caplog.text

    @patch("common.http_client.requests.request")
    def test_retry_then_success(self, mock_request):
        """A timeout followed by a response succeeds."""
        mock_request.side_effect = [requests.Timeout(), _response()]

        status, _, _ = http_client.get_json("https://api.example/x")

        assert status == 200

    @patch("common.http_client.requests.request")
    def test_post_json(self, mock_request):
        """POST bodies are sent as JSON and never cached."""
        mock_request.return_value = _response(201, '{"id": 1}')

        http_client.post_json("https://api.example/x", {"a": 1})
        status, _, data = http_client.post_json("https://api.example/x", {"a": 1})

        assert (status, data) == (201, {"id": 1})
        assert mock_request.call_count == 2
        assert mock_request.call_args.kwargs["json"] == {"a": 1}

    @patch("common.http_client.requests.request")
    def test_invalid_json(self, mock_request):
        """Undecodable bodies yield None."""
        mock_request.return_value = _response(200, "<html>")

        assert http_client.get_json("https://api.example/x")[2] is None
