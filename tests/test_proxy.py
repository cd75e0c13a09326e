"""Tests for the capture proxy client (urllib patched, no network)."""

import json
import urllib.error
import urllib.parse
from unittest.mock import MagicMock, patch

import pytest

from perftoolkit.errors import PlanIOError
from perftoolkit.proxy import ProxyClient, ProxyError, normalize_proxy_url


def _response(body: bytes) -> MagicMock:
    resp = MagicMock()
    resp.read.return_value = body
    cm = MagicMock()
    cm.__enter__.return_value = resp
    cm.__exit__.return_value = False
    return cm


def _sent(mock_urlopen, index=-1):
    request = mock_urlopen.call_args_list[index][0][0]
    data = urllib.parse.parse_qs(request.data.decode()) if request.data else {}
    return request.get_method(), request.full_url, data


class TestNormalize:
    def test_adds_scheme(self):
        assert normalize_proxy_url("localhost:9090") == "http://localhost:9090"

    def test_keeps_scheme(self):
        assert normalize_proxy_url("HTTPS://proxy:8080/") == "HTTPS://proxy:8080"


class TestSession:
    @patch("urllib.request.urlopen")
    def test_create_session(self, mock_urlopen):
        mock_urlopen.return_value = _response(b'{"port": 9091}')
        client = ProxyClient("localhost:9090")
        assert client.create_session() == "localhost:9091"
        assert client.port == 9091
        assert _sent(mock_urlopen) == ("POST", "http://localhost:9090/proxy/", {})

    @patch("urllib.request.urlopen")
    def test_create_session_on_port(self, mock_urlopen):
        mock_urlopen.return_value = _response(b'{"port": 9200}')
        ProxyClient("proxy.local:9090").create_session(9200)
        assert _sent(mock_urlopen)[2] == {"port": ["9200"]}

    @patch("urllib.request.urlopen")
    def test_unexpected_body(self, mock_urlopen):
        mock_urlopen.return_value = _response(b"oops")
        with pytest.raises(ProxyError, match="Unexpected response"):
            ProxyClient().create_session()

    @patch("urllib.request.urlopen")
    def test_close_session(self, mock_urlopen):
        mock_urlopen.return_value = _response(b"")
        ProxyClient("localhost:9090", port=9091).close_session()
        assert _sent(mock_urlopen)[:2] == ("DELETE", "http://localhost:9090/proxy/9091")

    @patch("urllib.request.urlopen")
    def test_close_without_session_is_noop(self, mock_urlopen):
        ProxyClient().close_session()
        mock_urlopen.assert_not_called()


class TestCapture:
    @patch("urllib.request.urlopen")
    def test_new_har(self, mock_urlopen):
        mock_urlopen.return_value = _response(b"")
        ProxyClient(port=9091).new_har("viewcourse")
        method, url, data = _sent(mock_urlopen)
        assert (method, url) == ("PUT", "http://localhost:9090/proxy/9091/har")
        assert data["initialPageRef"] == ["viewcourse"]
        assert data["captureContent"] == ["true"]
        assert data["captureHeaders"] == ["true"]
        assert data["captureBinaryContent"] == ["true"]

    @patch("urllib.request.urlopen")
    def test_get_har_returns_previous_capture(self, mock_urlopen):
        har = {"log": {"entries": []}}
        mock_urlopen.return_value = _response(json.dumps(har).encode())
        assert ProxyClient(port=9091).get_har("viewcourse") == har

    @patch("urllib.request.urlopen")
    def test_get_har_empty(self, mock_urlopen):
        mock_urlopen.return_value = _response(b"  ")
        with pytest.raises(ProxyError, match="no HAR"):
            ProxyClient(port=9091).get_har("x")

    def test_capture_needs_session(self):
        with pytest.raises(ProxyError, match="No proxy session"):
            ProxyClient().new_har("x")

    @patch("urllib.request.urlopen")
    def test_lists_and_wait(self, mock_urlopen):
        mock_urlopen.return_value = _response(b"")
        client = ProxyClient(port=9091)
        client.blacklist("https?://.*\\.css", 200)
        assert _sent(mock_urlopen)[1].endswith("/proxy/9091/blacklist")
        assert _sent(mock_urlopen)[2] == {"regex": ["https?://.*\\.css"], "status": ["200"]}
        client.whitelist(".*", 404)
        assert _sent(mock_urlopen)[1].endswith("/proxy/9091/whitelist")
        client.wait_for_traffic_to_stop(2, 30)
        assert _sent(mock_urlopen)[2] == {"quietPeriodInMs": ["2000"], "timeoutInMs": ["30000"]}


class TestErrors:
    @patch("urllib.request.urlopen")
    def test_http_error(self, mock_urlopen):
        mock_urlopen.side_effect = urllib.error.HTTPError(
            "http://localhost:9090/proxy/", 500, "boom", {}, None,
        )
        with pytest.raises(ProxyError, match="HTTP 500"):
            ProxyClient().create_session()

    @patch("urllib.request.urlopen")
    def test_unreachable(self, mock_urlopen):
        mock_urlopen.side_effect = urllib.error.URLError("refused")
        with pytest.raises(ProxyError, match="failed"):
            ProxyClient().create_session()

    def test_proxy_error_is_io_error(self):
        assert issubclass(ProxyError, PlanIOError)
