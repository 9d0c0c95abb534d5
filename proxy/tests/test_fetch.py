"""fetch モジュールのテスト."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from podproxy.errors import FetchError
from podproxy.fetch import download_to, fetch_json, fetch_text


def _response(status=200, headers=None, text="", body=None, chunks=()):
    resp = MagicMock()
    resp.status_code = status
    resp.headers = headers or {}
    resp.text = text
    resp.json.return_value = body
    resp.iter_content.return_value = list(chunks)
    return resp


class TestFetchText:
    """fetch_text のテスト."""

    @patch("podproxy.fetch.requests.get")
    def test_ok(self, mock_get):
        mock_get.return_value = _response(text="<rss/>")

        assert fetch_text("https://example.com/feed") == "<rss/>"
        kwargs = mock_get.call_args.kwargs
        assert kwargs["allow_redirects"] is False
        assert "User-Agent" in kwargs["headers"]

    @patch("podproxy.fetch.requests.get")
    def test_follows_relative_redirect(self, mock_get):
        """相対 Location も現在の URL 基準で追従すること."""
        mock_get.side_effect = [
            _response(301, {"Location": "https://other.example.com/a"}),
            _response(302, {"Location": "/b"}),
            _response(text="done"),
        ]

        assert fetch_text("https://example.com/feed") == "done"
        urls = [c.args[0] for c in mock_get.call_args_list]
        assert urls == [
            "https://example.com/feed",
            "https://other.example.com/a",
            "https://other.example.com/b",
        ]

    @patch("podproxy.fetch.requests.get")
    def test_ten_redirects_allowed(self, mock_get):
        mock_get.side_effect = [_response(302, {"Location": "/next"})] * 10 + [_response(text="ok")]

        assert fetch_text("https://example.com/feed") == "ok"

    @patch("podproxy.fetch.requests.get")
    def test_too_many_redirects(self, mock_get):
        """11 回目のリダイレクトで失敗すること."""
        mock_get.return_value = _response(302, {"Location": "/loop"})

        with pytest.raises(FetchError, match="Too many redirects"):
            fetch_text("https://example.com/feed")
        assert mock_get.call_count == 11

    @patch("podproxy.fetch.requests.get")
    def test_3xx_without_location_is_error(self, mock_get):
        mock_get.return_value = _response(304)

        with pytest.raises(FetchError) as exc_info:
            fetch_text("https://example.com/feed")
        assert exc_info.value.status == 304

    @patch("podproxy.fetch.requests.get")
    def test_http_error_carries_status(self, mock_get):
        mock_get.return_value = _response(404)

        with pytest.raises(FetchError) as exc_info:
            fetch_text("https://example.com/feed")
        assert exc_info.value.status == 404

    @patch("podproxy.fetch.requests.get")
    def test_connection_error(self, mock_get):
        mock_get.side_effect = requests.ConnectionError("refused")

        with pytest.raises(FetchError):
            fetch_text("https://example.com/feed")


class TestFetchJson:
    """fetch_json のテスト."""

    @patch("podproxy.fetch.requests.get")
    def test_params_encoded(self, mock_get):
        mock_get.return_value = _response(body={"results": []})

        assert fetch_json("https://itunes.apple.com/search", params={"term": "a b"}) == {"results": []}
        assert mock_get.call_args.args[0] == "https://itunes.apple.com/search?term=a+b"

    @patch("podproxy.fetch.requests.get")
    def test_invalid_json(self, mock_get):
        resp = _response()
        resp.json.side_effect = ValueError("no json")
        mock_get.return_value = resp

        with pytest.raises(FetchError):
            fetch_json("https://itunes.apple.com/search")


class TestDownloadTo:
    """download_to のテスト."""

    @patch("podproxy.fetch.requests.get")
    def test_writes_file(self, mock_get, tmp_path):
        mock_get.return_value = _response(
            headers={"Content-Length": "6", "Content-Type": "audio/mpeg"},
            chunks=[b"abc", b"", b"def"],
        )
        dest = tmp_path / "sub" / "ep.mp3"

        result = download_to("https://cdn.example.com/ep.mp3", dest)

        assert dest.read_bytes() == b"abcdef"
        assert result.size == 6
        assert result.content_type == "audio/mpeg"
        assert mock_get.call_args.kwargs["stream"] is True
