"""archive モジュールのテスト."""

from unittest.mock import MagicMock, patch

import pytest

from podproxy.archive import ArchiveUploader, archive_identifier
from podproxy.errors import FetchError


class TestArchiveIdentifier:
    def test_sanitized(self):
        assert archive_identifier("AbC123", "ep_1.mp3") == "podcast-abc123-ep-1-mp3"


class TestArchiveUploader:
    """ArchiveUploader のテスト."""

    def test_no_credentials(self, tmp_path):
        """認証情報がなければアップロードしないこと."""
        path = tmp_path / "ep.mp3"
        path.write_bytes(b"x")

        with patch("podproxy.archive.requests.put") as mock_put:
            result = ArchiveUploader(access_key="", secret_key="").upload(path, "id", {})

        assert result == {"uploaded": False, "reason": "no_credentials"}
        mock_put.assert_not_called()

    @patch("podproxy.archive.requests.put")
    def test_upload(self, mock_put, tmp_path):
        path = tmp_path / "ep.mp3"
        path.write_bytes(b"audio")
        mock_put.return_value = MagicMock(status_code=200)

        result = ArchiveUploader("ak", "sk").upload(path, "podcast-p-e", {"title": "Ep"})

        assert result == {
            "uploaded": True,
            "url": "https://archive.org/download/podcast-p-e/ep.mp3",
            "identifier": "podcast-p-e",
        }
        assert mock_put.call_args.args[0] == "https://s3.us.archive.org/podcast-p-e/ep.mp3"
        headers = mock_put.call_args.kwargs["headers"]
        assert headers["Authorization"] == "LOW ak:sk"
        assert headers["Content-Length"] == "5"
        assert headers["x-archive-meta-title"] == "Ep"

    @patch("podproxy.archive.requests.put")
    def test_upload_rejected(self, mock_put, tmp_path):
        path = tmp_path / "ep.mp3"
        path.write_bytes(b"audio")
        mock_put.return_value = MagicMock(status_code=403, text="denied")

        with pytest.raises(FetchError) as exc_info:
            ArchiveUploader("ak", "sk").upload(path, "podcast-p-e", {})
        assert exc_info.value.status == 403
