"""Internet Archive へのアップロード."""

from __future__ import annotations

import logging
import re
from pathlib import Path

import requests

from podproxy.config import (
    IA_ACCESS_KEY,
    IA_DOWNLOAD_URL,
    IA_S3_URL,
    IA_SECRET_KEY,
    REQUEST_TIMEOUT,
)
from podproxy.errors import FetchError

logger = logging.getLogger(__name__)


def archive_identifier(podcast_id: str, episode_id: str) -> str:
    """Internet Archive のアイテム識別子を作る."""
    return re.sub(r"[^a-z0-9-]", "-", f"podcast-{podcast_id}-{episode_id}".lower())


class ArchiveUploader:
    """S3 互換 API で Internet Archive にファイルを PUT する."""

    def __init__(self, access_key: str = IA_ACCESS_KEY, secret_key: str = IA_SECRET_KEY):
        self.access_key = access_key
        self.secret_key = secret_key

    def upload(self, path: Path, identifier: str, metadata: dict) -> dict:
        """ファイルをアップロードする.

        認証情報がなければアップロードせず、その旨を返す (エラーにはしない)。
        """
        if not self.access_key or not self.secret_key:
            logger.info("Internet Archive の認証情報がないためアップロードをスキップ")
            return {"uploaded": False, "reason": "no_credentials"}

        url = f"{IA_S3_URL}/{identifier}/{path.name}"
        headers = {
            "Authorization": f"LOW {self.access_key}:{self.secret_key}",
            "Content-Type": metadata.get("contentType") or "audio/mpeg",
            "Content-Length": str(path.stat().st_size),
            "x-amz-auto-make-bucket": "1",
            "x-archive-meta-mediatype": "audio",
            "x-archive-meta-collection": "opensource_audio",
            "x-archive-meta-title": metadata.get("title") or identifier,
            "x-archive-meta-creator": metadata.get("author") or "Unknown",
        }

        logger.info("アップロード中: %s/%s", identifier, path.name)
        try:
            with path.open("rb") as f:
                resp = requests.put(url, data=f, headers=headers, timeout=REQUEST_TIMEOUT)
        except requests.RequestException as e:
            raise FetchError(f"Upload failed: {e}") from e
        if not 200 <= resp.status_code < 300:
            raise FetchError(f"Upload failed: {resp.status_code} - {resp.text}", status=resp.status_code)

        download_url = f"{IA_DOWNLOAD_URL}/{identifier}/{path.name}"
        logger.info("アップロード完了: %s", download_url)
        return {"uploaded": True, "url": download_url, "identifier": identifier}
