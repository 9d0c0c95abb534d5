"""HTTP 取得モジュール.

3xx + Location はリダイレクトとして最大 MAX_REDIRECTS 回まで追従し、
それを超えたら失敗とする。2xx 以外は FetchError (ステータス付き)。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urljoin

import requests

from podproxy.config import (
    DOWNLOAD_CHUNK_SIZE,
    FEED_ACCEPT,
    FEED_USER_AGENT,
    MAX_REDIRECTS,
    PROVIDER_USER_AGENT,
    REQUEST_TIMEOUT,
)
from podproxy.errors import FetchError

logger = logging.getLogger(__name__)

FEED_HEADERS = {"User-Agent": FEED_USER_AGENT, "Accept": FEED_ACCEPT}
PROVIDER_HEADERS = {"User-Agent": PROVIDER_USER_AGENT}


@dataclass
class DownloadResult:
    """ダウンロード結果."""

    size: int
    content_type: str


def _open(url: str, headers: dict, stream: bool = False) -> requests.Response:
    """リダイレクトを自前で追従してレスポンスを返す.

    Returns:
        2xx のレスポンス
    """
    current = url
    for _ in range(MAX_REDIRECTS + 1):
        try:
            resp = requests.get(
                current,
                headers=headers,
                timeout=REQUEST_TIMEOUT,
                allow_redirects=False,
                stream=stream,
            )
        except requests.RequestException as e:
            raise FetchError(f"Request failed: {current}: {e}") from e

        location = resp.headers.get("Location")
        if 300 <= resp.status_code < 400 and location:
            resp.close()
            current = urljoin(current, location)
            logger.debug("リダイレクト: %s", current)
            continue

        if not 200 <= resp.status_code < 300:
            resp.close()
            raise FetchError(f"HTTP {resp.status_code}: {current}", status=resp.status_code)
        return resp

    raise FetchError(f"Too many redirects: {url}")


def fetch_text(url: str, headers: dict | None = None) -> str:
    """URL の本文を文字列で取得する (フィード用)."""
    resp = _open(url, headers or FEED_HEADERS)
    return resp.text


def fetch_json(url: str, params: dict | None = None, headers: dict | None = None):
    """JSON API を取得する (iTunes 用)."""
    if params:
        url = requests.Request("GET", url, params=params).prepare().url
    resp = _open(url, headers or PROVIDER_HEADERS)
    try:
        return resp.json()
    except ValueError as e:
        raise FetchError(f"Invalid JSON: {url}") from e


def download_to(url: str, dest: Path) -> DownloadResult:
    """URL のバイナリをファイルへストリーム保存する."""
    resp = _open(url, {"User-Agent": FEED_USER_AGENT}, stream=True)
    total = int(resp.headers.get("Content-Length") or 0)
    size = 0
    dest.parent.mkdir(parents=True, exist_ok=True)
    try:
        with dest.open("wb") as f:
            for chunk in resp.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                if not chunk:
                    continue
                f.write(chunk)
                size += len(chunk)
    except requests.RequestException as e:
        raise FetchError(f"Download interrupted: {url}: {e}") from e
    finally:
        resp.close()

    if total and size != total:
        logger.warning("サイズ不一致: expected=%d, actual=%d (%s)", total, size, url)
    logger.info("ダウンロード完了: %s (%d bytes)", dest.name, size)
    return DownloadResult(size=size, content_type=resp.headers.get("Content-Type", ""))
