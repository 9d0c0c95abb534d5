"""iTunes 検索・ランキング取得モジュール."""

from __future__ import annotations

import logging
import re

from podproxy.config import (
    ITUNES_LOOKUP_URL,
    ITUNES_SEARCH_URL,
    ITUNES_TOP_URL_TEMPLATE,
    SEARCH_LIMIT,
    TOP_LIMIT,
)
from podproxy.fetch import fetch_json
from podproxy.models import SearchResult

logger = logging.getLogger(__name__)

_ITUNES_ID_PATTERN = re.compile(r"id(\d+)")


def _to_result(item: dict) -> SearchResult:
    return SearchResult(
        itunes_id=item.get("collectionId") or item.get("trackId") or 0,
        title=item.get("collectionName") or item.get("trackName") or "",
        author=item.get("artistName", ""),
        feed_url=item.get("feedUrl", ""),
        image_url=item.get("artworkUrl600") or item.get("artworkUrl100") or "",
        description=item.get("description", ""),
        genre=item.get("primaryGenreName", ""),
        track_count=item.get("trackCount", 0),
    )


def search_podcasts(query: str, limit: int = SEARCH_LIMIT) -> list[SearchResult]:
    """キーワードで podcast を検索する. feedUrl のない結果は除く."""
    params = {"term": query, "media": "podcast", "entity": "podcast", "limit": str(limit)}
    logger.info("検索中: %s", query)
    data = fetch_json(ITUNES_SEARCH_URL, params=params)
    return [_to_result(item) for item in data.get("results", []) if item.get("feedUrl")]


def get_top_podcasts(country: str, limit: int = TOP_LIMIT) -> dict:
    """国別のトップ podcast (RSS JSON) をそのまま返す."""
    return fetch_json(ITUNES_TOP_URL_TEMPLATE.format(country=country, limit=limit))


def lookup_podcast(itunes_id: str) -> dict | None:
    """iTunes ID から podcast 情報を引く. 見つからなければ None."""
    data = fetch_json(ITUNES_LOOKUP_URL, params={"id": itunes_id})
    results = data.get("results") or []
    if not results:
        return None
    item = results[0]
    return {
        "itunesId": itunes_id,
        "title": item.get("collectionName") or item.get("trackName") or "",
        "author": item.get("artistName", ""),
        "feedUrl": item.get("feedUrl", ""),
        "imageUrl": item.get("artworkUrl600") or item.get("artworkUrl100") or "",
        "genre": item.get("primaryGenreName", ""),
    }


def extract_itunes_id(url: str) -> str | None:
    """ランキングの id ラベル (…/id1234567) から iTunes ID を取り出す."""
    m = _ITUNES_ID_PATTERN.search(url)
    return m.group(1) if m else None


def chart_entries(top_data: dict) -> list[dict]:
    """ランキング JSON の entry 一覧を返す."""
    entries = (top_data.get("feed") or {}).get("entry") or []
    # 1 件だけのときは dict で返ってくる
    if isinstance(entries, dict):
        return [entries]
    return entries
