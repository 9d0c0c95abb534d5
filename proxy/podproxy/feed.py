"""RSS フィードの抽出モジュール.

feedparser でチャンネル情報とエピソード列を取り出す。
欠けているフィールドはエラーにせず空値・既定値で埋める。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import feedparser
from bs4 import BeautifulSoup

from podproxy.config import (
    CHANNEL_DESCRIPTION_MAX,
    DEFAULT_ENCLOSURE_TYPE,
    EPISODE_DESCRIPTION_MAX,
)
from podproxy.models import Channel, FeedItem

logger = logging.getLogger(__name__)


@dataclass
class ParsedFeed:
    """抽出結果."""

    channel: Channel
    items: list[FeedItem] = field(default_factory=list)


def _plain_text(html: str | None, limit: int) -> str:
    """HTML を含む説明文をテキスト化して切り詰める."""
    if not html:
        return ""
    text = BeautifulSoup(html, "html.parser").get_text(" ", strip=True)
    return text[:limit]


def _parse_size(length) -> int:
    try:
        return int(length or 0)
    except (TypeError, ValueError):
        return 0


def _enclosure(entry) -> dict | None:
    """最初の URL 付き enclosure を返す."""
    for enclosure in entry.get("enclosures", []):
        if enclosure.get("href"):
            return enclosure
    return None


def _parse_item(entry) -> FeedItem | None:
    enclosure = _enclosure(entry)
    if enclosure is None:
        return None

    guid = (entry.get("id") or "").strip() or None
    return FeedItem(
        url=enclosure["href"],
        guid=guid,
        title=entry.get("title"),
        type=enclosure.get("type") or DEFAULT_ENCLOSURE_TYPE,
        size=_parse_size(enclosure.get("length")),
        pub_date=entry.get("published"),
        duration=entry.get("itunes_duration"),
        description=_plain_text(entry.get("summary"), EPISODE_DESCRIPTION_MAX) or None,
    )


def parse_feed(text: str) -> ParsedFeed:
    """フィード本文からチャンネル情報とエピソード列を抽出する.

    enclosure の URL がない item は捨てる。順序はフィード内の順序のまま。
    """
    parsed = feedparser.parse(text)
    if parsed.get("bozo") and not parsed.entries:
        logger.warning("フィードのパースに問題があります: %s", parsed.get("bozo_exception"))

    meta = parsed.feed
    image = meta.get("image") or {}
    channel = Channel(
        title=(meta.get("title") or "").strip(),
        author=(meta.get("author") or "").strip(),
        image_url=image.get("href", "") if isinstance(image, dict) else "",
        description=_plain_text(meta.get("subtitle") or meta.get("description"),
                                CHANNEL_DESCRIPTION_MAX),
    )

    items = []
    for entry in parsed.entries:
        item = _parse_item(entry)
        if item is not None:
            items.append(item)
    skipped = len(parsed.entries) - len(items)
    if skipped:
        logger.debug("enclosure のない item を %d 件スキップ", skipped)

    return ParsedFeed(channel=channel, items=items)
