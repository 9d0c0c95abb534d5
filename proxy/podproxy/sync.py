"""フィード同期エンジン.

購読時 (台帳が空) と定期更新時 (台帳あり) の両方で使う。
取得したフィードと既存の台帳を突き合わせ、新しいエピソードだけを
先頭に追加する。既存のエピソードは削除も上書きもしない。

識別キーは guid、なければ enclosure の URL。フィードが後から guid を
付けた場合は別エピソードとして扱われ重複が残る (既知の挙動として維持)。
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, replace

from podproxy.feed import parse_feed
from podproxy.fetch import fetch_text
from podproxy.models import Channel, Episode, FeedItem

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """1 回の同期の結果."""

    channel: Channel
    episodes: list[Episode]
    new_count: int
    fetched_count: int


def identity_key(episode: Episode | FeedItem) -> str:
    """重複判定のキー (guid、なければ URL)."""
    return episode.guid or episode.url


def placeholder_id(url: str) -> str:
    """guid のないエピソードに振る ID."""
    return "ep-" + hashlib.md5(url.encode("utf-8")).hexdigest()[:12]


def _dedupe(items: list[FeedItem]) -> list[FeedItem]:
    """1 回の取得内で識別キーが重複した item をまとめる.

    位置は最初の出現、内容は最後の出現を採用する。
    """
    by_key: dict[str, FeedItem] = {}
    for item in items:
        by_key[identity_key(item)] = item
    return list(by_key.values())


def merge_episodes(
    podcast_id: str, items: list[FeedItem], prior: list[Episode]
) -> tuple[list[Episode], int]:
    """取得した item を既存の台帳にマージする.

    Returns:
        (マージ後のエピソード列, 新規件数)。新規がなければ既存の列をそのまま返す。
    """
    known = {identity_key(ep) for ep in prior}
    new_items = [item for item in _dedupe(items) if identity_key(item) not in known]
    if not new_items:
        return list(prior), 0

    new_episodes = [
        Episode(
            id=item.guid or placeholder_id(item.url),
            url=item.url,
            podcast_id=podcast_id,
            guid=item.guid,
            title=item.title,
            type=item.type,
            size=item.size,
            pub_date=item.pub_date,
            duration=item.duration,
            description=item.description,
            is_new=True,
        )
        for item in new_items
    ]
    carried = [replace(ep, is_new=False) for ep in prior]
    return new_episodes + carried, len(new_episodes)


def sync_feed(
    podcast_id: str,
    feed_url: str,
    prior: list[Episode],
    title: str | None = None,
    fallback_image: str | None = None,
) -> SyncResult:
    """フィードを取得して台帳とマージする.

    取得失敗 (FetchError) はそのまま呼び出し元へ送る。ここでは再試行しない。

    Args:
        podcast_id: 購読 ID
        feed_url: フィード URL
        prior: 既存の台帳 (初回は空)
        title: 指定があれば抽出したタイトルより優先する
        fallback_image: 抽出した画像 URL が空のときに使う
    """
    text = fetch_text(feed_url)
    parsed = parse_feed(text)

    channel = parsed.channel
    if title:
        channel = replace(channel, title=title)
    if not channel.image_url and fallback_image:
        channel = replace(channel, image_url=fallback_image)

    episodes, new_count = merge_episodes(podcast_id, parsed.items, prior)
    logger.info(
        "同期: podcast=%s, 取得=%d 件, 新規=%d 件, 合計=%d 件",
        podcast_id, len(parsed.items), new_count, len(episodes),
    )
    return SyncResult(
        channel=channel,
        episodes=episodes,
        new_count=new_count,
        fetched_count=len(parsed.items),
    )
