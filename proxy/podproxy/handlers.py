"""アクションごとのハンドラ.

各ハンドラは (payload, ctx) を受け取り、結果レコードに載せるフィールドを返す。
結果レコードの書き込みはルーターが行う。永続ストアへの書き込みは
取得・抽出が成功した後にまとめて行い、失敗時に中途半端な状態を残さない。
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable
from urllib.parse import urlparse

from podproxy.archive import ArchiveUploader, archive_identifier
from podproxy.config import (
    LOOKUP_DELAY,
    SEARCH_LIMIT,
    TEMP_DIR,
    TOP_COUNTRIES,
    UPDATE_FEEDS_DELAY,
)
from podproxy.errors import FetchError, InvalidPayload, NotFound, PodProxyError
from podproxy.fetch import download_to
from podproxy.itunes import (
    chart_entries,
    extract_itunes_id,
    get_top_podcasts,
    lookup_podcast,
    search_podcasts,
)
from podproxy.models import (
    Episode,
    FeedSnapshot,
    Subscription,
    derive_podcast_id,
    episode_list_document,
    episodes_from_document,
    hash_query,
    utc_now_iso,
)
from podproxy.store import Stores
from podproxy.sync import SyncResult, sync_feed

logger = logging.getLogger(__name__)


@dataclass
class WorkerContext:
    """ハンドラが使う依存一式."""

    stores: Stores
    uploader: ArchiveUploader = field(default_factory=ArchiveUploader)
    temp_dir: Path = TEMP_DIR
    update_delay: float = UPDATE_FEEDS_DELAY
    lookup_delay: float = LOOKUP_DELAY
    sleep: Callable[[float], None] = time.sleep


def _require(payload: dict, key: str) -> str:
    """必須項目を取り出す. 空なら InvalidPayload."""
    value = _optional(payload, key)
    if not value:
        raise InvalidPayload(f"No {key.replace('_', ' ')} provided")
    return value


def _optional(payload: dict, key: str) -> str:
    """任意項目を前後空白を除いた文字列で取り出す."""
    return str(payload.get(key) or "").strip()


def _flag(value) -> bool:
    """フラグ値 ("true", "1", "yes" など) を真偽値にする."""
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def load_episodes(stores: Stores, podcast_id: str) -> list[Episode]:
    """台帳を読む. 未作成なら空."""
    try:
        return episodes_from_document(stores.episodes.get(podcast_id))
    except NotFound:
        return []


def load_subscription(stores: Stores, podcast_id: str) -> Subscription | None:
    """購読レコードを読む. なければ None."""
    try:
        return Subscription.from_dict(stores.subscriptions.get(podcast_id))
    except NotFound:
        return None


def save_sync(stores: Stores, podcast_id: str, result: SyncResult, now: str) -> None:
    """同期結果を台帳とスナップショットに書く.

    新規エピソードがなく台帳が既にあるときは台帳を書き換えない。
    """
    if result.new_count or not stores.episodes.exists(podcast_id):
        stores.episodes.put(podcast_id, episode_list_document(podcast_id, result.episodes, now))
    snapshot = FeedSnapshot(
        podcast_id=podcast_id,
        channel=result.channel,
        episode_count=result.fetched_count,
        last_updated=now,
    )
    stores.feeds.put(podcast_id, snapshot.to_dict())


# --- search ---


def handle_search(payload: dict, ctx: WorkerContext) -> dict:
    query = _require(payload, "query")
    limit = int(payload.get("limit") or SEARCH_LIMIT)

    results = [r.to_dict() for r in search_podcasts(query, limit)]
    response = {"query": query, "resultCount": len(results), "results": results}

    cache_key = hash_query(query)
    ctx.stores.searches.put(cache_key, {"success": True, **response, "timestamp": utc_now_iso()})
    logger.info("検索キャッシュ保存: %s", cache_key)

    for result in results:
        itunes_id = str(result["itunesId"])
        if result["itunesId"] and not ctx.stores.lookups.exists(itunes_id):
            ctx.stores.lookups.put(itunes_id, {"success": True, "result": result})

    logger.info("検索結果: %d 件 (%s)", len(results), query)
    return response


# --- subscribe / unsubscribe ---


def handle_subscribe(payload: dict, ctx: WorkerContext) -> dict:
    feed_url = _require(payload, "feed_url")
    podcast_id = _optional(payload, "podcast_id") or derive_podcast_id(feed_url)
    logger.info("購読: %s (podcast=%s)", feed_url, podcast_id)

    existing = load_subscription(ctx.stores, podcast_id)
    prior = load_episodes(ctx.stores, podcast_id)
    result = sync_feed(podcast_id, feed_url, prior, title=payload.get("podcast_title") or None)

    now = utc_now_iso()
    subscription = Subscription(
        id=podcast_id,
        feed_url=feed_url,
        title=result.channel.title or "Unknown",
        author=result.channel.author,
        image_url=result.channel.image_url,
        description=result.channel.description,
        episode_count=len(result.episodes),
        last_updated=now,
        subscribed_at=(existing.subscribed_at if existing and existing.subscribed_at else now),
    )
    save_sync(ctx.stores, podcast_id, result, now)
    ctx.stores.subscriptions.put(podcast_id, subscription.to_dict())

    return {
        "podcastId": podcast_id,
        "title": subscription.title,
        "episodeCount": subscription.episode_count,
        "newEpisodes": result.new_count,
    }


def handle_unsubscribe(payload: dict, ctx: WorkerContext) -> dict:
    """購読レコードだけを消す. 台帳とスナップショットは再購読に備えて残す."""
    podcast_id = _optional(payload, "podcast_id")
    if not podcast_id:
        podcast_id = derive_podcast_id(_require(payload, "feed_url"))
    logger.info("購読解除: %s", podcast_id)

    existing = load_subscription(ctx.stores, podcast_id)
    ctx.stores.subscriptions.delete(podcast_id)
    return {
        "podcastId": podcast_id,
        "title": existing.title if existing else "Unknown",
        "episodeCount": existing.episode_count if existing else 0,
    }


# --- download ---


def _safe_name(value: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]", "-", value)


def handle_download(payload: dict, ctx: WorkerContext) -> dict:
    episode_url = _require(payload, "episode_url")
    episode_id = _optional(payload, "episode_id") or str(int(time.time() * 1000))
    podcast_id = _optional(payload, "podcast_id") or "unknown"

    ext = Path(urlparse(episode_url).path).suffix or ".mp3"
    temp_file = ctx.temp_dir / f"{_safe_name(episode_id)}{ext}"

    logger.info("ダウンロード中: %s", episode_url)
    try:
        downloaded = download_to(episode_url, temp_file)
        storage = ctx.uploader.upload(
            temp_file,
            archive_identifier(podcast_id, episode_id),
            {
                "contentType": downloaded.content_type,
                "title": f"Podcast Episode {episode_id}",
                "author": podcast_id,
            },
        )
    finally:
        temp_file.unlink(missing_ok=True)

    record = {
        "episodeId": episode_id,
        "podcastId": podcast_id,
        "originalUrl": episode_url,
        "size": downloaded.size,
        "storage": storage,
    }
    ctx.stores.downloads.put(_safe_name(episode_id), {"success": True, **record, "timestamp": utc_now_iso()})
    return record


# --- update-top ---


def _process_country(country: str, ctx: WorkerContext) -> dict:
    """1 か国分のランキングと lookup を保存する. 失敗しても他の国は続ける."""
    logger.info("処理中: %s", country)
    try:
        top_data = get_top_podcasts(country)
    except FetchError as e:
        logger.error("ランキング取得失敗: country=%s, error=%s", country, e)
        return {}

    ctx.stores.charts.put(f"top_{country}", top_data)

    lookups: dict[str, dict] = {}
    for entry in chart_entries(top_data):
        itunes_id = extract_itunes_id((entry.get("id") or {}).get("label", ""))
        if not itunes_id:
            continue
        try:
            lookup = lookup_podcast(itunes_id)
        except FetchError as e:
            logger.warning("lookup 失敗: %s (%s)", itunes_id, e)
            lookup = None
        if lookup and lookup["feedUrl"]:
            lookups[itunes_id] = lookup
            ctx.stores.lookups.put(itunes_id, {"success": True, "result": lookup})
        ctx.sleep(ctx.lookup_delay)

    ctx.stores.charts.put(
        f"lookups_{country}",
        {"success": True, "country": country, "count": len(lookups), "lookups": lookups},
    )
    logger.info("%s: lookup %d 件を保存", country, len(lookups))
    return lookups


def handle_update_top(payload: dict, ctx: WorkerContext) -> dict:
    country = (payload.get("country") or TOP_COUNTRIES[0]).strip().upper()
    countries = [country]
    if not _flag(payload.get("single_country")):
        countries += [c for c in TOP_COUNTRIES if c != country]

    for c in countries:
        _process_country(c, ctx)

    all_lookups: dict[str, dict] = {}
    for key in ctx.stores.lookups.keys():
        data = ctx.stores.lookups.get(key)
        if data.get("success") and data.get("result"):
            all_lookups[str(data["result"]["itunesId"])] = data["result"]
    ctx.stores.charts.put(
        "all_lookups",
        {"success": True, "count": len(all_lookups), "updated": utc_now_iso(), "lookups": all_lookups},
    )
    return {"countries": countries, "lookupCount": len(all_lookups)}


# --- update-feeds ---


def refresh_subscription(stores: Stores, subscription: Subscription) -> dict:
    """1 件の購読を再取得して台帳を更新する.

    取得・ストアの失敗は結果に記録して返す (バッチは止めない)。
    """
    logger.info("更新中: %s (%s)", subscription.title, subscription.id)
    outcome: dict
    try:
        prior = load_episodes(stores, subscription.id)
        result = sync_feed(
            subscription.id,
            subscription.feed_url,
            prior,
            title=subscription.title,
            fallback_image=subscription.image_url,
        )
        now = utc_now_iso()
        save_sync(stores, subscription.id, result, now)
    except PodProxyError as e:
        logger.warning("  更新失敗: %s (%s)", subscription.id, e)
        outcome = {"updated": False, "error": str(e)}
        # 失敗時も試行時刻として更新する (最終成功時刻ではない)
        subscription.last_updated = utc_now_iso()
    else:
        outcome = {
            "updated": True,
            "newEpisodes": result.new_count,
            "totalEpisodes": len(result.episodes),
        }
        subscription.author = result.channel.author or subscription.author
        subscription.image_url = result.channel.image_url
        subscription.description = result.channel.description or subscription.description
        subscription.episode_count = len(result.episodes)
        subscription.last_updated = now

    if not stores.subscriptions.exists(subscription.id):
        # 取得中に購読解除された
        logger.info("  購読解除済みのため購読レコードは書かない: %s", subscription.id)
        return outcome
    stores.subscriptions.put(subscription.id, subscription.to_dict())
    return outcome


def handle_update_feeds(payload: dict, ctx: WorkerContext) -> dict:
    """全購読を順番に更新する. 並列にはせず、間隔を空けて上流の負荷を抑える."""
    podcast_ids = ctx.stores.subscriptions.keys()
    logger.info("%d 件の購読を更新します", len(podcast_ids))

    results: dict[str, dict] = {}
    for i, podcast_id in enumerate(podcast_ids):
        subscription = load_subscription(ctx.stores, podcast_id)
        if subscription is None:
            continue
        results[podcast_id] = refresh_subscription(ctx.stores, subscription)
        if i < len(podcast_ids) - 1:
            ctx.sleep(ctx.update_delay)

    summary = {
        "timestamp": utc_now_iso(),
        "subscriptionsUpdated": len(results),
        "results": results,
    }
    ctx.stores.charts.put("last_update", summary)
    return {"subscriptionsUpdated": len(results), "results": results}
