"""データモデル定義.

JSON に保存するキーは公開データのレイアウトに合わせて camelCase。
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def utc_now_iso() -> str:
    """現在時刻を ISO 8601 (UTC) で返す."""
    return datetime.now(timezone.utc).isoformat()


def _md5_12(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()[:12]


def derive_podcast_id(feed_url: str) -> str:
    """フィード URL から podcast ID を導出する (md5 先頭 12 桁)."""
    return _md5_12(feed_url)


def hash_query(query: str) -> str:
    """検索キャッシュのキー (小文字化・前後空白除去後の md5 先頭 12 桁)."""
    return _md5_12(query.lower().strip())


@dataclass
class RequestRecord:
    """ディスパッチされた 1 件の処理要求."""

    request_id: str
    action: str
    payload: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"requestId": self.request_id, "action": self.action, "payload": self.payload}


@dataclass
class ResultRecord:
    """requestId ごとに 1 度だけ書かれる処理結果."""

    success: bool
    request_id: str
    action: str
    timestamp: str
    fields: dict = field(default_factory=dict)
    error: str | None = None

    @classmethod
    def ok(cls, request: RequestRecord, fields: dict) -> ResultRecord:
        return cls(True, request.request_id, request.action, utc_now_iso(), dict(fields))

    @classmethod
    def failed(cls, request: RequestRecord, error: str) -> ResultRecord:
        return cls(False, request.request_id, request.action, utc_now_iso(), error=error)

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"success": self.success, "action": self.action}
        data.update(self.fields)
        data["requestId"] = self.request_id
        if not self.success:
            data["error"] = self.error or ""
        data["timestamp"] = self.timestamp
        return data

    @classmethod
    def from_dict(cls, data: dict) -> ResultRecord:
        reserved = {"success", "action", "requestId", "error", "timestamp"}
        return cls(
            success=bool(data.get("success")),
            request_id=data.get("requestId", ""),
            action=data.get("action", ""),
            timestamp=data.get("timestamp", ""),
            fields={k: v for k, v in data.items() if k not in reserved},
            error=data.get("error"),
        )


@dataclass
class Channel:
    """フィードのチャンネル情報."""

    title: str = ""
    author: str = ""
    image_url: str = ""
    description: str = ""

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "author": self.author,
            "imageUrl": self.image_url,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Channel:
        return cls(
            title=data.get("title", "") or "",
            author=data.get("author", "") or "",
            image_url=data.get("imageUrl", "") or "",
            description=data.get("description", "") or "",
        )


@dataclass
class FeedItem:
    """フィードから抽出した 1 エピソード (保存前)."""

    url: str
    guid: str | None = None
    title: str | None = None
    type: str = "audio/mpeg"
    size: int = 0
    pub_date: str | None = None
    duration: str | None = None
    description: str | None = None


@dataclass
class Episode:
    """エピソード台帳に保存される 1 エピソード."""

    id: str
    url: str
    podcast_id: str
    guid: str | None = None
    title: str | None = None
    type: str = "audio/mpeg"
    size: int = 0
    pub_date: str | None = None
    duration: str | None = None
    description: str | None = None
    is_new: bool = False

    _OPTIONAL = (
        ("guid", "guid"),
        ("title", "title"),
        ("pub_date", "pubDate"),
        ("duration", "duration"),
        ("description", "description"),
    )

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"id": self.id}
        for attr, key in self._OPTIONAL:
            value = getattr(self, attr)
            if value is not None:
                data[key] = value
        data.update({
            "url": self.url,
            "type": self.type,
            "size": self.size,
            "podcastId": self.podcast_id,
            "isNew": self.is_new,
        })
        return data

    @classmethod
    def from_dict(cls, data: dict) -> Episode:
        return cls(
            id=data.get("id", ""),
            url=data.get("url", ""),
            podcast_id=data.get("podcastId", ""),
            guid=data.get("guid"),
            title=data.get("title"),
            type=data.get("type", "audio/mpeg"),
            size=data.get("size", 0),
            pub_date=data.get("pubDate"),
            duration=data.get("duration"),
            description=data.get("description"),
            is_new=bool(data.get("isNew", False)),
        )


@dataclass
class Subscription:
    """購読レジストリの 1 レコード."""

    id: str
    feed_url: str
    title: str = "Unknown"
    author: str = ""
    image_url: str = ""
    description: str = ""
    episode_count: int = 0
    last_updated: str = ""
    subscribed_at: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "feedUrl": self.feed_url,
            "imageUrl": self.image_url,
            "description": self.description,
            "episodeCount": self.episode_count,
            "lastUpdated": self.last_updated,
            "subscribedAt": self.subscribed_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Subscription:
        return cls(
            id=data["id"],
            feed_url=data.get("feedUrl", ""),
            title=data.get("title", "Unknown"),
            author=data.get("author", ""),
            image_url=data.get("imageUrl", ""),
            description=data.get("description", ""),
            episode_count=data.get("episodeCount", 0),
            last_updated=data.get("lastUpdated", ""),
            subscribed_at=data.get("subscribedAt", ""),
        )


@dataclass
class FeedSnapshot:
    """podcast ごとのチャンネル情報. 更新のたびに丸ごと置き換える."""

    podcast_id: str
    channel: Channel
    episode_count: int
    last_updated: str

    def to_dict(self) -> dict:
        return {
            "success": True,
            "podcastId": self.podcast_id,
            "channel": self.channel.to_dict(),
            "episodeCount": self.episode_count,
            "lastUpdated": self.last_updated,
        }


def episode_list_document(podcast_id: str, episodes: list[Episode], last_updated: str) -> dict:
    """エピソード台帳の保存形式 (episodes/{podcastId}/list.json)."""
    return {
        "success": True,
        "podcastId": podcast_id,
        "count": len(episodes),
        "lastUpdated": last_updated,
        "episodes": [ep.to_dict() for ep in episodes],
    }


def episodes_from_document(document: dict) -> list[Episode]:
    """台帳ドキュメントからエピソード列を復元する."""
    return [Episode.from_dict(ep) for ep in document.get("episodes", [])]


@dataclass
class SearchResult:
    """iTunes 検索結果の 1 件."""

    itunes_id: int
    title: str
    author: str
    feed_url: str
    image_url: str = ""
    description: str = ""
    genre: str = ""
    track_count: int = 0

    def to_dict(self) -> dict:
        return {
            "itunesId": self.itunes_id,
            "title": self.title,
            "author": self.author,
            "feedUrl": self.feed_url,
            "imageUrl": self.image_url,
            "description": self.description,
            "genre": self.genre,
            "trackCount": self.track_count,
        }
