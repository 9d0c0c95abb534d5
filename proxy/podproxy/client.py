"""クライアント側: リクエストのディスパッチと結果のポーリング.

ワーカーからクライアントへの経路はないため、クライアントは requestId を
自分で決めてトリガーに渡し、結果ストアを requestId で読みにいく。
結果レコードがない間は「未完了」とみなして一定間隔で再試行する。
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable

import requests

from podproxy.config import (
    GITHUB_API_URL,
    GITHUB_OWNER,
    GITHUB_REPO,
    GITHUB_TOKEN,
    PAGES_BASE_URL,
    POLL_INTERVAL,
    POLL_MAX_ATTEMPTS,
    REQUEST_TIMEOUT,
    SEARCH_LIMIT,
)
from podproxy.errors import DispatchError, NotFound, PollTimeout, StoreError
from podproxy.models import RequestRecord
from podproxy.store import RecordStore, Stores, http_stores

logger = logging.getLogger(__name__)


def generate_request_id() -> str:
    """requestId を作る (uuid 先頭 8 桁 + エポックミリ秒).

    衝突は起きない前提で、検出はしない。
    """
    return f"{uuid.uuid4().hex[:8]}-{int(time.time() * 1000)}"


class GitHubTrigger:
    """repository_dispatch でワーカー (GitHub Actions) を起動する."""

    def __init__(
        self,
        token: str = GITHUB_TOKEN,
        owner: str = GITHUB_OWNER,
        repo: str = GITHUB_REPO,
        session: requests.Session | None = None,
    ):
        self.token = token
        self.url = f"{GITHUB_API_URL}/repos/{owner}/{repo}/dispatches"
        self.session = session or requests.Session()

    def __call__(self, request: RequestRecord) -> None:
        if not self.token:
            raise DispatchError("GitHub token not configured")

        body = {
            "event_type": request.action,
            "client_payload": {**request.payload, "request_id": request.request_id},
        }
        headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {self.token}",
        }
        logger.debug("トリガー: %s (%s)", request.action, request.request_id)
        try:
            resp = self.session.post(self.url, json=body, headers=headers, timeout=REQUEST_TIMEOUT)
        except requests.RequestException as e:
            raise DispatchError(f"Trigger failed: {e}") from e
        if resp.status_code not in (200, 204):
            raise DispatchError(f"Trigger failed: HTTP {resp.status_code} - {resp.text}")


class PollState(enum.Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class PollOutcome:
    """ポーリングの最終状態."""

    request_id: str
    state: PollState
    attempts: int
    record: dict | None = None


class Poller:
    """結果ストアを requestId で読みにいく再試行ループ.

    レコードがあれば成功・失敗にかかわらずそのまま返す。NotFound と
    ストアの一時的な失敗はどちらも「まだ」として同じ間隔で再試行する。
    max_attempts 回読んでもなければ PollTimeout。バックオフはしない。

    Args:
        store: 結果ストア
        max_attempts: 読み取りの最大回数
        interval: 読み取りの間隔 (秒)
        sleep: 待機関数 (テスト用に差し替え可能)
    """

    def __init__(
        self,
        store: RecordStore,
        max_attempts: int = POLL_MAX_ATTEMPTS,
        interval: float = POLL_INTERVAL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.store = store
        self.max_attempts = max_attempts
        self.interval = interval
        self._sleep = sleep

    async def _read(self, request_id: str) -> dict | None:
        try:
            return await asyncio.to_thread(self.store.get, request_id)
        except NotFound:
            return None
        except StoreError as e:
            logger.debug("結果の読み取りに失敗 (再試行): %s", e)
            return None

    async def outcome(self, request_id: str) -> PollOutcome:
        """結果が現れるか回数を使い切るまで待つ."""
        for attempt in range(1, self.max_attempts + 1):
            record = await self._read(request_id)
            if record is not None:
                state = PollState.SUCCEEDED if record.get("success") else PollState.FAILED
                logger.debug("結果取得: %s (%s, %d 回目)", request_id, state.value, attempt)
                return PollOutcome(request_id, state, attempt, record)
            if attempt < self.max_attempts:
                await self._sleep(self.interval)
        return PollOutcome(request_id, PollState.TIMED_OUT, self.max_attempts)

    async def poll(self, request_id: str) -> dict:
        """結果レコードを返す. 待ちきれなければ PollTimeout."""
        result = await self.outcome(request_id)
        if result.state is PollState.TIMED_OUT:
            raise PollTimeout(request_id, result.attempts)
        return result.record


class Dispatcher:
    """requestId を振ってトリガーに渡す.

    トリガー自体の失敗は DispatchError としてその場で送出する
    (ポーリングのタイムアウトとは別物)。
    """

    def __init__(self, trigger: Callable[[RequestRecord], None], poller: Poller):
        self.trigger = trigger
        self.poller = poller

    def dispatch(self, action: str, payload: dict) -> str:
        request = RequestRecord(request_id=generate_request_id(), action=action, payload=dict(payload))
        self.trigger(request)
        logger.info("ディスパッチ: %s (%s)", action, request.request_id)
        return request.request_id

    async def submit(self, action: str, payload: dict) -> dict:
        """ディスパッチして結果レコードを待つ."""
        request_id = await asyncio.to_thread(self.dispatch, action, payload)
        return await self.poller.poll(request_id)


class PodcastProxyClient:
    """アプリ向けの窓口. 公開データの読み取りとアクションの実行."""

    def __init__(
        self,
        base_url: str = PAGES_BASE_URL,
        trigger: Callable[[RequestRecord], None] | None = None,
        stores: Stores | None = None,
        max_attempts: int = POLL_MAX_ATTEMPTS,
        interval: float = POLL_INTERVAL,
    ):
        self.stores = stores or http_stores(base_url)
        self.poller = Poller(self.stores.results, max_attempts=max_attempts, interval=interval)
        self.dispatcher = Dispatcher(trigger or GitHubTrigger(), self.poller)

    # --- 公開データ ---

    def get_top_podcasts(self, country: str) -> dict:
        return self.stores.charts.get(f"top_{country}")

    def get_lookup(self, itunes_id: str) -> dict:
        return self.stores.lookups.get(itunes_id)

    def get_all_lookups(self) -> dict:
        return self.stores.charts.get("all_lookups")

    def get_subscriptions(self) -> dict:
        return {key: self.stores.subscriptions.get(key) for key in self.stores.subscriptions.keys()}

    def get_episodes(self, podcast_id: str) -> dict:
        return self.stores.episodes.get(podcast_id)

    def get_feed(self, podcast_id: str) -> dict:
        return self.stores.feeds.get(podcast_id)

    # --- アクション ---

    async def search(self, query: str, limit: int = SEARCH_LIMIT) -> dict:
        return await self.dispatcher.submit("search", {"query": query, "limit": limit})

    async def subscribe(self, feed_url: str, podcast_id: str = "", title: str = "") -> dict:
        return await self.dispatcher.submit(
            "subscribe",
            {"feed_url": feed_url, "podcast_id": podcast_id, "podcast_title": title},
        )

    async def unsubscribe(self, podcast_id: str) -> dict:
        return await self.dispatcher.submit("unsubscribe", {"podcast_id": podcast_id})

    async def download_episode(self, episode_url: str, episode_id: str, podcast_id: str) -> dict:
        return await self.dispatcher.submit(
            "download",
            {"episode_url": episode_url, "episode_id": episode_id, "podcast_id": podcast_id},
        )
