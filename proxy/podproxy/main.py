"""ワーカーのエントリーポイント.

処理フロー:
  1. 環境変数から ACTION / REQUEST_ID / ペイロードを読む
  2. 設定に従ってストアを用意する
  3. ルーターでハンドラを実行し、結果レコードを書く
  4. 失敗した場合は終了コード 1 で終わる
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from datetime import datetime

from podproxy.config import DATA_DIR, LOG_DIR, STORE_BACKEND
from podproxy.errors import InvalidPayload, PodProxyError
from podproxy.handlers import WorkerContext
from podproxy.models import RequestRecord
from podproxy.router import run_request
from podproxy.store import Stores, file_stores, supabase_stores

# ペイロードのキー -> 環境変数名
PAYLOAD_ENV = {
    "query": "QUERY",
    "limit": "LIMIT",
    "feed_url": "FEED_URL",
    "podcast_id": "PODCAST_ID",
    "podcast_title": "PODCAST_TITLE",
    "episode_url": "EPISODE_URL",
    "episode_id": "EPISODE_ID",
    "country": "COUNTRY",
    "single_country": "SINGLE_COUNTRY",
}


def setup_logging() -> None:
    """ロギングの初期設定."""
    LOG_DIR.mkdir(exist_ok=True)
    log_file = LOG_DIR / f"worker_{datetime.now().strftime('%Y%m%d')}.log"
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file, encoding="utf-8"),
        ],
    )


def _request_id(environ, payload: dict) -> str:
    return (
        environ.get("REQUEST_ID")
        or payload.pop("request_id", None)
        or str(int(time.time() * 1000))
    )


def request_from_env(environ=os.environ) -> RequestRecord:
    """環境変数からリクエストを組み立てる.

    CLIENT_PAYLOAD (JSON オブジェクト) があればそれを使い、なければ個別の
    環境変数から作る。CLIENT_PAYLOAD が読めなければ InvalidPayload。
    """
    action = environ.get("ACTION", "")
    raw = environ.get("CLIENT_PAYLOAD")
    if raw:
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidPayload(f"Invalid CLIENT_PAYLOAD: {e}") from e
        if not isinstance(payload, dict):
            raise InvalidPayload("Invalid CLIENT_PAYLOAD: not a JSON object")
    else:
        payload = {key: environ[name] for key, name in PAYLOAD_ENV.items() if environ.get(name)}
    request_id = _request_id(environ, payload)
    payload.pop("request_id", None)
    return RequestRecord(request_id=request_id, action=action, payload=payload)


def build_stores() -> Stores:
    if STORE_BACKEND == "supabase":
        return supabase_stores()
    return file_stores(DATA_DIR)


def run() -> int:
    """メイン処理."""
    setup_logging()
    logger = logging.getLogger(__name__)

    # ペイロードが読めなくても requestId が分かれば失敗レコードを書く
    error = None
    try:
        request = request_from_env()
    except InvalidPayload as e:
        error = e
        request = RequestRecord(request_id=_request_id(os.environ, {}), action=os.environ.get("ACTION", ""))
    logger.info("=== ワーカー開始: %s (%s) ===", request.action, request.request_id)
    start_time = time.time()

    try:
        ctx = WorkerContext(stores=build_stores())
        result = run_request(request, ctx, error=error)
    except PodProxyError:
        # ストア自体が使えないため結果レコードは書けない
        logger.exception("結果レコードを書けませんでした: %s", request.request_id)
        return 1

    elapsed = time.time() - start_time
    logger.info("=== ワーカー終了: success=%s, 所要時間: %.1f 秒 ===", result.success, elapsed)
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(run())
