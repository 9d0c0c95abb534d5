"""ワーカーのルーター.

1 回の起動で 1 件のリクエストを処理し、成功・失敗どちらの場合も
requestId をキーに結果レコードをちょうど 1 件書く。書き込みはすべての
処理の最後に行う。
"""

from __future__ import annotations

import logging
from typing import Callable

from podproxy.errors import ProtocolViolation, UnknownAction
from podproxy.handlers import (
    WorkerContext,
    handle_download,
    handle_search,
    handle_subscribe,
    handle_unsubscribe,
    handle_update_feeds,
    handle_update_top,
)
from podproxy.models import RequestRecord, ResultRecord

logger = logging.getLogger(__name__)

Handler = Callable[[dict, WorkerContext], dict]

HANDLERS: dict[str, Handler] = {
    "search": handle_search,
    "subscribe": handle_subscribe,
    "unsubscribe": handle_unsubscribe,
    "download": handle_download,
    "update-top": handle_update_top,
    "update-feeds": handle_update_feeds,
}


def run_request(
    request: RequestRecord, ctx: WorkerContext, error: Exception | None = None
) -> ResultRecord:
    """リクエストを処理して結果レコードを書く.

    同じ requestId の結果が既にあればハンドラを実行せず既存の結果を返す
    (トリガーの重複配信で結果を書き換えない)。

    error が渡されたとき (ペイロードが読めなかった等) はハンドラを実行せず、
    その内容で失敗レコードを書く。
    """
    results = ctx.stores.results
    if results.exists(request.request_id):
        logger.warning("結果が既に存在するためスキップ: %s", request.request_id)
        return ResultRecord.from_dict(results.get(request.request_id))

    logger.info("処理開始: action=%s, requestId=%s", request.action, request.request_id)
    try:
        if error is not None:
            raise error
        handler = HANDLERS.get(request.action)
        if handler is None:
            raise UnknownAction(f"Unknown action: {request.action}")
        fields = handler(request.payload, ctx)
        if not isinstance(fields, dict):
            raise ProtocolViolation(f"Handler returned no result fields: {request.action}")
        result = ResultRecord.ok(request, fields)
    except Exception as e:
        logger.exception("処理失敗: action=%s, requestId=%s", request.action, request.request_id)
        result = ResultRecord.failed(request, str(e))

    results.put(request.request_id, result.to_dict())
    logger.info("結果を保存: requestId=%s, success=%s", request.request_id, result.success)
    return result
