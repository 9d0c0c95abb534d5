"""例外定義.

ストア・トリガーの通信失敗 (TransportError) とフィード取得失敗 (FetchError) を
区別する。抽出時のフィールド欠落は例外にせず空値で扱う。
"""

from __future__ import annotations


class PodProxyError(Exception):
    """podproxy の例外基底クラス."""


class TransportError(PodProxyError):
    """ストア・トリガーとの通信失敗."""


class StoreError(TransportError):
    """ストアの読み書き失敗 (未書き込みとは区別する)."""


class DispatchError(TransportError):
    """トリガーが受け付けられなかった."""


class NotFound(PodProxyError):
    """キーにレコードが存在しない."""

    def __init__(self, key: str):
        super().__init__(f"not found: {key}")
        self.key = key


class FetchError(PodProxyError):
    """取得失敗またはリダイレクト上限超過."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class InvalidPayload(PodProxyError):
    """リクエストのペイロードに必須項目がない."""


class UnknownAction(PodProxyError):
    """ルーターに対応するハンドラがない."""


class ProtocolViolation(PodProxyError):
    """ハンドラが結果フィールドを返さなかった."""


class PollTimeout(TimeoutError):
    """ポーリング回数を使い切った.

    処理の失敗ではなく「待つのをやめた」ことを表す。結果は後から書かれうる。
    """

    def __init__(self, request_id: str, attempts: int):
        super().__init__(f"Timeout waiting for results: {request_id} ({attempts} attempts)")
        self.request_id = request_id
        self.attempts = attempts
