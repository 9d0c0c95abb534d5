"""キー → JSON レコードの永続ストア.

結果ストア・購読レジストリ・エピソード台帳はすべて同じ契約
(get / put / exists / delete / keys) を持つ。バックエンドは
ファイル (公開リポジトリの data/ 配下)、HTTP (公開データの読み取り専用)、
Supabase、メモリ (テスト用) の 4 種。
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import requests

from podproxy.config import REQUEST_TIMEOUT, SUPABASE_SCHEMA
from podproxy.errors import NotFound, StoreError

logger = logging.getLogger(__name__)


class RecordStore(Protocol):
    def get(self, key: str) -> dict: ...

    def put(self, key: str, record: dict) -> None: ...

    def exists(self, key: str) -> bool: ...

    def delete(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...


class MemoryStore:
    """プロセス内の dict を使うストア."""

    def __init__(self, records: dict[str, dict] | None = None):
        self.records: dict[str, dict] = dict(records or {})

    def get(self, key: str) -> dict:
        try:
            return json.loads(json.dumps(self.records[key]))
        except KeyError:
            raise NotFound(key) from None

    def put(self, key: str, record: dict) -> None:
        self.records[key] = json.loads(json.dumps(record))

    def exists(self, key: str) -> bool:
        return key in self.records

    def delete(self, key: str) -> None:
        self.records.pop(key, None)

    def keys(self) -> list[str]:
        return list(self.records)


def _write_json(path: Path, data: dict) -> None:
    """一時ファイルに書いてから置き換える (読み手に途中状態を見せない)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


_UNSAFE_KEY_PARTS = ("/", "\\", "..", "\x00")


def _check_key(key: str) -> str:
    """ファイル名として安全なキーか確認する. data ディレクトリの外を指すキーは拒否."""
    if not key or any(part in key for part in _UNSAFE_KEY_PARTS):
        raise StoreError(f"Invalid store key: {key!r}")
    return key


def _read_json(path: Path, key: str) -> dict:
    try:
        with path.open(encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        raise NotFound(key) from None
    except (OSError, json.JSONDecodeError) as e:
        raise StoreError(f"{path}: {e}") from e


class FileStore:
    """1 キー 1 ファイルのストア.

    Args:
        root: data ディレクトリ
        pattern: キーからの相対パス (例: "requests/{key}.json")
    """

    def __init__(self, root: Path, pattern: str):
        self.root = Path(root)
        self.pattern = pattern

    def _path(self, key: str) -> Path:
        return self.root / self.pattern.format(key=_check_key(key))

    def get(self, key: str) -> dict:
        return _read_json(self._path(key), key)

    def put(self, key: str, record: dict) -> None:
        _write_json(self._path(key), record)

    def exists(self, key: str) -> bool:
        return self._path(key).exists()

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def keys(self) -> list[str]:
        prefix, _, suffix = self.pattern.partition("{key}")
        base = self.root / prefix if prefix.endswith("/") else self.root
        if not base.is_dir():
            return []
        if "/" in suffix:
            # episodes/{key}/list.json 形式
            return sorted(p.name for p in base.iterdir() if (p / suffix.lstrip("/")).is_file())
        name_prefix = "" if prefix.endswith("/") else prefix
        return sorted(
            p.name[len(name_prefix):len(p.name) - len(suffix)]
            for p in base.iterdir()
            if p.is_file() and p.name.startswith(name_prefix) and p.name.endswith(suffix)
        )


class FileCollectionStore:
    """キー付きコレクションを 1 つの JSON オブジェクトとして保存するストア.

    subscriptions.json のように、読み手が一覧を 1 回で取得できる形式。
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        return _read_json(self.path, self.path.name)

    def get(self, key: str) -> dict:
        try:
            return self._load()[key]
        except KeyError:
            raise NotFound(key) from None

    def put(self, key: str, record: dict) -> None:
        records = self._load()
        records[key] = record
        _write_json(self.path, records)

    def exists(self, key: str) -> bool:
        return key in self._load()

    def delete(self, key: str) -> None:
        records = self._load()
        if records.pop(key, None) is not None:
            _write_json(self.path, records)

    def keys(self) -> list[str]:
        return list(self._load())


class HttpStore:
    """公開データ (静的ホスティング) を読むだけのストア.

    404 は未書き込み (NotFound)、それ以外の失敗は StoreError として区別する。
    """

    def __init__(self, base_url: str, pattern: str, session: requests.Session | None = None):
        self.base_url = base_url.rstrip("/")
        self.pattern = pattern
        self.session = session or requests.Session()

    def url_for(self, key: str) -> str:
        return f"{self.base_url}/{self.pattern.format(key=key)}"

    def _fetch(self, url: str, key: str) -> dict:
        try:
            resp = self.session.get(
                url,
                headers={"Accept": "application/json", "Cache-Control": "no-cache"},
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as e:
            raise StoreError(f"GET {url} failed: {e}") from e
        if resp.status_code == 404:
            raise NotFound(key)
        if not resp.ok:
            raise StoreError(f"GET {url} failed: HTTP {resp.status_code}")
        try:
            return resp.json()
        except ValueError as e:
            raise StoreError(f"GET {url}: invalid JSON") from e

    def get(self, key: str) -> dict:
        return self._fetch(self.url_for(key), key)

    def exists(self, key: str) -> bool:
        try:
            self.get(key)
        except NotFound:
            return False
        return True

    def put(self, key: str, record: dict) -> None:
        raise StoreError("HttpStore is read-only")

    def delete(self, key: str) -> None:
        raise StoreError("HttpStore is read-only")

    def keys(self) -> list[str]:
        raise StoreError("HttpStore cannot list keys")


class HttpCollectionStore(HttpStore):
    """公開された subscriptions.json を読むストア. pattern はファイルのパス."""

    def _load(self) -> dict:
        try:
            return self._fetch(self.url_for(""), self.pattern)
        except NotFound:
            return {}

    def get(self, key: str) -> dict:
        try:
            return self._load()[key]
        except KeyError:
            raise NotFound(key) from None

    def keys(self) -> list[str]:
        return list(self._load())


class SupabaseStore:
    """Supabase のテーブル (key text primary key, body jsonb) を使うストア."""

    def __init__(self, client, table: str, schema: str = SUPABASE_SCHEMA):
        self._client = client
        self.table = table
        self.schema = schema

    def _table(self):
        """スキーマ付きのテーブルを参照する."""
        return self._client.schema(self.schema).table(self.table)

    def _execute(self, query):
        try:
            return query.execute()
        except Exception as e:
            raise StoreError(f"{self.table}: {e}") from e

    def get(self, key: str) -> dict:
        resp = self._execute(self._table().select("body").eq("key", key).limit(1))
        if not resp.data:
            raise NotFound(key)
        return resp.data[0]["body"]

    def put(self, key: str, record: dict) -> None:
        self._execute(self._table().upsert({"key": key, "body": record}))
        logger.debug("%s に upsert: %s", self.table, key)

    def exists(self, key: str) -> bool:
        resp = self._execute(self._table().select("key").eq("key", key).limit(1))
        return bool(resp.data)

    def delete(self, key: str) -> None:
        self._execute(self._table().delete().eq("key", key))

    def keys(self) -> list[str]:
        resp = self._execute(self._table().select("key").order("key"))
        return [row["key"] for row in resp.data]


@dataclass
class Stores:
    """ハンドラに渡すストア一式."""

    results: RecordStore
    subscriptions: RecordStore
    feeds: RecordStore
    episodes: RecordStore
    searches: RecordStore
    lookups: RecordStore
    downloads: RecordStore
    charts: RecordStore


def memory_stores() -> Stores:
    return Stores(*(MemoryStore() for _ in range(8)))


def file_stores(root: Path) -> Stores:
    """data ディレクトリ配下の公開レイアウトでストアを作る."""
    root = Path(root)
    return Stores(
        results=FileStore(root, "requests/{key}.json"),
        subscriptions=FileCollectionStore(root / "subscriptions.json"),
        feeds=FileStore(root, "feeds/{key}.json"),
        episodes=FileStore(root, "episodes/{key}/list.json"),
        searches=FileStore(root, "search/{key}.json"),
        lookups=FileStore(root, "lookups/{key}.json"),
        downloads=FileStore(root, "downloads/{key}.json"),
        charts=FileStore(root, "{key}.json"),
    )


def http_stores(base_url: str, session: requests.Session | None = None) -> Stores:
    """公開データ (GitHub Pages 等) を読む読み取り専用ストア一式."""
    base = f"{base_url.rstrip('/')}/data"
    session = session or requests.Session()
    return Stores(
        results=HttpStore(base, "requests/{key}.json", session),
        subscriptions=HttpCollectionStore(base, "subscriptions.json", session),
        feeds=HttpStore(base, "feeds/{key}.json", session),
        episodes=HttpStore(base, "episodes/{key}/list.json", session),
        searches=HttpStore(base, "search/{key}.json", session),
        lookups=HttpStore(base, "lookups/{key}.json", session),
        downloads=HttpStore(base, "downloads/{key}.json", session),
        charts=HttpStore(base, "{key}.json", session),
    )


def supabase_stores(client=None) -> Stores:
    """Supabase のテーブルでストア一式を作る."""
    if client is None:
        from supabase import create_client

        from podproxy.config import SUPABASE_SECRET_KEY, SUPABASE_URL

        if not SUPABASE_URL or not SUPABASE_SECRET_KEY:
            raise StoreError("SUPABASE_URL / SUPABASE_SECRET_KEY が未設定です")
        client = create_client(SUPABASE_URL, SUPABASE_SECRET_KEY)
    names = ["requests", "subscriptions", "feeds", "episodes",
             "searches", "lookups", "downloads", "charts"]
    return Stores(*(SupabaseStore(client, name) for name in names))
