"""store モジュールのテスト."""

from unittest.mock import MagicMock

import pytest
import requests

from podproxy.errors import NotFound, StoreError
from podproxy.store import (
    FileCollectionStore,
    FileStore,
    HttpCollectionStore,
    HttpStore,
    MemoryStore,
    SupabaseStore,
    file_stores,
)


class TestMemoryStore:
    """MemoryStore のテスト."""

    def test_get_missing(self):
        with pytest.raises(NotFound):
            MemoryStore().get("nope")

    def test_put_copies(self):
        """保存後に元の dict を変更しても影響しないこと."""
        store = MemoryStore()
        record = {"a": [1]}
        store.put("k", record)
        record["a"].append(2)

        assert store.get("k") == {"a": [1]}


class TestFileStore:
    """FileStore のテスト."""

    def test_round_trip_layout(self, tmp_path):
        """公開レイアウトのパスに保存されること."""
        store = FileStore(tmp_path, "requests/{key}.json")
        store.put("abc-1", {"success": True, "note": "日本語"})

        assert (tmp_path / "requests" / "abc-1.json").is_file()
        assert store.get("abc-1") == {"success": True, "note": "日本語"}
        assert store.exists("abc-1")
        assert not store.exists("abc-2")

    def test_get_missing(self, tmp_path):
        with pytest.raises(NotFound):
            FileStore(tmp_path, "requests/{key}.json").get("missing")

    def test_corrupt_file(self, tmp_path):
        """壊れた JSON は NotFound ではなく StoreError になること."""
        (tmp_path / "requests").mkdir()
        (tmp_path / "requests" / "bad.json").write_text("{", encoding="utf-8")

        with pytest.raises(StoreError):
            FileStore(tmp_path, "requests/{key}.json").get("bad")

    def test_keys_nested(self, tmp_path):
        """episodes/{key}/list.json 形式のキー一覧."""
        store = FileStore(tmp_path, "episodes/{key}/list.json")
        store.put("p2", {})
        store.put("p1", {})
        (tmp_path / "episodes" / "empty").mkdir()

        assert store.keys() == ["p1", "p2"]

    def test_keys_flat(self, tmp_path):
        store = FileStore(tmp_path, "lookups/{key}.json")
        assert store.keys() == []
        store.put("123", {})
        store.put("456", {})

        assert store.keys() == ["123", "456"]

    @pytest.mark.parametrize("key", ["../../escaped", "a/b", "a\\b", "..", "x\x00y", ""])
    def test_rejects_unsafe_key(self, tmp_path, key):
        """data ディレクトリの外を指すキーは読み書きとも拒否すること."""
        root = tmp_path / "data"
        store = FileStore(root, "requests/{key}.json")

        with pytest.raises(StoreError):
            store.put(key, {})
        with pytest.raises(StoreError):
            store.delete(key)
        with pytest.raises(StoreError):
            store.exists(key)
        assert not (tmp_path / "escaped.json").exists()

    def test_delete(self, tmp_path):
        store = FileStore(tmp_path, "feeds/{key}.json")
        store.put("p1", {})
        store.delete("p1")
        store.delete("p1")

        assert not store.exists("p1")


class TestFileCollectionStore:
    """FileCollectionStore のテスト."""

    def test_single_file(self, tmp_path):
        """全レコードが 1 つの JSON オブジェクトに入ること."""
        store = FileCollectionStore(tmp_path / "subscriptions.json")
        store.put("p1", {"id": "p1"})
        store.put("p2", {"id": "p2"})

        assert store.keys() == ["p1", "p2"]
        assert store.get("p2") == {"id": "p2"}

        store.delete("p1")
        assert not store.exists("p1")
        assert store.exists("p2")

    def test_missing_file(self, tmp_path):
        store = FileCollectionStore(tmp_path / "subscriptions.json")

        assert store.keys() == []
        with pytest.raises(NotFound):
            store.get("p1")

    def test_file_stores_share_root(self, tmp_path):
        stores = file_stores(tmp_path)
        stores.subscriptions.put("p1", {"id": "p1"})
        stores.charts.put("last_update", {})

        assert (tmp_path / "subscriptions.json").is_file()
        assert (tmp_path / "last_update.json").is_file()


def _response(status: int, body=None) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.ok = 200 <= status < 400
    resp.json.return_value = body
    return resp


class TestHttpStore:
    """HttpStore のテスト."""

    def test_found(self):
        session = MagicMock()
        session.get.return_value = _response(200, {"success": True})
        store = HttpStore("https://pages.example.com/data/", "requests/{key}.json", session)

        assert store.get("r1") == {"success": True}
        url = session.get.call_args.args[0]
        assert url == "https://pages.example.com/data/requests/r1.json"
        assert session.get.call_args.kwargs["headers"]["Cache-Control"] == "no-cache"

    def test_404_is_not_found(self):
        session = MagicMock()
        session.get.return_value = _response(404)
        store = HttpStore("https://pages.example.com/data", "requests/{key}.json", session)

        with pytest.raises(NotFound):
            store.get("r1")
        assert store.exists("r1") is False

    def test_server_error_is_store_error(self):
        session = MagicMock()
        session.get.return_value = _response(503)
        store = HttpStore("https://pages.example.com/data", "requests/{key}.json", session)

        with pytest.raises(StoreError):
            store.get("r1")

    def test_network_error_is_store_error(self):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("boom")
        store = HttpStore("https://pages.example.com/data", "requests/{key}.json", session)

        with pytest.raises(StoreError):
            store.get("r1")

    def test_read_only(self):
        store = HttpStore("https://pages.example.com/data", "requests/{key}.json", MagicMock())

        with pytest.raises(StoreError):
            store.put("r1", {})

    def test_collection(self):
        session = MagicMock()
        session.get.return_value = _response(200, {"p1": {"id": "p1"}})
        store = HttpCollectionStore("https://pages.example.com/data", "subscriptions.json", session)

        assert store.keys() == ["p1"]
        assert store.get("p1") == {"id": "p1"}
        assert session.get.call_args.args[0] == "https://pages.example.com/data/subscriptions.json"
        with pytest.raises(NotFound):
            store.get("p2")


def _client_with_chain():
    client = MagicMock()
    chain = MagicMock()
    client.schema.return_value.table.return_value = chain
    for method in ("select", "eq", "limit", "upsert", "delete", "order"):
        getattr(chain, method).return_value = chain
    return client, chain


class TestSupabaseStore:
    """SupabaseStore のモックテスト."""

    def test_put_upserts(self):
        client, chain = _client_with_chain()
        chain.execute.return_value = MagicMock(data=[])
        store = SupabaseStore(client, "requests", schema="podcast_proxy")

        store.put("r1", {"success": True})

        client.schema.assert_called_with("podcast_proxy")
        client.schema.return_value.table.assert_called_with("requests")
        chain.upsert.assert_called_once_with({"key": "r1", "body": {"success": True}})

    def test_get(self):
        client, chain = _client_with_chain()
        chain.execute.return_value = MagicMock(data=[{"body": {"success": False}}])
        store = SupabaseStore(client, "requests")

        assert store.get("r1") == {"success": False}
        chain.eq.assert_called_with("key", "r1")

    def test_get_missing(self):
        client, chain = _client_with_chain()
        chain.execute.return_value = MagicMock(data=[])
        store = SupabaseStore(client, "requests")

        with pytest.raises(NotFound):
            store.get("r1")
        assert store.exists("r1") is False

    def test_keys(self):
        client, chain = _client_with_chain()
        chain.execute.return_value = MagicMock(data=[{"key": "a"}, {"key": "b"}])

        assert SupabaseStore(client, "subscriptions").keys() == ["a", "b"]

    def test_error_wrapped(self):
        """クライアントの例外は StoreError になること."""
        client, chain = _client_with_chain()
        chain.execute.side_effect = RuntimeError("network")

        with pytest.raises(StoreError):
            SupabaseStore(client, "requests").get("r1")
