"""
test_records.py - Tests for the record query engine.
"""

import asyncio
import os
import re

import pytest

from pocketlite.blobs import LocalBlobStore
from pocketlite.errors import DatabaseError, InvalidRequestError, NotFoundError
from pocketlite.metrics import MetricsRegistry
from pocketlite.records import RecordService, UploadedFile

TIMESTAMP_RE = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\.\d{3}Z$")


class RecordingListener:
    def __init__(self):
        self.events = []

    def __call__(self, collection, action, record):
        self.events.append((collection, action, dict(record)))


class TestRecordService:

    @pytest.fixture(autouse=True)
    def _service(self, sample_storage, resolver, temp_dir):
        self.storage = sample_storage
        self.listener = RecordingListener()
        self.metrics = MetricsRegistry()
        self.blobs = LocalBlobStore(os.path.join(temp_dir, "uploads"))
        self.service = RecordService(
            sample_storage,
            resolver,
            blob_store=self.blobs,
            on_change=self.listener,
            metrics=self.metrics,
        )
        asyncio.run(sample_storage.execute_script(
            "CREATE TABLE items (id TEXT PRIMARY KEY, created TEXT, updated TEXT, n INTEGER, labels TEXT);"
        ))
        for n in range(1, 6):
            asyncio.run(self.service.create_record("items", {"n": n, "labels": [f"l{n}"]}))
        self.listener.events.clear()

    def test_pagination(self):
        result = asyncio.run(self.service.list_records("items", page=2, per_page=2, sort="n"))
        assert [item["n"] for item in result.items] == [3, 4]
        assert result.total_items == 5
        assert result.total_pages == 3
        assert result.to_dict()["perPage"] == 2

    def test_page_beyond_last(self):
        result = asyncio.run(self.service.list_records("items", page=9, per_page=2, sort="n"))
        assert result.items == []
        assert result.total_items == 5

    def test_skip_total(self):
        result = asyncio.run(self.service.list_records("items", per_page=2, skip_total=True))
        assert len(result.items) == 2
        assert result.total_items == -1
        assert result.total_pages == -1

    def test_filter_and_sort(self):
        result = asyncio.run(self.service.list_records("items", filter="n >= 2 && n < 5", sort="-n"))
        assert [item["n"] for item in result.items] == [4, 3, 2]
        assert result.total_items == 3

    def test_array_contains_filter(self):
        result = asyncio.run(self.service.list_records("items", filter="labels ?= 'l3'"))
        assert [item["n"] for item in result.items] == [3]

    def test_array_contains_non_ascii_value(self):
        record = asyncio.run(self.service.create_record("items", {"n": 6, "labels": ["café", "naïve"]}))
        result = asyncio.run(self.service.list_records("items", filter="labels ?= 'café'"))
        assert [item["id"] for item in result.items] == [record["id"]]
        assert result.items[0]["labels"] == ["café", "naïve"]

    def test_contains_numeric_literal(self):
        asyncio.run(self.service.create_record("items", {"n": 35}))
        result = asyncio.run(self.service.list_records("items", filter="n ~ 3", sort="n"))
        assert [item["n"] for item in result.items] == [3, 35]

    def test_filter_subquery_is_rejected(self):
        with pytest.raises(InvalidRequestError):
            asyncio.run(self.service.list_records(
                "items", filter="(SELECT substr(name,1,1) FROM sqlite_master) = 't'"
            ))
        with pytest.raises(InvalidRequestError):
            asyncio.run(self.service.list_records("items", filter="(SELECT count(*) FROM posts) > 0"))

    def test_invalid_page(self):
        with pytest.raises(InvalidRequestError):
            asyncio.run(self.service.list_records("items", page=0))
        with pytest.raises(InvalidRequestError):
            asyncio.run(self.service.list_records("items", per_page=0))

    def test_list_attaches_collection_name_and_expand(self):
        result = asyncio.run(self.service.list_records("posts", filter="published = true", expand="authorId"))
        assert {p["collectionName"] for p in result.items} == {"posts"}
        assert all("authorId" in p["expand"] for p in result.items)
        assert result.items[0]["tags"] and isinstance(result.items[0]["tags"], list)

    def test_missing_collection_is_upstream_failure(self):
        with pytest.raises(DatabaseError):
            asyncio.run(self.service.list_records("nope"))
        with pytest.raises(DatabaseError):
            asyncio.run(self.service.get_record("nope", "x"))

    def test_invalid_collection_name(self):
        with pytest.raises(InvalidRequestError):
            asyncio.run(self.service.list_records("posts; DROP TABLE posts"))

    def test_create_round_trip(self):
        record = asyncio.run(self.service.create_record("items", {"n": 42, "labels": ["b", "a", "c"]}))
        assert len(record["id"]) == 15
        assert record["created"] == record["updated"]
        assert TIMESTAMP_RE.match(record["created"])

        fetched = asyncio.run(self.service.get_record("items", record["id"]))
        assert fetched["labels"] == ["b", "a", "c"]
        assert fetched["collectionName"] == "items"

        listed = asyncio.run(self.service.list_records("items", filter="n = 42"))
        assert listed.items[0]["labels"] == ["b", "a", "c"]

    def test_create_ignores_reserved_keys(self):
        record = asyncio.run(self.service.create_record(
            "items", {"id": "chosen", "created": "yesterday", "expand": {}, "n": 7}
        ))
        assert record["id"] != "chosen"
        assert record["created"] != "yesterday"

    def test_create_notifies_expand_free_record(self):
        record = asyncio.run(self.service.create_record(
            "posts", {"title": "Hello", "authorId": "user1xxxxxxxxxx"}, expand="authorId"
        ))
        assert record["expand"]["authorId"]["id"] == "user1xxxxxxxxxx"
        collection, action, notified = self.listener.events[-1]
        assert (collection, action) == ("posts", "create")
        assert "expand" not in notified

    def test_update(self):
        record = asyncio.run(self.service.create_record("items", {"n": 1}))
        updated = asyncio.run(self.service.update_record("items", record["id"], {"n": 2, "labels": None}))
        assert updated["n"] == 2
        assert updated["labels"] == ""
        assert updated["created"] == record["created"]
        assert self.listener.events[-1][1] == "update"

    def test_concurrent_updates_notify_in_commit_order(self, monkeypatch):
        record = asyncio.run(self.service.create_record("items", {"n": 0}))
        self.listener.events.clear()

        fetch_one = self.storage.fetch_one
        delays = [0.05, 0.0, 0.0]

        async def slow_first_fetch(sql, params=()):
            await asyncio.sleep(delays.pop(0) if delays else 0)
            return await fetch_one(sql, params)

        monkeypatch.setattr(self.storage, "fetch_one", slow_first_fetch)

        async def run():
            await asyncio.gather(*(
                self.service.update_record("items", record["id"], {"n": n}) for n in (10, 20, 30)
            ))

        asyncio.run(run())
        assert [event[2]["n"] for event in self.listener.events] == [10, 20, 30]
        assert asyncio.run(self.service.get_record("items", record["id"]))["n"] == 30
        assert self.service._write_locks == {}

    def test_update_missing_record(self):
        with pytest.raises(NotFoundError):
            asyncio.run(self.service.update_record("items", "missing", {"n": 1}))
        assert all(action != "update" for _, action, _ in self.listener.events)

    def test_get_empty_id(self):
        with pytest.raises(NotFoundError):
            asyncio.run(self.service.get_record("items", ""))

    def test_delete_broadcasts_pre_delete_row(self):
        record = asyncio.run(self.service.create_record("items", {"n": 99}))
        assert asyncio.run(self.service.delete_record("items", record["id"])) is True
        collection, action, notified = self.listener.events[-1]
        assert action == "delete"
        assert notified["id"] == record["id"]
        assert notified["n"] == 99
        with pytest.raises(NotFoundError):
            asyncio.run(self.service.get_record("items", record["id"]))

    def test_delete_missing_is_noop_by_default(self):
        assert asyncio.run(self.service.delete_record("items", "missing")) is False
        assert self.listener.events == []

    def test_delete_missing_in_strict_mode(self, resolver):
        strict = RecordService(self.storage, resolver, strict_delete=True)
        with pytest.raises(NotFoundError):
            asyncio.run(strict.delete_record("items", "missing"))

    def test_listener_failure_does_not_fail_write(self, resolver):
        def broken(collection, action, record):
            raise RuntimeError("subscriber gone")

        service = RecordService(self.storage, resolver, on_change=broken)
        record = asyncio.run(service.create_record("items", {"n": 5}))
        assert asyncio.run(service.get_record("items", record["id"]))["n"] == 5

    def test_create_with_files(self):
        files = [
            UploadedFile("labels", "a.txt", b"first", "text/plain"),
            UploadedFile("labels", "b.txt", b"second", "text/plain"),
        ]
        record = asyncio.run(self.service.create_record("items", {"n": 3}, files))
        assert len(record["labels"]) == 2
        assert record["labels"][0].endswith("_a.txt")

        content, content_type = asyncio.run(
            self.blobs.get(f"items/{record['id']}/{record['labels'][1]}")
        )
        assert content == b"second"
        assert content_type == "text/plain"

    def test_metrics_are_recorded(self):
        asyncio.run(self.service.list_records("items"))
        assert self.metrics.record_operations.get(operation="list", collection="items") == 1
        assert self.metrics.record_operations.get(operation="create", collection="items") == 5
