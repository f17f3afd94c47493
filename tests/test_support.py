"""
test_support.py - Tests for configuration, metrics, logging and codecs.

Tests:
1. ServerConfig validation and environment loading
2. Metrics registry and Prometheus export
3. JSON log formatting
4. Health checks
5. Record ids, timestamps and field codecs
"""

import asyncio
import json
import logging
import re

import pytest

from pocketlite.config import ServerConfig
from pocketlite.metrics import HealthChecker, JSONFormatter, MetricsRegistry
from pocketlite.settings_store import deep_merge
from pocketlite.utils.codec import decode_row, decode_value, encode_fields
from pocketlite.utils.ids import current_timestamp, generate_id


# =============================================================================
# Configuration
# =============================================================================

class TestServerConfig:

    def test_defaults(self):
        config = ServerConfig()
        assert config.heartbeat_interval == 30.0
        assert config.stale_after == 60.0
        assert config.strict_delete is False

    def test_stale_threshold_must_exceed_interval(self):
        with pytest.raises(ValueError):
            ServerConfig(heartbeat_interval=10, stale_after=5)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("POCKETLITE_DB_PATH", "/tmp/app.db")
        monkeypatch.setenv("POCKETLITE_STRICT_DELETE", "true")
        monkeypatch.setenv("POCKETLITE_HEARTBEAT_INTERVAL", "5")
        monkeypatch.setenv("POCKETLITE_STALE_AFTER", "12.5")
        monkeypatch.setenv("S3_BUCKET", "media")
        monkeypatch.delenv("POCKETLITE_S3_BUCKET", raising=False)

        config = ServerConfig.from_env()
        assert config.db_path == "/tmp/app.db"
        assert config.strict_delete is True
        assert config.heartbeat_interval == 5.0
        assert config.stale_after == 12.5
        assert config.s3_bucket == "media"


# =============================================================================
# Metrics
# =============================================================================

class TestMetrics:

    def setup_method(self):
        self.metrics = MetricsRegistry()

    def test_counter_labels(self):
        self.metrics.record_operations.inc(operation="get", collection="posts")
        self.metrics.record_operations.inc(operation="get", collection="posts")
        self.metrics.record_operations.inc(operation="get", collection="users")
        assert self.metrics.record_operations.get(operation="get", collection="posts") == 2
        assert self.metrics.record_operations.get(operation="list", collection="posts") == 0

    def test_histogram_time(self):
        with self.metrics.record_latency.time(operation="list"):
            pass
        text = self.metrics.export_prometheus()
        assert 'pocketlite_record_latency_seconds_count{operation="list"} 1' in text

    def test_registration_is_idempotent(self):
        assert self.metrics.counter("record_operations_total", "again") is self.metrics.record_operations

    def test_gauge(self):
        self.metrics.realtime_connections.set(3)
        self.metrics.realtime_connections.dec()
        assert "pocketlite_realtime_connections 2" in self.metrics.export_prometheus()


# =============================================================================
# Logging
# =============================================================================

def test_json_formatter_includes_extra():
    record = logging.LogRecord("pocketlite.records", logging.INFO, __file__, 1, "created %s", ("x",), None)
    record.collection = "posts"
    data = json.loads(JSONFormatter().format(record))
    assert data["message"] == "created x"
    assert data["logger"] == "pocketlite.records"
    assert data["collection"] == "posts"


# =============================================================================
# Health
# =============================================================================

class TestHealthChecker:

    def test_sync_and_async_checks(self):
        checker = HealthChecker()

        async def database():
            return {"healthy": True, "message": "ok"}

        checker.register_check("database", database)
        checker.register_check("disk", lambda: {"healthy": True})
        status = asyncio.run(checker.check_all())
        assert status.healthy
        assert set(status.checks) == {"database", "disk"}

    def test_failing_check(self):
        checker = HealthChecker()

        def broken():
            raise RuntimeError("db down")

        checker.register_check("database", broken)
        status = asyncio.run(checker.check_all())
        assert not status.healthy
        assert "db down" in status.checks["database"]["message"]


# =============================================================================
# Ids and codecs
# =============================================================================

class TestIds:

    def test_generate_id(self):
        record_id = generate_id()
        assert re.fullmatch(r"[a-z0-9]{15}", record_id)
        assert len(generate_id(40)) == 40

    def test_timestamp_layout(self):
        assert re.fullmatch(r"\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\.\d{3}Z", current_timestamp())


class TestCodec:

    def test_arrays_are_stored_as_json(self):
        assert encode_fields({"tags": ["a", "b"], "n": 1}) == {"tags": '["a", "b"]', "n": 1}

    def test_non_ascii_is_stored_unescaped(self):
        assert encode_fields({"tags": ["café"]}) == {"tags": '["café"]'}

    @pytest.mark.parametrize("stored,expected", [
        ('["a"]', ["a"]),
        ('{"k": 1}', {"k": 1}),
        ("[not json", "[not json"),
        ("plain", "plain"),
        ("", ""),
        (None, None),
        (3, 3),
    ])
    def test_decode_value(self, stored, expected):
        assert decode_value(stored) == expected

    def test_decode_row_tags_collection(self):
        record = decode_row({"id": "x", "tags": "[]"}, "posts")
        assert record == {"id": "x", "tags": [], "collectionName": "posts"}


def test_deep_merge():
    base = {"meta": {"appName": "a", "appURL": "u"}, "logs": {"maxDays": 7}}
    merged = deep_merge(base, {"meta": {"appName": "b"}, "extra": [1]})
    assert merged == {"meta": {"appName": "b", "appURL": "u"}, "logs": {"maxDays": 7}, "extra": [1]}
    assert base["meta"]["appName"] == "a"
