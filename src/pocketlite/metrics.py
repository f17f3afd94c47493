"""
metrics.py - Observability for the record and realtime services.

Provides:
- Labelled counters, gauges and histograms rendered in the Prometheus
  text exposition format
- JSON log lines for log shippers
- Health checks reported by /api/health
"""

import inspect
import json
import logging
import os
import shutil
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Tuple, Union

LabelKey = Tuple[str, ...]
Sample = Tuple[str, Dict[str, str], float]


def _format_number(value: float) -> str:
    if value == float("inf"):
        return "+Inf"
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


# =============================================================================
# Metric Collectors
# =============================================================================

class _Metric:
    """A named metric whose values are partitioned by label values."""

    kind = "untyped"

    def __init__(self, name: str, help_text: str, labels: List[str] | None = None):
        self.name = name
        self.help = help_text
        self.labels = tuple(labels or ())
        self._lock = threading.Lock()

    def _key(self, label_values: Dict[str, Any]) -> LabelKey:
        unknown = set(label_values) - set(self.labels)
        if unknown:
            raise ValueError(f"{self.name} has no label(s) {sorted(unknown)}")
        return tuple(str(label_values.get(label, "")) for label in self.labels)

    def _label_dict(self, key: LabelKey) -> Dict[str, str]:
        return dict(zip(self.labels, key))

    def samples(self) -> Iterator[Sample]:
        raise NotImplementedError


class Counter(_Metric):
    """Monotonic count, one series per label combination."""

    kind = "counter"

    def __init__(self, name: str, help_text: str, labels: List[str] | None = None):
        super().__init__(name, help_text, labels)
        self._series: Dict[LabelKey, float] = {}

    def _add(self, amount: float, label_values: Dict[str, Any]) -> None:
        key = self._key(label_values)
        with self._lock:
            self._series[key] = self._series.get(key, 0) + amount

    def inc(self, value: float = 1, **label_values) -> None:
        if value < 0:
            raise ValueError("Counters can only increase")
        self._add(value, label_values)

    def get(self, **label_values) -> float:
        with self._lock:
            return self._series.get(self._key(label_values), 0)

    def samples(self) -> Iterator[Sample]:
        with self._lock:
            series = list(self._series.items())
        for key, value in series:
            yield self.name, self._label_dict(key), value


class Gauge(Counter):
    """A value that can go up and down."""

    kind = "gauge"

    def inc(self, value: float = 1, **label_values) -> None:
        self._add(value, label_values)

    def dec(self, value: float = 1, **label_values) -> None:
        self._add(-value, label_values)

    def set(self, value: float, **label_values) -> None:
        key = self._key(label_values)
        with self._lock:
            self._series[key] = value


@dataclass
class _HistogramSeries:
    bucket_counts: List[int]
    count: int = 0
    total: float = 0.0


class Histogram(_Metric):
    """Observations counted into cumulative upper-bound buckets."""

    kind = "histogram"

    DEFAULT_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)

    def __init__(
        self,
        name: str,
        help_text: str,
        labels: List[str] | None = None,
        buckets: tuple | None = None,
    ):
        super().__init__(name, help_text, labels)
        # +Inf is implied by the series count
        self.bounds = tuple(sorted(b for b in (buckets or self.DEFAULT_BUCKETS) if b != float("inf")))
        self._series: Dict[LabelKey, _HistogramSeries] = {}

    def observe(self, value: float, **label_values) -> None:
        key = self._key(label_values)
        with self._lock:
            series = self._series.get(key)
            if series is None:
                series = self._series[key] = _HistogramSeries([0] * len(self.bounds))
            series.count += 1
            series.total += value
            for i, bound in enumerate(self.bounds):
                if value <= bound:
                    series.bucket_counts[i] += 1

    @contextmanager
    def time(self, **label_values):
        """Observe the wall-clock duration of the enclosed block."""
        started = time.perf_counter()
        try:
            yield
        finally:
            self.observe(time.perf_counter() - started, **label_values)

    def samples(self) -> Iterator[Sample]:
        with self._lock:
            snapshot = [
                (key, list(s.bucket_counts), s.count, s.total) for key, s in self._series.items()
            ]
        for key, bucket_counts, count, total in snapshot:
            labels = self._label_dict(key)
            for bound, bucket_count in zip(self.bounds, bucket_counts):
                yield f"{self.name}_bucket", {**labels, "le": _format_number(bound)}, bucket_count
            yield f"{self.name}_bucket", {**labels, "le": "+Inf"}, count
            yield f"{self.name}_sum", labels, total
            yield f"{self.name}_count", labels, count


class MetricsRegistry:
    """
    Metrics owned by one application instance.

    The standard pocketlite metrics are registered on construction
    and exposed as attributes; other metrics can be added through
    counter()/gauge()/histogram(), which return the existing metric
    when the name is already registered.
    """

    def __init__(self, prefix: str = "pocketlite"):
        self.prefix = prefix
        self._metrics: Dict[str, _Metric] = {}
        self._lock = threading.Lock()

        self.record_operations = self.counter(
            "record_operations_total",
            "Record operations served",
            labels=["operation", "collection"],
        )
        self.record_latency = self.histogram(
            "record_latency_seconds",
            "Record operation latency in seconds",
            labels=["operation"],
        )
        self.realtime_events = self.counter(
            "realtime_events_total",
            "Realtime event frames delivered to subscribers",
            labels=["action"],
        )
        self.realtime_connections = self.gauge(
            "realtime_connections",
            "Open realtime connections",
        )

    def _get_or_create(self, factory: Callable[[str], _Metric], name: str) -> Any:
        full_name = f"{self.prefix}_{name}"
        with self._lock:
            metric = self._metrics.get(full_name)
            if metric is None:
                metric = self._metrics[full_name] = factory(full_name)
            return metric

    def counter(self, name: str, help_text: str, labels: List[str] | None = None) -> Counter:
        return self._get_or_create(lambda n: Counter(n, help_text, labels), name)

    def gauge(self, name: str, help_text: str, labels: List[str] | None = None) -> Gauge:
        return self._get_or_create(lambda n: Gauge(n, help_text, labels), name)

    def histogram(
        self,
        name: str,
        help_text: str,
        labels: List[str] | None = None,
        buckets: tuple | None = None,
    ) -> Histogram:
        return self._get_or_create(lambda n: Histogram(n, help_text, labels, buckets), name)

    def export_prometheus(self) -> str:
        """Render every registered metric in the text exposition format."""
        with self._lock:
            metrics = sorted(self._metrics.values(), key=lambda m: m.name)

        lines = []
        for metric in metrics:
            lines.append(f"# HELP {metric.name} {metric.help}")
            lines.append(f"# TYPE {metric.name} {metric.kind}")
            for sample_name, labels, value in metric.samples():
                if labels:
                    rendered = ",".join(f'{k}="{_escape_label(v)}"' for k, v in labels.items())
                    sample_name = f"{sample_name}{{{rendered}}}"
                lines.append(f"{sample_name} {_format_number(value)}")
        return "\n".join(lines) + "\n"


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


# =============================================================================
# Structured Logging
# =============================================================================

# Attributes every LogRecord carries; anything else came in through extra=
_RESERVED_LOG_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """One JSON object per log line."""

    def __init__(self, include_extra: bool = True):
        super().__init__()
        self.include_extra = include_extra
        self._hostname = os.environ.get("HOSTNAME", "unknown")

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "hostname": self._hostname,
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        if self.include_extra:
            entry.update(
                (key, value) for key, value in vars(record).items() if key not in _RESERVED_LOG_ATTRS
            )
        return json.dumps(entry, default=str)


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: str | None = None,
) -> None:
    """
    Configure the root logger for the server process.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR)
        json_format: JSON lines on the console instead of plain text
        log_file: Also write JSON lines to this file
    """
    console = logging.StreamHandler()
    console.setFormatter(
        JSONFormatter()
        if json_format
        else logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    handlers: list[logging.Handler] = [console]

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JSONFormatter())
        handlers.append(file_handler)

    logging.basicConfig(level=level.upper(), handlers=handlers, force=True)


# =============================================================================
# Health Checks
# =============================================================================

@dataclass
class HealthStatus:
    healthy: bool
    checks: Dict[str, dict]
    timestamp: float = field(default_factory=time.time)


HealthCheck = Callable[[], Union[dict, Awaitable[dict]]]


class HealthChecker:
    """
    Runs named health checks.

    A check is a plain or async callable returning at least
    {"healthy": bool}. A check that raises is reported unhealthy.
    """

    def __init__(self):
        self._checks: Dict[str, HealthCheck] = {}

    def register_check(self, name: str, check_fn: HealthCheck) -> None:
        self._checks[name] = check_fn

    async def _run(self, check_fn: HealthCheck) -> dict:
        try:
            result = check_fn()
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            return {"healthy": False, "message": f"Check failed: {e}"}
        return result

    async def check_all(self) -> HealthStatus:
        results = {name: await self._run(check_fn) for name, check_fn in self._checks.items()}
        return HealthStatus(
            healthy=all(r.get("healthy", False) for r in results.values()),
            checks=results,
        )

    @staticmethod
    def check_disk(path: str = ".", threshold_percent: int = 95) -> dict:
        """Healthy while usage of the filesystem holding path stays under the threshold."""
        try:
            usage = shutil.disk_usage(path)
        except OSError as e:
            return {"healthy": False, "message": f"Disk check failed: {e}"}
        used_percent = usage.used / usage.total * 100
        return {
            "healthy": used_percent < threshold_percent,
            "message": f"Disk usage: {used_percent:.1f}%",
            "used_percent": used_percent,
            "free_bytes": usage.free,
        }
