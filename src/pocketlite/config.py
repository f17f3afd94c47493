"""
config.py - Configuration for pocketlite.

Constants are immutable and defined at module level.
Runtime settings come from environment variables through ServerConfig.
"""

import os
from dataclasses import dataclass
from typing import Final

# SQLite PRAGMA settings applied to every connection
SQLITE_PRAGMAS: Final[dict[str, str]] = {
    "journal_mode": "WAL",
    "synchronous": "NORMAL",
    "busy_timeout": "5000",
}

# Metadata tables owned by the server itself
COLLECTIONS_TABLE: Final[str] = "_collections"
SETTINGS_TABLE: Final[str] = "_settings"

# Keys the server owns on every record; client-supplied values are ignored
RESERVED_RECORD_KEYS: Final[frozenset[str]] = frozenset(
    {"id", "created", "updated", "collectionName", "expand"}
)

# Record ids: 15 lowercase alphanumerics, like PocketBase
ID_ALPHABET: Final[str] = "abcdefghijklmnopqrstuvwxyz0123456789"
ID_LENGTH: Final[int] = 15
CLIENT_ID_LENGTH: Final[int] = 40

# Pagination
DEFAULT_PAGE: Final[int] = 1
DEFAULT_PER_PAGE: Final[int] = 30

# Realtime
HEARTBEAT_INTERVAL_SECONDS: Final[float] = 30.0
STALE_AFTER_SECONDS: Final[float] = 60.0
CHANNEL_QUEUE_SIZE: Final[int] = 256
CONNECT_EVENT: Final[str] = "PB_CONNECT"

# Files
PRESIGNED_URL_TTL_SECONDS: Final[int] = 3600
DEFAULT_UPLOAD_DIR: Final[str] = "pb_uploads"

# Sentinel reported for totals when skipTotal is requested
SKIPPED_TOTAL: Final[int] = -1


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value else default


@dataclass(frozen=True)
class ServerConfig:
    """Runtime configuration for one server process."""

    db_path: str = "pb_data.db"
    upload_dir: str = DEFAULT_UPLOAD_DIR
    s3_bucket: str | None = None
    s3_region: str | None = None
    s3_endpoint_url: str | None = None
    heartbeat_interval: float = HEARTBEAT_INTERVAL_SECONDS
    stale_after: float = STALE_AFTER_SECONDS
    strict_delete: bool = False
    relation_heuristics: bool = True
    log_level: str = "INFO"
    log_json: bool = False

    def __post_init__(self) -> None:
        if self.stale_after <= self.heartbeat_interval:
            raise ValueError(
                f"stale_after ({self.stale_after}s) must exceed "
                f"heartbeat_interval ({self.heartbeat_interval}s)"
            )

    @classmethod
    def from_env(cls) -> "ServerConfig":
        env = os.environ
        return cls(
            db_path=env.get("POCKETLITE_DB_PATH", "pb_data.db"),
            upload_dir=env.get("POCKETLITE_UPLOAD_DIR", DEFAULT_UPLOAD_DIR),
            s3_bucket=(
                env.get("POCKETLITE_S3_BUCKET")
                or env.get("S3_BUCKET")
                or env.get("AWS_BUCKET")
            ),
            s3_region=env.get("POCKETLITE_S3_REGION"),
            s3_endpoint_url=env.get("POCKETLITE_S3_ENDPOINT"),
            heartbeat_interval=_env_float(
                "POCKETLITE_HEARTBEAT_INTERVAL", HEARTBEAT_INTERVAL_SECONDS
            ),
            stale_after=_env_float("POCKETLITE_STALE_AFTER", STALE_AFTER_SECONDS),
            strict_delete=_env_bool("POCKETLITE_STRICT_DELETE", False),
            relation_heuristics=_env_bool("POCKETLITE_RELATION_HEURISTICS", True),
            log_level=env.get("POCKETLITE_LOG_LEVEL", "INFO"),
            log_json=_env_bool("POCKETLITE_LOG_JSON", False),
        )
