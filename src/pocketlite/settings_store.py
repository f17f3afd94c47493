"""
settings_store.py - Application settings persisted in _settings.

The whole settings document is stored as JSON under the "app" key.
Updates are deep-merged into the current document.
"""

import copy
import json
import logging
from typing import Any, Final, Mapping

from pocketlite.config import SETTINGS_TABLE
from pocketlite.db.storage import SQLiteStorage
from pocketlite.errors import InvalidRequestError
from pocketlite.utils.ids import current_timestamp

logger = logging.getLogger("pocketlite.settings")

SETTINGS_KEY: Final[str] = "app"

_S3_DEFAULTS: Final[dict[str, Any]] = {
    "enabled": False,
    "bucket": "",
    "region": "",
    "endpoint": "",
    "accessKey": "",
    "secret": "",
    "forcePathStyle": False,
}

DEFAULT_SETTINGS: Final[dict[str, Any]] = {
    "meta": {
        "appName": "pocketlite",
        "appURL": "http://localhost:8090",
        "hideControls": False,
    },
    "logs": {"maxDays": 7},
    "smtp": {
        "enabled": False,
        "host": "",
        "port": 587,
        "username": "",
        "password": "",
        "authMethod": "",
        "tls": True,
        "localName": "",
    },
    "s3": dict(_S3_DEFAULTS),
    "backups": {
        "cron": "0 0 * * *",
        "cronMaxKeep": 5,
        "s3": dict(_S3_DEFAULTS),
    },
}


def deep_merge(base: Mapping[str, Any], patch: Mapping[str, Any]) -> dict[str, Any]:
    """Merge patch into a copy of base; nested objects merge, everything else replaces."""
    merged = copy.deepcopy(dict(base))
    for key, value in patch.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class SettingsStore:
    """Loads, caches and persists the settings document."""

    def __init__(self, storage: SQLiteStorage):
        self._storage = storage
        self._settings: dict[str, Any] | None = None

    async def load(self) -> dict[str, Any]:
        if self._settings is None:
            row = await self._storage.fetch_one(
                f"SELECT value FROM {SETTINGS_TABLE} WHERE key = ?", (SETTINGS_KEY,)
            )
            if row is None:
                self._settings = copy.deepcopy(DEFAULT_SETTINGS)
                await self._save()
            else:
                self._settings = deep_merge(DEFAULT_SETTINGS, json.loads(row["value"]))
        return copy.deepcopy(self._settings)

    async def update(self, patch: Any) -> dict[str, Any]:
        if not isinstance(patch, Mapping):
            raise InvalidRequestError("Settings body must be an object", field="body", value=patch)
        current = await self.load()
        self._settings = deep_merge(current, patch)
        await self._save()
        logger.info(f"Settings updated: {sorted(patch)}")
        return copy.deepcopy(self._settings)

    async def _save(self) -> None:
        now = current_timestamp()
        await self._storage.execute(
            f"INSERT INTO {SETTINGS_TABLE} (key, value, created, updated) VALUES (?, ?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated = excluded.updated",
            (SETTINGS_KEY, json.dumps(self._settings), now, now),
        )
