"""
ids.py - Record identifiers and timestamps.

Ids are short random strings drawn from a lowercase alphanumeric
alphabet; they are not sequential and are never reused.
Timestamps use the PocketBase layout "YYYY-MM-DD HH:MM:SS.mmmZ".
"""

import secrets
from datetime import datetime, timezone

from pocketlite.config import ID_ALPHABET, ID_LENGTH


def generate_id(length: int = ID_LENGTH) -> str:
    """Generate a random record id."""
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(length))


def current_timestamp() -> str:
    """Current UTC time formatted the way PocketBase stores it."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%d %H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"
