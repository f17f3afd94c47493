"""
forms.py - Flattens multipart/form-data bodies into record fields.

PocketBase clients send `tags+` / `+tags` to append to an array field
and `tags-` / `-tags` to remove from it. The marker is stripped and
the value is treated like any other field value. Repeated keys
accumulate into an array; file parts are split out as UploadedFile.
"""

import re
from typing import Any, Iterable

from starlette.datastructures import UploadFile

from pocketlite.records import UploadedFile

_BATCH_FILE_RE = re.compile(r"^requests\.(?P<index>\d+)\.(?P<field>.+)$")


def strip_marker(key: str) -> str:
    """Remove a leading or trailing +/- modifier from a form key."""
    if key[:1] in ("+", "-"):
        key = key[1:]
    if key[-1:] in ("+", "-"):
        key = key[:-1]
    return key


def _accumulate(fields: dict[str, Any], key: str, value: Any) -> None:
    if key not in fields:
        fields[key] = value
    elif isinstance(fields[key], list):
        fields[key].append(value)
    else:
        fields[key] = [fields[key], value]


async def flatten_form(items: Iterable[tuple[str, Any]]) -> tuple[dict[str, Any], list[UploadedFile]]:
    """
    Flatten form items into (fields, files).

    Args:
        items: (key, value) pairs as returned by FormData.multi_items()

    Returns:
        The field mapping and the file parts, in submission order
    """
    fields: dict[str, Any] = {}
    files: list[UploadedFile] = []
    for raw_key, value in items:
        key = strip_marker(raw_key)
        if isinstance(value, UploadFile):
            if not value.filename:
                continue
            files.append(
                UploadedFile(
                    field=key,
                    filename=value.filename,
                    content=await value.read(),
                    content_type=value.content_type or "application/octet-stream",
                )
            )
        else:
            _accumulate(fields, key, value)
    return fields, files


def group_batch_files(files: Iterable[UploadedFile]) -> dict[int, list[UploadedFile]]:
    """
    Route batch file parts named `requests.{i}.{field}` to request i.

    Parts that do not follow the naming scheme are ignored.
    """
    grouped: dict[int, list[UploadedFile]] = {}
    for upload in files:
        match = _BATCH_FILE_RE.match(upload.field)
        if match is None:
            continue
        grouped.setdefault(int(match.group("index")), []).append(
            UploadedFile(
                field=strip_marker(match.group("field")),
                filename=upload.filename,
                content=upload.content,
                content_type=upload.content_type,
            )
        )
    return grouped
