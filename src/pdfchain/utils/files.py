"""Utility helpers for file paths, keys and timestamps."""

from __future__ import annotations

import hashlib
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator
from urllib.parse import urlparse
from urllib.request import url2pathname


def to_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Coerce a datetime, ISO-8601 string or epoch number into aware UTC."""
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, bool):
        raise ValueError(f"Not a timestamp: {value!r}")
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError) as exc:
            raise ValueError(f"Timestamp out of range: {value!r}") from exc
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return to_utc(datetime.fromisoformat(text))
    raise ValueError(f"Not a timestamp: {value!r}")


def format_timestamp(value: datetime) -> str:
    return to_utc(value).isoformat()


def version_key(relative_path: str, last_modified: datetime) -> str:
    """Identify one version of a file by its path and modification time."""
    sha = hashlib.sha256()
    sha.update(relative_path.encode("utf-8"))
    sha.update(b"\0")
    sha.update(format_timestamp(last_modified).encode("ascii"))
    return sha.hexdigest()


def file_name(relative_path: str) -> str:
    return relative_path.rsplit("/", 1)[-1]


def document_id(relative_path: str, extension: str = ".pdf") -> str:
    """Derive a stable id from the file name: ``docs/a.PDF`` -> ``a``."""
    name = file_name(relative_path)
    if not extension:
        return name
    return re.sub(re.escape(extension) + "$", "", name, flags=re.IGNORECASE)


def reference_key(doc_id: str, separator: str = "_") -> str:
    """Key used to join a document with reference rows: ``E-TV002_Manual`` -> ``E-TV002``."""
    return doc_id.split(separator, 1)[0]


def has_extension(path: str, extension: str | None) -> bool:
    if not extension:
        return True
    return path.lower().endswith(extension.lower())


def iter_source_paths(root: Path, extension: str | None = None) -> Iterator[Path]:
    """Yield files under root, descending into directories, in sorted order."""
    for item in sorted(root.rglob("*")):
        if item.is_file() and has_extension(item.name, extension):
            yield item


def read_source_url(url: str) -> bytes:
    """Fetch the bytes behind a ``file://`` URL or a plain filesystem path."""
    parsed = urlparse(url)
    if parsed.scheme == "file":
        path = Path(url2pathname(parsed.path))
    elif parsed.scheme == "" or len(parsed.scheme) == 1:
        # bare path, or a Windows drive letter parsed as a scheme
        path = Path(url)
    else:
        raise ValueError(f"Unsupported source URL scheme: {parsed.scheme}")
    return path.read_bytes()
