"""Turn change events into durable catalog records."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List

from pdfchain.catalog.storage import SQLiteCatalogStore
from pdfchain.errors import DuplicateVersion, RecordSkipped
from pdfchain.models import ChangeAction, ChangeEvent, FileRecord
from pdfchain.utils.files import has_extension, parse_timestamp, version_key

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class CatalogStats:
    inserted: int = 0
    duplicates: int = 0
    ignored: int = 0
    skipped: int = 0
    errors: List[RecordSkipped] = field(default_factory=list)

    def skip(self, error: RecordSkipped) -> None:
        self.skipped += 1
        self.errors.append(error)


def build_record(event: ChangeEvent) -> FileRecord:
    """Validate an event and derive its catalog record.

    Raises :class:`RecordSkipped` when a required field is missing or malformed.
    """
    if not event.relative_path:
        raise RecordSkipped(None, "missing relative_path")
    if not event.source_url:
        raise RecordSkipped(event.relative_path, "missing source_url")
    if event.size is None or isinstance(event.size, bool):
        raise RecordSkipped(event.relative_path, "missing size")
    try:
        size = int(event.size)
    except (TypeError, ValueError):
        raise RecordSkipped(event.relative_path, f"malformed size {event.size!r}") from None
    if size < 0:
        raise RecordSkipped(event.relative_path, f"negative size {size}")
    try:
        last_modified = parse_timestamp(event.last_modified)
    except ValueError:
        raise RecordSkipped(
            event.relative_path, f"malformed last_modified {event.last_modified!r}"
        ) from None

    return FileRecord(
        relative_path=event.relative_path,
        version_key=version_key(event.relative_path, last_modified),
        size=size,
        last_modified=last_modified,
        source_url=event.source_url,
    )


class Cataloger:
    """Record each new file version exactly once."""

    def __init__(self, store: SQLiteCatalogStore, *, extension: str = ".pdf") -> None:
        self.store = store
        self.extension = extension
        self.last_stats = CatalogStats()

    def ingest(self, events: Iterable[ChangeEvent]) -> int:
        """Catalog matching events; returns how many new records were inserted.

        Per-event detail is kept on ``last_stats``.
        """
        stats = self.last_stats = CatalogStats()
        for event in events:
            if event.action != ChangeAction.INSERT or (
                event.relative_path and not has_extension(event.relative_path, self.extension)
            ):
                stats.ignored += 1
                continue

            try:
                record = build_record(event)
            except RecordSkipped as exc:
                LOGGER.warning("%s", exc)
                stats.skip(exc)
                continue

            if self.store.has_version(record.version_key):
                stats.duplicates += 1
                continue

            try:
                self.store.insert_file_record(record)
            except DuplicateVersion:
                # lost a race with another cataloger run
                stats.duplicates += 1
                continue

            LOGGER.info("Cataloged %s", record.relative_path)
            stats.inserted += 1
        return stats.inserted
