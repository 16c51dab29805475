"""Change detection over a file source."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, Iterator

from pdfchain.catalog.storage import SQLiteCatalogStore
from pdfchain.ingestion.source import FileSource
from pdfchain.models import ChangeAction, ChangeEvent
from pdfchain.utils.files import parse_timestamp

LOGGER = logging.getLogger(__name__)


class Watcher:
    """Report files whose (path, mtime) pair is missing from the change log.

    Polling has no side effects; events keep being re-delivered until a
    consumer calls :meth:`acknowledge`.
    """

    def __init__(self, source: FileSource, store: SQLiteCatalogStore) -> None:
        self.source = source
        self.store = store

    def refresh(self) -> None:
        self.source.refresh_listing()

    def poll_new_files(self) -> Iterator[ChangeEvent]:
        listing = list(self.source.list_files())
        observed_at = datetime.now(timezone.utc)
        for entry in listing:
            if self.store.watch_log_contains(entry.relative_path, entry.last_modified):
                continue
            yield ChangeEvent(
                relative_path=entry.relative_path,
                action=ChangeAction.INSERT,
                observed_at=observed_at,
                size=entry.size,
                last_modified=entry.last_modified,
                source_url=entry.url,
            )

    def acknowledge(self, events: Iterable[ChangeEvent]) -> int:
        entries = []
        for event in events:
            try:
                entries.append((event.relative_path, parse_timestamp(event.last_modified)))
            except ValueError:
                LOGGER.debug("Not acknowledging %s: no usable timestamp", event.relative_path)
        added = self.store.mark_observed(entries)
        LOGGER.debug("Acknowledged %d change events", added)
        return added
