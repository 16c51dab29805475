"""File source collaborators."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Protocol, Sequence

from pdfchain.errors import SourceUnavailable
from pdfchain.models import ListedFile
from pdfchain.utils.files import iter_source_paths

LOGGER = logging.getLogger(__name__)


class FileSource(Protocol):
    def list_files(self) -> Sequence[ListedFile]: ...

    def refresh_listing(self) -> None: ...


class LocalDirectorySource:
    """Expose a local directory as a file source.

    The listing behaves like a directory table: it is a snapshot taken on the
    first ``list_files`` call and only changes when ``refresh_listing`` runs.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self._listing: Optional[List[ListedFile]] = None

    def refresh_listing(self) -> None:
        self._listing = self._scan()
        LOGGER.debug("Refreshed listing of %s: %d files", self.root, len(self._listing))

    def list_files(self) -> Sequence[ListedFile]:
        if self._listing is None:
            self.refresh_listing()
        return list(self._listing or [])

    def _scan(self) -> List[ListedFile]:
        if not self.root.is_dir():
            raise SourceUnavailable(f"Source directory not found: {self.root}")
        try:
            listing = []
            for path in iter_source_paths(self.root):
                stat = path.stat()
                listing.append(
                    ListedFile(
                        relative_path=path.relative_to(self.root).as_posix(),
                        size=stat.st_size,
                        last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                        url=path.resolve().as_uri(),
                    )
                )
        except OSError as exc:
            raise SourceUnavailable(f"Unable to list {self.root}: {exc}") from exc
        return listing
