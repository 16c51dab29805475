"""Content extraction for cataloged files."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Collection, Dict, Iterable, List

from pdfchain.catalog.storage import SQLiteCatalogStore
from pdfchain.errors import DuplicateVersion, ExtractionFailed
from pdfchain.ingestion.pdf_parser import ContentParser
from pdfchain.models import ExtractionResult, FileRecord
from pdfchain.utils.files import document_id, read_source_url

LOGGER = logging.getLogger(__name__)

Fetcher = Callable[[str], bytes]


@dataclass(slots=True)
class ExtractStats:
    inserted: int = 0
    duplicates: int = 0
    failed: int = 0
    errors: List[ExtractionFailed] = field(default_factory=list)
    processed_files: list[str] = field(default_factory=list)

    def increment(self, status: str, record: FileRecord) -> None:
        if status == "inserted":
            self.inserted += 1
        elif status == "duplicate":
            self.duplicates += 1
        else:
            self.failed += 1
        self.processed_files.append(record.relative_path)


class Extractor:
    """Parse every cataloged file version that has no stored result yet.

    Fetching and parsing may run on a bounded thread pool; results are written
    from the calling thread, one transaction per file. A file that fails at any
    step is left pending for the next run.
    """

    def __init__(
        self,
        store: SQLiteCatalogStore,
        parser: ContentParser,
        *,
        fetch: Fetcher = read_source_url,
        max_workers: int = 1,
        extension: str = ".pdf",
    ) -> None:
        self.store = store
        self.parser = parser
        self.fetch = fetch
        self.max_workers = max(1, max_workers)
        self.extension = extension
        self.last_stats = ExtractStats()

    @staticmethod
    def pending(
        catalog: Iterable[FileRecord], already_extracted: Collection[str]
    ) -> List[FileRecord]:
        seen: Dict[str, FileRecord] = {}
        for record in catalog:
            if record.version_key in already_extracted or record.version_key in seen:
                continue
            seen[record.version_key] = record
        return sorted(seen.values(), key=lambda r: (r.relative_path, r.last_modified))

    def extract_pending(
        self, catalog: Iterable[FileRecord], already_extracted: Collection[str]
    ) -> int:
        """Extract and store results for pending records; returns the number inserted."""
        stats = self.last_stats = ExtractStats()
        todo = self.pending(catalog, already_extracted)
        if not todo:
            LOGGER.debug("No pending files to extract")
            return 0

        LOGGER.info("Extracting %d pending files", len(todo))
        if self.max_workers == 1:
            for record in todo:
                try:
                    result = self._extract_one(record)
                except Exception as exc:
                    self._record_failure(record, exc, stats)
                    continue
                self._commit(record, result, stats)
            return stats.inserted

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures: Dict[Future[ExtractionResult], FileRecord] = {
                pool.submit(self._extract_one, record): record for record in todo
            }
            for future in as_completed(futures):
                record = futures[future]
                try:
                    result = future.result()
                except Exception as exc:
                    self._record_failure(record, exc, stats)
                    continue
                self._commit(record, result, stats)
        return stats.inserted

    def _extract_one(self, record: FileRecord) -> ExtractionResult:
        LOGGER.info(f"Processing: {record.relative_path}")
        data = self.fetch(record.source_url)
        parsed = self.parser.parse(data)
        LOGGER.debug(
            "Parsed %s: %d units, %d chars",
            record.relative_path,
            parsed.unit_count,
            parsed.char_count,
        )
        return ExtractionResult(
            id=document_id(record.relative_path, self.extension),
            version_key=record.version_key,
            metadata=dict(parsed.metadata),
            unit_count=int(parsed.unit_count),
            content=parsed.text,
            extracted_at=datetime.now(timezone.utc),
        )

    def _commit(self, record: FileRecord, result: ExtractionResult, stats: ExtractStats) -> None:
        try:
            self.store.insert_extraction_result(result)
        except DuplicateVersion:
            LOGGER.debug("Result for %s already stored", record.relative_path)
            stats.increment("duplicate", record)
            return
        except Exception as exc:
            self._record_failure(record, exc, stats)
            return
        stats.increment("inserted", record)

    @staticmethod
    def _record_failure(record: FileRecord, exc: Exception, stats: ExtractStats) -> None:
        error = ExtractionFailed(record.version_key, exc)
        LOGGER.error(f"Failed to process {record.relative_path}: {exc}")
        stats.errors.append(error)
        stats.increment("failed", record)
