"""SQLite-backed catalog of file versions and extraction results."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Set

from pdfchain.errors import DuplicateVersion
from pdfchain.models import ExtractionResult, FileRecord
from pdfchain.utils.files import file_name, format_timestamp, parse_timestamp


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SQLiteCatalogStore:
    """Insert-only persistence for the watch log, file catalog and results.

    Uniqueness of ``version_key`` is enforced by the schema; inserting a
    version twice raises :class:`DuplicateVersion` instead of writing a row.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._conn = sqlite3.connect(self.db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._conn.execute("PRAGMA foreign_keys=ON;")
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            yield self._conn
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS watch_log (
                    relative_path TEXT NOT NULL,
                    last_modified TEXT NOT NULL,
                    observed_at TEXT NOT NULL,
                    PRIMARY KEY (relative_path, last_modified)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS file_catalog (
                    id INTEGER PRIMARY KEY,
                    version_key TEXT NOT NULL UNIQUE,
                    relative_path TEXT NOT NULL,
                    file_name TEXT NOT NULL,
                    source_url TEXT NOT NULL,
                    size INTEGER NOT NULL,
                    last_modified TEXT NOT NULL,
                    cataloged_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS extraction_results (
                    id INTEGER PRIMARY KEY,
                    document_id TEXT NOT NULL,
                    version_key TEXT NOT NULL UNIQUE,
                    metadata TEXT,
                    unit_count INTEGER NOT NULL,
                    content TEXT NOT NULL,
                    extracted_at TEXT NOT NULL,
                    FOREIGN KEY(version_key) REFERENCES file_catalog(version_key)
                )
                """
            )
            conn.execute(
                """CREATE INDEX IF NOT EXISTS idx_file_catalog_path
                    ON file_catalog(relative_path)
                """
            )

    # -- watch log -------------------------------------------------------

    def watch_log_contains(self, relative_path: str, last_modified: datetime) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM watch_log WHERE relative_path = ? AND last_modified = ?",
            (relative_path, format_timestamp(last_modified)),
        ).fetchone()
        return row is not None

    def mark_observed(self, entries: Iterable[tuple[str, datetime]]) -> int:
        """Record (path, mtime) pairs as consumed. Returns how many were new."""
        observed_at = format_timestamp(_now())
        added = 0
        with self.transaction() as conn:
            for relative_path, last_modified in entries:
                cursor = conn.execute(
                    """
                    INSERT OR IGNORE INTO watch_log(relative_path, last_modified, observed_at)
                    VALUES (?, ?, ?)
                    """,
                    (relative_path, format_timestamp(last_modified), observed_at),
                )
                added += cursor.rowcount
        return added

    # -- file catalog ----------------------------------------------------

    def has_version(self, version_key: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM file_catalog WHERE version_key = ?", (version_key,)
        ).fetchone()
        return row is not None

    def insert_file_record(self, record: FileRecord) -> FileRecord:
        cataloged_at = record.cataloged_at or _now()
        try:
            with self.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO file_catalog(
                        version_key, relative_path, file_name, source_url,
                        size, last_modified, cataloged_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.version_key,
                        record.relative_path,
                        file_name(record.relative_path),
                        record.source_url,
                        record.size,
                        format_timestamp(record.last_modified),
                        format_timestamp(cataloged_at),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise DuplicateVersion(record.version_key) from exc
        record.cataloged_at = cataloged_at
        return record

    def list_file_records(self) -> List[FileRecord]:
        rows = self._conn.execute(
            """
            SELECT version_key, relative_path, source_url, size, last_modified, cataloged_at
            FROM file_catalog
            ORDER BY id
            """
        ).fetchall()
        return [
            FileRecord(
                relative_path=row["relative_path"],
                version_key=row["version_key"],
                size=row["size"],
                last_modified=parse_timestamp(row["last_modified"]),
                source_url=row["source_url"],
                cataloged_at=parse_timestamp(row["cataloged_at"]),
            )
            for row in rows
        ]

    # -- extraction results ----------------------------------------------

    def extracted_version_keys(self) -> Set[str]:
        rows = self._conn.execute("SELECT version_key FROM extraction_results").fetchall()
        return {row["version_key"] for row in rows}

    def insert_extraction_result(self, result: ExtractionResult) -> None:
        try:
            with self.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO extraction_results(
                        document_id, version_key, metadata, unit_count, content, extracted_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        result.id,
                        result.version_key,
                        json.dumps(result.metadata, ensure_ascii=True),
                        result.unit_count,
                        result.content,
                        format_timestamp(result.extracted_at),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            if self._has_result(result.version_key):
                raise DuplicateVersion(result.version_key) from exc
            raise

    def _has_result(self, version_key: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM extraction_results WHERE version_key = ?", (version_key,)
        ).fetchone()
        return row is not None

    def list_extraction_results(self) -> List[ExtractionResult]:
        rows = self._conn.execute(
            """
            SELECT document_id, version_key, metadata, unit_count, content, extracted_at
            FROM extraction_results
            ORDER BY id
            """
        ).fetchall()
        return [self._row_to_result(row) for row in rows]

    def iter_joined_results(self) -> Iterator[Dict[str, Any]]:
        """Yield each extraction result together with its catalog entry."""
        cursor = self._conn.execute(
            """
            SELECT
                r.document_id AS document_id,
                r.version_key AS version_key,
                r.metadata AS metadata,
                r.unit_count AS unit_count,
                r.content AS content,
                r.extracted_at AS extracted_at,
                f.file_name AS file_name,
                f.relative_path AS relative_path,
                f.source_url AS source_url,
                f.last_modified AS last_modified
            FROM extraction_results r
            JOIN file_catalog f ON f.version_key = r.version_key
            ORDER BY f.relative_path, f.last_modified
            """
        )
        for row in cursor:
            yield {
                "document_id": row["document_id"],
                "version_key": row["version_key"],
                "file_name": row["file_name"],
                "relative_path": row["relative_path"],
                "source_url": row["source_url"],
                "last_modified": row["last_modified"],
                "metadata": json.loads(row["metadata"]) if row["metadata"] else {},
                "unit_count": row["unit_count"],
                "content": row["content"],
                "extracted_at": row["extracted_at"],
            }

    @staticmethod
    def _row_to_result(row: sqlite3.Row) -> ExtractionResult:
        return ExtractionResult(
            id=row["document_id"],
            version_key=row["version_key"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
            unit_count=row["unit_count"],
            content=row["content"],
            extracted_at=parse_timestamp(row["extracted_at"]),
        )

    def get_stats(self) -> Dict[str, int]:
        conn = self._conn
        files = conn.execute("SELECT COUNT(*) FROM file_catalog").fetchone()[0]
        results = conn.execute("SELECT COUNT(*) FROM extraction_results").fetchone()[0]
        watched = conn.execute("SELECT COUNT(*) FROM watch_log").fetchone()[0]
        return {
            "watched_count": watched,
            "file_count": files,
            "result_count": results,
            "pending_count": files - results,
        }
