"""Pipeline error taxonomy."""

from __future__ import annotations

from typing import Any, Dict


class PipelineError(Exception):
    """Base class for every error the pipeline reports."""

    kind = "pipeline_error"

    def as_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": str(self)}


class SourceUnavailable(PipelineError):
    """The file source could not be listed. Aborts the current stage run."""

    kind = "source_unavailable"


class RecordSkipped(PipelineError):
    """A change event could not be turned into a catalog record."""

    kind = "record_skipped"

    def __init__(self, relative_path: str | None, reason: str) -> None:
        super().__init__(f"Skipped {relative_path or '<unknown>'}: {reason}")
        self.relative_path = relative_path
        self.reason = reason

    def as_dict(self) -> Dict[str, Any]:
        data = super().as_dict()
        data.update(relative_path=self.relative_path, reason=self.reason)
        return data


class ExtractionFailed(PipelineError):
    """Fetching or parsing one file failed; the file stays pending."""

    kind = "extraction_failed"

    def __init__(self, version_key: str, cause: BaseException) -> None:
        super().__init__(f"Extraction failed for {version_key}: {cause}")
        self.version_key = version_key
        self.cause = cause

    def as_dict(self) -> Dict[str, Any]:
        data = super().as_dict()
        data.update(version_key=self.version_key, cause=repr(self.cause))
        return data


class DuplicateVersion(PipelineError):
    """The storage layer already holds a row for this version key."""

    kind = "duplicate_version"

    def __init__(self, version_key: str) -> None:
        super().__init__(f"Version already stored: {version_key}")
        self.version_key = version_key


class AggregateCardinalityError(PipelineError):
    """The aggregate side of the modeled view returned more than one row."""

    kind = "aggregate_cardinality"

    def __init__(self, row_count: int) -> None:
        super().__init__(f"Aggregate source returned {row_count} rows, expected at most one")
        self.row_count = row_count


class ReferenceDataError(PipelineError):
    """A reference or statistics file could not be read."""

    kind = "reference_data"

    def __init__(self, path: str, cause: BaseException) -> None:
        super().__init__(f"Cannot read reference data {path}: {cause}")
        self.path = path
        self.cause = cause

    def as_dict(self) -> Dict[str, Any]:
        data = super().as_dict()
        data.update(path=self.path, cause=repr(self.cause))
        return data
