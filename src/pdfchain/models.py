"""Core pdfchain data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pdfchain.errors import PipelineError


@dataclass(slots=True)
class ListedFile:
    """One entry of a source listing."""

    relative_path: str
    size: int
    last_modified: datetime
    url: str


class ChangeAction(str, Enum):
    INSERT = "INSERT"


@dataclass(slots=True)
class ChangeEvent:
    """A file observed by the watcher that the catalog has not consumed yet.

    The listing attributes travel with the event; events built elsewhere may
    leave them empty or malformed, which the cataloger reports per record.
    """

    relative_path: str
    action: ChangeAction
    observed_at: datetime
    size: Optional[int] = None
    last_modified: Any = None
    source_url: Optional[str] = None


@dataclass(slots=True)
class FileRecord:
    """Catalog entry for one version of a source file."""

    relative_path: str
    version_key: str
    size: int
    last_modified: datetime
    source_url: str
    cataloged_at: Optional[datetime] = None

    @property
    def file_name(self) -> str:
        return self.relative_path.rsplit("/", 1)[-1]


@dataclass(slots=True)
class ParsedDocument:
    """Structured output of a content parser."""

    metadata: Dict[str, Optional[str]]
    unit_count: int
    text: str

    @property
    def char_count(self) -> int:
        return len(self.text)


@dataclass(slots=True)
class ExtractionResult:
    """Parsed content stored for one file version."""

    id: str
    version_key: str
    metadata: Dict[str, Optional[str]]
    unit_count: int
    content: str
    extracted_at: datetime


@dataclass(slots=True)
class StageSummary:
    """Outcome of one stage invocation."""

    stage: str
    processed_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    errors: List[PipelineError] = field(default_factory=list)
    aborted: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "processed_count": self.processed_count,
            "skipped_count": self.skipped_count,
            "failed_count": self.failed_count,
            "errors": [error.as_dict() for error in self.errors],
            "aborted": self.aborted,
        }
