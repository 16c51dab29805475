"""Shared fixtures for pdfchain tests."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from pdfchain.catalog.storage import SQLiteCatalogStore
from pdfchain.models import ChangeAction, ChangeEvent, ParsedDocument

T1 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
T2 = datetime(2024, 2, 1, 12, 0, tzinfo=timezone.utc)


class StubParser:
    """Deterministic parser: text is the decoded bytes, one unit per line."""

    def __init__(self, fail_on: tuple[bytes, ...] = ()) -> None:
        self.fail_on = fail_on
        self.calls: list[bytes] = []

    def parse(self, data: bytes) -> ParsedDocument:
        self.calls.append(data)
        if data in self.fail_on:
            raise RuntimeError("cannot open document")
        text = data.decode("utf-8")
        return ParsedDocument(
            metadata={"title": text.splitlines()[0] if text else None, "author": None},
            unit_count=len(text.splitlines()),
            text=text,
        )


def make_event(path: str, mtime: datetime = T1, size: int = 10, url: str | None = None) -> ChangeEvent:
    return ChangeEvent(
        relative_path=path,
        action=ChangeAction.INSERT,
        observed_at=mtime,
        size=size,
        last_modified=mtime,
        source_url=url or f"file:///stage/{path}",
    )


@pytest.fixture
def store(tmp_path: Path):
    """Create a temporary catalog store."""
    catalog = SQLiteCatalogStore(tmp_path / "catalog.db")
    yield catalog
    catalog.close()


@pytest.fixture
def stub_parser() -> StubParser:
    return StubParser()
