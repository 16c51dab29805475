"""Tests for the Cataloger stage."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from conftest import T1, T2, make_event
from pdfchain.catalog.storage import SQLiteCatalogStore
from pdfchain.errors import DuplicateVersion, RecordSkipped
from pdfchain.models import ChangeEvent
from pdfchain.stages.cataloger import Cataloger, build_record
from pdfchain.utils.files import version_key


class TestBuildRecord:
    """Test event validation."""

    def test_derives_version_key(self) -> None:
        """Record key is derived from the path and modification time."""
        record = build_record(make_event("docs/a.pdf"))

        assert record.version_key == version_key("docs/a.pdf", T1)
        assert record.file_name == "a.pdf"
        assert record.size == 10

    def test_accepts_iso_timestamp(self) -> None:
        """ISO-8601 strings are accepted for last_modified."""
        event = make_event("a.pdf")
        event.last_modified = "2024-01-01T12:00:00+00:00"

        assert build_record(event).last_modified == T1

    @pytest.mark.parametrize(
        "field, value",
        [
            ("last_modified", "not-a-date"),
            ("last_modified", None),
            ("size", None),
            ("size", "ten"),
            ("size", -1),
            ("source_url", None),
            ("relative_path", ""),
        ],
    )
    def test_invalid_fields_skipped(self, field: str, value) -> None:
        """Missing or malformed fields raise RecordSkipped."""
        event = make_event("a.pdf")
        setattr(event, field, value)

        with pytest.raises(RecordSkipped):
            build_record(event)


class TestCataloger:
    """Test ingest idempotency and filtering."""

    def test_inserts_each_version(self, store: SQLiteCatalogStore) -> None:
        """Each new file version is inserted once."""
        cataloger = Cataloger(store)

        inserted = cataloger.ingest([make_event("a.pdf"), make_event("b.pdf")])

        assert inserted == 2
        assert len(store.list_file_records()) == 2

    def test_second_ingest_inserts_nothing(self, store: SQLiteCatalogStore) -> None:
        """Replaying the same events adds no rows."""
        cataloger = Cataloger(store)
        events = [make_event("a.pdf"), make_event("b.pdf")]
        cataloger.ingest(events)

        assert cataloger.ingest(events) == 0
        assert cataloger.last_stats.duplicates == 2
        assert len(store.list_file_records()) == 2

    def test_replayed_event_in_same_batch(self, store: SQLiteCatalogStore) -> None:
        """A duplicate event within one batch counts as a duplicate."""
        cataloger = Cataloger(store)

        assert cataloger.ingest([make_event("a.pdf"), make_event("a.pdf")]) == 1
        assert cataloger.last_stats.duplicates == 1

    def test_new_version_inserted(self, store: SQLiteCatalogStore) -> None:
        """A changed modification time is a new version."""
        cataloger = Cataloger(store)
        cataloger.ingest([make_event("a.pdf", T1)])

        assert cataloger.ingest([make_event("a.pdf", T2)]) == 1
        keys = {r.version_key for r in store.list_file_records()}
        assert len(keys) == 2

    def test_non_matching_extension_ignored(self, store: SQLiteCatalogStore) -> None:
        """Files with another extension are ignored, not reported."""
        cataloger = Cataloger(store)

        inserted = cataloger.ingest([make_event("notes.txt"), make_event("A.PDF")])

        assert inserted == 1
        assert cataloger.last_stats.ignored == 1
        assert cataloger.last_stats.errors == []

    def test_custom_extension(self, store: SQLiteCatalogStore) -> None:
        """The extension filter is configurable."""
        cataloger = Cataloger(store, extension=".docx")

        assert cataloger.ingest([make_event("a.pdf"), make_event("b.docx")]) == 1

    def test_malformed_event_does_not_abort_batch(self, store: SQLiteCatalogStore) -> None:
        """A bad event is skipped while the rest of the batch is cataloged."""
        bad = make_event("bad.pdf")
        bad.last_modified = "garbage"
        cataloger = Cataloger(store)

        inserted = cataloger.ingest([make_event("a.pdf"), bad, make_event("c.pdf")])

        assert inserted == 2
        stats = cataloger.last_stats
        assert stats.skipped == 1
        assert isinstance(stats.errors[0], RecordSkipped)
        assert stats.errors[0].relative_path == "bad.pdf"

    @pytest.mark.parametrize("epoch", [1e20, float("inf"), float("nan")])
    def test_out_of_range_epoch_is_skipped(self, store: SQLiteCatalogStore, epoch) -> None:
        """Epoch values outside the platform range are skipped, not raised."""
        bad = make_event("bad.pdf")
        bad.last_modified = epoch
        cataloger = Cataloger(store)

        inserted = cataloger.ingest([bad, make_event("good.pdf")])

        assert inserted == 1
        assert cataloger.last_stats.skipped == 1
        assert [r.relative_path for r in store.list_file_records()] == ["good.pdf"]

    def test_storage_duplicate_treated_as_benign(self, store: SQLiteCatalogStore) -> None:
        """A uniqueness conflict from storage counts as a duplicate."""
        cataloger = Cataloger(store)
        with patch.object(store, "insert_file_record", side_effect=DuplicateVersion("k")):
            inserted = cataloger.ingest([make_event("a.pdf")])

        assert inserted == 0
        assert cataloger.last_stats.duplicates == 1
        assert cataloger.last_stats.errors == []

    def test_empty_batch(self, store: SQLiteCatalogStore) -> None:
        """An empty batch inserts nothing."""
        assert Cataloger(store).ingest([]) == 0

    def test_event_without_path_is_skipped(self, store: SQLiteCatalogStore) -> None:
        """An event with no path is reported as skipped."""
        event = ChangeEvent(relative_path="", action=make_event("x.pdf").action, observed_at=T1)
        cataloger = Cataloger(store)

        cataloger.ingest([event])

        assert cataloger.last_stats.skipped == 1
