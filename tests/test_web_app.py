"""Tests for the FastAPI web application."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from conftest import StubParser
from pdfchain.catalog.storage import SQLiteCatalogStore
from pdfchain.web.app import RunPayload, _config_from, _resolve_db_path, app


client = TestClient(app)


@pytest.fixture
def inbox(tmp_path: Path) -> Path:
    root = tmp_path / "inbox"
    root.mkdir()
    (root / "P1_manual.pdf").write_bytes(b"Manual text\nsecond line")
    return root


@pytest.fixture(autouse=True)
def stub_parser():
    with patch("pdfchain.pipeline.PyMuPDFParser", StubParser):
        yield


def _payload(db: Path, source: Path, **extra) -> dict:
    return {"db": str(db), "source": str(source), **extra}


class TestHelperFunctions:
    """Tests for helper functions."""

    def test_resolve_db_path_with_none(self) -> None:
        """Returns default path when db is None."""
        assert isinstance(_resolve_db_path(None), Path)

    def test_resolve_db_path_with_path(self, tmp_path: Path) -> None:
        """Returns the given path unchanged."""
        db_path = tmp_path / "custom.db"
        assert _resolve_db_path(db_path) == db_path

    def test_config_from_payload_keeps_defaults(self, tmp_path: Path) -> None:
        """Unset payload fields fall back to defaults."""
        config = _config_from(RunPayload(db=tmp_path / "p.db", year=2020))

        assert config.db_path == tmp_path / "p.db"
        assert config.stats_year == 2020
        assert config.stats_quarter == 3
        assert config.max_workers == 2


class TestRunEndpoints:
    """Tests for POST /run and POST /run/{stage}."""

    def test_run_chain(self, tmp_path: Path, inbox: Path) -> None:
        """POST /run runs all four stages."""
        db = tmp_path / "p.db"

        response = client.post("/run", json=_payload(db, inbox))

        assert response.status_code == 200
        stages = [item["stage"] for item in response.json()["summaries"]]
        assert stages == ["watcher", "cataloger", "extractor", "modeler"]

        store = SQLiteCatalogStore(db)
        try:
            assert store.get_stats()["result_count"] == 1
        finally:
            store.close()

    def test_second_run_stops_after_watcher(self, tmp_path: Path, inbox: Path) -> None:
        """A second run with no changes stops after the watcher."""
        db = tmp_path / "p.db"
        client.post("/run", json=_payload(db, inbox))

        response = client.post("/run", json=_payload(db, inbox))

        assert response.status_code == 200
        summaries = response.json()["summaries"]
        assert [item["stage"] for item in summaries] == ["watcher"]
        assert summaries[0]["processed_count"] == 0

    def test_run_single_stage(self, tmp_path: Path, inbox: Path) -> None:
        """POST /run/{stage} runs one stage."""
        db = tmp_path / "p.db"

        response = client.post("/run/watcher", json=_payload(db, inbox))

        assert response.status_code == 200
        summary = response.json()["summaries"][0]
        assert summary["stage"] == "watcher"
        assert summary["processed_count"] == 1
        assert summary["aborted"] is False

    def test_unknown_stage(self, tmp_path: Path, inbox: Path) -> None:
        """Unknown stages return 404."""
        response = client.post("/run/indexer", json=_payload(tmp_path / "p.db", inbox))

        assert response.status_code == 404
        assert "Unknown stage" in response.json()["detail"]

    def test_missing_source_aborts_watcher(self, tmp_path: Path) -> None:
        """An unreachable source is reported as an aborted stage."""
        response = client.post(
            "/run/watcher", json=_payload(tmp_path / "p.db", tmp_path / "nope")
        )

        assert response.status_code == 200
        summary = response.json()["summaries"][0]
        assert summary["aborted"] is True
        assert summary["errors"][0]["kind"] == "source_unavailable"

    def test_missing_curated_file_is_bad_request(self, tmp_path: Path, inbox: Path) -> None:
        """A missing curated file returns 400."""
        response = client.post(
            "/run",
            json=_payload(tmp_path / "p.db", inbox, curated=str(tmp_path / "none.csv")),
        )

        assert response.status_code == 400


class TestReadEndpoints:
    """Tests for the GET endpoints."""

    @pytest.mark.parametrize("path", ["/files", "/results", "/stats", "/view"])
    def test_missing_database(self, tmp_path: Path, path: str) -> None:
        """Read endpoints return 404 without a database."""
        response = client.get(path, params={"db": str(tmp_path / "missing.db")})

        assert response.status_code == 404
        assert "Database not found" in response.json()["detail"]

    def test_files_and_results(self, tmp_path: Path, inbox: Path) -> None:
        """Files and results are listed after a run."""
        db = tmp_path / "p.db"
        client.post("/run", json=_payload(db, inbox))

        files = client.get("/files", params={"db": str(db)}).json()["files"]
        results = client.get("/results", params={"db": str(db)}).json()["results"]

        assert [item["relative_path"] for item in files] == ["P1_manual.pdf"]
        assert files[0]["extracted"] is True
        assert results[0]["version_key"] == files[0]["version_key"]
        assert results[0]["unit_count"] == 2

    def test_stats(self, tmp_path: Path, inbox: Path) -> None:
        """Stats show cataloged files as pending."""
        db = tmp_path / "p.db"
        client.post("/run/cataloger", json=_payload(db, inbox))

        stats = client.get("/stats", params={"db": str(db)}).json()

        assert stats["file_count"] == 1
        assert stats["result_count"] == 0
        assert stats["pending_count"] == 1

    def test_view_with_curated_data(self, tmp_path: Path, inbox: Path) -> None:
        """The view joins curated rows."""
        db = tmp_path / "p.db"
        curated = tmp_path / "curated.csv"
        curated.write_text("PRODUCT_ID,BRAND\nP1,Acme\nP1,Globex\n")
        client.post("/run", json=_payload(db, inbox))

        response = client.get("/view", params={"db": str(db), "curated": str(curated)})

        assert response.status_code == 200
        body = response.json()
        assert body["columns"][:2] == ["PRODUCT_ID", "BRAND"]
        assert sorted(row["BRAND"] for row in body["rows"]) == ["Acme", "Globex"]

    def test_view_limit(self, tmp_path: Path, inbox: Path) -> None:
        """The view honours the limit parameter."""
        db = tmp_path / "p.db"
        curated = tmp_path / "curated.csv"
        curated.write_text("PRODUCT_ID,BRAND\nP1,Acme\nP1,Globex\n")
        client.post("/run", json=_payload(db, inbox))

        response = client.get(
            "/view", params={"db": str(db), "curated": str(curated), "limit": 1}
        )

        assert len(response.json()["rows"]) == 1
