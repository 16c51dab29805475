"""FastAPI application exposing the pipeline stages as HTTP triggers."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from pdfchain.catalog.storage import SQLiteCatalogStore
from pdfchain.config import AppConfig
from pdfchain.pipeline import STAGES, build_pipeline
from pdfchain.utils.files import format_timestamp

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="pdfchain", version="0.1.0")


class RunPayload(BaseModel):
    db: Path | None = None
    source: Path | None = None
    curated: Path | None = None
    stats: Path | None = None
    year: int | None = None
    quarter: int | None = None
    workers: int | None = None


def _config_from(payload: RunPayload) -> AppConfig:
    defaults = AppConfig()
    return AppConfig(
        db_path=payload.db if payload.db is not None else defaults.db_path,
        source_dir=payload.source if payload.source is not None else defaults.source_dir,
        curated_path=payload.curated,
        stats_path=payload.stats,
        stats_year=payload.year if payload.year is not None else defaults.stats_year,
        stats_quarter=payload.quarter if payload.quarter is not None else defaults.stats_quarter,
        max_workers=payload.workers if payload.workers is not None else defaults.max_workers,
    )


def _resolve_db_path(db: Path | None) -> Path:
    config = AppConfig(db_path=db if db is not None else AppConfig().db_path)
    return config.resolve_db_path(Path.cwd())


def _open_store(db: Path | None) -> SQLiteCatalogStore:
    resolved_db = _resolve_db_path(db)
    if not resolved_db.exists():
        raise HTTPException(status_code=404, detail=f"Database not found at {resolved_db}")
    return SQLiteCatalogStore(resolved_db)


@app.on_event("startup")
async def startup_event() -> None:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")


def _run_job(stage: str | None, config: AppConfig) -> List[Dict[str, Any]]:
    pipeline = build_pipeline(config)
    try:
        if stage is None:
            summaries = pipeline.run_chain()
        else:
            summaries = [pipeline.run_stage(stage)]
    finally:
        pipeline.close()
    return [summary.as_dict() for summary in summaries]


async def _run(stage: str | None, payload: RunPayload) -> Dict[str, Any]:
    config = _config_from(payload)
    try:
        summaries = await asyncio.to_thread(_run_job, stage, config)
    except (OSError, ValueError) as exc:
        LOGGER.error("Unable to start pipeline: %s", exc)
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"status": "ok", "summaries": summaries}


@app.post("/run")
async def run_chain(payload: RunPayload | None = None) -> Dict[str, Any]:
    return await _run(None, payload or RunPayload())


@app.post("/run/{stage}")
async def run_stage(stage: str, payload: RunPayload | None = None) -> Dict[str, Any]:
    if stage not in STAGES:
        raise HTTPException(status_code=404, detail=f"Unknown stage: {stage}")
    return await _run(stage, payload or RunPayload())


@app.get("/files")
async def list_files(db: Path | None = None) -> Dict[str, Any]:
    store = _open_store(db)
    try:
        records = store.list_file_records()
        extracted = store.extracted_version_keys()
    finally:
        store.close()
    return {
        "files": [
            {
                "relative_path": record.relative_path,
                "version_key": record.version_key,
                "size": record.size,
                "last_modified": format_timestamp(record.last_modified),
                "source_url": record.source_url,
                "extracted": record.version_key in extracted,
            }
            for record in records
        ]
    }


@app.get("/results")
async def list_results(db: Path | None = None) -> Dict[str, Any]:
    store = _open_store(db)
    try:
        results = store.list_extraction_results()
    finally:
        store.close()
    return {
        "results": [
            {
                "id": result.id,
                "version_key": result.version_key,
                "metadata": result.metadata,
                "unit_count": result.unit_count,
                "content": result.content,
                "extracted_at": format_timestamp(result.extracted_at),
            }
            for result in results
        ]
    }


@app.get("/stats")
async def catalog_stats(db: Path | None = None) -> Dict[str, int]:
    store = _open_store(db)
    try:
        return store.get_stats()
    finally:
        store.close()


@app.get("/view")
async def integrated_view(
    db: Path | None = None,
    curated: Path | None = None,
    stats: Path | None = None,
    limit: int = 100,
) -> Dict[str, Any]:
    resolved_db = _resolve_db_path(db)
    if not resolved_db.exists():
        raise HTTPException(status_code=404, detail=f"Database not found at {resolved_db}")

    limit = max(1, min(limit, 1000))
    config = _config_from(RunPayload(db=db, curated=curated, stats=stats))
    try:
        pipeline = build_pipeline(config)
    except (OSError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        summary = pipeline.run_modeler()
        if summary.aborted or pipeline.last_view is None:
            raise HTTPException(status_code=500, detail=[e.as_dict() for e in summary.errors])
        modeled = pipeline.last_view
        rows = []
        for row in modeled.rows():
            rows.append(row)
            if len(rows) >= limit:
                break
    finally:
        pipeline.close()
    return {"name": modeled.name, "columns": list(modeled.columns), "rows": rows}
