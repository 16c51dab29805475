"""Stage entry points and the gated Watcher -> Cataloger -> Extractor -> Modeler chain."""

from __future__ import annotations

import logging
import time
from functools import partial
from pathlib import Path
from typing import Callable, List, Optional

from pdfchain.catalog.storage import SQLiteCatalogStore
from pdfchain.config import AppConfig
from pdfchain.errors import (
    AggregateCardinalityError,
    PipelineError,
    ReferenceDataError,
    SourceUnavailable,
)
from pdfchain.ingestion.pdf_parser import ContentParser, PyMuPDFParser
from pdfchain.ingestion.source import FileSource, LocalDirectorySource
from pdfchain.models import StageSummary
from pdfchain.reference.datasets import (
    AggregateSource,
    CsvReferenceTable,
    EmptyAggregateSource,
    EmptyReferenceTable,
    OnTimeStatsSource,
    ReferenceTable,
)
from pdfchain.stages.cataloger import Cataloger
from pdfchain.stages.extractor import Extractor
from pdfchain.stages.modeler import KeyExtractor, ModeledView, Modeler
from pdfchain.stages.watcher import Watcher
from pdfchain.utils.files import reference_key

LOGGER = logging.getLogger(__name__)

STAGES = ("watcher", "cataloger", "extractor", "modeler")


class Pipeline:
    """Coordinates the four stages through the shared catalog store only.

    Each ``run_*`` method re-reads durable state, so stages can be invoked
    independently by any scheduler. Per-file problems are reported in the
    returned summary; an unreachable source aborts only that invocation.
    """

    def __init__(
        self,
        store: SQLiteCatalogStore,
        source: FileSource,
        parser: ContentParser,
        *,
        reference: Optional[ReferenceTable] = None,
        aggregate: Optional[AggregateSource] = None,
        extension: str = ".pdf",
        join_key: KeyExtractor = reference_key,
        max_workers: int = 1,
    ) -> None:
        self.store = store
        self.source = source
        self.watcher = Watcher(source, store)
        self.cataloger = Cataloger(store, extension=extension)
        self.extractor = Extractor(store, parser, max_workers=max_workers, extension=extension)
        self.modeler = Modeler(
            store,
            reference if reference is not None else EmptyReferenceTable(),
            aggregate if aggregate is not None else EmptyAggregateSource(),
        )
        self.join_key = join_key
        self.last_view: Optional[ModeledView] = None

    def close(self) -> None:
        self.store.close()

    @staticmethod
    def _abort(summary: StageSummary, error: PipelineError) -> StageSummary:
        LOGGER.error("%s aborted: %s", summary.stage, error)
        summary.errors.append(error)
        summary.aborted = True
        return summary

    def run_watcher(self) -> StageSummary:
        summary = StageSummary("watcher")
        try:
            self.watcher.refresh()
            summary.processed_count = sum(1 for _ in self.watcher.poll_new_files())
        except SourceUnavailable as exc:
            return self._abort(summary, exc)
        LOGGER.info("Watcher found %d new files", summary.processed_count)
        return summary

    def run_cataloger(self) -> StageSummary:
        summary = StageSummary("cataloger")
        try:
            events = list(self.watcher.poll_new_files())
        except SourceUnavailable as exc:
            return self._abort(summary, exc)

        self.cataloger.ingest(events)
        self.watcher.acknowledge(events)
        stats = self.cataloger.last_stats
        summary.processed_count = stats.inserted
        summary.skipped_count = stats.duplicates + stats.ignored + stats.skipped
        summary.errors.extend(stats.errors)
        LOGGER.info(
            "Cataloger inserted %d records (duplicates: %d, ignored: %d, skipped: %d)",
            stats.inserted,
            stats.duplicates,
            stats.ignored,
            stats.skipped,
        )
        return summary

    def pending_count(self) -> int:
        return len(
            self.extractor.pending(
                self.store.list_file_records(), self.store.extracted_version_keys()
            )
        )

    def run_extractor(self) -> StageSummary:
        summary = StageSummary("extractor")
        self.extractor.extract_pending(
            self.store.list_file_records(), self.store.extracted_version_keys()
        )
        stats = self.extractor.last_stats
        summary.processed_count = stats.inserted
        summary.skipped_count = stats.duplicates
        summary.failed_count = stats.failed
        summary.errors.extend(stats.errors)
        LOGGER.info(
            "Extractor inserted %d results (failed: %d)", stats.inserted, stats.failed
        )
        return summary

    def run_modeler(self) -> StageSummary:
        summary = StageSummary("modeler")
        try:
            view = self.modeler.build_view(self.join_key)
        except (AggregateCardinalityError, ReferenceDataError) as exc:
            summary.failed_count = 1
            return self._abort(summary, exc)
        self.last_view = view
        summary.processed_count = view.count()
        LOGGER.info("Modeled view %s has %d rows", view.name, summary.processed_count)
        return summary

    def run_stage(self, stage: str) -> StageSummary:
        if stage not in STAGES:
            raise ValueError(f"Unknown stage: {stage}")
        return getattr(self, f"run_{stage}")()

    def run_chain(self) -> List[StageSummary]:
        """Run the stages in order, skipping any stage with nothing to do."""
        summaries = [self.run_watcher()]
        if summaries[-1].aborted:
            return summaries

        if summaries[-1].processed_count:
            summaries.append(self.run_cataloger())
            if summaries[-1].aborted:
                return summaries

        if not self.pending_count():
            LOGGER.debug("Nothing pending, extractor and modeler not triggered")
            return summaries

        extracted = self.run_extractor()
        summaries.append(extracted)
        if extracted.processed_count:
            summaries.append(self.run_modeler())
        return summaries

    def run_forever(
        self,
        interval: float,
        *,
        iterations: Optional[int] = None,
        sleep: Optional[Callable[[float], None]] = None,
        on_run: Optional[Callable[[List[StageSummary]], None]] = None,
    ) -> int:
        """Run the chain on a fixed interval. Returns the number of completed runs."""
        sleep = sleep or time.sleep
        runs = 0
        try:
            while iterations is None or runs < iterations:
                summaries = self.run_chain()
                runs += 1
                if on_run is not None:
                    on_run(summaries)
                if iterations is not None and runs >= iterations:
                    break
                sleep(interval)
        except KeyboardInterrupt:
            LOGGER.info("Interrupted after %d runs", runs)
        return runs


def build_pipeline(
    config: AppConfig,
    *,
    parser: Optional[ContentParser] = None,
    base_dir: Optional[Path] = None,
) -> Pipeline:
    """Assemble a pipeline from configuration."""
    reference: ReferenceTable = EmptyReferenceTable()
    if config.curated_path is not None:
        reference = CsvReferenceTable(
            config.curated_path,
            key_column=config.curated_key,
            date_column=config.curated_date_column,
        )

    aggregate: AggregateSource = EmptyAggregateSource(OnTimeStatsSource.columns)
    if config.stats_path is not None:
        aggregate = OnTimeStatsSource(
            config.stats_path, year=config.stats_year, quarter=config.stats_quarter
        )

    db_path = config.resolve_db_path(base_dir or Path.cwd())
    db_path.parent.mkdir(parents=True, exist_ok=True)
    store = SQLiteCatalogStore(db_path)

    try:
        return Pipeline(
            store,
            LocalDirectorySource(config.source_dir),
            parser or PyMuPDFParser(),
            reference=reference,
            aggregate=aggregate,
            extension=config.extension,
            join_key=partial(reference_key, separator=config.key_separator),
            max_workers=config.max_workers,
        )
    except ValueError:
        store.close()
        raise
