"""Read-optimized projection of extraction results joined with reference data."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Optional, Sequence

from pdfchain.catalog.storage import SQLiteCatalogStore
from pdfchain.errors import AggregateCardinalityError
from pdfchain.reference.datasets import AggregateSource, ReferenceTable
from pdfchain.utils.files import reference_key

LOGGER = logging.getLogger(__name__)

DOCUMENT_COLUMNS = (
    "document_id",
    "file_name",
    "relative_path",
    "source_url",
    "last_modified",
    "metadata",
    "unit_count",
    "content",
)

KeyExtractor = Callable[[str], Optional[str]]


def _check_disjoint(reference_columns: Sequence[str], aggregate_columns: Sequence[str]) -> None:
    """Reject column names that would overwrite each other in a joined row."""
    groups = (
        ("reference", reference_columns),
        ("document", DOCUMENT_COLUMNS),
        ("aggregate", aggregate_columns),
    )
    for index, (left_name, left) in enumerate(groups):
        for right_name, right in groups[index + 1 :]:
            clash = sorted(set(left) & set(right))
            if clash:
                raise ValueError(
                    f"{left_name} and {right_name} columns overlap: {', '.join(clash)}"
                )


@dataclass(slots=True)
class ModeledView:
    """A derived relation; every ``rows()`` call re-reads the store."""

    name: str
    columns: Sequence[str]
    store: SQLiteCatalogStore
    reference: ReferenceTable
    key_extractor: KeyExtractor
    stats: Dict[str, Any]

    def rows(self) -> Iterator[Dict[str, Any]]:
        reference_columns = list(self.reference.columns)
        empty_reference = {name: None for name in reference_columns}
        for result in self.store.iter_joined_results():
            document = {name: result[name] for name in DOCUMENT_COLUMNS}
            key = self.key_extractor(result["document_id"])
            matches = self.reference.rows_for(key) if key is not None else []
            # left outer join: unmatched documents keep null reference columns
            for match in matches or [empty_reference]:
                row = {name: match.get(name) for name in reference_columns}
                row.update(document)
                row.update(self.stats)
                yield row

    def count(self) -> int:
        return sum(1 for _ in self.rows())


class Modeler:
    """Build the integrated view over extracted documents."""

    def __init__(
        self,
        store: SQLiteCatalogStore,
        reference: ReferenceTable,
        aggregate: AggregateSource,
        *,
        name: str = "integrated",
    ) -> None:
        _check_disjoint(reference.columns, aggregate.columns)
        self.store = store
        self.reference = reference
        self.aggregate = aggregate
        self.name = name

    def _stats_row(self) -> Dict[str, Any]:
        rows = self.aggregate.rows()
        if len(rows) > 1:
            raise AggregateCardinalityError(len(rows))
        if not rows:
            LOGGER.warning("Aggregate source returned no rows; statistics will be null")
            return {name: None for name in self.aggregate.columns}
        return {name: rows[0].get(name) for name in self.aggregate.columns}

    def build_view(self, join_key_extractor: KeyExtractor = reference_key) -> ModeledView:
        """Describe the view; raises AggregateCardinalityError for a multi-row aggregate."""
        stats = self._stats_row()
        columns = [*self.reference.columns, *DOCUMENT_COLUMNS, *self.aggregate.columns]
        return ModeledView(
            name=self.name,
            columns=columns,
            store=self.store,
            reference=self.reference,
            key_extractor=join_key_extractor,
            stats=stats,
        )
