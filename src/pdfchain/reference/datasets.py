"""Reference relations consumed by the modeler."""

from __future__ import annotations

import csv
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

import numpy as np

from pdfchain.errors import ReferenceDataError

LOGGER = logging.getLogger(__name__)

NULL_VALUES = frozenset({"", "NULL", "\\N"})

Row = Dict[str, Any]


class ReferenceTable(Protocol):
    columns: Sequence[str]
    key_column: str

    def rows_for(self, key: str) -> List[Row]: ...


class AggregateSource(Protocol):
    columns: Sequence[str]

    def rows(self) -> List[Row]: ...


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return None if value in NULL_VALUES else value


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    for candidate in (value, value[:10]):
        try:
            return datetime.fromisoformat(candidate)
        except ValueError:
            continue
    return None


def _date_stem(column: str) -> str:
    stem = column.lower()
    return stem[: -len("_date")] if stem.endswith("_date") else stem


class EmptyReferenceTable:
    """Stand-in when no curated dataset is configured."""

    columns: Sequence[str] = ()
    key_column = ""

    def rows_for(self, key: str) -> List[Row]:
        return []


class CsvReferenceTable:
    """A curated dataset loaded from a headered CSV file, indexed by key."""

    def __init__(
        self,
        path: Path,
        *,
        key_column: str = "PRODUCT_ID",
        date_column: str | None = None,
    ) -> None:
        self.path = Path(path)
        self.key_column = key_column
        self.date_column = date_column
        self._index: Dict[str, List[Row]] = {}
        self.columns: List[str] = []
        self._load()

    def _load(self) -> None:
        with self.path.open(newline="", encoding="utf-8") as handle:
            reader = csv.DictReader(handle)
            header = list(reader.fieldnames or [])
            if self.key_column not in header:
                raise ValueError(f"{self.path} has no {self.key_column!r} column")
            derived: List[str] = []
            if self.date_column and self.date_column in header:
                stem = _date_stem(self.date_column)
                derived = [f"{stem}_year", f"{stem}_month", f"{stem}_day"]
            elif self.date_column:
                LOGGER.warning("Date column %s not found in %s", self.date_column, self.path)
            self.columns = header + derived

            count = 0
            for raw in reader:
                row: Row = {name: _clean(raw.get(name)) for name in header}
                if derived:
                    parsed = _parse_date(row[self.date_column])
                    parts = (parsed.year, parsed.month, parsed.day) if parsed else (None,) * 3
                    row.update(zip(derived, parts))
                key = row[self.key_column]
                if key is None:
                    continue
                self._index.setdefault(key, []).append(row)
                count += 1
        LOGGER.debug("Loaded %d reference rows from %s", count, self.path)

    def rows_for(self, key: str) -> List[Row]:
        return self._index.get(key, [])


def _partition_values(path: Path, root: Path) -> Dict[str, str]:
    values = {}
    for part in path.relative_to(root).parts[:-1]:
        if "=" in part:
            name, _, value = part.partition("=")
            values[name.lower()] = value
    return values


def _to_float(value: Optional[str]) -> float:
    cleaned = _clean(value)
    if cleaned is None:
        return np.nan
    try:
        return float(cleaned)
    except ValueError:
        return np.nan


class OnTimeStatsSource:
    """Average arrival delay and cancellation rate for one year and quarter.

    CSV files live under ``root``, optionally in ``year=/quarter=/month=``
    folders. Folders whose partition values contradict the filter are skipped
    without opening their files.
    """

    columns: Sequence[str] = ("year", "quarter", "avg_arr_delay", "cancel_rate")

    def __init__(self, root: Path, *, year: int, quarter: int) -> None:
        self.root = Path(root)
        self.year = year
        self.quarter = quarter
        self.files_scanned = 0
        self.files_pruned = 0

    def _matches(self, values: Dict[str, Any]) -> bool:
        year = values.get("year")
        quarter = values.get("quarter")
        try:
            if year is not None and int(year) != self.year:
                return False
            if quarter is not None and int(quarter) != self.quarter:
                return False
        except (TypeError, ValueError):
            return False
        return True

    def _iter_files(self) -> Iterable[Path]:
        if self.root.is_file():
            yield self.root
            return
        if not self.root.is_dir():
            LOGGER.warning("Statistics source %s does not exist", self.root)
            return
        for path in sorted(self.root.rglob("*.csv")):
            if self._matches(_partition_values(path, self.root)):
                yield path
            else:
                self.files_pruned += 1

    def rows(self) -> List[Row]:
        self.files_scanned = 0
        self.files_pruned = 0
        delays: List[float] = []
        cancelled: List[float] = []

        for path in self._iter_files():
            self.files_scanned += 1
            partitions = _partition_values(path, self.root) if self.root.is_dir() else {}
            try:
                with path.open(newline="", encoding="utf-8") as handle:
                    for raw in csv.DictReader(handle):
                        row = {key.lower(): value for key, value in raw.items() if key}
                        if not self._matches({**row, **partitions}):
                            continue
                        delays.append(_to_float(row.get("arr_delay")))
                        cancelled.append(_to_float(row.get("cancelled")))
            except (OSError, UnicodeError, csv.Error) as exc:
                raise ReferenceDataError(str(path), exc) from exc

        LOGGER.debug(
            "Stats scan: %d files read, %d pruned, %d rows matched",
            self.files_scanned,
            self.files_pruned,
            len(delays),
        )
        if not delays:
            return []

        return [
            {
                "year": self.year,
                "quarter": self.quarter,
                "avg_arr_delay": _nan_mean(delays),
                "cancel_rate": _nan_mean(cancelled),
            }
        ]


def _nan_mean(values: List[float]) -> Optional[float]:
    array = np.asarray(values, dtype="float64")
    if np.isnan(array).all():
        return None
    return float(np.nanmean(array))


class EmptyAggregateSource:
    """Stand-in when no statistics source is configured; yields null statistics."""

    def __init__(self, columns: Sequence[str] = ()) -> None:
        self.columns = tuple(columns)

    def rows(self) -> List[Row]:
        return []
