"""Application configuration defaults."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path


def _get_default_db_path() -> Path:
    """Get the default database path based on platform and execution context."""
    user_db = Path.home() / ".pdfchain" / "pdfchain.db"

    if getattr(sys, "frozen", False):
        return user_db

    # When running from source, prefer local data/ if it exists
    local_db = Path("data/pdfchain.db")
    if local_db.exists():
        return local_db

    return user_db


@dataclass(slots=True)
class AppConfig:
    db_path: Path | None = None
    source_dir: Path = Path("inbox")
    extension: str = ".pdf"
    curated_path: Path | None = None
    curated_key: str = "PRODUCT_ID"
    curated_date_column: str | None = "REVIEW_DATE"
    stats_path: Path | None = None
    stats_year: int = 2019
    stats_quarter: int = 3
    key_separator: str = "_"
    max_workers: int = 2
    interval_seconds: float = 60.0

    def __post_init__(self) -> None:
        if self.db_path is None:
            self.db_path = _get_default_db_path()

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path
