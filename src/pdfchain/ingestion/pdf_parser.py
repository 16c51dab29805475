"""PDF parsing backed by PyMuPDF (fitz)."""

from __future__ import annotations

import logging
import threading
from typing import Dict, Optional, Protocol

import fitz  # PyMuPDF

from pdfchain.models import ParsedDocument

LOGGER = logging.getLogger(__name__)

# PyMuPDF is not thread-safe; all document access goes through this lock.
_FITZ_LOCK = threading.Lock()


class ContentParser(Protocol):
    def parse(self, data: bytes) -> ParsedDocument: ...


def _read_metadata(doc: fitz.Document) -> Dict[str, Optional[str]]:
    try:
        raw = doc.metadata or {}
    except Exception as exc:
        LOGGER.warning("Failed to read PDF metadata: %s", exc)
        return {}
    return {str(key): (str(value) if value else None) for key, value in raw.items()}


class PyMuPDFParser:
    """Parse PDF bytes into metadata, page count and full text.

    A page that cannot be read contributes empty text; only a document that
    cannot be opened at all makes ``parse`` raise. Calls from several threads
    are serialized.
    """

    def __init__(self, *, page_separator: str = "\n") -> None:
        self.page_separator = page_separator

    def parse(self, data: bytes) -> ParsedDocument:
        with _FITZ_LOCK:
            doc = fitz.open(stream=data, filetype="pdf")
            try:
                metadata = _read_metadata(doc)
                page_count = len(doc)
                parts = []
                for index in range(page_count):
                    try:
                        parts.append(doc[index].get_text() or "")
                    except Exception as exc:
                        LOGGER.warning("Failed to read page %s: %s", index, exc)
                        parts.append("")
            finally:
                doc.close()

        return ParsedDocument(
            metadata=metadata,
            unit_count=page_count,
            text=self.page_separator.join(parts),
        )
