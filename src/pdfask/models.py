"""Data models flowing through the ask pipeline."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional


@dataclass(slots=True)
class Document:
    """An uploaded PDF persisted inside a session directory."""

    display_name: str
    storage_name: str
    size_bytes: int
    path: Path
    _content: Optional[bytes] = field(default=None, repr=False, compare=False)

    def read_bytes(self) -> bytes:
        """Load the raw document bytes on first access."""

        if self._content is None:
            self._content = self.path.read_bytes()
        return self._content


@dataclass(slots=True)
class PageUnit:
    """A contiguous slice of a document's text addressed by a 1-based page number."""

    page_number: int
    text: str


@dataclass(slots=True)
class ScoredUnit:
    """A page unit scored against the current query."""

    page_number: int
    text: str
    score: float
    display_name: str


@dataclass(slots=True)
class DocumentExcerpt:
    """The ranked units selected for one document."""

    display_name: str
    units: List[ScoredUnit]


@dataclass(slots=True)
class SessionResolution:
    """Outcome of resolving the documents for a request."""

    session_id: Optional[str]
    documents: List[Document]

    @property
    def is_empty(self) -> bool:
        return not self.documents

    @property
    def display_names(self) -> List[str]:
        return [document.display_name for document in self.documents]


__all__ = ["Document", "DocumentExcerpt", "PageUnit", "ScoredUnit", "SessionResolution"]
