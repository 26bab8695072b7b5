from __future__ import annotations

from typing import List

from pdfask.models import PageUnit

PAGE_BREAK = "\f"
DEFAULT_CHUNK_SIZE_WORDS = 300
DEFAULT_MAX_PAGES = 400


def segment_text(
    raw_text: str,
    chunk_size_words: int = DEFAULT_CHUNK_SIZE_WORDS,
    max_pages: int = DEFAULT_MAX_PAGES,
) -> List[PageUnit]:
    """Split extracted document text into page units.

    Form feeds emitted by the PDF extractor mark real page boundaries, so
    when present they win. Otherwise the text is grouped into runs of
    ``chunk_size_words`` whitespace-delimited words. The result always holds
    at least one unit and never more than ``max_pages``.
    """

    if chunk_size_words <= 0:
        raise ValueError("chunk_size_words must be a positive integer")
    if max_pages <= 0:
        raise ValueError("max_pages must be a positive integer")

    raw_text = raw_text or ""
    if PAGE_BREAK in raw_text:
        pages = [part.strip() for part in raw_text.split(PAGE_BREAK)]
        pages = [page for page in pages if page]
    else:
        pages = _chunk_words(raw_text, chunk_size_words, max_pages)

    if not pages:
        pages = [raw_text]

    return [PageUnit(page_number=index, text=text) for index, text in enumerate(pages[:max_pages], start=1)]


def _chunk_words(text: str, chunk_size_words: int, max_pages: int) -> List[str]:
    words = text.split()
    chunks: List[str] = []
    for start in range(0, len(words), chunk_size_words):
        chunks.append(" ".join(words[start : start + chunk_size_words]))
        if len(chunks) >= max_pages:
            break
    return chunks


__all__ = ["DEFAULT_CHUNK_SIZE_WORDS", "DEFAULT_MAX_PAGES", "PAGE_BREAK", "segment_text"]
