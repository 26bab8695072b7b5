"""Utilities for constructing citation-tagged prompts from ranked excerpts."""
from __future__ import annotations

from typing import Iterable, List

from pdfask.models import DocumentExcerpt, ScoredUnit

DEFAULT_EXCERPT_CHARS = 1500
NOT_FOUND_ANSWER = "Not found in the document."

INSTRUCTION_PREAMBLE = (
    "You are an AI assistant. Use ONLY the information in the provided document page excerpts.\n"
    "Answer the user's question and for each fact or claim cite the document and page number "
    'in parentheses, e.g. "(Doc: invoice.pdf — Page 3)".\n'
    f'If the answer cannot be found in the provided pages, reply exactly: "{NOT_FOUND_ANSWER}"'
)


def render_unit(unit: ScoredUnit, excerpt_chars: int = DEFAULT_EXCERPT_CHARS) -> str:
    """Render one ranked unit as a source header followed by its excerpt."""

    excerpt = (unit.text or "").strip()[:excerpt_chars]
    header = f"--- Document: {unit.display_name} — Page {unit.page_number} (score={unit.score:.4f}) ---"
    return f"{header}\n{excerpt}\n"


def render_excerpt(excerpt: DocumentExcerpt, excerpt_chars: int = DEFAULT_EXCERPT_CHARS) -> str:
    return "\n".join(render_unit(unit, excerpt_chars) for unit in excerpt.units)


def build_context(
    excerpts: Iterable[DocumentExcerpt],
    excerpt_chars: int = DEFAULT_EXCERPT_CHARS,
) -> str:
    """Merge every document's excerpts, in processing order, under the instruction preamble."""

    if excerpt_chars < 0:
        raise ValueError("excerpt_chars must be non-negative")

    sections: List[str] = [render_excerpt(excerpt, excerpt_chars) for excerpt in excerpts]
    return "\n\n".join([INSTRUCTION_PREAMBLE, *sections])


def build_prompt(
    question: str,
    excerpts: Iterable[DocumentExcerpt],
    excerpt_chars: int = DEFAULT_EXCERPT_CHARS,
) -> str:
    """Compose the full text handed to the completion capability."""

    if question is None:
        raise ValueError("question must not be None")

    context = build_context(excerpts, excerpt_chars)
    return f"{context}\n\nQuestion:\n{question.strip()}"


__all__ = [
    "DEFAULT_EXCERPT_CHARS",
    "INSTRUCTION_PREAMBLE",
    "NOT_FOUND_ANSWER",
    "build_context",
    "build_prompt",
    "render_excerpt",
    "render_unit",
]
