#!/usr/bin/env python3
"""CLI helper that verifies the configured embedding and completion backends."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

from dotenv import load_dotenv


def _load_dotenv() -> None:
    project_root = Path(__file__).resolve().parents[1]
    env_file = project_root / ".env"
    if env_file.exists():
        load_dotenv(dotenv_path=env_file)
    else:  # pragma: no cover - fallback path
        load_dotenv()


def _configure_logging() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--generate",
        action="store_true",
        help="Also send a one-line prompt to the completion backend.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    _load_dotenv()
    _configure_logging()

    from pdfask.embeddings import get_embedding_gateway
    from pdfask.errors import EmbeddingProviderError
    from pdfask.llm_provider import LLMError, get_llm

    try:
        gateway = get_embedding_gateway()
        vector = gateway.embed_one("embedding smoke test")
    except (EmbeddingProviderError, ValueError) as error:
        logging.error("Embedding backend is not usable: %s", error)
        return 1
    logging.info("Embedding model '%s' returned %d dimensions", gateway.model_name, len(vector))

    try:
        llm = get_llm()
    except ValueError as error:
        logging.error("Completion backend is misconfigured: %s", error)
        return 1
    logging.info("Resolved LLM implementation: %s (device=%s)", llm.model_name, llm.device)

    try:
        llm.preload()
        if args.generate:
            answer = llm.generate("Reply with the single word: ready", 8, 0.0)
            logging.info("Completion backend answered: %r", answer)
    except LLMError as error:
        logging.error("Completion backend failed: %s", error)
        return 1

    status = llm.status()
    if status.error:
        logging.warning("Model reported warning: %s", status.error)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
