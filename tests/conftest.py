"""Shared fixtures wiring the ask pipeline to deterministic providers."""
from __future__ import annotations

import os
from pathlib import Path

import pytest

os.environ.setdefault("EMBEDDING_PROVIDER", "hash")
os.environ.setdefault("LLM_PROVIDER", "stub")

from helpers import PlainTextExtractor, RecordingLLM  # noqa: E402
from pdfask.config import Settings  # noqa: E402
from pdfask.embeddings import EmbeddingGateway, HashEmbeddingBackend  # noqa: E402
from pdfask.services.ask import AskService  # noqa: E402
from pdfask.storage import UploadSessionManager  # noqa: E402


@pytest.fixture
def upload_root(tmp_path: Path) -> Path:
    return tmp_path / "uploads"


@pytest.fixture
def settings(tmp_path: Path, upload_root: Path) -> Settings:
    return Settings(
        upload_dir=upload_root,
        log_dir=tmp_path / "logs",
        embedding_provider="hash",
        llm_provider="stub",
    )


@pytest.fixture
def session_manager(upload_root: Path) -> UploadSessionManager:
    return UploadSessionManager(upload_root)


@pytest.fixture
def recording_llm() -> RecordingLLM:
    return RecordingLLM()


@pytest.fixture
def ask_service(
    settings: Settings,
    session_manager: UploadSessionManager,
    recording_llm: RecordingLLM,
) -> AskService:
    return AskService(
        settings=settings,
        session_manager=session_manager,
        embedding_gateway=EmbeddingGateway(HashEmbeddingBackend(dimension=16), batch_size=8),
        extractor=PlainTextExtractor(),
        llm=recording_llm,
    )
