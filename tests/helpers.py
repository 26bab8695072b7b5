"""Deterministic stand-ins for the external providers used across the test suite."""
from __future__ import annotations

import io
from typing import List

from starlette.datastructures import UploadFile

from pdfask.llm_provider import LLM


class PlainTextExtractor:
    """Treats the uploaded bytes as UTF-8 text so tests control page breaks exactly."""

    def extract(self, data: bytes) -> str:
        return data.decode("utf-8")


class RecordingLLM(LLM):
    """Completion backend that remembers every prompt it received."""

    def __init__(self, answer: str = "Alpha is on page 1 (Doc: doc.pdf — Page 1)") -> None:
        self.answer = answer
        self.prompts: List[str] = []

    def generate(self, prompt: str, max_tokens: int, temperature: float) -> str:
        self.prompts.append(prompt)
        return self.answer

    @property
    def model_loaded(self) -> bool:
        return True

    @property
    def model_name(self) -> str:
        return "recording"


def make_upload(content: bytes | str, filename: str = "doc.pdf") -> UploadFile:
    if isinstance(content, str):
        content = content.encode("utf-8")
    return UploadFile(file=io.BytesIO(content), filename=filename)
