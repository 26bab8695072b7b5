"""Utilities for extracting text from uploaded PDF documents."""
from __future__ import annotations

import io
import logging
import subprocess
import tempfile
from pathlib import Path

from pdfminer.high_level import extract_text as pdfminer_extract_text
from PyPDF2 import PdfReader

from pdfask.errors import ExtractionError
from pdfask.segmenter import PAGE_BREAK

LOGGER = logging.getLogger(__name__)


class PdfTextExtractor:
    """Turn PDF bytes into text, keeping page boundaries as form feeds.

    pdfminer.six is tried first since it already separates pages with form
    feeds; PyPDF2 is the fallback. When neither yields any text and OCR is
    enabled, the document is passed through ``ocrmypdf`` and extracted again.
    """

    def __init__(self, *, use_ocr: bool = False, ocr_language: str = "eng") -> None:
        self.use_ocr = use_ocr
        self.ocr_language = ocr_language

    def extract(self, data: bytes) -> str:
        if not data:
            raise ExtractionError("Empty document", details="the uploaded file contains no bytes")

        text = self._extract_native(data)
        if text.strip() or not self.use_ocr:
            return text

        LOGGER.info("PDF has no extractable text, attempting OCR fallback")
        try:
            ocr_data = self._perform_ocr(data)
        except RuntimeError as error:
            LOGGER.warning("OCR failed (%s); keeping the native extraction", error)
            return text
        return self._extract_native(ocr_data)

    def _extract_native(self, data: bytes) -> str:
        try:
            return pdfminer_extract_text(io.BytesIO(data)) or ""
        except Exception as pdfminer_error:
            LOGGER.warning("pdfminer failed to extract text (%s); trying PyPDF2", pdfminer_error)
            try:
                return self._pypdf2_extract(data)
            except Exception as error:
                raise ExtractionError(
                    "PDF text extraction failed",
                    details=str(error),
                    cause=error,
                ) from error

    @staticmethod
    def _pypdf2_extract(data: bytes) -> str:
        reader = PdfReader(io.BytesIO(data))
        pages = []
        for index, page in enumerate(reader.pages, start=1):
            try:
                pages.append(page.extract_text() or "")
            except Exception as error:  # pragma: no cover - depends on document
                LOGGER.warning("Failed to extract text from PDF page %s: %s", index, error)
                pages.append("")
        return PAGE_BREAK.join(pages)

    def _perform_ocr(self, data: bytes) -> bytes:
        with tempfile.TemporaryDirectory() as tmpdir:
            source = Path(tmpdir) / "source.pdf"
            output = Path(tmpdir) / "ocr-output.pdf"
            source.write_bytes(data)
            cmd = [
                "ocrmypdf",
                "--force-ocr",
                "--output-type",
                "pdf",
                "-l",
                self.ocr_language,
                str(source),
                str(output),
            ]
            LOGGER.debug("Running OCR command: %s", " ".join(cmd))
            try:
                subprocess.run(cmd, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
            except FileNotFoundError as exc:  # pragma: no cover - depends on environment
                raise RuntimeError("ocrmypdf is not installed") from exc
            except subprocess.CalledProcessError as exc:  # pragma: no cover - depends on data
                raise RuntimeError(f"ocrmypdf failed: {exc.stderr.decode(errors='ignore')}") from exc
            return output.read_bytes()


__all__ = ["PdfTextExtractor"]
