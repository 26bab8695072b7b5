from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Iterable, List, Optional, Sequence

from fastapi.concurrency import run_in_threadpool

from pdfask.config import Settings, get_settings
from pdfask.embeddings import EmbeddingGateway, get_embedding_gateway
from pdfask.errors import (
    CompletionProviderError,
    DocumentReadError,
    EmbeddingProviderError,
    ExtractionError,
    MissingInputError,
    MissingQuestionError,
    NoDocumentsError,
)
from pdfask.extract import PdfTextExtractor
from pdfask.llm_provider import LLM, get_llm
from pdfask.logging_config import AUDIT_LOGGER_NAME
from pdfask.models import Document, DocumentExcerpt
from pdfask.prompt_builder import build_prompt
from pdfask.ranker import rank_units
from pdfask.segmenter import segment_text
from pdfask.storage import IncomingUpload, UploadSessionManager
from pdfask.telemetry import (
    emit_document_event,
    emit_inference_request,
    emit_inference_result,
    emit_prompt_event,
    emit_retriever_event,
    traced_duration,
)

LOGGER = logging.getLogger(__name__)
AUDIT_LOGGER = logging.getLogger(AUDIT_LOGGER_NAME)

DEFAULT_QUESTION = "summarize the uploaded documents"


@dataclass(slots=True)
class PageSource:
    page: int
    score: float


@dataclass(slots=True)
class DocumentSource:
    filename: str
    pages: List[PageSource] = field(default_factory=list)


@dataclass(slots=True)
class AskResult:
    """Structured result returned from :meth:`AskService.ask`."""

    answer: str
    sources: List[DocumentSource]
    upload_id: Optional[str]
    question: str
    duration_seconds: float


class AskService:
    """Answers a question against freshly uploaded or previously stored PDFs.

    Per request: resolve the documents, embed the question once, then for
    each document in submission order extract, segment, embed and rank its
    pages. The ranked excerpts of all documents form one prompt for the
    completion backend. Any per-document failure aborts the whole request.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        session_manager: UploadSessionManager | None = None,
        embedding_gateway: EmbeddingGateway | None = None,
        extractor: PdfTextExtractor | None = None,
        llm: LLM | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.session_manager = session_manager or UploadSessionManager(self.settings.upload_dir)
        self.extractor = extractor or PdfTextExtractor(
            use_ocr=self.settings.pdf_ocr,
            ocr_language=self.settings.ocr_language,
        )
        self._embedding_gateway = embedding_gateway
        self._llm = llm

    @property
    def embedding_gateway(self) -> EmbeddingGateway:
        if self._embedding_gateway is None:
            self._embedding_gateway = get_embedding_gateway()
        return self._embedding_gateway

    @property
    def llm(self) -> LLM:
        if self._llm is None:
            self._llm = get_llm()
        return self._llm

    async def ask(
        self,
        uploads: Optional[Iterable[IncomingUpload]],
        question: Optional[str],
        *,
        upload_id: Optional[str] = None,
        top_k: Optional[int] = None,
    ) -> AskResult:
        files = [upload for upload in (uploads or []) if upload is not None]
        if not files and not (upload_id or "").strip():
            raise MissingInputError(
                "No PDFs uploaded (field name must be 'pdf') or uploadId missing",
            )
        if question is None:
            raise MissingQuestionError("No question provided")

        effective_question = question.strip() or DEFAULT_QUESTION
        effective_top_k = self.settings.top_k if top_k is None else top_k
        if effective_top_k < 1:
            raise ValueError("top_k must be at least 1")

        req_id = uuid.uuid4().hex
        started = time.perf_counter()
        try:
            with traced_duration("ask.request", logger=LOGGER, req_id=req_id, files=len(files)):
                resolution = self.session_manager.resolve(files, upload_id)
                session_id = resolution.session_id
                if resolution.is_empty:
                    raise NoDocumentsError(
                        "No PDFs found for this request",
                        details=f"uploadId {session_id!r} is unknown or holds no files",
                    )

                query_vector = await self._embed_query(effective_question)
                excerpts: List[DocumentExcerpt] = []
                total = len(resolution.documents)
                for index, document in enumerate(resolution.documents, start=1):
                    LOGGER.info(
                        "Processing file %d/%d: %s (session %s)",
                        index,
                        total,
                        document.display_name,
                        session_id,
                    )
                    excerpt = await self._process_document(
                        document,
                        effective_question,
                        query_vector,
                        effective_top_k,
                        req_id=req_id,
                        session_id=session_id,
                    )
                    excerpts.append(excerpt)

                prompt = build_prompt(effective_question, excerpts, self.settings.excerpt_chars)
                emit_prompt_event(
                    req_id=req_id,
                    sources=[excerpt.display_name for excerpt in excerpts],
                    prompt_len=len(prompt),
                    excerpt_count=sum(len(excerpt.units) for excerpt in excerpts),
                )
                answer = await self._complete(
                    prompt,
                    req_id=req_id,
                    session_id=session_id,
                    top_k=effective_top_k,
                    sources=[excerpt.display_name for excerpt in excerpts],
                )
        except asyncio.CancelledError:
            LOGGER.warning("Request %s cancelled before the response was produced", req_id)
            raise

        sources = [
            DocumentSource(
                filename=excerpt.display_name,
                pages=[PageSource(page=unit.page_number, score=unit.score) for unit in excerpt.units],
            )
            for excerpt in excerpts
        ]
        AUDIT_LOGGER.info(
            {
                "event": "ask",
                "req_id": req_id,
                "upload_id": session_id,
                "question": effective_question,
                "sources": [source.filename for source in sources],
            }
        )
        return AskResult(
            answer=answer,
            sources=sources,
            upload_id=session_id,
            question=effective_question,
            duration_seconds=time.perf_counter() - started,
        )

    async def _embed_query(self, question: str) -> List[float]:
        try:
            return await run_in_threadpool(self.embedding_gateway.embed_one, question)
        except EmbeddingProviderError as error:
            raise EmbeddingProviderError(
                "Embedding question failed",
                details=error.details or error.message,
                cause=error,
            ) from error

    async def _process_document(
        self,
        document: Document,
        question: str,
        query_vector: Sequence[float],
        top_k: int,
        *,
        req_id: str,
        session_id: Optional[str],
    ) -> DocumentExcerpt:
        name = document.display_name
        started = time.perf_counter()

        try:
            data = await run_in_threadpool(document.read_bytes)
        except OSError as error:
            raise DocumentReadError(
                f"Stored file {name} could not be read",
                details=str(error),
                cause=error,
            ) from error

        try:
            text = await run_in_threadpool(self.extractor.extract, data)
        except Exception as error:
            details = error.details if isinstance(error, ExtractionError) and error.details else str(error)
            raise ExtractionError(
                f"Error parsing file {name}",
                details=details,
                cause=error,
            ) from error

        units = segment_text(
            text,
            chunk_size_words=self.settings.chunk_size_words,
            max_pages=self.settings.max_pages,
        )
        emit_document_event(
            "document.segmented",
            req_id=req_id,
            session_id=session_id,
            file_name=name,
            size_bytes=document.size_bytes,
            text_chars=len(text),
            pages=len(units),
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )

        try:
            vectors = await run_in_threadpool(
                self.embedding_gateway.embed, [unit.text for unit in units]
            )
        except EmbeddingProviderError as error:
            raise EmbeddingProviderError(
                f"Embedding pages failed for {name}",
                details=error.details or error.message,
                cause=error,
            ) from error

        rank_started = time.perf_counter()
        ranked = rank_units(units, vectors, query_vector, top_k, display_name=name)
        emit_retriever_event(
            req_id=req_id,
            file_name=name,
            query=question,
            top_k=top_k,
            units=len(units),
            results=[{"page": unit.page_number, "score": round(unit.score, 4)} for unit in ranked],
            duration_ms=(time.perf_counter() - rank_started) * 1000.0,
        )
        return DocumentExcerpt(display_name=name, units=ranked)

    async def _complete(
        self,
        prompt: str,
        *,
        req_id: str,
        session_id: Optional[str],
        top_k: int,
        sources: List[str],
    ) -> str:
        llm = self.llm
        max_tokens = self.settings.llm_max_tokens
        temperature = self.settings.llm_temperature
        emit_inference_request(
            req_id=req_id,
            session_id=session_id,
            prompt_preview=prompt,
            prompt_len=len(prompt),
            top_k=top_k,
            temperature=temperature,
            max_tokens=max_tokens,
            sources=sources,
        )

        started = time.perf_counter()
        try:
            answer = await run_in_threadpool(llm.generate, prompt, max_tokens, temperature)
        except Exception as error:
            emit_inference_result(
                req_id=req_id,
                session_id=session_id,
                duration_ms=(time.perf_counter() - started) * 1000.0,
                model_used=llm.model_name,
                answer_preview="",
                error=error,
            )
            raise CompletionProviderError(
                "LLM inference failed",
                details=str(error),
                cause=error,
            ) from error

        emit_inference_result(
            req_id=req_id,
            session_id=session_id,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            model_used=llm.model_name,
            answer_preview=answer,
        )
        return answer


@lru_cache()
def get_ask_service() -> AskService:
    """FastAPI dependency returning the shared :class:`AskService` instance."""

    return AskService()


__all__ = [
    "AskResult",
    "AskService",
    "DEFAULT_QUESTION",
    "DocumentSource",
    "PageSource",
    "get_ask_service",
]
