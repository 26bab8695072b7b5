"""Centralised observability helpers for structured lifecycle logging."""

from __future__ import annotations

import logging
import os
import platform
import socket
import sys
import time
import traceback
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional


LOGGER = logging.getLogger("pdfask.telemetry")

_ENV_KEYS_TO_LOG: tuple[str, ...] = (
    "UPLOAD_DIR",
    "CHUNK_SIZE_WORDS",
    "MAX_PAGES",
    "TOP_K",
    "EXCERPT_CHARS",
    "EMBEDDING_PROVIDER",
    "EMBEDDING_MODEL",
    "EMBEDDING_INFERENCE_PROVIDER",
    "EMBEDDING_BATCH_SIZE",
    "EMBEDDING_DEVICE",
    "LLM_PROVIDER",
    "LLM_MODEL",
    "LLM_MODEL_PATH",
    "LLM_MAX_TOKENS",
    "LLM_TEMPERATURE",
    "REQUEST_TIMEOUT_SECONDS",
    "PDF_OCR",
    "OCR_LANG",
)


def _format_exception(error: BaseException) -> str:
    return "".join(traceback.format_exception(error.__class__, error, error.__traceback__))


def log_event(
    logger: Optional[logging.Logger],
    step: str,
    *,
    level: str = "info",
    req_id: str | None = None,
    session_id: str | None = None,
    duration_ms: float | None = None,
    exc: BaseException | str | None = None,
    details: dict[str, Any] | None = None,
    extra: dict[str, Any] | None = None,
    **payload: Any,
) -> None:
    """Emit a structured log event with the agreed-upon schema."""

    logger = logger or LOGGER
    event: dict[str, Any] = {"step": step, "module": logger.name}
    if req_id:
        event["req_id"] = req_id
    if session_id:
        event["session_id"] = session_id
    if duration_ms is not None:
        event["duration_ms"] = round(duration_ms, 3)
    if details is not None:
        event["details"] = details
    if extra:
        event.update(extra)
    event.update(payload)

    exc_info = None
    if exc is not None:
        if isinstance(exc, BaseException):
            event["exc"] = _format_exception(exc)
            exc_info = (exc.__class__, exc, exc.__traceback__)
        else:
            event["exc"] = str(exc)

    log_method = getattr(logger, level.lower(), logger.info)
    log_method(event, exc_info=exc_info)


def emit_app_startup_event() -> None:
    env_values = {key: os.getenv(key) for key in _ENV_KEYS_TO_LOG if os.getenv(key) is not None}
    details = {
        "env": env_values,
        "python": sys.version.split()[0],
        "platform": platform.platform(),
    }
    payload = {
        "pid": os.getpid(),
        "hostname": socket.gethostname(),
        "cwd": str(Path.cwd()),
    }
    log_event(LOGGER, "app.startup", details=details, extra=payload)


def emit_llm_provider_init(
    *, provider: str, model: str, ready: bool, max_tokens: int | None, temperature: float | None
) -> None:
    details = {
        "provider": provider,
        "model": model,
        "ready": ready,
        "max_tokens": max_tokens,
        "temperature": temperature,
    }
    log_event(LOGGER, "llm.provider.init", details=details)


def emit_inference_request(
    *,
    req_id: str,
    session_id: str | None,
    prompt_preview: str,
    prompt_len: int,
    top_k: int,
    temperature: float,
    max_tokens: int | None,
    sources: Iterable[str],
) -> None:
    details = {
        "prompt_preview": prompt_preview[:120],
        "prompt_len": prompt_len,
        "top_k": top_k,
        "temperature": temperature,
        "max_tokens": max_tokens,
        "sources": list(sources),
    }
    log_event(LOGGER, "inference.request", req_id=req_id, session_id=session_id, details=details)


def emit_inference_result(
    *,
    req_id: str,
    session_id: str | None,
    duration_ms: float,
    model_used: str,
    answer_preview: str,
    error: BaseException | None = None,
) -> None:
    details = {
        "model_used": model_used,
        "answer_preview": answer_preview[:120],
        "tokens_generated": len(answer_preview.split()) if answer_preview else 0,
    }
    log_event(
        LOGGER,
        "inference.result",
        level="error" if error else "info",
        req_id=req_id,
        session_id=session_id,
        duration_ms=duration_ms,
        details=details,
        exc=error,
    )


def emit_embeddings_event(
    *, model: str, count: int, duration_ms: float, errors: list[str] | None = None
) -> None:
    details = {
        "model": model,
        "count": count,
        "duration_ms": round(duration_ms, 3),
        "errors": errors or [],
        "per_item_ms": round(duration_ms / count, 3) if count else None,
    }
    log_event(LOGGER, "embeddings.compute", details=details)


def emit_retriever_event(
    *,
    req_id: str,
    file_name: str,
    query: str,
    top_k: int,
    units: int,
    results: list[dict[str, Any]],
    duration_ms: float,
) -> None:
    details = {
        "file": file_name,
        "query_preview": query[:120],
        "top_k": top_k,
        "units": units,
        "results": results,
    }
    log_event(LOGGER, "retriever.rank", req_id=req_id, duration_ms=duration_ms, details=details)


def emit_prompt_event(
    *,
    req_id: str,
    sources: Iterable[str],
    prompt_len: int,
    excerpt_count: int,
) -> None:
    details = {
        "sources": list(sources),
        "prompt_len": prompt_len,
        "excerpts": excerpt_count,
    }
    log_event(LOGGER, "prompt.compose", req_id=req_id, details=details)


def emit_upload_event(
    step: str,
    *,
    session_id: str | None,
    file_name: str | None = None,
    storage_name: str | None = None,
    size_bytes: int | None = None,
    documents: int | None = None,
    fallback_copy: bool | None = None,
) -> None:
    details = {
        "file": file_name,
        "storage_name": storage_name,
        "size_bytes": size_bytes,
        "documents": documents,
        "fallback_copy": fallback_copy,
    }
    log_event(
        LOGGER,
        step,
        session_id=session_id,
        details={key: value for key, value in details.items() if value is not None},
    )


def emit_document_event(
    step: str,
    *,
    req_id: str,
    session_id: str | None,
    file_name: str,
    size_bytes: int | None = None,
    text_chars: int | None = None,
    pages: int | None = None,
    duration_ms: float | None = None,
) -> None:
    details = {
        "file": file_name,
        "size_bytes": size_bytes,
        "text_chars": text_chars,
        "pages": pages,
    }
    log_event(
        LOGGER,
        step,
        req_id=req_id,
        session_id=session_id,
        duration_ms=duration_ms,
        details=details,
    )


def emit_exception(
    *,
    module: str,
    error: BaseException,
    req_id: str | None = None,
    session_id: str | None = None,
    suggestion: str | None = None,
) -> None:
    details = {"module": module}
    if suggestion:
        details["suggestion"] = suggestion
    log_event(
        LOGGER,
        "exception",
        level="error",
        req_id=req_id,
        session_id=session_id,
        details=details,
        exc=error,
    )


@contextmanager
def traced_duration(step: str, *, logger: Optional[logging.Logger] = None, **fields: Any) -> Iterator[None]:
    start = time.perf_counter()
    log_event(logger or LOGGER, f"{step}.start", details=fields)
    try:
        yield
    except Exception as error:
        log_event(logger or LOGGER, f"{step}.error", level="error", details=fields, exc=error)
        raise
    finally:
        end = time.perf_counter()
        log_event(
            logger or LOGGER,
            f"{step}.complete",
            duration_ms=(end - start) * 1000.0,
            details=fields,
        )


__all__ = [
    "emit_app_startup_event",
    "emit_document_event",
    "emit_embeddings_event",
    "emit_exception",
    "emit_inference_request",
    "emit_inference_result",
    "emit_llm_provider_init",
    "emit_prompt_event",
    "emit_retriever_event",
    "emit_upload_event",
    "log_event",
    "traced_duration",
]
