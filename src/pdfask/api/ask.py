"""API router exposing the question-answering endpoint."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional, Tuple

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from starlette.datastructures import UploadFile

from pdfask.errors import MissingInputError, RequestTimeoutError
from pdfask.services.ask import AskResult, AskService, get_ask_service

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["ask"])

UPLOAD_FIELD = "pdf"


class SourcePage(BaseModel):
    page: int
    score: float


class SourceDocument(BaseModel):
    filename: str
    pages: List[SourcePage]


class AskResponse(BaseModel):
    """Response payload for the ask endpoint."""

    answer: str
    sources: List[SourceDocument]
    uploadId: Optional[str] = Field(None, description="Session id to reuse on follow-up questions.")


class ErrorResponse(BaseModel):
    error: str
    details: Optional[str] = None


def _optional_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, UploadFile):
        return None
    return str(value)


async def _read_ask_request(request: Request) -> Tuple[List[UploadFile], Optional[str], Optional[str]]:
    """Pull files, question and uploadId from a multipart form or a JSON body."""

    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError as error:
            raise MissingInputError("Request body is not valid JSON", details=str(error)) from error
        if not isinstance(body, dict):
            raise MissingInputError("Request body must be a JSON object")
        return [], _optional_text(body.get("question")), _optional_text(body.get("uploadId"))

    if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
        form = await request.form()
        files = [item for item in form.getlist(UPLOAD_FIELD) if isinstance(item, UploadFile)]
        return files, _optional_text(form.get("question")), _optional_text(form.get("uploadId"))

    return [], None, None


def _serialise(result: AskResult) -> AskResponse:
    return AskResponse(
        answer=result.answer,
        sources=[
            SourceDocument(
                filename=source.filename,
                pages=[SourcePage(page=page.page, score=page.score) for page in source.pages],
            )
            for source in result.sources
        ],
        uploadId=result.upload_id,
    )


@router.post(
    "/ask",
    response_model=AskResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}, 504: {"model": ErrorResponse}},
)
async def ask_documents(
    request: Request,
    ask_service: AskService = Depends(get_ask_service),
) -> AskResponse:
    """Answer a question against uploaded PDFs (``pdf`` parts) or a stored ``uploadId``."""

    files, question, upload_id = await _read_ask_request(request)
    LOGGER.info(
        "/ask called with %d file part(s), uploadId=%s", len(files), upload_id or "(none)"
    )

    timeout = ask_service.settings.request_timeout_seconds
    try:
        result = await asyncio.wait_for(
            ask_service.ask(files, question, upload_id=upload_id),
            timeout=timeout if timeout > 0 else None,
        )
    except asyncio.TimeoutError as error:
        raise RequestTimeoutError(
            "Request timed out",
            details=f"processing exceeded {timeout:.0f}s",
            cause=error,
        ) from error

    return _serialise(result)
