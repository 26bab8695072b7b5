import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from pdfask.api.ask import router as ask_router
from pdfask.config import get_settings
from pdfask.errors import AskError
from pdfask.llm_provider import get_llm_status
from pdfask.logging_config import configure_logging
from pdfask.telemetry import emit_app_startup_event, emit_exception

configure_logging(get_settings().log_dir)

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="PDF Ask API")
app.include_router(ask_router)


@app.on_event("startup")
async def _startup() -> None:
    emit_app_startup_event()


@app.exception_handler(AskError)
async def _handle_ask_error(request: Request, exc: AskError) -> JSONResponse:
    level = "warning" if exc.status_code < 500 else "error"
    getattr(LOGGER, level)("%s %s failed: %s", request.method, request.url.path, exc.message)
    if exc.status_code >= 500:
        emit_exception(module=f"{__name__}.{type(exc).__name__}", error=exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(Exception)
async def _handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    emit_exception(module=__name__, error=exc)
    return JSONResponse(
        status_code=500,
        content={"error": "Error processing request", "details": str(exc)},
    )


@app.get("/", response_class=PlainTextResponse)
def read_root() -> str:
    """Healthcheck endpoint for the service."""
    return "ok"


@app.get("/healthz/model")
def model_healthcheck() -> dict[str, object]:
    """Expose the completion backend status."""

    status = get_llm_status()
    payload: dict[str, object] = {
        "model_loaded": status.model_loaded,
        "device": status.device,
        "name": status.model_name,
    }
    if status.error:
        payload["reason"] = status.error
    return payload
