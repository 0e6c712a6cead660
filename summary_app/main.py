from __future__ import annotations

import asyncio
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from summary_app.config import get_settings
from summary_app.exceptions import (
    CompletionError,
    ConfigurationError,
    ExtractionError,
    InputError,
    SummaryError,
    SynthesisError,
)
from summary_app.runtime import build_runtime
from summary_app.schemas import ErrorResponse, HealthResponse, SummaryReport, SummaryRequest

settings = get_settings()
logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

runtime = build_runtime(settings)
app = FastAPI(title=settings.app_name, version="0.1.0")


def _error_response(status_code: int, exc: SummaryError) -> JSONResponse:
    body = ErrorResponse(detail=str(exc), phase=exc.phase, details=exc.details())
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(InputError)
async def handle_input_error(_: Request, exc: InputError) -> JSONResponse:
    return _error_response(422, exc)


@app.exception_handler(ExtractionError)
async def handle_extraction_error(_: Request, exc: ExtractionError) -> JSONResponse:
    logger.error("summary extraction failed: %s", exc)
    return _error_response(502, exc)


@app.exception_handler(SynthesisError)
async def handle_synthesis_error(_: Request, exc: SynthesisError) -> JSONResponse:
    logger.error("summary synthesis failed: %s", exc)
    return _error_response(502, exc)


@app.exception_handler(ConfigurationError)
async def handle_configuration_error(_: Request, exc: ConfigurationError) -> JSONResponse:
    logger.error("completion client misconfigured: %s", exc)
    return _error_response(503, exc)


@app.exception_handler(CompletionError)
async def handle_completion_error(_: Request, exc: CompletionError) -> JSONResponse:
    logger.error("completion provider error: %s", exc)
    return _error_response(502, exc)


@app.exception_handler(HTTPException)
async def handle_http_exception(_: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(detail=str(exc.detail)).model_dump(),
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(_: Request, exc: Exception) -> JSONResponse:
    logger.exception("unexpected summary error")
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(detail="internal server error", phase="pipeline").model_dump(),
    )


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(
        app_name=settings.app_name,
        model_name=runtime.config.model_name,
        strong_model_name=runtime.config.strong_model_name,
        batch_size=runtime.config.batch_size,
        min_reports=runtime.config.min_reports,
        max_concurrent_batches=runtime.config.max_concurrent_batches,
    )


@app.post("/analysis/summary", response_model=SummaryReport)
async def analysis_summary(req: SummaryRequest) -> SummaryReport:
    return await asyncio.to_thread(
        runtime.pipeline.run,
        req.theme_name,
        req.reports,
        req.options,
    )
