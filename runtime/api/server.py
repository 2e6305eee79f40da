"""
FastAPI application entry point for the study server.

Responsibilities:
- create the FastAPI app (create_app)
- construct shared singletons (SessionStore, ResponseStore,
  SessionStateMachine, SlidingWindowRateLimiter) and put them on app.state
- translate pipeline exceptions into `{"error", "code"}` JSON bodies
- include the study routes
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from configs.settings import Settings, settings as default_settings
from core.scoring import SuspicionThresholds
from exceptions.exceptions import StudyPipelineError
from runtime.lifecycle.state_machine import SessionStateMachine
from runtime.store.response_store import ResponseStore
from runtime.store.session_store import SessionStore

from . import session_routes
from .rate_limit import SlidingWindowRateLimiter


logger = logging.getLogger(__name__)


_HTTP_CODES = {
    400: "invalid",
    403: "forbidden",
    404: "not_found",
    409: "invalid_transition",
    429: "rate_limited",
}


def _first_error(exc) -> str:
    """First error of a pydantic or FastAPI validation failure, as one line."""
    errors = exc.errors()
    if not errors:
        return "Invalid request data."
    err = errors[0]
    location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
    return f"{location}: {err.get('msg')}" if location else str(err.get("msg"))


async def handle_pipeline_error(request: Request, exc: StudyPipelineError) -> JSONResponse:
    status_code, body = session_routes.error_status(exc)
    logger.warning("[API] HTTP %s on %s: %s", status_code, request.url.path, exc)
    return JSONResponse(status_code=status_code, content=body)


async def handle_validation_error(request: Request, exc: Exception) -> JSONResponse:
    message = _first_error(exc)
    logger.warning("[API] HTTP 400 on %s: %s", request.url.path, message)
    return JSONResponse(status_code=400, content={"error": message, "code": "invalid"})


async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _HTTP_CODES.get(exc.status_code, "internal" if exc.status_code >= 500 else "error")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail), "code": code},
    )


def create_app(
    app_settings: Optional[Settings] = None,
    session_store: Optional[SessionStore] = None,
    response_store: Optional[ResponseStore] = None,
    rate_limiter: Optional[SlidingWindowRateLimiter] = None,
    thresholds: Optional[SuspicionThresholds] = None,
) -> FastAPI:
    """Build the study server.

    Any collaborator not passed in is created from settings; tests inject
    in-memory stores and a limiter they can reset.
    """
    cfg = app_settings or default_settings
    data_dir = str(cfg.runtime_data_dir)

    if session_store is None:
        session_store = SessionStore(data_dir=data_dir)
    if response_store is None:
        response_store = ResponseStore(data_dir=data_dir)
    if rate_limiter is None:
        rate_limiter = SlidingWindowRateLimiter(
            max_requests=cfg.rate_limit_max_requests,
            window_seconds=cfg.rate_limit_window_seconds,
        )

    app = FastAPI(title="Study Submission Server")
    app.state.response_store = response_store
    app.state.rate_limiter = rate_limiter
    app.state.state_machine = SessionStateMachine(
        session_store, thresholds=thresholds or SuspicionThresholds()
    )

    app.add_exception_handler(StudyPipelineError, handle_pipeline_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(ValidationError, handle_validation_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_error)

    app.include_router(session_routes.router)
    logger.info("[API] Study server ready (data_dir=%s)", data_dir)
    return app
