"""HTTP routes for the study server.

Exposes endpoints like:

- POST /functions/save-study-data             -> action-dispatched writes
                                                 (create_session, save_*,
                                                 update_mode, reset_session, ...)
- POST /functions/complete-session            -> active -> completed, with
                                                 optional timing telemetry
- POST /functions/update-session-validation   -> reviewer request / owner
                                                 confirmation
- POST /fallback/responses                    -> insert-only answer rows
- GET  /stats                                 -> inclusion counts
- GET  /healthz

Errors are returned as `{"error": ..., "code": ...}`; see `error_status()`.
"""

import logging
from typing import Any, Dict, List, Tuple

from fastapi import APIRouter, Body, HTTPException, Request

from core.scoring import SuspicionAssessment, SuspicionFlag, TimingEntry
from exceptions.exceptions import (
    AlreadyCompletedError,
    InvalidTransitionError,
    PayloadValidationError,
    SessionNotFoundError,
    StudyPipelineError,
    ValidationPermissionError,
)

from ..lifecycle.state_machine import SessionStateMachine
from ..lifecycle.statistics import aggregate_counts
from ..models.api_models import (
    STUDY_DATA_ACTIONS,
    AnswerRow,
    CompleteSessionRequest,
    FallbackResponsesRequest,
    SessionSummary,
    UpdateValidationRequest,
    WriteResult,
)
from ..models.session_models import ResetReason, ResponseRecord, ResponseTable, Session
from ..store.response_store import ResponseStore
from .rate_limit import SlidingWindowRateLimiter, client_ip


logger = logging.getLogger(__name__)

# Router for all study endpoints
router = APIRouter()

_EXPIRY_REASONS = (ResetReason.TIMEOUT, ResetReason.ABANDONED)


# ---------------------------------------------------------------------------
# Shared objects (installed on app.state by create_app)
# ---------------------------------------------------------------------------


def _require_state_machine(request: Request) -> SessionStateMachine:
    machine = getattr(request.app.state, "state_machine", None)
    if machine is None:
        raise HTTPException(
            status_code=500,
            detail="SessionStateMachine is not configured on the server.",
        )
    return machine


def _require_response_store(request: Request) -> ResponseStore:
    store = getattr(request.app.state, "response_store", None)
    if store is None:
        raise HTTPException(
            status_code=500,
            detail="ResponseStore is not configured on the server.",
        )
    return store


def _enforce_rate_limit(request: Request) -> None:
    limiter: SlidingWindowRateLimiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        return
    ip = client_ip(request)
    allowed, _ = limiter.check(ip)
    if not allowed:
        logger.warning("[API] Rate limit exceeded for %s on %s", ip, request.url.path)
        raise HTTPException(
            status_code=429,
            detail="Too many requests. Please try again later.",
        )


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


def error_status(exc: StudyPipelineError) -> Tuple[int, Dict[str, Any]]:
    """Map a pipeline exception to (status_code, body) for the HTTP response."""
    if isinstance(exc, AlreadyCompletedError):
        return 409, {"error": str(exc), "code": "already_completed"}
    if isinstance(exc, InvalidTransitionError):
        return 409, {
            "error": str(exc),
            "code": "invalid_transition",
            "current": exc.current,
            "target": exc.target,
        }
    if isinstance(exc, SessionNotFoundError):
        return 404, {"error": "Session not found", "code": "not_found"}
    if isinstance(exc, ValidationPermissionError):
        return 403, {"error": str(exc), "code": "forbidden"}
    if isinstance(exc, PayloadValidationError):
        return 400, {"error": exc.details, "code": "invalid"}
    return 500, {"error": str(exc), "code": "internal"}


def _summary(session: Session) -> SessionSummary:
    return SessionSummary(
        sessionId=session.session_id,
        id=session.id,
        status=session.status.value,
        validationStatus=session.validation_status.value,
        mode=session.mode.value,
        suspicionScore=session.suspicion_score,
    )


def _append_rows(
    request: Request,
    table: ResponseTable,
    session_key: str,
    rows: List[AnswerRow],
) -> WriteResult:
    machine = _require_state_machine(request)
    store = _require_response_store(request)

    # Rows are keyed by the durable id, not the client-facing one.
    session = machine.get(session_key)
    inserted = store.append(
        table,
        (
            ResponseRecord(session_id=session.id, question_id=row.question_id, answer=row.answer)
            for row in rows
        ),
    )
    logger.info("[API] %d rows -> %s for session %s", inserted, table.value, session.session_id)
    return WriteResult(sessionId=session.session_id, inserted=inserted)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/functions/save-study-data")
async def save_study_data(request: Request, body: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    """Dispatch one of the study-data actions on `body["action"]`.

    Each action has its own pydantic model; an unknown action or a body that
    fails validation is a 400 and is never worth retrying.
    """
    _enforce_rate_limit(request)
    machine = _require_state_machine(request)

    action = body.get("action")
    model = STUDY_DATA_ACTIONS.get(action) if isinstance(action, str) else None
    if model is None:
        raise PayloadValidationError(f"Unknown action: {action!r}", operation="save-study-data")
    payload = model.model_validate(body)

    if action == "create_session":
        session = machine.create_session(payload.mode)
        return _summary(session).model_dump()

    if action == "save_demographics":
        result = _append_rows(request, ResponseTable.DEMOGRAPHICS, payload.session_id, payload.rows())
        return result.model_dump()
    if action == "save_pre_test":
        result = _append_rows(
            request, ResponseTable.PRE_TEST, payload.session_id, payload.pre_test_responses
        )
        return result.model_dump()
    if action == "save_post_test":
        result = _append_rows(
            request, ResponseTable.POST_TEST, payload.session_id, payload.post_test_responses
        )
        return result.model_dump()

    if action == "update_mode":
        session = machine.update_mode(payload.session_id, payload.mode)
    elif action == "reset_session":
        if payload.reason in _EXPIRY_REASONS:
            session = machine.expire(payload.session_id)
        else:
            session = machine.reset(payload.session_id, payload.reason)
    elif action == "withdraw_session":
        session = machine.withdraw(payload.session_id)
    elif action == "update_activity":
        session = machine.touch(payload.session_id)
    else:  # report_suspicious
        flags = []
        for raw in payload.suspicious_flags:
            try:
                flags.append(SuspicionFlag.from_dict(raw))
            except (KeyError, TypeError, ValueError) as exc:
                raise PayloadValidationError(f"Malformed suspicion flag: {exc}") from exc
        session = machine.record_suspicion(
            payload.session_id,
            SuspicionAssessment(score=payload.suspicion_score, flags=flags),
        )
    return _summary(session).model_dump()


@router.post("/functions/complete-session")
async def complete_session(request: Request, payload: CompleteSessionRequest) -> Dict[str, Any]:
    _enforce_rate_limit(request)
    machine = _require_state_machine(request)

    entries = None
    if payload.timing_entries is not None:
        try:
            entries = [TimingEntry.from_dict(raw) for raw in payload.timing_entries]
        except (TypeError, ValueError) as exc:
            raise PayloadValidationError(f"Malformed timing entry: {exc}") from exc

    session = machine.complete(payload.session_id, entries)
    return _summary(session).model_dump()


@router.post("/functions/update-session-validation")
async def update_session_validation(
    request: Request, payload: UpdateValidationRequest
) -> Dict[str, Any]:
    """Single session: the updated summary, or the mapped error status.

    Bulk (`sessionIds`): each session is updated on its own, and per-session
    failures are reported in `failed` instead of aborting the rest.
    """
    machine = _require_state_machine(request)
    if payload.session_ids is None:
        session = machine.set_validation(
            payload.session_id,
            role=payload.role,
            actor=payload.actor,
            status=payload.status,
            approve=payload.approve,
        )
        return _summary(session).model_dump()

    updated: List[Dict[str, Any]] = []
    failed: List[Dict[str, Any]] = []
    for session_id in payload.targets():
        try:
            session = machine.set_validation(
                session_id,
                role=payload.role,
                actor=payload.actor,
                status=payload.status,
                approve=payload.approve,
            )
        except StudyPipelineError as exc:
            _, body = error_status(exc)
            failed.append({"sessionId": session_id, **body})
            continue
        updated.append(_summary(session).model_dump())

    if failed:
        logger.warning(
            "[API] Bulk validation by %s: %d updated, %d failed", payload.actor, len(updated), len(failed)
        )
    return {"success": not failed, "updated": updated, "failed": failed}


@router.post("/fallback/responses")
async def fallback_responses(request: Request, payload: FallbackResponsesRequest) -> Dict[str, Any]:
    """Insert-only path used when the main write endpoint is unreachable."""
    result = _append_rows(request, payload.table, payload.session_id, payload.responses)
    return result.model_dump()


@router.get("/stats")
async def stats(request: Request) -> Dict[str, Any]:
    machine = _require_state_machine(request)
    return aggregate_counts(machine.session_store.list_sessions())


# --------------------------------------------------------
# Endpoint: GET /healthz
# --------------------------------------------------------
@router.get("/healthz")
def health_check():
    """
    Simple health check endpoint for uptime monitoring.
    """
    return {"status": "ok"}
