"""SessionStateMachine implementation.

Server-side authority over two independent axes of a session:

Lifecycle (one-way):
    active -> completed | withdrawn | expired | reset

Validation (only once lifecycle == completed):
    unvalidated -> pending_accepted | pending_ignored   (reviewer requests)
    pending_*   -> accepted | ignored                   (owner approves)
    pending_*   -> unvalidated                          (owner rejects)

Every transition reads the current record, checks the transition is legal,
and writes back conditionally on the state it read. Failures are raised as
SessionNotFoundError or InvalidTransitionError so callers can tell "start
over" apart from "already done / not allowed".
"""

import logging
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from core.scoring import SuspicionAssessment, SuspicionThresholds, TimingEntry, score_session
from exceptions.exceptions import (
    AlreadyCompletedError,
    InvalidTransitionError,
    PayloadValidationError,
    SessionNotFoundError,
    ValidationPermissionError,
)

from ..models.session_models import (
    LifecycleState,
    ResetReason,
    Session,
    StudyMode,
    ValidationStatus,
    utc_now_iso,
)
from ..store.session_store import SessionStore, StaleSessionError


logger = logging.getLogger(__name__)


class ReviewerRole(str, Enum):
    REVIEWER = "reviewer"
    OWNER = "owner"


_REQUEST_TARGETS = {
    ValidationStatus.ACCEPTED: ValidationStatus.PENDING_ACCEPTED,
    ValidationStatus.IGNORED: ValidationStatus.PENDING_IGNORED,
}

_APPROVAL_TARGETS = {
    ValidationStatus.PENDING_ACCEPTED: ValidationStatus.ACCEPTED,
    ValidationStatus.PENDING_IGNORED: ValidationStatus.IGNORED,
}


class SessionStateMachine:
    """Lifecycle and validation transitions for study sessions.

    Parameters
    ----------
    session_store:
        Store used to load sessions and to write them back conditionally.
    thresholds:
        Suspicion thresholds applied when completion carries timing data.
    clock:
        Returns an ISO-8601 timestamp; injected for deterministic tests.
    """

    def __init__(
        self,
        session_store: SessionStore,
        thresholds: SuspicionThresholds = SuspicionThresholds(),
        clock=utc_now_iso,
    ) -> None:
        self.session_store = session_store
        self.thresholds = thresholds
        self._clock = clock

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_session(self, mode: StudyMode) -> Session:
        session = self.session_store.create_session(StudyMode(mode))
        logger.info(
            "[SESSION] Created session_id=%s id=%s mode=%s",
            session.session_id,
            session.id,
            session.mode.value,
        )
        return session

    def get(self, session_id: str) -> Session:
        return self._require(session_id)

    def complete(
        self,
        session_id: str,
        timing_entries: Optional[Iterable[TimingEntry]] = None,
    ) -> Session:
        """active -> completed; a second completion raises AlreadyCompletedError."""
        session = self._require(session_id)
        if session.status == LifecycleState.COMPLETED:
            logger.info("[SESSION] Completion replayed for %s", session_id)
            raise AlreadyCompletedError(session_id)
        self._require_active(session, LifecycleState.COMPLETED.value)

        now = self._clock()
        session.status = LifecycleState.COMPLETED
        session.completed_at = now
        session.last_activity_at = now
        if timing_entries is not None:
            assessment = score_session(timing_entries, self.thresholds)
            self._apply_assessment(session, assessment)

        self._commit(session, LifecycleState.ACTIVE, LifecycleState.COMPLETED)
        logger.info(
            "[SESSION] Completed %s (suspicion_score=%s)", session_id, session.suspicion_score
        )
        return session

    def withdraw(self, session_id: str) -> Session:
        return self._terminate(session_id, LifecycleState.WITHDRAWN)

    def expire(self, session_id: str) -> Session:
        return self._terminate(session_id, LifecycleState.EXPIRED)

    def reset(self, session_id: str, reason: ResetReason = ResetReason.MODE_SWITCH) -> Session:
        """active -> reset, used for policy violations such as a mode switch."""
        return self._terminate(session_id, LifecycleState.RESET, reason=ResetReason(reason))

    def update_mode(self, session_id: str, mode: StudyMode) -> Session:
        """Replace the session mode; only allowed while the session is active.

        modes_used is overwritten with the single new mode, never appended.
        """
        session = self._require(session_id)
        self._require_active(session, "mode_update", details="mode is locked after the session ends")

        mode = StudyMode(mode)
        session.mode = mode
        session.modes_used = [mode]
        session.last_activity_at = self._clock()
        self._commit(session, LifecycleState.ACTIVE, LifecycleState.ACTIVE)
        return session

    def touch(self, session_id: str) -> Session:
        """Refresh last_activity_at; ignored once the session has ended."""
        session = self._require(session_id)
        if session.status.is_terminal:
            logger.debug("[SESSION] Ignoring activity ping for %s session %s", session.status.value, session_id)
            return session
        session.last_activity_at = self._clock()
        self._commit(session, LifecycleState.ACTIVE, LifecycleState.ACTIVE)
        return session

    def record_suspicion(self, session_id: str, assessment: SuspicionAssessment) -> Session:
        """Merge a client-side assessment: union of flags, highest score wins."""
        session = self._require(session_id)
        expected = session.status
        self._apply_assessment(session, assessment)
        session.last_activity_at = self._clock()
        self._commit(session, expected, expected)
        logger.info(
            "[SESSION] Suspicion recorded for %s: score=%s flags=%d",
            session_id,
            session.suspicion_score,
            len(session.suspicious_flags),
        )
        return session

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def set_validation(
        self,
        session_id: str,
        role: ReviewerRole,
        actor: str,
        status: Optional[ValidationStatus] = None,
        approve: Optional[bool] = None,
    ) -> Session:
        """Apply a reviewer request or an owner confirmation.

        A reviewer may only request `accepted` or `ignored`, which lands in
        the matching pending state. An owner confirms (approve=True) or
        rejects (approve=False) a pending decision made by someone else.
        """
        role = ReviewerRole(role)
        session = self._require(session_id)
        current = session.validation_status

        if session.status != LifecycleState.COMPLETED:
            raise InvalidTransitionError(
                session_id,
                current=session.status.value,
                target="validation",
                details="only completed sessions can be validated",
            )

        if role == ReviewerRole.REVIEWER:
            if status is None or ValidationStatus(status) not in _REQUEST_TARGETS:
                raise PayloadValidationError("status must be 'accepted' or 'ignored'")
            if current in (ValidationStatus.ACCEPTED, ValidationStatus.IGNORED):
                raise InvalidTransitionError(
                    session_id, current.value, ValidationStatus(status).value,
                    details="validation decision is already final",
                )
            target = _REQUEST_TARGETS[ValidationStatus(status)]
        else:
            if approve is None:
                raise ValidationPermissionError(
                    role.value, "owners confirm or reject a pending decision"
                )
            if not current.is_pending:
                raise InvalidTransitionError(
                    session_id, current.value, "confirmation",
                    details="no pending decision to confirm",
                )
            if session.validated_by == actor:
                raise ValidationPermissionError(
                    role.value, "a decision must be confirmed by a different reviewer"
                )
            target = _APPROVAL_TARGETS[current] if approve else ValidationStatus.UNVALIDATED

        session.validation_status = target
        session.validated_by = actor
        session.validated_at = self._clock()
        try:
            self.session_store.save_session(
                session,
                expected_status=LifecycleState.COMPLETED,
                expected_validation=current,
            )
        except StaleSessionError as exc:
            raise InvalidTransitionError(
                session_id, current.value, target.value, details=str(exc)
            ) from exc

        logger.info(
            "[SESSION] Validation for %s: %s -> %s by %s (%s)",
            session_id,
            current.value,
            target.value,
            actor,
            role.value,
        )
        return session

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require(self, session_id: str) -> Session:
        session = self.session_store.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _require_active(
        self,
        session: Session,
        target: str,
        details: Optional[str] = None,
    ) -> None:
        if session.status != LifecycleState.ACTIVE:
            raise InvalidTransitionError(
                session.session_id,
                current=session.status.value,
                target=target,
                details=details,
            )

    def _terminate(
        self,
        session_id: str,
        target: LifecycleState,
        reason: Optional[ResetReason] = None,
    ) -> Session:
        session = self._require(session_id)
        self._require_active(session, target.value)

        session.status = target
        session.last_activity_at = self._clock()
        if reason is not None:
            session.reset_reason = reason
        self._commit(session, LifecycleState.ACTIVE, target)
        logger.info(
            "[SESSION] %s -> %s%s",
            session_id,
            target.value,
            f" (reason={reason.value})" if reason is not None else "",
        )
        return session

    def _commit(
        self,
        session: Session,
        expected: LifecycleState,
        target: LifecycleState,
    ) -> None:
        try:
            self.session_store.save_session(session, expected_status=expected)
        except StaleSessionError as exc:
            if target == LifecycleState.COMPLETED and exc.actual == LifecycleState.COMPLETED.value:
                raise AlreadyCompletedError(session.session_id) from exc
            raise InvalidTransitionError(
                session.session_id, exc.actual, target.value, details="concurrent update"
            ) from exc

    @staticmethod
    def _apply_assessment(session: Session, assessment: SuspicionAssessment) -> None:
        merged: List[Dict[str, Any]] = list(session.suspicious_flags)
        for flag in assessment.flags:
            as_dict = flag.to_dict()
            if as_dict not in merged:
                merged.append(as_dict)
        session.suspicious_flags = merged
        previous = session.suspicion_score if session.suspicion_score is not None else 0
        session.suspicion_score = max(previous, assessment.score)
