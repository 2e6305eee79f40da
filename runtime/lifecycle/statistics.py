"""Which sessions count toward aggregate statistics.

A session is included only when it is completed and either
- its validation status is `accepted`, or
- it is still `unvalidated` and its suspicion score is zero (or was never
  computed because no telemetry arrived).

`reset` sessions are never completed, so they are excluded whatever their
validation field says; `ignored` sessions are always excluded.
"""

from typing import Dict, Iterable

from core.scoring import score_band

from ..models.session_models import LifecycleState, Session, StudyMode, ValidationStatus


LEGACY_BOTH_MODES = "both"


def is_included(session: Session) -> bool:
    if session.status != LifecycleState.COMPLETED:
        return False
    if session.validation_status == ValidationStatus.ACCEPTED:
        return True
    if session.validation_status == ValidationStatus.UNVALIDATED:
        return not session.suspicion_score
    return False


def needs_review(session: Session) -> bool:
    return (
        session.status == LifecycleState.COMPLETED
        and session.validation_status == ValidationStatus.UNVALIDATED
        and bool(session.suspicion_score)
    )


def effective_mode(session: Session) -> str:
    """Mode used for reporting.

    Older sessions may list both text and avatar in modes_used; those are
    reported as "both". Current write paths only ever store one mode.
    """
    modes = session.modes_used or [session.mode]
    if StudyMode.TEXT in modes and StudyMode.AVATAR in modes:
        return LEGACY_BOTH_MODES
    if StudyMode.AVATAR in modes:
        return StudyMode.AVATAR.value
    if StudyMode.VOICE in modes:
        return StudyMode.VOICE.value
    return StudyMode.TEXT.value


def aggregate_counts(sessions: Iterable[Session]) -> Dict[str, object]:
    by_status = {state.value: 0 for state in LifecycleState}
    by_mode = {m.value: 0 for m in StudyMode}
    by_mode[LEGACY_BOTH_MODES] = 0
    by_band: Dict[str, int] = {}
    total = included = review = 0

    for session in sessions:
        total += 1
        by_status[session.status.value] += 1
        if session.suspicion_score is not None and session.status == LifecycleState.COMPLETED:
            label = score_band(session.suspicion_score).label
            by_band[label] = by_band.get(label, 0) + 1
        if needs_review(session):
            review += 1
        if not is_included(session):
            continue
        included += 1
        by_mode[effective_mode(session)] += 1

    return {
        "total": total,
        "included": included,
        "excluded": total - included,
        "needs_review": review,
        "by_status": by_status,
        "included_by_mode": by_mode,
        "completed_by_band": by_band,
    }
