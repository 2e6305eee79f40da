import pytest

from core.scoring import SuspicionAssessment, SuspicionFlag, TimingEntry
from exceptions.exceptions import (
    AlreadyCompletedError,
    InvalidTransitionError,
    PayloadValidationError,
    SessionNotFoundError,
    ValidationPermissionError,
)
from runtime.lifecycle.state_machine import ReviewerRole, SessionStateMachine
from runtime.models.session_models import (
    LifecycleState,
    ResetReason,
    StudyMode,
    ValidationStatus,
)
from runtime.store.session_store import SessionStore, StaleSessionError


def test_create_session_assigns_both_ids(state_machine):
    session = state_machine.create_session(StudyMode.TEXT)

    assert session.status == LifecycleState.ACTIVE
    assert session.id != session.session_id
    assert state_machine.get(session.id).session_id == session.session_id
    assert session.modes_used == [StudyMode.TEXT]


def test_complete_is_idempotent_and_keeps_first_timestamp(state_machine):
    session = state_machine.create_session(StudyMode.AVATAR)

    completed = state_machine.complete(session.session_id)
    first_completed_at = completed.completed_at

    with pytest.raises(AlreadyCompletedError):
        state_machine.complete(session.session_id)

    stored = state_machine.get(session.session_id)
    assert stored.status == LifecycleState.COMPLETED
    assert stored.completed_at == first_completed_at


def test_already_completed_is_an_invalid_transition(state_machine):
    session = state_machine.create_session(StudyMode.TEXT)
    state_machine.complete(session.session_id)

    with pytest.raises(InvalidTransitionError):
        state_machine.complete(session.session_id)


@pytest.mark.parametrize("terminate", ["withdraw", "expire", "reset"])
def test_terminal_states_cannot_be_completed(state_machine, terminate):
    session = state_machine.create_session(StudyMode.TEXT)
    getattr(state_machine, terminate)(session.session_id)

    with pytest.raises(InvalidTransitionError) as excinfo:
        state_machine.complete(session.session_id)
    assert not isinstance(excinfo.value, AlreadyCompletedError)


def test_completed_session_cannot_be_withdrawn(state_machine):
    session = state_machine.create_session(StudyMode.TEXT)
    state_machine.complete(session.session_id)

    with pytest.raises(InvalidTransitionError):
        state_machine.withdraw(session.session_id)


def test_unknown_session_is_not_found(state_machine):
    with pytest.raises(SessionNotFoundError):
        state_machine.complete("does-not-exist")
    with pytest.raises(SessionNotFoundError):
        state_machine.update_mode("does-not-exist", StudyMode.TEXT)


def test_reset_records_reason(state_machine):
    session = state_machine.create_session(StudyMode.TEXT)
    reset = state_machine.reset(session.session_id, ResetReason.USER_REQUEST)

    assert reset.status == LifecycleState.RESET
    assert reset.reset_reason == ResetReason.USER_REQUEST


def test_update_mode_replaces_modes_used(state_machine):
    session = state_machine.create_session(StudyMode.TEXT)

    updated = state_machine.update_mode(session.session_id, StudyMode.VOICE)

    assert updated.mode == StudyMode.VOICE
    assert updated.modes_used == [StudyMode.VOICE]


def test_update_mode_rejected_after_completion(state_machine):
    session = state_machine.create_session(StudyMode.TEXT)
    state_machine.complete(session.session_id)

    with pytest.raises(InvalidTransitionError):
        state_machine.update_mode(session.session_id, StudyMode.AVATAR)


def test_touch_is_ignored_on_terminal_sessions(state_machine):
    session = state_machine.create_session(StudyMode.TEXT)
    withdrawn = state_machine.withdraw(session.session_id)

    touched = state_machine.touch(session.session_id)

    assert touched.status == LifecycleState.WITHDRAWN
    assert touched.last_activity_at == withdrawn.last_activity_at


def test_completion_with_timing_attaches_score(state_machine):
    session = state_machine.create_session(StudyMode.TEXT)
    entries = [TimingEntry(kind="page", item_id="pretest", duration_ms=5_000)]

    completed = state_machine.complete(session.session_id, entries)

    assert completed.suspicion_score == 30
    assert completed.suspicious_flags[0]["rule_id"] == "page_fast"


def test_record_suspicion_merges_flags_and_keeps_max(state_machine):
    session = state_machine.create_session(StudyMode.TEXT)
    flag_a = SuspicionFlag(rule_id="slide_view_fast", points=25, params=(("average_ms", 2000.0),))
    flag_b = SuspicionFlag(rule_id="avg_answer_fast", points=20, params=(("average_ms", 900.0),))

    state_machine.record_suspicion(session.session_id, SuspicionAssessment(45, [flag_a, flag_b]))
    merged = state_machine.record_suspicion(session.session_id, SuspicionAssessment(25, [flag_a]))

    assert merged.suspicion_score == 45
    assert len(merged.suspicious_flags) == 2


def _completed(state_machine):
    session = state_machine.create_session(StudyMode.TEXT)
    state_machine.complete(session.session_id)
    return session.session_id


def test_reviewer_request_lands_in_pending(state_machine):
    sid = _completed(state_machine)

    session = state_machine.set_validation(sid, ReviewerRole.REVIEWER, "alice", status=ValidationStatus.ACCEPTED)

    assert session.validation_status == ValidationStatus.PENDING_ACCEPTED
    assert session.validated_by == "alice"


def test_owner_confirmation_must_come_from_someone_else(state_machine):
    sid = _completed(state_machine)
    state_machine.set_validation(sid, ReviewerRole.REVIEWER, "alice", status=ValidationStatus.IGNORED)

    with pytest.raises(ValidationPermissionError):
        state_machine.set_validation(sid, ReviewerRole.OWNER, "alice", approve=True)

    session = state_machine.set_validation(sid, ReviewerRole.OWNER, "owen", approve=True)
    assert session.validation_status == ValidationStatus.IGNORED


def test_owner_rejection_returns_to_unvalidated(state_machine):
    sid = _completed(state_machine)
    state_machine.set_validation(sid, ReviewerRole.REVIEWER, "alice", status=ValidationStatus.ACCEPTED)

    session = state_machine.set_validation(sid, ReviewerRole.OWNER, "owen", approve=False)

    assert session.validation_status == ValidationStatus.UNVALIDATED


def test_reviewer_cannot_request_a_pending_status_directly(state_machine):
    sid = _completed(state_machine)
    with pytest.raises(PayloadValidationError):
        state_machine.set_validation(sid, ReviewerRole.REVIEWER, "alice", status=ValidationStatus.PENDING_ACCEPTED)


def test_final_decision_cannot_be_re_requested(state_machine):
    sid = _completed(state_machine)
    state_machine.set_validation(sid, ReviewerRole.REVIEWER, "alice", status=ValidationStatus.ACCEPTED)
    state_machine.set_validation(sid, ReviewerRole.OWNER, "owen", approve=True)

    with pytest.raises(InvalidTransitionError):
        state_machine.set_validation(sid, ReviewerRole.REVIEWER, "bob", status=ValidationStatus.IGNORED)


def test_owner_needs_a_pending_decision(state_machine):
    sid = _completed(state_machine)
    with pytest.raises(InvalidTransitionError):
        state_machine.set_validation(sid, ReviewerRole.OWNER, "owen", approve=True)


def test_validation_requires_completed_session(state_machine):
    session = state_machine.create_session(StudyMode.TEXT)
    with pytest.raises(InvalidTransitionError):
        state_machine.set_validation(
            session.session_id, ReviewerRole.REVIEWER, "alice", status=ValidationStatus.ACCEPTED
        )


def test_stale_write_is_rejected(session_store, state_machine):
    session = state_machine.create_session(StudyMode.TEXT)
    stale_copy = session_store.get_session(session.session_id)
    state_machine.withdraw(session.session_id)

    stale_copy.status = LifecycleState.COMPLETED
    with pytest.raises(StaleSessionError) as excinfo:
        session_store.save_session(stale_copy, expected_status=LifecycleState.ACTIVE)
    assert excinfo.value.actual == "withdrawn"
    assert session_store.get_session(session.session_id).status == LifecycleState.WITHDRAWN


def test_sessions_reload_from_disk(tmp_path):
    first = SessionStateMachine(SessionStore(data_dir=str(tmp_path)))
    session = first.create_session(StudyMode.VOICE)
    first.complete(session.session_id)

    reloaded = SessionStore(data_dir=str(tmp_path)).get_session(session.id)
    assert reloaded is not None
    assert reloaded.status == LifecycleState.COMPLETED
    assert reloaded.mode == StudyMode.VOICE
