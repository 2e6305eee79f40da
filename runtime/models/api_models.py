"""
HTTP request/response models for the study server API.

Request bodies use the camelCase field names sent by the browser client
(`sessionId`, `preTestResponses`, ...). Size limits mirror what the write
endpoint has always enforced: session ids of 10-100 characters, answers of
at most 2000 characters and at most 200 rows per request.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, constr, model_validator

from .session_models import ResetReason, ResponseTable, StudyMode, ValidationStatus


MAX_ROWS_PER_REQUEST = 200
MAX_ANSWER_CHARS = 2000
MAX_DEMOGRAPHIC_CHARS = 500


def session_id_field():
    return Field(alias="sessionId", min_length=10, max_length=100)


class ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class AnswerRow(ApiModel):
    question_id: str = Field(alias="questionId", min_length=1, max_length=100)
    answer: str = Field(max_length=MAX_ANSWER_CHARS)


# ---------------------------------------------------------------------------
# save-study-data actions
# ---------------------------------------------------------------------------


class CreateSessionRequest(ApiModel):
    action: Literal["create_session"]
    mode: StudyMode


class SaveDemographicsRequest(ApiModel):
    action: Literal["save_demographics"]
    session_id: str = session_id_field()
    demographics: Dict[str, constr(max_length=MAX_DEMOGRAPHIC_CHARS)] = Field(max_length=MAX_ROWS_PER_REQUEST)

    def rows(self) -> List[AnswerRow]:
        """Demographics arrive as a mapping; each value is one answer row."""
        return [AnswerRow(question_id=k, answer=v) for k, v in self.demographics.items()]


class SavePreTestRequest(ApiModel):
    action: Literal["save_pre_test"]
    session_id: str = session_id_field()
    pre_test_responses: List[AnswerRow] = Field(
        alias="preTestResponses", max_length=MAX_ROWS_PER_REQUEST
    )


class SavePostTestRequest(ApiModel):
    action: Literal["save_post_test"]
    session_id: str = session_id_field()
    post_test_responses: List[AnswerRow] = Field(
        alias="postTestResponses", max_length=MAX_ROWS_PER_REQUEST
    )


class UpdateModeRequest(ApiModel):
    action: Literal["update_mode"]
    session_id: str = session_id_field()
    mode: StudyMode


class ResetSessionRequest(ApiModel):
    """`timeout` and `abandoned` end the session as "expired"; `mode_switch`
    and `user_request` end it as "reset"."""

    action: Literal["reset_session"]
    session_id: str = session_id_field()
    reason: ResetReason = ResetReason.MODE_SWITCH


class UpdateActivityRequest(ApiModel):
    action: Literal["update_activity"]
    session_id: str = session_id_field()


class WithdrawSessionRequest(ApiModel):
    action: Literal["withdraw_session"]
    session_id: str = session_id_field()


class ReportSuspiciousRequest(ApiModel):
    action: Literal["report_suspicious"]
    session_id: str = session_id_field()
    suspicion_score: int = Field(alias="suspicionScore", ge=0, le=100)
    suspicious_flags: List[Dict[str, Any]] = Field(
        default_factory=list, alias="suspiciousFlags", max_length=50
    )


STUDY_DATA_ACTIONS = {
    "create_session": CreateSessionRequest,
    "save_demographics": SaveDemographicsRequest,
    "save_pre_test": SavePreTestRequest,
    "save_post_test": SavePostTestRequest,
    "update_mode": UpdateModeRequest,
    "reset_session": ResetSessionRequest,
    "update_activity": UpdateActivityRequest,
    "withdraw_session": WithdrawSessionRequest,
    "report_suspicious": ReportSuspiciousRequest,
}


# ---------------------------------------------------------------------------
# Other endpoints
# ---------------------------------------------------------------------------


class CompleteSessionRequest(ApiModel):
    session_id: str = session_id_field()
    timing_entries: Optional[List[Dict[str, Any]]] = Field(
        default=None, alias="timingEntries", max_length=5000
    )


class UpdateValidationRequest(ApiModel):
    """
    role:
      - "reviewer": `status` must be "accepted" or "ignored"
      - "owner": `approve` confirms (true) or rejects (false) a pending decision

    Exactly one of `sessionId` or `sessionIds` (bulk, applied per session).
    """

    session_id: Optional[str] = Field(default=None, alias="sessionId", min_length=10, max_length=100)
    session_ids: Optional[List[constr(min_length=10, max_length=100)]] = Field(
        default=None, alias="sessionIds", min_length=1, max_length=MAX_ROWS_PER_REQUEST
    )
    role: Literal["reviewer", "owner"]
    actor: str = Field(min_length=1, max_length=100)
    status: Optional[ValidationStatus] = None
    approve: Optional[bool] = None

    @model_validator(mode="after")
    def _one_target(self) -> "UpdateValidationRequest":
        if (self.session_id is None) == (self.session_ids is None):
            raise ValueError("Provide exactly one of sessionId or sessionIds")
        return self

    def targets(self) -> List[str]:
        return list(self.session_ids) if self.session_ids is not None else [self.session_id]


class FallbackResponsesRequest(ApiModel):
    table: ResponseTable
    session_id: str = session_id_field()
    responses: List[AnswerRow] = Field(max_length=MAX_ROWS_PER_REQUEST)


class SessionSummary(BaseModel):
    """What the write endpoint returns about a session after a transition."""

    success: bool = True
    sessionId: str
    id: str
    status: str
    validationStatus: str
    mode: str
    suspicionScore: Optional[int] = None


class WriteResult(BaseModel):
    success: bool = True
    sessionId: str
    inserted: int = 0


class ErrorBody(BaseModel):
    error: str
    code: str
