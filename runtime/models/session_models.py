"""
Session-related models for the study runtime.

These describe:
- a Session record with its two identifiers (durable `id`, client `session_id`)
- LifecycleState (ACTIVE, COMPLETED, WITHDRAWN, EXPIRED, RESET)
- ValidationStatus (UNVALIDATED, PENDING_*, ACCEPTED, IGNORED)
- ResponseRecord rows appended to the response tables
"""

from enum import Enum
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel, Field


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class StudyMode(str, Enum):
    TEXT = "text"
    AVATAR = "avatar"
    VOICE = "voice"


class LifecycleState(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    WITHDRAWN = "withdrawn"
    EXPIRED = "expired"
    RESET = "reset"

    @property
    def is_terminal(self) -> bool:
        return self is not LifecycleState.ACTIVE


class ValidationStatus(str, Enum):
    UNVALIDATED = "unvalidated"
    PENDING_ACCEPTED = "pending_accepted"
    PENDING_IGNORED = "pending_ignored"
    ACCEPTED = "accepted"
    IGNORED = "ignored"

    @property
    def is_pending(self) -> bool:
        return self in (ValidationStatus.PENDING_ACCEPTED, ValidationStatus.PENDING_IGNORED)


class ResetReason(str, Enum):
    MODE_SWITCH = "mode_switch"
    USER_REQUEST = "user_request"
    TIMEOUT = "timeout"
    ABANDONED = "abandoned"


class ResponseTable(str, Enum):
    DEMOGRAPHICS = "demographic_responses"
    PRE_TEST = "pre_test_responses"
    POST_TEST = "post_test_responses"


class Session(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    session_id: str = Field(default_factory=lambda: str(uuid4()))
    mode: StudyMode
    modes_used: List[StudyMode] = Field(default_factory=list)
    status: LifecycleState = LifecycleState.ACTIVE
    validation_status: ValidationStatus = ValidationStatus.UNVALIDATED
    suspicion_score: Optional[int] = None
    suspicious_flags: List[Dict[str, Any]] = Field(default_factory=list)
    reset_reason: Optional[ResetReason] = None
    validated_by: Optional[str] = None
    validated_at: Optional[str] = None
    created_at: str = Field(default_factory=utc_now_iso)
    last_activity_at: str = Field(default_factory=utc_now_iso)
    completed_at: Optional[str] = None


class ResponseRecord(BaseModel):
    session_id: str  # durable Session.id
    question_id: str
    answer: str
    created_at: str = Field(default_factory=utc_now_iso)
