"""
Timing-based suspicion scoring.

Split into:
- models: TimingEntry, SuspicionThresholds, SuspicionFlag, SuspicionAssessment
- suspicion: rules, score_session(), score bands and flag rendering
"""

from .models import SuspicionAssessment, SuspicionFlag, SuspicionThresholds, TimingEntry
from .suspicion import (
    SUSPICION_REQUIREMENTS,
    SUSPICION_RULES,
    SUSPICION_SCORE_BANDS,
    describe_flag,
    render_flag,
    score_band,
    score_session,
)

__all__ = [
    "SUSPICION_REQUIREMENTS",
    "SUSPICION_RULES",
    "SUSPICION_SCORE_BANDS",
    "SuspicionAssessment",
    "SuspicionFlag",
    "SuspicionThresholds",
    "TimingEntry",
    "describe_flag",
    "render_flag",
    "score_band",
    "score_session",
]
