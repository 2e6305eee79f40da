"""
Suspicion scoring for participant sessions.

score_session() is a pure function of a list of TimingEntry observations and
a SuspicionThresholds value: the same inputs always produce the same score
and the same ordered flags, so an audit can recompute a stored score from
the raw telemetry.

Each rule contributes fixed points when triggered. Flags carry the rule id
and the measured parameters; the display text is rendered from SUSPICION_RULES
at read time (render_flag / describe_flag), keyed by rule id.

Score bands (labels only; the score itself gates inclusion):
    0-19 Normal, 20-39 Low risk, 40-59 Medium risk, 60+ High risk
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from .models import SuspicionAssessment, SuspicionFlag, SuspicionThresholds, TimingEntry


MAX_SCORE = 100

PAGE_FAST = "page_fast"
FAST_ANSWERS_RATIO = "fast_answers_ratio"
AVG_ANSWER_FAST = "avg_answer_fast"
SLIDE_VIEW_FAST = "slide_view_fast"


def _seconds(ms: float) -> int:
    return int(round(ms / 1000.0))


@dataclass(frozen=True)
class SuspicionRule:
    id: str
    points: int
    summary: str
    reason: str
    render: Callable[[Dict[str, Any]], str]


SUSPICION_RULES: Dict[str, SuspicionRule] = {
    PAGE_FAST: SuspicionRule(
        id=PAGE_FAST,
        points=30,
        summary="Page completed faster than the minimum expected time",
        reason="Time on page is below the configured minimum for this section.",
        render=lambda p: (
            f"Page '{p['page']}' completed in {_seconds(p['duration_ms'])}s "
            f"(minimum expected: {_seconds(p['minimum_ms'])}s)"
        ),
    ),
    FAST_ANSWERS_RATIO: SuspicionRule(
        id=FAST_ANSWERS_RATIO,
        points=25,
        summary="More than 50% of answers were too fast",
        reason="A high share of answers were below the per-question minimum time.",
        render=lambda p: f"{int(round(p['ratio'] * 100))}% of answers were suspiciously fast",
    ),
    AVG_ANSWER_FAST: SuspicionRule(
        id=AVG_ANSWER_FAST,
        points=20,
        summary="Average answer time is far below the minimum",
        reason="Mean answer time is below the expected per-question time.",
        render=lambda p: f"Average answer time: {_seconds(p['average_ms'])}s (very fast)",
    ),
    SLIDE_VIEW_FAST: SuspicionRule(
        id=SLIDE_VIEW_FAST,
        points=25,
        summary="Average slide view time is too fast to read",
        reason="Slides were viewed for less than the minimum reading time on average.",
        render=lambda p: f"Average slide view time: {_seconds(p['average_ms'])}s (too fast to read)",
    ),
}


@dataclass(frozen=True)
class ScoreBand:
    low: int
    high: Optional[int]
    label: str
    note: str

    def contains(self, score: int) -> bool:
        return score >= self.low and (self.high is None or score <= self.high)


SUSPICION_SCORE_BANDS = (
    ScoreBand(0, 19, "Normal", "Valid data"),
    ScoreBand(20, 39, "Low risk", "Minor flags"),
    ScoreBand(40, 59, "Medium risk", "Review needed"),
    ScoreBand(60, None, "High risk", "Likely invalid"),
)


def score_band(score: int) -> ScoreBand:
    for band in SUSPICION_SCORE_BANDS:
        if band.contains(score):
            return band
    return SUSPICION_SCORE_BANDS[0]


def suspicion_requirements(thresholds: SuspicionThresholds = SuspicionThresholds()) -> List[str]:
    """Human-readable list of what a session must meet to score zero."""
    t = thresholds
    return [
        f"Demographics page time >= {_seconds(t.min_time_for_demographics_ms)}s",
        f"Pre-test page time >= {_seconds(t.min_time_for_pretest_ms)}s",
        f"Post-test page time >= {_seconds(t.min_time_for_posttest_ms)}s",
        (
            f"Learning page time >= "
            f"{_seconds(t.min_time_for_reading_slide_ms * t.min_learning_slides)}s "
            f"({t.min_learning_slides} slides x {_seconds(t.min_time_for_reading_slide_ms)}s)"
        ),
        f"Average slide view time >= {_seconds(t.min_time_for_reading_slide_ms)}s",
        (
            f"Fast answers (<{_seconds(t.min_time_per_question_ms)}s) "
            f"< {int(round(t.max_fast_answer_ratio * 100))}%"
        ),
        f"Average answer time >= {_seconds(t.min_average_answer_time_ms)}s",
    ]


SUSPICION_REQUIREMENTS = suspicion_requirements()


def _flag(rule_id: str, **params: Any) -> SuspicionFlag:
    return SuspicionFlag(
        rule_id=rule_id,
        points=SUSPICION_RULES[rule_id].points,
        params=tuple(sorted(params.items())),
    )


def _page_flags(entries: List[TimingEntry], thresholds: SuspicionThresholds) -> List[SuspicionFlag]:
    totals: Dict[str, float] = {}
    for entry in entries:
        if entry.kind == "page":
            totals[entry.item_id] = totals.get(entry.item_id, 0.0) + entry.duration_ms

    flags = []
    for page, minimum in thresholds.page_minimums().items():
        if page not in totals:
            continue
        duration = totals[page]
        if duration < minimum:
            flags.append(_flag(PAGE_FAST, page=page, duration_ms=duration, minimum_ms=minimum))
    return flags


def _answer_flags(entries: List[TimingEntry], thresholds: SuspicionThresholds) -> List[SuspicionFlag]:
    durations = [e.duration_ms for e in entries if e.kind == "answer"]
    if not durations:
        return []

    flags = []
    fast = sum(1 for d in durations if d < thresholds.min_time_per_question_ms)
    ratio = fast / len(durations)
    if ratio > thresholds.max_fast_answer_ratio:
        flags.append(_flag(FAST_ANSWERS_RATIO, ratio=ratio, fast=fast, total=len(durations)))

    total = sum(durations)
    if total > 0:
        average = total / len(durations)
        if average < thresholds.min_average_answer_time_ms:
            flags.append(_flag(AVG_ANSWER_FAST, average_ms=average))
    return flags


def _slide_flags(entries: List[TimingEntry], thresholds: SuspicionThresholds) -> List[SuspicionFlag]:
    durations = [e.duration_ms for e in entries if e.kind == "slide"]
    if not durations:
        return []
    average = sum(durations) / len(durations)
    if average < thresholds.min_time_for_reading_slide_ms:
        return [_flag(SLIDE_VIEW_FAST, average_ms=average, slides=len(durations))]
    return []


def score_session(
    entries: Iterable[TimingEntry],
    thresholds: SuspicionThresholds = SuspicionThresholds(),
) -> SuspicionAssessment:
    """Evaluate every rule against the telemetry and sum triggered points."""
    observed = [e for e in entries if e.duration_ms > 0]

    flags: List[SuspicionFlag] = []
    flags.extend(_page_flags(observed, thresholds))
    flags.extend(_answer_flags(observed, thresholds))
    flags.extend(_slide_flags(observed, thresholds))

    score = min(MAX_SCORE, sum(f.points for f in flags))
    return SuspicionAssessment(score=score, flags=flags)


def render_flag(flag: SuspicionFlag) -> str:
    rule = SUSPICION_RULES.get(flag.rule_id)
    if rule is None:
        return flag.rule_id
    return rule.render(flag.param_dict)


def describe_flag(flag: SuspicionFlag) -> Dict[str, str]:
    """Display payload for one flag: rendered text plus rule summary/reason."""
    rule = SUSPICION_RULES.get(flag.rule_id)
    if rule is None:
        return {"flag": flag.rule_id}
    return {
        "flag": rule.render(flag.param_dict),
        "summary": rule.summary,
        "reason": rule.reason,
    }
