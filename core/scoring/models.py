from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


TIMING_KINDS = ("slide", "page", "answer")


@dataclass(frozen=True)
class TimingEntry:
    """One client-side timing observation.

    kind:
      - "slide": time a learning slide was on screen
      - "page": time spent on a whole study page (item_id is the page name)
      - "answer": time from showing a question to answering it
    """

    kind: str
    item_id: str
    duration_ms: float
    mode: str = "page"
    title: Optional[str] = None
    started_at: Optional[str] = None
    ended_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimingEntry":
        """Accept both the snake_case form and the browser's camelCase log.

        The browser log records durations in seconds (durationSeconds) and
        names the item slideId.
        """
        if "duration_ms" in data:
            duration_ms = float(data["duration_ms"])
        elif "durationMs" in data:
            duration_ms = float(data["durationMs"])
        else:
            duration_ms = float(data.get("durationSeconds", 0)) * 1000.0

        return cls(
            kind=str(data.get("kind", "page")),
            item_id=str(data.get("item_id") or data.get("itemId") or data.get("slideId") or ""),
            duration_ms=duration_ms,
            mode=str(data.get("mode", "page")),
            title=data.get("title") or data.get("slideTitle"),
            started_at=data.get("started_at") or data.get("startedAt"),
            ended_at=data.get("ended_at") or data.get("endedAt"),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "kind": self.kind,
            "item_id": self.item_id,
            "duration_ms": self.duration_ms,
            "mode": self.mode,
        }
        if self.title is not None:
            out["title"] = self.title
        if self.started_at is not None:
            out["started_at"] = self.started_at
        if self.ended_at is not None:
            out["ended_at"] = self.ended_at
        return out


@dataclass(frozen=True)
class SuspicionThresholds:
    min_time_per_question_ms: int = 3000
    min_time_for_reading_slide_ms: int = 8000
    min_time_for_demographics_ms: int = 15000
    min_time_for_pretest_ms: int = 30000
    min_time_for_posttest_ms: int = 45000
    min_learning_slides: int = 3
    max_fast_answer_ratio: float = 0.5
    min_average_answer_time_ms: int = 1500

    def page_minimums(self) -> Dict[str, int]:
        """Minimum expected time per known page, in display order."""
        return {
            "demographics": self.min_time_for_demographics_ms,
            "pretest": self.min_time_for_pretest_ms,
            "posttest": self.min_time_for_posttest_ms,
            "learning": self.min_time_for_reading_slide_ms * self.min_learning_slides,
        }


@dataclass(frozen=True)
class SuspicionFlag:
    """Structured flag; human text is rendered from rule metadata on display."""

    rule_id: str
    points: int
    params: Tuple[Tuple[str, Any], ...] = ()

    @property
    def param_dict(self) -> Dict[str, Any]:
        return dict(self.params)

    def to_dict(self) -> Dict[str, Any]:
        return {"rule_id": self.rule_id, "points": self.points, "params": self.param_dict}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SuspicionFlag":
        params = data.get("params") or {}
        return cls(
            rule_id=str(data["rule_id"]),
            points=int(data["points"]),
            params=tuple(sorted(params.items())),
        )


@dataclass(frozen=True)
class SuspicionAssessment:
    score: int
    flags: List[SuspicionFlag] = field(default_factory=list)

    @property
    def needs_review(self) -> bool:
        return self.score > 0

    def to_dict(self) -> Dict[str, Any]:
        return {"score": self.score, "flags": [f.to_dict() for f in self.flags]}
