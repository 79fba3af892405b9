from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from enum import Enum
import time
from typing import Any

from codepair.errors import ValidationError


SUPPORTED_LANGUAGES: tuple[str, ...] = ("javascript", "python", "java", "cpp")
DEFAULT_LANGUAGE = SUPPORTED_LANGUAGES[0]


def now_ms() -> int:
    return int(time.time() * 1000)


class SessionStatus(str, Enum):
    SCHEDULED = "scheduled"
    LIVE = "live"
    COMPLETED = "completed"
    MISSED = "missed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.MISSED)


ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.SCHEDULED: frozenset({SessionStatus.LIVE, SessionStatus.MISSED}),
    SessionStatus.LIVE: frozenset({SessionStatus.COMPLETED}),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.MISSED: frozenset(),
}


class InterviewResult(str, Enum):
    PASS = "pass"
    FAIL = "fail"


def parse_status(value: Any) -> SessionStatus:
    try:
        return SessionStatus(str(value or "").strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown session status: {value}", field="status")


def parse_result(value: Any) -> InterviewResult:
    try:
        return InterviewResult(str(value or "").strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown interview result: {value}", field="result")


def parse_language(value: Any) -> str:
    language = str(value or "").strip().lower()
    if language not in SUPPORTED_LANGUAGES:
        raise ValidationError(f"Unsupported language: {value}", field="language")
    return language


def _string_list(value: Any) -> list[str] | None:
    if value is None:
        return None
    items = [str(item).strip() for item in value if str(item or "").strip()]
    return items or None


@dataclass
class Review:
    rating: int
    feedback: str
    overall_assessment: str
    strengths: list[str] | None = None
    areas_for_improvement: list[str] | None = None
    recommended_for_next_round: bool | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "Review":
        if not isinstance(data, dict):
            raise ValidationError("Review must be an object", field="review")
        try:
            rating = int(data.get("rating"))
        except (TypeError, ValueError):
            raise ValidationError("Rating must be an integer between 1 and 5", field="rating")
        if rating < 1 or rating > 5:
            raise ValidationError("Rating must be an integer between 1 and 5", field="rating")

        feedback = str(data.get("feedback") or "").strip()
        if not feedback:
            raise ValidationError("Feedback is required", field="feedback")
        overall = str(data.get("overall_assessment") or "").strip()
        if not overall:
            raise ValidationError("Overall assessment is required", field="overall_assessment")

        recommended = data.get("recommended_for_next_round")
        return cls(
            rating=rating,
            feedback=feedback,
            overall_assessment=overall,
            strengths=_string_list(data.get("strengths")),
            areas_for_improvement=_string_list(data.get("areas_for_improvement")),
            recommended_for_next_round=None if recommended is None else bool(recommended),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Session:
    """One scheduled or live interview and its shared editor state."""

    id: str
    title: str
    start_time: int
    stream_call_id: str
    candidate_id: str
    interviewer_ids: list[str]
    status: SessionStatus = SessionStatus.SCHEDULED
    description: str | None = None
    end_time: int | None = None
    result: InterviewResult | None = None
    review: Review | None = None
    reviewed_by: str | None = None
    reviewed_at: int | None = None
    current_question_id: str | None = None
    current_code: str = ""
    current_language: str = DEFAULT_LANGUAGE
    revision: int = 0
    created_at: int = field(default_factory=now_ms)

    def is_interviewer(self, user_id: str | None) -> bool:
        return bool(user_id) and user_id in self.interviewer_ids

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["result"] = self.result.value if self.result else None
        data["review"] = self.review.to_dict() if self.review else None
        data["interviewer_ids"] = list(self.interviewer_ids)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in dict(data or {}).items() if key in known}
        values["status"] = parse_status(values.get("status") or SessionStatus.SCHEDULED.value)
        if values.get("result"):
            values["result"] = parse_result(values["result"])
        if isinstance(values.get("review"), dict):
            values["review"] = Review(**values["review"])
        values["interviewer_ids"] = list(values.get("interviewer_ids") or [])
        return cls(**values)


# Fields that callers may change through SessionStateStore.patch().
PATCHABLE_SESSION_FIELDS = frozenset({
    "title",
    "description",
    "start_time",
    "end_time",
    "status",
    "candidate_id",
    "interviewer_ids",
    "result",
    "review",
    "reviewed_by",
    "reviewed_at",
    "current_question_id",
    "current_code",
    "current_language",
})


@dataclass
class QuestionExample:
    input: str
    output: str
    explanation: str | None = None


@dataclass
class Question:
    id: str
    title: str
    description: str
    examples: list[QuestionExample]
    starter_code: dict[str, str]
    created_by: str
    constraints: list[str] | None = None
    is_default: bool = False
    created_at: int = field(default_factory=now_ms)

    def starter_for(self, language: str) -> str:
        return str(self.starter_code.get(language) or "")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Question":
        values = dict(data or {})
        values["examples"] = [
            item if isinstance(item, QuestionExample) else QuestionExample(**item)
            for item in values.get("examples") or []
        ]
        values["starter_code"] = dict(values.get("starter_code") or {})
        return cls(**values)


def validate_starter_code(starter_code: Any) -> dict[str, str]:
    if not isinstance(starter_code, dict):
        raise ValidationError("Starter code must map every supported language", field="starter_code")
    missing = [language for language in SUPPORTED_LANGUAGES if language not in starter_code]
    if missing:
        raise ValidationError(
            f"Starter code missing languages: {', '.join(missing)}",
            field="starter_code",
        )
    return {language: str(starter_code[language] or "") for language in SUPPORTED_LANGUAGES}
