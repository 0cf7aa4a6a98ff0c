"""
Models - Engine state and content types.

Features:
    - Difficulty tiers with a total order (EASY < MEDIUM < HARD)
    - Progression state shared by persistent records and practice sessions
    - Exam attempts with objective responses and free-response answers
    - Validated content types (questions, rubric parts, rubric lines)
"""

import math
import time
from enum import Enum
from typing import List, Dict, Optional, Tuple
from dataclasses import dataclass, field, asdict

from pydantic import BaseModel, ConfigDict, Field, model_validator


RECENT_WINDOW = 8  # Trailing answers used for recent accuracy
DEFAULT_EASE_FACTOR = 2.5


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative values (Python's round() is banker's)."""
    return int(math.floor(value + 0.5))


class Difficulty(str, Enum):
    EASY = "EASY"
    MEDIUM = "MEDIUM"
    HARD = "HARD"

    @property
    def rank(self) -> int:
        return list(Difficulty).index(self)

    def shifted(self, steps: int) -> "Difficulty":
        """Move up (positive) or down (negative), clamped to the tier range."""
        levels = list(Difficulty)
        index = max(0, min(len(levels) - 1, self.rank + steps))
        return levels[index]


# ==================== Progression ====================

@dataclass
class ProgressionState:
    """Difficulty, streak, mastery and review state for one scope."""
    difficulty: Difficulty = Difficulty.EASY
    consecutive_correct: int = 0
    consecutive_wrong: int = 0
    total_attempts: int = 0
    correct_attempts: int = 0
    mastery: int = 0  # 0-100
    ease_factor: float = DEFAULT_EASE_FACTOR
    interval_days: int = 0
    next_review_at: Optional[float] = None  # Unix timestamp
    recent_results: List[bool] = field(default_factory=list)
    total_time_spent: float = 0.0  # Seconds
    average_time_per_question: float = 0.0
    last_practiced_at: Optional[float] = None

    @property
    def recent_accuracy(self) -> int:
        """Percentage correct over the trailing window (0 when empty)."""
        if not self.recent_results:
            return 0
        correct = sum(1 for r in self.recent_results if r)
        return round_half_up(correct / len(self.recent_results) * 100)

    @property
    def accuracy(self) -> int:
        if self.total_attempts == 0:
            return 0
        return round_half_up(self.correct_attempts / self.total_attempts * 100)

    def is_review_due(self, now: Optional[float] = None) -> bool:
        if self.next_review_at is None:
            return False
        now = time.time() if now is None else now
        return now >= self.next_review_at

    def to_dict(self) -> dict:
        data = asdict(self)
        data["difficulty"] = self.difficulty.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ProgressionState":
        return cls(
            difficulty=Difficulty(data.get("difficulty", Difficulty.EASY.value)),
            consecutive_correct=data.get("consecutive_correct", 0),
            consecutive_wrong=data.get("consecutive_wrong", 0),
            total_attempts=data.get("total_attempts", 0),
            correct_attempts=data.get("correct_attempts", 0),
            mastery=data.get("mastery", 0),
            ease_factor=data.get("ease_factor", DEFAULT_EASE_FACTOR),
            interval_days=data.get("interval_days", 0),
            next_review_at=data.get("next_review_at"),
            recent_results=list(data.get("recent_results", []))[-RECENT_WINDOW:],
            total_time_spent=data.get("total_time_spent", 0.0),
            average_time_per_question=data.get("average_time_per_question", 0.0),
            last_practiced_at=data.get("last_practiced_at"),
        )


@dataclass(frozen=True)
class ProgressionKey:
    """Identity of a persistent progression record. topic_id None = unit level."""
    learner_id: str
    unit_id: str
    topic_id: Optional[str] = None


@dataclass
class ProgressionRecord:
    """Durable progression for one (learner, unit, topic) key."""
    key: ProgressionKey
    state: ProgressionState = field(default_factory=ProgressionState)

    def to_dict(self) -> dict:
        return {
            "learner_id": self.key.learner_id,
            "unit_id": self.key.unit_id,
            "topic_id": self.key.topic_id,
            "state": self.state.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ProgressionRecord":
        key = ProgressionKey(data["learner_id"], data["unit_id"], data.get("topic_id"))
        return cls(key=key, state=ProgressionState.from_dict(data.get("state", {})))


@dataclass
class SessionProgressionState:
    """In-memory progression for a mixed-unit practice session."""
    session_id: str
    state: ProgressionState = field(default_factory=ProgressionState)


@dataclass
class PracticeSession:
    """An ephemeral practice session."""
    session_id: str
    learner_id: str
    unit_id: Optional[str]  # None = mixed practice across all units
    topic_id: Optional[str] = None
    target_questions: int = 40
    answered_ids: List[str] = field(default_factory=list)
    total_questions: int = 0
    correct_answers: int = 0
    started_at: float = field(default_factory=time.time)
    ended_at: Optional[float] = None

    @property
    def is_mixed(self) -> bool:
        return self.unit_id is None

    @property
    def accuracy(self) -> float:
        if self.total_questions == 0:
            return 0.0
        return self.correct_answers / self.total_questions * 100


# ==================== Exam Attempts ====================

class ExamStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    GRADING = "GRADING"  # Objective score final, free response pending
    GRADED = "GRADED"


class AnswerStatus(str, Enum):
    UNGRADED = "UNGRADED"
    GRADING = "GRADING"
    GRADED = "GRADED"
    ZERO_SCORED = "ZERO_SCORED"

    @property
    def is_final(self) -> bool:
        return self in (AnswerStatus.GRADED, AnswerStatus.ZERO_SCORED)


@dataclass
class ObjectiveResponse:
    order_index: int
    question_id: str
    unit_id: str
    answer: Optional[str] = None
    is_correct: bool = False
    time_spent: Optional[float] = None
    flagged_for_review: bool = False


@dataclass
class PartResult:
    """Graded outcome for one free-response part."""
    label: str
    score: float
    max_score: int
    rubric_scores: List[dict] = field(default_factory=list)
    penalties: List[dict] = field(default_factory=list)
    feedback: str = ""
    strengths: List[str] = field(default_factory=list)
    improvements: List[str] = field(default_factory=list)
    needs_review: bool = False
    evaluated: bool = False  # True when a remote evaluation succeeded


@dataclass
class FreeResponseAnswer:
    number: int
    question_id: str
    category: str
    max_points: int
    raw_text: str = ""
    part_responses: Dict[str, str] = field(default_factory=dict)
    time_spent: Optional[float] = None
    status: AnswerStatus = AnswerStatus.UNGRADED
    score: Optional[float] = None
    parts: List[PartResult] = field(default_factory=list)
    feedback: str = ""
    needs_review: bool = False

    def response_for(self, label: str) -> str:
        return self.part_responses.get(label, "")

    @property
    def has_submission(self) -> bool:
        texts = [self.raw_text] + list(self.part_responses.values())
        return any(t and t.strip() for t in texts)


@dataclass
class UnitPerformance:
    unit_id: str
    unit_name: str
    unit_number: int
    correct: int = 0
    total: int = 0

    @property
    def percentage(self) -> float:
        return self.correct / self.total * 100 if self.total else 0.0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["percentage"] = self.percentage
        return data


@dataclass
class Recommendations:
    overall: str
    study_focus: List[str] = field(default_factory=list)
    next_steps: List[str] = field(default_factory=list)


@dataclass
class ExamAttempt:
    attempt_id: str
    learner_id: str
    attempt_number: int
    status: ExamStatus = ExamStatus.IN_PROGRESS
    objective_responses: List[ObjectiveResponse] = field(default_factory=list)
    free_response_answers: List[FreeResponseAnswer] = field(default_factory=list)
    objective_score: Optional[int] = None
    objective_percentage: Optional[float] = None
    free_response_score: Optional[float] = None
    free_response_max: int = 0
    free_response_percentage: Optional[float] = None
    blended_percentage: Optional[float] = None
    predicted_tier: Optional[int] = None
    unit_breakdown: List[UnitPerformance] = field(default_factory=list)
    strengths: List[str] = field(default_factory=list)
    weaknesses: List[str] = field(default_factory=list)
    recommendations: Optional[Recommendations] = None
    started_at: float = field(default_factory=time.time)
    submitted_at: Optional[float] = None
    graded_at: Optional[float] = None
    total_time_spent: Optional[float] = None

    @property
    def objective_total(self) -> int:
        return len(self.objective_responses)

    def objective_response(self, order_index: int) -> Optional[ObjectiveResponse]:
        for response in self.objective_responses:
            if response.order_index == order_index:
                return response
        return None

    def free_response(self, number: int) -> Optional[FreeResponseAnswer]:
        for answer in self.free_response_answers:
            if answer.number == number:
                return answer
        return None

    # ==================== Serialization ====================

    def to_dict(self) -> dict:
        """Serialize to plain JSON-compatible data (for Redis storage)."""
        data = asdict(self)
        data["status"] = self.status.value
        for answer in data["free_response_answers"]:
            answer["status"] = AnswerStatus(answer["status"]).value
        data["unit_breakdown"] = [u.to_dict() for u in self.unit_breakdown]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ExamAttempt":
        recommendations = data.get("recommendations")
        return cls(
            attempt_id=data["attempt_id"],
            learner_id=data["learner_id"],
            attempt_number=data.get("attempt_number", 1),
            status=ExamStatus(data.get("status", ExamStatus.IN_PROGRESS.value)),
            objective_responses=[
                ObjectiveResponse(**r) for r in data.get("objective_responses", [])
            ],
            free_response_answers=[
                FreeResponseAnswer(
                    number=a["number"],
                    question_id=a["question_id"],
                    category=a["category"],
                    max_points=a["max_points"],
                    raw_text=a.get("raw_text", ""),
                    part_responses=dict(a.get("part_responses", {})),
                    time_spent=a.get("time_spent"),
                    status=AnswerStatus(a.get("status", AnswerStatus.UNGRADED.value)),
                    score=a.get("score"),
                    parts=[PartResult(**p) for p in a.get("parts", [])],
                    feedback=a.get("feedback", ""),
                    needs_review=a.get("needs_review", False),
                )
                for a in data.get("free_response_answers", [])
            ],
            objective_score=data.get("objective_score"),
            objective_percentage=data.get("objective_percentage"),
            free_response_score=data.get("free_response_score"),
            free_response_max=data.get("free_response_max", 0),
            free_response_percentage=data.get("free_response_percentage"),
            blended_percentage=data.get("blended_percentage"),
            predicted_tier=data.get("predicted_tier"),
            unit_breakdown=[
                UnitPerformance(
                    unit_id=u["unit_id"],
                    unit_name=u["unit_name"],
                    unit_number=u["unit_number"],
                    correct=u.get("correct", 0),
                    total=u.get("total", 0),
                )
                for u in data.get("unit_breakdown", [])
            ],
            strengths=list(data.get("strengths", [])),
            weaknesses=list(data.get("weaknesses", [])),
            recommendations=Recommendations(**recommendations) if recommendations else None,
            started_at=data.get("started_at", 0.0),
            submitted_at=data.get("submitted_at"),
            graded_at=data.get("graded_at"),
            total_time_spent=data.get("total_time_spent"),
        )


# ==================== Content (validated at the store boundary) ====================

class QuestionKind(str, Enum):
    OBJECTIVE = "OBJECTIVE"
    FREE_RESPONSE = "FREE_RESPONSE"


class RubricLine(BaseModel):
    """One scoreable criterion."""
    model_config = ConfigDict(frozen=True)

    criterion: str
    points: float = Field(ge=0)


class RubricPart(BaseModel):
    """One lettered part of a free-response question."""
    model_config = ConfigDict(frozen=True)

    label: str
    points: int = Field(gt=0)
    prompt: str
    scaffold: Optional[str] = None
    sample_solution: Optional[str] = None
    rubric: Tuple[RubricLine, ...] = ()


class Question(BaseModel):
    """An approved question as served by the Content Store."""
    model_config = ConfigDict(frozen=True)

    id: str
    kind: QuestionKind = QuestionKind.OBJECTIVE
    unit_id: str
    topic_id: Optional[str] = None
    difficulty: Difficulty = Difficulty.MEDIUM
    approved: bool = True
    active: bool = True
    text: str = ""

    # Objective
    options: Tuple[str, ...] = ()
    correct_answer: Optional[str] = None
    explanation: Optional[str] = None

    # Free response
    category: Optional[str] = None
    prompt: Optional[str] = None
    scaffold: Optional[str] = None
    sample_solution: Optional[str] = None
    max_points: int = Field(default=9, gt=0)
    rubric: Tuple[RubricLine, ...] = ()
    parts: Tuple[RubricPart, ...] = ()

    @model_validator(mode="after")
    def _check_kind_fields(self) -> "Question":
        if self.kind == QuestionKind.OBJECTIVE and not self.correct_answer:
            raise ValueError(f"objective question {self.id} has no correct_answer")
        if self.kind == QuestionKind.FREE_RESPONSE and not self.category:
            raise ValueError(f"free-response question {self.id} has no category")
        return self

    @property
    def eligible(self) -> bool:
        return self.approved and self.active

    def is_correct(self, answer: Optional[str]) -> bool:
        if answer is None or self.correct_answer is None:
            return False
        return answer.strip().lower() == self.correct_answer.strip().lower()

    def evaluation_parts(self) -> List[RubricPart]:
        """Parts to grade; a non-decomposed question becomes one synthetic part."""
        if self.parts:
            return list(self.parts)
        return [RubricPart(
            label="A",
            points=self.max_points,
            prompt=self.prompt or self.text,
            scaffold=self.scaffold,
            sample_solution=self.sample_solution,
            rubric=self.rubric,
        )]
