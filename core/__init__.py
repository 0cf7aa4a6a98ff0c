"""
Core module - Adaptive progression, exam composition and scoring.

Components:
    - models: Progression state, practice sessions, exam attempts, validated content types
    - mastery: Accuracy/recency blend into a 0-100 mastery score
    - spaced_review: SM-2 style review scheduling
    - difficulty: EASY/MEDIUM/HARD progression state machine
    - question_selector: Difficulty-targeted sampling with fallback
    - content_store: Question bank and unit prerequisite graph
    - exam_composer: Stratified sampling of a full exam
    - score_aggregator: Weighted score, predicted tier and unit feedback
    - session_manager: In-memory practice sessions
"""

from .errors import (
    EngineError, NotFound, InsufficientPool, Shortfall,
    EvaluationFailure, InvalidState, ContentValidationError,
)
from .models import (
    Difficulty, ProgressionKey, ProgressionRecord, ProgressionState,
    PracticeSession, ExamAttempt, ExamStatus, AnswerStatus, Question, QuestionKind,
)
from .mastery import compute_mastery
from .spaced_review import ReviewSchedule, next_review, quality_from_response
from .difficulty import DifficultyProgression, AnswerOutcome
from .question_selector import QuestionSelector
from .content_store import ContentStore
from .exam_composer import ExamComposer, ExamBlueprint
from .score_aggregator import ScoreAggregator, TierBands
from .session_manager import SessionManager

__all__ = [
    "EngineError",
    "NotFound",
    "InsufficientPool",
    "Shortfall",
    "EvaluationFailure",
    "InvalidState",
    "ContentValidationError",
    "Difficulty",
    "ProgressionKey",
    "ProgressionRecord",
    "ProgressionState",
    "PracticeSession",
    "ExamAttempt",
    "ExamStatus",
    "AnswerStatus",
    "Question",
    "QuestionKind",
    "compute_mastery",
    "ReviewSchedule",
    "next_review",
    "quality_from_response",
    "DifficultyProgression",
    "AnswerOutcome",
    "QuestionSelector",
    "ContentStore",
    "ExamComposer",
    "ExamBlueprint",
    "ScoreAggregator",
    "TierBands",
    "SessionManager",
]
