"""
Grading module - Free-response evaluation.

Components:
    - text_evaluator: Text-evaluation collaborator (LLM-backed, JSON mode)
    - frq_pipeline: Per-part concurrent grading, aggregation and feedback
"""

from .text_evaluator import (
    EvaluationContext, TextEvaluator, LLMTextEvaluator,
    PartEvaluation, RubricScore, Penalty,
)
from .frq_pipeline import FRQEvaluationPipeline

__all__ = [
    "EvaluationContext",
    "TextEvaluator",
    "LLMTextEvaluator",
    "PartEvaluation",
    "RubricScore",
    "Penalty",
    "FRQEvaluationPipeline",
]
