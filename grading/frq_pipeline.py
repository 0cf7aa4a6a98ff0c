"""
FRQ Evaluation Pipeline - fan-out/fan-in grading of free-response answers.

Features:
    - Every part of every answer evaluated concurrently (asyncio.gather)
    - Per-call timeout; a failed part is zeroed and flagged for manual review
      without affecting its siblings
    - Empty parts short-circuit to zero with no remote call
    - Part scores from rubric lines minus capped penalties, question total
      capped at the question's max points
    - Markdown feedback per part
    - Idempotent: graded answers and graded attempts are left untouched

Answer lifecycle:
    UNGRADED -> ZERO_SCORED          (nothing submitted in any part)
    UNGRADED -> GRADING -> GRADED
"""

import asyncio
import logging
from typing import List, Optional

from core.content_store import ContentStore
from core.models import (
    AnswerStatus, ExamAttempt, ExamStatus, FreeResponseAnswer, PartResult, RubricPart,
)
from core.score_aggregator import ScoreAggregator
from .text_evaluator import EvaluationContext, PartEvaluation, TextEvaluator

logger = logging.getLogger(__name__)


def _points(value: float) -> str:
    return f"{value:g}"


class FRQEvaluationPipeline:
    """Grades the free-response half of an exam attempt."""

    NO_SUBMISSION = "No submission"
    EVALUATION_FAILED = "Automatic evaluation failed - requires manual review"
    MAX_PENALTIES = 3
    PENALTY_POINTS = 1

    def __init__(self, evaluator: TextEvaluator, content: ContentStore,
                 aggregator: Optional[ScoreAggregator] = None,
                 timeout_seconds: float = 60.0):
        self.evaluator = evaluator
        self.content = content
        self.aggregator = aggregator
        self.timeout_seconds = timeout_seconds

    # ==================== Part Level ====================

    def score_part(self, part: RubricPart, evaluation: PartEvaluation) -> float:
        """
        Points for one part, clamped to [0, part points].

        With rubric lines the score is recomputed from them (earned capped at
        possible) minus at most MAX_PENALTIES penalties; otherwise the
        evaluator's reported score is used.
        """
        if evaluation.rubric_scores:
            earned = 0.0
            for line in evaluation.rubric_scores:
                line_points = min(line.earned, line.possible) if line.possible > 0 else line.earned
                earned += max(0.0, line_points)
            deduction = min(len(evaluation.penalties), self.MAX_PENALTIES) * self.PENALTY_POINTS
            score = earned - deduction
        else:
            score = evaluation.score
        return max(0.0, min(float(part.points), score))

    def _empty_part(self, part: RubricPart) -> PartResult:
        return PartResult(
            label=part.label,
            score=0,
            max_score=part.points,
            feedback=self.NO_SUBMISSION,
            improvements=["Submit a solution to earn points"],
        )

    def _failed_part(self, part: RubricPart) -> PartResult:
        return PartResult(
            label=part.label,
            score=0,
            max_score=part.points,
            feedback=self.EVALUATION_FAILED,
            needs_review=True,
        )

    async def evaluate_part(self, attempt_id: str, question_id: str,
                            part: RubricPart, response: str) -> PartResult:
        """Grade one part. Never raises: failures become a manual-review placeholder."""
        if not response or not response.strip():
            return self._empty_part(part)

        context = EvaluationContext(
            attempt_id=attempt_id,
            question_id=question_id,
            part_label=part.label,
            prompt=part.prompt,
            response=response,
            max_points=part.points,
            rubric=part.rubric,
            scaffold=part.scaffold,
            sample_solution=part.sample_solution,
        )

        try:
            raw = await asyncio.wait_for(self.evaluator.evaluate(context), self.timeout_seconds)
            evaluation = raw if isinstance(raw, PartEvaluation) else PartEvaluation.model_validate(raw)
        except asyncio.TimeoutError:
            logger.warning("evaluation timed out after %ss (attempt %s, question %s, part %s)",
                           self.timeout_seconds, attempt_id, question_id, part.label)
            return self._failed_part(part)
        except Exception as e:  # EvaluationFailure, transport errors, malformed payloads
            logger.warning("evaluation failed (attempt %s, question %s, part %s): %s",
                           attempt_id, question_id, part.label, e)
            return self._failed_part(part)

        score = self.score_part(part, evaluation)
        logger.debug("part %s of %s scored %s/%d", part.label, question_id, _points(score), part.points)
        return PartResult(
            label=part.label,
            score=score,
            max_score=part.points,
            rubric_scores=[r.model_dump() for r in evaluation.rubric_scores],
            penalties=[p.model_dump() for p in evaluation.penalties[:self.MAX_PENALTIES]],
            feedback=evaluation.general_feedback,
            strengths=list(evaluation.strengths),
            improvements=list(evaluation.improvements),
            evaluated=True,
        )

    # ==================== Answer Level ====================

    def format_feedback(self, parts: List[PartResult]) -> str:
        """Markdown feedback, one section per part in part order."""
        sections = []
        for part in parts:
            lines = [f"## Part ({part.label}) - {_points(part.score)}/{part.max_score} points", ""]

            if part.rubric_scores:
                lines.append("### Rubric Breakdown")
                for line in part.rubric_scores:
                    lines.append(f"- **{line['criterion']}**: "
                                 f"{_points(line['earned'])}/{_points(line['possible'])} points")
                    lines.append(f"  {line['feedback']}")
                    lines.append("")

            if part.penalties:
                lines.append("### Penalties")
                for penalty in part.penalties:
                    lines.append(f"- {penalty['type']}: -{_points(penalty['points'])} point(s) - {penalty['reason']}")
                lines.append("")

            if part.feedback:
                lines.extend(["### Feedback", part.feedback, ""])

            if part.strengths:
                lines.append("### Strengths")
                lines.extend(f"- {s}" for s in part.strengths)
                lines.append("")

            if part.improvements:
                lines.append("### Areas for Improvement")
                lines.extend(f"- {i}" for i in part.improvements)
                lines.append("")

            sections.append("\n".join(lines) + "\n")
        return "\n---\n\n".join(sections)

    async def grade_answer(self, attempt_id: str, answer: FreeResponseAnswer) -> FreeResponseAnswer:
        """
        Grade one free-response answer in place.

        Returns the answer unchanged when it is already GRADED or ZERO_SCORED.
        """
        if answer.status.is_final:
            return answer

        question = self.content.get_question(answer.question_id)
        parts = question.evaluation_parts()

        if not answer.has_submission:
            answer.parts = [self._empty_part(p) for p in parts]
            answer.score = 0
            answer.feedback = self.NO_SUBMISSION
            answer.needs_review = False
            answer.status = AnswerStatus.ZERO_SCORED
            logger.info("question %s of attempt %s: nothing submitted, zero scored",
                        answer.number, attempt_id)
            return answer

        answer.status = AnswerStatus.GRADING

        def response_for(part: RubricPart) -> str:
            text = answer.response_for(part.label)
            if not text and len(parts) == 1:
                text = answer.raw_text
            return text

        results = await asyncio.gather(*(
            self.evaluate_part(attempt_id, answer.question_id, part, response_for(part))
            for part in parts
        ))

        answer.parts = list(results)
        answer.score = min(float(answer.max_points), sum(p.score for p in results))
        answer.needs_review = any(p.needs_review for p in results)
        answer.feedback = self.format_feedback(answer.parts)
        answer.status = AnswerStatus.GRADED

        logger.info("question %s of attempt %s graded: %s/%d%s",
                    answer.number, attempt_id, _points(answer.score), answer.max_points,
                    " (needs review)" if answer.needs_review else "")
        return answer

    # ==================== Attempt Level ====================

    async def grade_attempt(self, attempt: ExamAttempt) -> ExamAttempt:
        """
        Grade every pending answer concurrently, then finalize the attempt.

        A GRADED attempt is returned untouched.
        """
        if attempt.status == ExamStatus.GRADED:
            return attempt

        pending = [a for a in attempt.free_response_answers if not a.status.is_final]
        await asyncio.gather(*(self.grade_answer(attempt.attempt_id, a) for a in pending))

        if self.aggregator is not None:
            self.aggregator.finalize(attempt)
        return attempt
