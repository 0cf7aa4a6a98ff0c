"""
Score Aggregator - weighted exam score, predicted tier and unit feedback.

Features:
    - Objective score computed synchronously at submit time
    - Objective/free-response weighted blend (55% / 45% by default)
    - Configurable tier bands, validated monotonic and exhaustive over [0, 100]
    - Per-unit breakdown, strengths/weaknesses and templated recommendations
    - Projected tier range while free-response grading is still running
"""

import time
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from .content_store import ContentStore
from .errors import NotFound
from .models import (
    ExamAttempt, ExamStatus, FreeResponseAnswer, ObjectiveResponse,
    Recommendations, UnitPerformance,
)

logger = logging.getLogger(__name__)

DEFAULT_TIER_BANDS: Tuple[Tuple[float, int], ...] = (
    (75, 5),
    (60, 4),
    (45, 3),
    (35, 2),
    (0, 1),
)


class TierBands:
    """Ordered (threshold, tier) bands, highest threshold first."""

    def __init__(self, bands: Sequence[Tuple[float, int]] = DEFAULT_TIER_BANDS):
        bands = [(float(t), int(tier)) for t, tier in bands]
        if not bands:
            raise ValueError("at least one tier band is required")
        thresholds = [t for t, _ in bands]
        tiers = [tier for _, tier in bands]
        if thresholds != sorted(thresholds, reverse=True) or len(set(thresholds)) != len(thresholds):
            raise ValueError("tier thresholds must be strictly decreasing")
        if tiers != sorted(tiers, reverse=True) or len(set(tiers)) != len(tiers):
            raise ValueError("tiers must be strictly decreasing with their thresholds")
        if thresholds[-1] != 0 or thresholds[0] > 100:
            raise ValueError("tier bands must cover [0, 100]")
        self.bands = bands

    def band_index(self, percentage: float) -> int:
        """0 for the highest band."""
        percentage = max(0.0, min(100.0, percentage))
        for index, (threshold, _) in enumerate(self.bands):
            if percentage >= threshold:
                return index
        return len(self.bands) - 1

    def tier_for(self, percentage: float) -> int:
        return self.bands[self.band_index(percentage)][1]


class ScoreAggregator:
    """Combines objective and free-response results into the final exam result."""

    STRONG_THRESHOLD = 70
    WEAK_THRESHOLD = 60
    MIN_UNIT_RESPONSES = 2
    MAX_LISTED_UNITS = 3

    STRENGTH_PLACEHOLDER = "Completed all exam sections"
    WEAKNESS_PLACEHOLDER = "Keep practicing to maintain performance"

    # Assumed free-response outcomes for the projected tier range
    FREE_RESPONSE_SCENARIOS = (90, 75, 60, 45, 30)

    # Overall message per predicted tier
    OVERALL_MESSAGES = {
        5: "Excellent work! You're well-prepared for the exam.",
        4: "Strong foundation. Focus on weak areas to push into the top band.",
        3: "Good progress. More practice will help solidify your understanding.",
        2: "You're getting there. Focus on fundamentals and practice consistently.",
        1: "Focus on core concepts. Consider reviewing unit content before more practice.",
    }

    def __init__(self, content: ContentStore, objective_weight: float = 0.55,
                 tier_bands: Optional[TierBands] = None):
        if not 0 <= objective_weight <= 1:
            raise ValueError("objective_weight must be within [0, 1]")
        self.content = content
        self.objective_weight = objective_weight
        self.free_response_weight = 1 - objective_weight
        self.tier_bands = tier_bands or TierBands()

    # ==================== Scores ====================

    def objective_score(self, responses: Sequence[ObjectiveResponse]) -> Tuple[int, float]:
        """(correct count, percentage). Unanswered questions count as incorrect."""
        correct = sum(1 for r in responses if r.is_correct)
        percentage = correct / len(responses) * 100 if responses else 0.0
        return correct, percentage

    def free_response_score(self, answers: Sequence[FreeResponseAnswer]) -> Tuple[float, int, float]:
        """(earned points, max points, percentage) over every free-response answer."""
        earned = sum(a.score or 0 for a in answers)
        max_points = sum(a.max_points for a in answers)
        percentage = earned / max_points * 100 if max_points else 0.0
        return earned, max_points, percentage

    def blend(self, objective_percentage: float, free_response_percentage: float) -> float:
        """Weighted percentage; non-decreasing in both inputs."""
        return (self.objective_weight * objective_percentage
                + self.free_response_weight * free_response_percentage)

    def projected_tiers(self, objective_percentage: float) -> List[dict]:
        """Predicted tier under a few assumed free-response outcomes."""
        projections = []
        for scenario in self.FREE_RESPONSE_SCENARIOS:
            blended = self.blend(objective_percentage, scenario)
            projections.append({
                "free_response_percentage": scenario,
                "blended_percentage": round(blended, 2),
                "tier": self.tier_bands.tier_for(blended),
            })
        return projections

    # ==================== Unit Feedback ====================

    def unit_breakdown(self, responses: Sequence[ObjectiveResponse]) -> List[UnitPerformance]:
        """Per-unit objective performance, in unit order."""
        stats: Dict[str, UnitPerformance] = {}
        for response in responses:
            perf = stats.get(response.unit_id)
            if perf is None:
                try:
                    unit = self.content.get_unit(response.unit_id)
                    perf = UnitPerformance(response.unit_id, unit.name, unit.number)
                except NotFound:
                    perf = UnitPerformance(response.unit_id, "Unknown Unit", 0)
                stats[response.unit_id] = perf
            perf.total += 1
            if response.is_correct:
                perf.correct += 1

        return sorted(stats.values(), key=lambda u: self.content.unit_rank(u.unit_id))

    def _strong_units(self, breakdown: Sequence[UnitPerformance]) -> List[UnitPerformance]:
        ranked = sorted(breakdown, key=lambda u: (-u.percentage, self.content.unit_rank(u.unit_id)))
        return [
            u for u in ranked
            if u.percentage >= self.STRONG_THRESHOLD and u.total >= self.MIN_UNIT_RESPONSES
        ][:self.MAX_LISTED_UNITS]

    def _weak_units(self, breakdown: Sequence[UnitPerformance]) -> List[UnitPerformance]:
        ranked = sorted(breakdown, key=lambda u: (u.percentage, self.content.unit_rank(u.unit_id)))
        return [
            u for u in ranked
            if u.percentage < self.WEAK_THRESHOLD and u.total >= self.MIN_UNIT_RESPONSES
        ][:self.MAX_LISTED_UNITS]

    def strengths_and_weaknesses(self, breakdown: Sequence[UnitPerformance]) -> Tuple[List[str], List[str]]:
        strengths = [f"Strong in {u.unit_name} ({u.percentage:.0f}%)" for u in self._strong_units(breakdown)]
        weaknesses = [f"Needs work on {u.unit_name} ({u.percentage:.0f}%)" for u in self._weak_units(breakdown)]

        if not strengths:
            strengths.append(self.STRENGTH_PLACEHOLDER)
        if not weaknesses:
            weaknesses.append(self.WEAKNESS_PLACEHOLDER)
        return strengths, weaknesses

    def recommendations(self, blended_percentage: float,
                        breakdown: Sequence[UnitPerformance]) -> Recommendations:
        """Deterministic recommendations from the weak units and the score band."""
        tier = self.tier_bands.tier_for(blended_percentage)
        overall = self.OVERALL_MESSAGES[min(max(tier, 1), 5)]

        weak_units = self._weak_units(breakdown)
        weak_ids = [u.unit_id for u in weak_units]
        study_focus: List[str] = []
        for perf in weak_units:
            unit = self.content.units.get(perf.unit_id)
            focus = unit.focus if unit and unit.focus else f"Review: {perf.unit_name}"
            study_focus.append(focus)

            prerequisites = self.content.weak_prerequisites(perf.unit_id, weak_ids)
            if prerequisites:
                first = self.content.units[prerequisites[0]]
                hint = f"Start with {first.name} before {perf.unit_name}, it is a prerequisite you also missed"
                if hint not in study_focus:
                    study_focus.append(hint)

        if blended_percentage < 50:
            next_steps = [
                "Take more practice tests to identify specific weak topics",
                "Review course materials for units with low scores",
                "Practice free-response questions with a focus on complete answers",
                "Work through worked examples before timed practice",
            ]
        elif blended_percentage < 75:
            next_steps = [
                "Continue practicing free-response questions",
                "Review common solution patterns",
                "Take timed practice tests to improve speed",
                "Study the official scoring rubrics",
            ]
        else:
            next_steps = [
                "Take full-length practice exams under timed conditions",
                "Review rubrics to maximize free-response points",
                "Practice explaining your reasoning clearly",
                "Stay confident and maintain your preparation",
            ]

        return Recommendations(overall=overall, study_focus=study_focus, next_steps=next_steps)

    # ==================== Attempt Lifecycle ====================

    def score_objective(self, attempt: ExamAttempt) -> ExamAttempt:
        """Synchronous half: objective score and unit feedback, set at submission."""
        correct, percentage = self.objective_score(attempt.objective_responses)
        attempt.objective_score = correct
        attempt.objective_percentage = percentage
        attempt.unit_breakdown = self.unit_breakdown(attempt.objective_responses)
        attempt.strengths, attempt.weaknesses = self.strengths_and_weaknesses(attempt.unit_breakdown)
        return attempt

    def finalize(self, attempt: ExamAttempt, now: Optional[float] = None) -> ExamAttempt:
        """Blend in the free-response result, predict the tier and mark GRADED."""
        if attempt.objective_percentage is None:
            self.score_objective(attempt)

        earned, max_points, frq_percentage = self.free_response_score(attempt.free_response_answers)
        attempt.free_response_score = earned
        attempt.free_response_max = max_points
        attempt.free_response_percentage = frq_percentage

        blended = self.blend(attempt.objective_percentage, frq_percentage)
        attempt.blended_percentage = blended
        attempt.predicted_tier = self.tier_bands.tier_for(blended)
        attempt.recommendations = self.recommendations(blended, attempt.unit_breakdown)
        attempt.status = ExamStatus.GRADED
        attempt.graded_at = time.time() if now is None else now

        logger.info(
            "attempt %s graded: objective %d/%d (%.1f%%), free response %s/%d (%.1f%%), "
            "blended %.1f%% -> tier %d",
            attempt.attempt_id, attempt.objective_score, attempt.objective_total,
            attempt.objective_percentage, earned, max_points, frq_percentage,
            blended, attempt.predicted_tier,
        )
        return attempt
