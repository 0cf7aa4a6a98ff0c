"""
Difficulty Progression - streak-based EASY/MEDIUM/HARD state machine.

Rules (evaluated after the answer has been folded into the counters):
    - Fewer than 3 attempts: stay
    - Demote one level on a wrong streak, low mastery or low recent accuracy
      (demotion always wins over promotion)
    - Promote one level on a correct streak with high mastery and accuracy
    - Fast-track EASY -> MEDIUM on exceptional recent performance
    - Drop from HARD on sustained struggle
    - Otherwise stay

The same machine drives persistent per-unit records and the in-memory
state of mixed-unit practice sessions.
"""

import time
import logging
from typing import Optional
from dataclasses import dataclass

from .models import Difficulty, ProgressionState, RECENT_WINDOW
from .mastery import compute_mastery
from .spaced_review import ReviewSchedule, next_review, quality_from_response

logger = logging.getLogger(__name__)


@dataclass
class AnswerOutcome:
    """What one answer did to a progression state."""
    previous_difficulty: Difficulty
    new_difficulty: Difficulty
    transition: str  # "promote", "demote" or "stay"
    mastery: int
    recent_accuracy: int
    quality: int
    review: ReviewSchedule

    @property
    def changed(self) -> bool:
        return self.previous_difficulty != self.new_difficulty


class DifficultyProgression:
    """Decides the next served difficulty and mutates progression counters."""

    # Gates
    MIN_ATTEMPTS_FOR_CHANGE = 3
    MIN_ATTEMPTS_FOR_ADVANCE = 5

    # Demotion
    WRONG_STREAK_TO_DECREASE = 2
    MASTERY_TO_DECREASE = 50
    MIN_ATTEMPTS_FOR_MASTERY_DECREASE = 5
    RECENT_ACCURACY_TO_DECREASE = 40

    # Promotion
    CORRECT_STREAK_TO_ADVANCE = 3
    MASTERY_TO_ADVANCE = 70
    RECENT_ACCURACY_TO_ADVANCE = 70

    # Fast track out of EASY
    FAST_TRACK_RECENT_ACCURACY = 90
    FAST_TRACK_STREAK = 4

    # Safety valve out of HARD
    HARD_DROP_RECENT_ACCURACY = 55
    HARD_DROP_MIN_ATTEMPTS = 8

    # ==================== Transition Rule ====================

    def next_difficulty(self, current: Difficulty, consecutive_correct: int,
                        consecutive_wrong: int, mastery: int, total_attempts: int,
                        recent_accuracy: int) -> Difficulty:
        """Pure transition function. Never moves more than one level."""
        if total_attempts < self.MIN_ATTEMPTS_FOR_CHANGE:
            return current

        should_decrease = (
            consecutive_wrong >= self.WRONG_STREAK_TO_DECREASE
            or (mastery < self.MASTERY_TO_DECREASE
                and total_attempts >= self.MIN_ATTEMPTS_FOR_MASTERY_DECREASE)
            or (recent_accuracy < self.RECENT_ACCURACY_TO_DECREASE
                and total_attempts >= self.MIN_ATTEMPTS_FOR_CHANGE)
        )
        if should_decrease:
            return current.shifted(-1)

        should_advance = (
            consecutive_correct >= self.CORRECT_STREAK_TO_ADVANCE
            and mastery >= self.MASTERY_TO_ADVANCE
            and recent_accuracy >= self.RECENT_ACCURACY_TO_ADVANCE
            and total_attempts >= self.MIN_ATTEMPTS_FOR_ADVANCE
        )
        if should_advance:
            return current.shifted(1)

        if (current == Difficulty.EASY
                and recent_accuracy >= self.FAST_TRACK_RECENT_ACCURACY
                and total_attempts >= self.MIN_ATTEMPTS_FOR_ADVANCE
                and consecutive_correct >= self.FAST_TRACK_STREAK):
            return Difficulty.MEDIUM

        if (current == Difficulty.HARD
                and recent_accuracy < self.HARD_DROP_RECENT_ACCURACY
                and total_attempts >= self.HARD_DROP_MIN_ATTEMPTS):
            return Difficulty.MEDIUM

        return current

    # ==================== State Updates ====================

    def apply_answer(self, state: ProgressionState, is_correct: bool,
                     time_spent: Optional[float] = None,
                     now: Optional[float] = None) -> AnswerOutcome:
        """
        Fold one answer into a progression state (mutated in place).

        Updates streaks, counts, the trailing window, mastery, the review
        schedule, time averages and finally the difficulty tier.
        """
        now = time.time() if now is None else now
        previous = state.difficulty
        previous_average_time = state.average_time_per_question

        if is_correct:
            state.consecutive_correct += 1
            state.consecutive_wrong = 0
            state.correct_attempts += 1
        else:
            state.consecutive_wrong += 1
            state.consecutive_correct = 0
        state.total_attempts += 1

        state.recent_results.append(is_correct)
        del state.recent_results[:-RECENT_WINDOW]

        state.mastery = compute_mastery(
            state.mastery, state.correct_attempts, state.total_attempts, is_correct
        )
        recent_accuracy = state.recent_accuracy

        quality = quality_from_response(is_correct, time_spent, previous_average_time or None)
        review = next_review(state.interval_days, state.ease_factor, quality, now=now)
        state.interval_days = review.interval_days
        state.ease_factor = review.ease_factor
        state.next_review_at = review.review_at

        if time_spent:
            state.total_time_spent += time_spent
        state.average_time_per_question = state.total_time_spent / state.total_attempts
        state.last_practiced_at = now

        state.difficulty = self.next_difficulty(
            previous,
            state.consecutive_correct,
            state.consecutive_wrong,
            state.mastery,
            state.total_attempts,
            recent_accuracy,
        )

        if state.difficulty.rank > previous.rank:
            transition = "promote"
        elif state.difficulty.rank < previous.rank:
            transition = "demote"
        else:
            transition = "stay"

        logger.debug(
            "progression %s: %s -> %s (streak +%d/-%d, mastery %d, recent %d%%, attempts %d)",
            transition, previous.value, state.difficulty.value,
            state.consecutive_correct, state.consecutive_wrong,
            state.mastery, recent_accuracy, state.total_attempts,
        )

        return AnswerOutcome(
            previous_difficulty=previous,
            new_difficulty=state.difficulty,
            transition=transition,
            mastery=state.mastery,
            recent_accuracy=recent_accuracy,
            quality=quality,
            review=review,
        )

    def served_difficulty(self, state: Optional[ProgressionState],
                          now: Optional[float] = None) -> Difficulty:
        """
        Difficulty to serve next.

        New learners start at EASY. When a review is due the learner is
        served one level below the current tier.
        """
        if state is None:
            return Difficulty.EASY
        if state.is_review_due(now):
            return state.difficulty.shifted(-1)
        return state.difficulty
