"""
Mastery Calculator - blended 0-100 competence estimate.

    mastery = round(0.6 * overall_accuracy + 0.4 * recency)
    recency = alpha * (100 if correct else 0) + (1 - alpha) * prior_mastery

Pure and deterministic: identical inputs always give identical output.
"""

from .models import round_half_up

ALPHA = 0.25  # Smoothing factor of the recency EMA
ACCURACY_WEIGHT = 0.6
RECENCY_WEIGHT = 0.4


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def compute_mastery(prior_mastery: float, correct_attempts: int,
                    total_attempts: int, latest_is_correct: bool) -> int:
    """
    Blend historical accuracy with recency-weighted correctness.

    Args:
        prior_mastery: Mastery before this answer (0-100), seeds the EMA
        correct_attempts: Correct answers including this one
        total_attempts: All answers including this one
        latest_is_correct: Outcome of the answer just given

    Returns:
        Mastery in [0, 100]
    """
    if total_attempts <= 0:
        return 0

    prior = _clamp(prior_mastery, 0, 100)
    correct = _clamp(correct_attempts, 0, total_attempts)

    overall_accuracy = correct / total_attempts * 100
    recent_impact = 100 if latest_is_correct else 0
    recency = ALPHA * recent_impact + (1 - ALPHA) * prior

    blended = ACCURACY_WEIGHT * overall_accuracy + RECENCY_WEIGHT * recency
    return int(_clamp(round_half_up(blended), 0, 100))
