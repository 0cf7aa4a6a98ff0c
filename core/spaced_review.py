"""
Spaced Review Scheduler - SM-2 style interval and ease updates.

Features:
    - Ease factor update from an answer-quality signal (0-5)
    - Interval growth 1 -> 6 -> interval * ease, reset to 1 on a lapse
    - Quality derived from correctness and response time vs. the learner's average
"""

import time
from typing import Optional
from dataclasses import dataclass

from .models import round_half_up

MIN_EASE_FACTOR = 1.3
MAX_EASE_FACTOR = 3.0
MIN_INTERVAL_DAYS = 1
MAX_INTERVAL_DAYS = 365
SECONDS_PER_DAY = 86400

# Response time ratio thresholds for quality
FAST_RATIO = 0.5
SLOW_RATIO = 1.5


@dataclass
class ReviewSchedule:
    interval_days: int
    ease_factor: float
    review_at: float  # Unix timestamp


def quality_from_response(is_correct: bool, time_spent: Optional[float] = None,
                          average_time: Optional[float] = None) -> int:
    """
    Map an answer to an SM-2 quality score.

    Incorrect -> 0. Correct -> 4, or 5 when answered in under half the
    learner's average time, or 3 when it took more than 1.5x the average.
    """
    if not is_correct:
        return 0

    if time_spent and average_time:
        ratio = time_spent / average_time
        if ratio < FAST_RATIO:
            return 5
        if ratio > SLOW_RATIO:
            return 3
    return 4


def next_review(interval_days: int, ease_factor: float, quality: int,
                now: Optional[float] = None) -> ReviewSchedule:
    """
    Compute the next review interval, ease factor and timestamp.

    Args:
        interval_days: Current interval (0 for a never-reviewed item)
        ease_factor: Current ease factor
        quality: Answer quality, 0-5 (clamped)
        now: Reference Unix timestamp, defaults to the current time

    Returns:
        ReviewSchedule with interval in [1, 365] and ease in [1.3, 3.0]
    """
    now = time.time() if now is None else now
    quality = max(0, min(5, int(quality)))
    lapse = 5 - quality

    ease = ease_factor + (0.1 - lapse * (0.08 + lapse * 0.02))
    ease = max(MIN_EASE_FACTOR, min(MAX_EASE_FACTOR, ease))

    if quality < 3:
        interval = 1
    elif interval_days <= 0:
        interval = 1
    elif interval_days == 1:
        interval = 6
    else:
        interval = round_half_up(interval_days * ease)

    interval = max(MIN_INTERVAL_DAYS, min(MAX_INTERVAL_DAYS, interval))

    return ReviewSchedule(
        interval_days=interval,
        ease_factor=ease,
        review_at=now + interval * SECONDS_PER_DAY,
    )
