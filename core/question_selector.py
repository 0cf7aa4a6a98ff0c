"""
Question Selector - difficulty-targeted sampling with graceful fallback.

Selection order:
    1. Unanswered questions at the target difficulty
    2. One level down, then one level up
    3. Anything left in the pool
Returns None once the pool is exhausted (the session is complete).
"""

import random
import logging
from typing import Iterable, List, Optional, Sequence

from .models import Difficulty, Question

logger = logging.getLogger(__name__)


class QuestionSelector:
    """Uniform random selection from an eligible pool, seeded for reproducibility."""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def fallback_order(self, target: Difficulty) -> List[Difficulty]:
        """Target first, then the adjacent tiers (down before up)."""
        order = [target]
        for step in (-1, 1):
            neighbour = target.shifted(step)
            if neighbour not in order:
                order.append(neighbour)
        return order

    def select(self, target: Difficulty, pool: Sequence[Question],
               answered_ids: Iterable[str] = ()) -> Optional[Question]:
        """
        Pick the next question.

        Args:
            target: Difficulty the learner should be served
            pool: Eligible questions for the scope (may include answered ones)
            answered_ids: Question ids already answered in this session

        Returns:
            A question never present in `answered_ids`, or None when none is left
        """
        answered = set(answered_ids)
        available = [q for q in pool if q.id not in answered]

        if not available:
            logger.debug("pool exhausted (%d answered)", len(answered))
            return None

        for difficulty in self.fallback_order(target):
            candidates = [q for q in available if q.difficulty == difficulty]
            if candidates:
                if difficulty != target:
                    logger.debug("no %s questions left, falling back to %s",
                                 target.value, difficulty.value)
                return self.rng.choice(candidates)

        return self.rng.choice(available)
