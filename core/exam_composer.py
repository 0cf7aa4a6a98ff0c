"""
Exam Composer - stratified random sampling of one exam's question set.

Features:
    - Objective questions drawn per unit from a static count table,
      without replacement, then shuffled across units
    - Exactly one free-response question per required category
    - All-or-nothing: every shortfall is reported before anything is persisted
"""

import random
import logging
from typing import Dict, List, Optional, Sequence
from dataclasses import dataclass

from .content_store import ContentStore
from .errors import InsufficientPool, Shortfall
from .models import Question, QuestionKind

logger = logging.getLogger(__name__)

# Approximate exam weighting per unit (42 objective questions)
DEFAULT_UNIT_DISTRIBUTION = {
    "unit-1": 9,
    "unit-2": 13,
    "unit-3": 6,
    "unit-4": 14,
}

DEFAULT_FRQ_CATEGORIES = ("METHODS_CONTROL", "CLASSES", "ARRAYLIST", "TWO_D_ARRAY")


@dataclass
class ExamBlueprint:
    """The drawn question set of one exam."""
    objective_questions: List[Question]
    free_response_questions: List[Question]

    @property
    def free_response_max_points(self) -> int:
        return sum(q.max_points for q in self.free_response_questions)


class ExamComposer:
    """Draws a full exam from the Content Store."""

    def __init__(self, content: ContentStore,
                 unit_distribution: Optional[Dict[str, int]] = None,
                 frq_categories: Optional[Sequence[str]] = None,
                 rng: Optional[random.Random] = None):
        self.content = content
        self.unit_distribution = dict(unit_distribution or DEFAULT_UNIT_DISTRIBUTION)
        self.frq_categories = list(frq_categories or DEFAULT_FRQ_CATEGORIES)
        self.rng = rng or random.Random()

    @property
    def objective_count(self) -> int:
        return sum(self.unit_distribution.values())

    def compose(self) -> ExamBlueprint:
        """
        Draw one exam.

        Raises:
            InsufficientPool: naming every unit or category that cannot be filled
        """
        shortfalls: List[Shortfall] = []
        unit_pools: Dict[str, List[Question]] = {}
        category_pools: Dict[str, List[Question]] = {}

        # Check every stratum before drawing anything
        for unit_id, count in self.unit_distribution.items():
            pool = self.content.list_eligible_questions(unit_id=unit_id, kind=QuestionKind.OBJECTIVE)
            if len(pool) < count:
                shortfalls.append(Shortfall(f"unit:{unit_id}", count, len(pool)))
            unit_pools[unit_id] = pool

        for category in self.frq_categories:
            pool = self.content.list_free_response_questions(category)
            if not pool:
                shortfalls.append(Shortfall(f"category:{category}", 1, 0))
            category_pools[category] = pool

        if shortfalls:
            logger.warning("cannot compose exam: %s",
                           ", ".join(f"{s.stratum} -{s.missing}" for s in shortfalls))
            raise InsufficientPool(shortfalls)

        objective: List[Question] = []
        for unit_id, count in self.unit_distribution.items():
            objective.extend(self.rng.sample(unit_pools[unit_id], count))
        self.rng.shuffle(objective)

        free_response = [self.rng.choice(category_pools[c]) for c in self.frq_categories]

        logger.info("composed exam: %d objective, %d free response",
                    len(objective), len(free_response))
        return ExamBlueprint(objective_questions=objective, free_response_questions=free_response)
