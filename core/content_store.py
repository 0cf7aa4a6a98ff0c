"""
Content Store - Question bank and unit graph.

Features:
    - Loads units, topics and questions from JSON files
    - Validates every question at the boundary (typed rubric parts and lines)
    - Unit prerequisite DAG (networkx) for ordering and root-cause hints
    - TTL cache of eligible pools per (kind, unit, topic) with invalidation

Directory layout:
    {data_dir}/units.json          -> {"units": [...], "topics": [...]}
    {data_dir}/questions/*.json    -> {"questions": [...]} or a bare list
"""

import json
import logging
import networkx as nx
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set
from dataclasses import dataclass, field

from pydantic import ValidationError

from .cache import TTLCache
from .errors import ContentValidationError, NotFound
from .models import Difficulty, Question, QuestionKind

logger = logging.getLogger(__name__)


@dataclass
class Unit:
    """A content unit (exam section)."""
    id: str
    number: int
    name: str
    focus: str = ""  # Study-focus sentence used in recommendations
    prerequisites: List[str] = field(default_factory=list)


@dataclass
class Topic:
    id: str
    unit_id: str
    name: str


class ContentStore:
    """
    Read-only question bank for the engine.

    Structure:
        Unit (e.g., "Unit 2: Selection and Iteration")
        └── Topic (e.g., "Nested loops")
            └── Question (objective or free response)
    """

    POOL_TTL_SECONDS = 300

    def __init__(self, data_dir: Optional[str] = None, cache: Optional[TTLCache] = None):
        self.graph = nx.DiGraph()
        self.units: Dict[str, Unit] = {}
        self.topics: Dict[str, Topic] = {}
        self.questions: Dict[str, Question] = {}
        self.pool_cache = cache if cache is not None else TTLCache(self.POOL_TTL_SECONDS)

        if data_dir is not None:
            self.data_dir = Path(data_dir)
            self._load_directory()

    @classmethod
    def from_payload(cls, units: List[dict], questions: List[dict],
                     topics: Optional[List[dict]] = None,
                     cache: Optional[TTLCache] = None) -> "ContentStore":
        """Build a store from in-memory data (fixtures, imports)."""
        store = cls(cache=cache)
        store.add_units(units)
        store.add_topics(topics or [])
        store.add_questions(questions)
        return store

    # ==================== Loading ====================

    def _load_directory(self):
        units_file = self.data_dir / "units.json"
        if units_file.exists():
            with open(units_file, "r") as f:
                data = json.load(f)
            self.add_units(data.get("units", []))
            self.add_topics(data.get("topics", []))

        questions_dir = self.data_dir / "questions"
        if questions_dir.exists():
            for question_file in sorted(questions_dir.glob("*.json")):
                with open(question_file, "r") as f:
                    data = json.load(f)
                items = data.get("questions", []) if isinstance(data, dict) else data
                self.add_questions(items)

        logger.info("loaded %d units, %d topics, %d questions from %s",
                    len(self.units), len(self.topics), len(self.questions), self.data_dir)

    def add_units(self, units: Iterable[dict]):
        for raw in units:
            unit = Unit(
                id=raw["id"],
                number=int(raw.get("number", len(self.units) + 1)),
                name=raw.get("name", raw["id"]),
                focus=raw.get("focus", ""),
                prerequisites=list(raw.get("prerequisites", [])),
            )
            self.units[unit.id] = unit
            self.graph.add_node(unit.id, number=unit.number)
            for prereq in unit.prerequisites:
                self.graph.add_edge(prereq, unit.id)

        if not nx.is_directed_acyclic_graph(self.graph):
            raise ContentValidationError("unit prerequisites contain a cycle")
        self.invalidate()

    def add_topics(self, topics: Iterable[dict]):
        for raw in topics:
            topic = Topic(id=raw["id"], unit_id=raw["unit_id"], name=raw.get("name", raw["id"]))
            self.topics[topic.id] = topic

    def add_questions(self, questions: Iterable[dict]):
        """Validate and register questions. Malformed payloads are rejected."""
        for raw in questions:
            try:
                question = Question.model_validate(raw)
            except ValidationError as e:
                raise ContentValidationError(
                    f"invalid question {raw.get('id', '?')}: {e}"
                ) from e
            if question.unit_id not in self.units:
                raise ContentValidationError(
                    f"question {question.id} references unknown unit {question.unit_id}"
                )
            self.questions[question.id] = question
        self.invalidate()

    # ==================== Questions ====================

    def get_question(self, question_id: str) -> Question:
        question = self.questions.get(question_id)
        if question is None:
            raise NotFound("question", question_id)
        return question

    def _pool(self, kind: QuestionKind, unit_id: Optional[str],
              topic_id: Optional[str]) -> List[Question]:
        key = f"{unit_id or '*'}:{topic_id or '*'}:{kind.value}"

        def load() -> List[Question]:
            return [
                q for q in self.questions.values()
                if q.eligible
                and q.kind == kind
                and (unit_id is None or q.unit_id == unit_id)
                and (topic_id is None or q.topic_id == topic_id)
            ]

        return self.pool_cache.get_or_load(key, load)

    def list_eligible_questions(self, unit_id: Optional[str] = None,
                                topic_id: Optional[str] = None,
                                difficulty: Optional[Difficulty] = None,
                                exclude_ids: Iterable[str] = (),
                                kind: QuestionKind = QuestionKind.OBJECTIVE) -> List[Question]:
        """
        Approved, active questions matching the scope.

        Args:
            unit_id: Restrict to one unit (None = all units)
            topic_id: Restrict to one topic
            difficulty: Restrict to one tier
            exclude_ids: Question ids to leave out (already answered)
            kind: Objective or free-response
        """
        excluded = set(exclude_ids)
        return [
            q for q in self._pool(kind, unit_id, topic_id)
            if q.id not in excluded and (difficulty is None or q.difficulty == difficulty)
        ]

    def list_free_response_questions(self, category: str) -> List[Question]:
        return [
            q for q in self._pool(QuestionKind.FREE_RESPONSE, None, None)
            if q.category == category
        ]

    def question_counts(self, unit_id: Optional[str] = None) -> Dict[str, int]:
        pool = self._pool(QuestionKind.OBJECTIVE, unit_id, None)
        counts = {d.value.lower(): 0 for d in Difficulty}
        for q in pool:
            counts[q.difficulty.value.lower()] += 1
        counts["total"] = len(pool)
        return counts

    def invalidate(self, unit_id: Optional[str] = None):
        """Drop cached pools (all, or those scoped to one unit)."""
        if unit_id is None:
            self.pool_cache.clear()
        else:
            # Pools spanning all units include this unit's questions too
            self.pool_cache.invalidate(f"{unit_id}:")
            self.pool_cache.invalidate("*:")

    # ==================== Units ====================

    def get_unit(self, unit_id: str) -> Unit:
        unit = self.units.get(unit_id)
        if unit is None:
            raise NotFound("unit", unit_id)
        return unit

    def unit_order(self) -> List[str]:
        """Unit ids by unit number."""
        return [u.id for u in sorted(self.units.values(), key=lambda u: (u.number, u.id))]

    def unit_rank(self, unit_id: str) -> int:
        order = self.unit_order()
        return order.index(unit_id) if unit_id in order else len(order)

    def get_all_prerequisites(self, unit_id: str) -> Set[str]:
        if unit_id not in self.graph:
            return set()
        return nx.ancestors(self.graph, unit_id)

    def weak_prerequisites(self, unit_id: str, weak_unit_ids: Iterable[str]) -> List[str]:
        """
        Weak units in the prerequisite chain of `unit_id`.

        Returned earliest first (topological order), so the first entry is
        where remediation should start.
        """
        weak = set(weak_unit_ids)
        ancestors = self.get_all_prerequisites(unit_id)
        topo_order = list(nx.lexicographical_topological_sort(
            self.graph, key=lambda n: (self.units[n].number if n in self.units else 0, n)
        ))
        return [u for u in topo_order if u in ancestors and u in weak]

    # ==================== Statistics ====================

    def get_stats(self) -> dict:
        return {
            "total_units": len(self.units),
            "total_questions": len(self.questions),
            "objective": sum(1 for q in self.questions.values() if q.kind == QuestionKind.OBJECTIVE),
            "free_response": sum(1 for q in self.questions.values() if q.kind == QuestionKind.FREE_RESPONSE),
            "max_prerequisite_depth": nx.dag_longest_path_length(self.graph) if self.units else 0,
        }
