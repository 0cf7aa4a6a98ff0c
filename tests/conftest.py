"""Shared fixtures: in-memory question bank, fakeredis store, stub evaluator."""

import sys
import asyncio
import random
sys.path.append(".")

import pytest
import fakeredis

from config import Settings
from core.cache import TTLCache
from core.content_store import ContentStore
from core.errors import EvaluationFailure
from grading.text_evaluator import TextEvaluator
from redis_store import RedisStore


UNITS = [
    {"id": "unit-1", "number": 1, "name": "Using Objects and Methods",
     "focus": "Review object creation and String methods"},
    {"id": "unit-2", "number": 2, "name": "Selection and Iteration",
     "focus": "Practice boolean logic and loops", "prerequisites": ["unit-1"]},
    {"id": "unit-3", "number": 3, "name": "Class Creation",
     "focus": "Write constructors and methods", "prerequisites": ["unit-2"]},
    {"id": "unit-4", "number": 4, "name": "Data Collections",
     "focus": "Traverse arrays and ArrayLists", "prerequisites": ["unit-2", "unit-3"]},
]

TOPICS = [
    {"id": "loops", "unit_id": "unit-2", "name": "Loops"},
    {"id": "booleans", "unit_id": "unit-2", "name": "Boolean expressions"},
]


def objective(qid, unit_id, difficulty="MEDIUM", topic_id=None, **extra):
    data = {
        "id": qid,
        "unit_id": unit_id,
        "topic_id": topic_id,
        "difficulty": difficulty,
        "text": f"Question {qid}",
        "options": ["A) one", "B) two", "C) three", "D) four"],
        "correct_answer": "A",
    }
    data.update(extra)
    return data


def free_response(qid, category, unit_id="unit-4", parts=None, max_points=9):
    data = {
        "id": qid,
        "kind": "FREE_RESPONSE",
        "unit_id": unit_id,
        "category": category,
        "max_points": max_points,
        "prompt": f"Write the solution for {qid}",
        "rubric": [{"criterion": "Correct logic", "points": max_points}],
    }
    if parts is not None:
        data["parts"] = parts
    return data


TWO_PARTS = [
    {"label": "A", "points": 5, "prompt": "Write part A",
     "rubric": [{"criterion": "Loops over the data", "points": 2},
                {"criterion": "Returns the result", "points": 3}]},
    {"label": "B", "points": 4, "prompt": "Write part B",
     "rubric": [{"criterion": "Handles the edge case", "points": 4}]},
]


def question_bank(per_difficulty=5):
    """Every unit gets `per_difficulty` questions of each tier, plus one FRQ per category."""
    questions = []
    for unit in UNITS:
        for difficulty in ("EASY", "MEDIUM", "HARD"):
            for i in range(per_difficulty):
                qid = f"{unit['id']}-{difficulty.lower()}-{i}"
                topic = "loops" if unit["id"] == "unit-2" and i % 2 == 0 else None
                questions.append(objective(qid, unit["id"], difficulty, topic_id=topic))

    questions.append(free_response("frq-methods", "METHODS_CONTROL", "unit-2", parts=TWO_PARTS))
    questions.append(free_response("frq-classes", "CLASSES", "unit-3"))
    questions.append(free_response("frq-arraylist", "ARRAYLIST", parts=TWO_PARTS))
    questions.append(free_response("frq-2d", "TWO_D_ARRAY", parts=TWO_PARTS))
    return questions


class StubEvaluator(TextEvaluator):
    """
    Scripted text evaluator.

    results: part label -> evaluation payload (default: full marks)
    failures: part labels that raise EvaluationFailure
    hang: part labels that never answer in time
    """

    def __init__(self):
        self.calls = []
        self.results = {}
        self.failures = set()
        self.hang = set()

    async def evaluate(self, context):
        self.calls.append((context.attempt_id, context.question_id, context.part_label))
        if context.part_label in self.hang:
            await asyncio.sleep(5)
        if context.part_label in self.failures:
            raise EvaluationFailure(context.part_label, "stub failure")
        return self.results.get(context.part_label, {"score": context.max_points})


@pytest.fixture
def content():
    return ContentStore.from_payload(UNITS, question_bank(), topics=TOPICS, cache=TTLCache(300))


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def store(redis_client):
    return RedisStore(client=redis_client)


@pytest.fixture
def evaluator():
    return StubEvaluator()


@pytest.fixture
def settings():
    return Settings(evaluation_timeout_seconds=0.2)


@pytest.fixture
def engine(content, store, evaluator, settings):
    from engine import ExamPrepEngine
    return ExamPrepEngine(content, store, evaluator=evaluator, settings=settings, rng=random.Random(7))
