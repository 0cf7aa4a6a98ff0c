"""Tests for core/exam_composer.py"""

import random

import pytest

from conftest import UNITS, free_response, objective, question_bank
from core.content_store import ContentStore
from core.errors import InsufficientPool
from core.exam_composer import DEFAULT_FRQ_CATEGORIES, ExamComposer


def test_default_distribution(content):
    composer = ExamComposer(content, rng=random.Random(5))
    blueprint = composer.compose()

    assert composer.objective_count == 42
    assert len(blueprint.objective_questions) == 42
    ids = [q.id for q in blueprint.objective_questions]
    assert len(set(ids)) == 42  # without replacement

    per_unit = {}
    for q in blueprint.objective_questions:
        per_unit[q.unit_id] = per_unit.get(q.unit_id, 0) + 1
    assert per_unit == {"unit-1": 9, "unit-2": 13, "unit-3": 6, "unit-4": 14}

    assert [q.category for q in blueprint.free_response_questions] == list(DEFAULT_FRQ_CATEGORIES)
    assert blueprint.free_response_max_points == 36


def test_objective_questions_are_shuffled_across_units(content):
    blueprint = ExamComposer(content, rng=random.Random(5)).compose()
    units = [q.unit_id for q in blueprint.objective_questions]
    assert units != sorted(units)


def test_unapproved_questions_are_never_drawn():
    questions = [objective(f"q{i}", "unit-1") for i in range(3)]
    questions.append(objective("draft", "unit-1", approved=False))
    questions.append(objective("retired", "unit-1", active=False))
    questions.append(free_response("frq", "CLASSES"))
    content = ContentStore.from_payload(UNITS, questions)

    composer = ExamComposer(content, unit_distribution={"unit-1": 3}, frq_categories=["CLASSES"])
    blueprint = composer.compose()
    assert sorted(q.id for q in blueprint.objective_questions) == ["q0", "q1", "q2"]


def test_shortfall_reports_every_stratum():
    questions = [q for q in question_bank(per_difficulty=1) if q["id"] != "frq-2d"]
    content = ContentStore.from_payload(UNITS, questions)
    composer = ExamComposer(content)

    with pytest.raises(InsufficientPool) as excinfo:
        composer.compose()

    shortfalls = {s.stratum: s for s in excinfo.value.shortfalls}
    assert set(shortfalls) == {"unit:unit-1", "unit:unit-2", "unit:unit-3", "unit:unit-4", "category:TWO_D_ARRAY"}
    assert shortfalls["unit:unit-2"].required == 13
    assert shortfalls["unit:unit-2"].available == 3
    assert shortfalls["unit:unit-2"].missing == 10
    assert shortfalls["category:TWO_D_ARRAY"].to_dict() == {
        "stratum": "category:TWO_D_ARRAY", "required": 1, "available": 0, "missing": 1,
    }


def test_seeded_composition_is_reproducible():
    content = ContentStore.from_payload(UNITS, question_bank())
    first = ExamComposer(content, rng=random.Random(11)).compose()
    second = ExamComposer(content, rng=random.Random(11)).compose()
    assert [q.id for q in first.objective_questions] == [q.id for q in second.objective_questions]
