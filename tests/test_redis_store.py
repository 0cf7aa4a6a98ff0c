"""Tests for redis_store.py (fakeredis)"""

import pytest

from core.errors import NotFound
from core.models import (
    Difficulty, ExamAttempt, ExamStatus, FreeResponseAnswer, ObjectiveResponse, ProgressionKey,
)


# ==================== Progression ====================

def test_progression_created_lazily(store):
    key = ProgressionKey("learner", "unit-1")
    assert store.get_progression(key) is None

    def mutate(record):
        record.state.total_attempts += 1
        return record.state.total_attempts

    record, result = store.update_progression(key, mutate)
    assert result == 1
    assert record.state.difficulty == Difficulty.EASY

    loaded = store.get_progression(key)
    assert loaded.key == key
    assert loaded.state.total_attempts == 1


def test_progression_updates_accumulate(store):
    key = ProgressionKey("learner", "unit-2", "loops")
    for _ in range(3):
        store.update_progression(key, lambda r: r.state.recent_results.append(True))

    record = store.get_progression(key)
    assert record.state.recent_results == [True, True, True]
    assert record.key.topic_id == "loops"
    assert store.get_progression(ProgressionKey("learner", "unit-2")) is None


def test_list_progressions_and_due_reviews(store):
    def schedule(at):
        def mutate(record):
            record.state.next_review_at = at
        return mutate

    store.update_progression(ProgressionKey("learner", "unit-1"), schedule(100.0))
    store.update_progression(ProgressionKey("learner", "unit-2"), schedule(50.0))
    store.update_progression(ProgressionKey("learner", "unit-3"), schedule(500.0))
    store.update_progression(ProgressionKey("learner", "unit-4"), lambda r: None)  # never scheduled
    store.update_progression(ProgressionKey("other", "unit-1"), schedule(10.0))

    assert len(store.list_progressions("learner")) == 4

    due = store.list_due_progressions("learner", now=200.0)
    assert [r.key.unit_id for r in due] == ["unit-2", "unit-1"]

    # Rescheduling moves the entry instead of duplicating it
    store.update_progression(ProgressionKey("learner", "unit-2"), schedule(1000.0))
    due = store.list_due_progressions("learner", now=200.0)
    assert [r.key.unit_id for r in due] == ["unit-1"]


def test_failed_mutation_writes_nothing(store):
    key = ProgressionKey("learner", "unit-1")

    def explode(record):
        record.state.total_attempts = 99
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        store.update_progression(key, explode)
    assert store.get_progression(key) is None


# ==================== Answer Log ====================

def test_answer_log_filters_and_limits(store):
    for i in range(6):
        store.record_answer("learner", {"question_id": f"q{i}", "unit_id": "unit-1" if i % 2 else "unit-2"})

    assert len(store.get_recent_answers("learner")) == 6
    assert [a["question_id"] for a in store.get_recent_answers("learner", limit=2)] == ["q4", "q5"]
    assert [a["question_id"] for a in store.get_recent_answers("learner", unit_id="unit-1")] == ["q1", "q3", "q5"]
    assert store.get_recent_answers("nobody") == []


def test_answer_log_is_trimmed(store):
    store.MAX_ANSWER_LOG = 5
    for i in range(8):
        store.record_answer("learner", {"question_id": f"q{i}"})

    answers = store.get_recent_answers("learner", limit=0)
    assert [a["question_id"] for a in answers] == ["q3", "q4", "q5", "q6", "q7"]


# ==================== Exam Attempts ====================

def make_attempt(attempt_id, learner_id="learner"):
    return ExamAttempt(
        attempt_id=attempt_id,
        learner_id=learner_id,
        attempt_number=0,
        objective_responses=[ObjectiveResponse(1, "q1", "unit-1"), ObjectiveResponse(2, "q2", "unit-2")],
        free_response_answers=[FreeResponseAnswer(1, "frq-methods", "METHODS_CONTROL", 9)],
    )


def test_attempt_numbers_increase_per_learner(store):
    first = store.create_attempt(make_attempt("a1"))
    second = store.create_attempt(make_attempt("a2"))
    other = store.create_attempt(make_attempt("b1", learner_id="other"))

    assert (first.attempt_number, second.attempt_number, other.attempt_number) == (1, 2, 1)
    assert store.count_attempts("learner") == 2
    assert [a.attempt_id for a in store.list_attempts("learner")] == ["a2", "a1"]


def test_attempt_round_trip(store):
    store.create_attempt(make_attempt("a1"))
    loaded = store.get_attempt("a1")

    assert loaded.status == ExamStatus.IN_PROGRESS
    assert loaded.objective_total == 2
    assert loaded.objective_response(2).unit_id == "unit-2"
    assert loaded.free_response(1).question_id == "frq-methods"


def test_update_attempt(store):
    store.create_attempt(make_attempt("a1"))

    def answer(attempt):
        attempt.objective_response(1).answer = "B"
        return "saved"

    attempt, result = store.update_attempt("a1", answer)
    assert result == "saved"
    assert store.get_attempt("a1").objective_response(1).answer == "B"


def test_unknown_attempt(store):
    with pytest.raises(NotFound):
        store.get_attempt("missing")
    with pytest.raises(NotFound):
        store.update_attempt("missing", lambda a: None)
    assert store.list_attempts("learner") == []
    assert store.count_attempts("learner") == 0


# ==================== Cleanup ====================

def test_delete_learner(store, redis_client):
    store.update_progression(ProgressionKey("learner", "unit-1"), lambda r: None)
    store.record_answer("learner", {"question_id": "q1"})
    store.create_attempt(make_attempt("a1"))
    store.create_attempt(make_attempt("b1", learner_id="other"))

    store.delete_learner("learner")

    assert store.list_progressions("learner") == []
    assert store.get_recent_answers("learner") == []
    assert store.count_attempts("learner") == 0
    with pytest.raises(NotFound):
        store.get_attempt("a1")
    assert store.get_attempt("b1").learner_id == "other"
