"""Tests for engine.py - practice and exam flows end to end (fakeredis, stub evaluator)."""

import time
import random
import threading

import pytest

from conftest import UNITS, objective
from config import Settings
from core.cache import TTLCache
from core.content_store import ContentStore
from core.errors import InsufficientPool, InvalidState, NotFound
from core.models import ExamStatus, ProgressionKey
from core.session_manager import SessionManager
from engine import ExamPrepEngine


# ==================== Practice ====================

def test_five_correct_answers_promote_to_medium(engine, store):
    session = engine.start_practice("learner", unit_id="unit-1")
    sid = session["session_id"]

    results = []
    for _ in range(5):
        served = engine.get_next_question(sid)
        assert not served["complete"]
        assert served["question"]["unit_id"] == "unit-1"
        assert "correct_answer" not in served["question"]
        results.append(engine.submit_practice_answer(sid, served["question"]["id"], "A", time_spent=30))

    assert [r["difficulty"]["transition"] for r in results[:4]] == ["stay"] * 4
    assert results[4]["difficulty"] == {"previous": "EASY", "new": "MEDIUM", "transition": "promote"}
    assert results[4]["session"]["correct_answers"] == 5

    record = store.get_progression(ProgressionKey("learner", "unit-1"))
    assert record.state.difficulty.value == "MEDIUM"
    assert record.state.total_attempts == 5
    assert engine.get_next_question(sid)["target_difficulty"] == "MEDIUM"
    assert len(store.get_recent_answers("learner")) == 5


def test_first_answers_never_change_difficulty(engine):
    sid = engine.start_practice("learner", unit_id="unit-1")["session_id"]
    for i in range(2):
        result = engine.submit_practice_answer(sid, f"unit-1-easy-{i}", "B")
        assert result["difficulty"]["new"] == "EASY"
        assert result["is_correct"] is False
        assert result["correct_answer"] == "A"


def test_duplicate_answer_rejected(engine):
    sid = engine.start_practice("learner", unit_id="unit-1")["session_id"]
    engine.submit_practice_answer(sid, "unit-1-easy-0", "A")
    with pytest.raises(InvalidState):
        engine.submit_practice_answer(sid, "unit-1-easy-0", "A")


def test_session_completes_at_target(engine):
    sid = engine.start_practice("learner", unit_id="unit-1", target_questions=2)["session_id"]
    for _ in range(2):
        question = engine.get_next_question(sid)["question"]
        result = engine.submit_practice_answer(sid, question["id"], "A")
    assert result["session_complete"]
    assert engine.get_next_question(sid) == {
        "complete": True, "question": None, "progress": {"answered": 2, "target": 2},
    }


def test_session_completes_when_pool_exhausted(store, evaluator, settings):
    content = ContentStore.from_payload(UNITS, [objective("q1", "unit-1", "EASY"),
                                                objective("q2", "unit-1", "HARD")])
    engine = ExamPrepEngine(content, store, evaluator=evaluator, settings=settings, rng=random.Random(1))
    sid = engine.start_practice("learner", unit_id="unit-1")["session_id"]

    served = []
    for _ in range(2):
        question = engine.get_next_question(sid)["question"]
        served.append(question["id"])
        engine.submit_practice_answer(sid, question["id"], "A")

    assert served == ["q1", "q2"]  # HARD served as fallback once EASY runs out
    assert engine.get_next_question(sid)["complete"]


def test_mixed_session_updates_unit_records(engine, store):
    sid = engine.start_practice("learner")["session_id"]
    engine.submit_practice_answer(sid, "unit-1-easy-0", "A")
    engine.submit_practice_answer(sid, "unit-3-easy-0", "A")
    engine.submit_practice_answer(sid, "unit-3-easy-1", "B")

    assert store.get_progression(ProgressionKey("learner", "unit-1")).state.total_attempts == 1
    assert store.get_progression(ProgressionKey("learner", "unit-3")).state.total_attempts == 2
    assert engine.sessions.get_progression(sid).state.total_attempts == 3

    served = engine.get_next_question(sid)
    assert served["question"]["id"] not in {"unit-1-easy-0", "unit-3-easy-0", "unit-3-easy-1"}


def test_end_session_summary(engine):
    sid = engine.start_practice("learner", unit_id="unit-2")["session_id"]
    engine.submit_practice_answer(sid, "unit-2-easy-0", "A")
    engine.submit_practice_answer(sid, "unit-2-easy-1", "C")

    summary = engine.end_practice_session(sid)
    assert summary["total_questions"] == 2
    assert summary["accuracy"] == 50.0
    assert summary["duration_seconds"] >= 0
    with pytest.raises(NotFound):
        engine.get_next_question(sid)


def test_unknown_unit_or_session(engine):
    with pytest.raises(NotFound):
        engine.start_practice("learner", unit_id="unit-9")
    with pytest.raises(NotFound):
        engine.get_next_question("no-such-session")


# ==================== Progress ====================

def test_insights_for_new_learner(engine):
    insights = engine.get_learning_insights("learner", "unit-1")
    assert insights["status"] == "new"
    assert insights["unit_name"] == "Using Objects and Methods"


def test_insights_after_practice(engine):
    sid = engine.start_practice("learner", unit_id="unit-2")["session_id"]
    for qid in ("unit-2-easy-0", "unit-2-easy-2", "unit-2-easy-4"):  # topic "loops"
        engine.submit_practice_answer(sid, qid, "B")

    insights = engine.get_learning_insights("learner", "unit-2")
    assert insights["status"] == "active"
    assert insights["total_attempts"] == 3
    assert insights["current_difficulty"] == "EASY"
    assert insights["weak_topics"] == ["Loops"]
    assert insights["strong_topics"] == []
    assert insights["recommendations"] == [
        "Focus on fundamentals - review basic concepts",
        "Review these topics: Loops",
        "Take a short break and review explanations carefully",
    ]


def test_units_due_for_review(engine):
    sid = engine.start_practice("learner", unit_id="unit-1")["session_id"]
    engine.submit_practice_answer(sid, "unit-1-easy-0", "A")

    assert engine.get_units_due_for_review("learner", now=time.time()) == []

    due = engine.get_units_due_for_review("learner", now=time.time() + 2 * 86400)
    assert [d["unit_id"] for d in due] == ["unit-1"]
    assert due[0]["served_difficulty"] == "EASY"


# ==================== Full Exam ====================

def answer_everything(engine, exam, answer="A"):
    for question in exam["objective_questions"]:
        engine.submit_objective_answer(exam["attempt_id"], question["order_index"], answer, time_spent=40)


def frq_number(exam, question_id):
    return next(q["number"] for q in exam["free_response_questions"] if q["id"] == question_id)


def test_start_exam(engine, store):
    exam = engine.start_exam("learner")

    assert exam["status"] == "IN_PROGRESS"
    assert exam["attempt_number"] == 1
    assert len(exam["objective_questions"]) == 42
    assert [q["category"] for q in exam["free_response_questions"]] == [
        "METHODS_CONTROL", "CLASSES", "ARRAYLIST", "TWO_D_ARRAY",
    ]
    assert all("correct_answer" not in q for q in exam["objective_questions"])
    assert store.count_attempts("learner") == 1


def test_insufficient_pool_persists_nothing(content, store, evaluator):
    settings = Settings(exam_unit_distribution={"unit-1": 20, "unit-2": 5})
    engine = ExamPrepEngine(content, store, evaluator=evaluator, settings=settings)

    with pytest.raises(InsufficientPool) as exc_info:
        engine.start_exam("learner")

    assert [s.to_dict() for s in exc_info.value.shortfalls] == [
        {"stratum": "unit:unit-1", "required": 20, "available": 15, "missing": 5},
    ]
    assert store.count_attempts("learner") == 0


@pytest.mark.asyncio
async def test_full_exam_flow(engine, evaluator):
    exam = engine.start_exam("learner")
    attempt_id = exam["attempt_id"]
    answer_everything(engine, exam)
    number = frq_number(exam, "frq-methods")
    saved = engine.submit_free_response_answer(attempt_id, number, part_responses={"a": "code a", "b": "code b"})
    assert saved["parts_answered"] == ["A", "B"]

    submitted = engine.submit_exam(attempt_id, total_time_spent=5400)
    assert submitted["status"] == "GRADING"
    assert submitted["objective_percentage"] == 100.0
    assert [p["free_response_percentage"] for p in submitted["projected_tiers"]] == [90, 75, 60, 45, 30]
    assert "predicted_tier" not in submitted

    with pytest.raises(InvalidState):
        engine.submit_objective_answer(attempt_id, 0, "B")

    again = engine.submit_exam(attempt_id)
    assert again["submitted_at"] == submitted["submitted_at"]
    assert again["total_time_spent"] == 5400

    results = await engine.grade_free_responses(attempt_id)
    assert results["status"] == "GRADED"
    assert results["free_response_score"] == 9
    assert results["free_response_max"] == 36
    assert results["free_response_percentage"] == 25.0
    assert results["blended_percentage"] == pytest.approx(66.25)
    assert results["predicted_tier"] == 4
    statuses = {a["question_id"]: a["status"] for a in results["free_response"]}
    assert statuses["frq-methods"] == "GRADED"
    assert list(statuses.values()).count("ZERO_SCORED") == 3
    assert results["recommendations"]["overall"] == "Strong foundation. Focus on weak areas to push into the top band."

    calls = len(evaluator.calls)
    again = await engine.grade_free_responses(attempt_id)
    assert len(evaluator.calls) == calls
    assert again["graded_at"] == results["graded_at"]
    assert engine.get_exam_results(attempt_id) == again


@pytest.mark.asyncio
async def test_grading_requires_submission(engine):
    exam = engine.start_exam("learner")
    with pytest.raises(InvalidState):
        await engine.grade_free_responses(exam["attempt_id"])
    with pytest.raises(NotFound):
        await engine.grade_free_responses("missing")


def test_objective_answers_and_flags(engine):
    exam = engine.start_exam("learner")
    attempt_id = exam["attempt_id"]

    engine.submit_objective_answer(attempt_id, 0, "B")
    engine.submit_objective_answer(attempt_id, 0, "A")  # overwrite
    engine.submit_objective_answer(attempt_id, 1, "C")
    flagged = engine.flag_objective_for_review(attempt_id, 1)
    assert flagged["flagged_for_review"] is True

    snapshot = engine.get_exam_results(attempt_id)
    assert snapshot["answered"] == 2
    assert snapshot["objective_total"] == 42

    with pytest.raises(NotFound):
        engine.submit_objective_answer(attempt_id, 99, "A")
    with pytest.raises(NotFound):
        engine.submit_free_response_answer(attempt_id, 9, raw_text="x")

    submitted = engine.submit_exam(attempt_id)
    assert submitted["objective_score"] == 1


def test_exam_history_newest_first(engine):
    first = engine.start_exam("learner")
    second = engine.start_exam("learner")
    engine.submit_exam(first["attempt_id"])

    history = engine.get_exam_history("learner")
    assert [h["attempt_id"] for h in history] == [second["attempt_id"], first["attempt_id"]]
    assert [h["attempt_number"] for h in history] == [2, 1]
    assert history[1]["status"] == "GRADING"
    assert engine.get_exam_history("nobody") == []


# ==================== Wiring and Concurrency ====================

def test_injected_caches_are_kept(content, store, evaluator):
    sessions_cache = TTLCache(10)
    assert SessionManager(sessions_cache).cache is sessions_cache

    pool_cache = TTLCache(42)
    assert ContentStore(cache=pool_cache).pool_cache is pool_cache

    engine = ExamPrepEngine(content, store, evaluator=evaluator, settings=Settings(session_ttl_seconds=60))
    assert engine.sessions.cache.ttl_seconds == 60

    empty = SessionManager()
    engine = ExamPrepEngine(content, store, evaluator=evaluator, sessions=empty)
    assert engine.sessions is empty


def test_concurrent_duplicate_answer_applied_once(engine, store):
    sid = engine.start_practice("learner", unit_id="unit-1")["session_id"]
    apply_answer = engine.progression.apply_answer

    def slow_apply(*args, **kwargs):
        time.sleep(0.2)
        return apply_answer(*args, **kwargs)

    engine.progression.apply_answer = slow_apply
    barrier = threading.Barrier(2)
    outcomes = []

    def submit():
        barrier.wait()
        try:
            engine.submit_practice_answer(sid, "unit-1-easy-0", "A")
            outcomes.append("ok")
        except InvalidState:
            outcomes.append("duplicate")

    threads = [threading.Thread(target=submit) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == ["duplicate", "ok"]
    state = store.get_progression(ProgressionKey("learner", "unit-1")).state
    assert state.total_attempts == 1
    assert state.recent_results == [True]
    assert engine.sessions.get(sid).total_questions == 1


def test_out_of_scope_answers_rejected(engine, store):
    sid = engine.start_practice("learner", unit_id="unit-1")["session_id"]
    with pytest.raises(InvalidState):
        engine.submit_practice_answer(sid, "unit-4-easy-0", "A")
    assert store.get_progression(ProgressionKey("learner", "unit-4")) is None
    assert engine.sessions.get(sid).total_questions == 0

    topic_sid = engine.start_practice("learner", unit_id="unit-2", topic_id="loops")["session_id"]
    with pytest.raises(InvalidState):
        engine.submit_practice_answer(topic_sid, "unit-2-easy-1", "A")  # no topic
    engine.submit_practice_answer(topic_sid, "unit-2-easy-0", "A")
    assert store.get_progression(ProgressionKey("learner", "unit-2", "loops")).state.total_attempts == 1

    mixed_sid = engine.start_practice("learner")["session_id"]
    with pytest.raises(InvalidState):
        engine.submit_practice_answer(mixed_sid, "frq-methods", "A")
