"""
Exam Prep Engine - adaptive practice and full-exam scoring.

Flow:
    Practice:  start_practice -> get_next_question <-> submit_practice_answer -> end_practice_session
    Exam:      start_exam -> submit_*_answer ... -> submit_exam (objective score now)
               -> grade_free_responses (background) -> get_exam_results

Every answer goes through the same pipeline: mastery, spaced review and
the difficulty state machine update the learner's progression, which then
decides the difficulty of the next question served.
"""

import time
import uuid
import random
import logging
from typing import Dict, List, Optional

from config import Settings
from redis_store import RedisStore
from core.cache import TTLCache
from core.content_store import ContentStore
from core.difficulty import DifficultyProgression
from core.errors import InvalidState, NotFound
from core.exam_composer import ExamComposer
from core.models import (
    ExamAttempt, ExamStatus, FreeResponseAnswer, ObjectiveResponse,
    PracticeSession, ProgressionKey, ProgressionState, Question, QuestionKind,
)
from core.question_selector import QuestionSelector
from core.score_aggregator import ScoreAggregator, TierBands
from core.session_manager import SessionManager
from grading.frq_pipeline import FRQEvaluationPipeline
from grading.text_evaluator import LLMTextEvaluator, TextEvaluator

logger = logging.getLogger(__name__)


# ==================== Payload Helpers ====================

def question_payload(question: Question, reveal: bool = False) -> dict:
    """Question as shown to a learner. The answer key is only included when `reveal` is set."""
    payload = {
        "id": question.id,
        "kind": question.kind.value,
        "unit_id": question.unit_id,
        "topic_id": question.topic_id,
        "difficulty": question.difficulty.value,
        "text": question.text,
    }
    if question.kind == QuestionKind.OBJECTIVE:
        payload["options"] = list(question.options)
        if reveal:
            payload["correct_answer"] = question.correct_answer
            payload["explanation"] = question.explanation
    else:
        payload["category"] = question.category
        payload["max_points"] = question.max_points
        payload["parts"] = [
            {"label": p.label, "points": p.points, "prompt": p.prompt, "scaffold": p.scaffold}
            for p in question.evaluation_parts()
        ]
    return payload


def session_payload(session: PracticeSession) -> dict:
    return {
        "session_id": session.session_id,
        "learner_id": session.learner_id,
        "unit_id": session.unit_id,
        "topic_id": session.topic_id,
        "mixed": session.is_mixed,
        "target_questions": session.target_questions,
        "total_questions": session.total_questions,
        "correct_answers": session.correct_answers,
        "accuracy": round(session.accuracy, 1),
        "started_at": session.started_at,
        "ended_at": session.ended_at,
    }


class ExamPrepEngine:
    """
    High-level interface for practice sessions and full exams.

    Collaborators are injected so tests can use an in-memory content store,
    fakeredis and a stub evaluator.
    """

    SLOW_RESPONSE_SECONDS = 180
    INSIGHT_WINDOW = 50  # Recent answers analysed per unit
    TOPIC_MIN_RESPONSES = 3

    def __init__(self, content: ContentStore, store: RedisStore,
                 evaluator: Optional[TextEvaluator] = None,
                 settings: Optional[Settings] = None,
                 sessions: Optional[SessionManager] = None,
                 rng: Optional[random.Random] = None):
        self.settings = settings or Settings()
        self.content = content
        self.store = store
        self.rng = rng or random.Random()

        self.progression = DifficultyProgression()
        self.selector = QuestionSelector(self.rng)
        self.composer = ExamComposer(
            content,
            unit_distribution=self.settings.exam_unit_distribution,
            frq_categories=self.settings.exam_frq_categories,
            rng=self.rng,
        )
        self.aggregator = ScoreAggregator(
            content,
            objective_weight=self.settings.objective_weight,
            tier_bands=TierBands(self.settings.tier_bands),
        )
        self.sessions = sessions if sessions is not None else SessionManager(
            TTLCache(self.settings.session_ttl_seconds)
        )

        if evaluator is None:
            evaluator = LLMTextEvaluator(
                model=self.settings.openai_model,
                temperature=self.settings.evaluation_temperature,
            )
        self.pipeline = FRQEvaluationPipeline(
            evaluator, content, timeout_seconds=self.settings.evaluation_timeout_seconds
        )

    # ==================== Practice ====================

    def start_practice(self, learner_id: str, unit_id: Optional[str] = None,
                       topic_id: Optional[str] = None,
                       target_questions: Optional[int] = None) -> dict:
        """
        Open a practice session for one unit (or mixed across all units).

        Raises:
            NotFound: unknown unit
        """
        if unit_id is not None:
            self.content.get_unit(unit_id)
        session = self.sessions.create(
            learner_id,
            unit_id=unit_id,
            topic_id=topic_id,
            target_questions=target_questions or self.settings.practice_target_questions,
        )
        return session_payload(session)

    def _served_difficulty(self, session: PracticeSession, now: float):
        """(difficulty, review_mode) for the next question of a session."""
        if session.is_mixed:
            state = self.sessions.get_progression(session.session_id).state
            return self.progression.served_difficulty(state, now), False

        record = self.store.get_progression(
            ProgressionKey(session.learner_id, session.unit_id, session.topic_id)
        )
        state = record.state if record else None
        review_mode = state is not None and state.is_review_due(now)
        return self.progression.served_difficulty(state, now), review_mode

    def get_next_question(self, session_id: str) -> dict:
        """
        Serve the next question of a session.

        Returns `complete: True` (and no question) once the target is reached
        or the eligible pool is exhausted.
        """
        session = self.sessions.get(session_id)
        progress = {"answered": session.total_questions, "target": session.target_questions}

        if session.total_questions >= session.target_questions:
            return {"complete": True, "question": None, "progress": progress}

        now = time.time()
        target, review_mode = self._served_difficulty(session, now)
        pool = self.content.list_eligible_questions(
            unit_id=session.unit_id,
            topic_id=session.topic_id,
            exclude_ids=session.answered_ids,
        )
        question = self.selector.select(target, pool, session.answered_ids)

        if question is None:
            logger.info("session %s: question pool exhausted after %d answers",
                        session_id, session.total_questions)
            return {"complete": True, "question": None, "progress": progress}

        return {
            "complete": False,
            "question": question_payload(question),
            "target_difficulty": target.value,
            "review_mode": review_mode,
            "progress": progress,
        }

    def submit_practice_answer(self, session_id: str, question_id: str, answer: str,
                               time_spent: Optional[float] = None) -> dict:
        """
        Grade a practice answer and update the learner's progression.

        Raises:
            NotFound: unknown session or question
            InvalidState: question already answered in this session, or
                outside the session's unit/topic scope
        """
        session = self.sessions.get(session_id)
        question = self.content.get_question(question_id)
        self._check_in_scope(session, question)

        # Duplicate check, progression update and bookkeeping happen under one lock
        with self.sessions.lock(session_id):
            if question_id in session.answered_ids:
                raise InvalidState(f"question {question_id} already answered in session {session_id}")
            return self._apply_practice_answer(session, question, answer, time_spent)

    @staticmethod
    def _check_in_scope(session: PracticeSession, question: Question):
        if question.kind != QuestionKind.OBJECTIVE:
            raise InvalidState(f"question {question.id} is not a practice question")
        if session.unit_id is not None and question.unit_id != session.unit_id:
            raise InvalidState(
                f"question {question.id} belongs to {question.unit_id}, "
                f"session {session.session_id} practices {session.unit_id}"
            )
        if session.topic_id is not None and question.topic_id != session.topic_id:
            raise InvalidState(
                f"question {question.id} is outside topic {session.topic_id} "
                f"of session {session.session_id}"
            )

    def _apply_practice_answer(self, session: PracticeSession, question: Question,
                               answer: str, time_spent: Optional[float]) -> dict:
        session_id = session.session_id
        question_id = question.id
        now = time.time()
        is_correct = question.is_correct(answer)

        key = ProgressionKey(session.learner_id, question.unit_id, session.topic_id)
        record, outcome = self.store.update_progression(
            key,
            lambda r: self.progression.apply_answer(r.state, is_correct, time_spent, now=now),
        )

        if session.is_mixed:
            # Mixed sessions serve from their own state, not any single unit's
            session_state = self.sessions.get_progression(session_id).state
            outcome = self.progression.apply_answer(session_state, is_correct, time_spent, now=now)

        session.answered_ids.append(question_id)
        session.total_questions += 1
        if is_correct:
            session.correct_answers += 1

        self.store.record_answer(session.learner_id, {
            "session_id": session_id,
            "question_id": question_id,
            "unit_id": question.unit_id,
            "topic_id": question.topic_id,
            "difficulty": question.difficulty.value,
            "is_correct": is_correct,
            "time_spent": time_spent,
            "answered_at": now,
        })

        if outcome.changed:
            logger.info("learner %s %sd to %s on %s",
                        session.learner_id, outcome.transition, outcome.new_difficulty.value,
                        "mixed practice" if session.is_mixed else question.unit_id)

        return {
            "is_correct": is_correct,
            "correct_answer": question.correct_answer,
            "explanation": question.explanation,
            "difficulty": {
                "previous": outcome.previous_difficulty.value,
                "new": outcome.new_difficulty.value,
                "transition": outcome.transition,
            },
            "mastery": record.state.mastery,
            "recent_accuracy": outcome.recent_accuracy,
            "next_review_at": record.state.next_review_at,
            "interval_days": record.state.interval_days,
            "session": session_payload(session),
            "session_complete": session.total_questions >= session.target_questions,
        }

    def end_practice_session(self, session_id: str) -> dict:
        """Close a session and return its summary."""
        session = self.sessions.end(session_id)
        summary = session_payload(session)
        summary["duration_seconds"] = round(session.ended_at - session.started_at, 1)
        return summary

    # ==================== Full Exam ====================

    def start_exam(self, learner_id: str) -> dict:
        """
        Compose and persist a new exam attempt.

        Raises:
            InsufficientPool: some unit or category cannot be filled (nothing is persisted)
        """
        blueprint = self.composer.compose()

        attempt = ExamAttempt(
            attempt_id=str(uuid.uuid4()),
            learner_id=learner_id,
            attempt_number=0,
            objective_responses=[
                ObjectiveResponse(order_index=i, question_id=q.id, unit_id=q.unit_id)
                for i, q in enumerate(blueprint.objective_questions)
            ],
            free_response_answers=[
                FreeResponseAnswer(number=n, question_id=q.id, category=q.category,
                                   max_points=q.max_points)
                for n, q in enumerate(blueprint.free_response_questions, 1)
            ],
            free_response_max=blueprint.free_response_max_points,
        )
        self.store.create_attempt(attempt)

        return {
            "attempt_id": attempt.attempt_id,
            "attempt_number": attempt.attempt_number,
            "status": attempt.status.value,
            "started_at": attempt.started_at,
            "objective_questions": [
                dict(question_payload(q), order_index=i)
                for i, q in enumerate(blueprint.objective_questions)
            ],
            "free_response_questions": [
                dict(question_payload(q), number=n)
                for n, q in enumerate(blueprint.free_response_questions, 1)
            ],
        }

    @staticmethod
    def _require_in_progress(attempt: ExamAttempt):
        if attempt.status != ExamStatus.IN_PROGRESS:
            raise InvalidState(
                f"attempt {attempt.attempt_id} is {attempt.status.value}, answers are closed"
            )

    def submit_objective_answer(self, attempt_id: str, order_index: int, answer: Optional[str],
                                time_spent: Optional[float] = None) -> dict:
        """
        Save (or overwrite) one objective answer. Correctness is not revealed.

        Raises:
            NotFound: unknown attempt or order index
            InvalidState: attempt already submitted
        """
        def mutate(attempt: ExamAttempt) -> ObjectiveResponse:
            self._require_in_progress(attempt)
            response = attempt.objective_response(order_index)
            if response is None:
                raise NotFound("objective question", f"{attempt_id}#{order_index}")
            question = self.content.get_question(response.question_id)
            response.answer = answer
            response.is_correct = question.is_correct(answer)
            if time_spent is not None:
                response.time_spent = time_spent
            return response

        _, response = self.store.update_attempt(attempt_id, mutate)
        return {"attempt_id": attempt_id, "order_index": response.order_index, "saved": True}

    def flag_objective_for_review(self, attempt_id: str, order_index: int,
                                  flagged: bool = True) -> dict:
        """Mark an objective question so the learner can come back to it."""
        def mutate(attempt: ExamAttempt) -> ObjectiveResponse:
            self._require_in_progress(attempt)
            response = attempt.objective_response(order_index)
            if response is None:
                raise NotFound("objective question", f"{attempt_id}#{order_index}")
            response.flagged_for_review = flagged
            return response

        _, response = self.store.update_attempt(attempt_id, mutate)
        return {
            "attempt_id": attempt_id,
            "order_index": response.order_index,
            "flagged_for_review": response.flagged_for_review,
        }

    def submit_free_response_answer(self, attempt_id: str, number: int,
                                    raw_text: Optional[str] = None,
                                    part_responses: Optional[Dict[str, str]] = None,
                                    time_spent: Optional[float] = None) -> dict:
        """
        Save a free-response answer (whole text and/or per-part responses).

        Raises:
            NotFound: unknown attempt or question number
            InvalidState: attempt already submitted
        """
        def mutate(attempt: ExamAttempt) -> FreeResponseAnswer:
            self._require_in_progress(attempt)
            frq = attempt.free_response(number)
            if frq is None:
                raise NotFound("free-response question", f"{attempt_id}#{number}")
            if raw_text is not None:
                frq.raw_text = raw_text
            if part_responses is not None:
                frq.part_responses.update({label.upper(): text for label, text in part_responses.items()})
            if time_spent is not None:
                frq.time_spent = time_spent
            return frq

        _, frq = self.store.update_attempt(attempt_id, mutate)
        return {
            "attempt_id": attempt_id,
            "number": frq.number,
            "saved": True,
            "parts_answered": sorted(k for k, v in frq.part_responses.items() if v and v.strip()),
        }

    def submit_exam(self, attempt_id: str, total_time_spent: Optional[float] = None) -> dict:
        """
        Close the attempt and score the objective section immediately.

        The free-response half is graded by `grade_free_responses`, which the
        caller schedules in the background. Submitting twice returns the
        current snapshot.
        """
        def mutate(attempt: ExamAttempt) -> bool:
            if attempt.status != ExamStatus.IN_PROGRESS:
                return False
            self.aggregator.score_objective(attempt)
            attempt.status = ExamStatus.GRADING
            attempt.submitted_at = time.time()
            attempt.total_time_spent = total_time_spent
            return True

        attempt, submitted = self.store.update_attempt(attempt_id, mutate)
        if submitted:
            logger.info("attempt %s submitted: objective %d/%d (%.1f%%)",
                        attempt_id, attempt.objective_score, attempt.objective_total,
                        attempt.objective_percentage)
        return self._results(attempt)

    async def grade_free_responses(self, attempt_id: str) -> dict:
        """
        Background half of submit_exam: grade every free-response answer and
        finalize the attempt. A no-op for an attempt that is already GRADED.

        Raises:
            NotFound: unknown attempt
            InvalidState: attempt not submitted yet
        """
        attempt = self.store.get_attempt(attempt_id)
        if attempt.status == ExamStatus.GRADED:
            return self._results(attempt)
        if attempt.status == ExamStatus.IN_PROGRESS:
            raise InvalidState(f"attempt {attempt_id} has not been submitted")

        await self.pipeline.grade_attempt(attempt)

        def persist(stored: ExamAttempt) -> bool:
            if stored.status == ExamStatus.GRADED:
                return False
            for graded in attempt.free_response_answers:
                for i, current in enumerate(stored.free_response_answers):
                    if current.number == graded.number and not current.status.is_final:
                        stored.free_response_answers[i] = graded
            self.aggregator.finalize(stored)
            return True

        stored, finalized = self.store.update_attempt(attempt_id, persist)
        if not finalized:
            logger.info("attempt %s was already graded, results left unchanged", attempt_id)
        return self._results(stored)

    def _results(self, attempt: ExamAttempt) -> dict:
        results = {
            "attempt_id": attempt.attempt_id,
            "learner_id": attempt.learner_id,
            "attempt_number": attempt.attempt_number,
            "status": attempt.status.value,
            "started_at": attempt.started_at,
            "submitted_at": attempt.submitted_at,
            "graded_at": attempt.graded_at,
            "total_time_spent": attempt.total_time_spent,
        }
        if attempt.status == ExamStatus.IN_PROGRESS:
            results["answered"] = sum(1 for r in attempt.objective_responses if r.answer is not None)
            results["objective_total"] = attempt.objective_total
            return results

        results.update({
            "objective_score": attempt.objective_score,
            "objective_total": attempt.objective_total,
            "objective_percentage": attempt.objective_percentage,
            "unit_breakdown": [u.to_dict() for u in attempt.unit_breakdown],
            "strengths": attempt.strengths,
            "weaknesses": attempt.weaknesses,
            "free_response": [
                {
                    "number": a.number,
                    "question_id": a.question_id,
                    "category": a.category,
                    "status": a.status.value,
                    "score": a.score,
                    "max_points": a.max_points,
                    "feedback": a.feedback,
                    "needs_review": a.needs_review,
                    "parts": [
                        {"label": p.label, "score": p.score, "max_score": p.max_score,
                         "needs_review": p.needs_review}
                        for p in a.parts
                    ],
                }
                for a in attempt.free_response_answers
            ],
        })

        if attempt.status == ExamStatus.GRADING:
            results["projected_tiers"] = self.aggregator.projected_tiers(attempt.objective_percentage)
        else:
            results.update({
                "free_response_score": attempt.free_response_score,
                "free_response_max": attempt.free_response_max,
                "free_response_percentage": attempt.free_response_percentage,
                "blended_percentage": attempt.blended_percentage,
                "predicted_tier": attempt.predicted_tier,
                "recommendations": {
                    "overall": attempt.recommendations.overall,
                    "study_focus": attempt.recommendations.study_focus,
                    "next_steps": attempt.recommendations.next_steps,
                } if attempt.recommendations else None,
            })
        return results

    def get_exam_results(self, attempt_id: str) -> dict:
        """Current snapshot of an attempt (poll this while grading runs)."""
        return self._results(self.store.get_attempt(attempt_id))

    def get_exam_history(self, learner_id: str) -> List[dict]:
        """One summary row per attempt, most recent first."""
        return [
            {
                "attempt_id": a.attempt_id,
                "attempt_number": a.attempt_number,
                "status": a.status.value,
                "started_at": a.started_at,
                "submitted_at": a.submitted_at,
                "objective_percentage": a.objective_percentage,
                "free_response_percentage": a.free_response_percentage,
                "blended_percentage": a.blended_percentage,
                "predicted_tier": a.predicted_tier,
            }
            for a in self.store.list_attempts(learner_id)
        ]

    # ==================== Progress ====================

    def _topic_patterns(self, learner_id: str, unit_id: str) -> Dict[str, List[str]]:
        """Weak and strong topics from the learner's recent answers in a unit."""
        stats: Dict[str, List[int]] = {}
        for entry in self.store.get_recent_answers(learner_id, self.INSIGHT_WINDOW, unit_id=unit_id):
            topic = self.content.topics.get(entry.get("topic_id") or "")
            name = topic.name if topic else "General"
            correct_total = stats.setdefault(name, [0, 0])
            correct_total[1] += 1
            if entry.get("is_correct"):
                correct_total[0] += 1

        weak, strong = [], []
        for name, (correct, total) in stats.items():
            if total < self.TOPIC_MIN_RESPONSES:
                continue
            accuracy = correct / total * 100
            if accuracy < 60:
                weak.append(name)
            elif accuracy >= 85:
                strong.append(name)
        return {"weak_topics": weak, "strong_topics": strong}

    def _insight_recommendations(self, state: ProgressionState, weak_topics: List[str]) -> List[str]:
        recommendations = []
        if state.mastery < 50:
            recommendations.append("Focus on fundamentals - review basic concepts")
        elif state.mastery < 75:
            recommendations.append("Good progress! Practice more to solidify understanding")
        elif state.mastery >= 85:
            recommendations.append("Excellent mastery! Try more challenging problems")

        if weak_topics:
            recommendations.append(f"Review these topics: {', '.join(weak_topics)}")
        if state.average_time_per_question > self.SLOW_RESPONSE_SECONDS:
            recommendations.append("Try to improve response time with timed practice")
        if state.consecutive_wrong >= 2:
            recommendations.append("Take a short break and review explanations carefully")
        return recommendations

    def get_learning_insights(self, learner_id: str, unit_id: str) -> dict:
        """
        Progress summary for one unit.

        Raises:
            NotFound: unknown unit
        """
        unit = self.content.get_unit(unit_id)
        record = self.store.get_progression(ProgressionKey(learner_id, unit_id))
        if record is None:
            return {
                "unit_id": unit_id,
                "unit_name": unit.name,
                "status": "new",
                "message": "Start practicing to see your insights!",
            }

        state = record.state
        patterns = self._topic_patterns(learner_id, unit_id)
        return {
            "unit_id": unit_id,
            "unit_name": unit.name,
            "status": "active",
            "mastery": state.mastery,
            "current_difficulty": state.difficulty.value,
            "accuracy": state.accuracy,
            "recent_accuracy": state.recent_accuracy,
            "total_attempts": state.total_attempts,
            "consecutive_correct": state.consecutive_correct,
            "average_time_per_question": round(state.average_time_per_question),
            "next_review_at": state.next_review_at,
            "review_due": state.is_review_due(),
            "question_counts": self.content.question_counts(unit_id),
            "weak_topics": patterns["weak_topics"],
            "strong_topics": patterns["strong_topics"],
            "recommendations": self._insight_recommendations(state, patterns["weak_topics"]),
        }

    def get_units_due_for_review(self, learner_id: str, now: Optional[float] = None) -> List[dict]:
        """Units (and topics) whose spaced-review time has passed, most overdue first."""
        now = time.time() if now is None else now
        due = []
        for record in self.store.list_due_progressions(learner_id, now):
            unit = self.content.units.get(record.key.unit_id)
            due.append({
                "unit_id": record.key.unit_id,
                "unit_name": unit.name if unit else record.key.unit_id,
                "topic_id": record.key.topic_id,
                "next_review_at": record.state.next_review_at,
                "mastery": record.state.mastery,
                "served_difficulty": self.progression.served_difficulty(record.state, now).value,
            })
        return due


def build_engine(settings: Optional[Settings] = None) -> ExamPrepEngine:
    """Wire the engine from settings: JSON question bank, Redis, OpenAI evaluator."""
    settings = settings or Settings.from_env()
    content = ContentStore(settings.content_dir, cache=TTLCache(settings.pool_cache_ttl_seconds))
    store = RedisStore(settings=settings)
    return ExamPrepEngine(content, store, settings=settings)
