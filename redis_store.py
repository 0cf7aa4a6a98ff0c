"""
Redis Store - Durable progression records, exam attempts and the answer log.

Key Structure:
    progress:{learner_id}:{unit_id}:{topic_id|_}  -> String (JSON ProgressionRecord)
    learner:{learner_id}:progress                 -> Set (progression keys)
    learner:{learner_id}:reviews                  -> Sorted set (progression key -> next_review_at)
    learner:{learner_id}:answers                  -> List (JSON of each practice answer)
    learner:{learner_id}:attempts                 -> List (attempt ids, oldest first)
    learner:{learner_id}:attempt_counter          -> Integer (last attempt number)
    attempt:{attempt_id}                          -> String (JSON ExamAttempt)

Read-modify-write updates run inside WATCH/MULTI transactions, so two
concurrent submissions for the same key cannot lose an update.
"""

import json
import logging
import redis
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from config import Settings
from core.errors import NotFound
from core.models import ExamAttempt, ProgressionKey, ProgressionRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RedisStore:
    """Persistence Store backed by Redis."""

    MAX_ANSWER_LOG = 500  # Answers kept per learner

    def __init__(self, client: Optional[redis.Redis] = None, settings: Optional[Settings] = None):
        """Connect to Redis (from settings/environment unless a client is given)."""
        if client is None:
            settings = settings or Settings.from_env()
            client = redis.Redis(
                host=settings.redis_host,
                port=settings.redis_port,
                password=settings.redis_password,
                db=settings.redis_db,
                decode_responses=True  # Return strings instead of bytes
            )
        self.client = client

    # ==================== Key Builders ====================

    def _progress_key(self, key: ProgressionKey) -> str:
        """Redis key for one progression record."""
        return f"progress:{key.learner_id}:{key.unit_id}:{key.topic_id or '_'}"

    def _progress_index_key(self, learner_id: str) -> str:
        return f"learner:{learner_id}:progress"

    def _reviews_key(self, learner_id: str) -> str:
        """Redis key for the review schedule (sorted by due time)."""
        return f"learner:{learner_id}:reviews"

    def _answers_key(self, learner_id: str) -> str:
        """Redis key for answer history."""
        return f"learner:{learner_id}:answers"

    def _attempts_key(self, learner_id: str) -> str:
        return f"learner:{learner_id}:attempts"

    def _attempt_counter_key(self, learner_id: str) -> str:
        return f"learner:{learner_id}:attempt_counter"

    def _attempt_key(self, attempt_id: str) -> str:
        return f"attempt:{attempt_id}"

    # ==================== Progression ====================

    def get_progression(self, key: ProgressionKey) -> Optional[ProgressionRecord]:
        """
        Load a progression record.

        Args:
            key: (learner, unit, topic) identity

        Returns:
            The record, or None if the learner never practiced this scope
        """
        raw = self.client.get(self._progress_key(key))
        if raw is None:
            return None
        return ProgressionRecord.from_dict(json.loads(raw))

    def update_progression(self, key: ProgressionKey,
                           mutate: Callable[[ProgressionRecord], T]) -> Tuple[ProgressionRecord, T]:
        """
        Atomically get-or-create a record, apply `mutate` and save it.

        The record is created lazily at EASY with zero counters. `mutate`
        may run more than once if a concurrent writer forces a retry.

        Args:
            key: (learner, unit, topic) identity
            mutate: Function that mutates the record in place

        Returns:
            (saved record, value returned by mutate)
        """
        redis_key = self._progress_key(key)

        def txn(pipe) -> Tuple[ProgressionRecord, T]:
            raw = pipe.get(redis_key)
            record = ProgressionRecord.from_dict(json.loads(raw)) if raw else ProgressionRecord(key=key)
            result = mutate(record)

            pipe.multi()
            pipe.set(redis_key, json.dumps(record.to_dict()))
            pipe.sadd(self._progress_index_key(key.learner_id), redis_key)
            if record.state.next_review_at is not None:
                pipe.zadd(self._reviews_key(key.learner_id), {redis_key: record.state.next_review_at})
            return record, result

        return self.client.transaction(txn, redis_key, value_from_callable=True)

    def _load_records(self, redis_keys: List[str]) -> List[ProgressionRecord]:
        if not redis_keys:
            return []
        return [
            ProgressionRecord.from_dict(json.loads(raw))
            for raw in self.client.mget(redis_keys)
            if raw is not None
        ]

    def list_progressions(self, learner_id: str) -> List[ProgressionRecord]:
        """All progression records of a learner (unit and topic level)."""
        redis_keys = sorted(self.client.smembers(self._progress_index_key(learner_id)))
        return self._load_records(redis_keys)

    def list_due_progressions(self, learner_id: str, now: float) -> List[ProgressionRecord]:
        """
        Records whose next review time has passed, most overdue first.

        Args:
            learner_id: Learner to query
            now: Current Unix time
        """
        redis_keys = self.client.zrangebyscore(self._reviews_key(learner_id), "-inf", now)
        return self._load_records(redis_keys)

    # ==================== Answer Recording ====================

    def record_answer(self, learner_id: str, entry: Dict[str, Any]):
        """
        Log a practice answer for analytics.

        Args:
            learner_id: Learner who answered
            entry: JSON-serializable answer record
        """
        answers_key = self._answers_key(learner_id)
        pipe = self.client.pipeline()
        pipe.rpush(answers_key, json.dumps(entry))
        pipe.ltrim(answers_key, -self.MAX_ANSWER_LOG, -1)
        pipe.execute()

    def get_recent_answers(self, learner_id: str, limit: int = 50,
                           unit_id: Optional[str] = None) -> List[Dict]:
        """
        Most recent answers, oldest first.

        Args:
            learner_id: Learner to query
            limit: Maximum number of answers returned
            unit_id: Only answers for this unit
        """
        answers = [json.loads(a) for a in self.client.lrange(self._answers_key(learner_id), 0, -1)]
        if unit_id is not None:
            answers = [a for a in answers if a.get("unit_id") == unit_id]
        return answers[-limit:] if limit else answers

    # ==================== Exam Attempts ====================

    def create_attempt(self, attempt: ExamAttempt) -> ExamAttempt:
        """
        Persist a new attempt, assigning the learner's next attempt number.

        Returns:
            The attempt with attempt_number set
        """
        attempt.attempt_number = self.client.incr(self._attempt_counter_key(attempt.learner_id))
        pipe = self.client.pipeline()
        pipe.set(self._attempt_key(attempt.attempt_id), json.dumps(attempt.to_dict()))
        pipe.rpush(self._attempts_key(attempt.learner_id), attempt.attempt_id)
        pipe.execute()
        logger.info("attempt %s created (learner %s, #%d)",
                    attempt.attempt_id, attempt.learner_id, attempt.attempt_number)
        return attempt

    def get_attempt(self, attempt_id: str) -> ExamAttempt:
        """
        Load an attempt.

        Raises:
            NotFound: unknown attempt id
        """
        raw = self.client.get(self._attempt_key(attempt_id))
        if raw is None:
            raise NotFound("attempt", attempt_id)
        return ExamAttempt.from_dict(json.loads(raw))

    def update_attempt(self, attempt_id: str, mutate: Callable[[ExamAttempt], T]) -> Tuple[ExamAttempt, T]:
        """
        Atomically load an attempt, apply `mutate` and save it.

        Raises:
            NotFound: unknown attempt id
            Whatever `mutate` raises (nothing is written in that case)
        """
        redis_key = self._attempt_key(attempt_id)

        def txn(pipe) -> Tuple[ExamAttempt, T]:
            raw = pipe.get(redis_key)
            if raw is None:
                raise NotFound("attempt", attempt_id)
            attempt = ExamAttempt.from_dict(json.loads(raw))
            result = mutate(attempt)

            pipe.multi()
            pipe.set(redis_key, json.dumps(attempt.to_dict()))
            return attempt, result

        return self.client.transaction(txn, redis_key, value_from_callable=True)

    def list_attempts(self, learner_id: str) -> List[ExamAttempt]:
        """All attempts of a learner, most recent first."""
        attempt_ids = self.client.lrange(self._attempts_key(learner_id), 0, -1)
        if not attempt_ids:
            return []
        raws = self.client.mget([self._attempt_key(a) for a in attempt_ids])
        attempts = [ExamAttempt.from_dict(json.loads(raw)) for raw in raws if raw is not None]
        return list(reversed(attempts))

    def count_attempts(self, learner_id: str) -> int:
        return self.client.llen(self._attempts_key(learner_id))

    # ==================== Cleanup ====================

    def delete_learner(self, learner_id: str):
        """
        Delete all data for a learner (for testing/cleanup).

        Args:
            learner_id: Learner to delete
        """
        keys = list(self.client.smembers(self._progress_index_key(learner_id)))
        keys += [self._attempt_key(a) for a in self.client.lrange(self._attempts_key(learner_id), 0, -1)]
        keys += [
            self._progress_index_key(learner_id),
            self._reviews_key(learner_id),
            self._answers_key(learner_id),
            self._attempts_key(learner_id),
            self._attempt_counter_key(learner_id),
        ]
        self.client.delete(*keys)
