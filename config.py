"""
Configuration - engine settings from the environment (.env supported).

Environment variables:
    REDIS_HOST, REDIS_PORT, REDIS_PASSWORD, REDIS_DB
    CONTENT_DIR                   Question bank directory
    OPENAI_MODEL                  Evaluation model (default gpt-4o)
    EVALUATION_TEMPERATURE        Default 0.3
    EVALUATION_TIMEOUT_SECONDS    Per-part evaluation timeout (default 60)
    PRACTICE_TARGET_QUESTIONS     Default 40
    SESSION_TTL_SECONDS           Idle practice session lifetime
    POOL_CACHE_TTL_SECONDS        Eligible-pool cache lifetime (default 300)
    EXAM_UNIT_DISTRIBUTION        JSON object, unit id -> objective count
    EXAM_FRQ_CATEGORIES           Comma-separated free-response categories
    OBJECTIVE_WEIGHT              Objective share of the blended score (default 0.55)
    TIER_BANDS                    JSON list of [threshold, tier], highest first
    LOG_LEVEL                     Default INFO
"""

import os
import json
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass, field
from dotenv import load_dotenv

from core.exam_composer import DEFAULT_FRQ_CATEGORIES, DEFAULT_UNIT_DISTRIBUTION
from core.score_aggregator import DEFAULT_TIER_BANDS

# Load environment variables from .env
load_dotenv()


@dataclass
class Settings:
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_db: int = 0
    content_dir: str = "data/content"
    openai_model: str = "gpt-4o"
    evaluation_temperature: float = 0.3
    evaluation_timeout_seconds: float = 60.0
    practice_target_questions: int = 40
    session_ttl_seconds: float = 4 * 60 * 60
    pool_cache_ttl_seconds: float = 300
    exam_unit_distribution: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_UNIT_DISTRIBUTION))
    exam_frq_categories: List[str] = field(default_factory=lambda: list(DEFAULT_FRQ_CATEGORIES))
    objective_weight: float = 0.55
    tier_bands: List[Tuple[float, int]] = field(default_factory=lambda: list(DEFAULT_TIER_BANDS))
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, falling back to defaults."""
        defaults = cls()

        distribution = os.getenv("EXAM_UNIT_DISTRIBUTION")
        categories = os.getenv("EXAM_FRQ_CATEGORIES")
        tier_bands = os.getenv("TIER_BANDS")

        return cls(
            redis_host=os.getenv("REDIS_HOST", defaults.redis_host),
            redis_port=int(os.getenv("REDIS_PORT", defaults.redis_port)),
            redis_password=os.getenv("REDIS_PASSWORD", None),
            redis_db=int(os.getenv("REDIS_DB", defaults.redis_db)),
            content_dir=os.getenv("CONTENT_DIR", defaults.content_dir),
            openai_model=os.getenv("OPENAI_MODEL", defaults.openai_model),
            evaluation_temperature=float(os.getenv("EVALUATION_TEMPERATURE", defaults.evaluation_temperature)),
            evaluation_timeout_seconds=float(
                os.getenv("EVALUATION_TIMEOUT_SECONDS", defaults.evaluation_timeout_seconds)
            ),
            practice_target_questions=int(
                os.getenv("PRACTICE_TARGET_QUESTIONS", defaults.practice_target_questions)
            ),
            session_ttl_seconds=float(os.getenv("SESSION_TTL_SECONDS", defaults.session_ttl_seconds)),
            pool_cache_ttl_seconds=float(os.getenv("POOL_CACHE_TTL_SECONDS", defaults.pool_cache_ttl_seconds)),
            exam_unit_distribution=(
                {k: int(v) for k, v in json.loads(distribution).items()}
                if distribution else defaults.exam_unit_distribution
            ),
            exam_frq_categories=(
                [c.strip() for c in categories.split(",") if c.strip()]
                if categories else defaults.exam_frq_categories
            ),
            objective_weight=float(os.getenv("OBJECTIVE_WEIGHT", defaults.objective_weight)),
            tier_bands=(
                [(float(t), int(tier)) for t, tier in json.loads(tier_bands)]
                if tier_bands else defaults.tier_bands
            ),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
        )
