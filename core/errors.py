"""
Engine errors.

Taxonomy:
    - NotFound: unknown learner, session, attempt or question
    - InsufficientPool: a required stratum cannot be filled
    - EvaluationFailure: one free-response part could not be auto-graded
    - InvalidState: operation not allowed in the current lifecycle state
    - ContentValidationError: malformed content at the Content Store boundary
"""

from typing import List
from dataclasses import dataclass


class EngineError(Exception):
    """Base class for all engine errors."""


class NotFound(EngineError):
    """Unknown entity. Surfaced to the caller, never retried."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


@dataclass
class Shortfall:
    """One under-supplied stratum."""
    stratum: str
    required: int
    available: int

    @property
    def missing(self) -> int:
        return self.required - self.available

    def to_dict(self) -> dict:
        return {
            "stratum": self.stratum,
            "required": self.required,
            "available": self.available,
            "missing": self.missing,
        }


class InsufficientPool(EngineError):
    """The question pool cannot satisfy every stratum of a request."""

    def __init__(self, shortfalls: List[Shortfall]):
        self.shortfalls = shortfalls
        details = "; ".join(
            f"{s.stratum}: need {s.required}, have {s.available}" for s in shortfalls
        )
        super().__init__(f"Insufficient question pool ({details})")


class EvaluationFailure(EngineError):
    """Text evaluation failed for a single free-response part."""

    def __init__(self, part_label: str, reason: str):
        self.part_label = part_label
        self.reason = reason
        super().__init__(f"Evaluation failed for part {part_label}: {reason}")


class InvalidState(EngineError):
    """Operation rejected because of the entity's lifecycle state."""


class ContentValidationError(EngineError):
    """Content payload does not match the expected question structure."""
