"""Exceptions raised by the itinerary engine."""
from __future__ import annotations

from typing import List


class ItineraryEngineError(Exception):
    """Base class for engine failures callers may want to catch as a group."""


class PreferenceValidationError(ItineraryEngineError, ValueError):
    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        super().__init__("; ".join(self.problems) or "invalid preferences")


class ScorerUnavailableError(ItineraryEngineError):
    """The external relevance scorer could not produce scores."""


class GoalNotFoundError(ItineraryEngineError, KeyError):
    def __init__(self, goal_id: str):
        self.goal_id = goal_id
        super().__init__(goal_id)

    def __str__(self) -> str:
        return f"goal {self.goal_id!r} not found"


class GoalStoreError(ItineraryEngineError):
    """A goal/progress write failed. ``retryable`` marks transient failures."""

    def __init__(self, message: str, *, retryable: bool = True):
        self.retryable = retryable
        super().__init__(message)


class ReplanError(ItineraryEngineError):
    """Adaptive replanning could not produce a replacement itinerary."""


class InvalidProgressError(ItineraryEngineError, ValueError):
    """A progress update carried a value the metric cannot hold."""
