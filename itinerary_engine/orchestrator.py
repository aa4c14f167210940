# itinerary_engine/orchestrator.py
from __future__ import annotations

import os
import time
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
import logging

from itinerary_engine.agents.adaptive_planner import AdaptivePlanner
from itinerary_engine.agents.budget_allocator import allocate_budget
from itinerary_engine.agents.day_scheduler import schedule_days
from itinerary_engine.agents.destination_scorer import score_destinations, unique_candidates
from itinerary_engine.agents.goal_resolver import recommend_goals, resolve_constraints, validate_preferences
from itinerary_engine.agents.itinerary_summary import build_result
from itinerary_engine.agents.progress_tracker import ProgressTracker
from itinerary_engine.agents.recommendation_adjuster import adjust_accommodations, adjust_activities, filter_for_goal
from itinerary_engine.config import EngineSettings
from itinerary_engine.errors import GoalStoreError, PreferenceValidationError
from itinerary_engine.schemas import (
    Goal,
    GoalItineraryResult,
    GoalMetrics,
    GoalRecord,
    GoalRecommendation,
    GoalStatus,
    GoalType,
    ItineraryRequest,
    ItineraryResult,
    ProgressMetric,
    ProgressReport,
    ProgressUpdate,
    ProgressUpdateResult,
    ResolvedConstraints,
    ScoredDestination,
    TravelPreferences,
)
from itinerary_engine.tools.distance_table import DistanceTable
from itinerary_engine.tools.goal_store import GoalStore, InMemoryGoalStore
from itinerary_engine.tools.notifier import NullPublisher, Publisher
from itinerary_engine.tools.relevance_scorer import HttpRelevanceScorer, NeutralScorer, RelevanceScorer

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)
_level = os.getenv("ITINERARY_ENGINE_LOG_LEVEL", "INFO").upper()
logger.setLevel(getattr(logging, _level, logging.INFO))
logger.propagate = False

GOAL_FILTER_EMPTY_WARNING = "No destinations met the goal's filter rules."


# ---------- stateless pipeline ----------
def generate_itinerary(
    request: ItineraryRequest,
    scorer: Optional[RelevanceScorer] = None,
    distance_table: Optional[DistanceTable] = None,
    settings: Optional[EngineSettings] = None,
) -> ItineraryResult:
    """Resolve, score, adjust, schedule and price one request.

    Pure with respect to its inputs: identical requests and scorer output give
    identical itineraries. Invalid preferences raise
    ``PreferenceValidationError`` before any scoring happens.
    """
    result, _, _ = _run_pipeline(request, scorer, distance_table, settings)
    return result


def _run_pipeline(
    request: ItineraryRequest,
    scorer: Optional[RelevanceScorer],
    distance_table: Optional[DistanceTable],
    settings: Optional[EngineSettings],
) -> Tuple[ItineraryResult, ResolvedConstraints, List[ScoredDestination]]:
    constraints = resolve_constraints(
        request.preferences,
        goal_type=request.goal_type,
        overrides=request.goal_overrides,
        scheduling=request.constraints,
        settings=settings,
    )
    candidates = unique_candidates(request.destinations, constraints.allow_repeats)
    scored, warnings = score_destinations(
        candidates,
        constraints,
        profile=request.profile,
        scorer=scorer,
        user_id=request.user_id,
        requested=request.preferences.preferred_spots,
    )

    if constraints.goal_type is not None:
        ranked = filter_for_goal(scored, constraints.goal_type, constraints.candidate_limit)
        if scored and not ranked:
            warnings.append(GOAL_FILTER_EMPTY_WARNING)
    else:
        ranked = scored[: constraints.candidate_limit]

    days, day_warnings = schedule_days(ranked, constraints, distance_table)
    breakdown = allocate_budget(constraints.total_budget, constraints.goal_type)
    result = build_result(days, constraints, breakdown, warnings + day_warnings)
    if constraints.goal_type is not None:
        preferred = constraints.target_metrics.preferred_accommodation if constraints.target_metrics else None
        result = result.model_copy(
            update={
                "accommodation_options": adjust_accommodations(request.accommodations, constraints.goal_type, preferred),
                "activity_options": adjust_activities(request.activities, constraints.goal_type),
            }
        )

    logger.info(
        "Itinerary for %s: %d day(s), %d visit(s), total cost %.0f of %.0f (goal=%s)",
        request.user_id,
        len(result.days),
        sum(len(day.visits) for day in result.days),
        result.total_cost,
        constraints.total_budget,
        constraints.goal_type or "none",
    )
    return result, constraints, scored


# ---------- goal-aware service ----------
class ItineraryService:
    """Goal-aware planning: itinerary generation, live progress and replanning.

    Collaborators are injected so callers (and tests) decide where goals are
    stored, how events reach the traveler and where relevance scores come from.
    """

    def __init__(
        self,
        store: Optional[GoalStore] = None,
        publisher: Optional[Publisher] = None,
        scorer: Optional[RelevanceScorer] = None,
        distance_table: Optional[DistanceTable] = None,
        settings: Optional[EngineSettings] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings or EngineSettings()
        self.store = store or InMemoryGoalStore()
        self.publisher = publisher or NullPublisher()
        self.scorer = scorer or _default_scorer(self.settings)
        self.distance_table = distance_table or DistanceTable()
        self.clock = clock
        self.tracker = ProgressTracker(self.store, self.publisher, clock=clock)
        self.planner = AdaptivePlanner(
            self.publisher,
            self.distance_table,
            cooldown_seconds=self.settings.replan_cooldown_seconds,
        )

    def generate(self, request: ItineraryRequest) -> ItineraryResult:
        return generate_itinerary(request, self.scorer, self.distance_table, self.settings)

    def create_goal_based_itinerary(
        self,
        request: ItineraryRequest,
        goal_type: Optional[GoalType] = None,
        overrides: Optional[GoalMetrics] = None,
    ) -> GoalItineraryResult:
        """Plan under a named goal and start tracking progress against it.

        A user holds at most one active goal per goal type; a repeat call plans
        again under that goal instead of opening a second one.

        A failed goal write does not discard the itinerary; the result comes
        back with ``sync_status`` set to ``pending`` (retryable) or ``error``.
        """
        goal_type = goal_type or request.goal_type
        if goal_type is None:
            raise PreferenceValidationError(["goal_type is required for a goal-based itinerary"])
        request = request.model_copy(
            update={"goal_type": goal_type, "goal_overrides": overrides or request.goal_overrides}
        )

        result, constraints, pool = _run_pipeline(request, self.scorer, self.distance_table, self.settings)

        sync_status = "synced"
        record = self._active_goal(request.user_id, goal_type)
        if record is not None:
            logger.info("Reusing active %s goal %s for %s", goal_type, record.goal.id, request.user_id)
        else:
            record = self.tracker.new_goal(request.user_id, goal_type, request.goal_overrides, now=self.clock())
            try:
                self.store.create(record)
            except GoalStoreError as exc:
                sync_status = "pending" if exc.retryable else "error"
                logger.warning("Goal %s not persisted (%s)", record.goal.id, sync_status, exc_info=True)
        self.planner.register(record.goal.id, constraints, pool, result)

        return GoalItineraryResult(
            **result.model_dump(),
            goal=record.goal,
            milestones=record.milestones,
            recommendations=record.report.recommendations if record.report else [],
            sync_status=sync_status,
            can_adapt=sync_status == "synced",
        )

    def _active_goal(self, user_id: str, goal_type: GoalType) -> Optional[GoalRecord]:
        """The user's oldest active goal of this type; one goal per (user, type)."""
        try:
            matches = self.store.find(user_id, goal_type=goal_type, status="active")
        except GoalStoreError:
            logger.warning("Goal lookup for %s/%s failed; creating a new goal", user_id, goal_type, exc_info=True)
            return None
        return matches[0] if matches else None

    def update_progress_and_adapt(
        self,
        goal_id: str,
        metric: ProgressMetric,
        value: Union[float, str],
        timestamp: Optional[float] = None,
        reason: Optional[str] = None,
        visited_destination_id: Optional[str] = None,
    ) -> ProgressUpdateResult:
        """Apply one progress update, then replan if it trips a trigger.

        ``visited_destination_id`` is recorded only when the update is applied,
        before the replan runs, so the new plan leaves it out.
        """
        timestamp = self.clock() if timestamp is None else timestamp
        outcome = self.tracker.update_progress(goal_id, metric, value, timestamp, reason=reason)
        if outcome.status != "applied" or outcome.goal is None or outcome.report is None:
            return outcome
        if visited_destination_id:
            self.planner.record_visit(goal_id, visited_destination_id)
        adaptation = self.planner.adapt(outcome.goal, outcome.report.overall_progress, timestamp)
        return outcome.model_copy(update={"adaptation": adaptation})

    def record_visit(self, goal_id: str, destination_id: str) -> bool:
        return self.planner.record_visit(goal_id, destination_id)

    def current_itinerary(self, goal_id: str) -> Optional[ItineraryResult]:
        return self.planner.current_plan(goal_id)

    def rollback(self, goal_id: str, version: Optional[int] = None) -> Tuple[int, ItineraryResult]:
        return self.planner.rollback(goal_id, version)

    def update_goal_status(self, goal_id: str, status: GoalStatus) -> Goal:
        return self.tracker.update_goal_status(goal_id, status)

    def progress_report(self, goal_id: str) -> ProgressReport:
        return self.tracker.report(goal_id)

    def progress_history(self, goal_id: str, limit: Optional[int] = None) -> List[ProgressUpdate]:
        return self.tracker.progress_history(goal_id, limit)

    def recommend_goals(self, preferences: TravelPreferences) -> List[GoalRecommendation]:
        validate_preferences(preferences)
        return recommend_goals(preferences)

    def export_goal_data(self, goal_id: str) -> Dict[str, Any]:
        data = self.tracker.export_goal_data(goal_id)
        data["itinerary_versions"] = [plan.model_dump(mode="json") for plan in self.planner.versions(goal_id)]
        return data


def _default_scorer(settings: EngineSettings) -> RelevanceScorer:
    if settings.scorer_url:
        return HttpRelevanceScorer(settings.scorer_url, timeout=settings.scorer_timeout)
    return NeutralScorer()
