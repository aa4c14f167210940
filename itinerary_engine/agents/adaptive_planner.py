"""Regenerate the rest of a trip when live progress drifts from the goal."""
from __future__ import annotations

import datetime as dt
import logging
import os
import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from itinerary_engine.agents.budget_allocator import allocate_budget
from itinerary_engine.agents.day_scheduler import schedule_days
from itinerary_engine.agents.destination_scorer import rank
from itinerary_engine.agents.goal_resolver import activity_target
from itinerary_engine.agents.itinerary_summary import build_result
from itinerary_engine.agents.recommendation_adjuster import filter_for_goal
from itinerary_engine.errors import GoalNotFoundError, ItineraryEngineError, ReplanError
from itinerary_engine.schemas import (
    AdaptationResult,
    DayChange,
    Goal,
    ItineraryDay,
    ItineraryResult,
    ResolvedConstraints,
    ScoredDestination,
)
from itinerary_engine.tools.distance_table import DistanceTable
from itinerary_engine.tools.notifier import NullPublisher, Publisher

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)
_level = os.getenv("ITINERARY_ENGINE_LOG_LEVEL", "INFO").upper()
logger.setLevel(getattr(logging, _level, logging.INFO))
logger.propagate = False

DEFAULT_COOLDOWN_SECONDS = 300.0

BUDGET_SPENT_TRIGGER = 0.9
BUDGET_PROGRESS_FLOOR = 50.0
RATING_TRIGGER = 0.8
ACTIVITY_TRIGGER = 0.3

TRIGGER_BUDGET = "budget_overrun"
TRIGGER_RATING = "low_rating"
TRIGGER_ACTIVITIES = "activity_shortfall"

EVENT_ITINERARY_ADAPTED = "itinerary_adapted"


@dataclass
class PlanSession:
    """Per-goal planning state: the scored pool, visits and plan versions."""

    goal_id: str
    constraints: ResolvedConstraints
    pool: List[ScoredDestination]
    versions: List[ItineraryResult] = field(default_factory=list)
    visited: Set[str] = field(default_factory=set)
    last_replan_at: Optional[float] = None


def elapsed_trip_days(constraints: ResolvedConstraints, now: float) -> int:
    """Whole trip days completed before the day containing ``now`` (UTC)."""
    today = dt.datetime.fromtimestamp(now, tz=dt.timezone.utc).date()
    elapsed = (today - constraints.start_date).days
    return max(0, min(constraints.days, elapsed))


def evaluate_triggers(goal: Goal, overall_progress: float, elapsed_days: int) -> List[Tuple[str, str]]:
    """Return ``(code, description)`` for every replanning condition that holds."""
    metrics, progress = goal.target_metrics, goal.progress
    fired: List[Tuple[str, str]] = []

    if metrics.max_budget:
        spent = progress.current_budget / metrics.max_budget
        if spent > BUDGET_SPENT_TRIGGER and overall_progress < BUDGET_PROGRESS_FLOOR:
            fired.append(
                (TRIGGER_BUDGET, f"{spent:.0%} of the budget spent at {overall_progress:.0f}% goal progress")
            )
    if metrics.min_rating and 0 < progress.average_rating < metrics.min_rating * RATING_TRIGGER:
        fired.append(
            (TRIGGER_RATING, f"average rating {progress.average_rating:.1f} is below {metrics.min_rating * RATING_TRIGGER:.1f}")
        )
    planned = activity_target(metrics, days=elapsed_days)
    if planned > 0 and progress.activities_completed < planned * ACTIVITY_TRIGGER:
        fired.append(
            (TRIGGER_ACTIVITIES, f"{progress.activities_completed:.0f} of {planned} planned activities completed")
        )
    return fired


def diff_days(before: Sequence[ItineraryDay], after: Sequence[ItineraryDay], from_day: int = 1) -> List[DayChange]:
    """Per-day change list between two plans, for days numbered ``from_day`` and later."""
    old = {day.day: day.destination_ids() for day in before}
    new = {day.day: day.destination_ids() for day in after}
    changes: List[DayChange] = []
    for number in sorted(set(old) | set(new)):
        if number < from_day:
            continue
        was, now = old.get(number, []), new.get(number, [])
        if was == now:
            continue
        if not was:
            kind, text = "added", f"Day {number}: {len(now)} visit(s) added"
        elif not now:
            kind, text = "removed", f"Day {number}: all {len(was)} visit(s) removed"
        elif Counter(was) == Counter(now):
            kind, text = "reordered", f"Day {number}: visits reordered"
        else:
            swapped = len(set(was) ^ set(now))
            kind, text = "replaced", f"Day {number}: {swapped} destination(s) swapped"
        changes.append(DayChange(day=number, change=kind, before=was, after=now, description=text))
    return changes


class AdaptivePlanner:
    """Keep plan versions per goal and replan when triggers fire.

    A replan for a goal is skipped while another one for the same goal is in
    flight and for ``cooldown_seconds`` after the last successful one. A replan
    that fails leaves the current version in place.
    """

    def __init__(
        self,
        publisher: Optional[Publisher] = None,
        distance_table: Optional[DistanceTable] = None,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
    ):
        self.publisher = publisher or NullPublisher()
        self.distance_table = distance_table or DistanceTable()
        self.cooldown_seconds = cooldown_seconds
        self._sessions: Dict[str, PlanSession] = {}
        self._in_flight: Set[str] = set()
        self._lock = threading.Lock()

    def register(
        self,
        goal_id: str,
        constraints: ResolvedConstraints,
        pool: Sequence[ScoredDestination],
        plan: ItineraryResult,
    ) -> None:
        """Start tracking ``plan`` for a goal, or add it as the goal's next version."""
        with self._lock:
            session = self._sessions.get(goal_id)
            if session is None:
                self._sessions[goal_id] = PlanSession(
                    goal_id=goal_id,
                    constraints=constraints,
                    pool=list(pool),
                    versions=[plan],
                )
                return
            session.constraints = constraints
            session.pool = list(pool)
            session.versions.append(plan)

    def has_plan(self, goal_id: str) -> bool:
        with self._lock:
            return goal_id in self._sessions

    def current_plan(self, goal_id: str) -> Optional[ItineraryResult]:
        with self._lock:
            session = self._sessions.get(goal_id)
            return session.versions[-1] if session else None

    def versions(self, goal_id: str) -> List[ItineraryResult]:
        with self._lock:
            session = self._sessions.get(goal_id)
            return list(session.versions) if session else []

    def record_visit(self, goal_id: str, destination_id: str) -> bool:
        """Mark a destination as visited so replans leave it out."""
        with self._lock:
            session = self._sessions.get(goal_id)
            if session is None:
                logger.warning("Visit to %s recorded for goal %s without a plan", destination_id, goal_id)
                return False
            session.visited.add(destination_id)
            return True

    def adapt(self, goal: Goal, overall_progress: float, now: float) -> AdaptationResult:
        """Check the triggers for ``goal`` and replan the remaining days if any fire."""
        with self._lock:
            session = self._sessions.get(goal.id)
        if session is None:
            return AdaptationResult(goal_id=goal.id, status="no_plan", reason="No itinerary registered", timestamp=now)
        if goal.status != "active":
            return AdaptationResult(
                goal_id=goal.id, status="not_triggered", reason=f"Goal is {goal.status}", timestamp=now
            )

        elapsed = elapsed_trip_days(session.constraints, now)
        fired = evaluate_triggers(goal, overall_progress, elapsed)
        if not fired:
            return AdaptationResult(goal_id=goal.id, status="not_triggered", timestamp=now)
        triggers = [code for code, _ in fired]
        reason = "; ".join(text for _, text in fired)

        with self._lock:
            if goal.id in self._in_flight:
                suppressed = "Replan already in progress"
            elif session.last_replan_at is not None and now - session.last_replan_at < self.cooldown_seconds:
                suppressed = "Replan cooldown active"
            else:
                suppressed = None
                self._in_flight.add(goal.id)
        if suppressed:
            logger.info("Replan for %s suppressed: %s", goal.id, suppressed)
            return AdaptationResult(
                goal_id=goal.id, status="suppressed", triggers=triggers, reason=suppressed, timestamp=now
            )

        try:
            return self._replan(goal, session, elapsed, triggers, reason, now)
        finally:
            with self._lock:
                self._in_flight.discard(goal.id)

    def rollback(self, goal_id: str, version: Optional[int] = None) -> Tuple[int, ItineraryResult]:
        """Make an earlier version current again; returns ``(version, plan)``.

        Versions are numbered from 1. The restored plan is appended as the
        newest version so the history is never rewritten.
        """
        with self._lock:
            session = self._sessions.get(goal_id)
            if session is None:
                raise GoalNotFoundError(goal_id)
            count = len(session.versions)
            target = count - 1 if version is None else version
            if target < 1 or target >= count:
                raise ReplanError(f"cannot roll back goal {goal_id} to version {target} of {count}")
            restored = session.versions[target - 1]
            session.versions.append(restored)
            number = len(session.versions)
        logger.info("Goal %s rolled back to version %d (now version %d)", goal_id, target, number)
        return number, restored

    def _replan(
        self,
        goal: Goal,
        session: PlanSession,
        elapsed: int,
        triggers: List[str],
        reason: str,
        now: float,
    ) -> AdaptationResult:
        previous = session.versions[-1]
        try:
            plan = self._regenerate(goal, session, previous, elapsed)
        except (ItineraryEngineError, ValueError) as exc:
            logger.warning("Replan for %s failed; keeping version %d", goal.id, len(session.versions), exc_info=True)
            return AdaptationResult(
                goal_id=goal.id,
                status="failed",
                triggers=triggers,
                itinerary=previous,
                version=len(session.versions),
                reason=str(exc),
                timestamp=now,
            )

        changes = diff_days(previous.days, plan.days, from_day=elapsed + 1)
        with self._lock:
            if changes:
                session.versions.append(plan)
            session.last_replan_at = now
            version = len(session.versions)
            current = session.versions[-1]

        logger.info("Goal %s replanned (%s): %d day(s) changed", goal.id, ", ".join(triggers), len(changes))
        self._publish(
            goal.user_id,
            {
                "goal_id": goal.id,
                "version": version,
                "triggers": triggers,
                "changes": [change.model_dump(mode="json") for change in changes],
            },
        )
        return AdaptationResult(
            goal_id=goal.id,
            status="adapted",
            triggers=triggers,
            changes=changes,
            itinerary=current,
            version=version,
            reason=reason,
            timestamp=now,
        )

    def _regenerate(
        self,
        goal: Goal,
        session: PlanSession,
        previous: ItineraryResult,
        elapsed: int,
    ) -> ItineraryResult:
        constraints = session.constraints
        remaining_days = constraints.days - elapsed
        if remaining_days <= 0:
            raise ReplanError("no trip days remain to replan")
        remaining_budget = max(0.0, constraints.total_budget - goal.progress.current_budget)

        kept = [day for day in previous.days if day.day <= elapsed]
        taken = set(session.visited)
        taken |= {dest_id for day in kept for dest_id in day.destination_ids()}
        taken -= set(constraints.allow_repeats)
        pool = [
            item
            for item in session.pool
            if item.destination.id not in taken and item.destination.estimated_cost <= remaining_budget
        ]
        remaining = constraints.model_copy(
            update={
                "days": remaining_days,
                "start_date": constraints.start_date + dt.timedelta(days=elapsed),
                "total_budget": remaining_budget,
                "candidate_limit": remaining_days * constraints.max_daily_activities,
            }
        )
        if constraints.goal_type is not None:
            ranked = filter_for_goal(pool, goal.type, remaining.candidate_limit)
        else:
            ranked = rank(pool)[: remaining.candidate_limit]

        new_days, warnings = schedule_days(ranked, remaining, self.distance_table, first_day=elapsed + 1)
        return build_result(
            kept + new_days,
            constraints,
            allocate_budget(remaining_budget, constraints.goal_type),
            warnings,
        )

    def _publish(self, user_id: str, payload: Dict[str, Any]) -> None:
        try:
            self.publisher.publish(user_id, EVENT_ITINERARY_ADAPTED, payload)
        except Exception:
            logger.warning("Publishing %s for %s failed", EVENT_ITINERARY_ADAPTED, user_id, exc_info=True)
