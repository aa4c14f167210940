"""Live progress tracking against a stored travel goal."""
from __future__ import annotations

import logging
import math
import os
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from itinerary_engine.agents.goal_resolver import activity_target, goal_template, merge_metrics
from itinerary_engine.errors import GoalNotFoundError, GoalStoreError, InvalidProgressError
from itinerary_engine.schemas import (
    Goal,
    GoalMetrics,
    GoalProgress,
    GoalRecord,
    GoalStatus,
    GoalType,
    Milestone,
    ProgressMetric,
    ProgressReport,
    ProgressUpdate,
    ProgressUpdateResult,
)
from itinerary_engine.tools.goal_store import GoalStore
from itinerary_engine.tools.notifier import NullPublisher, Publisher

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)
_level = os.getenv("ITINERARY_ENGINE_LOG_LEVEL", "INFO").upper()
logger.setLevel(getattr(logging, _level, logging.INFO))
logger.propagate = False

COMPLETION_THRESHOLD = 90.0
HISTORY_LIMIT = 100
RECENT_UPDATES = 5
NEXT_MILESTONES = 3
MAX_RATING = 5.0

_METRIC_MILESTONE_TYPE: Dict[str, Optional[str]] = {
    "current_budget": "budget",
    "average_rating": "rating",
    "activities_completed": "activities",
    "destinations_visited": "destinations",
    "accommodation_level": None,
}
_ACCOMMODATION_LEVELS = ("budget", "moderate", "luxury")

_GOAL_TYPE_TIPS = {
    "budget": "Look for group discounts and early booking deals.",
    "luxury": "Consider premium experiences and private tours.",
    "backpacker": "Connect with other travelers for shared experiences.",
    "balanced": "Mix high-value experiences with budget-friendly options.",
}

EVENT_PROGRESS_UPDATE = "progress_update"
EVENT_MILESTONE_ACHIEVED = "milestone_achieved"
EVENT_GOAL_COMPLETED = "goal_completed"
EVENT_GOAL_STATUS = "goal_status_changed"


def initialize_milestones(goal: Goal) -> List[Milestone]:
    """Derive the checkpoint list for a freshly created goal."""
    metrics = goal.target_metrics
    milestones: List[Milestone] = []

    if metrics.max_budget:
        for pct in (25, 50, 75):
            milestones.append(
                Milestone(
                    id=f"{goal.id}-budget-{pct}",
                    goal_id=goal.id,
                    type="budget",
                    target=metrics.max_budget * pct / 100,
                    description=f"{pct}% of budget spent",
                )
            )
    if metrics.min_rating:
        milestones.append(
            Milestone(
                id=f"{goal.id}-rating-target",
                goal_id=goal.id,
                type="rating",
                target=metrics.min_rating,
                description=f"Average rating of {metrics.min_rating} achieved",
            )
        )
    if metrics.max_daily_activities:
        planned = activity_target(metrics, days=7)
        milestones.append(
            Milestone(
                id=f"{goal.id}-activities-50",
                goal_id=goal.id,
                type="activities",
                target=planned // 2,
                description="50% of planned activities completed",
            )
        )
        milestones.append(
            Milestone(
                id=f"{goal.id}-activities-100",
                goal_id=goal.id,
                type="activities",
                target=planned,
                description="All planned activities completed",
            )
        )
    if metrics.preferred_destinations:
        count = len(metrics.preferred_destinations)
        milestones.append(
            Milestone(
                id=f"{goal.id}-destinations-target",
                goal_id=goal.id,
                type="destinations",
                target=count,
                description=f"Visited {count} preferred destinations",
            )
        )
    return milestones


def overall_progress(metrics: GoalMetrics, progress: GoalProgress) -> float:
    """Average of the capped per-metric ratios the goal defines, as 0-100."""
    ratios: List[float] = []
    if metrics.max_budget:
        ratios.append(_ratio(progress.current_budget, metrics.max_budget))
    if metrics.min_rating:
        ratios.append(_ratio(progress.average_rating, metrics.min_rating))
    if metrics.max_daily_activities:
        ratios.append(_ratio(progress.activities_completed, activity_target(metrics, days=7)))
    if metrics.preferred_destinations:
        ratios.append(_ratio(progress.destinations_visited, len(metrics.preferred_destinations)))
    if not ratios:
        return 0.0
    return round(max(0.0, min(100.0, sum(ratios) / len(ratios) * 100)), 2)


def build_insights(goal: Goal, overall: float) -> List[str]:
    metrics, progress = goal.target_metrics, goal.progress
    insights: List[str] = []
    if overall < 25:
        insights.append("Just getting started! Keep up the momentum.")
    elif overall < 50:
        insights.append("Making good progress towards your goal!")
    elif overall < 75:
        insights.append("More than halfway there! Stay focused.")
    elif overall < 100:
        insights.append("So close to achieving your goal!")

    if metrics.max_budget:
        spent = progress.current_budget / metrics.max_budget
        if spent > 0.8:
            insights.append("Budget is running low. Consider cost-saving alternatives.")
        elif spent < 0.3:
            insights.append("Plenty of budget remaining. Consider upgrading experiences.")
    if metrics.min_rating and 0 < progress.average_rating < metrics.min_rating:
        insights.append("Consider higher-rated destinations to meet your quality goals.")
    if metrics.max_daily_activities:
        if progress.activities_completed < activity_target(metrics, days=7) * 0.5:
            insights.append("Try to complete more activities to maximize your trip experience.")
    return insights


def build_recommendations(goal: Goal) -> List[str]:
    metrics, progress = goal.target_metrics, goal.progress
    recommendations: List[str] = []
    if metrics.max_budget and progress.current_budget > metrics.max_budget * 0.8:
        recommendations.append("Look for free or low-cost activities to extend your trip.")
        recommendations.append("Consider local transportation options to save money.")
    if metrics.min_rating and 0 < progress.average_rating < metrics.min_rating:
        recommendations.append("Prioritize highly-rated destinations for remaining activities.")
        recommendations.append("Check recent reviews before booking.")
    if metrics.max_daily_activities and progress.activities_completed < metrics.max_daily_activities * 3:
        recommendations.append("Add more activities to your remaining days.")
        recommendations.append("Consider combining multiple attractions in one day.")
    recommendations.append(_GOAL_TYPE_TIPS[goal.type])
    return recommendations


def next_milestones(milestones: List[Milestone], limit: int = NEXT_MILESTONES) -> List[Milestone]:
    """Closest unachieved checkpoints first."""
    pending = [item for item in milestones if not item.achieved]
    return sorted(pending, key=lambda item: item.target - item.current)[:limit]


class ProgressTracker:
    """Apply progress updates to stored goals and publish the outcome.

    Updates for one goal id are serialized with a per-goal lock. Each metric
    keeps the timestamp of its last accepted write; an update strictly older
    than that is discarded as stale, so out-of-order deliveries cannot roll a
    metric back.
    """

    def __init__(
        self,
        store: GoalStore,
        publisher: Optional[Publisher] = None,
        clock: Callable[[], float] = time.time,
        history_limit: int = HISTORY_LIMIT,
    ):
        self.store = store
        self.publisher = publisher or NullPublisher()
        self.clock = clock
        self.history_limit = history_limit
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def lock_for(self, goal_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(goal_id, threading.Lock())

    def new_goal(
        self,
        user_id: str,
        goal_type: GoalType,
        overrides: Optional[GoalMetrics] = None,
        now: Optional[float] = None,
    ) -> GoalRecord:
        """Build a goal with milestones and an initial report. Nothing is persisted."""
        now = self.clock() if now is None else now
        name, description, _ = goal_template(goal_type)
        goal = Goal(
            id=f"{user_id}-{goal_type}-{int(now * 1000)}",
            user_id=user_id,
            type=goal_type,
            name=name,
            description=description,
            target_metrics=merge_metrics(goal_type, overrides),
            progress=GoalProgress(last_updated=now),
            created_at=now,
            updated_at=now,
        )
        milestones = initialize_milestones(goal)
        return GoalRecord(goal=goal, milestones=milestones, report=self._build_report(goal, milestones, [], now))

    def update_progress(
        self,
        goal_id: str,
        metric: ProgressMetric,
        value: Union[float, str],
        timestamp: Optional[float] = None,
        reason: Optional[str] = None,
    ) -> ProgressUpdateResult:
        timestamp = self.clock() if timestamp is None else timestamp
        coerced = _coerce_metric(metric, value)

        with self.lock_for(goal_id):
            try:
                record = self.store.get(goal_id)
            except GoalNotFoundError:
                logger.warning("Progress update for unknown goal %s ignored", goal_id)
                return ProgressUpdateResult(status="not_found")

            goal = record.goal
            last_write = goal.progress.metric_timestamps.get(metric)
            if last_write is not None and timestamp < last_write:
                logger.info(
                    "Discarding stale %s update for %s (%.3f < %.3f)", metric, goal_id, timestamp, last_write
                )
                return ProgressUpdateResult(status="stale", goal=goal, report=record.report)

            stamps = dict(goal.progress.metric_timestamps)
            stamps[metric] = timestamp
            progress = goal.progress.model_copy(
                update={
                    metric: coerced,
                    "last_updated": max(goal.progress.last_updated, timestamp),
                    "metric_timestamps": stamps,
                }
            )
            milestones, achieved = _evaluate_milestones(record.milestones, metric, coerced, timestamp)
            overall = overall_progress(goal.target_metrics, progress)

            completed_now = goal.status == "active" and overall >= COMPLETION_THRESHOLD
            goal = goal.model_copy(
                update={
                    "progress": progress,
                    "status": "completed" if completed_now else goal.status,
                    "updated_at": timestamp,
                }
            )
            update = ProgressUpdate(goal_id=goal_id, metric=metric, value=coerced, timestamp=timestamp, reason=reason)
            history = (list(record.history) + [update])[-self.history_limit:]
            report = self._build_report(goal, milestones, history, timestamp, overall=overall)
            record = GoalRecord(goal=goal, milestones=milestones, report=report, history=history)

            sync_status = "synced"
            try:
                self.store.update(record)
            except GoalStoreError as exc:
                sync_status = "pending" if exc.retryable else "error"
                logger.warning("Could not persist progress for %s (%s)", goal_id, sync_status, exc_info=True)

        logger.info("Goal %s: %s=%s, overall progress %.1f%%", goal_id, metric, coerced, overall)
        self._publish(
            goal.user_id,
            EVENT_PROGRESS_UPDATE,
            {
                "goal_id": goal_id,
                "metric": metric,
                "value": coerced,
                "overall_progress": overall,
                "timestamp": timestamp,
            },
        )
        for milestone in achieved:
            self._publish(
                goal.user_id,
                EVENT_MILESTONE_ACHIEVED,
                {"goal_id": goal_id, "milestone": milestone.model_dump(mode="json")},
            )
        if completed_now:
            self._publish(goal.user_id, EVENT_GOAL_COMPLETED, {"goal_id": goal_id, "overall_progress": overall})

        return ProgressUpdateResult(status="applied", goal=goal, report=report, sync_status=sync_status)

    def update_goal_status(self, goal_id: str, status: GoalStatus, now: Optional[float] = None) -> Goal:
        """Set the lifecycle status. Unknown ids raise ``GoalNotFoundError``."""
        now = self.clock() if now is None else now
        with self.lock_for(goal_id):
            record = self.store.get(goal_id)
            goal = record.goal.model_copy(update={"status": status, "updated_at": now})
            self.store.update(record.model_copy(update={"goal": goal}))
        self._publish(goal.user_id, EVENT_GOAL_STATUS, {"goal_id": goal_id, "status": status})
        return goal

    def report(self, goal_id: str) -> ProgressReport:
        record = self.store.get(goal_id)
        if record.report is not None:
            return record.report
        return self._build_report(record.goal, record.milestones, record.history, self.clock())

    def progress_history(self, goal_id: str, limit: Optional[int] = None) -> List[ProgressUpdate]:
        history = self.store.get(goal_id).history
        return history[-limit:] if limit else history

    def export_goal_data(self, goal_id: str) -> Dict[str, Any]:
        record = self.store.get(goal_id)
        data = record.model_dump(mode="json")
        data["exported_at"] = self.clock()
        return data

    def _build_report(
        self,
        goal: Goal,
        milestones: List[Milestone],
        history: List[ProgressUpdate],
        timestamp: float,
        overall: Optional[float] = None,
    ) -> ProgressReport:
        if overall is None:
            overall = overall_progress(goal.target_metrics, goal.progress)
        return ProgressReport(
            goal_id=goal.id,
            overall_progress=overall,
            milestones=milestones,
            next_milestones=next_milestones(milestones),
            insights=build_insights(goal, overall),
            recommendations=build_recommendations(goal),
            recent_updates=history[-RECENT_UPDATES:],
            timestamp=timestamp,
        )

    def _publish(self, user_id: str, event: str, payload: Dict[str, Any]) -> None:
        try:
            self.publisher.publish(user_id, event, payload)
        except Exception:
            logger.warning("Publishing %s for %s failed", event, user_id, exc_info=True)


def _evaluate_milestones(
    milestones: List[Milestone],
    metric: str,
    value: Union[float, str],
    timestamp: float,
) -> Tuple[List[Milestone], List[Milestone]]:
    """Refresh milestones of the metric's type. Achievement never reverts."""
    kind = _METRIC_MILESTONE_TYPE.get(metric)
    if kind is None:
        return list(milestones), []
    updated: List[Milestone] = []
    achieved: List[Milestone] = []
    for milestone in milestones:
        if milestone.type != kind:
            updated.append(milestone)
            continue
        changes: Dict[str, Any] = {"current": float(value)}
        if not milestone.achieved and float(value) >= milestone.target:
            changes.update({"achieved": True, "achieved_at": timestamp})
        refreshed = milestone.model_copy(update=changes)
        if refreshed.achieved and not milestone.achieved:
            achieved.append(refreshed)
        updated.append(refreshed)
    return updated, achieved


def _coerce_metric(metric: str, value: Union[float, str]) -> Union[float, str]:
    if metric == "accommodation_level":
        level = str(value).strip().lower()
        if level not in _ACCOMMODATION_LEVELS:
            raise InvalidProgressError(f"accommodation_level must be one of {', '.join(_ACCOMMODATION_LEVELS)}")
        return level
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise InvalidProgressError(f"{metric} expects a number, got {value!r}") from exc
    if not math.isfinite(number) or number < 0:
        raise InvalidProgressError(f"{metric} must be a finite, non-negative number, got {value!r}")
    if metric == "average_rating" and number > MAX_RATING:
        raise InvalidProgressError(f"average_rating must be between 0 and {MAX_RATING:g}, got {value!r}")
    return number


def _ratio(value: float, target: float) -> float:
    if target <= 0:
        return 0.0
    return max(0.0, min(1.0, value / target))
