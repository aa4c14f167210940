"""Merge a named goal template with user overrides into one constraint set."""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from itinerary_engine.agents.day_scheduler import parse_clock
from itinerary_engine.agents.recommendation_adjuster import goal_constraints
from itinerary_engine.config import EngineSettings
from itinerary_engine.errors import PreferenceValidationError
from itinerary_engine.schemas import (
    GoalMetrics,
    GoalRecommendation,
    GoalType,
    ResolvedConstraints,
    SchedulingConstraints,
    TravelPreferences,
)

DEFAULT_DAILY_ACTIVITIES = 4

# Category weights used when no goal is active.
DEFAULT_CATEGORY_WEIGHTS: Dict[str, float] = {
    "cultural": 1.0,
    "nature": 0.9,
    "adventure": 0.8,
    "food": 0.7,
    "shopping": 0.6,
    "entertainment": 0.5,
    "historical": 1.0,
    "religious": 0.9,
    "beach": 0.8,
    "mountain": 0.7,
}

GOAL_TEMPLATES: Dict[str, Dict[str, Any]] = {
    "budget": {
        "name": "Budget Traveler",
        "description": "Focus on cost-effective travel with great value experiences",
        "metrics": {
            "max_budget": 2_000_000,
            "min_rating": 3.5,
            "preferred_accommodation": "budget",
            "travel_style": "cultural",
            "max_daily_activities": 3,
        },
        "category_weights": {
            "cultural": 1.0,
            "historical": 0.9,
            "religious": 0.9,
            "nature": 0.8,
            "food": 0.7,
            "beach": 0.6,
            "mountain": 0.6,
            "shopping": 0.4,
            "entertainment": 0.3,
        },
    },
    "balanced": {
        "name": "Balanced Explorer",
        "description": "Mix of comfort and adventure with moderate spending",
        "metrics": {
            "max_budget": 5_000_000,
            "min_rating": 4.0,
            "preferred_accommodation": "moderate",
            "travel_style": "cultural",
            "max_daily_activities": 4,
        },
        "category_weights": dict(DEFAULT_CATEGORY_WEIGHTS),
    },
    "luxury": {
        "name": "Luxury Experience",
        "description": "Premium travel with high-end accommodations and exclusive experiences",
        "metrics": {
            "max_budget": 15_000_000,
            "min_rating": 4.5,
            "preferred_accommodation": "luxury",
            "travel_style": "relaxation",
            "max_daily_activities": 3,
        },
        "category_weights": {
            "relaxation": 1.0,
            "spa": 1.0,
            "resort": 1.0,
            "beach": 0.9,
            "entertainment": 0.8,
            "food": 0.8,
            "cultural": 0.7,
            "shopping": 0.7,
            "nature": 0.6,
            "adventure": 0.3,
        },
    },
    "backpacker": {
        "name": "Backpacker Adventure",
        "description": "Authentic, immersive travel with focus on local experiences",
        "metrics": {
            "max_budget": 1_500_000,
            "min_rating": 3.0,
            "preferred_accommodation": "budget",
            "travel_style": "adventure",
            "max_daily_activities": 5,
        },
        "category_weights": {
            "adventure": 1.0,
            "hiking": 1.0,
            "local": 1.0,
            "nature": 0.9,
            "mountain": 0.9,
            "food": 0.8,
            "cultural": 0.7,
            "beach": 0.7,
            "shopping": 0.3,
            "resort": 0.2,
        },
    },
}


def goal_template(goal_type: GoalType) -> Tuple[str, str, GoalMetrics]:
    """Return ``(name, description, target metrics)`` for a goal type."""
    template = GOAL_TEMPLATES[goal_type]
    return template["name"], template["description"], GoalMetrics(**template["metrics"])


def merge_metrics(goal_type: GoalType, overrides: Optional[GoalMetrics] = None) -> GoalMetrics:
    """Overlay explicitly supplied override fields on the template metrics."""
    _, _, metrics = goal_template(goal_type)
    if overrides is None:
        return metrics
    explicit = overrides.model_dump(exclude_unset=True, exclude_none=True)
    return metrics.model_copy(update=explicit)


def validate_preferences(preferences: TravelPreferences) -> None:
    problems: List[str] = []
    if preferences.budget <= 0:
        problems.append("budget must be greater than zero")
    if preferences.days <= 0:
        problems.append("days must be greater than zero")
    if preferences.travelers <= 0:
        problems.append("travelers must be greater than zero")
    if problems:
        raise PreferenceValidationError(problems)


def resolve_constraints(
    preferences: TravelPreferences,
    goal_type: Optional[GoalType] = None,
    overrides: Optional[GoalMetrics] = None,
    scheduling: Optional[SchedulingConstraints] = None,
    settings: Optional[EngineSettings] = None,
) -> ResolvedConstraints:
    """Produce the concrete constraint set every downstream stage reads.

    Preferences are validated before anything else so invalid requests never
    reach scoring or scheduling. Without a goal the default category table and
    four activities per day apply.
    """
    validate_preferences(preferences)
    settings = settings or EngineSettings()
    scheduling = scheduling or SchedulingConstraints()

    day_start = scheduling.start_time or settings.day_start
    day_end = scheduling.end_time or settings.day_end
    buffer_minutes = scheduling.buffer_minutes if scheduling.buffer_minutes is not None else settings.buffer_minutes
    try:
        start_minutes, end_minutes = parse_clock(day_start), parse_clock(day_end)
    except ValueError as exc:
        raise PreferenceValidationError([str(exc)]) from exc
    if end_minutes <= start_minutes:
        raise PreferenceValidationError([f"day window {day_start}-{day_end} is empty"])

    target: Optional[GoalMetrics] = None
    total_budget = float(preferences.budget)
    daily_activities = DEFAULT_DAILY_ACTIVITIES
    category_weights = dict(DEFAULT_CATEGORY_WEIGHTS)
    pacing: Dict[str, Any] = {}
    if goal_type is not None:
        pacing = goal_constraints(goal_type)
        target = merge_metrics(goal_type, overrides)
        if target.max_budget:
            total_budget = min(total_budget, float(target.max_budget))
        if target.max_daily_activities:
            daily_activities = int(target.max_daily_activities)
        category_weights = dict(GOAL_TEMPLATES[goal_type]["category_weights"])

    return ResolvedConstraints(
        goal_type=goal_type,
        total_budget=total_budget,
        days=preferences.days,
        travelers=preferences.travelers,
        start_date=preferences.start_date,
        accommodation_type=preferences.accommodation_type,
        day_start=day_start,
        day_end=day_end,
        buffer_minutes=buffer_minutes,
        max_daily_activities=daily_activities,
        candidate_limit=preferences.days * daily_activities,
        category_weights=category_weights,
        target_metrics=target,
        must_visit=list(scheduling.must_visit),
        allow_repeats=list(scheduling.allow_repeats),
        avoid_crowds=pacing.get("avoid_crowds", False) if scheduling.avoid_crowds is None else scheduling.avoid_crowds,
        activity_intensity=pacing.get("activity_intensity"),
        max_daily_travel_time=pacing.get("max_daily_travel_time"),
    )


def recommend_goals(preferences: TravelPreferences) -> List[GoalRecommendation]:
    """Rank goal types by how well they suit the traveler's preferences."""
    interests = [item.lower() for item in (*preferences.interests, *preferences.themes) if item]
    recommendations: List[GoalRecommendation] = []
    for goal_type, template in GOAL_TEMPLATES.items():
        metrics = template["metrics"]
        suitability = 0.5
        reasons: List[str] = []
        suggested_budget: Optional[float] = None

        ceiling = metrics.get("max_budget")
        if preferences.budget and ceiling:
            ratio = preferences.budget / ceiling
            if 0.8 <= ratio <= 1.2:
                suitability += 0.2
                reasons.append("Budget aligns well with your spending capacity")
            elif ratio < 0.8:
                suitability += 0.3
                reasons.append("Great value for your budget")
                suggested_budget = float(ceiling)

        style = (metrics.get("travel_style") or "").lower()
        if style and any(interest in style for interest in interests):
            suitability += 0.3
            reasons.append(f"Matches your interest in {style}")

        if preferences.accommodation_type == metrics.get("preferred_accommodation"):
            suitability += 0.2
            reasons.append("Accommodation preferences match")

        recommendations.append(
            GoalRecommendation(
                goal_type=goal_type,
                suitability=round(min(suitability, 1.0), 4),
                reasons=reasons,
                suggested_budget=suggested_budget,
            )
        )
    # sorted() is stable, so equal suitability keeps template order.
    return sorted(recommendations, key=lambda rec: -rec.suitability)


def activity_target(metrics: Optional[GoalMetrics], days: int = 7) -> int:
    """Planned activity count for a stretch of ``days``, scaled from the daily cap."""
    per_day = metrics.max_daily_activities if metrics and metrics.max_daily_activities else DEFAULT_DAILY_ACTIVITIES
    return int(per_day) * max(days, 0)
