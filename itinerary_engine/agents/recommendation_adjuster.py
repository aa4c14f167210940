"""Goal-aware re-scoring of ranked destinations, stays and bookable activities."""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from itinerary_engine.agents.destination_scorer import rank
from itinerary_engine.schemas import (
    Accommodation,
    AccommodationTier,
    AdjustedOption,
    Destination,
    GoalType,
    ScoredDestination,
)

MIN_ADJUSTED_SCORE = 0.3
DEFAULT_CATEGORY_PRIORITY = 0.5

GOAL_FILTERS: Dict[str, Dict[str, Any]] = {
    "budget": {
        "price_range": (0.0, 100_000.0),
        "rating_threshold": 3.0,
        "category_priorities": {
            "cultural": 1.0,
            "nature": 0.9,
            "food": 0.8,
            "shopping": 0.6,
            "entertainment": 0.5,
            "historical": 0.9,
            "beach": 0.7,
            "mountain": 0.8,
            "waterfall": 0.8,
            "temple": 0.9,
        },
        "accommodation_level": "budget",
        "activity_intensity": "medium",
    },
    "balanced": {
        "price_range": (50_000.0, 300_000.0),
        "rating_threshold": 3.5,
        "category_priorities": {
            "cultural": 1.0,
            "nature": 0.9,
            "food": 0.8,
            "adventure": 0.7,
            "shopping": 0.6,
            "entertainment": 0.7,
            "historical": 0.9,
            "beach": 0.8,
            "mountain": 0.8,
            "waterfall": 0.8,
            "temple": 0.9,
        },
        "accommodation_level": "moderate",
        "activity_intensity": "medium",
    },
    "luxury": {
        "price_range": (200_000.0, 2_000_000.0),
        "rating_threshold": 4.0,
        "category_priorities": {
            "cultural": 0.8,
            "nature": 0.9,
            "food": 0.7,
            "relaxation": 1.0,
            "shopping": 0.8,
            "entertainment": 0.9,
            "historical": 0.8,
            "beach": 0.9,
            "mountain": 0.7,
            "spa": 1.0,
            "resort": 1.0,
        },
        "accommodation_level": "luxury",
        "activity_intensity": "low",
    },
    "backpacker": {
        "price_range": (0.0, 75_000.0),
        "rating_threshold": 2.5,
        "category_priorities": {
            "adventure": 1.0,
            "nature": 0.9,
            "cultural": 0.8,
            "food": 0.9,
            "historical": 0.7,
            "beach": 0.8,
            "mountain": 0.9,
            "waterfall": 0.9,
            "hiking": 1.0,
            "local": 1.0,
        },
        "accommodation_level": "budget",
        "activity_intensity": "high",
    },
}

_INTENSITY_TRAVEL_MINUTES = {"high": 480, "medium": 360, "low": 240}
_ACCOMMODATION_RANK = {"budget": 1, "moderate": 2, "luxury": 3}

# Tag or category fragments that mark an activity as belonging to an intensity band.
INTENSITY_INDICATORS: Dict[str, Tuple[str, ...]] = {
    "high": ("adventure", "hiking", "extreme", "climbing", "diving"),
    "medium": ("cultural", "nature", "food", "shopping", "sightseeing"),
    "low": ("relaxation", "spa", "resort", "beach", "reading"),
}


def price_adjustment(cost: float, low: float, high: float) -> float:
    if low <= cost <= high:
        return 0.2
    if cost < low:
        return 0.1
    return -0.3


def rating_boost(rating: float, threshold: float) -> float:
    if rating >= threshold:
        return (rating - threshold) * 0.2
    return (rating - threshold) * 0.5


def category_priority(goal_type: GoalType, category: str) -> float:
    priorities = GOAL_FILTERS[goal_type]["category_priorities"]
    return float(priorities.get(category.lower(), DEFAULT_CATEGORY_PRIORITY))


def adjust_destinations(candidates: Iterable[ScoredDestination], goal_type: GoalType) -> List[ScoredDestination]:
    """Re-score every candidate against the goal's filter rules, best first."""
    rules = GOAL_FILTERS[goal_type]
    low, high = rules["price_range"]
    threshold = rules["rating_threshold"]

    adjusted: List[ScoredDestination] = []
    for candidate in candidates:
        dest = candidate.destination
        price = price_adjustment(dest.estimated_cost, low, high)
        boost = rating_boost(dest.rating, threshold)
        priority = category_priority(goal_type, dest.category)

        score = candidate.base_score + price * 0.2 + boost * 0.3 + (priority - 0.5) * 0.4
        in_window = low <= dest.estimated_cost <= high
        meets_rating = dest.rating >= threshold
        alignment = min(1.0, 0.3 * in_window + 0.3 * meets_rating + 0.4 * priority)

        reasoning = list(candidate.reasoning)
        reasoning.append(f"Price {'fits' if price > 0 else 'exceeds'} goal budget range")
        if boost != 0:
            reasoning.append(f"Rating {'meets' if meets_rating else 'below'} goal standards")
        if priority > 0.7:
            reasoning.append(f"High priority for {dest.category} category")

        adjustments = dict(candidate.adjustments)
        adjustments.update(
            {
                "price_adjustment": price,
                "rating_boost": round(boost, 6),
                "category_priority": priority,
            }
        )
        adjusted.append(
            candidate.model_copy(
                update={
                    "adjusted_score": round(max(0.0, min(1.0, score)), 6),
                    "goal_alignment": round(max(0.0, alignment), 6),
                    "adjustments": adjustments,
                    "reasoning": reasoning,
                }
            )
        )
    return rank(adjusted)


def filter_for_goal(
    candidates: Iterable[ScoredDestination],
    goal_type: GoalType,
    limit: Optional[int] = None,
) -> List[ScoredDestination]:
    """Drop candidates at or below the score floor and cap the survivors."""
    survivors = [item for item in adjust_destinations(candidates, goal_type) if item.adjusted_score > MIN_ADJUSTED_SCORE]
    if limit is not None:
        survivors = survivors[: max(limit, 0)]
    return survivors


def goal_constraints(goal_type: GoalType) -> Dict[str, Any]:
    """Scheduling defaults implied by the goal's activity intensity."""
    intensity = GOAL_FILTERS[goal_type]["activity_intensity"]
    return {
        "activity_intensity": intensity,
        "max_daily_travel_time": _INTENSITY_TRAVEL_MINUTES[intensity],
        "avoid_crowds": goal_type in ("luxury", "backpacker"),
    }


def accommodation_match(level: str, target: str) -> float:
    """1.0 for the target tier, minus 0.3 per tier away; unknown tiers count as moderate."""
    have = _ACCOMMODATION_RANK.get(level.strip().lower(), 2)
    want = _ACCOMMODATION_RANK.get(target, 2)
    return max(0.0, 1.0 - abs(have - want) * 0.3)


def activity_intensity_match(activity: Destination, intensity: str) -> float:
    labels = [tag.lower() for tag in activity.tags] or [activity.category.lower()]
    indicators = INTENSITY_INDICATORS[intensity]
    return 0.8 if any(hint in label for label in labels for hint in indicators) else 0.4


def adjust_accommodations(
    options: Sequence[Accommodation],
    goal_type: GoalType,
    preferred_level: Optional[AccommodationTier] = None,
) -> List[AdjustedOption]:
    """Rank stays by tier match, price window and rating under the goal.

    ``preferred_level`` (the goal's preferred accommodation) wins over the
    goal table's default tier.
    """
    rules = GOAL_FILTERS[goal_type]
    target = preferred_level or rules["accommodation_level"]
    low, high = rules["price_range"]

    adjusted: List[AdjustedOption] = []
    for option in options:
        match = accommodation_match(option.level, target)
        price = price_adjustment(option.cost, low, high)
        rating = (option.rating or 3.0) / 5.0 * 0.1
        reasoning: List[str] = []
        if match > 0.8:
            reasoning.append(f"Perfect match for {target} accommodation preference")
        if price > 0:
            reasoning.append("Price aligns with goal budget")
        adjusted.append(
            AdjustedOption(
                id=option.id,
                name=option.name,
                adjusted_score=round(max(0.0, min(1.0, match * 0.6 + price * 0.3 + rating)), 6),
                goal_alignment=round(match * 0.7, 6),
                adjustments={"level_match": match, "price_adjustment": price, "rating_boost": round(rating, 6)},
                reasoning=reasoning,
            )
        )
    return _rank_options(adjusted)


def adjust_activities(activities: Sequence[Destination], goal_type: GoalType) -> List[AdjustedOption]:
    """Rank bookable activities by intensity fit, category priority and price."""
    rules = GOAL_FILTERS[goal_type]
    intensity = rules["activity_intensity"]
    low, high = rules["price_range"]

    adjusted: List[AdjustedOption] = []
    for activity in activities:
        match = activity_intensity_match(activity, intensity)
        priority = category_priority(goal_type, activity.category)
        price = price_adjustment(activity.estimated_cost, low, high)
        reasoning: List[str] = []
        if match > 0.7:
            reasoning.append(f"Activity intensity matches {intensity} preference")
        if priority > 0.7:
            reasoning.append(f"Preferred {activity.category} activity")
        adjusted.append(
            AdjustedOption(
                id=activity.id,
                name=activity.name,
                adjusted_score=round(max(0.0, min(1.0, match * 0.4 + priority * 0.4 + price * 0.2)), 6),
                goal_alignment=round(match * 0.5, 6),
                adjustments={"intensity_match": match, "category_priority": priority, "price_adjustment": price},
                reasoning=reasoning,
            )
        )
    return _rank_options(adjusted)


def _rank_options(options: List[AdjustedOption]) -> List[AdjustedOption]:
    return sorted(options, key=lambda item: (-item.adjusted_score, item.id))
