"""Split a resolved budget across spending categories."""
from __future__ import annotations

from typing import Dict, Optional

from itinerary_engine.schemas import BudgetBreakdown, GoalType

CATEGORIES = ("accommodation", "food", "transportation", "activities", "miscellaneous")

# Percent of the total per category, by goal type.
ALLOCATION_TABLE: Dict[str, Dict[str, float]] = {
    "budget": {"accommodation": 20, "food": 25, "transportation": 20, "activities": 25, "miscellaneous": 10},
    "balanced": {"accommodation": 25, "food": 20, "transportation": 20, "activities": 25, "miscellaneous": 10},
    "luxury": {"accommodation": 40, "food": 15, "transportation": 15, "activities": 20, "miscellaneous": 10},
    "backpacker": {"accommodation": 15, "food": 30, "transportation": 25, "activities": 20, "miscellaneous": 10},
}
DEFAULT_ALLOCATION = "balanced"


def allocate_budget(total: float, goal_type: Optional[GoalType] = None) -> BudgetBreakdown:
    """Apply the goal's fixed split to ``total``; no goal uses the balanced split."""
    percentages = dict(ALLOCATION_TABLE[goal_type or DEFAULT_ALLOCATION])
    amounts = {name: round(total * percentages[name] / 100.0, 2) for name in CATEGORIES}
    return BudgetBreakdown(
        total=round(total, 2),
        goal_type=goal_type,
        percentages=percentages,
        amounts=amounts,
    )
