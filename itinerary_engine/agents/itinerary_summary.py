"""Assemble scheduled days into a priced, scored itinerary result."""
from __future__ import annotations

from typing import List, Optional

from itinerary_engine.schemas import (
    BudgetBreakdown,
    ItineraryDay,
    ItineraryResult,
    OptimizationSummary,
    ResolvedConstraints,
)

BASE_MINUTES_PER_ACTIVITY = 180
BASE_SATISFACTION_RATING = 3.5
RAINY_MONTHS = (11, 12, 1, 2, 3)


def build_result(
    days: List[ItineraryDay],
    constraints: ResolvedConstraints,
    breakdown: BudgetBreakdown,
    warnings: Optional[List[str]] = None,
) -> ItineraryResult:
    total_cost = round(sum(day.total_cost for day in days), 2)
    total_duration = sum(day.total_time for day in days)
    return ItineraryResult(
        days=days,
        total_cost=total_cost,
        total_duration=total_duration,
        budget_breakdown=breakdown,
        optimization=optimization_summary(days, constraints),
        goal_alignment=itinerary_alignment(days),
        warnings=list(warnings or []),
    )


def optimization_summary(days: List[ItineraryDay], constraints: ResolvedConstraints) -> OptimizationSummary:
    visits = [visit for day in days for visit in day.visits]
    total_cost = sum(day.total_cost for day in days)
    budget = constraints.total_budget

    cost = max(0.0, (budget - total_cost) / budget * 100) if budget > 0 else 0.0
    time = 0.0
    satisfaction = 0.0
    if visits:
        baseline = len(visits) * BASE_MINUTES_PER_ACTIVITY
        time = max(0.0, (baseline - sum(day.total_time for day in days)) / baseline * 100)
        mean_rating = sum(visit.destination.rating for visit in visits) / len(visits)
        mean_score = sum(visit.adjusted_score for visit in visits) / len(visits)
        satisfaction = max(0.0, (mean_rating - BASE_SATISFACTION_RATING) * 20 + mean_score * 30)

    return OptimizationSummary(
        time_optimization=round(time, 2),
        cost_optimization=round(cost, 2),
        satisfaction_optimization=round(satisfaction, 2),
        reasoning=[
            f"Cost optimized by {cost:.1f}%",
            f"Time efficiency improved by {time:.1f}%",
            f"Satisfaction potential increased by {satisfaction:.1f}%",
        ],
        risk_factors=risk_factors(total_cost, constraints),
    )


def risk_factors(total_cost: float, constraints: ResolvedConstraints) -> List[str]:
    risks: List[str] = []
    if total_cost > constraints.total_budget * 1.1:
        risks.append("Estimated costs exceed budget - consider alternatives")
    if constraints.avoid_crowds:
        risks.append("Peak season travel may result in crowds despite optimization")
    if constraints.start_date.month in RAINY_MONTHS:
        risks.append("Traveling during rainy season - outdoor activities may be affected")
    return risks


def itinerary_alignment(days: List[ItineraryDay]) -> Optional[float]:
    """Mean goal alignment of the scheduled visits, or None without a goal."""
    values = [visit.goal_alignment for day in days for visit in day.visits if visit.goal_alignment is not None]
    if not values:
        return None
    return round(sum(values) / len(values), 4)
