import pytest

from itinerary_engine.agents.budget_allocator import ALLOCATION_TABLE, CATEGORIES, allocate_budget


@pytest.mark.parametrize("goal_type", ["budget", "balanced", "luxury", "backpacker", None])
def test_percentages_sum_to_one_hundred(goal_type):
    breakdown = allocate_budget(3_000_000, goal_type)

    assert sum(breakdown.percentages.values()) == pytest.approx(100)
    assert set(breakdown.amounts) == set(CATEGORIES)
    assert sum(breakdown.amounts.values()) == pytest.approx(3_000_000)


def test_luxury_split_weights_accommodation():
    breakdown = allocate_budget(10_000_000, "luxury")

    assert breakdown.amounts["accommodation"] == 4_000_000
    assert breakdown.amounts["food"] == 1_500_000
    assert breakdown.goal_type == "luxury"


def test_no_goal_uses_balanced_split():
    breakdown = allocate_budget(1_000_000)

    assert breakdown.percentages == ALLOCATION_TABLE["balanced"]
    assert breakdown.goal_type is None
