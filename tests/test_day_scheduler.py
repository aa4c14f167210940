from datetime import date

import pytest

from itinerary_engine.agents.day_scheduler import (
    EMPTY_POOL_WARNING,
    dominant_location,
    format_clock,
    parse_clock,
    schedule_days,
)
from itinerary_engine.agents.goal_resolver import resolve_constraints
from itinerary_engine.schemas import (
    Coordinates,
    Destination,
    SchedulingConstraints,
    ScoredDestination,
    TravelPreferences,
)


def _constraints(days: int = 1, start: str = "08:00", end: str = "18:00", buffer: int = 30):
    prefs = TravelPreferences(budget=1_000_000, days=days, start_date=date(2025, 3, 1))
    scheduling = SchedulingConstraints(start_time=start, end_time=end, buffer_minutes=buffer)
    return resolve_constraints(prefs, scheduling=scheduling)


def _scored(
    dest_id: str,
    duration: int,
    score: float,
    *,
    category: str = "cultural",
    location: str = "Jakarta",
    coordinates=None,
    cost: float = 10_000,
    rating: float = 4.0,
) -> ScoredDestination:
    dest = Destination(
        id=dest_id,
        name=dest_id.title(),
        category=category,
        location=location,
        coordinates=coordinates,
        estimated_cost=cost,
        duration=duration,
        rating=rating,
    )
    return ScoredDestination(destination=dest, base_score=score, adjusted_score=score)


def test_packs_sequentially_and_stops_at_first_overflow():
    candidates = [
        _scored("museum", 120, 0.9),
        _scored("palace", 90, 0.8),
        _scored("market", 60, 0.7),
        _scored("park", 300, 0.6),
    ]

    days, warnings = schedule_days(candidates, _constraints())

    assert len(days) == 1
    visits = days[0].visits
    assert [(v.destination.id, v.start_time, v.end_time) for v in visits] == [
        ("museum", "08:00", "10:00"),
        ("palace", "10:30", "12:00"),
        ("market", "12:30", "13:30"),
    ]
    assert "park" not in days[0].destination_ids()
    assert warnings == []


def test_visits_fit_within_the_day_window():
    candidates = [_scored(f"d{i}", 100 + 10 * i, 0.9 - 0.01 * i) for i in range(8)]
    constraints = _constraints(start="09:00", end="17:00", buffer=20)

    days, _ = schedule_days(candidates, constraints)

    window = parse_clock("17:00") - parse_clock("09:00")
    for day in days:
        used = sum(v.duration for v in day.visits) + 20 * max(len(day.visits) - 1, 0)
        assert used <= window
        assert all(parse_clock(v.end_time) <= parse_clock("17:00") for v in day.visits)


def test_first_candidate_too_long_leaves_day_empty_with_warning():
    days, warnings = schedule_days([_scored("trek", 700, 0.9), _scored("cafe", 30, 0.5)], _constraints())

    assert days[0].visits == []
    assert days[0].confidence == 0.0
    assert days[0].warnings
    assert warnings == days[0].warnings


def test_empty_pool_produces_empty_days_with_warning():
    days, warnings = schedule_days([], _constraints(days=3))

    assert [day.day for day in days] == [1, 2, 3]
    assert all(day.visits == [] for day in days)
    assert warnings == [EMPTY_POOL_WARNING]


def test_candidates_are_chunked_across_days_with_iso_dates():
    candidates = [_scored(f"d{i}", 60, 0.9 - 0.05 * i) for i in range(5)]

    days, _ = schedule_days(candidates, _constraints(days=2))

    assert [len(day.visits) for day in days] == [3, 2]
    assert [day.date for day in days] == ["2025-03-01", "2025-03-02"]


def test_nearest_neighbour_walk_when_all_candidates_have_coordinates():
    candidates = [
        _scored("start", 60, 0.9, coordinates=Coordinates(lat=0.0, lng=0.0)),
        _scored("far", 60, 0.8, coordinates=Coordinates(lat=0.0, lng=10.0)),
        _scored("near", 60, 0.7, coordinates=Coordinates(lat=0.0, lng=1.0)),
    ]

    days, _ = schedule_days(candidates, _constraints())

    assert days[0].destination_ids() == ["start", "near", "far"]


def test_category_diversity_breaks_up_close_scores():
    candidates = [
        _scored("temple-a", 60, 0.90, category="temple"),
        _scored("temple-b", 60, 0.89, category="temple"),
        _scored("beach", 60, 0.85, category="beach"),
    ]

    days, _ = schedule_days(candidates, _constraints())

    assert days[0].destination_ids() == ["temple-a", "beach", "temple-b"]


def test_transport_leg_added_when_dominant_city_changes():
    candidates = [
        _scored("monas", 60, 0.9, location="Jakarta"),
        _scored("kota-tua", 60, 0.85, location="Jakarta"),
        _scored("tangkuban", 60, 0.8, location="Bandung, West Java"),
        _scored("kawah", 60, 0.75, location="Bandung"),
    ]

    days, _ = schedule_days(candidates, _constraints(days=2))

    assert days[0].transportation is None
    leg = days[1].transportation
    assert leg is not None
    assert (leg.from_location, leg.to_location) == ("Jakarta", "Bandung")
    assert leg.mode == "bus/train"
    assert leg.distance_km == 150.0
    assert leg.cost == 150_000.0
    assert days[1].total_cost == pytest.approx(20_000 + 150_000)


def test_transport_over_goal_travel_limit_is_flagged():
    candidates = [
        _scored("monas", 60, 0.9, location="Jakarta"),
        _scored("braga", 60, 0.8, location="Bandung"),
    ]
    prefs = TravelPreferences(budget=1_000_000, days=2, start_date=date(2025, 3, 1))

    relaxed = resolve_constraints(prefs, goal_type="luxury")
    days, warnings = schedule_days(candidates, relaxed)

    assert relaxed.max_daily_travel_time == 240
    assert days[1].transportation.duration == 360
    assert warnings == ["Day 2: bus/train Jakarta → Bandung takes 360 min, over the 240-minute daily travel limit"]
    assert days[1].warnings == warnings

    _, backpacker_warnings = schedule_days(candidates, resolve_constraints(prefs, goal_type="backpacker"))
    assert backpacker_warnings == []


def test_confidence_scales_mean_score_and_caps_at_one():
    days, _ = schedule_days([_scored("a", 60, 0.5), _scored("b", 60, 0.3)], _constraints())
    assert days[0].confidence == pytest.approx(0.48)

    days, _ = schedule_days([_scored("c", 60, 0.95, rating=4.8)], _constraints())
    assert days[0].confidence == 1.0
    assert "Includes highly-rated destinations" in days[0].notes


def test_dominant_location_prefers_first_seen_on_tie():
    days, _ = schedule_days(
        [_scored("a", 30, 0.9, location="Bali"), _scored("b", 30, 0.8, location="Ubud")],
        _constraints(),
    )
    assert dominant_location(days[0].visits) == "Bali"


def test_clock_helpers():
    assert parse_clock("08:30") == 510
    assert format_clock(510) == "08:30"
    with pytest.raises(ValueError):
        parse_clock("25:00")
    with pytest.raises(ValueError):
        parse_clock("noon")
