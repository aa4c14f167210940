import datetime as dt

import pytest

from itinerary_engine.agents import adaptive_planner
from itinerary_engine.agents.adaptive_planner import (
    TRIGGER_ACTIVITIES,
    TRIGGER_BUDGET,
    TRIGGER_RATING,
    diff_days,
    elapsed_trip_days,
    evaluate_triggers,
)
from itinerary_engine.agents.progress_tracker import ProgressTracker
from itinerary_engine.errors import GoalNotFoundError, ReplanError
from itinerary_engine.orchestrator import ItineraryService
from itinerary_engine.schemas import (
    Destination,
    ItineraryDay,
    ItineraryRequest,
    ScheduledVisit,
    TravelPreferences,
)
from itinerary_engine.tools.goal_store import InMemoryGoalStore

START = dt.date(2025, 3, 1)


def _at(day: int, hour: int = 10) -> float:
    return dt.datetime(2025, 3, day, hour, tzinfo=dt.timezone.utc).timestamp()


def _request() -> ItineraryRequest:
    destinations = [
        Destination(
            id=f"d{i}",
            name=f"Site {i}",
            category="cultural",
            location="Yogyakarta",
            estimated_cost=40_000,
            duration=60,
            rating=4.5,
        )
        for i in range(1, 10)
    ]
    return ItineraryRequest(
        user_id="traveler-7",
        preferences=TravelPreferences(budget=1_000_000, days=3, start_date=START),
        destinations=destinations,
        goal_type="budget",
    )


def _service() -> ItineraryService:
    return ItineraryService(clock=lambda: _at(1, 8))


def _goal(**progress):
    tracker = ProgressTracker(InMemoryGoalStore(), clock=lambda: 0.0)
    goal = tracker.new_goal("t", "budget").goal
    return goal.model_copy(update={"progress": goal.progress.model_copy(update=progress)})


def _day(number: int, ids):
    visits = [
        ScheduledVisit(
            destination=Destination(id=dest_id, name=dest_id, category="food", location="Bali", duration=30),
            start_time="09:00",
            end_time="09:30",
            duration=30,
            base_score=0.5,
            adjusted_score=0.5,
        )
        for dest_id in ids
    ]
    return ItineraryDay(day=number, date="2025-03-01", visits=visits)


def test_budget_trigger_needs_low_progress():
    goal = _goal(current_budget=1_900_000)

    assert [code for code, _ in evaluate_triggers(goal, 30.0, 0)] == [TRIGGER_BUDGET]
    assert evaluate_triggers(goal, 60.0, 0) == []


def test_rating_trigger_below_eighty_percent_of_floor():
    assert [code for code, _ in evaluate_triggers(_goal(average_rating=2.5), 10.0, 0)] == [TRIGGER_RATING]
    assert evaluate_triggers(_goal(average_rating=3.0), 10.0, 0) == []
    assert evaluate_triggers(_goal(average_rating=0.0), 10.0, 0) == []


def test_activity_trigger_uses_prorated_target():
    # budget goal: 3 activities a day, two days elapsed -> 6 planned
    assert [code for code, _ in evaluate_triggers(_goal(activities_completed=1), 10.0, 2)] == [TRIGGER_ACTIVITIES]
    assert evaluate_triggers(_goal(activities_completed=2), 10.0, 2) == []
    assert evaluate_triggers(_goal(activities_completed=0), 10.0, 0) == []


def test_elapsed_days_are_clamped_to_trip_length():
    service = _service()
    result = service.create_goal_based_itinerary(_request())
    session = service.planner._sessions[result.goal.id]

    assert elapsed_trip_days(session.constraints, _at(1)) == 0
    assert elapsed_trip_days(session.constraints, _at(3)) == 2
    assert elapsed_trip_days(session.constraints, _at(20)) == 3
    assert elapsed_trip_days(session.constraints, dt.datetime(2025, 2, 1, tzinfo=dt.timezone.utc).timestamp()) == 0


def test_diff_classifies_day_changes():
    before = [_day(1, ["a", "b"]), _day(2, ["c", "d"]), _day(3, ["e"]), _day(4, [])]
    after = [_day(1, ["a", "b"]), _day(2, ["d", "c"]), _day(3, ["f"]), _day(4, ["g"]), _day(5, [])]

    changes = diff_days(before, after)

    assert [(c.day, c.change) for c in changes] == [(2, "reordered"), (3, "replaced"), (4, "added")]
    assert changes[1].before == ["e"]
    assert changes[1].after == ["f"]

    removed = diff_days([_day(1, ["a"])], [_day(1, [])])
    assert removed[0].change == "removed"
    assert diff_days(before, after, from_day=3)[0].day == 3


def test_replan_regenerates_remaining_days_and_keeps_history():
    service = _service()
    created = service.create_goal_based_itinerary(_request())
    goal_id = created.goal.id
    assert [day.destination_ids() for day in created.days] == [["d1", "d2", "d3"], ["d4", "d5", "d6"], ["d7", "d8", "d9"]]

    service.record_visit(goal_id, "d7")
    service.record_visit(goal_id, "d8")
    outcome = service.update_progress_and_adapt(goal_id, "activities_completed", 1, timestamp=_at(3))

    adaptation = outcome.adaptation
    assert adaptation.status == "adapted"
    assert TRIGGER_ACTIVITIES in adaptation.triggers
    assert adaptation.version == 2
    assert [(c.day, c.change) for c in adaptation.changes] == [(3, "replaced")]
    new_plan = adaptation.itinerary
    assert [day.destination_ids() for day in new_plan.days[:2]] == [["d1", "d2", "d3"], ["d4", "d5", "d6"]]
    assert new_plan.days[2].destination_ids() == ["d9"]
    assert new_plan.days[2].date == "2025-03-03"
    all_ids = [dest_id for day in new_plan.days for dest_id in day.destination_ids()]
    assert len(all_ids) == len(set(all_ids))

    versions = service.planner.versions(goal_id)
    assert len(versions) == 2
    assert versions[0].days[2].destination_ids() == ["d7", "d8", "d9"]


def test_no_replan_before_the_trip_starts():
    service = _service()
    goal_id = service.create_goal_based_itinerary(_request()).goal.id

    outcome = service.update_progress_and_adapt(goal_id, "activities_completed", 0, timestamp=_at(1))

    assert outcome.adaptation.status == "not_triggered"
    assert len(service.planner.versions(goal_id)) == 1


def test_cooldown_and_in_flight_suppress_replans():
    service = _service()
    goal_id = service.create_goal_based_itinerary(_request()).goal.id
    service.record_visit(goal_id, "d9")

    first = service.update_progress_and_adapt(goal_id, "activities_completed", 1, timestamp=_at(3))
    again = service.update_progress_and_adapt(goal_id, "activities_completed", 1, timestamp=_at(3) + 10)

    assert first.adaptation.status == "adapted"
    assert again.adaptation.status == "suppressed"
    assert again.adaptation.reason == "Replan cooldown active"

    other_id = service.create_goal_based_itinerary(_request().model_copy(update={"user_id": "other"})).goal.id
    service.planner._in_flight.add(other_id)
    busy = service.update_progress_and_adapt(other_id, "activities_completed", 1, timestamp=_at(3))
    assert busy.adaptation.status == "suppressed"
    assert busy.adaptation.reason == "Replan already in progress"


def test_failed_replan_leaves_plan_untouched(monkeypatch):
    service = _service()
    goal_id = service.create_goal_based_itinerary(_request()).goal.id
    original = service.current_itinerary(goal_id)

    def _boom(*args, **kwargs):
        raise ReplanError("scheduler exploded")

    monkeypatch.setattr(adaptive_planner, "schedule_days", _boom)
    outcome = service.update_progress_and_adapt(goal_id, "activities_completed", 1, timestamp=_at(3))

    assert outcome.status == "applied"
    assert outcome.adaptation.status == "failed"
    assert outcome.adaptation.reason == "scheduler exploded"
    assert service.current_itinerary(goal_id) is original
    assert len(service.planner.versions(goal_id)) == 1


def test_rollback_restores_previous_version():
    service = _service()
    goal_id = service.create_goal_based_itinerary(_request()).goal.id
    original = service.current_itinerary(goal_id)

    with pytest.raises(ReplanError):
        service.rollback(goal_id)

    service.record_visit(goal_id, "d9")
    service.update_progress_and_adapt(goal_id, "activities_completed", 1, timestamp=_at(3))
    assert len(service.planner.versions(goal_id)) == 2

    version, plan = service.rollback(goal_id)

    assert version == 3
    assert plan.days == original.days
    assert service.current_itinerary(goal_id).days == original.days

    with pytest.raises(GoalNotFoundError):
        service.rollback("missing")
