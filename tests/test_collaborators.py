import pytest

from itinerary_engine.agents.progress_tracker import ProgressTracker
from itinerary_engine.errors import GoalNotFoundError
from itinerary_engine.schemas import Coordinates
from itinerary_engine.tools.distance_table import DistanceTable, haversine_km, transport_for_distance
from itinerary_engine.tools.goal_store import InMemoryGoalStore
from itinerary_engine.tools.notifier import SubscriptionPublisher


def _record(user_id: str, goal_type: str, now: float):
    return ProgressTracker(InMemoryGoalStore(), clock=lambda: now).new_goal(user_id, goal_type)


def test_in_memory_store_copies_records():
    store = InMemoryGoalStore()
    record = _record("u1", "budget", 10.0)
    store.create(record)

    fetched = store.get(record.goal.id)
    fetched.milestones.clear()

    assert store.get(record.goal.id).milestones
    with pytest.raises(GoalNotFoundError):
        store.get("missing")
    with pytest.raises(GoalNotFoundError):
        store.update(_record("u1", "luxury", 99.0))


def test_in_memory_store_find_filters_and_orders():
    store = InMemoryGoalStore()
    store.create(_record("u1", "luxury", 30.0))
    store.create(_record("u1", "budget", 10.0))
    store.create(_record("u2", "budget", 20.0))

    assert [rec.goal.type for rec in store.find("u1")] == ["budget", "luxury"]
    assert len(store.find("u1", goal_type="budget")) == 1
    assert store.find("u1", status="completed") == []


def test_subscription_publisher_fans_out_and_survives_bad_subscriber():
    publisher = SubscriptionPublisher()
    received = []

    def broken(event, payload):
        raise RuntimeError("socket closed")

    unsubscribe = publisher.subscribe("u1", lambda event, payload: received.append((event, payload)))
    publisher.subscribe("u1", broken)
    publisher.subscribe("u1", lambda event, payload: received.append(("second", payload)))

    publisher.publish("u1", "progress_update", {"goal_id": "g"})
    publisher.publish("u2", "progress_update", {"goal_id": "other"})

    assert received == [("progress_update", {"goal_id": "g"}), ("second", {"goal_id": "g"})]
    assert publisher.subscriber_count("u1") == 3
    unsubscribe()
    assert publisher.subscriber_count("u1") == 2


def test_distance_table_lookup_is_symmetric_with_fallback():
    table = DistanceTable()

    assert table.distance_km("Jakarta", "Bandung") == 150.0
    assert table.distance_km("bandung", "JAKARTA") == 150.0
    assert table.distance_km("Bali", "Bali") == 0.0
    assert table.distance_km("Lombok", "Medan") == 500.0
    assert DistanceTable({("a", "b"): 12}, default_km=99).distance_km("b", "c") == 99


@pytest.mark.parametrize(
    "km,mode,minutes,cost",
    [(20, "car/taxi", 120, 50_000), (150, "bus/train", 360, 150_000), (1_000, "flight", 480, 1_000_000)],
)
def test_transport_bands(km, mode, minutes, cost):
    assert transport_for_distance(km) == (mode, minutes, cost)


def test_haversine_distance():
    jakarta = Coordinates(lat=-6.2088, lng=106.8456)
    bandung = Coordinates(lat=-6.9175, lng=107.6191)

    assert haversine_km(jakarta, bandung) == pytest.approx(116, abs=3)
    assert haversine_km(jakarta, jakarta) == 0.0
