# Goal/progress persistence boundary. The engine only needs create/get/update by
# id plus a per-user lookup; production deployments plug a database-backed store
# behind the same methods.

from __future__ import annotations

import threading
from typing import Dict, List, Optional, Protocol

from itinerary_engine.errors import GoalNotFoundError
from itinerary_engine.schemas import GoalRecord, GoalStatus, GoalType


class GoalStore(Protocol):
    def create(self, record: GoalRecord) -> GoalRecord:
        ...

    def get(self, goal_id: str) -> GoalRecord:
        ...

    def update(self, record: GoalRecord) -> GoalRecord:
        ...

    def find(
        self,
        user_id: str,
        goal_type: Optional[GoalType] = None,
        status: Optional[GoalStatus] = None,
    ) -> List[GoalRecord]:
        ...


class InMemoryGoalStore:
    """Process-local store. Records are copied on the way in and out."""

    def __init__(self) -> None:
        self._records: Dict[str, GoalRecord] = {}
        self._lock = threading.Lock()

    def create(self, record: GoalRecord) -> GoalRecord:
        with self._lock:
            self._records[record.goal.id] = record.model_copy(deep=True)
        return record

    def get(self, goal_id: str) -> GoalRecord:
        with self._lock:
            record = self._records.get(goal_id)
            if record is None:
                raise GoalNotFoundError(goal_id)
            return record.model_copy(deep=True)

    def update(self, record: GoalRecord) -> GoalRecord:
        with self._lock:
            if record.goal.id not in self._records:
                raise GoalNotFoundError(record.goal.id)
            self._records[record.goal.id] = record.model_copy(deep=True)
        return record

    def find(
        self,
        user_id: str,
        goal_type: Optional[GoalType] = None,
        status: Optional[GoalStatus] = None,
    ) -> List[GoalRecord]:
        with self._lock:
            matches = [
                rec.model_copy(deep=True)
                for rec in self._records.values()
                if rec.goal.user_id == user_id
                and (goal_type is None or rec.goal.type == goal_type)
                and (status is None or rec.goal.status == status)
            ]
        # Oldest first so callers picking "the" goal for a type stay stable.
        return sorted(matches, key=lambda rec: (rec.goal.created_at, rec.goal.id))
