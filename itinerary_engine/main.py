from __future__ import annotations

from typing import Any, Dict, Optional, Union

from fastapi import Body, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ValidationError

from itinerary_engine.config import EngineSettings
from itinerary_engine.errors import (
    GoalNotFoundError,
    GoalStoreError,
    InvalidProgressError,
    PreferenceValidationError,
    ReplanError,
)
from itinerary_engine.orchestrator import ItineraryService
from itinerary_engine.schemas import GoalStatus, ItineraryRequest, ProgressMetric, TravelPreferences
from itinerary_engine.tools.notifier import SubscriptionPublisher

settings = EngineSettings.from_env()
service = ItineraryService(publisher=SubscriptionPublisher(), settings=settings)

app = FastAPI(title="Itinerary Engine API")

# Operators scope browser access with ITINERARY_ENGINE_ALLOWED_ORIGINS.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class ProgressPayload(BaseModel):
    metric: ProgressMetric
    value: Union[float, str]
    timestamp: Optional[float] = None
    reason: Optional[str] = None
    visited_destination_id: Optional[str] = None


class StatusPayload(BaseModel):
    status: GoalStatus


class RollbackPayload(BaseModel):
    version: Optional[int] = None


def _validate(model: Any, payload: Dict[str, Any]) -> Any:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors()) from exc


def _goal_missing(exc: GoalNotFoundError) -> HTTPException:
    return HTTPException(status_code=404, detail=str(exc))


@app.post("/api/itinerary")
def api_itinerary(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    """Plain itinerary, or a tracked goal itinerary when ``goal_type`` is set."""
    request = _validate(ItineraryRequest, payload)
    try:
        if request.goal_type is not None:
            return service.create_goal_based_itinerary(request).model_dump(mode="json")
        return service.generate(request).model_dump(mode="json")
    except PreferenceValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.problems) from exc


@app.post("/api/goals/recommendations")
def api_goal_recommendations(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    preferences = _validate(TravelPreferences, payload.get("preferences", payload))
    try:
        recommendations = service.recommend_goals(preferences)
    except PreferenceValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.problems) from exc
    return {"recommendations": [rec.model_dump(mode="json") for rec in recommendations]}


@app.post("/api/goals/{goal_id}/progress")
def api_goal_progress(goal_id: str, payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    update = _validate(ProgressPayload, payload)
    try:
        outcome = service.update_progress_and_adapt(
            goal_id,
            update.metric,
            update.value,
            update.timestamp,
            reason=update.reason,
            visited_destination_id=update.visited_destination_id,
        )
    except InvalidProgressError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except GoalStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    if outcome.status == "not_found":
        raise HTTPException(status_code=404, detail=f"goal {goal_id!r} not found")
    return outcome.model_dump(mode="json")


@app.get("/api/goals/{goal_id}/report")
def api_goal_report(goal_id: str) -> Dict[str, Any]:
    try:
        return service.progress_report(goal_id).model_dump(mode="json")
    except GoalNotFoundError as exc:
        raise _goal_missing(exc) from exc


@app.patch("/api/goals/{goal_id}/status")
def api_goal_status(goal_id: str, payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    body = _validate(StatusPayload, payload)
    try:
        goal = service.update_goal_status(goal_id, body.status)
    except GoalNotFoundError as exc:
        raise _goal_missing(exc) from exc
    except GoalStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return goal.model_dump(mode="json")


@app.post("/api/goals/{goal_id}/rollback")
def api_goal_rollback(goal_id: str, payload: Optional[Dict[str, Any]] = Body(None)) -> Dict[str, Any]:
    body = _validate(RollbackPayload, payload or {})
    try:
        number, plan = service.rollback(goal_id, body.version)
    except GoalNotFoundError as exc:
        raise _goal_missing(exc) from exc
    except ReplanError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"goal_id": goal_id, "version": number, "itinerary": plan.model_dump(mode="json")}
