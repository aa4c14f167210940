import datetime as dt
from typing import Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

GoalType = Literal["budget", "balanced", "luxury", "backpacker"]
GoalStatus = Literal["active", "completed", "paused", "cancelled"]
AccommodationTier = Literal["budget", "moderate", "luxury"]
MilestoneType = Literal["budget", "rating", "activities", "destinations"]
ProgressMetric = Literal[
    "current_budget",
    "average_rating",
    "accommodation_level",
    "activities_completed",
    "destinations_visited",
]
SyncStatus = Literal["synced", "pending", "error"]
TransportMode = Literal["car/taxi", "bus/train", "flight"]
ActivityIntensity = Literal["low", "medium", "high"]

# ------- Input models -------
class Coordinates(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float

class Destination(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    id: str
    name: str
    category: str
    location: str
    coordinates: Optional[Coordinates] = None
    estimated_cost: float = Field(
        0.0, ge=0, validation_alias=AliasChoices("estimated_cost", "estimatedCost", "cost")
    )
    duration: int = Field(..., ge=0)  # minutes
    rating: float = Field(0.0, ge=0, le=5)
    tags: List[str] = Field(default_factory=list)
    opening_hours: Optional[str] = Field(
        None, validation_alias=AliasChoices("opening_hours", "openingHours")
    )

class Accommodation(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    id: str
    name: str
    level: str = Field("moderate", validation_alias=AliasChoices("level", "type", "category"))
    cost: float = Field(0.0, ge=0, validation_alias=AliasChoices("cost", "price", "estimatedCost"))
    rating: float = Field(0.0, ge=0, le=5)

class PriceRange(BaseModel):
    min: float = 0.0
    max: float

class PreferenceProfile(BaseModel):
    category_weights: Dict[str, float] = Field(default_factory=dict)
    preferred_price_range: Optional[PriceRange] = None
    location_weights: Dict[str, float] = Field(default_factory=dict)

class TravelPreferences(BaseModel):
    model_config = ConfigDict(extra="ignore")

    budget: float
    days: int
    travelers: int = 1
    accommodation_type: AccommodationTier = "moderate"
    cities: List[str] = Field(default_factory=list)
    interests: List[str] = Field(default_factory=list)
    themes: List[str] = Field(default_factory=list)
    preferred_spots: List[str] = Field(default_factory=list)
    start_date: dt.date

class SchedulingConstraints(BaseModel):
    start_time: Optional[str] = None  # "HH:MM"
    end_time: Optional[str] = None
    buffer_minutes: Optional[int] = Field(None, ge=0)
    must_visit: List[str] = Field(default_factory=list)
    allow_repeats: List[str] = Field(default_factory=list)
    avoid_crowds: Optional[bool] = None  # None defers to the goal

class GoalMetrics(BaseModel):
    max_budget: Optional[float] = None
    min_rating: Optional[float] = None
    preferred_accommodation: Optional[AccommodationTier] = None
    travel_style: Optional[str] = None
    max_daily_activities: Optional[int] = None
    preferred_destinations: Optional[List[str]] = None

class ItineraryRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    user_id: str = "anonymous"
    preferences: TravelPreferences
    destinations: List[Destination] = Field(
        default_factory=list, validation_alias=AliasChoices("destinations", "available_destinations")
    )
    accommodations: List[Accommodation] = Field(default_factory=list)
    activities: List[Destination] = Field(default_factory=list)
    profile: Optional[PreferenceProfile] = None
    constraints: Optional[SchedulingConstraints] = None
    goal_type: Optional[GoalType] = None
    goal_overrides: Optional[GoalMetrics] = None

# ------- Goal & progress models -------
class GoalProgress(BaseModel):
    current_budget: float = 0.0
    average_rating: float = 0.0
    accommodation_level: AccommodationTier = "moderate"
    activities_completed: float = 0
    destinations_visited: float = 0
    last_updated: float = 0.0
    metric_timestamps: Dict[str, float] = Field(default_factory=dict)

class Goal(BaseModel):
    id: str
    user_id: str
    type: GoalType
    name: str
    description: str
    target_metrics: GoalMetrics
    progress: GoalProgress = Field(default_factory=GoalProgress)
    status: GoalStatus = "active"
    created_at: float
    updated_at: float

class Milestone(BaseModel):
    id: str
    goal_id: str
    type: MilestoneType
    target: float
    current: float = 0.0
    achieved: bool = False
    achieved_at: Optional[float] = None
    description: str

class ProgressUpdate(BaseModel):
    goal_id: str
    metric: ProgressMetric
    value: Union[float, str]
    timestamp: float
    reason: Optional[str] = None

class ProgressReport(BaseModel):
    goal_id: str
    overall_progress: float = Field(..., ge=0, le=100)
    milestones: List[Milestone] = Field(default_factory=list)
    next_milestones: List[Milestone] = Field(default_factory=list)
    insights: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    recent_updates: List[ProgressUpdate] = Field(default_factory=list)
    timestamp: float

class GoalRecord(BaseModel):
    """Everything the goal store keeps for one goal id."""

    goal: Goal
    milestones: List[Milestone] = Field(default_factory=list)
    report: Optional[ProgressReport] = None
    history: List[ProgressUpdate] = Field(default_factory=list)

class GoalRecommendation(BaseModel):
    goal_type: GoalType
    suitability: float
    reasons: List[str] = Field(default_factory=list)
    suggested_budget: Optional[float] = None

# ------- Pipeline models -------
class ResolvedConstraints(BaseModel):
    goal_type: Optional[GoalType] = None
    total_budget: float
    days: int
    travelers: int = 1
    start_date: dt.date
    accommodation_type: AccommodationTier = "moderate"
    day_start: str
    day_end: str
    buffer_minutes: int
    max_daily_activities: int
    candidate_limit: int
    category_weights: Dict[str, float] = Field(default_factory=dict)
    target_metrics: Optional[GoalMetrics] = None
    must_visit: List[str] = Field(default_factory=list)
    allow_repeats: List[str] = Field(default_factory=list)
    avoid_crowds: bool = False
    activity_intensity: Optional[ActivityIntensity] = None
    max_daily_travel_time: Optional[int] = None  # minutes

class ScoredDestination(BaseModel):
    destination: Destination
    base_score: float = Field(..., ge=0, le=1)
    adjusted_score: float = Field(..., ge=0, le=1)
    goal_alignment: Optional[float] = None
    adjustments: Dict[str, float] = Field(default_factory=dict)
    reasoning: List[str] = Field(default_factory=list)

# ------- Response models -------
class AdjustedOption(BaseModel):
    """An accommodation or activity re-scored against a goal."""

    id: str
    name: str
    adjusted_score: float = Field(..., ge=0, le=1)
    goal_alignment: float = Field(..., ge=0, le=1)
    adjustments: Dict[str, float] = Field(default_factory=dict)
    reasoning: List[str] = Field(default_factory=list)

class ScheduledVisit(BaseModel):
    destination: Destination
    start_time: str
    end_time: str
    duration: int
    base_score: float
    adjusted_score: float
    goal_alignment: Optional[float] = None

class TransportLeg(BaseModel):
    mode: TransportMode
    route: str
    from_location: str
    to_location: str
    distance_km: float
    cost: float
    duration: int  # minutes

class ItineraryDay(BaseModel):
    model_config = ConfigDict(frozen=True)

    day: int
    date: str
    visits: List[ScheduledVisit] = Field(default_factory=list)
    transportation: Optional[TransportLeg] = None
    total_cost: float = 0.0
    total_time: int = 0
    confidence: float = 0.0
    notes: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    def destination_ids(self) -> List[str]:
        return [visit.destination.id for visit in self.visits]

class BudgetBreakdown(BaseModel):
    total: float
    goal_type: Optional[GoalType] = None
    percentages: Dict[str, float] = Field(default_factory=dict)
    amounts: Dict[str, float] = Field(default_factory=dict)

class OptimizationSummary(BaseModel):
    time_optimization: float = 0.0
    cost_optimization: float = 0.0
    satisfaction_optimization: float = 0.0
    reasoning: List[str] = Field(default_factory=list)
    risk_factors: List[str] = Field(default_factory=list)

class ItineraryResult(BaseModel):
    days: List[ItineraryDay] = Field(default_factory=list)
    total_cost: float = 0.0
    total_duration: int = 0
    budget_breakdown: BudgetBreakdown
    optimization: OptimizationSummary = Field(default_factory=OptimizationSummary)
    goal_alignment: Optional[float] = None
    accommodation_options: List[AdjustedOption] = Field(default_factory=list)
    activity_options: List[AdjustedOption] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

class GoalItineraryResult(ItineraryResult):
    goal: Goal
    milestones: List[Milestone] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    sync_status: SyncStatus = "synced"
    can_adapt: bool = True

class DayChange(BaseModel):
    day: int
    change: Literal["added", "removed", "reordered", "replaced"]
    before: List[str] = Field(default_factory=list)
    after: List[str] = Field(default_factory=list)
    description: str

class AdaptationResult(BaseModel):
    goal_id: str
    status: Literal["adapted", "not_triggered", "suppressed", "failed", "no_plan"]
    triggers: List[str] = Field(default_factory=list)
    changes: List[DayChange] = Field(default_factory=list)
    itinerary: Optional[ItineraryResult] = None
    version: Optional[int] = None
    reason: Optional[str] = None
    timestamp: float

class ProgressUpdateResult(BaseModel):
    status: Literal["applied", "stale", "not_found"]
    goal: Optional[Goal] = None
    report: Optional[ProgressReport] = None
    adaptation: Optional[AdaptationResult] = None
    sync_status: SyncStatus = "synced"
