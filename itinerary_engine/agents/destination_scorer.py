"""Destination relevance scoring."""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence, Tuple
import logging
import os

from itinerary_engine.errors import ScorerUnavailableError
from itinerary_engine.schemas import (
    Destination,
    PreferenceProfile,
    ResolvedConstraints,
    ScoredDestination,
)
from itinerary_engine.tools.relevance_scorer import NEUTRAL_SCORE, NeutralScorer, RelevanceScorer

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)
_level = os.getenv("ITINERARY_ENGINE_LOG_LEVEL", "INFO").upper()
logger.setLevel(getattr(logging, _level, logging.INFO))
logger.propagate = False

CATEGORY_WEIGHT = 0.35
LOCATION_WEIGHT = 0.15
PRICE_WEIGHT = 0.20
EXTERNAL_WEIGHT = 0.30
REQUESTED_BONUS = 0.1
UNSEEN_CATEGORY_AFFINITY = 0.5

SCORER_UNAVAILABLE_WARNING = "Personalization scorer unavailable; neutral relevance scores were used."


def unique_candidates(destinations: Iterable[Destination], allow_repeats: Iterable[str] = ()) -> List[Destination]:
    """Drop repeated destination ids unless the id is whitelisted."""
    whitelist = set(allow_repeats)
    seen = set()
    unique: List[Destination] = []
    for dest in destinations:
        if dest.id in seen and dest.id not in whitelist:
            continue
        seen.add(dest.id)
        unique.append(dest)
    return unique


def score_destinations(
    destinations: Sequence[Destination],
    constraints: ResolvedConstraints,
    profile: Optional[PreferenceProfile] = None,
    scorer: Optional[RelevanceScorer] = None,
    user_id: str = "anonymous",
    requested: Iterable[str] = (),
) -> Tuple[List[ScoredDestination], List[str]]:
    """Blend profile affinity with the external base score for each candidate.

    Returns the candidates ranked by score (ties by higher rating, then id) and
    any warnings raised while scoring. ``requested`` holds ids or names the
    traveler asked for explicitly; those receive a small bonus.
    """
    warnings: List[str] = []
    if not destinations:
        return [], warnings

    scorer = scorer or NeutralScorer()
    try:
        external = scorer.score(user_id, destinations)
    except ScorerUnavailableError:
        logger.warning("Relevance scorer unavailable for %s; falling back to neutral scores", user_id, exc_info=True)
        external = {}
        warnings.append(SCORER_UNAVAILABLE_WARNING)

    requested_keys = {key.strip().lower() for key in requested if key and key.strip()}
    requested_keys |= {key.lower() for key in constraints.must_visit}

    scored: List[ScoredDestination] = []
    for dest in destinations:
        category = _category_affinity(dest, profile, constraints.category_weights)
        location = _location_affinity(dest, profile)
        price = _price_fit(dest, profile)
        base = _clamp(external.get(dest.id, NEUTRAL_SCORE))

        score = (
            category * CATEGORY_WEIGHT
            + location * LOCATION_WEIGHT
            + price * PRICE_WEIGHT
            + base * EXTERNAL_WEIGHT
        )
        reasoning: List[str] = []
        if category > 0.7:
            reasoning.append(f"Strong interest in {dest.category}")
        if location > 0:
            reasoning.append("Located in a preferred area")
        if price >= 1.0:
            reasoning.append("Fits the preferred price range")
        if dest.id.lower() in requested_keys or dest.name.strip().lower() in requested_keys:
            score += REQUESTED_BONUS
            reasoning.append("Requested by the traveler")

        score = round(_clamp(score), 6)
        scored.append(
            ScoredDestination(
                destination=dest,
                base_score=score,
                adjusted_score=score,
                adjustments={
                    "category_affinity": round(category, 4),
                    "location_affinity": round(location, 4),
                    "price_fit": round(price, 4),
                    "external_score": round(base, 4),
                },
                reasoning=reasoning,
            )
        )

    ranked = rank(scored, key="base_score")
    logger.info(
        "Scored %d candidate(s); top pick %s (%.3f)",
        len(ranked),
        ranked[0].destination.name,
        ranked[0].base_score,
    )
    return ranked, warnings


def rank(candidates: Iterable[ScoredDestination], key: str = "adjusted_score") -> List[ScoredDestination]:
    return sorted(
        candidates,
        key=lambda item: (-getattr(item, key), -item.destination.rating, item.destination.id),
    )


def _category_affinity(
    dest: Destination,
    profile: Optional[PreferenceProfile],
    table: Dict[str, float],
) -> float:
    category = dest.category.lower()
    if profile is not None:
        for name, weight in profile.category_weights.items():
            if name.lower() == category:
                return _clamp(weight)
    return _clamp(table.get(category, UNSEEN_CATEGORY_AFFINITY))


def _location_affinity(dest: Destination, profile: Optional[PreferenceProfile]) -> float:
    if profile is None or not profile.location_weights:
        return 0.0
    weights = {name.strip().lower(): value for name, value in profile.location_weights.items()}
    full = dest.location.strip().lower()
    city = full.split(",")[0].strip()
    if full in weights:
        return _clamp(weights[full])
    return _clamp(weights.get(city, 0.0))


def _price_fit(dest: Destination, profile: Optional[PreferenceProfile]) -> float:
    if profile is None or profile.preferred_price_range is None:
        return 0.5
    low, high = profile.preferred_price_range.min, profile.preferred_price_range.max
    cost = dest.estimated_cost
    if low <= cost <= high:
        return 1.0
    if cost < low:
        return 0.7
    if high <= 0:
        return 0.0
    return max(0.0, 1.0 - (cost - high) / high)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))
