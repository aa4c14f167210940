"""Pluggable base relevance scores for candidate destinations."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence

import httpx

from itinerary_engine.errors import ScorerUnavailableError
from itinerary_engine.schemas import Destination

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)
_level = os.getenv("ITINERARY_ENGINE_LOG_LEVEL", "INFO").upper()
logger.setLevel(getattr(logging, _level, logging.INFO))
logger.propagate = False

NEUTRAL_SCORE = 0.5


class RelevanceScorer(Protocol):
    """Opaque per-user/per-destination personalization score in [0, 1]."""

    def score(self, user_id: str, destinations: Sequence[Destination]) -> Dict[str, float]:
        ...


class NeutralScorer:
    def score(self, user_id: str, destinations: Sequence[Destination]) -> Dict[str, float]:
        return {dest.id: NEUTRAL_SCORE for dest in destinations}


@dataclass
class StaticScorer:
    """Fixed scores keyed by destination id; unknown ids get ``default``."""

    scores: Dict[str, float] = field(default_factory=dict)
    default: float = NEUTRAL_SCORE

    def score(self, user_id: str, destinations: Sequence[Destination]) -> Dict[str, float]:
        return {dest.id: _clamp(self.scores.get(dest.id, self.default)) for dest in destinations}


class HttpRelevanceScorer:
    """
    Ask a remote personalization service for base relevance scores.

    The service receives ``{"user_id": ..., "items": [...]}`` and answers with
    either ``{"scores": {"<id>": 0.7}}`` or ``{"scores": [{"id": "<id>", "score": 0.7}]}``.
    Any transport or payload problem surfaces as ``ScorerUnavailableError`` so
    the pipeline can continue with neutral scores.
    """

    def __init__(self, endpoint: str, *, api_key: Optional[str] = None, timeout: float = 5.0):
        self.endpoint = endpoint
        self.api_key = api_key or os.getenv("ITINERARY_ENGINE_SCORER_API_KEY")
        self.timeout = timeout

    def score(self, user_id: str, destinations: Sequence[Destination]) -> Dict[str, float]:
        if not destinations:
            return {}
        payload = {
            "user_id": user_id,
            "items": [
                {
                    "id": dest.id,
                    "category": dest.category,
                    "price": dest.estimated_cost,
                    "rating": dest.rating,
                    "location": dest.location,
                    "tags": list(dest.tags),
                }
                for dest in destinations
            ],
        }
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.post(self.endpoint, json=payload, headers=headers)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPError as exc:
            logger.warning("Relevance scorer request to %s failed: %s", self.endpoint, exc)
            raise ScorerUnavailableError(str(exc)) from exc
        except ValueError as exc:
            logger.warning("Relevance scorer returned a non-JSON payload", exc_info=True)
            raise ScorerUnavailableError("invalid scorer payload") from exc

        scores = _parse_scores(data)
        known = {dest.id for dest in destinations}
        result = {dest_id: _clamp(value) for dest_id, value in scores.items() if dest_id in known}
        missing = known - result.keys()
        if missing:
            logger.info("Scorer omitted %d destination(s); using neutral score", len(missing))
            for dest_id in missing:
                result[dest_id] = NEUTRAL_SCORE
        logger.info("Scored %d destination(s) for user %s", len(result), user_id)
        return result


def _parse_scores(data: object) -> Dict[str, float]:
    if not isinstance(data, dict):
        raise ScorerUnavailableError("scorer payload must be an object")
    raw = data.get("scores")
    parsed: Dict[str, float] = {}
    try:
        if isinstance(raw, dict):
            for key, value in raw.items():
                parsed[str(key)] = float(value)
        elif isinstance(raw, list):
            items: List[dict] = [item for item in raw if isinstance(item, dict)]
            for item in items:
                if "id" in item and "score" in item:
                    parsed[str(item["id"])] = float(item["score"])
        else:
            raise ScorerUnavailableError("scorer payload missing 'scores'")
    except (TypeError, ValueError) as exc:
        raise ScorerUnavailableError("scorer returned non-numeric scores") from exc
    return parsed


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))
