"""Day-by-day packing of ranked destinations into time windows."""
from __future__ import annotations

import logging
import math
import os
import re
from collections import Counter
from datetime import timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from itinerary_engine.schemas import (
    ItineraryDay,
    ResolvedConstraints,
    ScheduledVisit,
    ScoredDestination,
    TransportLeg,
)
from itinerary_engine.tools.distance_table import DistanceTable, haversine_km, transport_for_distance

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)
_level = os.getenv("ITINERARY_ENGINE_LOG_LEVEL", "INFO").upper()
logger.setLevel(getattr(logging, _level, logging.INFO))
logger.propagate = False

_CLOCK_RE = re.compile(r"^(\d{1,2}):(\d{2})$")

DIVERSITY_MARGIN = 0.1
CONFIDENCE_SCALE = 1.2
HIGH_RATING_NOTE_THRESHOLD = 4.0

EMPTY_POOL_WARNING = "No candidate destinations available; every day is empty."


def parse_clock(value: str) -> int:
    """Convert ``"HH:MM"`` to minutes after midnight."""
    match = _CLOCK_RE.match((value or "").strip())
    if not match:
        raise ValueError(f"invalid clock time {value!r}; expected HH:MM")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise ValueError(f"invalid clock time {value!r}; expected HH:MM")
    return hours * 60 + minutes


def format_clock(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def dominant_location(visits: Sequence[ScheduledVisit]) -> Optional[str]:
    """Most frequent city among the visits; ties go to the first seen."""
    cities = [visit.destination.location.split(",")[0].strip() for visit in visits]
    if not cities:
        return None
    counts = Counter(cities)
    best = max(counts.values())
    return next(city for city in cities if counts[city] == best)


def schedule_days(
    candidates: Sequence[ScoredDestination],
    constraints: ResolvedConstraints,
    distance_table: Optional[DistanceTable] = None,
    first_day: int = 1,
) -> Tuple[List[ItineraryDay], List[str]]:
    """Distribute ranked candidates over ``constraints.days`` and pack each day.

    Candidates are split into fixed chunks of ``ceil(n / days)`` in rank order.
    Each chunk is ordered (nearest neighbour when every candidate has
    coordinates, otherwise score with category diversity), then packed from the
    day start until the first candidate that would run past the day end.
    ``first_day`` numbers the returned days; ``constraints.start_date`` is the
    date of that first day.
    """
    distance_table = distance_table or DistanceTable()
    day_start = parse_clock(constraints.day_start)
    day_end = parse_clock(constraints.day_end)
    days = max(constraints.days, 0)

    warnings: List[str] = []
    if not candidates:
        warnings.append(EMPTY_POOL_WARNING)
        logger.warning("Scheduling %d day(s) with an empty candidate pool", days)
    chunk_size = math.ceil(len(candidates) / days) if days and candidates else 0

    plan: List[ItineraryDay] = []
    previous_city: Optional[str] = None
    for offset in range(days):
        number = first_day + offset
        date = (constraints.start_date + timedelta(days=offset)).isoformat()
        chunk = list(candidates[offset * chunk_size:(offset + 1) * chunk_size])
        ordered = _order_day(chunk)
        visits = _pack_day(ordered, day_start, day_end, constraints.buffer_minutes)
        day_warnings: List[str] = []
        if chunk and not visits:
            day_warnings.append(
                f"Day {number}: no destination fits the {constraints.day_start}-{constraints.day_end} window"
            )
        elif not chunk and candidates:
            day_warnings.append(f"Day {number}: no destinations left to schedule")

        city = dominant_location(visits)
        transport: Optional[TransportLeg] = None
        if city and previous_city and city.lower() != previous_city.lower():
            transport = _transport_leg(previous_city, city, distance_table)
            cap = constraints.max_daily_travel_time
            if cap is not None and transport.duration > cap:
                day_warnings.append(
                    f"Day {number}: {transport.mode} {transport.route} takes {transport.duration} min, "
                    f"over the {cap}-minute daily travel limit"
                )
        if city:
            previous_city = city

        plan.append(_build_day(number, date, visits, transport, day_warnings))
        warnings.extend(day_warnings)

    logger.info(
        "Scheduled %d visit(s) across %d day(s)",
        sum(len(day.visits) for day in plan),
        len(plan),
    )
    return plan, warnings


def _order_day(chunk: List[ScoredDestination]) -> List[ScoredDestination]:
    if len(chunk) < 2:
        return chunk
    if all(item.destination.coordinates is not None for item in chunk):
        return _nearest_neighbour(chunk)
    return _diverse_order(chunk)


def _nearest_neighbour(chunk: List[ScoredDestination]) -> List[ScoredDestination]:
    """Greedy walk from the top-ranked candidate to the closest unvisited one."""
    remaining = list(chunk[1:])
    route = [chunk[0]]
    while remaining:
        here = route[-1].destination.coordinates
        nearest = min(
            remaining,
            key=lambda item: (haversine_km(here, item.destination.coordinates), item.destination.id),
        )
        remaining.remove(nearest)
        route.append(nearest)
    return route


def _diverse_order(chunk: List[ScoredDestination]) -> List[ScoredDestination]:
    remaining = sorted(chunk, key=lambda item: (-item.adjusted_score, -item.destination.rating, item.destination.id))
    used: Dict[str, int] = {}
    ordered: List[ScoredDestination] = []
    while remaining:
        best = remaining[0].adjusted_score
        close = [item for item in remaining if best - item.adjusted_score <= DIVERSITY_MARGIN]
        pick = min(
            close,
            key=lambda item: (
                used.get(item.destination.category.lower(), 0),
                -item.adjusted_score,
                -item.destination.rating,
                item.destination.id,
            ),
        )
        remaining.remove(pick)
        used[pick.destination.category.lower()] = used.get(pick.destination.category.lower(), 0) + 1
        ordered.append(pick)
    return ordered


def _pack_day(
    ordered: List[ScoredDestination],
    day_start: int,
    day_end: int,
    buffer_minutes: int,
) -> List[ScheduledVisit]:
    visits: List[ScheduledVisit] = []
    current = day_start
    for item in ordered:
        duration = item.destination.duration
        if current + duration > day_end:
            logger.debug("Day full at %s; dropping %d candidate(s)", format_clock(current), len(ordered) - len(visits))
            break
        visits.append(
            ScheduledVisit(
                destination=item.destination,
                start_time=format_clock(current),
                end_time=format_clock(current + duration),
                duration=duration,
                base_score=item.base_score,
                adjusted_score=item.adjusted_score,
                goal_alignment=item.goal_alignment,
            )
        )
        current += duration + buffer_minutes
    return visits


def _transport_leg(from_city: str, to_city: str, distance_table: DistanceTable) -> TransportLeg:
    distance = distance_table.distance_km(from_city, to_city)
    mode, duration, cost = transport_for_distance(distance)
    return TransportLeg(
        mode=mode,
        route=f"{from_city} → {to_city}",
        from_location=from_city,
        to_location=to_city,
        distance_km=distance,
        cost=cost,
        duration=duration,
    )


def _build_day(
    number: int,
    date: str,
    visits: List[ScheduledVisit],
    transport: Optional[TransportLeg],
    warnings: List[str],
) -> ItineraryDay:
    activity_cost = sum(visit.destination.estimated_cost for visit in visits)
    total_cost = activity_cost + (transport.cost if transport else 0.0)
    total_time = sum(visit.duration for visit in visits)

    confidence = 0.0
    notes: List[str] = []
    if visits:
        mean_score = sum(visit.adjusted_score for visit in visits) / len(visits)
        confidence = round(min(1.0, mean_score * CONFIDENCE_SCALE), 4)
        mean_rating = sum(visit.destination.rating for visit in visits) / len(visits)
        if mean_rating > HIGH_RATING_NOTE_THRESHOLD:
            notes.append("Includes highly-rated destinations")
    if transport:
        notes.append(f"Travel by {transport.mode} from {transport.from_location} to {transport.to_location}")

    return ItineraryDay(
        day=number,
        date=date,
        visits=visits,
        transportation=transport,
        total_cost=round(total_cost, 2),
        total_time=total_time,
        confidence=confidence,
        notes=notes,
        warnings=warnings,
    )
