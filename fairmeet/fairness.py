"""
Fairness-ranking midpoint engine.

participants -> centroid -> venues near the centroid -> driving routes from
every participant to every venue -> fairness metrics -> sorted, capped list.

The engine keeps no state between calls; the session store (if any) is
written by the caller once compute_ranking returns.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .config import DEFAULT_CATEGORIES
from .exceptions import InvalidInput, ProviderUnavailable
from .maps_service import MapsProvider
from .models import Location, Participant, RankedVenue, RankingResult, TravelMetric, VenueCandidate

logger = logging.getLogger(__name__)


# --- Module-level constants ---
METERS_PER_MILE = 1609.34
MILES_PER_DEGREE = 69           # approximate miles per degree of latitude
DEFAULT_RESULT_CAP = 15
DEFAULT_SEARCH_LIMIT = 20
DEFAULT_ROUTE_CONCURRENCY = 10
DEFAULT_PROVIDER_TIMEOUT = 10.0  # seconds, per external call
MIN_PARTICIPANTS = 2
FALLBACK_CATEGORY = 'venue'


@dataclass
class RankingOptions:
    categories: Tuple[str, ...] = DEFAULT_CATEGORIES
    search_limit: int = DEFAULT_SEARCH_LIMIT
    result_cap: int = DEFAULT_RESULT_CAP
    route_concurrency: int = DEFAULT_ROUTE_CONCURRENCY
    timeout: Optional[float] = DEFAULT_PROVIDER_TIMEOUT

    @classmethod
    def from_settings(cls, settings) -> 'RankingOptions':
        return cls(
            categories=tuple(settings.venue_categories),
            search_limit=settings.venue_search_limit,
            result_cap=settings.result_cap,
            route_concurrency=settings.route_concurrency,
            timeout=settings.provider_timeout,
        )


# --- Unit helpers ---
def round_half_up(value: float) -> int:
    """Nearest integer, halves rounded up (round() would go to even)"""
    return int(math.floor(value + 0.5))


def seconds_to_minutes(seconds: float) -> int:
    return round_half_up(seconds / 60.0)


def meters_to_miles(meters: float) -> float:
    return round(meters / METERS_PER_MILE, 1)


def flat_distance_miles(a: Location, b: Location) -> float:
    """
    Euclidean distance in degrees scaled by 69 miles per degree.
    Only a rough figure: it overstates east-west distance away from the
    equator and is meaningless across the antimeridian.
    """
    degrees = math.sqrt((a.latitude - b.latitude) ** 2 + (a.longitude - b.longitude) ** 2)
    return round(degrees * MILES_PER_DEGREE, 1)


# --- Midpoint ---
def validate_location(location: Location) -> Location:
    if not isinstance(location, Location):
        raise InvalidInput(f"Expected a Location, got {type(location).__name__}")
    if not location.is_valid():
        raise InvalidInput(
            f"Coordinates out of range: lat={location.latitude}, lng={location.longitude}"
        )
    return location


def compute_midpoint(locations: Sequence[Location]) -> Location:
    """
    Arithmetic mean of latitudes and, independently, of longitudes.
    Flat-plane on purpose: fine between nearby cities, wrong near the poles
    or across the antimeridian.
    """
    locations = list(locations)
    if not locations:
        raise InvalidInput("At least one location is required to compute a midpoint")
    for location in locations:
        validate_location(location)

    if len(locations) == 1:
        return locations[0]

    avg_lat = sum(loc.latitude for loc in locations) / len(locations)
    avg_lng = sum(loc.longitude for loc in locations) / len(locations)
    return Location(latitude=avg_lat, longitude=avg_lng)


# --- Venue retrieval ---
def parse_candidate(record: Dict) -> Optional[VenueCandidate]:
    """Turn a raw provider record into a VenueCandidate; None when it has no usable position"""
    lat = record.get('lat')
    lng = record.get('lng')
    if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
        logger.warning(f"Skipping venue without coordinates: {record.get('name')!r}")
        return None
    return VenueCandidate(
        provider_id=str(record.get('id') or ''),
        name=record.get('name') or '',
        address=record.get('address') or '',
        category=record.get('category') or FALLBACK_CATEGORY,
        location=Location(latitude=float(lat), longitude=float(lng)),
    )


def _to_candidates(records: Optional[List[Dict]]) -> List[VenueCandidate]:
    candidates = []
    for record in records or []:
        candidate = parse_candidate(record)
        if candidate is not None:
            candidates.append(candidate)
    return candidates


class VenueRetriever:
    """Adapter over the provider's venue search. One attempt, no retries."""

    def __init__(self, provider: MapsProvider, timeout: Optional[float] = DEFAULT_PROVIDER_TIMEOUT):
        self.provider = provider
        self.timeout = timeout

    def find_candidates(self, center: Location, categories: Iterable[str], limit: int) -> List[VenueCandidate]:
        try:
            records = self.provider.search_venues(center, list(categories), limit)
        except ProviderUnavailable:
            raise
        except Exception as e:
            raise ProviderUnavailable(f"Venue search failed: {e}") from e
        return _to_candidates(records)[:limit]

    async def find_candidates_async(self, center: Location, categories: Iterable[str],
                                    limit: int) -> List[VenueCandidate]:
        try:
            records = await self.provider.search_venues_async(
                center, list(categories), limit, timeout=self.timeout
            )
        except ProviderUnavailable:
            raise
        except asyncio.TimeoutError as e:
            raise ProviderUnavailable(f"Venue search timed out after {self.timeout}s") from e
        except Exception as e:
            raise ProviderUnavailable(f"Venue search failed: {e}") from e
        return _to_candidates(records)[:limit]


# --- Travel metric fan-out ---
async def _route_metric(provider: MapsProvider, participant: Participant, venue: VenueCandidate,
                        semaphore: asyncio.Semaphore, timeout: Optional[float]) -> TravelMetric:
    try:
        async with semaphore:
            route = await provider.get_driving_route_async(
                participant.location, venue.location, timeout=timeout
            )
    except asyncio.TimeoutError:
        logger.warning(f"Route timed out: participant={participant.id} venue={venue.provider_id}")
        return TravelMetric(participant_id=participant.id)
    except Exception as e:
        logger.warning(f"Route failed: participant={participant.id} venue={venue.provider_id} error={e!r}")
        return TravelMetric(participant_id=participant.id)

    if not route or route.get('duration_seconds') is None:
        return TravelMetric(participant_id=participant.id)

    distance = route.get('distance_meters')
    return TravelMetric(
        participant_id=participant.id,
        minutes=seconds_to_minutes(route['duration_seconds']),
        distance_miles=meters_to_miles(distance) if distance is not None else None,
    )


async def compute_travel_metrics_async(provider: MapsProvider, participants: Sequence[Participant],
                                       venue: VenueCandidate,
                                       semaphore: Optional[asyncio.Semaphore] = None,
                                       timeout: Optional[float] = DEFAULT_PROVIDER_TIMEOUT) -> List[TravelMetric]:
    """
    One TravelMetric per participant, in participant order.
    Requests run concurrently; gather keeps positional order whatever the completion order.
    """
    if semaphore is None:
        semaphore = asyncio.Semaphore(max(1, len(participants)))
    tasks = [_route_metric(provider, p, venue, semaphore, timeout) for p in participants]
    return list(await asyncio.gather(*tasks))


def compute_travel_metrics(provider: MapsProvider, participants: Sequence[Participant],
                           venue: VenueCandidate,
                           timeout: Optional[float] = DEFAULT_PROVIDER_TIMEOUT,
                           concurrency: Optional[int] = None) -> List[TravelMetric]:
    """
    Blocking version of compute_travel_metrics_async.
    concurrency caps in-flight route calls; None runs every participant at once.
    """
    loop = asyncio.new_event_loop()
    try:
        async def run():
            semaphore = asyncio.Semaphore(max(1, concurrency)) if concurrency else None
            return await compute_travel_metrics_async(provider, participants, venue, semaphore, timeout)

        return loop.run_until_complete(run())
    finally:
        loop.close()


# --- Scoring and ranking ---
def score_venue(venue: VenueCandidate, metrics: Sequence[TravelMetric],
                midpoint: Location) -> Optional[RankedVenue]:
    """
    Fairness metrics over the reachable (non-null) travel times.
    Returns None when nobody can reach the venue.
    With a single reachable participant min == max == avg and the spread is 0,
    so such a venue sorts near the top.
    """
    times = [m.minutes for m in metrics if m.minutes is not None]
    if not times:
        return None

    max_minutes = max(times)
    min_minutes = min(times)
    avg_minutes = round_half_up(sum(times) / len(times))
    return RankedVenue(
        venue=venue,
        travel_metrics=list(metrics),
        max_minutes=max_minutes,
        min_minutes=min_minutes,
        avg_minutes=avg_minutes,
        time_spread_minutes=max_minutes - min_minutes,
        distance_from_midpoint_miles=flat_distance_miles(venue.location, midpoint),
    )


def fairness_key(venue: RankedVenue) -> Tuple[int, int]:
    """Smallest spread first, then smallest worst-case travel time"""
    return venue.time_spread_minutes, venue.max_minutes


def rank(venues: Iterable[Tuple[VenueCandidate, Sequence[TravelMetric]]], midpoint: Location,
         limit: int = DEFAULT_RESULT_CAP) -> List[RankedVenue]:
    scored = []
    excluded = 0
    for venue, metrics in venues:
        ranked = score_venue(venue, metrics, midpoint)
        if ranked is None:
            excluded += 1
            continue
        scored.append(ranked)

    if excluded:
        logger.info(f"Excluded {excluded} venue(s) no participant could reach")

    # list.sort is stable: exact ties keep provider order
    scored.sort(key=fairness_key)
    return scored[:max(0, limit)]


# --- Engine ---
class FairnessEngine:
    """Entry point: participant locations in, midpoint and ranked venues out"""

    def __init__(self, provider: MapsProvider, options: Optional[RankingOptions] = None):
        self.provider = provider
        self.options = options or RankingOptions()

    def _validate_participants(self, participants: Sequence[Participant]) -> List[Participant]:
        participants = list(participants)
        if len(participants) < MIN_PARTICIPANTS:
            raise InvalidInput(f"At least {MIN_PARTICIPANTS} participants required, got {len(participants)}")
        for participant in participants:
            if not isinstance(participant, Participant):
                raise InvalidInput(f"Expected a Participant, got {type(participant).__name__}")
        return participants

    def compute_ranking(self, participants: Sequence[Participant],
                        options: Optional[RankingOptions] = None) -> RankingResult:
        """
        Compute the fairness ranking for a set of participants.
        Uses a private event loop so it can be called from plain synchronous code
        such as a Flask view.
        """
        loop = asyncio.new_event_loop()
        try:
            return loop.run_until_complete(self.compute_ranking_async(participants, options))
        finally:
            loop.close()

    async def compute_ranking_async(self, participants: Sequence[Participant],
                                    options: Optional[RankingOptions] = None) -> RankingResult:
        options = options or self.options
        participants = self._validate_participants(participants)
        midpoint = compute_midpoint([p.location for p in participants])
        logger.info(
            f"Computing ranking for {len(participants)} participants, "
            f"midpoint=({midpoint.latitude:.5f}, {midpoint.longitude:.5f})"
        )

        retriever = VenueRetriever(self.provider, timeout=options.timeout)
        candidates = await retriever.find_candidates_async(midpoint, options.categories, options.search_limit)
        logger.info(f"Venue search returned {len(candidates)} candidates")
        if not candidates:
            return RankingResult(midpoint=midpoint, venues=[])

        # One limiter shared by every venue so the total in-flight route calls stay bounded
        semaphore = asyncio.Semaphore(max(1, options.route_concurrency))
        per_venue = await asyncio.gather(*[
            compute_travel_metrics_async(self.provider, participants, venue, semaphore, options.timeout)
            for venue in candidates
        ])

        venues = rank(zip(candidates, per_venue), midpoint, options.result_cap)
        logger.info(f"Ranked {len(venues)} venues (cap {options.result_cap})")
        return RankingResult(midpoint=midpoint, venues=venues)


def compute_ranking(participants: Sequence[Participant], provider: MapsProvider,
                    options: Optional[RankingOptions] = None) -> RankingResult:
    return FairnessEngine(provider, options).compute_ranking(participants)
