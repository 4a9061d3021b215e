import googlemaps
from googlemaps import exceptions as gm_exceptions
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional
from geopy.distance import geodesic
import asyncio
import concurrent.futures
import logging

from .exceptions import ProviderUnavailable
from .models import Location

logger = logging.getLogger(__name__)


# --- Module-level constants ---
DEFAULT_SEARCH_RADIUS_M = 5000
DEFAULT_MAX_WORKERS = 10
GOOGLE_ERRORS = (gm_exceptions.ApiError, gm_exceptions.TransportError, gm_exceptions.Timeout)


class MapsProvider(ABC):
    """
    Venue search, routing and geocoding behind one interface.

    Implementations are plain blocking clients; the *_async wrappers run them
    on a thread pool so the fairness engine can fan calls out concurrently.

    Raw venue records returned by search_venues are dicts with the keys
    id, name, address, category, lat, lng. Any of them may be missing or None.
    """

    name = 'provider'

    def __init__(self, max_workers: int = DEFAULT_MAX_WORKERS):
        self.executor = concurrent.futures.ThreadPoolExecutor(max_workers=max_workers)

    def cleanup(self):
        """Clean up resources"""
        if hasattr(self, 'executor'):
            self.executor.shutdown(wait=True)

    @abstractmethod
    def search_venues(self, near: Location, categories: Iterable[str], limit: int) -> List[Dict]:
        """Return raw venue records near a point. Raises ProviderUnavailable on failure."""

    @abstractmethod
    def get_driving_route(self, origin: Location, destination: Location) -> Optional[Dict]:
        """
        Driving route summary as {'duration_seconds', 'distance_meters'},
        or None when the provider has no route. May raise on transport errors.
        """

    @abstractmethod
    def geocode_address(self, address: str) -> Optional[Location]:
        """Resolve free text to a Location carrying the formatted address"""

    @abstractmethod
    def reverse_geocode(self, location: Location) -> Optional[str]:
        """Resolve a coordinate to a human readable place name"""

    async def _run_timed(self, func, timeout: Optional[float], *args):
        """
        Run a blocking call on the pool. The timeout starts when a worker
        thread picks the call up, not while it waits in the pool's queue.
        """
        loop = asyncio.get_event_loop()
        started = asyncio.Event()

        def call():
            loop.call_soon_threadsafe(started.set)
            return func(*args)

        future = loop.run_in_executor(self.executor, call)
        waiter = asyncio.ensure_future(started.wait())
        try:
            await asyncio.wait([waiter, future], return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
        return await asyncio.wait_for(future, timeout=timeout)

    # Async wrapper methods for parallel execution
    async def search_venues_async(self, near: Location, categories: Iterable[str], limit: int,
                                  timeout: Optional[float] = None) -> List[Dict]:
        return await self._run_timed(self.search_venues, timeout, near, list(categories), limit)

    async def get_driving_route_async(self, origin: Location, destination: Location,
                                      timeout: Optional[float] = None) -> Optional[Dict]:
        return await self._run_timed(self.get_driving_route, timeout, origin, destination)

    async def geocode_address_async(self, address: str) -> Optional[Location]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(self.executor, self.geocode_address, address)


class GoogleMapsService(MapsProvider):
    """Service for interacting with Google Maps APIs"""

    name = 'google'

    def __init__(self, api_key: str, search_radius: int = DEFAULT_SEARCH_RADIUS_M,
                 timeout: Optional[float] = None, max_workers: int = DEFAULT_MAX_WORKERS):
        if not api_key or api_key == "your_api_key_here":
            raise ValueError("Valid Google Maps API key is required")
        super().__init__(max_workers=max_workers)
        self.client = googlemaps.Client(key=api_key, timeout=timeout, retry_over_query_limit=False)
        self.search_radius = search_radius

    def geocode_address(self, address: str) -> Optional[Location]:
        """
        Geocode an address using Google Maps Geocoding API
        Returns formatted address and coordinates
        """
        try:
            result = self.client.geocode(address)
        except GOOGLE_ERRORS as e:
            logger.warning(f"Geocoding error for {address!r}: {e}")
            return None
        if not result:
            return None
        location = result[0]
        return Location(
            latitude=location['geometry']['location']['lat'],
            longitude=location['geometry']['location']['lng'],
            address=location.get('formatted_address'),
        )

    def reverse_geocode(self, location: Location) -> Optional[str]:
        try:
            result = self.client.reverse_geocode((location.latitude, location.longitude))
        except GOOGLE_ERRORS as e:
            logger.warning(f"Reverse geocoding error: {e}")
            return None
        if not result:
            return None
        return result[0].get('formatted_address')

    def get_driving_route(self, origin: Location, destination: Location) -> Optional[Dict]:
        """
        Get the driving route between two points using Google Maps Directions API.
        Distance/duration are summed across all legs (usually 1).
        """
        directions_result = self.client.directions(
            origin=(origin.latitude, origin.longitude),
            destination=(destination.latitude, destination.longitude),
            mode="driving",
            alternatives=False
        )
        if not directions_result:
            return None

        route = directions_result[0]
        total_distance = 0
        total_duration = 0
        for leg in route.get('legs', []):
            if 'distance' in leg and 'value' in leg['distance']:
                total_distance += leg['distance']['value']
            if 'duration' in leg and 'value' in leg['duration']:
                total_duration += leg['duration']['value']

        return {
            'duration_seconds': total_duration,
            'distance_meters': total_distance
        }

    def search_venues(self, near: Location, categories: Iterable[str], limit: int) -> List[Dict]:
        """
        Find places of the given types around a point.
        Nearby Search takes a single type per request, so each category is
        queried in turn and the merged list is ordered by distance to the point.
        """
        center = (near.latitude, near.longitude)
        places: List[Dict] = []
        seen = set()

        for category in categories:
            try:
                places_result = self.client.places_nearby(
                    location=center,
                    radius=self.search_radius,
                    type=category
                )
            except GOOGLE_ERRORS as e:
                raise ProviderUnavailable(f"Places search failed for type {category!r}: {e}") from e

            for place in places_result.get('results', []):
                place_id = place.get('place_id')
                if place_id and place_id in seen:
                    continue
                seen.add(place_id)
                coords = place.get('geometry', {}).get('location', {})
                places.append({
                    'id': place_id,
                    'name': place.get('name'),
                    'address': place.get('vicinity'),
                    'category': category,
                    'lat': coords.get('lat'),
                    'lng': coords.get('lng'),
                })

        def distance_to_center(record: Dict) -> float:
            if record['lat'] is None or record['lng'] is None:
                return float('inf')
            return geodesic(center, (record['lat'], record['lng'])).meters

        places.sort(key=distance_to_center)
        logger.debug(f"Places search returned {len(places)} venues near {center}")
        return places[:limit]
