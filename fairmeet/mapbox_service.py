import logging
from typing import Dict, Iterable, List, Optional
from urllib.parse import quote

import requests

from .exceptions import ProviderUnavailable
from .maps_service import DEFAULT_MAX_WORKERS, MapsProvider
from .models import Location

logger = logging.getLogger(__name__)

API_BASE = "https://api.mapbox.com"
CATEGORY_SEARCH_URL = API_BASE + "/search/searchbox/v1/category/{categories}"
DIRECTIONS_URL = API_BASE + "/directions/v5/mapbox/driving/{origin};{destination}"
GEOCODING_URL = API_BASE + "/geocoding/v5/mapbox.places/{query}.json"
CATEGORY_SEARCH_MAX_LIMIT = 25


def _lng_lat(location: Location) -> str:
    """Mapbox takes coordinates as lng,lat"""
    return f"{location.longitude},{location.latitude}"


class MapboxService(MapsProvider):
    """Service for the Mapbox Search Box, Directions and Geocoding APIs"""

    name = 'mapbox'

    def __init__(self, access_token: str, timeout: Optional[float] = None,
                 max_workers: int = DEFAULT_MAX_WORKERS, session: Optional[requests.Session] = None):
        if not access_token:
            raise ValueError("Valid Mapbox access token is required")
        super().__init__(max_workers=max_workers)
        self.access_token = access_token
        self.timeout = timeout
        self.session = session or requests.Session()

    def _get(self, url: str, params: Optional[Dict] = None) -> Dict:
        query = dict(params or {})
        query['access_token'] = self.access_token
        response = self.session.get(url, params=query, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def search_venues(self, near: Location, categories: Iterable[str], limit: int) -> List[Dict]:
        url = CATEGORY_SEARCH_URL.format(categories=','.join(categories))
        params = {
            'proximity': _lng_lat(near),
            'limit': max(1, min(int(limit), CATEGORY_SEARCH_MAX_LIMIT)),
        }
        try:
            data = self._get(url, params)
        except (requests.RequestException, ValueError) as e:
            raise ProviderUnavailable(f"Mapbox category search failed: {e}") from e

        venues = []
        for feature in data.get('features') or []:
            props = feature.get('properties') or {}
            coordinates = (feature.get('geometry') or {}).get('coordinates') or [None, None]
            poi_category = props.get('poi_category') or []
            venues.append({
                'id': props.get('mapbox_id'),
                'name': props.get('name'),
                'address': props.get('full_address') or props.get('place_formatted'),
                'category': poi_category[0] if poi_category else None,
                'lat': coordinates[1] if len(coordinates) > 1 else None,
                'lng': coordinates[0] if coordinates else None,
            })
        return venues

    def get_driving_route(self, origin: Location, destination: Location) -> Optional[Dict]:
        url = DIRECTIONS_URL.format(origin=_lng_lat(origin), destination=_lng_lat(destination))
        data = self._get(url)
        routes = data.get('routes') or []
        if not routes:
            logger.debug(f"No driving route: code={data.get('code')} message={data.get('message')}")
            return None
        route = routes[0]
        return {
            'duration_seconds': route.get('duration'),
            'distance_meters': route.get('distance'),
        }

    def _first_feature(self, query: str) -> Optional[Dict]:
        try:
            data = self._get(GEOCODING_URL.format(query=quote(query, safe=',')))
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Mapbox geocoding error for {query!r}: {e}")
            return None
        features = data.get('features') or []
        return features[0] if features else None

    def geocode_address(self, address: str) -> Optional[Location]:
        feature = self._first_feature(address)
        if not feature or not feature.get('center'):
            return None
        lng, lat = feature['center'][:2]
        return Location(latitude=lat, longitude=lng, address=feature.get('place_name'))

    def reverse_geocode(self, location: Location) -> Optional[str]:
        feature = self._first_feature(_lng_lat(location))
        return feature.get('place_name') if feature else None
