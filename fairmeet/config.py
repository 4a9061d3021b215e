"""
Environment-driven settings for the FairMeet API.
Values come from the process environment, with a .env file loaded first if present.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional, Tuple

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

PLACEHOLDER_KEYS = ('', 'your_api_key_here', 'your_mapbox_token_here')
DEFAULT_CATEGORIES = ('cafe', 'restaurant', 'bar', 'gas_station')


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}, using {default}")
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={raw!r}, using {default}")
        return default


def _key_env(name: str) -> Optional[str]:
    value = (os.getenv(name) or '').strip()
    return None if value in PLACEHOLDER_KEYS else value


@dataclass
class Settings:
    maps_provider: str = 'google'
    google_maps_api_key: Optional[str] = None
    mapbox_token: Optional[str] = None
    venue_categories: Tuple[str, ...] = DEFAULT_CATEGORIES
    venue_search_limit: int = 20
    venue_search_radius: int = 5000
    result_cap: int = 15
    route_concurrency: int = 10
    provider_timeout: float = 10.0
    session_ttl_hours: float = 6.0
    log_level: str = 'INFO'
    log_file: Optional[str] = 'app.log'

    @property
    def provider_key(self) -> Optional[str]:
        """Credential for whichever maps provider is selected"""
        if self.maps_provider == 'mapbox':
            return self.mapbox_token
        return self.google_maps_api_key

    @classmethod
    def from_env(cls, dotenv: bool = True) -> 'Settings':
        if dotenv:
            load_dotenv()

        categories = tuple(
            c.strip() for c in os.getenv('VENUE_CATEGORIES', ','.join(DEFAULT_CATEGORIES)).split(',')
            if c.strip()
        )
        return cls(
            maps_provider=os.getenv('MAPS_PROVIDER', 'google').strip().lower(),
            google_maps_api_key=_key_env('GOOGLE_MAPS_API_KEY'),
            mapbox_token=_key_env('MAPBOX_TOKEN'),
            venue_categories=categories or DEFAULT_CATEGORIES,
            venue_search_limit=_int_env('VENUE_SEARCH_LIMIT', 20),
            venue_search_radius=_int_env('VENUE_SEARCH_RADIUS', 5000),
            result_cap=_int_env('RESULT_CAP', 15),
            route_concurrency=_int_env('ROUTE_CONCURRENCY', 10),
            provider_timeout=_float_env('PROVIDER_TIMEOUT', 10.0),
            session_ttl_hours=_float_env('SESSION_TTL_HOURS', 6.0),
            log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
            log_file=os.getenv('LOG_FILE', 'app.log') or None,
        )
