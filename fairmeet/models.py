from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .exceptions import InvalidInput


def _coerce_coordinate(value, name: str) -> float:
    # bool is an int subclass; a JSON true/false is never a coordinate
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidInput(f"{name} must be a number, got {value!r}")
    return float(value)


@dataclass(frozen=True)
class Location:
    """A recorded coordinate. Replaced, never mutated."""
    latitude: float
    longitude: float
    address: Optional[str] = None

    def is_valid(self) -> bool:
        return -90.0 <= self.latitude <= 90.0 and -180.0 <= self.longitude <= 180.0

    @classmethod
    def from_dict(cls, data: Dict) -> 'Location':
        """Build a Location from a {lat, lng} (or {latitude, longitude}) mapping"""
        if not isinstance(data, dict):
            raise InvalidInput(f"location must be an object with lat and lng, got {data!r}")
        lat = data.get('lat', data.get('latitude'))
        lng = data.get('lng', data.get('longitude'))
        if lat is None or lng is None:
            raise InvalidInput("location must have lat and lng properties")
        address = data.get('address')
        return cls(
            latitude=_coerce_coordinate(lat, 'lat'),
            longitude=_coerce_coordinate(lng, 'lng'),
            address=str(address) if address else None,
        )

    def to_dict(self) -> Dict:
        result = {'lat': self.latitude, 'lng': self.longitude}
        if self.address:
            result['address'] = self.address
        return result


@dataclass(frozen=True)
class Participant:
    id: str
    location: Location
    display_name: str = ''


@dataclass(frozen=True)
class VenueCandidate:
    """Raw venue search result, before any travel data is attached"""
    provider_id: str
    name: str
    address: str
    category: str
    location: Location

    def to_dict(self) -> Dict:
        return {
            'id': self.provider_id,
            'name': self.name,
            'address': self.address,
            'category': self.category,
            'location': self.location.to_dict(),
        }


@dataclass(frozen=True)
class TravelMetric:
    participant_id: str
    minutes: Optional[int] = None
    distance_miles: Optional[float] = None

    @property
    def reachable(self) -> bool:
        return self.minutes is not None

    def to_dict(self) -> Dict:
        return {
            'participant_id': self.participant_id,
            'minutes': self.minutes,
            'distance_miles': self.distance_miles,
        }


@dataclass(frozen=True)
class RankedVenue:
    venue: VenueCandidate
    travel_metrics: List[TravelMetric]
    max_minutes: int
    min_minutes: int
    avg_minutes: int
    time_spread_minutes: int
    distance_from_midpoint_miles: float

    @property
    def provider_id(self) -> str:
        return self.venue.provider_id

    @property
    def reachable_count(self) -> int:
        return sum(1 for metric in self.travel_metrics if metric.reachable)

    def to_dict(self) -> Dict:
        return {
            **self.venue.to_dict(),
            'travel_metrics': [metric.to_dict() for metric in self.travel_metrics],
            'max_minutes': self.max_minutes,
            'min_minutes': self.min_minutes,
            'avg_minutes': self.avg_minutes,
            'time_spread_minutes': self.time_spread_minutes,
            'distance_from_midpoint_miles': self.distance_from_midpoint_miles,
        }


@dataclass(frozen=True)
class RankingResult:
    midpoint: Location
    venues: List[RankedVenue] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            'midpoint': self.midpoint.to_dict(),
            'venues': [venue.to_dict() for venue in self.venues],
        }
