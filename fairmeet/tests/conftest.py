import os
import threading
import time

import pytest

# Keep test runs from writing app.log into the working directory
os.environ.setdefault('LOG_FILE', '')

from fairmeet.maps_service import MapsProvider
from fairmeet.models import Location, Participant

METERS_PER_MINUTE = 1609.34  # fake roads: one mile per minute of driving


def venue_record(venue_id, lat, lng, name=None, category='cafe', address='1 Main St'):
    return {
        'id': venue_id,
        'name': name or venue_id,
        'address': address,
        'category': category,
        'lat': lat,
        'lng': lng,
    }


def make_participant(participant_id, lat, lng, name=''):
    return Participant(id=participant_id, location=Location(lat, lng), display_name=name)


class FakeMapsProvider(MapsProvider):
    """
    Deterministic provider. Drive times are set per (venue, participant);
    a value can be minutes, None (no route), or an exception to raise.
    """

    name = 'fake'

    def __init__(self, venues=(), search_error=None, geocodes=None, max_workers=16):
        super().__init__(max_workers=max_workers)
        self.venues = list(venues)
        self.search_error = search_error
        self.geocodes = geocodes or {}
        self.routes = {}
        self.delays = {}
        self.search_calls = []
        self.route_calls = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()
        self._venue_ids = {(v['lat'], v['lng']): v['id'] for v in self.venues if v.get('lat') is not None}

    def set_times(self, venue_id, participants, minutes, delays=None):
        for index, (participant, value) in enumerate(zip(participants, minutes)):
            key = (venue_id, (participant.location.latitude, participant.location.longitude))
            self.routes[key] = value
            if delays:
                self.delays[key] = delays[index]

    def search_venues(self, near, categories, limit):
        self.search_calls.append((near, tuple(categories), limit))
        if self.search_error is not None:
            raise self.search_error
        return list(self.venues)

    def get_driving_route(self, origin, destination):
        key = (self._venue_ids.get((destination.latitude, destination.longitude)),
               (origin.latitude, origin.longitude))
        with self._lock:
            self.route_calls.append(key)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            delay = self.delays.get(key, 0)
            if delay:
                time.sleep(delay)
            value = self.routes.get(key)
            if isinstance(value, Exception):
                raise value
            if value is None:
                return None
            return {'duration_seconds': value * 60, 'distance_meters': value * METERS_PER_MINUTE}
        finally:
            with self._lock:
                self.in_flight -= 1

    def geocode_address(self, address):
        return self.geocodes.get(address)

    def reverse_geocode(self, location):
        for address, known in self.geocodes.items():
            if (known.latitude, known.longitude) == (location.latitude, location.longitude):
                return known.address or address
        return None


@pytest.fixture
def provider_factory():
    created = []

    def factory(*args, **kwargs):
        provider = FakeMapsProvider(*args, **kwargs)
        created.append(provider)
        return provider

    yield factory
    for provider in created:
        provider.cleanup()


@pytest.fixture
def two_participants():
    return [make_participant('ann', 40.0, -75.0), make_participant('bob', 40.0, -73.0)]


@pytest.fixture
def three_participants():
    return [
        make_participant('ann', 40.0, -75.0),
        make_participant('bob', 40.0, -73.0),
        make_participant('cat', 41.0, -74.0),
    ]
