import runpy
from pathlib import Path

import pytest
from flask import Flask

import fairmeet.app as api
from conftest import make_participant, venue_record
from fairmeet.exceptions import ProviderUnavailable
from fairmeet.models import Location
from fairmeet.sessions import InMemorySessionStore

USERS = [
    {'id': 'ann', 'name': 'Ann', 'location': {'lat': 40.0, 'lng': -75.0}},
    {'id': 'bob', 'name': 'Bob', 'location': {'lat': 40.0, 'lng': -73.0}},
]
PROJECT_ROOT = Path(__file__).resolve().parents[2]
PARTICIPANTS = [make_participant('ann', 40.0, -75.0), make_participant('bob', 40.0, -73.0)]


class Clock:
    now = 1_700_000_000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def store(monkeypatch, clock):
    store = InMemorySessionStore(ttl_hours=6, clock=clock)
    monkeypatch.setattr(api, 'session_store', store)
    return store


@pytest.fixture
def provider(monkeypatch, provider_factory):
    provider = provider_factory(
        venues=[
            venue_record('lopsided', 40.01, -74.0, category='bar'),
            venue_record('fair', 40.02, -74.0, category='restaurant'),
            venue_record('pump', 40.03, -74.0, category='gas_station'),
        ],
        geocodes={'Trenton': Location(40.22, -74.76, address='Trenton, NJ, USA')},
    )
    provider.set_times('lopsided', PARTICIPANTS, [5, 20])
    provider.set_times('fair', PARTICIPANTS, [10, 12])
    provider.set_times('pump', PARTICIPANTS, [14, 18])
    monkeypatch.setattr(api, 'maps_service', provider)
    return provider


@pytest.fixture
def client(store):
    api.app.config['TESTING'] = True
    with api.app.test_client() as client:
        yield client


def test_health_check(client):
    response = client.get('/')
    assert response.status_code == 200
    assert response.get_json()['status'] == 'healthy'
    assert 'X-Process-Time-ms' in response.headers


def test_config_reports_provider(client, provider):
    data = client.get('/api/config').get_json()['data']
    assert data['providerConfigured'] is True
    assert data['categories'] == ['all', 'dining', 'bars', 'gas']


def test_unknown_endpoint(client):
    assert client.get('/api/nope').status_code == 404


def test_calculate_midpoint_ranks_venues(client, provider):
    response = client.post('/api/calculate-midpoint', json={'users': USERS})

    assert response.status_code == 200
    assert 'X-Compute-Time-ms' in response.headers
    body = response.get_json()
    assert body['success'] is True
    data = body['data']
    assert data['midpoint'] == {'lat': 40.0, 'lng': -74.0}
    assert [v['id'] for v in data['venues']] == ['fair', 'pump', 'lopsided']
    fair = data['venues'][0]
    assert [m['participant_id'] for m in fair['travel_metrics']] == ['ann', 'bob']
    assert (fair['time_spread_minutes'], fair['max_minutes'], fair['avg_minutes']) == (2, 12, 11)
    assert 'saved' not in data


def test_calculate_midpoint_defaults_ids_to_position(client, provider):
    users = [{'location': u['location']} for u in USERS]
    data = client.post('/api/calculate-midpoint', json={'users': users}).get_json()['data']
    assert [m['participant_id'] for m in data['venues'][0]['travel_metrics']] == ['0', '1']


def test_calculate_midpoint_honours_overrides(client, provider):
    data = client.post('/api/calculate-midpoint', json={
        'users': USERS, 'categories': ['bar'], 'result_cap': 1,
    }).get_json()['data']
    assert len(data['venues']) == 1
    assert provider.search_calls[-1][1] == ('bar',)


@pytest.mark.parametrize('payload', [
    {'users': USERS[:1]},
    {'users': 'ann,bob'},
    {'users': [USERS[0], {'id': 'x', 'location': {'lat': 123.0, 'lng': 0.0}}]},
    {'users': [USERS[0], {'id': 'x', 'location': {'lat': '40', 'lng': -73.0}}]},
    {'users': [USERS[0], {'id': 'x'}]},
    {'users': USERS, 'result_cap': 0},
    {'users': USERS, 'categories': []},
])
def test_calculate_midpoint_rejects_bad_input(client, provider, payload):
    response = client.post('/api/calculate-midpoint', json=payload)
    assert response.status_code == 400
    assert response.get_json()['success'] is False


def test_calculate_midpoint_requires_json(client, provider):
    assert client.post('/api/calculate-midpoint', data='nope').status_code == 400


def test_calculate_midpoint_search_outage(client, provider):
    provider.search_error = ProviderUnavailable('search backend down')
    response = client.post('/api/calculate-midpoint', json={'users': USERS})
    assert response.status_code == 502
    assert response.get_json()['success'] is False


def test_calculate_midpoint_without_provider(client, monkeypatch):
    monkeypatch.setattr(api, 'maps_service', None)
    assert client.post('/api/calculate-midpoint', json={'users': USERS}).status_code == 500


def test_calculate_midpoint_saves_to_session(client, provider, store):
    session_id = store.create_session()['id']
    data = client.post('/api/calculate-midpoint', json={'sessionId': session_id, 'users': USERS}).get_json()['data']
    assert data['saved'] is True
    session = store.get_session(session_id)
    assert session['midpoint'] == {'lat': 40.0, 'lng': -74.0}
    assert [v['id'] for v in session['venues']] == ['fair', 'pump', 'lopsided']


def test_calculate_midpoint_for_expired_session_skips_write(client, provider, store, clock):
    session_id = store.create_session()['id']
    clock.now += 7 * 3600
    response = client.post('/api/calculate-midpoint', json={'sessionId': session_id, 'users': USERS})
    assert response.status_code == 200
    assert response.get_json()['data']['saved'] is False


def test_session_flow(client, provider):
    response = client.post('/api/sessions')
    assert response.status_code == 201
    session_id = response.get_json()['data']['id']

    for user in USERS:
        response = client.put(
            f"/api/sessions/{session_id}/participants/{user['id']}",
            json={'name': user['name'], 'location': user['location']},
        )
        assert response.status_code == 200

    response = client.post(f'/api/sessions/{session_id}/calculate')
    assert response.status_code == 200
    assert response.get_json()['data']['saved'] is True

    session = client.get(f'/api/sessions/{session_id}').get_json()['data']
    assert list(session['participants']) == ['ann', 'bob']
    assert [v['id'] for v in session['venues']] == ['fair', 'pump', 'lopsided']

    bars = client.get(f'/api/sessions/{session_id}/venues?category=bars').get_json()['data']
    assert [v['id'] for v in bars['venues']] == ['lopsided']
    dining = client.get(f'/api/sessions/{session_id}/venues?category=dining').get_json()['data']
    assert [v['id'] for v in dining['venues']] == ['fair']

    response = client.put(f'/api/sessions/{session_id}/selected-venue', json={'venueId': 'fair'})
    assert response.get_json()['data']['selected_venue']['id'] == 'fair'

    response = client.put(f'/api/sessions/{session_id}/selected-category', json={'category': 'gas'})
    assert response.get_json()['data']['selected_category'] == 'gas'


def test_session_calculate_needs_two_located_participants(client, provider):
    session_id = client.post('/api/sessions').get_json()['data']['id']
    client.put(f'/api/sessions/{session_id}/participants/ann', json={'name': 'Ann', 'location': USERS[0]['location']})
    assert client.post(f'/api/sessions/{session_id}/calculate').status_code == 400


def test_session_errors(client, store, clock):
    assert client.get('/api/sessions/missing').status_code == 404
    session_id = store.create_session()['id']

    bad_location = client.put(f'/api/sessions/{session_id}/participants/ann', json={'location': {'lat': 91, 'lng': 0}})
    assert bad_location.status_code == 400
    assert client.put(f'/api/sessions/{session_id}/selected-venue', json={}).status_code == 400
    assert client.put(f'/api/sessions/{session_id}/selected-venue', json={'venueId': 'x'}).status_code == 400
    assert client.put(f'/api/sessions/{session_id}/selected-category', json={'category': 'zoo'}).status_code == 400
    assert client.get(f'/api/sessions/{session_id}/venues?category=zoo').status_code == 400

    clock.now += 6 * 3600
    assert client.get(f'/api/sessions/{session_id}').status_code == 410


def test_geocode(client, provider):
    response = client.post('/api/geocode', json={'address': 'Trenton'})
    assert response.status_code == 200
    assert response.get_json()['data'] == {'formatted_address': 'Trenton, NJ, USA', 'lat': 40.22, 'lng': -74.76}

    assert client.post('/api/geocode', json={'address': 'Atlantis'}).status_code == 404
    assert client.post('/api/geocode', json={}).status_code == 400


def test_reverse_geocode(client, provider):
    response = client.post('/api/reverse-geocode', json={'lat': 40.22, 'lng': -74.76})
    assert response.status_code == 200
    assert response.get_json()['data']['place_name'] == 'Trenton, NJ, USA'

    assert client.post('/api/reverse-geocode', json={'lat': 0.0, 'lng': 0.0}).status_code == 404
    assert client.post('/api/reverse-geocode', json={'lat': 100.0, 'lng': 0.0}).status_code == 400


@pytest.mark.filterwarnings('ignore::RuntimeWarning')
def test_dev_entry_points_share_a_port(monkeypatch):
    ports = []
    monkeypatch.setattr(Flask, 'run', lambda self, **kwargs: ports.append(kwargs['port']))

    runpy.run_path(str(PROJECT_ROOT / 'main.py'), run_name='__main__')
    runpy.run_module('fairmeet.app', run_name='__main__')

    assert ports == [api.DEV_PORT, api.DEV_PORT]
