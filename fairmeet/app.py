from flask import Flask, request, jsonify, g
from flask_cors import CORS
import logging
from time import perf_counter

from .categories import ALL_CATEGORIES, SELECTABLE_CATEGORIES, filter_venues
from .config import Settings
from .exceptions import FairMeetError, InvalidInput, ProviderUnavailable, SessionExpired, SessionNotFound
from .fairness import FairnessEngine, RankingOptions
from .mapbox_service import MapboxService
from .maps_service import GoogleMapsService
from .models import Location, Participant
from .sessions import InMemorySessionStore, participants_from_session

# Load settings (and .env) once at import
settings = Settings.from_env()

# Configure logging
_handlers = [logging.StreamHandler()]
if settings.log_file:
    _handlers.insert(0, logging.FileHandler(settings.log_file))
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=_handlers
)
logger = logging.getLogger(__name__)

DEV_PORT = 5001

app = Flask(__name__)
CORS(app)  # Enable CORS for all routes


# Per-request timing: record start time and log duration on completion
@app.before_request
def _start_timer():
    g._start_time = perf_counter()


@app.after_request
def _log_request_duration(response):
    start = getattr(g, '_start_time', None)
    if start is not None:
        duration_ms = (perf_counter() - start) * 1000.0
        response.headers['X-Process-Time-ms'] = f"{duration_ms:.1f}"
        logger.info(
            "request completed: method=%s path=%s status=%s duration_ms=%.1f remote_addr=%s",
            request.method,
            request.full_path if request.query_string else request.path,
            response.status_code,
            duration_ms,
            request.remote_addr,
        )
    return response


@app.teardown_request
def _teardown_request_log(error=None):
    # If an unhandled exception occurred, ensure we still log duration
    if error is not None:
        start = getattr(g, '_start_time', None)
        duration_ms = (perf_counter() - start) * 1000.0 if start is not None else None
        logger.error(
            "request error: method=%s path=%s duration_ms=%s error=%s",
            request.method,
            request.full_path if request.query_string else request.path,
            f"{duration_ms:.1f}" if duration_ms is not None else 'unknown',
            repr(error),
        )


def build_maps_service(config: Settings):
    """Create the configured provider, or None when no usable credential is set"""
    key = config.provider_key
    logger.info(f"Maps provider: {config.maps_provider}, key found: {'Yes' if key else 'No'}")
    if not key:
        logger.warning(f"No credential configured for maps provider {config.maps_provider!r}")
        return None
    try:
        if config.maps_provider == 'mapbox':
            return MapboxService(
                key,
                timeout=config.provider_timeout,
                max_workers=config.route_concurrency,
            )
        return GoogleMapsService(
            key,
            search_radius=config.venue_search_radius,
            timeout=config.provider_timeout,
            max_workers=config.route_concurrency,
        )
    except ValueError as e:
        logger.error(f"Error initializing maps service: {e}")
        return None


# Initialize services
maps_service = build_maps_service(settings)
session_store = InMemorySessionStore(ttl_hours=settings.session_ttl_hours)
ranking_options = RankingOptions.from_settings(settings)


# --- Helpers ---
def _error(message: str, status: int):
    return jsonify({'success': False, 'error': message}), status


def _error_response(e: FairMeetError):
    if isinstance(e, InvalidInput):
        return _error(str(e), 400)
    if isinstance(e, SessionNotFound):
        return _error('Session not found', 404)
    if isinstance(e, SessionExpired):
        return _error('This session has expired', 410)
    if isinstance(e, ProviderUnavailable):
        return _error(f'Venue search unavailable: {e}', 502)
    return _error(str(e), 500)


def _provider_missing():
    logger.error("Maps provider not configured - cannot process request")
    return _error('Maps provider API key not configured', 500)


def _parse_participants(users) -> list:
    """Accepts [{id?, name?, location: {lat, lng}}]; missing ids fall back to the list index"""
    if not isinstance(users, list):
        raise InvalidInput('users must be a list')
    participants = []
    for index, user in enumerate(users):
        if not isinstance(user, dict):
            raise InvalidInput(f'users[{index}] must be an object')
        participants.append(Participant(
            id=str(user.get('id') if user.get('id') is not None else index),
            location=Location.from_dict(user.get('location')),
            display_name=user.get('name') or '',
        ))
    return participants


def _request_options(data: dict) -> RankingOptions:
    """Per-request overrides of the configured ranking options"""
    options = RankingOptions(**vars(ranking_options))
    categories = data.get('categories')
    if categories is not None:
        if not isinstance(categories, list) or not categories or not all(isinstance(c, str) and c for c in categories):
            raise InvalidInput('categories must be a non-empty list of strings')
        options.categories = tuple(categories)
    result_cap = data.get('result_cap')
    if result_cap is not None:
        if not isinstance(result_cap, int) or isinstance(result_cap, bool) or result_cap < 1 or result_cap > 50:
            raise InvalidInput('result_cap must be between 1 and 50')
        options.result_cap = result_cap
    return options


def _compute(participants, options):
    engine = FairnessEngine(maps_service, options)
    _algo_start = perf_counter()
    result = engine.compute_ranking(participants)
    compute_ms = (perf_counter() - _algo_start) * 1000.0
    logger.info(
        "Time to rank venues = %.1f ms (participants=%d, venues=%d)",
        compute_ms, len(participants), len(result.venues)
    )
    return result, compute_ms


def _ranking_response(result, compute_ms, saved=None):
    data = result.to_dict()
    if saved is not None:
        data['saved'] = saved
    response = jsonify({'success': True, 'data': data})
    response.headers['X-Compute-Time-ms'] = f"{compute_ms:.1f}"
    return response


@app.route('/', methods=['GET'])
def health_check():
    """Health check endpoint"""
    return jsonify({
        'message': 'FairMeet API is running!',
        'endpoints': {
            'calculate_midpoint': '/api/calculate-midpoint',
            'sessions': '/api/sessions',
            'geocode': '/api/geocode',
            'reverse_geocode': '/api/reverse-geocode',
            'config': '/api/config',
            'health': '/'
        },
        'status': 'healthy'
    })


@app.route('/api/config', methods=['GET'])
def get_config():
    """Get frontend configuration"""
    return jsonify({
        'success': True,
        'data': {
            'mapsProvider': settings.maps_provider,
            'providerConfigured': maps_service is not None,
            'categories': list(SELECTABLE_CATEGORIES),
            'apiBaseUrl': request.host_url.rstrip('/')
        }
    })


@app.route('/api/geocode', methods=['POST'])
def geocode_address():
    """
    Geocode a single address
    Expected JSON: {"address": "123 Main St, City, State"}
    """
    if not maps_service:
        return _provider_missing()

    data = request.get_json(silent=True)
    if not data or not data.get('address'):
        logger.error("Address not provided in request")
        return _error('Address is required', 400)

    address = data['address']
    logger.info(f"Attempting to geocode address: '{address}'")
    try:
        location = maps_service.geocode_address(address)
    except Exception as e:
        logger.error(f"Exception in geocode_address: {str(e)}", exc_info=True)
        return _error(f'Server error: {str(e)}', 500)

    if not location:
        logger.warning(f"Failed to geocode address: '{address}'")
        return _error('Could not geocode the provided address', 404)

    return jsonify({
        'success': True,
        'data': {
            'formatted_address': location.address,
            'lat': location.latitude,
            'lng': location.longitude
        }
    })


@app.route('/api/reverse-geocode', methods=['POST'])
def reverse_geocode():
    """
    Place name for a coordinate
    Expected JSON: {"lat": 40.7128, "lng": -74.0060}
    """
    if not maps_service:
        return _provider_missing()

    try:
        location = Location.from_dict(request.get_json(silent=True))
        if not location.is_valid():
            raise InvalidInput('Coordinates out of range')
        place_name = maps_service.reverse_geocode(location)
    except FairMeetError as e:
        return _error_response(e)
    except Exception as e:
        logger.error(f"Exception in reverse_geocode: {str(e)}", exc_info=True)
        return _error(f'Server error: {str(e)}', 500)

    if not place_name:
        return _error('No place found for the provided coordinates', 404)
    return jsonify({'success': True, 'data': {'place_name': place_name, **location.to_dict()}})


@app.route('/api/calculate-midpoint', methods=['POST'])
def calculate_midpoint():
    """
    Rank venues around the participants' midpoint by fairness of drive time
    Expected JSON: {
        "sessionId": "abc123",          // optional, results are saved to the session
        "users": [{"id": "u1", "name": "Ann", "location": {"lat": 40.0, "lng": -75.0}}, ...],
        "categories": ["cafe", "bar"],  // optional
        "result_cap": 15                // optional
    }
    """
    logger.info("=== CALCULATE MIDPOINT REQUEST ===")

    if not maps_service:
        return _provider_missing()

    data = request.get_json(silent=True)
    if not data:
        return _error('JSON data is required', 400)

    try:
        participants = _parse_participants(data.get('users'))
        options = _request_options(data)
        result, compute_ms = _compute(participants, options)
    except FairMeetError as e:
        logger.warning(f"Ranking failed: {e}")
        return _error_response(e)
    except Exception as e:
        logger.error(f"Exception in calculate_midpoint: {str(e)}", exc_info=True)
        return _error('Failed to calculate midpoint', 500)

    saved = None
    session_id = data.get('sessionId')
    if session_id:
        payload = result.to_dict()
        saved = session_store.save_results(session_id, payload['midpoint'], payload['venues'])

    return _ranking_response(result, compute_ms, saved)


@app.route('/api/sessions', methods=['POST'])
def create_session():
    session = session_store.create_session()
    return jsonify({'success': True, 'data': session}), 201


@app.route('/api/sessions/<session_id>', methods=['GET'])
def get_session(session_id):
    try:
        session = session_store.get_session(session_id)
    except FairMeetError as e:
        return _error_response(e)
    return jsonify({'success': True, 'data': session})


@app.route('/api/sessions/<session_id>/participants/<participant_id>', methods=['PUT'])
def upsert_participant(session_id, participant_id):
    """
    Join a session or replace one's location
    Expected JSON: {"name": "Ann", "location": {"lat": 40.0, "lng": -75.0, "address": "..."}}
    """
    data = request.get_json(silent=True) or {}
    try:
        location = Location.from_dict(data.get('location'))
        if not location.is_valid():
            raise InvalidInput('Coordinates out of range')
        session = session_store.upsert_participant(session_id, participant_id, data.get('name'), location)
    except FairMeetError as e:
        return _error_response(e)
    return jsonify({'success': True, 'data': session})


@app.route('/api/sessions/<session_id>/calculate', methods=['POST'])
def calculate_session(session_id):
    """Recompute the ranking from the participants stored in a session"""
    if not maps_service:
        return _provider_missing()

    data = request.get_json(silent=True) or {}
    try:
        session = session_store.get_session(session_id)
        participants = participants_from_session(session)
        options = _request_options(data)
        result, compute_ms = _compute(participants, options)
    except FairMeetError as e:
        logger.warning(f"Ranking failed for session {session_id}: {e}")
        return _error_response(e)
    except Exception as e:
        logger.error(f"Exception in calculate_session: {str(e)}", exc_info=True)
        return _error('Failed to calculate midpoint', 500)

    payload = result.to_dict()
    saved = session_store.save_results(session_id, payload['midpoint'], payload['venues'])
    return _ranking_response(result, compute_ms, saved)


@app.route('/api/sessions/<session_id>/venues', methods=['GET'])
def list_session_venues(session_id):
    category = request.args.get('category', ALL_CATEGORIES)
    if category not in SELECTABLE_CATEGORIES:
        return _error(f"category must be one of {', '.join(SELECTABLE_CATEGORIES)}", 400)
    try:
        session = session_store.get_session(session_id)
    except FairMeetError as e:
        return _error_response(e)
    return jsonify({
        'success': True,
        'data': {
            'category': category,
            'venues': filter_venues(session['venues'], category)
        }
    })


@app.route('/api/sessions/<session_id>/selected-venue', methods=['PUT'])
def select_venue(session_id):
    data = request.get_json(silent=True) or {}
    venue_id = data.get('venueId')
    if not venue_id:
        return _error('venueId is required', 400)
    try:
        session = session_store.select_venue(session_id, venue_id)
    except FairMeetError as e:
        return _error_response(e)
    return jsonify({'success': True, 'data': session})


@app.route('/api/sessions/<session_id>/selected-category', methods=['PUT'])
def select_category(session_id):
    data = request.get_json(silent=True) or {}
    try:
        session = session_store.select_category(session_id, data.get('category'))
    except FairMeetError as e:
        return _error_response(e)
    return jsonify({'success': True, 'data': session})


@app.errorhandler(404)
def not_found(error):
    return jsonify({'error': 'Endpoint not found'}), 404


@app.errorhandler(500)
def internal_error(error):
    return jsonify({'error': 'Internal server error'}), 500


if __name__ == '__main__':
    if not maps_service:
        print("\n" + "="*50)
        print("SETUP REQUIRED:")
        print("="*50)
        print("1. Set MAPS_PROVIDER to 'google' (default) or 'mapbox'")
        print("2. For Google, set GOOGLE_MAPS_API_KEY with these APIs enabled:")
        print("   - Geocoding API")
        print("   - Directions API")
        print("   - Places API")
        print("3. For Mapbox, set MAPBOX_TOKEN")
        print("4. Restart the app")
        print("="*50)
        print("API will start but most features will be disabled without a valid key\n")
    else:
        print(f"Starting FairMeet API ({settings.maps_provider})...")

    app.run(host='0.0.0.0', port=DEV_PORT, debug=True)
