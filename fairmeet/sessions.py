"""
Session documents: who is meeting, where they are, and what was computed.

A session document is a plain dict:
    {
        'id': str,
        'created_at': int,          # epoch milliseconds
        'expires_at': int,
        'participants': {participant_id: {'name', 'location', 'last_updated'}},
        'midpoint': {'lat', 'lng'} | None,
        'venues': [ranked venue dict, ...],
        'selected_venue': ranked venue dict | None,
        'selected_category': str,
    }
Participants keep join order, which is the order rankings are computed in.
"""

import copy
import logging
import secrets
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from .categories import ALL_CATEGORIES, SELECTABLE_CATEGORIES
from .exceptions import InvalidInput, SessionExpired, SessionNotFound
from .models import Location, Participant

logger = logging.getLogger(__name__)

DEFAULT_TTL_HOURS = 6


def _now_ms(clock: Callable[[], float]) -> int:
    return int(clock() * 1000)


def participants_from_session(session: Dict) -> List[Participant]:
    """Participants with a recorded location, in join order"""
    participants = []
    for participant_id, data in (session.get('participants') or {}).items():
        location = data.get('location')
        if not location:
            continue
        participants.append(Participant(
            id=participant_id,
            location=Location.from_dict(location),
            display_name=data.get('name') or '',
        ))
    return participants


class SessionStore(ABC):
    """Storage for session documents"""

    @abstractmethod
    def create_session(self) -> Dict:
        pass

    @abstractmethod
    def get_session(self, session_id: str) -> Dict:
        """Raises SessionNotFound or SessionExpired"""

    @abstractmethod
    def upsert_participant(self, session_id: str, participant_id: str, name: str, location: Location) -> Dict:
        pass

    @abstractmethod
    def save_results(self, session_id: str, midpoint: Dict, venues: List[Dict]) -> bool:
        """Persist a computed ranking. Returns False (and writes nothing) if the session is gone."""

    @abstractmethod
    def select_venue(self, session_id: str, venue_id: str) -> Dict:
        pass

    @abstractmethod
    def select_category(self, session_id: str, category: str) -> Dict:
        pass

    @abstractmethod
    def delete_session(self, session_id: str) -> bool:
        pass


class InMemorySessionStore(SessionStore):
    """Thread-safe, process-local session store with expiry"""

    def __init__(self, ttl_hours: float = DEFAULT_TTL_HOURS, clock: Callable[[], float] = time.time):
        self.ttl_ms = int(ttl_hours * 3600 * 1000)
        self.clock = clock
        self._sessions: Dict[str, Dict] = {}
        self._lock = threading.Lock()

    def _is_expired(self, session: Dict) -> bool:
        return session['expires_at'] <= _now_ms(self.clock)

    def _live_session(self, session_id: str) -> Dict:
        """Caller must hold the lock"""
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        if self._is_expired(session):
            del self._sessions[session_id]
            logger.info(f"Session {session_id} expired and was removed")
            raise SessionExpired(session_id)
        return session

    def create_session(self) -> Dict:
        now = _now_ms(self.clock)
        session_id = secrets.token_urlsafe(9)
        session = {
            'id': session_id,
            'created_at': now,
            'expires_at': now + self.ttl_ms,
            'participants': {},
            'midpoint': None,
            'venues': [],
            'selected_venue': None,
            'selected_category': ALL_CATEGORIES,
        }
        with self._lock:
            self._drop_expired()
            self._sessions[session_id] = session
            logger.info(f"Created session {session_id}")
            return copy.deepcopy(session)

    def get_session(self, session_id: str) -> Dict:
        with self._lock:
            return copy.deepcopy(self._live_session(session_id))

    def upsert_participant(self, session_id: str, participant_id: str, name: str, location: Location) -> Dict:
        if not participant_id:
            raise InvalidInput("participant id is required")
        with self._lock:
            session = self._live_session(session_id)
            existing = session['participants'].get(participant_id, {})
            session['participants'][participant_id] = {
                'name': name or existing.get('name') or '',
                'location': location.to_dict(),
                'last_updated': _now_ms(self.clock),
            }
            return copy.deepcopy(session)

    def save_results(self, session_id: str, midpoint: Dict, venues: List[Dict]) -> bool:
        with self._lock:
            try:
                session = self._live_session(session_id)
            except (SessionNotFound, SessionExpired):
                logger.info(f"Dropping results for session {session_id}: no longer live")
                return False
            session['midpoint'] = copy.deepcopy(midpoint)
            session['venues'] = copy.deepcopy(venues)
            return True

    def select_venue(self, session_id: str, venue_id: str) -> Dict:
        with self._lock:
            session = self._live_session(session_id)
            for venue in session['venues']:
                if venue.get('id') == venue_id:
                    session['selected_venue'] = copy.deepcopy(venue)
                    return copy.deepcopy(session)
        raise InvalidInput(f"Venue {venue_id!r} is not among this session's venues")

    def select_category(self, session_id: str, category: str) -> Dict:
        if category not in SELECTABLE_CATEGORIES:
            raise InvalidInput(f"category must be one of {', '.join(SELECTABLE_CATEGORIES)}")
        with self._lock:
            session = self._live_session(session_id)
            session['selected_category'] = category
            return copy.deepcopy(session)

    def delete_session(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def _drop_expired(self) -> int:
        """Caller must hold the lock"""
        expired = [sid for sid, s in self._sessions.items() if self._is_expired(s)]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info(f"Purged {len(expired)} expired session(s)")
        return len(expired)

    def purge_expired(self) -> int:
        with self._lock:
            return self._drop_expired()
