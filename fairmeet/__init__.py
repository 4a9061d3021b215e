"""
FairMeet - find a meeting spot that is fair for everyone
"""

from .exceptions import (
    FairMeetError,
    InvalidInput,
    ProviderUnavailable,
    SessionExpired,
    SessionNotFound,
)
from .models import (
    Location,
    Participant,
    RankedVenue,
    RankingResult,
    TravelMetric,
    VenueCandidate,
)
from .fairness import FairnessEngine, RankingOptions, compute_midpoint, compute_ranking, rank

__all__ = [
    'FairMeetError',
    'InvalidInput',
    'ProviderUnavailable',
    'SessionExpired',
    'SessionNotFound',
    'Location',
    'Participant',
    'RankedVenue',
    'RankingResult',
    'TravelMetric',
    'VenueCandidate',
    'FairnessEngine',
    'RankingOptions',
    'compute_midpoint',
    'compute_ranking',
    'rank',
]
