"""Error types raised by the fairness engine and the session store"""


class FairMeetError(Exception):
    """Base class for failures that abort a computation or request"""


class InvalidInput(FairMeetError, ValueError):
    """Malformed or out-of-range coordinates, or too few participants"""


class ProviderUnavailable(FairMeetError):
    """The venue search provider could not be reached or answered with an error"""


class SessionNotFound(FairMeetError, KeyError):
    """No session exists under the requested id"""


class SessionExpired(FairMeetError):
    """The session exists but its lifetime has run out"""
