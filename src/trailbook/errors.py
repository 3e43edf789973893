"""
Exception taxonomy shared by the recorder and the trip engine.

Every error carries a ``category`` so the UI layer can tell a permissions
problem from a network problem from a data problem. ``user_message()`` is
the single place that turns an exception into text for the user.
"""
from sqlalchemy.exc import SQLAlchemyError

USER_MESSAGES = {
    "invalid_input": "Some required information is missing or invalid.",
    "tracking_start": "Tracking could not be started. Check that location services are on.",
    "location_permission": "Location permission is required to record an activity.",
    "location_unavailable": "No GPS position is available right now.",
    "save": "The activity could not be saved. Your recording is still here, try again.",
    "trip_update": "The trip could not be updated. Your activities and places are safe.",
    "clustering": "Trip suggestions could not be loaded right now.",
    "database": "Could not reach the database. Check your connection and try again.",
}


class TrailbookError(Exception):
    """Base class. Subclasses set ``category``; the message defaults to its user text."""

    category = "invalid_input"

    def __init__(self, message: str = ""):
        super().__init__(message or USER_MESSAGES[self.category])


class InvalidInputError(TrailbookError):
    category = "invalid_input"


class NoActivityDataError(InvalidInputError):
    """Raised when stop is requested but no tracking session was ever started."""

    def __init__(self, message: str = "No activity data to save"):
        super().__init__(message)


class TrackingStartError(TrailbookError):
    category = "tracking_start"


class LocationPermissionError(TrackingStartError):
    category = "location_permission"


class LocationUnavailableError(TrailbookError):
    """Raised by a location service when it cannot produce a fix."""

    category = "location_unavailable"


class ActivitySaveError(TrailbookError):
    category = "save"


class TripUpdateError(TrailbookError):
    category = "trip_update"


class DetectionError(TrailbookError):
    category = "clustering"


def user_message(exc: BaseException) -> str:
    """Return the user-facing text for ``exc``, chosen by its category."""
    if isinstance(exc, TrailbookError):
        return USER_MESSAGES[exc.category]
    if isinstance(exc, SQLAlchemyError):
        return USER_MESSAGES["database"]
    return USER_MESSAGES["invalid_input"]
