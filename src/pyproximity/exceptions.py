"""Custom exception hierarchy for pyproximity."""

from __future__ import annotations


class ProximityError(Exception):
    """Base exception for all pyproximity errors."""


class ProximityConfigError(ProximityError):
    """Invalid configuration (e.g. a zero or negative threshold).

    Raised synchronously when a config object or engine is constructed.
    This is a programmer error and is not meant to be recovered from at
    runtime.
    """


class LocationError(ProximityError):
    """Failure reported by the platform location source."""

    #: W3C ``GeolocationPositionError.code`` equivalent, when known.
    code: int | None = None

    def __init__(self, message: str = "", *, code: int | None = None) -> None:
        if code is not None:
            self.code = code
        super().__init__(message or type(self).__doc__ or "location error")


class LocationPermissionDeniedError(LocationError):
    """The user has not granted (or has revoked) location permission.

    Terminal for the current session until the consumer explicitly calls
    ``force_update()`` or ``retry()``.
    """

    code = 1


class PositionUnavailableError(LocationError):
    """The location source could not determine a position.

    Terminal for the current session until the consumer explicitly calls
    ``force_update()`` or ``retry()``.
    """

    code = 2


class LocationTimeoutError(LocationError):
    """A location fetch did not complete within its timeout."""

    code = 3


class SubscriptionFailureError(ProximityError):
    """Presence/location feed transport failure.

    Feed adapters retry these with backoff.  The pipeline logs them and keeps
    serving the last known proximity state.
    """

    def __init__(
        self,
        message: str,
        *,
        user_id: str = "",
        attempts: int = 0,
    ) -> None:
        self.user_id = user_id
        self.attempts = attempts
        super().__init__(message)
