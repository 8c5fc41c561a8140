"""Platform location source interface.

The hardware/OS geolocation API is an external collaborator.  pyproximity
only needs a single bounded "give me the current fix" call for
``force_update()``; pushed fixes go straight to ``PairTracker.ingest``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from pyproximity.exceptions import (
    LocationError,
    LocationPermissionDeniedError,
    LocationTimeoutError,
    PositionUnavailableError,
)
from pyproximity.models.location import RawFix

_logger = logging.getLogger(__name__)

_ERRORS_BY_CODE: dict[int, type[LocationError]] = {
    LocationPermissionDeniedError.code: LocationPermissionDeniedError,
    PositionUnavailableError.code: PositionUnavailableError,
    LocationTimeoutError.code: LocationTimeoutError,
}

# Errors that stop location tracking until the user acts.
TERMINAL_LOCATION_ERRORS: tuple[type[LocationError], ...] = (
    LocationPermissionDeniedError,
    PositionUnavailableError,
)


class LocationSource(Protocol):
    """Structural interface for a one-shot location fetch.

    Implementations raise :class:`~pyproximity.exceptions.LocationError`
    subclasses for platform errors.  They may ignore *timeout_s*;
    :func:`fetch_fix` enforces it regardless.  With *high_accuracy* false
    a coarser, faster fix (network or cell based) is acceptable.
    """

    async def get_current_fix(self, *, timeout_s: float, high_accuracy: bool = True) -> RawFix:
        ...


def geolocation_error_from_code(code: int, message: str = "") -> LocationError:
    """Map a W3C ``GeolocationPositionError.code`` to a typed error.

    Unknown codes map to :class:`PositionUnavailableError`.
    """
    error_cls = _ERRORS_BY_CODE.get(code, PositionUnavailableError)
    return error_cls(message, code=code)


def is_terminal(error: LocationError) -> bool:
    return isinstance(error, TERMINAL_LOCATION_ERRORS)


async def _bounded_fetch(source: LocationSource, *, timeout_s: float, high_accuracy: bool) -> RawFix:
    try:
        return await asyncio.wait_for(
            source.get_current_fix(timeout_s=timeout_s, high_accuracy=high_accuracy),
            timeout=timeout_s,
        )
    except TimeoutError as exc:
        _logger.debug("Location fetch timed out after %.1fs (high_accuracy=%s)", timeout_s, high_accuracy)
        raise LocationTimeoutError(f"No location fix within {timeout_s:.1f}s") from exc


async def fetch_fix(
    source: LocationSource,
    *,
    timeout_s: float,
    fallback_timeout_s: float | None = None,
) -> RawFix:
    """Fetch one fix from *source*, bounded by *timeout_s*.

    A high-accuracy fix is requested first.  When it times out or no
    position is available and *fallback_timeout_s* is given, a single
    low-accuracy attempt bounded by *fallback_timeout_s* follows.  A
    denied permission is never retried.

    Raises
    ------
    LocationTimeoutError
        If the source does not answer in time.
    LocationError
        Any typed error raised by the source itself.
    """
    try:
        return await _bounded_fetch(source, timeout_s=timeout_s, high_accuracy=True)
    except (LocationTimeoutError, PositionUnavailableError) as exc:
        if fallback_timeout_s is None:
            raise
        _logger.warning("High-accuracy location failed (%s); retrying with low accuracy", exc)

    return await _bounded_fetch(source, timeout_s=fallback_timeout_s, high_accuracy=False)
