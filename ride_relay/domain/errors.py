"""
Error taxonomy shared by the tracker, the dispatch client and the API layer.

Every error is scoped to a single ride or a single request; the API layer
maps each class to an HTTP response in ``ride_relay.api.app``.
"""

from __future__ import annotations

from typing import Any


class RelayError(Exception):
    """Base class for all relay errors."""


class ValidationError(RelayError):
    """Rejected input (missing address, invalid id) -- no network call made."""


class UpstreamError(RelayError):
    """The dispatch API answered with a non-2xx status."""

    def __init__(self, status_code: int, details: Any):
        super().__init__(f"Dispatch API returned HTTP {status_code}")
        self.status_code = status_code
        self.details = details


class TransportError(RelayError):
    """DNS, timeout, connection reset or similar network-level failure."""


class NotFoundExtraction(RelayError):
    """A required field could not be located in an upstream response."""

    def __init__(self, message: str, payload: Any):
        super().__init__(message)
        self.payload = payload


class RideNotTracked(RelayError):
    """The ride id is not in the tracker's active set."""

    def __init__(self, ride_id: int):
        super().__init__(f"Ride #{ride_id} is not being tracked")
        self.ride_id = ride_id


class PushNotConfigured(RelayError):
    """VAPID keys are missing, push delivery is unavailable."""
