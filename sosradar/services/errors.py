"""Error taxonomy for SOS ingestion and mass-incident detection.

Signal durability comes first: once a signal is persisted, every
clustering-stage failure degrades to "no incident action" instead of
rejecting the request.  Only :class:`InvalidQuery` escapes that rule,
because it means a caller passed nonsense into the proximity index.
"""

from __future__ import annotations


class SOSRadarError(Exception):
    """Base class for all domain errors raised by the service layer."""


class SignalValidationError(SOSRadarError):
    """Payload lacks a finite, in-range coordinate.

    Recoverable: the pipeline reroutes the payload to the legacy
    free-text report path.
    """


class Unauthenticated(SOSRadarError):
    """No reporter identity could be resolved for the request."""


class PersistenceError(SOSRadarError):
    """The signal could not be durably recorded."""


class DependencyUnavailable(SOSRadarError):
    """Proximity or incident storage failed or timed out after the signal was saved."""


class InvalidQuery(SOSRadarError):
    """Bad radius, window or point passed to the proximity index."""


class SignalNotFound(SOSRadarError):
    """No signal record exists for the given id."""


class IncidentNotFound(SOSRadarError):
    """No incident exists for the given id."""


class StoreError(SOSRadarError):
    """A record store backend failed to complete an operation."""
