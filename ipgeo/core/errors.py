"""Errors raised by the geolocation resolver.

Every error carries an :class:`ErrorKind` so callers can branch on
``exc.kind`` instead of catching individual subclasses.
"""

from enum import Enum


class ErrorKind(str, Enum):
    DISABLED = "disabled"
    NOT_FOUND = "not_found"
    HOST_RESOLUTION = "host_resolution"
    IO = "io"
    CONFIGURATION = "configuration"


class GeolocationError(Exception):
    """Base class for all geolocation failures."""

    kind: ErrorKind = ErrorKind.IO


class GeolocationDisabledError(GeolocationError):
    """Geolocation is switched off, misconfigured, or the resolver was closed."""

    kind = ErrorKind.DISABLED


class LocationNotFoundError(GeolocationError):
    """The address is valid but has no entry in the database (e.g. private ranges)."""

    kind = ErrorKind.NOT_FOUND


class HostResolutionError(GeolocationError):
    """A hostname or textual address could not be resolved to an IP."""

    kind = ErrorKind.HOST_RESOLUTION


class DatabaseIOError(GeolocationError, OSError):
    """Materializing, opening or deleting a database file failed."""

    kind = ErrorKind.IO


class ConfigurationError(GeolocationError):
    """A configuration value could not be interpreted."""

    kind = ErrorKind.CONFIGURATION
