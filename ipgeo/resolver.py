"""IP geolocation resolver — turns an address into a :class:`Location`.

A resolver owns up to two GeoIP readers (city and country), opened lazily
and backed by database files that are copied out of the package on first
use. :func:`get_instance` hands out a shared resolver built from the default
configuration; :func:`reset` closes it so the next call starts fresh.

Construction never raises: any failure leaves a disabled resolver whose
lookups fail with :class:`GeolocationDisabledError`.
"""

import ipaddress
import os
import socket
import threading
from typing import Optional, Union

import geoip2.errors
import maxminddb
import structlog

from ipgeo.core.config import GeoConfiguration, configure
from ipgeo.core.errors import (
    DatabaseIOError,
    GeolocationDisabledError,
    GeolocationError,
    HostResolutionError,
    LocationNotFoundError,
)
from ipgeo.core.level import Level
from ipgeo.core.location import Location
from ipgeo.storage.materializer import MaterializeResult, materialize
from ipgeo.storage.reader import open_reader

log = structlog.get_logger(component="resolver")

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
Address = Union[str, IPAddress]


def resolve_address(address: Address) -> IPAddress:
    """Parse a textual IP, or resolve a hostname to its first address.

    Raises:
        HostResolutionError: if ``address`` is neither an IP nor a resolvable host.
    """
    if isinstance(address, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return address

    text = str(address).strip()
    try:
        return ipaddress.ip_address(text)
    except ValueError:
        pass

    if not text:
        raise HostResolutionError("Empty address")
    try:
        infos = socket.getaddrinfo(text, None)
        return ipaddress.ip_address(infos[0][4][0])
    except (OSError, UnicodeError, ValueError, IndexError) as exc:
        raise HostResolutionError(f"Could not resolve {text}: {exc}") from exc


def _get(record, name: str):
    """Read an optional attribute off an optional response record."""
    if record is None:
        return None
    return getattr(record, name, None)


def _city_fields(response) -> dict:
    """Extract the city-only fields of a city response."""
    location = response.location
    codes = []
    names = []
    for subdivision in response.subdivisions or ():
        code = _get(subdivision, "iso_code")
        name = _get(subdivision, "name")
        # both halves are needed to keep the two sequences aligned
        if code is not None and name is not None:
            codes.append(code)
            names.append(name)

    return {
        "city": _get(response.city, "name"),
        "time_zone": _get(location, "time_zone"),
        "accuracy_radius": _get(location, "accuracy_radius"),
        "metro_code": _get(location, "metro_code"),
        "latitude": _get(location, "latitude"),
        "longitude": _get(location, "longitude"),
        "postal_code": _get(response.postal, "code"),
        "subdivision_codes": tuple(codes),
        "subdivision_names": tuple(names),
    }


def _country_fields(response) -> dict:
    """Extract the fields shared by country and city responses.

    Records missing from the response leave their fields unset.
    """
    fields: dict = {}

    continent = getattr(response, "continent", None)
    if continent is not None:
        fields["continent_code"] = _get(continent, "code")
        fields["continent_name"] = _get(continent, "name")

    country = getattr(response, "country", None)
    if country is not None:
        fields["country_code"] = _get(country, "iso_code")
        fields["country_name"] = _get(country, "name")

    registered = getattr(response, "registered_country", None)
    if registered is not None:
        fields["registered_country_code"] = _get(registered, "iso_code")
        fields["registered_country_name"] = _get(registered, "name")

    traits = getattr(response, "traits", None)
    if traits is not None:
        fields["autonomous_system_number"] = _get(traits, "autonomous_system_number")
        fields["domain"] = _get(traits, "domain")
        fields["isp"] = _get(traits, "isp")
        fields["organization"] = _get(traits, "organization")

    return fields


class Resolver:
    """Locates IP addresses using local GeoIP databases.

    Readers are opened per level on first use; ``locate`` may be called from
    several threads at once. Call :meth:`close` (or use the resolver as a
    context manager) to release the readers and delete any database file
    this resolver copied out of the package.
    """

    def __init__(self, configuration: Optional[GeoConfiguration] = None):
        self._lock = threading.RLock()
        self._enabled = False
        self._configuration: Optional[GeoConfiguration] = None
        self._readers: dict = {}
        # levels whose embedded database has been handled / copied by us
        self._prepared: set = set()
        self._materialized: set = set()
        self._failed: set = set()

        try:
            self._configuration = configuration if configuration is not None else configure()
            level = self._configuration.level
            if level is not Level.DISABLED:
                self._readers[level] = self._create_reader(level)
                self._enabled = True
        except Exception as exc:
            log.warning("geolocation_configuration_incomplete", error=str(exc))
        finally:
            if self._enabled:
                log.info("geolocation_configured", level=self._configuration.level.value)
            else:
                log.info("geolocation_disabled")

    # ---- properties ------------------------------------------------------

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def configuration(self) -> Optional[GeoConfiguration]:
        return self._configuration

    @property
    def default_level(self) -> Level:
        if self._configuration is None:
            return Level.DISABLED
        return self._configuration.level

    # ---- lookups ---------------------------------------------------------

    def locate(self, address: Address, level: Optional[Level] = None) -> Location:
        """Locate ``address`` at ``level`` (the configured level when None).

        Args:
            address: ``IPv4Address``/``IPv6Address``, textual IP or hostname.
            level: Requested granularity.

        Returns:
            A new :class:`Location`. City lookups also carry every
            country-level field.

        Raises:
            GeolocationDisabledError: if the resolver is disabled or closed,
                ``level`` is ``DISABLED``, or the database for ``level`` is
                unavailable after an earlier failed open.
            HostResolutionError: if a textual address cannot be resolved.
            LocationNotFoundError: if the database has no entry for the address.
            DatabaseIOError: if the database for ``level`` could not be
                prepared or opened on first use, or is the wrong type of
                database for ``level``.
        """
        if level is None:
            level = self.default_level
        elif not isinstance(level, Level):
            level = Level.from_value(level)
        if not self._enabled or level is Level.DISABLED:
            raise GeolocationDisabledError("IP geolocation is disabled")

        ip = resolve_address(address)
        reader = self._get_reader(level)

        try:
            if level is Level.CITY:
                response = reader.city(ip)
                fields = _city_fields(response)
            elif "City" in reader.metadata().database_type:
                # a city database answers country lookups too
                response = reader.city(ip)
                fields = {}
            else:
                response = reader.country(ip)
                fields = {}
        except geoip2.errors.AddressNotFoundError as exc:
            raise LocationNotFoundError(f"{ip} not found in {level} database") from exc
        except TypeError as exc:
            # geoip2 rejects a lookup method that does not match the database type
            raise DatabaseIOError(f"{level} database has the wrong type: {exc}") from exc
        except (geoip2.errors.GeoIP2Error, maxminddb.InvalidDatabaseError, OSError) as exc:
            raise LocationNotFoundError(f"{ip} could not be located: {exc}") from exc
        except ValueError as exc:
            # a reader closed underneath us reports ValueError
            if not self._enabled:
                raise GeolocationDisabledError("IP geolocation was closed") from exc
            raise LocationNotFoundError(f"{ip} could not be located: {exc}") from exc

        fields.update(_country_fields(response))
        return Location(level=level, **fields)

    # ---- readers ---------------------------------------------------------

    def _get_reader(self, level: Level):
        reader = self._readers.get(level)
        if reader is not None:
            return reader

        with self._lock:
            if not self._enabled:
                raise GeolocationDisabledError("IP geolocation is disabled")
            reader = self._readers.get(level)
            if reader is None:
                if level in self._failed:
                    raise GeolocationDisabledError(f"{level} database is unavailable")
                try:
                    reader = self._create_reader(level)
                except GeolocationError:
                    self._failed.add(level)
                    raise
                self._readers[level] = reader
            return reader

    def _create_reader(self, level: Level):
        config = self._configuration
        path = config.database_file(level)
        if path is None:
            raise GeolocationDisabledError(f"No database file configured for {level} lookups")

        resource = config.embedded_resource(level)
        if resource is not None and level not in self._prepared:
            result = materialize(resource, path, package=config.resource_package)
            self._prepared.add(level)
            if result is MaterializeResult.MATERIALIZED:
                self._materialized.add(level)

        return open_reader(path, config.caching_enabled)

    # ---- lifecycle -------------------------------------------------------

    def close(self) -> None:
        """Release readers and delete database files this resolver materialized.

        Safe to call more than once. Reader close failures are only logged;
        every file deletion is attempted before reporting a failure.

        Raises:
            DatabaseIOError: if a materialized database file could not be deleted.
        """
        with self._lock:
            for level, reader in list(self._readers.items()):
                try:
                    reader.close()
                except Exception as exc:
                    log.warning("geoip_db_close_failed", level=level.value, error=str(exc))
            self._readers.clear()
            self._enabled = False

            failed = []
            for level in (Level.COUNTRY, Level.CITY):
                if level not in self._materialized:
                    continue
                path = self._configuration.database_file(level)
                if path and os.path.exists(path):
                    try:
                        os.remove(path)
                        log.info("geoip_db_deleted", level=level.value, path=path)
                    except OSError as exc:
                        log.warning("geoip_db_delete_failed", path=path, error=str(exc))
                        failed.append(path)
            self._materialized.clear()
            self._prepared.clear()

        if failed:
            raise DatabaseIOError(f"Could not delete database files: {', '.join(failed)}")

    def __enter__(self) -> "Resolver":
        return self

    def __exit__(self, *args) -> None:
        self.close()


# ---- shared instance -------------------------------------------------------

_instance_lock = threading.Lock()
_instance: Optional[Resolver] = None


def get_instance() -> Resolver:
    """Return the shared resolver, building it from the default configuration if needed."""
    global _instance
    with _instance_lock:
        if _instance is None:
            _instance = Resolver()
        return _instance


def reset() -> None:
    """Close the shared resolver, if any, so the next access builds a new one.

    Raises:
        DatabaseIOError: if closing the previous resolver failed to delete a
            file. The shared slot is cleared regardless.
    """
    global _instance
    with _instance_lock:
        instance, _instance = _instance, None
        if instance is not None:
            instance.close()


def locate(address: Address, level: Optional[Level] = None) -> Location:
    """Locate ``address`` with the shared resolver."""
    return get_instance().locate(address, level)
