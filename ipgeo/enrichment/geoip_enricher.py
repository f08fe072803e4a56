"""GeoIP enricher — adds geographic location data to ECS events using the
shared IP geolocation resolver."""

from typing import Optional

import structlog

from ipgeo import resolver as _resolver
from ipgeo.core.errors import (
    DatabaseIOError,
    GeolocationDisabledError,
    HostResolutionError,
    LocationNotFoundError,
)
from ipgeo.core.level import Level
from ipgeo.core.location import Location

log = structlog.get_logger(component="geoip_enricher")

_ENRICHED_FIELDS = ("source", "destination", "client", "server")


def enrich_with_geolocation(
    event: dict,
    resolver: Optional[_resolver.Resolver] = None,
    level: Optional[Level] = None,
) -> dict:
    """Add GeoIP metadata to the ``*.geo`` and ``*.as`` fields of an ECS event.

    Addresses missing from the database or that cannot be resolved are left
    without geo data. A disabled resolver leaves the event untouched, and a
    database that cannot be read stops enrichment with a warning.

    Args:
        event: ECS-compliant event dict (mutated in-place and returned).
        resolver: Resolver to use. Defaults to the shared instance.
        level: Lookup level. Defaults to the resolver's configured level.

    Returns:
        The enriched event dict.
    """
    if resolver is None:
        resolver = _resolver.get_instance()
    if not resolver.enabled:
        return event

    for field in _ENRICHED_FIELDS:
        ip = (event.get(field) or {}).get("ip")
        if not ip:
            continue
        try:
            location = resolver.locate(ip, level)
        except GeolocationDisabledError:
            return event
        except (LocationNotFoundError, HostResolutionError) as exc:
            log.debug("geoip_lookup_skipped", field=field, ip=ip, reason=exc.kind.value)
            continue
        except DatabaseIOError as exc:
            log.warning("geoip_db_unavailable", field=field, error=str(exc))
            return event

        target = event.setdefault(field, {})
        geo = location_to_geo(location)
        if geo:
            target["geo"] = geo
        as_info = location_to_as(location)
        if as_info:
            target["as"] = as_info

    return event


def location_to_geo(location: Location) -> dict:
    """Map a :class:`Location` to ECS ``geo`` fields, dropping empty values."""
    geo = {
        "continent_code": location.continent_code,
        "continent_name": location.continent_name,
        "country_iso_code": location.country_code,
        "country_name": location.country_name,
        "city_name": location.city,
        "postal_code": location.postal_code,
        "timezone": location.time_zone,
    }
    if location.subdivision_codes:
        # ECS region is the most specific subdivision
        if location.country_code:
            geo["region_iso_code"] = f"{location.country_code}-{location.subdivision_codes[-1]}"
        geo["region_name"] = location.subdivision_names[-1]
    if location.coordinates_available:
        geo["location"] = {"lat": location.latitude, "lon": location.longitude}
    return {k: v for k, v in geo.items() if v is not None}


def location_to_as(location: Location) -> dict:
    """Map network traits of a :class:`Location` to ECS ``as`` fields."""
    as_info: dict = {}
    if location.autonomous_system_number is not None:
        as_info["number"] = location.autonomous_system_number
    if location.organization:
        as_info["organization"] = {"name": location.organization}
    return as_info
