"""Geolocation configuration — which level to resolve and where the databases live.

Settings can come from a property mapping (dotted ``ipgeo.*`` keys) or from
``IPGEO_*`` environment variables. :func:`configure` keeps the process-wide
default configuration used by the shared resolver.
"""

import os
import threading
from dataclasses import dataclass
from typing import Mapping, Optional

import structlog

from ipgeo.core.errors import ConfigurationError
from ipgeo.core.level import Level

log = structlog.get_logger(component="geo_config")

_PREFIX = "ipgeo."

LEVEL_PROPERTY = _PREFIX + "IP_GEOLOCATION_LEVEL"
CACHING_ENABLED_PROPERTY = _PREFIX + "CACHING_ENABLED"
COUNTRY_DATABASE_EMBEDDED_PROPERTY = _PREFIX + "IP_GEOLOCATION_COUNTRY_DATABASE_EMBEDDED"
COUNTRY_EMBEDDED_RESOURCE_PROPERTY = _PREFIX + "IP_GEOLOCATION_COUNTRY_EMBEDDED_RESOURCE"
COUNTRY_DATABASE_FILE_PROPERTY = _PREFIX + "IP_GEOLOCATION_COUNTRY_DATABASE_FILE"
CITY_DATABASE_EMBEDDED_PROPERTY = _PREFIX + "IP_GEOLOCATION_CITY_DATABASE_EMBEDDED"
CITY_EMBEDDED_RESOURCE_PROPERTY = _PREFIX + "IP_GEOLOCATION_CITY_EMBEDDED_RESOURCE"
CITY_DATABASE_FILE_PROPERTY = _PREFIX + "IP_GEOLOCATION_CITY_DATABASE_FILE"
RESOURCE_PACKAGE_PROPERTY = _PREFIX + "RESOURCE_PACKAGE"

DEFAULT_LEVEL = Level.CITY
DEFAULT_CACHING_ENABLED = True
DEFAULT_COUNTRY_DATABASE_EMBEDDED = True
DEFAULT_COUNTRY_EMBEDDED_RESOURCE = "GeoLite2-Country.mmdb"
DEFAULT_COUNTRY_DATABASE_FILE = "./GeoLite2-Country.mmdb"
DEFAULT_CITY_DATABASE_EMBEDDED = True
DEFAULT_CITY_EMBEDDED_RESOURCE = "GeoLite2-City.mmdb"
DEFAULT_CITY_DATABASE_FILE = "./GeoLite2-City.mmdb"
DEFAULT_RESOURCE_PACKAGE = "ipgeo.data"

# Environment variable for each property key, e.g. IPGEO_CACHING_ENABLED.
ENV_VARS: dict = {
    key: "IPGEO_" + key[len(_PREFIX):].replace("IP_GEOLOCATION_", "")
    for key in (
        LEVEL_PROPERTY,
        CACHING_ENABLED_PROPERTY,
        COUNTRY_DATABASE_EMBEDDED_PROPERTY,
        COUNTRY_EMBEDDED_RESOURCE_PROPERTY,
        COUNTRY_DATABASE_FILE_PROPERTY,
        CITY_DATABASE_EMBEDDED_PROPERTY,
        CITY_EMBEDDED_RESOURCE_PROPERTY,
        CITY_DATABASE_FILE_PROPERTY,
        RESOURCE_PACKAGE_PROPERTY,
    )
}

_TRUE_VALUES = {"true", "1", "yes", "on"}
_FALSE_VALUES = {"false", "0", "no", "off"}


def _parse_bool(key: str, value: Optional[str], default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"Invalid boolean for {key}: {value!r}")


def _optional_str(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True)
class GeoConfiguration:
    """Read-only geolocation settings captured by a resolver at construction."""

    level: Level = DEFAULT_LEVEL
    caching_enabled: bool = DEFAULT_CACHING_ENABLED
    country_database_embedded: bool = DEFAULT_COUNTRY_DATABASE_EMBEDDED
    country_embedded_resource: Optional[str] = DEFAULT_COUNTRY_EMBEDDED_RESOURCE
    country_database_file: Optional[str] = DEFAULT_COUNTRY_DATABASE_FILE
    city_database_embedded: bool = DEFAULT_CITY_DATABASE_EMBEDDED
    city_embedded_resource: Optional[str] = DEFAULT_CITY_EMBEDDED_RESOURCE
    city_database_file: Optional[str] = DEFAULT_CITY_DATABASE_FILE
    resource_package: str = DEFAULT_RESOURCE_PACKAGE

    # ---- per-level accessors ---------------------------------------------

    def database_file(self, level: Level) -> Optional[str]:
        """Local database path for ``level``, or None when the level is unusable."""
        if level is Level.CITY:
            return self.city_database_file or None
        if level is Level.COUNTRY:
            return self.country_database_file or None
        return None

    def is_embedded(self, level: Level) -> bool:
        """True if the database for ``level`` should be copied from a packaged resource."""
        if level is Level.CITY:
            embedded, resource = self.city_database_embedded, self.city_embedded_resource
        elif level is Level.COUNTRY:
            embedded, resource = self.country_database_embedded, self.country_embedded_resource
        else:
            return False
        return bool(embedded and resource and self.database_file(level))

    def embedded_resource(self, level: Level) -> Optional[str]:
        """Packaged resource name for ``level``, only when embedding applies."""
        if not self.is_embedded(level):
            return None
        if level is Level.CITY:
            return self.city_embedded_resource
        return self.country_embedded_resource

    # ---- (de)serialization -----------------------------------------------

    @classmethod
    def from_properties(cls, properties: Mapping[str, str]) -> "GeoConfiguration":
        """Build a configuration from a mapping of dotted property keys.

        Missing keys fall back to their defaults. An explicitly empty path or
        resource name disables that setting.

        Raises:
            ConfigurationError: if a boolean value cannot be interpreted.
        """
        def get(key: str, default: Optional[str]) -> Optional[str]:
            if key in properties:
                return _optional_str(properties[key])
            return default

        level_value = properties.get(LEVEL_PROPERTY)
        return cls(
            level=Level.from_value(level_value) if level_value is not None else DEFAULT_LEVEL,
            caching_enabled=_parse_bool(
                CACHING_ENABLED_PROPERTY,
                properties.get(CACHING_ENABLED_PROPERTY),
                DEFAULT_CACHING_ENABLED,
            ),
            country_database_embedded=_parse_bool(
                COUNTRY_DATABASE_EMBEDDED_PROPERTY,
                properties.get(COUNTRY_DATABASE_EMBEDDED_PROPERTY),
                DEFAULT_COUNTRY_DATABASE_EMBEDDED,
            ),
            country_embedded_resource=get(
                COUNTRY_EMBEDDED_RESOURCE_PROPERTY, DEFAULT_COUNTRY_EMBEDDED_RESOURCE
            ),
            country_database_file=get(COUNTRY_DATABASE_FILE_PROPERTY, DEFAULT_COUNTRY_DATABASE_FILE),
            city_database_embedded=_parse_bool(
                CITY_DATABASE_EMBEDDED_PROPERTY,
                properties.get(CITY_DATABASE_EMBEDDED_PROPERTY),
                DEFAULT_CITY_DATABASE_EMBEDDED,
            ),
            city_embedded_resource=get(CITY_EMBEDDED_RESOURCE_PROPERTY, DEFAULT_CITY_EMBEDDED_RESOURCE),
            city_database_file=get(CITY_DATABASE_FILE_PROPERTY, DEFAULT_CITY_DATABASE_FILE),
            resource_package=get(RESOURCE_PACKAGE_PROPERTY, None) or DEFAULT_RESOURCE_PACKAGE,
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "GeoConfiguration":
        """Build a configuration from ``IPGEO_*`` environment variables."""
        if environ is None:
            environ = os.environ
        properties = {
            key: environ[env_var] for key, env_var in ENV_VARS.items() if env_var in environ
        }
        return cls.from_properties(properties)

    def to_properties(self) -> dict:
        """Serialize to dotted property keys; unset optional values are omitted."""
        properties = {
            LEVEL_PROPERTY: self.level.value,
            CACHING_ENABLED_PROPERTY: str(self.caching_enabled).lower(),
            COUNTRY_DATABASE_EMBEDDED_PROPERTY: str(self.country_database_embedded).lower(),
            CITY_DATABASE_EMBEDDED_PROPERTY: str(self.city_database_embedded).lower(),
            RESOURCE_PACKAGE_PROPERTY: self.resource_package,
        }
        optional = {
            COUNTRY_EMBEDDED_RESOURCE_PROPERTY: self.country_embedded_resource,
            COUNTRY_DATABASE_FILE_PROPERTY: self.country_database_file,
            CITY_EMBEDDED_RESOURCE_PROPERTY: self.city_embedded_resource,
            CITY_DATABASE_FILE_PROPERTY: self.city_database_file,
        }
        properties.update({k: v for k, v in optional.items() if v is not None})
        return properties


# ---- process-wide default configuration ----------------------------------

_lock = threading.Lock()
_configuration: Optional[GeoConfiguration] = None


def configure(properties: Optional[Mapping[str, str]] = None) -> GeoConfiguration:
    """Return the default configuration, building it on first call.

    Once built, later calls return the cached configuration regardless of
    ``properties``; call :func:`reset_configuration` to load a new one.

    Args:
        properties: Dotted property mapping. When None, settings are read
            from the environment.

    Raises:
        ConfigurationError: if a configuration value is malformed.
    """
    global _configuration
    with _lock:
        if _configuration is None:
            if properties is None:
                _configuration = GeoConfiguration.from_env()
            else:
                _configuration = GeoConfiguration.from_properties(properties)
            log.info("geo_configuration_loaded", level=_configuration.level.value)
        return _configuration


def reset_configuration() -> None:
    """Close the shared resolver and forget the cached default configuration."""
    global _configuration
    from ipgeo import resolver

    try:
        resolver.reset()
    finally:
        with _lock:
            _configuration = None
