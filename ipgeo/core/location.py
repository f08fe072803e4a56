"""Location — the result of a single IP geolocation lookup."""

import gettext
import locale as _locale
import math
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import pycountry

from ipgeo.core.level import Level

# Mean Earth radius in meters
EARTH_RADIUS_M = 6371008.8


@lru_cache(maxsize=32)
def _translation(language: str) -> gettext.NullTranslations:
    return gettext.translation(
        "iso3166-1", pycountry.LOCALES_DIR, languages=[language], fallback=True
    )


def _language(locale: Optional[str]) -> str:
    """Extract the language part of a locale such as ``fr_FR`` or ``pt-BR``."""
    if locale is None:
        try:
            locale = _locale.getlocale()[0]
        except ValueError:
            locale = None
    if not locale or locale in ("C", "POSIX"):
        return "en"
    return locale.replace("-", "_").split("_")[0].lower()


def display_country(code: str, locale: Optional[str] = None) -> Optional[str]:
    """Return the localized display name of an ISO 3166-1 alpha-2 code.

    Unknown codes are returned unchanged, mirroring how locale libraries
    render a region they do not recognize.
    """
    country = pycountry.countries.get(alpha_2=code.upper())
    if country is None:
        return code
    # "Bolivia" rather than "Bolivia, Plurinational State of"
    name = getattr(country, "common_name", country.name)
    return _translation(_language(locale)).gettext(name)


def _localized_name(code: Optional[str], fallback: Optional[str], locale: Optional[str]) -> Optional[str]:
    if code is None:
        return fallback
    name = display_country(code, locale)
    if not name or name == code:
        # not a recognized region
        return fallback
    return name


@dataclass(frozen=True)
class Location:
    """Geolocation data resolved for one address at one :class:`Level`.

    City-only fields stay ``None`` for ``COUNTRY`` lookups, including the
    subdivision sequences. At ``CITY`` level the subdivision sequences are
    always present, of equal length and order-matched.
    """

    level: Level
    city: Optional[str] = None
    time_zone: Optional[str] = None
    accuracy_radius: Optional[int] = None
    metro_code: Optional[int] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    postal_code: Optional[str] = None
    subdivision_codes: Optional[Tuple[str, ...]] = None
    subdivision_names: Optional[Tuple[str, ...]] = None
    country_code: Optional[str] = None
    country_name: Optional[str] = None
    registered_country_code: Optional[str] = None
    registered_country_name: Optional[str] = None
    autonomous_system_number: Optional[int] = None
    domain: Optional[str] = None
    isp: Optional[str] = None
    organization: Optional[str] = None
    continent_code: Optional[str] = None
    continent_name: Optional[str] = None

    @property
    def coordinates_available(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def tzinfo(self) -> Optional[ZoneInfo]:
        if not self.time_zone:
            return None
        try:
            return ZoneInfo(self.time_zone)
        except (ZoneInfoNotFoundError, ValueError):
            return None

    def localized_country_name(self, locale: Optional[str] = None) -> Optional[str]:
        """Country name in the language of ``locale`` (process locale by default).

        Falls back to the name stored in the database when the country code is
        missing or not a recognized region.
        """
        return _localized_name(self.country_code, self.country_name, locale)

    def localized_registered_country_name(self, locale: Optional[str] = None) -> Optional[str]:
        """Registered-country counterpart of :meth:`localized_country_name`."""
        return _localized_name(self.registered_country_code, self.registered_country_name, locale)

    def distance(self, other: "Location") -> float:
        """Great-circle distance in meters to ``other`` (haversine formula).

        Raises:
            ValueError: if either location lacks coordinates.
        """
        if not (self.coordinates_available and other.coordinates_available):
            raise ValueError("Both locations need coordinates to compute a distance")

        lat1, lon1 = math.radians(self.latitude), math.radians(self.longitude)
        lat2, lon2 = math.radians(other.latitude), math.radians(other.longitude)
        dlat = lat2 - lat1
        dlon = lon2 - lon1

        a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
        return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))
