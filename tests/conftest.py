"""Shared fixtures — a fake GeoIP reader and a temporary embedded-resource directory."""

import os
from types import SimpleNamespace

import geoip2.errors
import pytest

from ipgeo.core.config import GeoConfiguration, reset_configuration
from ipgeo.core.errors import DatabaseIOError
from ipgeo.core.level import Level

CITY_RESOURCE = "GeoLite2-City.mmdb"
COUNTRY_RESOURCE = "GeoLite2-Country.mmdb"
RESOURCE_BYTES = b"fake-mmdb:" + bytes(range(256)) * 8


def _record(**kwargs) -> SimpleNamespace:
    return SimpleNamespace(**kwargs)


def make_city_response(
    city=None,
    time_zone=None,
    accuracy_radius=None,
    metro_code=None,
    latitude=None,
    longitude=None,
    postal_code=None,
    subdivisions=(),
    country=(None, None),
    registered_country=(None, None),
    continent=(None, None),
    traits=None,
) -> SimpleNamespace:
    """Build an object shaped like ``geoip2.models.City``."""
    traits = traits or {}
    return SimpleNamespace(
        city=_record(name=city),
        location=_record(
            time_zone=time_zone,
            accuracy_radius=accuracy_radius,
            metro_code=metro_code,
            latitude=latitude,
            longitude=longitude,
        ),
        postal=_record(code=postal_code),
        subdivisions=tuple(_record(iso_code=c, name=n) for c, n in subdivisions),
        country=_record(iso_code=country[0], name=country[1]),
        registered_country=_record(iso_code=registered_country[0], name=registered_country[1]),
        continent=_record(code=continent[0], name=continent[1]),
        traits=_record(
            autonomous_system_number=traits.get("asn"),
            domain=traits.get("domain"),
            isp=traits.get("isp"),
            organization=traits.get("organization"),
        ),
    )


RECORDS = {
    "64.4.4.4": make_city_response(
        city="Redmond",
        time_zone="America/Los_Angeles",
        accuracy_radius=937,
        metro_code=819,
        latitude=47.68009948730469,
        longitude=-122.12060546875,
        postal_code="98052",
        subdivisions=[("WA", "Washington")],
        country=("US", "United States"),
        registered_country=("US", "United States"),
        continent=("NA", "North America"),
    ),
    "8.8.8.8": make_city_response(
        city="Mountain View",
        time_zone="America/Los_Angeles",
        accuracy_radius=1000,
        latitude=37.386,
        longitude=-122.0838,
        subdivisions=[("CA", "California")],
        country=("US", "United States"),
        registered_country=("US", "United States"),
        continent=("NA", "North America"),
        traits={"asn": 15169, "organization": "Google LLC", "isp": "Google", "domain": "google.com"},
    ),
    "81.2.69.160": make_city_response(
        city="London",
        time_zone="Europe/London",
        accuracy_radius=100,
        latitude=51.5142,
        longitude=-0.0931,
        subdivisions=[("ENG", "England"), ("XYZ", None), (None, "Nowhere"), ("LND", "London")],
        country=("GB", "United Kingdom"),
        registered_country=("SE", "Sweden"),
        continent=("EU", "Europe"),
    ),
    "2001:218::": make_city_response(
        country=("JP", "Japan"),
        registered_country=("JP", "Japan"),
        continent=("AS", "Asia"),
    ),
}


class FakeReader:
    """In-memory stand-in for ``geoip2.database.Reader``."""

    def __init__(self, path: str, caching_enabled: bool, records: dict, database_type=None):
        self.path = path
        self.caching_enabled = caching_enabled
        self.records = records
        if database_type is None:
            database_type = "GeoLite2-City" if "City" in os.path.basename(path) else "GeoLite2-Country"
        self.database_type = database_type
        self.closed = False
        self.queries = []

    def metadata(self):
        return SimpleNamespace(database_type=self.database_type)

    def _check_type(self, method: str, expected: str):
        # geoip2 refuses lookups that do not fit the database type
        if expected not in self.database_type:
            raise TypeError(
                f"The {method} method cannot be used with the {self.database_type} database"
            )

    def _lookup(self, ip):
        if self.closed:
            raise ValueError("Attempt to read from a closed MaxMind DB.")
        self.queries.append(str(ip))
        try:
            return self.records[str(ip)]
        except KeyError:
            raise geoip2.errors.AddressNotFoundError(
                f"The address {ip} is not in the database."
            ) from None

    def city(self, ip):
        self._check_type("city", "City")
        return self._lookup(ip)

    def country(self, ip):
        self._check_type("country", "Country")
        response = self._lookup(ip)
        return SimpleNamespace(
            continent=response.continent,
            country=response.country,
            registered_country=response.registered_country,
            traits=response.traits,
        )

    def close(self):
        self.closed = True


@pytest.fixture
def resource_dir(tmp_path, monkeypatch):
    """Serve embedded resources from a temporary directory."""
    directory = tmp_path / "resources"
    directory.mkdir()
    (directory / CITY_RESOURCE).write_bytes(RESOURCE_BYTES)
    (directory / COUNTRY_RESOURCE).write_bytes(RESOURCE_BYTES)
    monkeypatch.setattr(
        "ipgeo.storage.materializer.resource_root", lambda package=None: directory
    )
    return directory


@pytest.fixture
def opened_readers(monkeypatch):
    """Replace the real reader with :class:`FakeReader`; returns every reader opened."""
    opened = []

    def fake_open_reader(path, caching_enabled=True):
        if not os.path.isfile(path):
            raise DatabaseIOError(f"GeoIP database not found at {path}")
        reader = FakeReader(path, caching_enabled, RECORDS)
        opened.append(reader)
        return reader

    monkeypatch.setattr("ipgeo.resolver.open_reader", fake_open_reader)
    return opened


@pytest.fixture
def db_dir(tmp_path):
    return tmp_path / "db"


@pytest.fixture
def make_config(db_dir):
    """Factory for configurations whose database files live under a temp dir."""

    def _make(level=Level.CITY, **overrides) -> GeoConfiguration:
        settings = {
            "level": level,
            "city_database_file": str(db_dir / CITY_RESOURCE),
            "country_database_file": str(db_dir / COUNTRY_RESOURCE),
        }
        settings.update(overrides)
        return GeoConfiguration(**settings)

    return _make


@pytest.fixture(autouse=True)
def _clean_shared_state(monkeypatch):
    for name in list(os.environ):
        if name.startswith("IPGEO_"):
            monkeypatch.delenv(name)
    yield
    reset_configuration()
