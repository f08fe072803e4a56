"""GeoIP database reader — opens MaxMind mmdb files through geoip2."""

import os

import geoip2.database
import maxminddb
import structlog

from ipgeo.core.errors import DatabaseIOError

log = structlog.get_logger(component="geoip_reader")


def open_reader(path: str, caching_enabled: bool = True) -> geoip2.database.Reader:
    """Open the mmdb database at ``path``.

    With caching enabled the whole database is loaded into memory; otherwise
    the best available file access mode is used.

    Args:
        path: Local mmdb file.
        caching_enabled: Whether to keep the database in memory.

    Returns:
        An open ``geoip2.database.Reader``, safe for concurrent lookups.

    Raises:
        DatabaseIOError: if the file is missing or is not a valid database.
    """
    if not os.path.isfile(path):
        raise DatabaseIOError(f"GeoIP database not found at {path}")

    mode = maxminddb.MODE_MEMORY if caching_enabled else maxminddb.MODE_AUTO
    try:
        reader = geoip2.database.Reader(path, mode=mode)
    except (OSError, maxminddb.InvalidDatabaseError, ValueError) as exc:
        raise DatabaseIOError(f"Failed to open GeoIP database {path}: {exc}") from exc

    log.info("geoip_db_loaded", path=path, caching=caching_enabled)
    return reader
