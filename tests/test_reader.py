"""Unit tests for ipgeo.storage.reader."""

import pytest

from ipgeo.core.errors import DatabaseIOError
from ipgeo.storage.reader import open_reader


class TestOpenReader:
    """Tests for the open_reader function."""

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(DatabaseIOError):
            open_reader(str(tmp_path / "GeoLite2-City.mmdb"))

    @pytest.mark.parametrize("caching_enabled", [True, False])
    def test_invalid_database_raises(self, tmp_path, caching_enabled):
        path = tmp_path / "GeoLite2-City.mmdb"
        path.write_bytes(b"not a maxmind database")
        with pytest.raises(DatabaseIOError):
            open_reader(str(path), caching_enabled)

    def test_directory_is_not_a_database(self, tmp_path):
        with pytest.raises(DatabaseIOError):
            open_reader(str(tmp_path))
