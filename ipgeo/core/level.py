"""Lookup granularity — how much detail a geolocation lookup resolves."""

from enum import Enum
from typing import Optional


class Level(str, Enum):
    """Requested granularity of an IP geolocation lookup.

    ``CITY`` lookups include every country-level field as well;
    ``COUNTRY`` lookups never carry city-only fields.
    """

    DISABLED = "disabled"
    COUNTRY = "country"
    CITY = "city"

    @classmethod
    def from_value(cls, value: Optional[str]) -> "Level":
        """Parse a textual level, case-insensitively.

        Unknown or missing values map to ``DISABLED`` rather than raising.
        """
        if value is not None:
            normalized = str(value).strip().lower()
            for level in cls:
                if level.value == normalized:
                    return level
        return cls.DISABLED

    def __str__(self) -> str:
        return self.value
