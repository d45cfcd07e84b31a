"""Service-area geofence and street address sanity checks."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from app.schemas.service import Coordinate

OUT_OF_AREA_TITLE = "We're not in your area yet."
OUT_OF_AREA_MESSAGE = (
    "Helpr currently operates in NYC's five boroughs, Westchester County, and Hudson & Bergen "
    "counties in NJ. Please pick an address within this area to continue."
)


@dataclass(frozen=True)
class ServiceZone:
    name: str
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def contains(self, coordinate: Coordinate) -> bool:
        return (
            self.min_lat <= coordinate.latitude <= self.max_lat
            and self.min_lng <= coordinate.longitude <= self.max_lng
        )


SERVICE_ZONES: tuple[ServiceZone, ...] = (
    ServiceZone("Manhattan", 40.6808, 40.8820, -74.0477, -73.9070),
    ServiceZone("Brooklyn", 40.5512, 40.7395, -74.0530, -73.8334),
    ServiceZone("Queens", 40.5380, 40.8007, -73.9620, -73.7004),
    ServiceZone("Bronx", 40.7850, 40.9176, -73.9330, -73.7650),
    ServiceZone("Staten Island", 40.4810, 40.6510, -74.2557, -74.0520),
    ServiceZone("Westchester County", 40.8940, 41.3570, -74.0770, -73.4810),
    ServiceZone("Hudson County", 40.6500, 40.8770, -74.1200, -74.0100),
    ServiceZone("Bergen County", 40.7900, 41.1200, -74.2050, -73.8640),
)


def find_service_zone(coordinate: Optional[Coordinate]) -> Optional[str]:
    """Name of the first zone containing *coordinate* (bounds inclusive)."""
    if coordinate is None:
        return None
    for zone in SERVICE_ZONES:
        if zone.contains(coordinate):
            return zone.name
    return None


def is_within_service_area(coordinate: Optional[Coordinate]) -> bool:
    return find_service_zone(coordinate) is not None


# ---------------------------------------------------------------------------
# Street number detection
# ---------------------------------------------------------------------------

STREET_SUFFIX_KEYWORDS = frozenset(
    {
        "street", "st", "avenue", "ave", "road", "rd", "drive", "dr", "lane", "ln",
        "way", "wy", "place", "pl", "court", "ct", "boulevard", "blvd", "circle", "cir",
        "parkway", "pkwy", "terrace", "ter", "trail", "trl", "highway", "hwy",
        "expressway", "expy", "freeway", "fwy", "loop", "row", "plaza", "square", "sq",
        "causeway", "cswy", "crescent", "cres", "bridge", "brg", "pass", "path",
        "passage", "view", "vista", "walk", "run", "landing", "ldg", "ridge", "rdg",
        "heights", "hts", "park", "pk", "manor", "mnr", "station", "sta",
    }
)

# "2 bedrooms", "3 boxes" - a number, but not a house number.
NON_ADDRESS_FOLLOWING_WORDS = frozenset(
    {
        "bedroom", "bedrooms", "bathroom", "bathrooms", "box", "boxes", "item", "items",
        "piece", "pieces", "room", "rooms", "floor", "floors", "apt", "apartment",
        "apartments", "unit", "units", "suite", "ste", "level", "levels", "story",
        "stories", "garage", "garages",
    }
)

_CANDIDATE_RE = re.compile(
    r"\b\d{1,6}[A-Za-z]?(?:[-\s]\d{1,6}[A-Za-z]?)?\s+(?:[A-Za-z0-9.'-]+\s*){1,4}",
    re.IGNORECASE,
)


def contains_street_number(value: Optional[str]) -> bool:
    if not value:
        return False
    normalized = re.sub(r"\s+", " ", value).strip()
    if not normalized:
        return False

    for match in _CANDIDATE_RE.finditer(normalized):
        words = match.group(0).lower().split()
        if len(words) < 2:
            continue
        second_word = re.sub(r"[^a-z0-9]", "", words[1])
        if second_word in NON_ADDRESS_FOLLOWING_WORDS:
            continue
        if any(re.sub(r"[^a-z]", "", word) in STREET_SUFFIX_KEYWORDS for word in words):
            return True
        if len(words) >= 3:
            return True
    return False
