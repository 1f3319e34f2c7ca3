"""
Nearby schools from OpenStreetMap via Overpass.

Each amenity=school feature with a name within the search radius becomes
a School with a haversine distance, a human-readable type derived from
its OSM tags, and a placeholder rating derived from its name.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from geo import are_valid_coordinates, calculate_distance
from overpass_http import OverpassHTTPClient
from property_errors import UpstreamError
from property_models import Coordinates, School
from service_config import ServiceConfig

logger = logging.getLogger(__name__)

# Tag keys checked, in priority order, for a school's type.  Within a
# group the first non-empty key wins.
SCHOOL_TYPE_TAGS: Tuple[Tuple[str, ...], ...] = (
    ("amenity:school:type", "school_type"),
    ("school_level",),
    ("school_category",),
    ("education",),
    ("education:type",),
)


def determine_school_type(tags: Dict[str, Any]) -> str:
    """Human-readable school type from OSM tags."""
    if tags.get("amenity") != "school":
        return "Unknown"

    for group in SCHOOL_TYPE_TAGS:
        for key in group:
            value = tags.get(key)
            if value:
                return str(value).replace("_", " ").title()

    return "General School"


def mock_school_rating(name: str) -> float:
    """Deterministic 3.0-5.0 rating derived from the school name.

    Stand-in for a real rating source: the same name always gets the
    same rating.
    """
    h = 0
    for ch in name:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    return round(3.0 + (h % 20) / 10.0, 1)


def build_schools_query(lat: float, lon: float, radius_m: int) -> str:
    around = f"around:{radius_m},{lat},{lon}"
    return f"""
    [out:json][timeout:25];
    (
      way["amenity"="school"]["name"]({around});
      relation["amenity"="school"]["name"]({around});
      node["amenity"="school"]["name"]({around});
    );
    out center;
    """


def _element_location(element: Dict[str, Any]) -> Optional[Tuple[float, float]]:
    """Representative point: lat/lon for nodes, center for ways/relations."""
    if element.get("type") == "node":
        lat, lon = element.get("lat"), element.get("lon")
    else:
        center = element.get("center")
        if not isinstance(center, dict):
            return None
        lat, lon = center.get("lat"), center.get("lon")
    if lat is None or lon is None:
        return None
    try:
        return float(lat), float(lon)
    except (TypeError, ValueError):
        return None


def parse_schools(data: Dict[str, Any], origin: Coordinates) -> List[School]:
    """Turn an Overpass response into School records, in upstream order.

    Raises UpstreamError when ``elements`` is not a list.  Elements that
    are not objects, or carry no tag object with a name, are skipped.
    """
    elements = data.get("elements") or []
    if not isinstance(elements, list):
        raise UpstreamError(
            f"Overpass elements field is {type(elements).__name__}, expected a list",
            service="overpass",
        )

    schools = []
    for element in elements:
        if not isinstance(element, dict):
            continue
        tags = element.get("tags")
        if not isinstance(tags, dict):
            continue
        name = tags.get("name")
        if not name:
            continue

        location = _element_location(element)
        if location is None:
            logger.info("Skipping school %s: no valid coordinates", name)
            continue
        school_lat, school_lon = location
        if not are_valid_coordinates(school_lat, school_lon):
            logger.info(
                "Skipping school %s: invalid coordinates (%f,%f)",
                name, school_lat, school_lon,
            )
            continue

        schools.append(School(
            name=name,
            distance_km=calculate_distance(origin.lat, origin.lon, school_lat, school_lon),
            rating=mock_school_rating(name),
            type=determine_school_type(tags),
        ))
    return schools


class OverpassSchoolsFinder:
    """Schools within a fixed radius of a point."""

    def __init__(self, config: ServiceConfig, client: Optional[OverpassHTTPClient] = None):
        self.radius_m = config.school_radius_m
        self.client = client or OverpassHTTPClient(
            base_url=config.overpass_url,
            timeout=config.request_timeout,
        )

    def get_nearby_schools(self, coords: Coordinates) -> List[School]:
        query = build_schools_query(coords.lat, coords.lon, self.radius_m)
        data = self.client.query(query, caller="nearby_schools")
        schools = parse_schools(data, coords)
        logger.info(
            "Found %d schools within %dm of (%f,%f)",
            len(schools), self.radius_m, coords.lat, coords.lon,
        )
        return schools
