"""
Geocoding clients.

NominatimGeocoder turns an address into coordinates (address search).
OpenCageDetailsProvider turns an address or coordinates into a
PropertyDetails record using the structured geocoder's building tags.

There is no real property data source behind the details record: it
starts from the mock values in service_config and only the size
description and room estimate are derived from OSM building tags.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple, Union

import requests

from property_errors import InvalidCoordinate, NotFound, UpstreamError
from property_models import Coordinates, PropertyDetails
from request_trace import get_trace
from service_config import (
    FALLBACK_PROPERTY_SIZE,
    MOCK_PROPERTY_ROOMS,
    MOCK_PROPERTY_SIZE,
    MOCK_PROPERTY_VALUE,
    ServiceConfig,
)

logger = logging.getLogger(__name__)


def _traced_get(
    session: requests.Session,
    service: str,
    endpoint_name: str,
    url: str,
    params: dict,
    timeout: float,
) -> Any:
    """GET a JSON document with trace recording.

    Raises UpstreamError on transport failure, non-2xx status or a body
    that is not valid JSON.
    """
    t0 = time.time()
    trace = get_trace()

    def _record(status_code: int, provider_status: str = ""):
        if trace:
            trace.record_api_call(
                service=service,
                endpoint=endpoint_name,
                elapsed_ms=int((time.time() - t0) * 1000),
                status_code=status_code,
                provider_status=provider_status,
            )

    try:
        response = session.get(url, params=params, timeout=timeout)
    except requests.exceptions.Timeout as e:
        _record(0, "timeout")
        raise UpstreamError(
            f"{service} request timeout after {timeout}s", service=service
        ) from e
    except requests.exceptions.RequestException as e:
        _record(0, "exception")
        raise UpstreamError(f"{service} request failed: {e}", service=service) from e

    if not 200 <= response.status_code < 300:
        _record(response.status_code, "http_error")
        raise UpstreamError(
            f"{service} HTTP {response.status_code}",
            service=service,
            status_code=response.status_code,
        )

    try:
        data = response.json()
    except ValueError as e:
        _record(response.status_code, "parse_error")
        raise UpstreamError(
            f"{service} returned non-JSON response (HTTP {response.status_code})",
            service=service,
            status_code=response.status_code,
        ) from e

    _record(response.status_code)
    return data


# =============================================================================
# Address search
# =============================================================================

class NominatimGeocoder:
    """Address search against Nominatim. One request, at most one match."""

    SERVICE = "nominatim"

    def __init__(self, config: ServiceConfig):
        self.base_url = config.nominatim_url
        self.timeout = config.request_timeout
        self.session = requests.Session()
        self.session.trust_env = False
        # Nominatim's usage policy rejects requests without a User-Agent.
        self.session.headers["User-Agent"] = config.user_agent

    def geocode(self, address: str) -> Coordinates:
        """Convert an address to coordinates."""
        params = {"q": address, "format": "json", "limit": 1}
        results = _traced_get(
            self.session, self.SERVICE, "search", self.base_url, params, self.timeout
        )

        if not isinstance(results, list):
            raise UpstreamError(
                f"{self.SERVICE} returned unexpected payload type {type(results).__name__}",
                service=self.SERVICE,
            )
        if not results:
            raise NotFound("address not found")

        match = results[0]
        if not isinstance(match, dict):
            raise UpstreamError(
                f"{self.SERVICE} returned a malformed search result",
                service=self.SERVICE,
            )
        lat = _parse_float(match.get("lat"), "latitude")
        lon = _parse_float(match.get("lon"), "longitude")
        return Coordinates(lat=lat, lon=lon)


def _parse_float(raw: Any, label: str) -> float:
    try:
        return float(raw)
    except (TypeError, ValueError) as e:
        raise InvalidCoordinate(f"invalid {label} value: {raw!r}") from e


# =============================================================================
# Structured geocoding (property details)
# =============================================================================

def _component(components: Dict[str, Any], key: str) -> str:
    """Read a component tag; OpenCage prefixes some keys with an underscore."""
    value = components.get(key) or components.get(f"_{key}") or ""
    return str(value)


def _mapping(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _osm_annotations(result: Dict[str, Any]) -> Dict[str, Any]:
    return _mapping(_mapping(result.get("annotations")).get("OSM"))


def describe_building(result: Dict[str, Any]) -> Tuple[str, Optional[int]]:
    """Derive (size description, room estimate) from one structured result.

    Room estimate is None when no positive building-levels value exists.
    Sections that are not JSON objects are treated as absent.
    """
    components = _mapping(result.get("components"))
    osm = _osm_annotations(result)

    fragments = []
    kind = _component(components, "type")
    category = _component(components, "category")
    if kind == "residential" or category == "building":
        building_use = _component(components, "building")
        if building_use:
            fragments.append(building_use)
        if kind:
            fragments.append(kind)

    levels = _component(components, "building:levels") or str(osm.get("building:levels") or "")
    if levels:
        fragments.append(f"{levels} stories")

    if _component(components, "apartments"):
        fragments.append("apartment building")

    size = " ".join(fragments) if fragments else FALLBACK_PROPERTY_SIZE

    # Plain ASCII digits only: int() would also take " 3", "+3" and "3_0".
    rooms = None
    if levels.isascii() and levels.isdigit() and int(levels) > 0:
        rooms = int(levels) * 2

    return size, rooms


class OpenCageDetailsProvider:
    """Property details from the OpenCage structured geocoder.

    Absence of results is not an error; the mock record is returned.
    A missing API key is not checked locally: OpenCage rejects the call
    and the rejection surfaces as an UpstreamError.
    """

    SERVICE = "opencage"

    def __init__(self, config: ServiceConfig):
        self.api_key = config.opencage_api_key
        self.base_url = config.opencage_url
        self.timeout = config.request_timeout
        self.session = requests.Session()
        self.session.trust_env = False

    def get_details(self, query: Union[str, Coordinates]) -> PropertyDetails:
        if isinstance(query, Coordinates):
            q = f"{query.lat},{query.lon}"
        else:
            q = query
        params = {"q": q, "key": self.api_key}
        data = _traced_get(
            self.session, self.SERVICE, "geocode", self.base_url, params, self.timeout
        )
        if not isinstance(data, dict):
            raise UpstreamError(
                f"{self.SERVICE} returned unexpected payload type {type(data).__name__}",
                service=self.SERVICE,
            )

        size = MOCK_PROPERTY_SIZE
        rooms = MOCK_PROPERTY_ROOMS

        results = data.get("results") or []
        if not isinstance(results, list):
            raise UpstreamError(
                f"{self.SERVICE} results field is {type(results).__name__}, expected a list",
                service=self.SERVICE,
            )
        if results:
            first = results[0]
            if not isinstance(first, dict):
                raise UpstreamError(
                    f"{self.SERVICE} returned a malformed result entry",
                    service=self.SERVICE,
                )
            size, estimated_rooms = describe_building(first)
            if estimated_rooms is not None:
                rooms = estimated_rooms

            osm = _osm_annotations(first)
            if osm.get("building"):
                logger.info("OSM building type: %s", osm["building"])
            if osm.get("building:levels"):
                logger.info("OSM building levels: %s", osm["building:levels"])
        else:
            logger.info("No structured results for %r; using mock property details", q)

        return PropertyDetails(
            size=size,
            rooms=rooms,
            value=MOCK_PROPERTY_VALUE,
            last_updated=datetime.now(timezone.utc).isoformat(timespec="seconds"),
        )
