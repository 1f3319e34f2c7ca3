#!/usr/bin/env python3
"""
Property Info Lookup

Validates a U.S. street address, geocodes it, and assembles a JSON
document with the property's coordinates, (mock) structural details and
nearby schools.

Requirements:
- OpenCage API key in OPENCAGE_API_KEY (structured geocoding)
- Nominatim and Overpass are used without keys

Usage:
    python property_info.py "123 Main St, San Francisco, CA 94105"
"""

import argparse
import json
import logging
import re
import sys
import time
import uuid
from typing import List, Protocol, Union

from geocoding import NominatimGeocoder, OpenCageDetailsProvider
from property_errors import InvalidAddress, PropertyInfoError
from property_models import Coordinates, PropertyDetails, PropertyInfo, School
from request_trace import get_trace, traced_lookup
from schools import OverpassSchoolsFinder
from service_config import ServiceConfig

logger = logging.getLogger(__name__)

# Street number, street, city, two-letter state, optional 5-digit ZIP.
# ASCII digits and whitespace only.
ADDRESS_PATTERN = re.compile(
    r"^\d+\s+[A-Za-z0-9\s.-]+,\s*[A-Za-z\s]+,\s*[A-Z]{2}\s*(?:\d{5})?$",
    re.ASCII,
)


def validate_address(address: str) -> None:
    """Syntactic pre-filter; does not check that the address exists."""
    trimmed = (address or "").strip()
    if not trimmed:
        raise InvalidAddress("address cannot be empty")

    if len(trimmed.split(",")) < 3:
        raise InvalidAddress("address must include street, city, and state")

    if not ADDRESS_PATTERN.match(trimmed):
        raise InvalidAddress("invalid address format")


# =============================================================================
# Collaborator interfaces
# =============================================================================

class Geocoder(Protocol):
    def geocode(self, address: str) -> Coordinates: ...


class DetailsProvider(Protocol):
    def get_details(self, query: Union[str, Coordinates]) -> PropertyDetails: ...


class SchoolsFinder(Protocol):
    def get_nearby_schools(self, coords: Coordinates) -> List[School]: ...


# =============================================================================
# Pipeline
# =============================================================================

def _run_tagged(stage_name, fn, *args, **kwargs):
    try:
        return fn(*args, **kwargs)
    except PropertyInfoError as exc:
        if exc.stage is None:
            exc.stage = stage_name
        raise


def _timed_stage(stage_name, fn, *args, **kwargs):
    """Run *fn* as a pipeline stage.

    Records timing in the active trace (or logs it), tags pipeline errors
    with the stage name and re-raises.
    """
    trace = get_trace()
    if trace:
        with trace.stage(stage_name):
            return _run_tagged(stage_name, fn, *args, **kwargs)

    t0 = time.time()
    try:
        result = _run_tagged(stage_name, fn, *args, **kwargs)
    except Exception as exc:
        logger.warning("  [stage] %s FAILED (%.1fs): %s", stage_name, time.time() - t0, exc)
        raise
    logger.info("  [stage] %s OK (%.1fs)", stage_name, time.time() - t0)
    return result


class PropertyInfoService:
    """Chains validation, geocoding, details and schools for one address."""

    def __init__(
        self,
        geocoder: Geocoder,
        details_provider: DetailsProvider,
        schools_finder: SchoolsFinder,
    ):
        self.geocoder = geocoder
        self.details_provider = details_provider
        self.schools_finder = schools_finder

    @classmethod
    def from_config(cls, config: ServiceConfig) -> "PropertyInfoService":
        return cls(
            geocoder=NominatimGeocoder(config),
            details_provider=OpenCageDetailsProvider(config),
            schools_finder=OverpassSchoolsFinder(config),
        )

    def get_info(self, address: str) -> PropertyInfo:
        """Look up everything for *address*.  Any stage failure aborts the lookup."""
        _timed_stage("validation", validate_address, address)
        coords = _timed_stage("geocoding", self.geocoder.geocode, address)
        details = _timed_stage("details", self.details_provider.get_details, address)
        schools = _timed_stage("schools", self.schools_finder.get_nearby_schools, coords)

        return PropertyInfo(
            address=address,
            coordinates=coords,
            details=details,
            schools=schools,
        )


# =============================================================================
# CLI
# =============================================================================

def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Look up location, property details and nearby schools for an address"
    )
    parser.add_argument(
        "address",
        nargs="?",
        help='Street address, e.g. "123 Main St, San Francisco, CA 94105"'
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Per-request timeout in seconds (or set API_REQUEST_TIMEOUT)"
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log stage timings and API calls to stderr"
    )

    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)

    if not args.address:
        parser.print_help()
        sys.exit(1)

    config = ServiceConfig.from_env(timeout=args.timeout)
    if config.missing_keys():
        logger.warning(
            "Missing configuration: %s. Property details lookups will fail.",
            ", ".join(config.missing_keys()),
        )

    service = PropertyInfoService.from_config(config)
    try:
        # Stage and API call timings reach stderr with --verbose.
        with traced_lookup(uuid.uuid4().hex[:10]):
            info = service.get_info(args.address)
    except PropertyInfoError as e:
        print(f"Error: {e}")
        sys.exit(1)

    print(json.dumps(info.to_dict(), indent=2))


if __name__ == "__main__":
    main()
