"""
Runtime configuration for the property info service.

Everything that used to be read ad hoc from the environment mid-call
(API key, endpoints, timeouts) lives on one frozen dataclass.  Build it
once with ServiceConfig.from_env() and hand it to each collaborator at
construction time.

Mock values for the property details record also live here so the
fallback record is defined in exactly one place.
"""

import os
from dataclasses import dataclass
from typing import Optional, Tuple

from dotenv import load_dotenv

# =============================================================================
# Defaults
# =============================================================================

DEFAULT_NOMINATIM_URL = "https://nominatim.openstreetmap.org/search"
DEFAULT_OPENCAGE_URL = "https://api.opencagedata.com/geocode/v1/json"
DEFAULT_OVERPASS_URL = "https://overpass-api.de/api/interpreter"

DEFAULT_USER_AGENT = "PropertyInfoService/1.0"

# Per-call timeout in seconds for every outbound request.  There is no
# retry, so a timeout fails the whole request.
DEFAULT_REQUEST_TIMEOUT = 30

# Search radius for the nearby-schools spatial query (meters).
DEFAULT_SCHOOL_RADIUS_M = 2000

DEFAULT_ALLOWED_ORIGINS = (
    "https://property-details-client.vercel.app",
    "http://localhost:4321",
)

# Placeholder property details.  There is no valuation source; these are
# returned whenever the structured geocoder has nothing better.
MOCK_PROPERTY_SIZE = "Mock-Data"
MOCK_PROPERTY_ROOMS = 3
MOCK_PROPERTY_VALUE = 500000.0
FALLBACK_PROPERTY_SIZE = "Residential Property"


@dataclass(frozen=True)
class ServiceConfig:
    """Explicit configuration passed to each upstream client."""
    opencage_api_key: str = ""
    nominatim_url: str = DEFAULT_NOMINATIM_URL
    opencage_url: str = DEFAULT_OPENCAGE_URL
    overpass_url: str = DEFAULT_OVERPASS_URL
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    user_agent: str = DEFAULT_USER_AGENT
    school_radius_m: int = DEFAULT_SCHOOL_RADIUS_M
    allowed_origins: Tuple[str, ...] = DEFAULT_ALLOWED_ORIGINS

    @classmethod
    def from_env(cls, timeout: Optional[float] = None) -> "ServiceConfig":
        """Build a config from environment variables (and .env, if present)."""
        load_dotenv()

        origins_env = os.environ.get("CORS_ALLOWED_ORIGINS", "")
        origins = tuple(o.strip() for o in origins_env.split(",") if o.strip())

        if timeout is None:
            timeout = float(
                os.environ.get("API_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT)
            )

        return cls(
            opencage_api_key=os.environ.get("OPENCAGE_API_KEY", ""),
            nominatim_url=os.environ.get("NOMINATIM_BASE_URL", DEFAULT_NOMINATIM_URL),
            opencage_url=os.environ.get("OPENCAGE_BASE_URL", DEFAULT_OPENCAGE_URL),
            overpass_url=os.environ.get("OVERPASS_BASE_URL", DEFAULT_OVERPASS_URL),
            request_timeout=timeout,
            user_agent=os.environ.get("PROPERTY_INFO_USER_AGENT", DEFAULT_USER_AGENT),
            school_radius_m=int(
                os.environ.get("SCHOOL_SEARCH_RADIUS_M", DEFAULT_SCHOOL_RADIUS_M)
            ),
            allowed_origins=origins or DEFAULT_ALLOWED_ORIGINS,
        )

    def missing_keys(self) -> list:
        """Names of required secrets that are not configured."""
        missing = []
        if not self.opencage_api_key:
            missing.append("OPENCAGE_API_KEY")
        return missing
