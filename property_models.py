"""
Data classes for the property info response.

Field names follow the JSON document returned by the CLI and the
/property endpoint; to_dict() produces that document.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List


@dataclass
class Coordinates:
    lat: float
    lon: float


@dataclass
class PropertyDetails:
    size: str
    rooms: int
    value: float
    last_updated: str  # RFC 3339, stamped when the lookup completes


@dataclass
class School:
    name: str
    distance_km: float
    rating: float  # 3.0-5.0, derived from the name; not real rating data
    type: str


@dataclass
class PropertyInfo:
    address: str
    coordinates: Coordinates
    details: PropertyDetails
    schools: List[School] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
