"""
Error taxonomy for the property info pipeline.

Every failure raised by the pipeline is a PropertyInfoError.  The
orchestrator tags the error with the stage that was running when it
happened (validation / geocoding / details / schools) so callers get a
message like "geocoding failed: address not found" without any stage
having to know where it sits in the pipeline.
"""

from typing import Optional

# Human-readable prefix per pipeline stage, used when formatting messages.
STAGE_PREFIXES = {
    "validation": "address validation failed",
    "geocoding": "geocoding failed",
    "details": "failed to get property details",
    "schools": "failed to get nearby schools",
}


class PropertyInfoError(Exception):
    """Base class for all pipeline failures."""

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.stage = stage

    def __str__(self) -> str:
        prefix = STAGE_PREFIXES.get(self.stage or "")
        if prefix:
            return f"{prefix}: {self.message}"
        return self.message


class InvalidAddress(PropertyInfoError):
    """Raised before any network call when the address is malformed."""

    pass


class NotFound(PropertyInfoError):
    """Raised when the geocoder returns no candidates."""

    pass


class InvalidCoordinate(PropertyInfoError):
    """Raised when an upstream coordinate cannot be parsed as a float."""

    pass


class UpstreamError(PropertyInfoError):
    """Transport failure, non-2xx status or undecodable payload from a collaborator."""

    def __init__(
        self,
        message: str,
        service: str = "",
        status_code: Optional[int] = None,
        stage: Optional[str] = None,
    ):
        super().__init__(message, stage=stage)
        self.service = service
        self.status_code = status_code
