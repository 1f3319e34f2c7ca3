"""Shared fixtures for the property info test suite.

Provides a Flask test client, canned upstream payloads and a helper for
building mock requests.Response objects.
"""

import os
from unittest.mock import MagicMock

import pytest
import requests

# Set config BEFORE importing app (it builds ServiceConfig at import time)
os.environ.setdefault("OPENCAGE_API_KEY", "test-key")
os.environ.setdefault("RATE_LIMIT_DEFAULT", "1000/minute")

from app import app  # noqa: E402


def mock_response(status_code=200, json_data=None, text=""):
    """Create a mock requests.Response object."""
    resp = MagicMock(spec=requests.Response)
    resp.status_code = status_code
    resp.ok = 200 <= status_code < 300
    resp.text = text
    if json_data is not None:
        resp.json.return_value = json_data
    else:
        resp.json.side_effect = ValueError("No JSON")
    return resp


NOMINATIM_MATCH = [{"lat": "37.7749", "lon": "-122.4194"}]

OPENCAGE_RESULT = {
    "results": [
        {
            "components": {
                "type": "residential",
                "building": "house",
                "building:levels": "2",
                "apartments": "yes",
            },
            "annotations": {
                "OSM": {
                    "building": "residential",
                },
            },
        },
    ],
    "status": {"code": 200, "message": "OK"},
}

OVERPASS_SCHOOLS = {
    "elements": [
        {
            "type": "node",
            "lat": 37.7760,
            "lon": -122.4180,
            "tags": {
                "name": "Test School",
                "amenity": "school",
                "school_type": "elementary",
            },
        },
    ],
}


@pytest.fixture()
def client():
    """Flask test client; the property service is reset after each test."""
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c
    app.config.pop("PROPERTY_SERVICE", None)
