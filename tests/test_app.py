"""Route tests for app.py: /property, CORS, method handling and /healthz."""

from unittest.mock import MagicMock

import pytest

from app import app, decode_address
from property_errors import InvalidAddress, NotFound, UpstreamError
from property_models import Coordinates, PropertyDetails, PropertyInfo, School

ADDRESS = "123 Main St, San Francisco, CA 94105"
ALLOWED_ORIGIN = "http://localhost:4321"


def _info(address=ADDRESS):
    return PropertyInfo(
        address=address,
        coordinates=Coordinates(lat=37.7749, lon=-122.4194),
        details=PropertyDetails(size="house residential", rooms=4, value=500000.0,
                                last_updated="2026-01-01T00:00:00+00:00"),
        schools=[School(name="Test School", distance_km=0.17, rating=3.8, type="Elementary")],
    )


@pytest.fixture()
def service():
    svc = MagicMock()
    svc.get_info.side_effect = lambda address: _info(address)
    app.config["PROPERTY_SERVICE"] = svc
    return svc


class TestPropertyRoute:
    def test_success(self, client, service):
        resp = client.get("/property", query_string={"address": ADDRESS})
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["address"] == ADDRESS
        assert data["coordinates"] == {"lat": 37.7749, "lon": -122.4194}
        assert data["details"]["rooms"] == 4
        assert data["schools"][0]["distance_km"] == 0.17
        service.get_info.assert_called_once_with(ADDRESS)

    def test_double_encoded_address_is_decoded(self, client, service):
        resp = client.get("/property?address=123%2520Main%2520St%252C%2520San%2520Francisco%252C%2520CA%252094105")
        assert resp.status_code == 200
        service.get_info.assert_called_once_with(ADDRESS)

    def test_missing_address(self, client, service):
        resp = client.get("/property")
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Address parameter is required"
        service.get_info.assert_not_called()

    def test_empty_address(self, client, service):
        resp = client.get("/property?address=")
        assert resp.status_code == 400

    def test_undecodable_address(self, client, service):
        resp = client.get("/property?address=123%25zz%20Main")
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Invalid address format"
        service.get_info.assert_not_called()

    def test_invalid_address_is_400(self, client, service):
        service.get_info.side_effect = InvalidAddress("invalid address format", stage="validation")
        resp = client.get("/property", query_string={"address": "nope"})
        assert resp.status_code == 400
        body = resp.get_json()
        assert body["stage"] == "validation"
        assert body["error"] == "Error getting property info: address validation failed: invalid address format"

    @pytest.mark.parametrize("exc", [
        NotFound("address not found", stage="geocoding"),
        UpstreamError("opencage HTTP 401", service="opencage", status_code=401, stage="details"),
        UpstreamError("Overpass HTTP 504", service="overpass", status_code=504, stage="schools"),
    ])
    def test_downstream_errors_are_500(self, client, service, exc):
        service.get_info.side_effect = exc
        resp = client.get("/property", query_string={"address": ADDRESS})
        assert resp.status_code == 500
        body = resp.get_json()
        assert body["stage"] == exc.stage
        assert body["error"].startswith("Error getting property info: ")

    def test_post_not_allowed(self, client, service):
        resp = client.post("/property", query_string={"address": ADDRESS})
        assert resp.status_code == 405
        assert resp.get_json()["error"] == "Method not allowed"
        assert "HEAD" not in resp.headers.get("Allow", "")
        service.get_info.assert_not_called()

    def test_head_not_allowed(self, client, service):
        resp = client.head("/property", query_string={"address": "x"})
        assert resp.status_code == 405
        assert resp.headers["Allow"] == "GET, OPTIONS"
        service.get_info.assert_not_called()

    def test_unknown_route(self, client):
        resp = client.get("/nope")
        assert resp.status_code == 404
        assert resp.get_json()["error"] == "Not found"


class TestCORS:
    def test_allowed_origin_gets_headers(self, client, service):
        resp = client.get(
            "/property",
            query_string={"address": ADDRESS},
            headers={"Origin": ALLOWED_ORIGIN},
        )
        assert resp.headers["Access-Control-Allow-Origin"] == ALLOWED_ORIGIN
        assert resp.headers["Access-Control-Allow-Methods"] == "GET, OPTIONS"
        assert resp.headers["Access-Control-Allow-Headers"] == "Content-Type"

    def test_unknown_origin_gets_no_headers(self, client, service):
        resp = client.get(
            "/property",
            query_string={"address": ADDRESS},
            headers={"Origin": "https://evil.example"},
        )
        assert resp.status_code == 200
        assert "Access-Control-Allow-Origin" not in resp.headers

    def test_preflight(self, client, service):
        resp = client.options("/property", headers={"Origin": ALLOWED_ORIGIN})
        assert resp.status_code == 200
        assert resp.data == b""
        assert resp.headers["Access-Control-Allow-Origin"] == ALLOWED_ORIGIN
        service.get_info.assert_not_called()


class TestHealthz:
    def test_ok_with_key(self, client):
        resp = client.get("/healthz")
        assert resp.status_code == 200
        assert resp.get_json() == {"status": "ok", "missing_keys": []}

    def test_degraded_without_key(self, client, monkeypatch):
        from service_config import ServiceConfig
        monkeypatch.setattr("app.CONFIG", ServiceConfig(opencage_api_key=""))
        resp = client.get("/healthz")
        assert resp.status_code == 503
        assert resp.get_json()["missing_keys"] == ["OPENCAGE_API_KEY"]


class TestDecodeAddress:
    def test_plain_address_unchanged(self):
        assert decode_address(ADDRESS) == ADDRESS

    def test_percent_and_plus(self):
        assert decode_address("123+Main%20St") == "123 Main St"

    def test_bad_escape_raises(self):
        with pytest.raises(ValueError):
            decode_address("100% Main St")
