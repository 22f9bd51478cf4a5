"""
Structural validation tests - bindings decide what reaches a service.

Run: pytest tests/contracts/test_request_validation.py -v
"""

import pytest

from api.contracts.validate import validate_body, validate_payload, validate_query
from errors import InvalidRequest
from services.thing_service import ThingService


class TestValidateBody:
    def test_valid_body(self, bindings):
        body = validate_body(b'{"name": "lamp", "imageKey": "a/b.png"}', bindings.get("CreateThingRequest"))
        assert body.name == "lamp"
        assert body.image_key == "a/b.png"
        assert body.description is None

    def test_empty_body_reports_missing_field(self, bindings):
        with pytest.raises(InvalidRequest) as exc:
            validate_body(b"", bindings.get("CreateThingRequest"))
        assert exc.value.details["field"] == "name"
        assert exc.value.details["violations"][0]["error"] == "required_field_missing"

    def test_wrong_type_is_not_coerced(self, bindings):
        with pytest.raises(InvalidRequest) as exc:
            validate_body(b'{"name": 5}', bindings.get("CreateThingRequest"))
        assert exc.value.details["field"] == "name"

    def test_undeclared_field(self, bindings):
        with pytest.raises(InvalidRequest) as exc:
            validate_body(b'{"name": "a", "ownerId": "me"}', bindings.get("CreateThingRequest"))
        assert exc.value.details["violations"][0] == {
            "field": "ownerId",
            "error": "undeclared_field",
            "message": exc.value.details["violations"][0]["message"],
        }

    def test_invalid_json(self, bindings):
        with pytest.raises(InvalidRequest) as exc:
            validate_body(b'{"name": ', bindings.get("CreateThingRequest"))
        assert exc.value.details["violations"][0]["error"] == "invalid_json"

    def test_constraint_violation(self, bindings):
        with pytest.raises(InvalidRequest) as exc:
            validate_payload({"name": ""}, bindings.get("CreateThingRequest"))
        assert exc.value.details["field"] == "name"

    def test_null_for_non_nullable_field(self, bindings):
        with pytest.raises(InvalidRequest):
            validate_body(b'{"name": null}', bindings.get("UpdateThingRequest"))

    def test_partial_update_tracks_set_fields(self, bindings):
        body = validate_body(b'{"description": null}', bindings.get("UpdateThingRequest"))
        assert body.model_dump(exclude_unset=True) == {"description": None}


class TestValidateQuery:
    def test_numeric_strings_are_coerced(self, bindings):
        query = validate_query({"page": "2", "limit": "10"}, bindings.get("PageQuery"))
        assert (query.page, query.limit) == (2, 10)

    def test_out_of_range(self, bindings):
        with pytest.raises(InvalidRequest) as exc:
            validate_query({"limit": "500"}, bindings.get("PageQuery"))
        assert exc.value.details["field"] == "limit"

    def test_unknown_param(self, bindings):
        with pytest.raises(InvalidRequest) as exc:
            validate_query({"sort": "name"}, bindings.get("PageQuery"))
        assert exc.value.details["field"] == "sort"


class TestHandlerBoundary:
    """Invalid requests never reach a service."""

    @pytest.fixture
    def service_calls(self, monkeypatch):
        calls = []
        for name in ("create", "update", "list"):
            original = getattr(ThingService, name)

            def spy(self, *args, _original=original, _name=name, **kwargs):
                calls.append(_name)
                return _original(self, *args, **kwargs)

            monkeypatch.setattr(ThingService, name, spy)
        return calls

    def test_missing_required_field(self, client, auth, service_calls):
        response = client.post("/api/things", json={}, headers=auth("U1"))

        assert response.status_code == 400
        body = response.get_json()
        assert set(body) == {"error", "details"}
        assert isinstance(body["error"], str)
        assert body["details"]["field"] == "name"
        assert service_calls == []

    def test_wrong_type(self, client, auth, service_calls):
        response = client.post("/api/things", json={"name": ["x"]}, headers=auth("U1"))
        assert response.status_code == 400
        assert service_calls == []

    def test_invalid_patch(self, client, auth, service_calls):
        response = client.patch("/api/things/abc", json={"name": None}, headers=auth("U1"))
        assert response.status_code == 400
        assert service_calls == []

    def test_invalid_query(self, client, auth, service_calls):
        response = client.get("/api/things?limit=0", headers=auth("U1"))
        assert response.status_code == 400
        assert response.get_json()["details"]["field"] == "limit"
        assert service_calls == []

    def test_valid_request_reaches_service_once(self, client, auth, service_calls):
        response = client.post("/api/things", json={"name": "lamp"}, headers=auth("U1"))
        assert response.status_code == 201
        assert service_calls == ["create"]
