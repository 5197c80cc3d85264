"""Tests for the error envelope format and error handling.

Error responses share one stable shape:
{
    "status": "error",
    "error": {
        "code": "<stable_code>",
        "message": "<human_readable>",
        "details": <object|array|null>
    },
    "request_id": "<uuid>"
}
"""

import json
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError

from coursesphere import app as app_module
from coursesphere.api.error_handling import (
    _STATUS_TO_CODE,
    _error_code_for_status,
    _error_response,
)
from coursesphere.api.schemas import Envelope, ErrorBody
from coursesphere.service import errors
from coursesphere.service.runtime import get_runtime
from coursesphere.storage.common import ConstraintViolation
from coursesphere.storage.models import Course, Profile


class TestErrorBody:
    """Tests for the ErrorBody Pydantic model."""

    def test_error_body_required_fields(self):
        error = ErrorBody(code="unauthorized", message="unauthenticated")
        assert error.code == "unauthorized"
        assert error.message == "unauthenticated"
        assert error.details is None

    def test_error_body_with_details_list(self):
        error = ErrorBody(
            code="validation_error",
            message="Multiple errors",
            details=[{"field": "email"}, {"field": "password"}],
        )
        assert len(error.details) == 2

    def test_error_body_missing_code_raises(self):
        with pytest.raises(ValidationError):
            ErrorBody(message="Error occurred")

    def test_error_body_unknown_code_raises(self):
        with pytest.raises(ValidationError):
            ErrorBody(code="rate_limited", message="nope")

    @pytest.mark.parametrize(
        "code",
        ["missing_tokens", "malformed_token", "invalid_credentials", "invalid_or_expired_code"],
    )
    def test_auth_specific_codes_accepted(self, code):
        assert ErrorBody(code=code, message="m").code == code


class TestEnvelope:
    def test_envelope_ok_status(self):
        envelope = Envelope(status="ok", data={"user_id": "123"})

        assert envelope.status == "ok"
        assert envelope.data == {"user_id": "123"}
        assert envelope.error is None

    def test_envelope_request_id_auto_generated(self):
        envelope = Envelope(status="ok")
        assert len(envelope.request_id) == 36  # UUID format

    def test_envelope_invalid_status_raises(self):
        with pytest.raises(ValidationError):
            Envelope(status="pending")


class TestErrorCodeMapping:
    """HTTP status to stable error code."""

    @pytest.mark.parametrize(
        "status,code",
        [
            (400, "validation_error"),
            (401, "unauthorized"),
            (403, "forbidden"),
            (404, "not_found"),
            (405, "method_not_allowed"),
            (409, "conflict"),
            (500, "server_error"),
        ],
    )
    def test_known_statuses(self, status, code):
        assert _error_code_for_status(status) == code

    def test_unknown_status_defaults_to_server_error(self):
        assert _error_code_for_status(418) == "server_error"
        assert _error_code_for_status(503) == "server_error"

    def test_mapping_codes_are_all_valid(self):
        for code in _STATUS_TO_CODE.values():
            ErrorBody(code=code, message="m")


class TestServiceErrors:
    @pytest.mark.parametrize(
        "exc_cls,status,code",
        [
            (errors.ValidationError, 400, "validation_error"),
            (errors.MissingTokensError, 400, "missing_tokens"),
            (errors.MalformedTokenError, 400, "malformed_token"),
            (errors.InvalidCredentialsError, 400, "invalid_credentials"),
            (errors.InvalidOrExpiredCodeError, 400, "invalid_or_expired_code"),
            (errors.AuthenticationError, 401, "unauthorized"),
            (errors.ForbiddenError, 403, "forbidden"),
            (errors.NotFoundError, 404, "not_found"),
            (errors.UpstreamError, 500, "upstream_error"),
        ],
    )
    def test_status_and_code(self, exc_cls, status, code):
        exc = exc_cls("message")
        assert isinstance(exc, errors.ServiceError)
        assert exc.status_code == status
        assert exc.error_code == code
        assert exc.message == "message"


class TestErrorResponseFactory:
    def test_error_response_basic(self):
        response = _error_response(401, "unauthenticated")

        assert response.status_code == 401
        data = json.loads(response.body.decode())
        assert data["status"] == "error"
        assert data["error"]["code"] == "unauthorized"
        assert data["request_id"]

    def test_error_response_custom_code(self):
        response = _error_response(400, "Missing tokens", code="missing_tokens")
        assert json.loads(response.body.decode())["error"]["code"] == "missing_tokens"

    def test_error_response_null_details(self):
        response = _error_response(404, "Not found", details=None)
        assert json.loads(response.body.decode())["error"]["details"] is None


class TestHandlersOverHttp:
    def test_request_id_echoed_in_header_and_body(self):
        client = TestClient(app_module.app)

        response = client.get("/v1/me", headers={"X-Request-ID": "req-abc-123"})

        assert response.status_code == 401
        assert response.headers["X-Request-ID"] == "req-abc-123"
        assert response.json()["request_id"] == "req-abc-123"

    def test_unknown_route_uses_envelope(self):
        client = TestClient(app_module.app)

        response = client.get("/v1/does-not-exist")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"

    def test_wrong_method_uses_envelope(self):
        client = TestClient(app_module.app)

        response = client.get("/v1/auth/login")

        assert response.status_code == 405
        assert response.json()["error"]["code"] == "method_not_allowed"
        assert "POST" in response.headers["allow"]

    def test_malformed_json_body(self):
        client = TestClient(app_module.app)

        response = client.post(
            "/v1/auth/login",
            content="{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        body = response.json()
        assert body["error"]["code"] == "validation_error"
        assert isinstance(body["error"]["details"], list)

    def test_upstream_failure_is_500(self):
        get_runtime().identity.sign_in = AsyncMock(
            side_effect=errors.UpstreamError("identity provider timed out")
        )
        client = TestClient(app_module.app)

        response = client.post(
            "/v1/auth/login", json={"email": "a@example.com", "password": "secret123"}
        )

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "upstream_error"

    def test_registration_storage_conflict_is_validation_error(self):
        get_runtime().store.create_profile = AsyncMock(
            side_effect=ConstraintViolation("duplicate key", {"field": "id"})
        )
        client = TestClient(app_module.app)

        response = client.post(
            "/v1/auth/register",
            json={
                "email": "c@example.com",
                "password": "Password1",
                "firstName": "C",
                "lastName": "D",
                "role": "student",
            },
        )

        assert response.status_code == 400
        assert response.json()["error"]["details"] == {"field": "id"}

    def test_constraint_violation_is_409(self):
        client = _super_admin_client()
        runtime = get_runtime()
        runtime.store.add_course(Course(id="c1", title="T"))
        runtime.store.update_course = AsyncMock(
            side_effect=ConstraintViolation("duplicate key", {"code": "23505"})
        )

        response = client.patch("/v1/admin/courses/c1", json={"title": "Dup"})

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "conflict"

    def test_unhandled_exception_is_500_envelope(self):
        client = _super_admin_client(raise_server_exceptions=False)
        get_runtime().store.get_course = AsyncMock(side_effect=RuntimeError("boom"))

        response = client.get("/v1/admin/courses/c1")

        assert response.status_code == 500
        body = response.json()
        assert body["error"]["code"] == "server_error"
        assert "boom" not in body["error"]["message"]


def _super_admin_client(**kwargs):
    runtime = get_runtime()
    user_id = runtime.identity.add_user("root@example.com", "RootPass1")
    runtime.store.add_profile(Profile(id=user_id, role="super_admin"))
    client = TestClient(app_module.app, **kwargs)
    response = client.post(
        "/v1/auth/login", json={"email": "root@example.com", "password": "RootPass1"}
    )
    assert response.status_code == 200
    return client
