"""
Name: RFC 7807 Error Response Tests

Responsibilities:
  - Factories produce the right status/code/headers
  - build_problem_response renders problem+json with request_id and extra headers
"""

import json

import pytest

from vidshare.crosscutting.error_responses import (
    PROBLEM_JSON_MEDIA_TYPE,
    AppHTTPException,
    ErrorCode,
    build_problem_response,
    code_for_status,
    malformed_body,
    payload_too_large,
    rate_limited,
    rejected_input,
)
from vidshare.crosscutting.exceptions import (
    MissingConfigurationError,
    PortBindError,
    StartupError,
)


@pytest.mark.unit
class TestFactories:
    def test_malformed_body(self):
        exc = malformed_body()

        assert exc.status_code == 400
        assert exc.code == ErrorCode.MALFORMED_BODY

    def test_payload_too_large_mentions_limit(self):
        exc = payload_too_large(1024)

        assert exc.status_code == 413
        assert "1024" in exc.detail

    def test_rate_limited_carries_retry_after(self):
        exc = rate_limited(42, {"RateLimit-Limit": "100"})

        assert exc.status_code == 429
        assert exc.code == ErrorCode.RATE_LIMITED
        assert exc.headers == {"Retry-After": "42", "RateLimit-Limit": "100"}

    def test_rejected_input_lists_fields(self):
        exc = rejected_input(["$gt", "a.b"])

        assert exc.errors == [{"field": "$gt"}, {"field": "a.b"}]

    @pytest.mark.parametrize(
        "status,code",
        [
            (404, ErrorCode.NOT_FOUND),
            (405, ErrorCode.METHOD_NOT_ALLOWED),
            (418, ErrorCode.VALIDATION_ERROR),
            (502, ErrorCode.INTERNAL_ERROR),
        ],
    )
    def test_code_for_status(self, status, code):
        assert code_for_status(status) == code


@pytest.mark.unit
class TestProblemResponse:
    def test_renders_problem_json(self):
        exc = AppHTTPException(409, ErrorCode.CONFLICT, "Duplicate field value entered")

        response = build_problem_response(
            exc,
            instance="/api/v1/users",
            request_id="req-1",
            extra_headers={"X-Frame-Options": "SAMEORIGIN"},
        )
        body = json.loads(response.body)

        assert response.status_code == 409
        assert response.media_type == PROBLEM_JSON_MEDIA_TYPE
        assert response.headers["x-frame-options"] == "SAMEORIGIN"
        assert body["code"] == "CONFLICT"
        assert body["status"] == 409
        assert body["title"] == "Conflict"
        assert body["instance"] == "/api/v1/users"
        assert {"request_id": "req-1"} in body["errors"]

    def test_exception_headers_are_kept(self):
        response = build_problem_response(rate_limited(7))

        assert response.headers["retry-after"] == "7"


@pytest.mark.unit
class TestStartupErrors:
    def test_missing_configuration_names_key(self):
        exc = MissingConfigurationError("AUTH_SECRET")

        assert exc.message == "Missing required configuration: AUTH_SECRET"
        assert isinstance(exc, StartupError)

    def test_port_bind_error_in_use_message(self):
        exc = PortBindError(5000, in_use=True)

        assert exc.in_use is True
        assert "already in use" in exc.message

    def test_error_ids_are_unique(self):
        assert StartupError("a").error_id != StartupError("a").error_id

