"""Tests for correlation ID middleware.

Verifies:
- X-Request-ID header in responses
- Custom correlation ID echoing (Stripe and cron callers can pass their own)
- Debug ID in error responses without secret leakage
- Different correlation IDs for different requests
"""

import uuid

import pytest

pytestmark = pytest.mark.integration


def test_response_includes_correlation_id_header(api_client):
    """Every API response should include X-Request-ID header with valid UUID."""
    response = api_client.get("/api/health")

    assert "x-request-id" in response.headers
    correlation_id = response.headers["x-request-id"]
    try:
        uuid.UUID(correlation_id)
    except ValueError:
        raise AssertionError(f"X-Request-ID header value '{correlation_id}' is not a valid UUID")


def test_custom_correlation_id_echoed(api_client):
    """Client-provided X-Request-ID should be echoed back in response."""
    custom_id = "custom-id-123"

    response = api_client.get("/api/health", headers={"X-Request-ID": custom_id})

    assert response.headers["x-request-id"] == custom_id


def test_error_response_includes_debug_id(api_client):
    """Error responses should include debug_id without leaking secrets."""
    response = api_client.get("/api/admin/zapier-settings", headers={"Authorization": "Bearer wrong"})

    assert response.status_code == 403

    response_data = response.json()
    assert "debug_id" in response_data
    try:
        uuid.UUID(response_data["debug_id"])
    except ValueError:
        raise AssertionError(f"debug_id '{response_data['debug_id']}' is not a valid UUID")

    response_text = response.text.lower()
    forbidden_keywords = ["traceback", "admin-test-token", "whsec_", "zap_secret"]
    leaked_secrets = [kw for kw in forbidden_keywords if kw in response_text]
    assert not leaked_secrets, f"Response leaked forbidden keywords: {leaked_secrets}"


def test_different_requests_get_different_ids(api_client):
    """Each request should get a unique correlation ID."""
    response1 = api_client.get("/api/health")
    response2 = api_client.get("/api/health")

    assert response1.headers["x-request-id"] != response2.headers["x-request-id"]


def test_health_reports_draining_during_shutdown(api_client, test_app):
    test_app.state.shutting_down = True

    response = api_client.get("/api/health")

    assert response.status_code == 503
    assert response.json()["status"] == "shutting_down"
