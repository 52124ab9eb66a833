"""Tests for request ID tracing middleware."""
import logging

import pytest

from src.middleware.request_id import request_id_var
from tests.conftest import push_body


@pytest.mark.asyncio
async def test_response_includes_request_id(client):
    """Every response should have X-Request-ID header."""
    resp = await client.get("/health")
    assert "x-request-id" in resp.headers
    # Should be a valid UUID4-ish string
    rid = resp.headers["x-request-id"]
    assert len(rid) == 36  # UUID format


@pytest.mark.asyncio
async def test_client_request_id_honored(client):
    """If client sends X-Request-ID, server should echo it back."""
    custom_id = "my-trace-12345"
    resp = await client.get("/health", headers={"X-Request-ID": custom_id})
    assert resp.headers["x-request-id"] == custom_id


@pytest.mark.asyncio
async def test_oversized_request_id_replaced(client):
    resp = await client.get("/health", headers={"X-Request-ID": "x" * 500})
    assert len(resp.headers["x-request-id"]) == 36


@pytest.mark.asyncio
async def test_unique_ids_per_request(client):
    """Each request gets a unique ID."""
    r1 = await client.get("/health")
    r2 = await client.get("/health")
    assert r1.headers["x-request-id"] != r2.headers["x-request-id"]


@pytest.mark.asyncio
async def test_error_responses_carry_request_id(client):
    resp = await client.post("/play_webhook", json={}, headers={"X-Request-ID": "push-1"})
    assert resp.status_code == 400
    assert resp.headers["x-request-id"] == "push-1"


@pytest.mark.asyncio
async def test_request_id_visible_to_handlers(client):
    """Webhook log lines are emitted while the request ID is set."""
    seen = []

    class _Capture(logging.Handler):
        def emit(self, record):
            seen.append(request_id_var.get())

    handler = _Capture()
    logging.getLogger("src.services.reconciliation").addHandler(handler)
    try:
        await client.post("/play_webhook", json=push_body("%%%"), headers={"X-Request-ID": "push-2"})
    finally:
        logging.getLogger("src.services.reconciliation").removeHandler(handler)

    assert seen and all(rid == "push-2" for rid in seen)
    assert request_id_var.get() == ""
