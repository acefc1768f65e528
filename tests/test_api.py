"""
Tests for the HTTP surface: hookgate/main.py, hookgate/api/incoming.py and
hookgate/api/health.py, driven through httpx's ASGI transport.
"""
import json
import pytest
import httpx

from hookgate.database import get_db
from hookgate.main import create_app

TOKEN = "tok_live_abc123"
SECRET = "whsec_test"


@pytest.fixture
async def client(services, session_factory):
    app = create_app(services)

    async def _override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


def _charge(event_id: str = "evt_api_1") -> bytes:
    return json.dumps({"id": event_id, "type": "charge.succeeded", "data": {}}).encode()


# ---------------------------------------------------------------------------
# Webhook intake
# ---------------------------------------------------------------------------

class TestWebhookEndpoint:
    async def test_accepts_signed_webhook(self, client, make_provider, stripe_header):
        await make_provider()
        body = _charge()
        response = await client.post(
            f"/webhooks/stripe/{TOKEN}",
            content=body,
            headers={"Stripe-Signature": stripe_header(SECRET, body), "Content-Type": "application/json"},
        )
        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "received"
        assert data["id"]

    async def test_duplicate_returns_200_with_same_id(self, client, make_provider, stripe_header):
        await make_provider()
        body = _charge()
        headers = {"Stripe-Signature": stripe_header(SECRET, body)}

        first = await client.post(f"/webhooks/stripe/{TOKEN}", content=body, headers=headers)
        second = await client.post(f"/webhooks/stripe/{TOKEN}", content=body, headers=headers)

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.json() == {"status": "duplicate", "id": first.json()["id"]}

    @pytest.mark.parametrize("path,status,error", [
        ("/webhooks/unknown/tok", 404, "Unknown provider"),
        ("/webhooks/stripe/wrong_token", 401, "Invalid token"),
        (f"/webhooks/stripe/{TOKEN}", 401, "Invalid signature"),
    ])
    async def test_error_bodies(self, client, make_provider, path, status, error):
        await make_provider()
        response = await client.post(path, content=_charge())
        assert response.status_code == status
        assert response.json() == {"error": error}

    async def test_invalid_json_does_not_echo_body(self, client, make_provider):
        await make_provider(name="acme", token="tok_acme", verifier="default", signing_secret="skip")
        response = await client.post("/webhooks/acme/tok_acme", content=b"{broken <script>")
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON"}
        assert "script" not in response.text

    async def test_rate_limit_sets_retry_after(self, client, make_provider):
        await make_provider(
            name="acme", token="tok_acme", verifier="default", signing_secret="skip",
            rate_limit_requests=1, rate_limit_period=60,
        )
        await client.post("/webhooks/acme/tok_acme", content=b'{"id": "1"}')
        response = await client.post("/webhooks/acme/tok_acme", content=b'{"id": "2"}')
        assert response.status_code == 429
        assert int(response.headers["Retry-After"]) > 0

    async def test_correlation_id_round_trip(self, client):
        response = await client.post(
            "/webhooks/unknown/tok", content=b"{}", headers={"X-Correlation-ID": "req-123"},
        )
        assert response.headers["X-Correlation-ID"] == "req-123"

    async def test_correlation_id_generated(self, client):
        response = await client.post("/webhooks/unknown/tok", content=b"{}")
        assert response.headers["X-Correlation-ID"]


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

class TestHealth:
    async def test_liveness(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == "1.0.0"

    async def test_readiness(self, client):
        response = await client.get("/health/ready")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ready"
        assert data["checks"] == {"database": True, "redis": True}
        assert data["workers"] == 0

    async def test_readiness_degraded_without_redis(self, client, mock_redis):
        mock_redis.ping.side_effect = ConnectionError("redis down")
        response = await client.get("/health/ready")
        data = response.json()
        assert data["status"] == "degraded"
        assert data["checks"]["redis"] is False


async def test_unexpected_error_returns_generic_500(services):
    from unittest.mock import AsyncMock, MagicMock
    from hookgate.api.incoming import get_intake

    app = create_app(services)
    broken = MagicMock()
    broken.receive = AsyncMock(side_effect=RuntimeError("connection pool exhausted"))

    async def _no_db():
        yield None

    app.dependency_overrides[get_db] = _no_db
    app.dependency_overrides[get_intake] = lambda: broken

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as http:
        response = await http.post("/webhooks/stripe/tok", content=b"{}")

    assert response.status_code == 500
    assert response.json() == {"error": "Internal processing error"}
    assert "pool" not in response.text
