import httpx
import pytest
from fastapi.testclient import TestClient
from main import create_app
from middleware.rate_limit import SimpleRateLimiter
from persistence import InMemoryTransactionStore
from shared.assistant_settings import AssistantSettings


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def _app(limiter: SimpleRateLimiter):
    settings = AssistantSettings(
        assistant_url="https://app.example.com/api/chat",
        quota_url="https://app.example.com/api/ai/consume",
        timeout_seconds=5.0,
        default_cooldown_seconds=3.0,
        default_locale="en",
        tone="neutral",
    )
    return create_app(
        settings=settings,
        store=InMemoryTransactionStore(),
        transport=httpx.MockTransport(lambda request: httpx.Response(200)),
        rate_limiter=limiter,
    )


def test_rate_limit_returns_429_after_threshold() -> None:
    app = _app(SimpleRateLimiter(max_requests=2, window_seconds=60, burst=0))

    with TestClient(app) as client:
        first = client.get("/health")
        second = client.get("/health")

        assert first.status_code == 200
        assert second.status_code == 200

        blocked = client.get("/health")
        assert blocked.status_code == 429
        payload = blocked.json()
        assert payload["error"] == "rate_limit_exceeded"
        assert "Retry-After" in blocked.headers
        assert blocked.headers["x-request-id"]


def test_rate_limit_is_keyed_by_user() -> None:
    app = _app(SimpleRateLimiter(max_requests=1, window_seconds=60, burst=0))

    with TestClient(app) as client:
        assert client.get("/health", headers={"x-user-id": "alice"}).status_code == 200
        assert client.get("/health", headers={"x-user-id": "bob"}).status_code == 200
        assert client.get("/health", headers={"x-user-id": "alice"}).status_code == 429


@pytest.mark.anyio
async def test_limiter_window_slides() -> None:
    now = [0.0]
    limiter = SimpleRateLimiter(max_requests=1, window_seconds=10, burst=1, clock=lambda: now[0])

    assert await limiter.allow("k") == (True, 0.0)
    assert await limiter.allow("k") == (True, 0.0)
    allowed, retry_after = await limiter.allow("k")
    assert allowed is False
    assert retry_after == 10.0
    assert limiter.remaining("k") == 0

    now[0] = 10.5
    assert (await limiter.allow("k"))[0] is True
    assert limiter.remaining("k") == 1
