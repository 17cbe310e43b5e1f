import json

import httpx
import pytest
from persistence import InMemoryTransactionStore, PersistenceError, PostgrestTransactionStore


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.mark.anyio
async def test_in_memory_select_filters_orders_and_projects() -> None:
    store = InMemoryTransactionStore(
        {
            "transactions": [
                {"user_id": "u1", "title": "Coffee", "created_at": "2026-10-01"},
                {"user_id": "u1", "title": "Taxi", "created_at": "2026-10-03"},
                {"user_id": "u2", "title": "Rent", "created_at": "2026-10-02"},
            ]
        }
    )

    rows = await store.select(
        "transactions",
        filters={"user_id": "u1"},
        columns=("title",),
        order_by="created_at",
        descending=True,
        limit=1,
    )

    assert rows == [{"title": "Taxi"}]


@pytest.mark.anyio
async def test_in_memory_insert_assigns_ids_and_returns_copies() -> None:
    store = InMemoryTransactionStore()

    saved = await store.insert("transactions", {"title": "Coffee"})
    saved["title"] = "mutated"

    (row,) = store.rows("transactions")
    assert row["title"] == "Coffee"
    assert row["id"]


@pytest.mark.anyio
async def test_in_memory_update_requires_filters() -> None:
    store = InMemoryTransactionStore({"recurring_rules": [{"id": "r1", "active": True}]})

    updated = await store.update("recurring_rules", {"active": False}, filters={"id": "r1"})
    assert updated[0]["active"] is False

    with pytest.raises(PersistenceError):
        await store.update("recurring_rules", {"active": True}, filters={})


@pytest.mark.anyio
async def test_in_memory_unknown_table() -> None:
    with pytest.raises(PersistenceError):
        await InMemoryTransactionStore().select("budgets")


@pytest.mark.anyio
async def test_postgrest_select_builds_query_and_headers() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json=[{"title": "Coffee"}])

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    store = PostgrestTransactionStore("https://db.example.com/", "anon", access_token="jwt", client=client)

    rows = await store.select(
        "transactions",
        filters={"user_id": "u1", "active": True, "deleted_at": None},
        columns=("title", "created_at"),
        order_by="created_at",
        descending=True,
        limit=50,
    )

    assert rows == [{"title": "Coffee"}]
    (request,) = captured
    assert request.url.path == "/rest/v1/transactions"
    params = dict(request.url.params)
    assert params == {
        "user_id": "eq.u1",
        "active": "eq.true",
        "deleted_at": "is.null",
        "select": "title,created_at",
        "order": "created_at.desc",
        "limit": "50",
    }
    assert request.headers["apikey"] == "anon"
    assert request.headers["Authorization"] == "Bearer jwt"
    await store.aclose()
    assert not client.is_closed
    await client.aclose()


@pytest.mark.anyio
async def test_postgrest_insert_returns_representation() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        assert request.headers["Prefer"] == "return=representation"
        return httpx.Response(201, json=[{"id": 7, **json.loads(request.content)}])

    store = PostgrestTransactionStore(
        "https://db.example.com", "anon", client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )

    saved = await store.insert("transactions", {"title": "Coffee", "amount": 4.5})

    assert saved == {"id": 7, "title": "Coffee", "amount": 4.5}


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("response", "message"),
    [
        (httpx.Response(403, json={"message": "permission denied for table transactions"}), "permission denied"),
        (httpx.Response(500, text="oops"), "status 500"),
    ],
)
async def test_postgrest_errors_become_persistence_errors(response: httpx.Response, message: str) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return response

    store = PostgrestTransactionStore(
        "https://db.example.com", "anon", client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )

    with pytest.raises(PersistenceError, match=message):
        await store.insert("transactions", {"title": "Coffee"})


@pytest.mark.anyio
async def test_postgrest_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    store = PostgrestTransactionStore(
        "https://db.example.com", "anon", client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )

    with pytest.raises(PersistenceError, match="unavailable"):
        await store.select("transactions")


@pytest.mark.anyio
async def test_postgrest_invalid_json_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>gateway</html>", headers={"content-type": "application/json"})

    store = PostgrestTransactionStore(
        "https://db.example.com", "anon", client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )

    with pytest.raises(PersistenceError, match="invalid response for recurring_rules"):
        await store.select("recurring_rules")
