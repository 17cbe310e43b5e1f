"""PostgREST-style HTTP implementation of the transaction store."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

import httpx

from persistence.store import PersistenceError, Row

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(10.0, connect=5.0)


class PostgrestTransactionStore:
    """
    Talks to a PostgREST endpoint (`{api_url}/rest/v1/{table}`).

    Equality filters become `column=eq.value` query parameters. Every failure,
    transport or HTTP, surfaces as `PersistenceError` carrying the server's
    message when it sends one.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str,
        *,
        access_token: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: httpx.Timeout | float = DEFAULT_TIMEOUT,
    ) -> None:
        self._base_url = api_url.rstrip("/") + "/rest/v1"
        self._api_key = api_key
        self._access_token = access_token
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def select(
        self,
        table: str,
        *,
        filters: Mapping[str, Any] | None = None,
        columns: Sequence[str] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Row]:
        params = _filter_params(filters)
        params["select"] = ",".join(columns) if columns else "*"
        if order_by:
            params["order"] = f"{order_by}.{'desc' if descending else 'asc'}"
        if limit is not None:
            params["limit"] = str(limit)
        return await self._send("GET", table, params=params)

    async def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        rows = await self._send("POST", table, json=dict(row))
        if not rows:
            raise PersistenceError(f"Insert into {table} returned no rows")
        return rows[0]

    async def update(self, table: str, values: Mapping[str, Any], *, filters: Mapping[str, Any]) -> list[Row]:
        if not filters:
            raise PersistenceError("Refusing to update without filters")
        return await self._send("PATCH", table, params=_filter_params(filters), json=dict(values))

    async def _send(
        self,
        method: str,
        table: str,
        *,
        params: Mapping[str, str] | None = None,
        json: Any = None,
    ) -> list[Row]:
        url = f"{self._base_url}/{table}"
        try:
            response = await self._client.request(method, url, params=params, json=json, headers=self._headers())
        except httpx.RequestError as exc:
            logger.warning({"event": "store_request_failed", "table": table, "method": method, "error": str(exc)})
            raise PersistenceError(f"Store is unavailable: {exc}") from exc

        if response.is_error:
            message = _error_message(response)
            logger.warning(
                {
                    "event": "store_request_rejected",
                    "table": table,
                    "method": method,
                    "status_code": response.status_code,
                    "error": message,
                }
            )
            raise PersistenceError(message)

        if not response.content:
            return []
        try:
            payload = response.json()
        except ValueError as exc:
            logger.warning({"event": "store_response_invalid", "table": table, "method": method, "error": str(exc)})
            raise PersistenceError(f"Store returned an invalid response for {table}") from exc
        return payload if isinstance(payload, list) else [payload]

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._access_token or self._api_key}",
            "Prefer": "return=representation",
        }


def _filter_params(filters: Mapping[str, Any] | None) -> dict[str, str]:
    params: dict[str, str] = {}
    for column, value in (filters or {}).items():
        if value is None:
            params[column] = "is.null"
        elif isinstance(value, bool):
            params[column] = f"eq.{str(value).lower()}"
        else:
            params[column] = f"eq.{value}"
    return params


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return f"Store request failed with status {response.status_code}"
