"""Minimal PostgREST client for the Supabase-hosted MadaHost database.

Only the table-style CRUD the deploy pipeline needs: select with
filters/ordering/limit, insert, update, and exact counts.

Filters are passed as ``{column: expression}`` where the expression is a
PostgREST operator string, built with the helpers below:

    await client.select("deployments", filters={"project_id": eq(pid),
                                                 "status": in_(["pending"])})
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

import httpx
import structlog

logger = structlog.get_logger(__name__)


class StoreError(RuntimeError):
    """The Supabase REST endpoint rejected or failed a request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def eq(value: Any) -> str:
    return f"eq.{value}"


def lt(value: Any) -> str:
    return f"lt.{value}"


def in_(values: Iterable[Any]) -> str:
    return "in.(" + ",".join(str(v) for v in values) + ")"


class SupabaseClient:
    """Async HTTP client for ``<supabase_url>/rest/v1``."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=f"{self.base_url}/rest/v1",
                headers={
                    "apikey": self._api_key,
                    "Authorization": f"Bearer {self._api_key}",
                },
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: Mapping[str, str] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> httpx.Response:
        client = await self._get_client()
        headers = {"Prefer": prefer} if prefer else None
        try:
            resp = await client.request(method, f"/{table}", params=params, json=json, headers=headers)
        except httpx.HTTPError as e:
            logger.error("supabase_request_error", method=method, table=table, error=str(e))
            raise StoreError(f"{method} {table} failed: {e}") from e

        if resp.is_error:
            logger.error(
                "supabase_request_failed",
                method=method,
                table=table,
                status_code=resp.status_code,
                response=resp.text[:500],
            )
            raise StoreError(
                f"{method} {table} returned {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )
        return resp

    async def select(
        self,
        table: str,
        *,
        columns: str = "*",
        filters: Mapping[str, str] | None = None,
        order: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return rows matching ``filters``.

        Args:
            order: PostgREST order clause, e.g. ``"started_at.desc"``.
        """
        params: dict[str, str] = {"select": columns}
        params.update(filters or {})
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)
        resp = await self._request("GET", table, params=params)
        return resp.json()

    async def select_one(
        self, table: str, *, filters: Mapping[str, str], columns: str = "*"
    ) -> dict[str, Any] | None:
        rows = await self.select(table, columns=columns, filters=filters, limit=1)
        return rows[0] if rows else None

    async def insert(self, table: str, row: Mapping[str, Any]) -> dict[str, Any]:
        """Insert a row and return it as stored (with server defaults)."""
        resp = await self._request("POST", table, json=dict(row), prefer="return=representation")
        rows = resp.json()
        if not rows:
            raise StoreError(f"insert into {table} returned no row")
        return rows[0]

    async def update(
        self, table: str, values: Mapping[str, Any], *, filters: Mapping[str, str]
    ) -> list[dict[str, Any]]:
        """Update matching rows and return the updated rows.

        An empty result means no row matched the filters.
        """
        if not filters:
            raise ValueError("update without filters would touch every row")
        resp = await self._request(
            "PATCH", table, params=dict(filters), json=dict(values), prefer="return=representation"
        )
        return resp.json()

    async def count(self, table: str, *, filters: Mapping[str, str] | None = None) -> int:
        """Exact row count using the Content-Range header."""
        params = {"select": "id", **(filters or {})}
        resp = await self._request("HEAD", table, params=params, prefer="count=exact")
        content_range = resp.headers.get("content-range", "*/0")
        total = content_range.rsplit("/", 1)[-1]
        return int(total) if total.isdigit() else 0
