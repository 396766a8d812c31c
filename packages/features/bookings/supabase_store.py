from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx


logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when the backing store rejects or fails a request."""


def _eq(value: Any) -> str:
    if isinstance(value, bool):
        return "eq." + ("true" if value else "false")
    return f"eq.{value}"


class SupabaseStore:
    """Tables served by Supabase's PostgREST API, auth by its GoTrue API.

    Conditional updates are PATCH requests whose filters carry the expected
    current state, so the database applies them atomically per row.
    """

    backend = "supabase"

    def __init__(
        self,
        url: str,
        service_key: str,
        anon_key: str = "",
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        self.service_key = service_key
        self.anon_key = anon_key or service_key
        self._client = httpx.AsyncClient(timeout=timeout_s, transport=transport)

    def _headers(self, prefer: str | None = None) -> Dict[str, str]:
        headers = {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    @staticmethod
    def _params(filters: Optional[Dict[str, Any]], exclude: Optional[Dict[str, Any]] = None) -> Dict[str, str]:
        params = {k: _eq(v) for k, v in (filters or {}).items()}
        for k, v in (exclude or {}).items():
            params[k] = f"neq.{v}"
        return params

    async def _request(self, method: str, table: str, **kwargs: Any) -> Any:
        url = f"{self.url}/rest/v1/{table}"
        try:
            r = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise StoreError(f"{method} {table} failed: {exc}") from exc
        if r.status_code >= 400:
            raise StoreError(f"{method} {table} failed ({r.status_code}): {r.text}")
        if not r.content:
            return []
        return r.json()

    # ---------- Queries ----------
    async def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        exclude: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        params = {"select": "*", **self._params(filters, exclude)}
        data = await self._request("GET", table, params=params, headers=self._headers())
        return data if isinstance(data, list) else []

    async def first(self, table: str, filters: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        params = {"select": "*", "limit": "1", **self._params(filters)}
        data = await self._request("GET", table, params=params, headers=self._headers())
        return data[0] if isinstance(data, list) and data else None

    async def update(
        self,
        table: str,
        values: Dict[str, Any],
        filters: Dict[str, Any],
        exclude: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        if not filters:
            raise StoreError(f"Refusing unfiltered update on {table}")
        data = await self._request(
            "PATCH",
            table,
            params=self._params(filters, exclude),
            json=values,
            headers=self._headers(prefer="return=representation"),
        )
        return data if isinstance(data, list) else []

    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        data = await self._request(
            "POST",
            table,
            json=row,
            headers=self._headers(prefer="return=representation"),
        )
        if isinstance(data, list) and data:
            return data[0]
        return dict(row)

    # ---------- Auth ----------
    async def user_id_for_token(self, token: str) -> Optional[str]:
        token = (token or "").strip()
        if not token:
            return None
        try:
            r = await self._client.get(
                f"{self.url}/auth/v1/user",
                headers={"apikey": self.anon_key, "Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            logger.warning("Auth lookup failed: %s", exc)
            return None
        if r.status_code != 200:
            return None
        user = r.json()
        uid = user.get("id") if isinstance(user, dict) else None
        return str(uid) if uid else None

    async def aclose(self) -> None:
        await self._client.aclose()
