from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import httpx

from src.core.config import get_settings


class SupabaseClient:
    """Async PostgREST client.

    Each call opens its own ``httpx.AsyncClient`` so the client can be shared by
    requests running on different event loops (tests, scripts, the server).
    """

    def __init__(self) -> None:
        settings = get_settings()
        self.base_url = settings.supabase_url.rstrip("/") + "/rest/v1"
        self.api_key = settings.supabase_service_role_key or settings.supabase_anon_key
        if not self.api_key:
            raise ValueError("Supabase API key is required")
        self.timeout = settings.supabase_timeout_seconds
        self.page_size = max(settings.supabase_page_size, 1)

    def _headers(self, **extra: str) -> Dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
        }
        headers.update(extra)
        return headers

    async def select(
        self,
        table: str,
        select: str,
        filters: Optional[List[Tuple[str, str]]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        order: Optional[str] = None,
        count: bool | str = False,
    ) -> Tuple[List[Dict[str, Any]], Optional[int]]:
        params: List[Tuple[str, str]] = [("select", select)]
        if filters:
            params.extend(filters)
        if limit is not None:
            params.append(("limit", str(limit)))
        if offset is not None:
            params.append(("offset", str(offset)))
        if order:
            params.append(("order", order))

        headers = self._headers()
        if count:
            if count is True:
                headers["Prefer"] = "count=exact"
            elif isinstance(count, str):
                headers["Prefer"] = f"count={count}"

        url = f"{self.base_url}/{table}?{urlencode(params, doseq=True)}"
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(url, headers=headers)
        response.raise_for_status()
        total_count = None
        if count and "content-range" in response.headers:
            content_range = response.headers["content-range"]
            if "/" in content_range and not content_range.endswith("/*"):
                total_count = int(content_range.split("/")[-1])
        return response.json(), total_count

    async def select_all(
        self,
        table: str,
        select: str,
        filters: Optional[List[Tuple[str, str]]] = None,
        order: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        # PostgREST caps each response, so page until a short page comes back.
        rows: List[Dict[str, Any]] = []
        offset = 0
        while True:
            page, _ = await self.select(
                table=table,
                select=select,
                filters=filters,
                limit=self.page_size,
                offset=offset,
                order=order,
            )
            rows.extend(page)
            if len(page) < self.page_size:
                return rows
            offset += self.page_size

    async def insert(
        self,
        table: str,
        payload: Dict[str, Any] | List[Dict[str, Any]],
        upsert: bool = False,
        on_conflict: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        params: List[Tuple[str, str]] = []
        if on_conflict:
            params.append(("on_conflict", on_conflict))
        url = f"{self.base_url}/{table}"
        if params:
            url = f"{url}?{urlencode(params, doseq=True)}"
        prefer = "return=representation"
        if upsert:
            prefer = "resolution=merge-duplicates,return=representation"
        headers = self._headers(**{"Content-Type": "application/json", "Prefer": prefer})
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(url, headers=headers, json=payload)
        response.raise_for_status()
        return _as_rows(response)

    async def update(
        self,
        table: str,
        payload: Dict[str, Any],
        filters: List[Tuple[str, str]],
    ) -> List[Dict[str, Any]]:
        params: List[Tuple[str, str]] = []
        if filters:
            params.extend(filters)
        url = f"{self.base_url}/{table}?{urlencode(params, doseq=True)}"
        headers = self._headers(
            **{"Content-Type": "application/json", "Prefer": "return=representation"}
        )
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.patch(url, headers=headers, json=payload)
        response.raise_for_status()
        return _as_rows(response)


def _as_rows(response: httpx.Response) -> List[Dict[str, Any]]:
    if not response.content:
        return []
    data = response.json()
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        return [data]
    return []
