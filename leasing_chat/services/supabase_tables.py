from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx
from supabase import AsyncClient, AsyncSupabaseException, PostgrestAPIError, acreate_client

logger = logging.getLogger(__name__)

# What a failed table call can raise: client setup, PostgREST rejections and transport failures.
SUPABASE_ERRORS = (AsyncSupabaseException, PostgrestAPIError, httpx.HTTPError)


class SupabaseTables:
    """Keyed single-row reads and writes against Supabase tables.

    The async client is created on first use so stores can be built outside
    an event loop.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        key: Optional[str] = None,
        *,
        client: Optional[AsyncClient] = None,
    ) -> None:
        if client is None and (not url or not key):
            raise ValueError("SESSION_BACKEND=supabase requires SUPABASE_URL and SUPABASE_SERVICE_KEY")
        self.url = url
        self.key = key
        self._client = client

    async def client(self) -> AsyncClient:
        if self._client is None:
            self._client = await acreate_client(self.url, self.key)
            logger.info("supabase.connected url=%s", self.url)
        return self._client

    async def select_one(self, table: str, **filters: Any) -> Optional[Dict[str, Any]]:
        query = (await self.client()).table(table).select("*")
        for column, value in filters.items():
            query = query.eq(column, value)
        response = await query.limit(1).execute()
        return response.data[0] if response.data else None

    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        response = await (await self.client()).table(table).insert(row).execute()
        return response.data[0] if response.data else row

    async def update(self, table: str, row: Dict[str, Any], **filters: Any) -> Optional[Dict[str, Any]]:
        query = (await self.client()).table(table).update(row)
        for column, value in filters.items():
            query = query.eq(column, value)
        response = await query.execute()
        return response.data[0] if response.data else None

    async def upsert(self, table: str, row: Dict[str, Any], on_conflict: str) -> Dict[str, Any]:
        response = await (await self.client()).table(table).upsert(row, on_conflict=on_conflict).execute()
        return response.data[0] if response.data else row
