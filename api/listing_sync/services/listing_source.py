from __future__ import annotations

import json
from typing import Any

import asyncpg  # type: ignore[import-untyped]

_JSON_COLUMNS = ("address", "location")


class ListingSourceUnavailableError(Exception):
    """Raised when the listings database is unavailable or not configured."""


class ListingSource:
    """Reads listing rows straight from Postgres for full reindexing."""

    def __init__(self, database_url: str | None, min_pool_size: int = 1, max_pool_size: int = 5) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def fetch_published_listings(self, tenant_id: str | None = None) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                """
                select
                  id::text as id,
                  tenant_id::text as tenant_id,
                  slug,
                  title,
                  description,
                  excerpt,
                  category,
                  price,
                  currency,
                  status,
                  featured,
                  location,
                  address,
                  view_count,
                  published_at,
                  created_at,
                  updated_at
                from listings
                where status = 'published'
                  and ($1::uuid is null or tenant_id = $1::uuid)
                order by published_at desc nulls last, id
                """,
                tenant_id,
            )
        except (OSError, asyncpg.PostgresError) as exc:
            raise ListingSourceUnavailableError(f"listing query failed: {exc}") from exc
        return [_row_to_dict(row) for row in rows]

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is not None:
            return self._pool
        if not self.database_url:
            raise ListingSourceUnavailableError("LS_DATABASE_URL is not configured")
        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
        except (OSError, asyncpg.PostgresError) as exc:
            raise ListingSourceUnavailableError(f"database unavailable: {exc}") from exc
        return self._pool


def _row_to_dict(row: Any) -> dict[str, Any]:
    data = dict(row)
    for column in _JSON_COLUMNS:
        value = data.get(column)
        if isinstance(value, str):
            try:
                data[column] = json.loads(value)
            except ValueError:
                data[column] = None
    if data.get("price") is not None:
        data["price"] = float(data["price"])
    return data
