#!/usr/bin/env python3
"""Rebuild the listings search collection from the listings table."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from listing_sync.core.config import get_settings
from listing_sync.services.listing_source import ListingSource, ListingSourceUnavailableError
from listing_sync.services.search_sync import (
    DEFAULT_BATCH_SIZE,
    BulkSyncResult,
    SearchSyncError,
    TypesenseSearchSync,
    build_search_client,
)

logger = logging.getLogger("reindex_listings")


async def run_reindex(
    *,
    source: ListingSource,
    search: TypesenseSearchSync,
    tenant_id: str | None = None,
    clear: bool = False,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> BulkSyncResult:
    rows = await source.fetch_published_listings(tenant_id=tenant_id)
    logger.info("fetched %s published listings", len(rows))
    if clear:
        await search.ensure_collection()
        await search.clear_collection()
    return await search.bulk_sync(rows, batch_size=batch_size)


async def _main(args: argparse.Namespace) -> int:
    settings = get_settings()
    base_url = settings.typesense_base_url
    if not settings.search_enabled or not base_url or not settings.typesense_api_key:
        print("search is not configured: set LS_TYPESENSE_HOST and LS_TYPESENSE_API_KEY", file=sys.stderr)
        return 2

    source = ListingSource(
        settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
    async with build_search_client(
        base_url=base_url,
        api_key=settings.typesense_api_key,
        timeout_seconds=max(settings.search_timeout_seconds, 30.0),
    ) as client:
        search = TypesenseSearchSync(
            client,
            collection=settings.search_collection,
            default_currency=settings.default_currency,
        )
        try:
            result = await run_reindex(
                source=source,
                search=search,
                tenant_id=args.tenant_id,
                clear=args.clear,
                batch_size=args.batch_size,
            )
        except (ListingSourceUnavailableError, SearchSyncError) as exc:
            print(f"reindex failed: {exc}", file=sys.stderr)
            return 1
        finally:
            await source.close()

    print(f"synced={result.success} failed={result.failed}")
    for outcome in result.outcomes:
        if not outcome.success:
            print(f"  {outcome.document_id}: {outcome.error}")
    return 1 if result.failed else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Bulk upsert published listings into the search collection.")
    parser.add_argument("--tenant-id", help="Only reindex listings for this tenant (UUID)")
    parser.add_argument("--clear", action="store_true", help="Delete all documents before reindexing")
    parser.add_argument("--batch-size", type=int, default=DEFAULT_BATCH_SIZE, help="Documents per import request")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    sys.exit(asyncio.run(_main(args)))


if __name__ == "__main__":
    main()
