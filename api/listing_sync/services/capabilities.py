from __future__ import annotations

import logging
from dataclasses import dataclass, field

import httpx

from listing_sync.core.config import Settings
from listing_sync.services.revalidation import PortalRevalidationClient, build_revalidation_client
from listing_sync.services.search_sync import TypesenseSearchSync, build_search_client

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SearchCapability:
    enabled: bool
    adapter: TypesenseSearchSync | None = None


@dataclass(slots=True)
class RevalidationCapability:
    enabled: bool
    client: PortalRevalidationClient | None = None


@dataclass(slots=True)
class Capabilities:
    search: SearchCapability
    revalidation: RevalidationCapability
    http_clients: list[httpx.AsyncClient] = field(default_factory=list)

    async def close(self) -> None:
        for client in self.http_clients:
            await client.aclose()
        self.http_clients.clear()


def resolve_capabilities(settings: Settings) -> Capabilities:
    """Decide once which downstream systems are configured and build their clients."""
    http_clients: list[httpx.AsyncClient] = []

    search = SearchCapability(enabled=False)
    base_url = settings.typesense_base_url
    if settings.search_enabled and base_url and settings.typesense_api_key:
        search_http = build_search_client(
            base_url=base_url,
            api_key=settings.typesense_api_key,
            timeout_seconds=settings.search_timeout_seconds,
        )
        http_clients.append(search_http)
        search = SearchCapability(
            enabled=True,
            adapter=TypesenseSearchSync(
                search_http,
                collection=settings.search_collection,
                default_currency=settings.default_currency,
            ),
        )
    else:
        logger.info("search sync disabled: typesense host or api key not configured")

    revalidation = RevalidationCapability(enabled=False)
    if settings.revalidation_enabled and settings.portal_revalidate_url and settings.revalidation_secret:
        revalidation_http = build_revalidation_client(timeout_seconds=settings.revalidation_timeout_seconds)
        http_clients.append(revalidation_http)
        revalidation = RevalidationCapability(
            enabled=True,
            client=PortalRevalidationClient(
                revalidation_http,
                url=settings.portal_revalidate_url,
                secret=settings.revalidation_secret,
            ),
        )
    else:
        logger.info("cache revalidation disabled: revalidate url or secret not configured")

    return Capabilities(search=search, revalidation=revalidation, http_clients=http_clients)
