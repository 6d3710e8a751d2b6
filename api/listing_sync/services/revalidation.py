from __future__ import annotations

import logging

import httpx

from listing_sync.schemas.events import InvalidationRequest

logger = logging.getLogger(__name__)


class RevalidationError(Exception):
    """Raised when the portal revalidation endpoint cannot be reached or refuses a request."""


class PortalRevalidationClient:
    """Posts path invalidations to the portal. A failed call is not retried."""

    def __init__(self, client: httpx.AsyncClient, *, url: str, secret: str) -> None:
        self.client = client
        self.url = url
        self.secret = secret

    async def invalidate(self, request: InvalidationRequest) -> None:
        payload = {
            "secret": self.secret,
            "paths": list(request.paths),
            "type": "path",
        }
        try:
            response = await self.client.post(self.url, json=payload)
        except httpx.TimeoutException as exc:
            raise RevalidationError("revalidation request timed out") from exc
        except httpx.HTTPError as exc:
            raise RevalidationError(f"revalidation request failed: {exc}") from exc

        if not response.is_success:
            raise RevalidationError(f"revalidation endpoint returned {response.status_code}")

        logger.info("revalidated paths=%s reason=%s", ",".join(request.paths), request.reason)


def build_revalidation_client(*, timeout_seconds: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout_seconds)
