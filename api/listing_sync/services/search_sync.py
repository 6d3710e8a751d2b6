from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION = "listings"
DEFAULT_BATCH_SIZE = 100


class SearchSyncError(Exception):
    """Raised when the search engine rejects or cannot serve a sync call."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DocumentMappingError(SearchSyncError):
    """Raised when a listing row cannot be projected into a search document."""


def collection_schema(name: str = DEFAULT_COLLECTION) -> dict[str, Any]:
    return {
        "name": name,
        "fields": [
            {"name": "id", "type": "string"},
            {"name": "tenant_id", "type": "string", "facet": True},
            {"name": "slug", "type": "string"},
            {"name": "title", "type": "string"},
            {"name": "description", "type": "string"},
            {"name": "excerpt", "type": "string", "optional": True},
            {"name": "category", "type": "string", "facet": True, "optional": True},
            {"name": "price", "type": "float", "optional": True},
            {"name": "currency", "type": "string", "optional": True},
            {"name": "status", "type": "string", "facet": True},
            {"name": "featured", "type": "bool", "facet": True, "optional": True},
            {"name": "location", "type": "geopoint", "optional": True},
            {"name": "city", "type": "string", "facet": True, "optional": True},
            {"name": "state", "type": "string", "facet": True, "optional": True},
            {"name": "country", "type": "string", "facet": True, "optional": True},
            {"name": "published_at", "type": "int64"},
            {"name": "created_at", "type": "int64"},
            {"name": "updated_at", "type": "int64"},
            {"name": "view_count", "type": "int32", "optional": True},
        ],
        "default_sorting_field": "published_at",
    }


@dataclass(slots=True)
class RowOutcome:
    document_id: str | None
    success: bool
    error: str | None = None


@dataclass(slots=True)
class BulkSyncResult:
    success: int = 0
    failed: int = 0
    outcomes: list[RowOutcome] = field(default_factory=list)

    def add(self, outcome: RowOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.success:
            self.success += 1
        else:
            self.failed += 1


def build_listing_document(row: dict[str, Any], *, default_currency: str = "USD") -> dict[str, Any]:
    """Project a ``listings`` row onto the search document schema.

    Optional fields are left out when absent. ``currency``, ``featured`` and
    ``view_count`` always carry a value, and the three sort timestamps fall
    back to the current time.
    """
    document_id = _as_text(row.get("id"))
    if document_id is None:
        raise DocumentMappingError("listing row has no id")

    document: dict[str, Any] = {
        "id": document_id,
        "description": _as_text(row.get("description")) or "",
        "currency": _as_text(row.get("currency")) or default_currency,
        "featured": bool(row.get("featured") or False),
        "view_count": _as_int(row.get("view_count")) or 0,
    }
    for key in ("tenant_id", "slug", "title", "status", "excerpt", "category"):
        value = _as_text(row.get(key))
        if value is not None:
            document[key] = value

    price = _as_float(row.get("price"))
    if price is not None:
        document["price"] = price

    location = row.get("location")
    if isinstance(location, dict):
        lat = _as_float(location.get("lat"))
        lng = _as_float(location.get("lng"))
        if lat is not None and lng is not None:
            document["location"] = [lat, lng]

    address = row.get("address")
    if isinstance(address, dict):
        city = _as_text(address.get("city"))
        state = _as_text(address.get("region")) or _as_text(address.get("state"))
        country = _as_text(address.get("country"))
        for key, value in (("city", city), ("state", state), ("country", country)):
            if value is not None:
                document[key] = value

    now_ms = int(time.time() * 1000)
    for key in ("published_at", "created_at", "updated_at"):
        document[key] = _to_epoch_millis(row.get(key)) or now_ms

    return document


class TypesenseSearchSync:
    """Keeps the listings collection in step with the listings table."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        collection: str = DEFAULT_COLLECTION,
        default_currency: str = "USD",
    ) -> None:
        self.client = client
        self.collection = collection
        self.default_currency = default_currency

    def to_document(self, row: dict[str, Any]) -> dict[str, Any]:
        return build_listing_document(row, default_currency=self.default_currency)

    async def upsert(self, row: dict[str, Any]) -> dict[str, Any]:
        document = self.to_document(row)
        await self._request(
            "POST",
            f"/collections/{self._collection_path}/documents",
            params={"action": "upsert"},
            json=document,
        )
        logger.info("synced listing id=%s to collection=%s", document["id"], self.collection)
        return document

    async def remove(self, document_id: str) -> bool:
        """Delete a document. Returns False when it was already absent."""
        path = f"/collections/{self._collection_path}/documents/{quote(str(document_id), safe='')}"
        try:
            await self._request("DELETE", path)
        except SearchSyncError as exc:
            if exc.status_code == 404:
                logger.info("listing id=%s already absent from collection=%s", document_id, self.collection)
                return False
            raise
        logger.info("deleted listing id=%s from collection=%s", document_id, self.collection)
        return True

    async def ensure_collection(self) -> bool:
        """Create the collection if it does not exist. Returns True when created."""
        try:
            await self._request("GET", f"/collections/{self._collection_path}")
            return False
        except SearchSyncError as exc:
            if exc.status_code != 404:
                raise
        logger.info("creating search collection=%s", self.collection)
        await self._request("POST", "/collections", json=collection_schema(self.collection))
        return True

    async def clear_collection(self) -> int:
        payload = await self._request(
            "DELETE",
            f"/collections/{self._collection_path}/documents",
            params={"filter_by": "id:!=none"},
        )
        deleted = int(payload.get("num_deleted", 0)) if isinstance(payload, dict) else 0
        logger.info("cleared %s documents from collection=%s", deleted, self.collection)
        return deleted

    async def bulk_sync(self, rows: list[dict[str, Any]], *, batch_size: int = DEFAULT_BATCH_SIZE) -> BulkSyncResult:
        """Upsert many rows, recording an outcome per row.

        A rejected row, an unmappable row or a failed batch request is counted
        as a failure and the remaining rows are still processed.
        """
        result = BulkSyncResult()
        await self.ensure_collection()

        pending: list[dict[str, Any]] = []
        for row in rows:
            try:
                pending.append(self.to_document(row))
            except DocumentMappingError as exc:
                logger.warning("skipping unmappable listing row: %s", exc)
                result.add(RowOutcome(document_id=_as_text(row.get("id")), success=False, error=str(exc)))
                continue
            if len(pending) >= max(1, batch_size):
                await self._import_batch(pending, result)
                pending = []
        if pending:
            await self._import_batch(pending, result)

        logger.info(
            "bulk synced listings to collection=%s success=%s failed=%s",
            self.collection,
            result.success,
            result.failed,
        )
        return result

    async def _import_batch(self, documents: list[dict[str, Any]], result: BulkSyncResult) -> None:
        body = "\n".join(json.dumps(document, separators=(",", ":")) for document in documents)
        try:
            response = await self._send(
                "POST",
                f"/collections/{self._collection_path}/documents/import",
                params={"action": "upsert"},
                content=body.encode("utf-8"),
                headers={"Content-Type": "text/plain"},
            )
        except SearchSyncError as exc:
            logger.error("bulk import batch of %s documents failed: %s", len(documents), exc)
            for document in documents:
                result.add(RowOutcome(document_id=document["id"], success=False, error=str(exc)))
            return

        lines = [line for line in response.text.splitlines() if line.strip()]
        for index, document in enumerate(documents):
            line_result = _parse_import_line(lines[index]) if index < len(lines) else None
            if line_result is None:
                result.add(RowOutcome(document_id=document["id"], success=False, error="missing import result"))
            elif line_result.get("success") is True:
                result.add(RowOutcome(document_id=document["id"], success=True))
            else:
                error = str(line_result.get("error") or "import rejected")
                logger.error("import rejected listing id=%s: %s", document["id"], error)
                result.add(RowOutcome(document_id=document["id"], success=False, error=error))

    @property
    def _collection_path(self) -> str:
        return quote(self.collection, safe="")

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._send(method, path, **kwargs)
        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise SearchSyncError("search request timed out") from exc
        except httpx.HTTPError as exc:
            raise SearchSyncError(f"search request failed: {exc}") from exc

        if response.status_code >= 400:
            try:
                detail = response.json().get("message")
            except (ValueError, AttributeError):
                detail = None
            message = detail or response.text[:300] or "search request failed"
            raise SearchSyncError(
                f"search error {response.status_code}: {message}",
                status_code=response.status_code,
            )
        return response


def build_search_client(*, base_url: str, api_key: str, timeout_seconds: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=base_url,
        headers={"X-TYPESENSE-API-KEY": api_key},
        timeout=timeout_seconds,
    )


def _parse_import_line(line: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(line)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _to_epoch_millis(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str) and value.strip():
        try:
            moment = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


def _as_text(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return str(value)


def _as_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
