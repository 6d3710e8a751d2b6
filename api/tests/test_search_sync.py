from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Any

import httpx
import pytest
from fakes import listing_row

from listing_sync.services.search_sync import (
    DocumentMappingError,
    SearchSyncError,
    TypesenseSearchSync,
    build_listing_document,
)


def _run_with(handler, action):
    async def run() -> Any:
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport, base_url="http://typesense.test:8108") as client:
            return await action(TypesenseSearchSync(client))

    return asyncio.run(run())


def test_build_listing_document_projects_geo_address_and_timestamps() -> None:
    document = build_listing_document(listing_row(excerpt="Short", category="tools"))

    assert document["id"] == "0b7c6a52-1f0e-4c39-9d1e-7d3f4a1e2b10"
    assert document["location"] == [30.2672, -97.7431]
    assert document["city"] == "Austin"
    assert document["state"] == "TX"
    assert document["country"] == "US"
    assert document["price"] == 125000.0
    assert document["excerpt"] == "Short"
    assert document["category"] == "tools"
    assert document["published_at"] == int(datetime(2024, 3, 1, 12, tzinfo=timezone.utc).timestamp() * 1000)
    assert document["created_at"] == int(datetime(2024, 2, 28, 9, 30, tzinfo=timezone.utc).timestamp() * 1000)
    assert document["updated_at"] % 1000 == 500


def test_build_listing_document_omits_missing_optionals_and_applies_defaults() -> None:
    row = listing_row(price=None, location=None, address={"state": "CA"})
    document = build_listing_document(row, default_currency="EUR")

    assert "price" not in document
    assert "location" not in document
    assert "city" not in document
    assert "excerpt" not in document
    assert document["state"] == "CA"
    assert document["currency"] == "EUR"
    assert document["featured"] is False
    assert document["view_count"] == 0


def test_build_listing_document_requires_id() -> None:
    with pytest.raises(DocumentMappingError):
        build_listing_document(listing_row(id=None))


def test_upsert_posts_document_with_upsert_action() -> None:
    captured: dict[str, Any] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        captured["method"] = request.method
        captured["path"] = request.url.path
        captured["action"] = request.url.params.get("action")
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json=captured["body"], request=request)

    _run_with(handler, lambda sync: sync.upsert(listing_row()))

    assert captured["method"] == "POST"
    assert captured["path"] == "/collections/listings/documents"
    assert captured["action"] == "upsert"
    assert captured["body"]["slug"] == "acme-widget"


def test_remove_treats_not_found_as_success() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "DELETE"
        assert request.url.path == "/collections/listings/documents/listing-1"
        return httpx.Response(404, json={"message": "Could not find a document with id: listing-1"}, request=request)

    assert _run_with(handler, lambda sync: sync.remove("listing-1")) is False


def test_remove_raises_on_server_error() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"message": "Not Ready or Lagging"}, request=request)

    with pytest.raises(SearchSyncError) as excinfo:
        _run_with(handler, lambda sync: sync.remove("listing-1"))
    assert excinfo.value.status_code == 503


def test_transport_errors_surface_as_search_sync_error() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(SearchSyncError):
        _run_with(handler, lambda sync: sync.upsert(listing_row()))


def test_ensure_collection_creates_missing_collection() -> None:
    calls: list[tuple[str, str]] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        calls.append((request.method, request.url.path))
        if request.method == "GET":
            return httpx.Response(404, json={"message": "Not Found"}, request=request)
        schema = json.loads(request.content)
        assert schema["name"] == "listings"
        assert schema["default_sorting_field"] == "published_at"
        return httpx.Response(201, json=schema, request=request)

    assert _run_with(handler, lambda sync: sync.ensure_collection()) is True
    assert calls == [("GET", "/collections/listings"), ("POST", "/collections")]


def test_bulk_sync_counts_rejected_rows_and_continues() -> None:
    rows = [listing_row(id=f"listing-{index}", slug=f"slug-{index}") for index in range(5)]
    imported: list[str] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, json={"name": "listings"}, request=request)
        assert request.url.path == "/collections/listings/documents/import"
        assert request.url.params.get("action") == "upsert"
        lines = []
        for line in request.content.decode("utf-8").splitlines():
            document = json.loads(line)
            imported.append(document["id"])
            if document["id"] == "listing-2":
                lines.append(json.dumps({"success": False, "error": "Bad JSON.", "document": line}))
            else:
                lines.append(json.dumps({"success": True}))
        return httpx.Response(200, text="\n".join(lines), request=request)

    result = _run_with(handler, lambda sync: sync.bulk_sync(rows, batch_size=2))

    assert result.success == 4
    assert result.failed == 1
    assert imported == [f"listing-{index}" for index in range(5)]
    failed = [outcome for outcome in result.outcomes if not outcome.success]
    assert [(outcome.document_id, outcome.error) for outcome in failed] == [("listing-2", "Bad JSON.")]


def test_bulk_sync_counts_unmappable_rows_and_failed_batches() -> None:
    rows = [listing_row(id=None), listing_row(id="listing-a"), listing_row(id="listing-b")]

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, json={"name": "listings"}, request=request)
        if b"listing-a" in request.content:
            return httpx.Response(503, text="unavailable", request=request)
        return httpx.Response(200, text=json.dumps({"success": True}), request=request)

    result = _run_with(handler, lambda sync: sync.bulk_sync(rows, batch_size=1))

    assert result.success == 1
    assert result.failed == 2
    assert [outcome.success for outcome in result.outcomes] == [False, False, True]
