from __future__ import annotations

import asyncio

from fakes import (
    FakeClock,
    FakeRevalidationClient,
    FakeSearchAdapter,
    build_dispatcher,
    event_body,
    listing_row,
    sign,
)

from listing_sync.services.dispatcher import WebhookStatus
from listing_sync.services.ledger import InMemoryIdempotencyLedger


def test_published_insert_upserts_then_revalidates() -> None:
    search = FakeSearchAdapter()
    revalidation = FakeRevalidationClient()
    dispatcher = build_dispatcher(search=search, revalidation=revalidation)

    result = asyncio.run(dispatcher.handle(event_body("INSERT", record=listing_row()), None))

    assert result.status is WebhookStatus.ACKNOWLEDGED
    assert search.calls == [("upsert", listing_row()["id"])]
    assert revalidation.requests[0].paths == ["/listings", "/", "/listings/acme-widget"]
    assert result.outcome is not None
    assert result.outcome.search.action == "upsert"


def test_same_payload_twice_dispatches_once() -> None:
    search = FakeSearchAdapter()
    revalidation = FakeRevalidationClient()
    dispatcher = build_dispatcher(search=search, revalidation=revalidation)
    body = event_body("UPDATE", record=listing_row(), old_record=listing_row(title="Old"))

    first = asyncio.run(dispatcher.handle(body, None))
    second = asyncio.run(dispatcher.handle(body, None))

    assert first.status is WebhookStatus.ACKNOWLEDGED
    assert second.status is WebhookStatus.DUPLICATE
    assert second.acknowledged
    assert len(search.calls) == 1
    assert len(revalidation.requests) == 1


def test_resubmission_after_ttl_is_reprocessed() -> None:
    clock = FakeClock()
    search = FakeSearchAdapter()
    dispatcher = build_dispatcher(search=search, ledger=InMemoryIdempotencyLedger(ttl_seconds=300, clock=clock))
    body = event_body("INSERT", record=listing_row())

    asyncio.run(dispatcher.handle(body, None))
    clock.advance(301)
    result = asyncio.run(dispatcher.handle(body, None))

    assert result.status is WebhookStatus.ACKNOWLEDGED
    assert len(search.calls) == 2


def test_unpublished_update_deletes_from_search() -> None:
    search = FakeSearchAdapter()
    dispatcher = build_dispatcher(search=search)
    body = event_body(
        "UPDATE",
        record=listing_row(status="archived"),
        old_record=listing_row(status="published"),
    )

    result = asyncio.run(dispatcher.handle(body, None))

    assert search.calls == [("remove", listing_row()["id"])]
    assert result.outcome is not None
    assert result.outcome.search.action == "delete"
    assert result.outcome.invalidation.status == "disabled"


def test_delete_event_invalidates_listing_paths_from_old_record() -> None:
    search = FakeSearchAdapter()
    revalidation = FakeRevalidationClient()
    dispatcher = build_dispatcher(search=search, revalidation=revalidation)
    body = event_body("DELETE", old_record=listing_row(slug="acme-widget"))

    asyncio.run(dispatcher.handle(body, None))

    assert search.calls == [("remove", listing_row()["id"])]
    assert len(revalidation.requests) == 1
    assert set(revalidation.requests[0].paths) == {"/listings", "/", "/listings/acme-widget"}


def test_search_failure_still_revalidates_and_commits() -> None:
    search = FakeSearchAdapter(fail=True)
    revalidation = FakeRevalidationClient()
    ledger = InMemoryIdempotencyLedger()
    dispatcher = build_dispatcher(search=search, revalidation=revalidation, ledger=ledger)
    body = event_body("INSERT", record=listing_row())

    result = asyncio.run(dispatcher.handle(body, None))

    assert result.status is WebhookStatus.PARTIALLY_FAILED
    assert result.acknowledged
    assert result.outcome is not None
    assert result.outcome.search.status == "failed"
    assert result.outcome.invalidation.status == "ok"
    assert len(revalidation.requests) == 1
    assert result.event is not None
    assert ledger.contains(result.event.fingerprint)


def test_revalidation_failure_is_recorded_not_raised() -> None:
    dispatcher = build_dispatcher(search=FakeSearchAdapter(), revalidation=FakeRevalidationClient(fail=True))

    result = asyncio.run(dispatcher.handle(event_body("INSERT", record=listing_row()), None))

    assert result.status is WebhookStatus.PARTIALLY_FAILED
    assert result.outcome is not None
    assert result.outcome.search.status == "ok"
    assert result.outcome.invalidation.status == "failed"


def test_taxonomy_event_revalidates_category_paths_only() -> None:
    search = FakeSearchAdapter()
    revalidation = FakeRevalidationClient()
    dispatcher = build_dispatcher(search=search, revalidation=revalidation)
    body = event_body("UPDATE", table="taxonomy_terms", record={"id": "term-1", "slug": "apartments"})

    result = asyncio.run(dispatcher.handle(body, None))

    assert result.status is WebhookStatus.ACKNOWLEDGED
    assert search.calls == []
    assert revalidation.requests[0].paths == ["/categories", "/categories/apartments"]


def test_unknown_table_makes_no_downstream_calls() -> None:
    search = FakeSearchAdapter()
    revalidation = FakeRevalidationClient()
    dispatcher = build_dispatcher(search=search, revalidation=revalidation)

    result = asyncio.run(dispatcher.handle(event_body("INSERT", table="foo_bar", record={"id": "1"}), None))

    assert result.status is WebhookStatus.ACKNOWLEDGED
    assert search.calls == []
    assert revalidation.requests == []


def test_bad_signature_never_reaches_ledger_or_adapters() -> None:
    search = FakeSearchAdapter()
    ledger = InMemoryIdempotencyLedger()
    dispatcher = build_dispatcher(search=search, ledger=ledger, secret="whsec")
    body = event_body("INSERT", record=listing_row())

    result = asyncio.run(dispatcher.handle(body, sign(body, "other-secret")))

    assert result.status is WebhookStatus.INAUTHENTIC
    assert search.calls == []
    assert len(ledger) == 0


def test_valid_signature_is_dispatched() -> None:
    search = FakeSearchAdapter()
    dispatcher = build_dispatcher(search=search, secret="whsec")
    body = event_body("INSERT", record=listing_row())

    result = asyncio.run(dispatcher.handle(body, sign(body, "whsec")))

    assert result.status is WebhookStatus.ACKNOWLEDGED
    assert len(search.calls) == 1


def test_malformed_payload_is_rejected_before_ledger() -> None:
    ledger = InMemoryIdempotencyLedger()
    dispatcher = build_dispatcher(ledger=ledger)

    result = asyncio.run(dispatcher.handle(b"{not json", None))

    assert result.status is WebhookStatus.MALFORMED
    assert len(ledger) == 0
