from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from opentelemetry import metrics, trace

from listing_sync.core.security import SignatureCheck, verify_signature
from listing_sync.schemas.events import (
    LISTINGS_TABLE,
    TAXONOMY_TABLE,
    ChangeEvent,
    DispatchOutcome,
    InvalidationRequest,
    SubCallOutcome,
)
from listing_sync.services.capabilities import RevalidationCapability, SearchCapability
from listing_sync.services.ledger import IdempotencyLedger
from listing_sync.services.normalizer import MalformedPayloadError, normalize_event

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)
meter = metrics.get_meter(__name__)
subcall_counter = meter.create_counter(
    "listing_sync.downstream_calls",
    description="Downstream sync calls made while dispatching change events",
)

LISTING_INDEX_PATH = "/listings"
SITE_ROOT_PATH = "/"
CATEGORY_INDEX_PATH = "/categories"


class WebhookStatus(str, Enum):
    ACKNOWLEDGED = "acknowledged"
    PARTIALLY_FAILED = "partially_failed"
    DUPLICATE = "duplicate"
    INAUTHENTIC = "inauthentic"
    MALFORMED = "malformed"
    FAILED = "failed"


@dataclass(slots=True)
class WebhookResult:
    status: WebhookStatus
    event: ChangeEvent | None = None
    outcome: DispatchOutcome | None = None
    detail: str | None = None

    @property
    def acknowledged(self) -> bool:
        return self.status in {
            WebhookStatus.ACKNOWLEDGED,
            WebhookStatus.PARTIALLY_FAILED,
            WebhookStatus.DUPLICATE,
        }


def listing_paths(event: ChangeEvent) -> list[str]:
    paths = [LISTING_INDEX_PATH, SITE_ROOT_PATH]
    if event.slug:
        paths.append(f"{LISTING_INDEX_PATH}/{event.slug}")
    return paths


def taxonomy_paths(event: ChangeEvent) -> list[str]:
    paths = [CATEGORY_INDEX_PATH]
    if event.slug:
        paths.append(f"{CATEGORY_INDEX_PATH}/{event.slug}")
    return paths


class WebhookDispatcher:
    """Routes verified change events to search sync and page revalidation.

    Downstream failures are recorded on the returned outcome and never turn
    into a rejected webhook: the event is still committed to the ledger and
    acknowledged. Only a bad signature or an unparseable body is rejected.
    """

    def __init__(
        self,
        *,
        ledger: IdempotencyLedger,
        search: SearchCapability,
        revalidation: RevalidationCapability,
        webhook_secret: str | None = None,
    ) -> None:
        self.ledger = ledger
        self.search = search
        self.revalidation = revalidation
        self.webhook_secret = webhook_secret

    async def handle(self, raw_body: bytes, signature: str | None) -> WebhookResult:
        check = verify_signature(raw_body, signature, self.webhook_secret)
        if not check.accepted:
            logger.warning("rejected webhook with invalid signature")
            return WebhookResult(status=WebhookStatus.INAUTHENTIC, detail="invalid signature")

        try:
            event = normalize_event(raw_body)
        except MalformedPayloadError as exc:
            logger.warning("rejected malformed webhook payload: %s", exc)
            return WebhookResult(status=WebhookStatus.MALFORMED, detail=str(exc))

        try:
            duplicate = await self.ledger.is_duplicate(event.fingerprint)
        except Exception as exc:
            logger.exception("idempotency ledger lookup failed for table=%s", event.table)
            return WebhookResult(status=WebhookStatus.FAILED, event=event, detail=str(exc))

        if duplicate:
            logger.info(
                "skipping duplicate %s event for table=%s fingerprint=%s",
                event.operation,
                event.table,
                event.fingerprint[:12],
            )
            return WebhookResult(status=WebhookStatus.DUPLICATE, event=event)

        try:
            outcome = await self.dispatch(event)
            await self.ledger.mark_processed(event.fingerprint)
        except Exception as exc:
            logger.exception("unhandled error dispatching %s event for table=%s", event.operation, event.table)
            return WebhookResult(status=WebhookStatus.FAILED, event=event, detail=str(exc))

        status = WebhookStatus.PARTIALLY_FAILED if outcome.partially_failed else WebhookStatus.ACKNOWLEDGED
        return WebhookResult(status=status, event=event, outcome=outcome)

    async def dispatch(self, event: ChangeEvent) -> DispatchOutcome:
        row_id = event.row_id
        outcome = DispatchOutcome(
            table=event.table,
            operation=event.operation,
            row_id=str(row_id) if row_id is not None else None,
        )

        with tracer.start_as_current_span("webhook.dispatch") as span:
            span.set_attribute("webhook.table", event.table)
            span.set_attribute("webhook.operation", event.operation)

            if event.table == LISTINGS_TABLE:
                # Search sync must precede revalidation.
                outcome.search = await self._sync_search(event)
                outcome.invalidation = await self._invalidate(
                    InvalidationRequest(paths=listing_paths(event), reason=f"listing {event.operation.lower()}")
                )
            elif event.table == TAXONOMY_TABLE:
                outcome.invalidation = await self._invalidate(
                    InvalidationRequest(paths=taxonomy_paths(event), reason=f"taxonomy {event.operation.lower()}")
                )
            else:
                logger.info("no handler for table=%s; acknowledging", event.table)

            span.set_attribute("webhook.search_status", outcome.search.status)
            span.set_attribute("webhook.invalidation_status", outcome.invalidation.status)

        log = logger.warning if outcome.partially_failed else logger.info
        log(
            "processed %s event table=%s id=%s search=%s invalidation=%s",
            event.operation,
            event.table,
            outcome.row_id,
            outcome.search.status,
            outcome.invalidation.status,
        )
        return outcome

    async def _sync_search(self, event: ChangeEvent) -> SubCallOutcome:
        adapter = self.search.adapter
        if not self.search.enabled or adapter is None:
            return self._record("search", SubCallOutcome(status="disabled"))

        if event.operation == "DELETE":
            row = event.old_record or {}
            action = "delete"
        else:
            row = event.record or {}
            action = "upsert" if row.get("status") == "published" else "delete"

        if not row or row.get("id") is None:
            return self._record("search", SubCallOutcome(status="skipped", action=action, error="row has no id"))

        try:
            if action == "upsert":
                await adapter.upsert(row)
            else:
                await adapter.remove(str(row["id"]))
        except Exception as exc:
            logger.exception("search %s failed for listing id=%s", action, row.get("id"))
            return self._record("search", SubCallOutcome(status="failed", action=action, error=str(exc)))
        return self._record("search", SubCallOutcome(status="ok", action=action))

    async def _invalidate(self, request: InvalidationRequest) -> SubCallOutcome:
        client = self.revalidation.client
        if not self.revalidation.enabled or client is None:
            return self._record("revalidation", SubCallOutcome(status="disabled"))

        try:
            await client.invalidate(request)
        except Exception as exc:
            logger.exception("revalidation failed for paths=%s", ",".join(request.paths))
            return self._record("revalidation", SubCallOutcome(status="failed", action="invalidate", error=str(exc)))
        return self._record("revalidation", SubCallOutcome(status="ok", action="invalidate"))

    @staticmethod
    def _record(adapter: str, outcome: SubCallOutcome) -> SubCallOutcome:
        subcall_counter.add(1, {"adapter": adapter, "status": outcome.status})
        return outcome
