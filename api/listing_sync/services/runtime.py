from __future__ import annotations

import logging
from functools import lru_cache

import redis.asyncio as redis

from listing_sync.core.config import Settings, get_settings
from listing_sync.services.capabilities import Capabilities, resolve_capabilities
from listing_sync.services.dispatcher import WebhookDispatcher
from listing_sync.services.ledger import IdempotencyLedger, InMemoryIdempotencyLedger, RedisIdempotencyLedger

logger = logging.getLogger(__name__)


def build_ledger(settings: Settings) -> IdempotencyLedger:
    if settings.ledger_redis_url:
        logger.info("using redis idempotency ledger")
        return RedisIdempotencyLedger(
            redis.from_url(settings.ledger_redis_url),
            ttl_seconds=settings.idempotency_ttl_seconds,
            key_prefix=settings.ledger_key_prefix,
        )
    logger.info("using process-local idempotency ledger; duplicates are not detected across instances or restarts")
    return InMemoryIdempotencyLedger(
        ttl_seconds=settings.idempotency_ttl_seconds,
        max_entries=settings.idempotency_max_entries,
    )


@lru_cache
def get_capabilities() -> Capabilities:
    return resolve_capabilities(get_settings())


@lru_cache
def get_ledger() -> IdempotencyLedger:
    return build_ledger(get_settings())


def get_dispatcher() -> WebhookDispatcher:
    capabilities = get_capabilities()
    return WebhookDispatcher(
        ledger=get_ledger(),
        search=capabilities.search,
        revalidation=capabilities.revalidation,
        webhook_secret=get_settings().webhook_secret,
    )


async def shutdown_runtime() -> None:
    if get_capabilities.cache_info().currsize:
        await get_capabilities().close()
    if get_ledger.cache_info().currsize:
        ledger = get_ledger()
        if isinstance(ledger, RedisIdempotencyLedger):
            await ledger.close()
    get_capabilities.cache_clear()
    get_ledger.cache_clear()
