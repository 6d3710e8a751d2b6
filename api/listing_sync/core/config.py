from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "listing-sync-api"
    environment: str = "dev"
    webhook_secret: str | None = None
    webhook_signature_header: str = "x-supabase-signature"
    typesense_host: str | None = None
    typesense_api_key: str | None = None
    typesense_port: int = 8108
    typesense_protocol: str = "http"
    search_collection: str = "listings"
    search_timeout_seconds: float = 5.0
    portal_revalidate_url: str | None = None
    revalidation_secret: str | None = None
    revalidation_timeout_seconds: float = 5.0
    default_currency: str = "USD"
    idempotency_ttl_seconds: float = 300.0
    idempotency_max_entries: int = 10_000
    ledger_redis_url: str | None = None
    ledger_key_prefix: str = "listing-sync:event:"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 5
    otel_enabled: bool = True
    otel_service_name: str = "listing-sync-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="LS_", extra="ignore")

    @property
    def search_enabled(self) -> bool:
        return bool(self.typesense_host and self.typesense_api_key)

    @property
    def revalidation_enabled(self) -> bool:
        return bool(self.portal_revalidate_url and self.revalidation_secret)

    @property
    def typesense_base_url(self) -> str | None:
        if not self.typesense_host:
            return None
        host = self.typesense_host.rstrip("/")
        if "://" in host:
            return host
        return f"{self.typesense_protocol}://{host}:{self.typesense_port}"


@lru_cache
def get_settings() -> Settings:
    return Settings()
