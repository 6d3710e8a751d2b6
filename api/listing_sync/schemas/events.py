from typing import Any, Literal

from pydantic import BaseModel, Field

OperationKind = Literal["INSERT", "UPDATE", "DELETE"]
SubCallStatus = Literal["ok", "failed", "skipped", "disabled"]

LISTINGS_TABLE = "listings"
TAXONOMY_TABLE = "taxonomy_terms"


class ChangeEvent(BaseModel):
    operation: OperationKind
    table: str
    schema_name: str | None = None
    record: dict[str, Any] | None = None
    old_record: dict[str, Any] | None = None
    fingerprint: str

    @property
    def row_id(self) -> Any:
        for row in (self.record, self.old_record):
            if row and row.get("id") is not None:
                return row["id"]
        return None

    @property
    def slug(self) -> str | None:
        for row in (self.record, self.old_record):
            if not row:
                continue
            slug = row.get("slug")
            if isinstance(slug, str) and slug.strip():
                return slug.strip()
        return None


class InvalidationRequest(BaseModel):
    paths: list[str]
    reason: str


class SubCallOutcome(BaseModel):
    status: SubCallStatus
    action: str | None = None
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.status == "failed"


class DispatchOutcome(BaseModel):
    table: str
    operation: OperationKind
    row_id: str | None = None
    search: SubCallOutcome = Field(default_factory=lambda: SubCallOutcome(status="skipped"))
    invalidation: SubCallOutcome = Field(default_factory=lambda: SubCallOutcome(status="skipped"))

    @property
    def partially_failed(self) -> bool:
        return self.search.failed or self.invalidation.failed


class WebhookAck(BaseModel):
    success: bool = True
    message: str | None = None


class WebhookError(BaseModel):
    error: str
    detail: str | None = None
