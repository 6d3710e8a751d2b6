from fastapi import APIRouter, Depends

from listing_sync.services.capabilities import Capabilities
from listing_sync.services.runtime import get_capabilities

router = APIRouter()


@router.get("/")
async def root() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/healthz")
async def healthz(capabilities: Capabilities = Depends(get_capabilities)) -> dict[str, object]:
    return {
        "status": "ok",
        "search_enabled": capabilities.search.enabled,
        "revalidation_enabled": capabilities.revalidation.enabled,
    }
