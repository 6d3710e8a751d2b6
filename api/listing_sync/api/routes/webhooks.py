from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from listing_sync.core.config import Settings, get_settings
from listing_sync.schemas.events import WebhookAck, WebhookError
from listing_sync.services.dispatcher import WebhookDispatcher, WebhookStatus
from listing_sync.services.runtime import get_dispatcher

router = APIRouter()


@router.post(
    "/supabase",
    response_model=WebhookAck,
    responses={400: {"model": WebhookError}, 401: {"model": WebhookError}, 500: {"model": WebhookError}},
)
async def receive_supabase_webhook(
    request: Request,
    settings: Settings = Depends(get_settings),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
) -> JSONResponse:
    # Signature is computed over the raw bytes.
    raw_body = await request.body()
    signature = request.headers.get(settings.webhook_signature_header)

    result = await dispatcher.handle(raw_body, signature)

    if result.status is WebhookStatus.INAUTHENTIC:
        return _error(status.HTTP_401_UNAUTHORIZED, WebhookError(error="Invalid signature"))
    if result.status is WebhookStatus.MALFORMED:
        return _error(status.HTTP_400_BAD_REQUEST, WebhookError(error="Invalid payload", detail=result.detail))
    if result.status is WebhookStatus.FAILED:
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, WebhookError(error="Processing failed"))
    if result.status is WebhookStatus.DUPLICATE:
        return _ack(WebhookAck(message="Event already processed"))
    return _ack(WebhookAck())


def _ack(ack: WebhookAck) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_200_OK, content=ack.model_dump(exclude_none=True))


def _error(status_code: int, error: WebhookError) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error.model_dump(exclude_none=True))
