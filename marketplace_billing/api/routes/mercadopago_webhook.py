import logging
from typing import Callable

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from starlette.concurrency import run_in_threadpool

from marketplace_billing.core.dependencies import get_engine
from marketplace_billing.core.logging_config import sanitize_log_data
from marketplace_billing.schemas.billing import WebhookAck
from marketplace_billing.services.reconciliation_engine import ReconciliationEngine

logger = logging.getLogger(__name__)


def _error_ack(detail: str) -> dict:
    return {"received": True, "outcome": {"kind": "error", "result": "error", "detail": detail}}


class AcknowledgingRoute(APIRoute):
    """
    Route that answers 200 even when its dependencies fail to build
    (database session, HTTP client), so MercadoPago never sees a 5xx.
    """

    def get_route_handler(self) -> Callable:
        original_route_handler = super().get_route_handler()

        async def acknowledging_route_handler(request: Request) -> Response:
            try:
                return await original_route_handler(request)
            except Exception as e:
                logger.exception(f"Webhook request failed before processing: {request.method} {request.url.path}")
                return JSONResponse(status_code=200, content=_error_ack(str(e)))

        return acknowledging_route_handler


router = APIRouter(prefix="/mercadopago", tags=["MercadoPago Webhook"], route_class=AcknowledgingRoute)


def _notification_from_query(request: Request) -> dict:
    """MercadoPago IPN style: ?type=payment&data.id=123 (or topic/id)."""
    params = request.query_params
    notification_type = params.get("type") or params.get("topic")
    data_id = params.get("data.id") or params.get("id")
    if not notification_type or not data_id:
        return {}
    return {"type": notification_type, "action": params.get("action"), "data": {"id": data_id}}


# ✅ MERCADOPAGO WEBHOOK
@router.post("/webhook", response_model=WebhookAck)
async def mercadopago_webhook(request: Request, engine: ReconciliationEngine = Depends(get_engine)):
    """
    Receive a MercadoPago notification.

    Always answers 200 so MercadoPago does not flood retries; failures are
    logged and reported in the ``outcome`` field only.
    """
    try:
        payload = await request.json()
    except Exception:
        payload = None
    if not isinstance(payload, dict) or not payload.get("type"):
        payload = _notification_from_query(request) or payload

    if not isinstance(payload, dict):
        logger.warning("Webhook body is not a JSON object, ignoring")
        return {"received": True, "outcome": {"kind": "ignored", "result": "ignored", "detail": "invalid_body"}}

    logger.info(f"Webhook received: {sanitize_log_data(payload)}")
    try:
        outcome = await run_in_threadpool(engine.handle_notification, payload)
    except Exception as e:
        logger.exception(f"Webhook processing failed: type={payload.get('type')}")
        return _error_ack(str(e))

    return {"received": True, "outcome": outcome.as_dict()}


@router.get("/webhook")
def mercadopago_webhook_status():
    """Reachability check used when registering the notification URL."""
    return {"status": "webhook endpoint active"}
