"""Payment gateway webhooks (Midtrans HTTP notifications).

Always answers 200: the gateway retries anything else, and a processing
failure on our side is logged for reconciliation instead.
"""

import json

import structlog
from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError as PydanticValidationError

from thesisflow.api.dependencies import get_notification_processor
from thesisflow.services.payment_notifications import MidtransNotification, PaymentNotificationProcessor

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/midtrans")
async def midtrans_webhook_ping():
    """Midtrans dashboard URL check."""
    return {"status": "ok"}


@router.post("/midtrans")
async def midtrans_webhook(
    request: Request,
    processor: PaymentNotificationProcessor = Depends(get_notification_processor),
):
    body = await request.body()
    if not body.strip():
        logger.info("midtrans_webhook_empty_body")
        return {"status": "ok"}

    try:
        payload = json.loads(body)
    except ValueError:
        logger.warning("midtrans_webhook_unparsable_body", size=len(body))
        return {"status": "ok"}

    if not isinstance(payload, dict) or not payload.get("order_id"):
        logger.info("midtrans_webhook_ping")
        return {"status": "ok"}

    try:
        notification = MidtransNotification.model_validate(payload)
    except PydanticValidationError as exc:
        logger.warning("midtrans_webhook_invalid_payload", order_id=payload.get("order_id"), error=str(exc))
        return {"status": "ok"}

    try:
        outcome = await processor.process(notification)
    except Exception as exc:
        logger.error(
            "midtrans_webhook_processing_failed",
            order_id=notification.order_id,
            transaction_status=notification.transaction_status,
            error=str(exc),
            error_type=type(exc).__name__,
            exc_info=True,
        )
        return {"status": "ok"}

    logger.info("midtrans_webhook_processed", order_id=notification.order_id, outcome=outcome)
    return {"status": "ok", "outcome": outcome}
