import logging
import os
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Request

from auditoryx.models import PaymentWebhookAck
from auditoryx.routers.http_errors import raise_http_error
from auditoryx.services.errors import MarketplaceError, MarketplaceValidationError
from auditoryx.services.marketplace_store import marketplace_store
from auditoryx.services.notification_store import notify_safely
from auditoryx.services.payment_webhook import PAYMENT_SUCCEEDED_EVENT, parse_event, verify_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/payments", response_model=PaymentWebhookAck)
async def payment_webhook(
    request: Request,
    x_payment_signature: Optional[str] = Header(default=None),
):
    secret = os.getenv("PAYMENT_WEBHOOK_SECRET", "").strip()
    if not secret:
        logger.error("PAYMENT_WEBHOOK_SECRET is not configured")
        raise HTTPException(status_code=500, detail="Payment webhook is not configured")

    payload = await request.body()
    try:
        verify_signature(payload, x_payment_signature, secret)
        event = parse_event(payload)
    except MarketplaceError as exc:
        raise_http_error(exc)

    if event.type != PAYMENT_SUCCEEDED_EVENT:
        logger.info("Ignoring payment event %s of type %s", event.id, event.type)
        return PaymentWebhookAck(event_id=event.id, status="ignored")

    try:
        if not event.booking_id:
            raise MarketplaceValidationError("Payment event is missing data.booking_id")
        outcome, booking = marketplace_store.mark_paid(
            event_id=event.id,
            event_type=event.type,
            booking_id=event.booking_id,
            amount=event.amount,
            payment_reference=event.payment_reference,
        )
    except MarketplaceError as exc:
        logger.warning("Payment event %s rejected: %s", event.id, exc)
        raise_http_error(exc)

    if outcome == "processed":
        for user_id in (booking.client_id, booking.provider_id):
            notify_safely(
                user_id=user_id,
                title="Payment received",
                body=f"{booking.amount:.2f} {booking.currency} is held in escrow for {booking.offer_snapshot.title}",
                category="payment",
                deep_link=f"booking:{booking.id}",
                data={"booking_id": booking.id, "status": booking.status},
            )
    else:
        logger.info("Payment event %s for booking %s already applied", event.id, booking.id)
    return PaymentWebhookAck(event_id=event.id, status=outcome)
