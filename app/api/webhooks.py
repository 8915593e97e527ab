"""
Live webhook ingestion for Stripe.

Each delivery is verified, claimed once by event id, then applied through the
shared EventProcessor (the same one the recovery sweep replays with).
Processing failures are recorded as ``failed`` and acknowledged with 200;
retrying them is the recovery sweep's job, not the provider's.
"""
from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
import stripe
import structlog

from app.api.deps import get_event_processor, get_webhook_event_store
from app.core.errors import AuthorizationError, ReconciliationError, capture_exception
from app.core.logging_config import get_logger
from app.schemas import WebhookAck
from app.services.billing_provider import ProviderEvent
from app.services.event_processor import EventProcessor
from app.services.stripe_provider import construct_webhook_event
from app.services.webhook_events import WebhookEventStore

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

SIGNATURE_HEADER = "stripe-signature"


def verify_stripe_event(payload: bytes, signature: str | None) -> ProviderEvent:
    """Verify the signature and parse the event, or raise AuthorizationError."""
    if not signature:
        raise AuthorizationError("Missing stripe-signature header")
    try:
        return construct_webhook_event(payload, signature)
    except stripe.SignatureVerificationError as e:
        raise AuthorizationError(f"Webhook signature verification failed: {e}") from e
    except ValueError as e:
        raise AuthorizationError(f"Invalid webhook body: {e}") from e


def handle_event(event: ProviderEvent, store: WebhookEventStore, processor: EventProcessor) -> JSONResponse:
    """Claim, process and record one verified event."""
    tracked = True
    try:
        is_new, existing_status = store.claim(
            event.id,
            event.type,
            payload={"id": event.id, "type": event.type, "object": event.data_object},
        )
    except ReconciliationError as e:
        # Idempotency table unavailable; processing is replay-safe so continue untracked
        capture_exception(e, context={"event_id": event.id, "operation": "claim_webhook_event"})
        tracked, is_new, existing_status = False, True, None

    if not is_new:
        status = getattr(existing_status, "value", existing_status)
        logger.info("Duplicate webhook event skipped", existing_status=status)
        ack = WebhookAck(skipped=True, reason=f"Event already {status}")
        return JSONResponse(content=ack.model_dump(exclude_none=True))

    try:
        handled = processor.process(event)
    except Exception as e:
        message = getattr(e, "message", None) or str(e) or type(e).__name__
        capture_exception(e, context={"event_id": event.id, "event_type": event.type})
        if tracked:
            try:
                store.mark_failed(event.id, message)
            except ReconciliationError as mark_error:
                capture_exception(mark_error, context={"event_id": event.id, "operation": "mark_failed"})
        return JSONResponse(content=WebhookAck(error=message).model_dump(exclude_none=True))

    if not handled:
        if tracked:
            try:
                store.mark_unhandled(event.id, event.type)
            except ReconciliationError as e:
                capture_exception(e, context={"event_id": event.id, "operation": "mark_unhandled"})
        ack = WebhookAck(warning=f"Unhandled event type: {event.type}")
        return JSONResponse(content=ack.model_dump(exclude_none=True))

    if tracked:
        try:
            store.mark_completed(event.id)
        except ReconciliationError as e:
            # Ask the provider to redeliver rather than leave the event stuck pending
            capture_exception(e, context={"event_id": event.id, "operation": "mark_completed"})
            return JSONResponse(status_code=500, content={"error": str(e)})

    return JSONResponse(content=WebhookAck().model_dump(exclude_none=True))


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    store: WebhookEventStore = Depends(get_webhook_event_store),
    processor: EventProcessor = Depends(get_event_processor),
):
    """
    Handle Stripe webhook deliveries.

    Events handled (everything else is acknowledged and marked unrecoverable):
    - customer.subscription.created / updated / deleted / paused / resumed
    - invoice.paid / payment_succeeded / payment_failed (and invoice_payment.* aliases)
    - checkout.session.completed
    - subscription_schedule.completed
    """
    body = await request.body()
    event = verify_stripe_event(body, request.headers.get(SIGNATURE_HEADER))

    with structlog.contextvars.bound_contextvars(event_id=event.id, event_type=event.type):
        logger.info("Stripe webhook received")
        return await run_in_threadpool(handle_event, event, store, processor)
