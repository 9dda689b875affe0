import json
import secrets
import time
from typing import Callable, List, Optional, Tuple

from pydantic import TypeAdapter, ValidationError
from sqlalchemy.orm import Session

from app.core.exceptions import SignatureInvalid, WebhookProcessingFailed
from app.core.logging_config import get_logger
from app.schemas.webhook import (
    OrderPaid,
    PaymentAuthorized,
    PaymentCaptured,
    PaymentFailed,
    RefundProcessed,
    UnrecognizedEvent,
    WebhookAck,
    WebhookEvent,
)
from app.services import notifications, webhook_log
from app.services.payments import (
    apply_authorization,
    apply_capture,
    apply_failure,
    apply_refund,
    find_payment,
)
from app.utils.razorpay_client import RazorpayGateway, from_paise

logger = get_logger("webhook")

KNOWN_EVENTS = (
    "payment.captured",
    "payment.failed",
    "payment.authorized",
    "refund.processed",
    "order.paid",
)

_event_adapter = TypeAdapter(WebhookEvent)

Outcome = Tuple[bool, List[Callable[[], None]]]


# ---------------------------------------------------------------------
# DECODING
# ---------------------------------------------------------------------
def _entity(body: dict, key: str):
    wrapper = body.get(key)
    if isinstance(wrapper, dict):
        return wrapper.get("entity")
    return None


def parse_event(payload) -> WebhookEvent:
    """Decode a provider envelope into one of the known event shapes."""
    if not isinstance(payload, dict):
        return UnrecognizedEvent(event_type="unknown", reason="payload is not an object")

    event_type = payload.get("event") or "unknown"
    if event_type not in KNOWN_EVENTS:
        return UnrecognizedEvent(event_type=str(event_type), reason="unhandled event type")

    body = payload.get("payload")
    if not isinstance(body, dict):
        body = {}

    data = {"kind": event_type}
    for key in ("payment", "refund", "order"):
        entity = _entity(body, key)
        if entity is not None:
            data[key] = entity

    try:
        return _event_adapter.validate_python(data)
    except ValidationError as e:
        return UnrecognizedEvent(
            event_type=event_type, reason=f"malformed payload ({e.error_count()} errors)"
        )


def summarize(payload) -> dict:
    """Ids, amount and status only; the full payload is never stored."""
    if not isinstance(payload, dict):
        return {}
    body = payload.get("payload") if isinstance(payload.get("payload"), dict) else {}
    payment = _entity(body, "payment") or {}
    refund = _entity(body, "refund") or {}
    order = _entity(body, "order") or {}

    summary = {
        "event": payload.get("event"),
        "payment_id": payment.get("id") or refund.get("payment_id"),
        "order_id": payment.get("order_id") or order.get("id"),
        "refund_id": refund.get("id"),
        "status": payment.get("status") or refund.get("status") or order.get("status"),
    }
    amount = payment.get("amount") or refund.get("amount") or order.get("amount")
    if isinstance(amount, (int, float)):
        summary["amount"] = from_paise(amount)
    return {k: v for k, v in summary.items() if v is not None}


def new_webhook_id() -> str:
    return f"webhook_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


# ---------------------------------------------------------------------
# HANDLERS (no commit; each returns handled flag + post-commit side effects)
# ---------------------------------------------------------------------
def _on_captured(db: Session, event: PaymentCaptured, sender) -> Outcome:
    payment = find_payment(db, event.payment.id, event.payment.order_id)
    if not payment:
        logger.warning(f"payment.captured for unknown payment {event.payment.id}")
        return False, []

    if apply_capture(db, payment, event.payment.id, event.payment.method):
        reservation = payment.reservation
        return True, [lambda: notifications.send_confirmation(sender, reservation)]
    return True, []


def _on_failed(db: Session, event: PaymentFailed, sender) -> Outcome:
    payment = find_payment(db, event.payment.id, event.payment.order_id)
    if not payment:
        logger.warning(f"payment.failed for unknown payment {event.payment.id}")
        return False, []

    reason = event.payment.error_description or event.payment.error_code
    if apply_failure(db, payment, event.payment.id, reason):
        reservation = payment.reservation
        return True, [lambda: notifications.send_failure(sender, reservation, reason)]
    return True, []


def _on_authorized(db: Session, event: PaymentAuthorized, sender) -> Outcome:
    payment = find_payment(db, event.payment.id, event.payment.order_id)
    if not payment:
        logger.warning(f"payment.authorized for unknown payment {event.payment.id}")
        return False, []
    apply_authorization(db, payment, event.payment.id)
    return True, []


def _on_refund(db: Session, event: RefundProcessed, sender) -> Outcome:
    order_id = event.payment.order_id if event.payment else None
    payment = find_payment(db, event.refund.payment_id, order_id)
    if not payment:
        logger.warning(f"refund.processed for unknown payment {event.refund.payment_id}")
        return False, []

    notes = event.refund.notes if isinstance(event.refund.notes, dict) else {}
    reason = notes.get("reason") or None
    amount = from_paise(event.refund.amount)
    if apply_refund(db, payment, event.refund.id, amount, reason):
        reservation = payment.reservation
        return True, [lambda: notifications.send_refund(sender, reservation, amount, reason)]
    return True, []


def _on_order_paid(db: Session, event: OrderPaid, sender) -> Outcome:
    provider_payment_id = event.payment.id if event.payment else None
    payment = find_payment(db, None, event.order.id)
    if not payment:
        logger.warning(f"order.paid for unknown order {event.order.id}")
        return False, []

    method = event.payment.method if event.payment else None
    if apply_capture(db, payment, provider_payment_id, method):
        reservation = payment.reservation
        return True, [lambda: notifications.send_confirmation(sender, reservation)]
    return True, []


HANDLERS = {
    "payment.captured": _on_captured,
    "payment.failed": _on_failed,
    "payment.authorized": _on_authorized,
    "refund.processed": _on_refund,
    "order.paid": _on_order_paid,
}


# ---------------------------------------------------------------------
# ENTRY POINT
# ---------------------------------------------------------------------
def handle_webhook(
    db: Session,
    raw_body: bytes,
    signature: Optional[str],
    gateway: RazorpayGateway,
    sender: notifications.NotificationSender,
    webhook_id: Optional[str] = None,
) -> WebhookAck:
    started = time.perf_counter()

    try:
        payload = json.loads(raw_body or b"{}")
    except ValueError:
        payload = None
    event_type = payload.get("event") if isinstance(payload, dict) else None
    event_type = str(event_type or "unknown")

    verified = gateway.verify_webhook_signature(raw_body, signature)
    entry = webhook_log.record_received(
        db, webhook_id or new_webhook_id(), event_type, verified, summarize(payload)
    )

    if not verified:
        webhook_log.mark_failed(db, entry, "Invalid webhook signature", started)
        logger.warning(f"Rejected webhook {entry.webhook_id} | Event={event_type} | bad signature")
        raise SignatureInvalid("Invalid webhook signature")

    event = parse_event(payload)
    if isinstance(event, UnrecognizedEvent):
        webhook_log.mark_processed(db, entry, started)
        logger.info(f"Unhandled webhook {entry.webhook_id} | Event={event.event_type} | {event.reason}")
        return WebhookAck(event=event_type, handled=False)

    try:
        handled, side_effects = HANDLERS[event.kind](db, event, sender)
        db.commit()
    except Exception as e:
        db.rollback()
        webhook_log.mark_failed(db, entry, f"{type(e).__name__}: {e}", started)
        logger.exception(f"Webhook {entry.webhook_id} failed | Event={event_type}")
        raise WebhookProcessingFailed()

    webhook_log.mark_processed(db, entry, started)
    logger.info(f"Processed webhook {entry.webhook_id} | Event={event_type} | handled={handled}")

    for effect in side_effects:
        effect()

    return WebhookAck(event=event_type, handled=handled)
