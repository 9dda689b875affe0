"""
Payment lifecycle for reservations.

The client verify path and the webhook path both go through the
``apply_*`` functions below. Each one only moves state forward and
returns whether it changed anything, so a redelivered or reordered
event converges on the same final state and notifies at most once.
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    InvalidStateTransition,
    NoCompletedPayment,
    NotFound,
    PermissionDenied,
    SignatureInvalid,
    ValidationFailed,
)
from app.core.locks import reservation_payment_lock
from app.core.logging_config import get_logger
from app.models.enums import (
    PaymentStatus,
    ReservationPaymentStatus,
    ReservationStatus,
    UserRole,
)
from app.models.payment import Payment
from app.models.reservation import Reservation
from app.models.user import User
from app.schemas.payment import (
    PaymentInitialize,
    PaymentOrderOut,
    PaymentVerify,
    RefundRequest,
    RefundResult,
)
from app.services import notifications
from app.services.reservations import ensure_visible, get_reservation
from app.utils.razorpay_client import RazorpayGateway

logger = get_logger("payment")

# A capture never revives these
CLOSED_STATUSES = (
    ReservationStatus.CANCELLED.value,
    ReservationStatus.REJECTED.value,
    ReservationStatus.NO_SHOW.value,
    ReservationStatus.COMPLETED.value,
)

CONFIRMED_STATUSES = (
    ReservationStatus.CONFIRMED.value,
    ReservationStatus.CHECKED_IN.value,
)


# ---------------------------------------------------------------------
# LOOKUPS
# ---------------------------------------------------------------------
def find_payment(
    db: Session, payment_id: Optional[str] = None, order_id: Optional[str] = None
) -> Optional[Payment]:
    """By provider payment id first, then the most recent attempt for the order."""
    if payment_id:
        payment = (
            db.query(Payment)
            .filter(Payment.payment_id == payment_id)
            .with_for_update()
            .first()
        )
        if payment:
            return payment
    if order_id:
        return (
            db.query(Payment)
            .filter(Payment.order_id == order_id)
            .order_by(Payment.id.desc())
            .with_for_update()
            .first()
        )
    return None


def latest_completed_payment(db: Session, reservation_id: int) -> Optional[Payment]:
    return (
        db.query(Payment)
        .filter(
            Payment.reservation_id == reservation_id,
            Payment.status == PaymentStatus.COMPLETED.value,
        )
        .order_by(Payment.id.desc())
        .with_for_update()
        .first()
    )


def payment_history(db: Session, reservation_id: int, actor: User) -> List[Payment]:
    reservation = get_reservation(db, reservation_id)
    ensure_visible(actor, reservation)
    return (
        db.query(Payment)
        .filter(Payment.reservation_id == reservation_id)
        .order_by(Payment.id.desc())
        .all()
    )


# ---------------------------------------------------------------------
# STATE APPLIERS (caller commits)
# ---------------------------------------------------------------------
def _advance(db: Session, model, row_id: int, values: dict, *criteria) -> bool:
    """
    Conditional UPDATE of one row.

    The criteria are evaluated against the committed row, so when two
    deliveries race only the first writer gets a row back.
    """
    updated = (
        db.query(model)
        .filter(model.id == row_id, *criteria)
        .update(values, synchronize_session=False)
    )
    return updated == 1


def apply_capture(
    db: Session, payment: Payment, provider_payment_id: Optional[str], method=None
) -> bool:
    """Returns True when the reservation became confirmed by this call."""
    now = datetime.utcnow()
    _advance(
        db,
        Payment,
        payment.id,
        {
            Payment.status: PaymentStatus.COMPLETED.value,
            Payment.completed_at: now,
            Payment.failure_reason: None,
        },
        Payment.status.notin_([PaymentStatus.COMPLETED.value, PaymentStatus.REFUNDED.value]),
    )

    details = {}
    if provider_payment_id:
        details[Payment.payment_id] = provider_payment_id
    if method:
        details[Payment.payment_method] = method
    if details:
        _advance(db, Payment, payment.id, details, Payment.status != PaymentStatus.REFUNDED.value)

    db.refresh(payment)
    if payment.status == PaymentStatus.REFUNDED.value:
        return False

    reservation = payment.reservation
    paid = {
        Reservation.payment_status: ReservationPaymentStatus.COMPLETED.value,
        Reservation.razorpay_order_id: payment.order_id,
    }
    if provider_payment_id:
        paid[Reservation.razorpay_payment_id] = provider_payment_id
    _advance(db, Reservation, reservation.id, paid, Reservation.status.notin_(CLOSED_STATUSES))

    confirmed = _advance(
        db,
        Reservation,
        reservation.id,
        {
            Reservation.status: ReservationStatus.CONFIRMED.value,
            Reservation.confirmed_at: now,
        },
        Reservation.status.notin_(CLOSED_STATUSES + CONFIRMED_STATUSES),
    )
    db.refresh(reservation)

    if reservation.status in CLOSED_STATUSES:
        logger.warning(
            f"Capture for closed reservation | Code={reservation.booking_code} "
            f"| Status={reservation.status} | Payment={provider_payment_id}"
        )
    return confirmed


def apply_failure(
    db: Session, payment: Payment, provider_payment_id: Optional[str], reason: Optional[str]
) -> bool:
    """Returns True when this payment attempt newly moved to failed."""
    values = {
        Payment.status: PaymentStatus.FAILED.value,
        Payment.failure_reason: reason or "Payment failed",
        Payment.failed_at: datetime.utcnow(),
    }
    if provider_payment_id:
        values[Payment.payment_id] = func.coalesce(Payment.payment_id, provider_payment_id)

    failed = _advance(
        db,
        Payment,
        payment.id,
        values,
        Payment.status.notin_(
            [
                PaymentStatus.COMPLETED.value,
                PaymentStatus.REFUNDED.value,
                PaymentStatus.FAILED.value,
            ]
        ),
    )
    if failed:
        # stays pending_payment so the guest can retry
        _advance(
            db,
            Reservation,
            payment.reservation_id,
            {Reservation.payment_status: ReservationPaymentStatus.FAILED.value},
            Reservation.status == ReservationStatus.PENDING_PAYMENT.value,
            Reservation.payment_status != ReservationPaymentStatus.COMPLETED.value,
        )
    db.refresh(payment)
    db.refresh(payment.reservation)
    return failed


def apply_authorization(db: Session, payment: Payment, provider_payment_id: Optional[str]) -> bool:
    values = {
        Payment.status: PaymentStatus.AUTHORIZED.value,
        Payment.authorized_at: datetime.utcnow(),
    }
    if provider_payment_id:
        values[Payment.payment_id] = provider_payment_id

    authorized = _advance(
        db, Payment, payment.id, values, Payment.status == PaymentStatus.PENDING.value
    )
    db.refresh(payment)
    return authorized


def apply_refund(
    db: Session, payment: Payment, refund_id: str, amount: float, reason: Optional[str]
) -> bool:
    """Returns True when the payment newly moved to refunded."""
    now = datetime.utcnow()
    refunded = _advance(
        db,
        Payment,
        payment.id,
        {
            Payment.status: PaymentStatus.REFUNDED.value,
            Payment.refund_id: refund_id,
            Payment.refund_amount: min(amount, payment.amount),
            Payment.refund_reason: reason,
            Payment.refunded_at: now,
        },
        Payment.status != PaymentStatus.REFUNDED.value,
    )
    if refunded:
        _advance(
            db,
            Reservation,
            payment.reservation_id,
            {
                Reservation.status: ReservationStatus.CANCELLED.value,
                Reservation.payment_status: ReservationPaymentStatus.REFUNDED.value,
                Reservation.cancellation_reason: reason or Reservation.cancellation_reason,
                Reservation.cancelled_at: func.coalesce(Reservation.cancelled_at, now),
            },
        )
    db.refresh(payment)
    db.refresh(payment.reservation)
    return refunded



# ---------------------------------------------------------------------
# INITIALIZE
# ---------------------------------------------------------------------
def initialize_payment(
    db: Session, user: User, data: PaymentInitialize, gateway: RazorpayGateway
) -> PaymentOrderOut:
    reservation = get_reservation(db, data.reservation_id)
    if reservation.user_id != user.id:
        raise PermissionDenied("You can only pay for your own reservations")

    if reservation.status != ReservationStatus.PENDING_PAYMENT.value:
        raise InvalidStateTransition(
            f"Cannot pay for a reservation that is {reservation.status}",
            {"status": reservation.status},
        )

    amount = reservation.total_amount
    if data.amount is not None and round(data.amount, 2) != round(amount, 2):
        raise ValidationFailed(
            "Amount does not match the reservation total",
            {"amount": f"expected {amount:.2f}"},
        )

    order = gateway.create_order(
        amount,
        settings.currency,
        receipt=reservation.booking_code,
        notes={"reservation_id": str(reservation.id)},
    )

    payment = Payment(
        reservation_id=reservation.id,
        order_id=order["id"],
        amount=amount,
        currency=settings.currency,
        status=PaymentStatus.PENDING.value,
    )
    db.add(payment)
    reservation.razorpay_order_id = order["id"]
    db.commit()

    logger.info(
        f"Payment Initialized | Code={reservation.booking_code} | Order={order['id']} | Amount={amount}"
    )
    return PaymentOrderOut(
        reservation_id=reservation.id,
        order_id=order["id"],
        amount=amount,
        currency=settings.currency,
        key_id=gateway.key_id,
    )


# ---------------------------------------------------------------------
# CLIENT VERIFY
# ---------------------------------------------------------------------
def verify_payment(
    db: Session,
    user: User,
    data: PaymentVerify,
    gateway: RazorpayGateway,
    sender: notifications.NotificationSender,
) -> Reservation:
    reservation = get_reservation(db, data.reservation_id)
    if reservation.user_id != user.id:
        raise PermissionDenied("You can only verify your own payments")

    payment = (
        db.query(Payment)
        .filter(
            Payment.reservation_id == reservation.id,
            Payment.order_id == data.razorpay_order_id,
        )
        .order_by(Payment.id.desc())
        .first()
    )
    if not payment:
        raise NotFound("Payment not found for this order")

    if not gateway.verify_payment_signature(
        data.razorpay_order_id, data.razorpay_payment_id, data.razorpay_signature
    ):
        logger.warning(
            f"Invalid payment signature | Code={reservation.booking_code} | Order={data.razorpay_order_id}"
        )
        raise SignatureInvalid("Invalid payment signature")

    # Never trust the redirect alone; ask the provider
    info = gateway.fetch_payment(data.razorpay_payment_id)
    if info.get("order_id") and info["order_id"] != data.razorpay_order_id:
        raise ValidationFailed(
            "Payment does not belong to this order",
            {"razorpay_order_id": "does not match the payment"},
        )

    db.refresh(payment, with_for_update=True)
    provider_status = info.get("status")
    confirmed = failed = False
    if provider_status == "captured":
        confirmed = apply_capture(db, payment, data.razorpay_payment_id, info.get("method"))
    elif provider_status == "failed":
        failed = apply_failure(db, payment, data.razorpay_payment_id, info.get("error_description"))
    elif provider_status == "authorized":
        apply_authorization(db, payment, data.razorpay_payment_id)
    db.commit()
    db.refresh(reservation)

    logger.info(
        f"Payment Verified | Code={reservation.booking_code} | Payment={data.razorpay_payment_id} "
        f"| ProviderStatus={provider_status}"
    )

    if confirmed:
        notifications.send_confirmation(sender, reservation)
    if failed:
        notifications.send_failure(sender, reservation, payment.failure_reason)
    return reservation


# ---------------------------------------------------------------------
# REFUND
# ---------------------------------------------------------------------
def refund_reservation(
    db: Session,
    reservation_id: int,
    actor: User,
    data: RefundRequest,
    gateway: RazorpayGateway,
    sender: notifications.NotificationSender,
) -> RefundResult:
    reservation = get_reservation(db, reservation_id)
    if actor.role != UserRole.ADMIN.value and actor.id != reservation.space.owner_id:
        raise PermissionDenied("Only the space owner or an admin can refund")

    # One refund in flight per reservation; a second caller sees it refunded
    with reservation_payment_lock(reservation.id):
        try:
            db.expire_all()
            payment = latest_completed_payment(db, reservation.id)
            if not payment or not payment.payment_id:
                raise NoCompletedPayment("No completed payment to refund")

            amount = data.amount if data.amount is not None else payment.amount
            if amount > payment.amount:
                raise ValidationFailed(
                    "Refund cannot exceed the amount paid",
                    {"amount": f"maximum {payment.amount:.2f}"},
                )

            result = gateway.refund_payment(
                payment.payment_id, amount, notes={"reason": data.reason or ""}
            )
            refunded = apply_refund(db, payment, result["id"], amount, data.reason)
            db.commit()
        except Exception:
            db.rollback()
            raise

    db.refresh(reservation)
    logger.info(
        f"Refund Processed | Code={reservation.booking_code} | Refund={result['id']} | Amount={amount}"
    )
    if refunded:
        notifications.send_refund(sender, reservation, amount, data.reason)

    return RefundResult(
        reservation_id=reservation.id,
        payment_id=payment.id,
        refund_id=result["id"],
        refund_amount=payment.refund_amount,
        status=payment.status,
    )
