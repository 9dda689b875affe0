from abc import ABC, abstractmethod
from typing import Optional

from app.core.logging_config import get_logger

logger = get_logger("notification")

BOOKING_CONFIRMATION = "booking_confirmation"
PAYMENT_FAILURE = "payment_failure"
REFUND_CONFIRMATION = "refund_confirmation"


class NotificationSender(ABC):
    """Delivery channel for reservation notifications."""

    @abstractmethod
    def send(self, template: str, recipient: str, context: dict):
        pass


class LogSender(NotificationSender):
    """Writes every notification to notifications.log instead of delivering it."""

    def send(self, template: str, recipient: str, context: dict):
        logger.info(f"Notification {template} -> {recipient} | {context}")


def _context(reservation) -> dict:
    return {
        "booking_code": reservation.booking_code,
        "reservation_id": reservation.id,
        "space_id": reservation.space_id,
        "start_time": reservation.start_time.isoformat(),
        "end_time": reservation.end_time.isoformat(),
        "total_amount": reservation.total_amount,
        "status": reservation.status,
    }


def _dispatch(sender: NotificationSender, template: str, reservation, extra=None):
    # Best effort: a delivery failure never undoes the committed transition
    try:
        recipient = reservation.user.email if reservation.user else ""
        context = _context(reservation)
        if extra:
            context.update(extra)
        sender.send(template, recipient, context)
    except Exception as e:
        logger.error(
            f"Notification {template} failed for reservation {reservation.id}: {e}"
        )


def send_confirmation(sender: NotificationSender, reservation):
    _dispatch(sender, BOOKING_CONFIRMATION, reservation)


def send_failure(sender: NotificationSender, reservation, reason: Optional[str] = None):
    _dispatch(sender, PAYMENT_FAILURE, reservation, {"reason": reason})


def send_refund(sender: NotificationSender, reservation, amount: float, reason: Optional[str] = None):
    _dispatch(sender, REFUND_CONFIRMATION, reservation, {"amount": amount, "reason": reason})


_default_sender = LogSender()


def get_notification_sender() -> NotificationSender:
    return _default_sender
