from enum import Enum


class UserRole(str, Enum):
    CONSUMER = "consumer"
    BRAND_OWNER = "brand_owner"
    STAFF = "staff"
    ADMIN = "admin"


class PricingType(str, Enum):
    FREE = "free"
    HOURLY = "hourly"
    DAILY = "daily"
    MONTHLY = "monthly"
    PACKAGE = "package"


class DayOfWeek(str, Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"


class PromoCodeType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"
    FREE_HOURS = "free_hours"


class ReservationStatus(str, Enum):
    PENDING_APPROVAL = "pending_approval"
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    COMPLETED = "completed"
    CHECKED_IN = "checked_in"
    NO_SHOW = "no_show"


class ReservationPaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    NOT_REQUIRED = "not_required"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"
    AUTHORIZED = "authorized"


class WebhookStatus(str, Enum):
    RECEIVED = "received"
    PROCESSED = "processed"
    FAILED = "failed"


# Reservations in these states hold their interval
BLOCKING_STATUSES = (
    ReservationStatus.PENDING_APPROVAL.value,
    ReservationStatus.PENDING_PAYMENT.value,
    ReservationStatus.CONFIRMED.value,
    ReservationStatus.CHECKED_IN.value,
)

TERMINAL_STATUSES = (
    ReservationStatus.CANCELLED.value,
    ReservationStatus.REJECTED.value,
    ReservationStatus.COMPLETED.value,
    ReservationStatus.NO_SHOW.value,
)
