import secrets
import string
import time
from datetime import date, datetime, timedelta
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.core.exceptions import (
    Conflict,
    InvalidInterval,
    InvalidStateTransition,
    NotFound,
    PermissionDenied,
    ValidationFailed,
)
from app.core.locks import space_booking_lock
from app.core.logging_config import get_logger
from app.models.enums import (
    PaymentStatus,
    ReservationPaymentStatus,
    ReservationStatus,
    UserRole,
)
from app.models.reservation import Reservation
from app.models.space import Bundle, PromoCode, Space, TimeBlock
from app.models.user import User
from app.schemas.pricing import PriceCalculation, PriceQuoteRequest, PricingRules, PromoUserContext
from app.schemas.reservation import ReservationCreate
from app.services import notifications
from app.services.availability import find_conflicts
from app.utils.pricing import calculate_price
from app.utils.timeutils import now_local, to_local_naive

logger = get_logger("booking")

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_ATTEMPTS = 5


# ---------------------------------------------------------------------
# LOOKUPS
# ---------------------------------------------------------------------
def get_space(db: Session, space_id: int) -> Space:
    space = db.query(Space).filter(Space.id == space_id, Space.deleted == False).first()  # noqa: E712
    if not space:
        raise NotFound("Space not found")
    return space


def get_reservation(db: Session, reservation_id: int) -> Reservation:
    reservation = db.query(Reservation).filter(Reservation.id == reservation_id).first()
    if not reservation:
        raise NotFound("Reservation not found")
    return reservation


def get_by_code(db: Session, booking_code: str) -> Reservation:
    reservation = (
        db.query(Reservation).filter(Reservation.booking_code == booking_code).first()
    )
    if not reservation:
        raise NotFound("Reservation not found")
    return reservation


def can_operate(actor: User, space: Space) -> bool:
    """Space owner, or staff working for that owner."""
    if actor.id == space.owner_id:
        return True
    return actor.role == UserRole.STAFF.value and actor.brand_id == space.owner_id


def ensure_visible(actor: User, reservation: Reservation):
    if actor.role == UserRole.ADMIN.value or actor.id == reservation.user_id:
        return
    if not can_operate(actor, reservation.space):
        raise PermissionDenied("You cannot view this reservation")


def user_context(db: Session, user: Optional[User]) -> Optional[PromoUserContext]:
    if user is None:
        return None
    previous = db.query(Reservation.id).filter(Reservation.user_id == user.id).first()
    return PromoUserContext(
        has_previous_bookings=previous is not None, registered_at=user.created_at
    )


# ---------------------------------------------------------------------
# BOOKING CODE
# ---------------------------------------------------------------------
def generate_booking_code() -> str:
    stamp = str(int(time.time() * 1000))[-8:]
    suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(4))
    return f"BK{stamp}{suffix}"


def _unique_booking_code(db: Session) -> str:
    for _ in range(CODE_ATTEMPTS):
        code = generate_booking_code()
        taken = db.query(Reservation.id).filter(Reservation.booking_code == code).first()
        if not taken:
            return code
    raise Conflict("Could not allocate a booking code, please retry")


# ---------------------------------------------------------------------
# PRICE QUOTE
# ---------------------------------------------------------------------
def quote_price(
    db: Session,
    data: PriceQuoteRequest,
    user: Optional[User] = None,
    now: Optional[datetime] = None,
) -> PriceCalculation:
    space = get_space(db, data.space_id)
    return calculate_price(
        PricingRules.from_space(space),
        data.start_time,
        data.end_time,
        promo_code=data.promo_code,
        bundle_id=data.bundle_id,
        time_block_id=data.time_block_id,
        now=now,
        user_context=user_context(db, user),
    )


# ---------------------------------------------------------------------
# CREATE
# ---------------------------------------------------------------------
def _consume_counters(db: Session, space_id: int, calc: PriceCalculation):
    """Atomic conditional increments; zero rows updated means the limit was hit."""
    if calc.applied_promo_code_id is not None:
        updated = (
            db.query(PromoCode)
            .filter(
                PromoCode.id == calc.applied_promo_code_id,
                PromoCode.space_id == space_id,
                or_(PromoCode.max_uses == 0, PromoCode.used_count < PromoCode.max_uses),
            )
            .update({PromoCode.used_count: PromoCode.used_count + 1}, synchronize_session=False)
        )
        if not updated:
            raise ValidationFailed(
                "Promo code usage limit exceeded",
                {"promo_code": "Promo code usage limit exceeded"},
            )

    if calc.applied_bundle_id is not None:
        updated = (
            db.query(Bundle)
            .filter(
                Bundle.id == calc.applied_bundle_id,
                Bundle.space_id == space_id,
                or_(Bundle.max_purchases == 0, Bundle.current_purchases < Bundle.max_purchases),
            )
            .update(
                {Bundle.current_purchases: Bundle.current_purchases + 1},
                synchronize_session=False,
            )
        )
        if not updated:
            raise ValidationFailed(
                "Bundle purchase limit exceeded",
                {"bundle_id": "Bundle purchase limit exceeded"},
            )

    if calc.applied_time_block_id is not None:
        updated = (
            db.query(TimeBlock)
            .filter(
                TimeBlock.id == calc.applied_time_block_id,
                TimeBlock.space_id == space_id,
                or_(
                    TimeBlock.max_bookings == 0,
                    TimeBlock.current_bookings < TimeBlock.max_bookings,
                ),
            )
            .update(
                {TimeBlock.current_bookings: TimeBlock.current_bookings + 1},
                synchronize_session=False,
            )
        )
        if not updated:
            raise Conflict("This package is fully booked")


def create_reservation(
    db: Session,
    user: User,
    data: ReservationCreate,
    now: Optional[datetime] = None,
) -> Reservation:
    """
    Check availability, price and insert under the space's booking lock.

    The conflict check, insert and counter increments share one
    transaction, and the Space row is locked for its duration.
    """
    start = to_local_naive(data.start_time)
    end = to_local_naive(data.end_time)
    if end <= start:
        raise InvalidInterval(
            "end_time must be after start_time", {"end_time": "must be after start_time"}
        )

    now = to_local_naive(now) if now else now_local()
    if start < now:
        raise ValidationFailed(
            "Cannot book a time in the past", {"start_time": "must be in the future"}
        )

    space = get_space(db, data.space_id)
    hours = (end - start).total_seconds() / 3600
    if space.maximum_booking_hours and hours > space.maximum_booking_hours:
        raise ValidationFailed(
            f"Bookings are limited to {space.maximum_booking_hours:g} hours",
            {"end_time": f"maximum {space.maximum_booking_hours:g} hours"},
        )

    context = user_context(db, user)
    space_id = space.id

    with space_booking_lock(space_id):
        try:
            # Re-read the pricing children other requests may have changed
            db.expire_all()
            space = (
                db.query(Space)
                .filter(Space.id == space_id)
                .with_for_update()
                .one()
            )

            conflicts = find_conflicts(db, space.id, start, end)
            if conflicts:
                raise Conflict(
                    "This time slot is already booked, please choose another slot",
                    {"conflicting_reservations": [r.id for r in conflicts]},
                )

            calc = calculate_price(
                PricingRules.from_space(space),
                start,
                end,
                promo_code=data.promo_code,
                bundle_id=data.bundle_id,
                time_block_id=data.time_block_id,
                now=now,
                user_context=context,
            )

            paid = calc.total_price > 0
            reservation = Reservation(
                booking_code=_unique_booking_code(db),
                space_id=space.id,
                user_id=user.id,
                start_time=start,
                end_time=end,
                status=(
                    ReservationStatus.PENDING_PAYMENT.value
                    if paid
                    else ReservationStatus.PENDING_APPROVAL.value
                ),
                payment_status=(
                    ReservationPaymentStatus.PENDING.value
                    if paid
                    else ReservationPaymentStatus.NOT_REQUIRED.value
                ),
                total_amount=calc.total_price,
                original_amount=calc.original_price,
                discount_amount=calc.discount_amount,
                duration_hours=calc.duration_hours,
                pricing_breakdown=[item.model_dump() for item in calc.breakdown],
                promo_code=calc.applied_promo_code,
                bundle_id=calc.applied_bundle_id,
                notes=data.notes,
            )
            db.add(reservation)
            db.flush()

            _consume_counters(db, space.id, calc)
            db.commit()
        except Exception:
            db.rollback()
            raise

    db.refresh(reservation)
    logger.info(
        f"Reservation Created | Code={reservation.booking_code} | Space={space.id} "
        f"| User={user.email} | Total={reservation.total_amount} | Status={reservation.status}"
    )
    return reservation


# ---------------------------------------------------------------------
# TRANSITIONS
# ---------------------------------------------------------------------
def _require_status(reservation: Reservation, allowed, action: str):
    if reservation.status not in [s.value for s in allowed]:
        raise InvalidStateTransition(
            f"Cannot {action} a reservation that is {reservation.status}",
            {"status": reservation.status},
        )


def _require_owner(actor: User, reservation: Reservation):
    if actor.id != reservation.space.owner_id:
        raise PermissionDenied("Only the space owner can do this")


def _require_operator(actor: User, reservation: Reservation):
    if not can_operate(actor, reservation.space):
        raise PermissionDenied("Only the space owner or its staff can do this")


def approve(db: Session, reservation_id: int, actor: User, sender) -> Reservation:
    reservation = get_reservation(db, reservation_id)
    _require_owner(actor, reservation)
    _require_status(reservation, [ReservationStatus.PENDING_APPROVAL], "approve")

    reservation.status = ReservationStatus.CONFIRMED.value
    reservation.confirmed_at = datetime.utcnow()
    db.commit()
    db.refresh(reservation)

    logger.info(f"Reservation Approved | Code={reservation.booking_code} | By={actor.email}")
    notifications.send_confirmation(sender, reservation)
    return reservation


def reject(db: Session, reservation_id: int, actor: User, reason: Optional[str] = None) -> Reservation:
    reservation = get_reservation(db, reservation_id)
    _require_owner(actor, reservation)
    _require_status(reservation, [ReservationStatus.PENDING_APPROVAL], "reject")

    reservation.status = ReservationStatus.REJECTED.value
    reservation.rejection_reason = reason or "Rejected by space owner"
    db.commit()
    db.refresh(reservation)

    logger.info(f"Reservation Rejected | Code={reservation.booking_code} | By={actor.email}")
    return reservation


def cancel(db: Session, reservation_id: int, actor: User, reason: Optional[str] = None) -> Reservation:
    reservation = get_reservation(db, reservation_id)
    if actor.id != reservation.user_id:
        raise PermissionDenied("Only the guest who booked can cancel this reservation")
    _require_status(
        reservation,
        [ReservationStatus.PENDING_APPROVAL, ReservationStatus.PENDING_PAYMENT],
        "cancel",
    )

    reservation.status = ReservationStatus.CANCELLED.value
    reservation.cancellation_reason = reason
    reservation.cancelled_by = actor.id
    reservation.cancelled_at = datetime.utcnow()

    # Open payment attempts can no longer complete
    for payment in reservation.payments:
        if payment.status == PaymentStatus.PENDING.value:
            payment.status = PaymentStatus.CANCELLED.value

    db.commit()
    db.refresh(reservation)

    logger.info(f"Reservation Cancelled | Code={reservation.booking_code} | By={actor.email}")
    return reservation


def check_in(db: Session, reservation_id: int, actor: User) -> Reservation:
    reservation = get_reservation(db, reservation_id)
    _require_operator(actor, reservation)
    _require_status(reservation, [ReservationStatus.CONFIRMED], "check in")

    reservation.status = ReservationStatus.CHECKED_IN.value
    reservation.check_in_time = datetime.utcnow()
    db.commit()
    db.refresh(reservation)

    logger.info(f"Checked In | Code={reservation.booking_code} | By={actor.email}")
    return reservation


def check_out(db: Session, reservation_id: int, actor: User) -> Reservation:
    reservation = get_reservation(db, reservation_id)
    _require_operator(actor, reservation)
    _require_status(reservation, [ReservationStatus.CHECKED_IN], "check out")

    reservation.status = ReservationStatus.COMPLETED.value
    reservation.check_out_time = datetime.utcnow()
    db.commit()
    db.refresh(reservation)

    logger.info(f"Checked Out | Code={reservation.booking_code} | By={actor.email}")
    return reservation


def mark_no_show(db: Session, reservation_id: int, actor: User) -> Reservation:
    reservation = get_reservation(db, reservation_id)
    _require_operator(actor, reservation)
    _require_status(reservation, [ReservationStatus.CONFIRMED], "mark as no-show")

    reservation.status = ReservationStatus.NO_SHOW.value
    db.commit()
    db.refresh(reservation)

    logger.info(f"No Show | Code={reservation.booking_code} | By={actor.email}")
    return reservation


# ---------------------------------------------------------------------
# QUERIES
# ---------------------------------------------------------------------
def list_for_user(db: Session, user: User) -> List[Reservation]:
    return (
        db.query(Reservation)
        .filter(Reservation.user_id == user.id)
        .order_by(Reservation.start_time.desc())
        .all()
    )


def _list_for_owner_id(
    db: Session, owner_id: int, status: Optional[str] = None, day: Optional[date] = None
) -> List[Reservation]:
    query = (
        db.query(Reservation)
        .join(Space, Space.id == Reservation.space_id)
        .filter(Space.owner_id == owner_id)
    )
    if status:
        query = query.filter(Reservation.status == status)
    if day:
        day_start = datetime.combine(day, datetime.min.time())
        query = query.filter(
            Reservation.start_time < day_start + timedelta(days=1),
            Reservation.end_time > day_start,
        )
    return query.order_by(Reservation.start_time).all()


def list_for_owner(db: Session, owner: User, status=None, day=None) -> List[Reservation]:
    return _list_for_owner_id(db, owner.id, status, day)


def list_for_staff(db: Session, staff: User, status=None, day=None) -> List[Reservation]:
    if not staff.brand_id:
        return []
    return _list_for_owner_id(db, staff.brand_id, status, day)

