from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.orm import Session

from app.core.dependencies import get_current_user, require_roles
from app.db.session import get_db
from app.models.enums import UserRole
from app.models.user import User
from app.schemas.pricing import PriceCalculation, PriceQuoteRequest
from app.schemas.reservation import (
    BusyInterval,
    CancelBody,
    RejectBody,
    ReservationCreate,
    ReservationOut,
)
from app.services import availability, reservations
from app.services.notifications import NotificationSender, get_notification_sender
from app.utils.ical import calendar_filename, reservation_calendar

router = APIRouter(prefix="/reservations", tags=["Reservations"])


# =====================================================================
# PRICE + CREATE
# =====================================================================
@router.post("/calculate-price", response_model=PriceCalculation)
def calculate_price(
    data: PriceQuoteRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return reservations.quote_price(db, data, user)


@router.post("/", response_model=ReservationOut, status_code=201)
def create_reservation(
    data: ReservationCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return reservations.create_reservation(db, user, data)


# =====================================================================
# AVAILABILITY
# =====================================================================
@router.get("/availability/{space_id}", response_model=List[BusyInterval])
def space_availability(
    space_id: int,
    startDate: datetime,
    endDate: datetime,
    db: Session = Depends(get_db),
):
    if endDate <= startDate:
        raise HTTPException(status_code=400, detail="endDate must be after startDate")
    reservations.get_space(db, space_id)
    busy = availability.list_availability(db, space_id, startDate, endDate)
    return [
        BusyInterval(
            reservation_id=r.id, start_time=r.start_time, end_time=r.end_time, status=r.status
        )
        for r in busy
    ]


# =====================================================================
# LISTINGS
# =====================================================================
@router.get("/my", response_model=List[ReservationOut])
def my_reservations(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return reservations.list_for_user(db, user)


@router.get("/space-owner", response_model=List[ReservationOut])
def owner_reservations(
    status: Optional[str] = None,
    date: Optional[date] = None,
    owner: User = Depends(require_roles(UserRole.BRAND_OWNER)),
    db: Session = Depends(get_db),
):
    return reservations.list_for_owner(db, owner, status, date)


@router.get("/staff", response_model=List[ReservationOut])
def staff_reservations(
    status: Optional[str] = None,
    date: Optional[date] = None,
    staff: User = Depends(require_roles(UserRole.STAFF)),
    db: Session = Depends(get_db),
):
    return reservations.list_for_staff(db, staff, status, date)


@router.get("/by-code/{booking_code}", response_model=ReservationOut)
def reservation_by_code(
    booking_code: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    reservation = reservations.get_by_code(db, booking_code)
    reservations.ensure_visible(user, reservation)
    return reservation


@router.get("/{reservation_id}", response_model=ReservationOut)
def get_reservation(
    reservation_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    reservation = reservations.get_reservation(db, reservation_id)
    reservations.ensure_visible(user, reservation)
    return reservation


@router.get("/{reservation_id}/ics")
def download_calendar(
    reservation_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    reservation = reservations.get_reservation(db, reservation_id)
    reservations.ensure_visible(user, reservation)
    return Response(
        content=reservation_calendar(reservation),
        media_type="text/calendar",
        headers={"Content-Disposition": f'attachment; filename="{calendar_filename(reservation)}"'},
    )


# =====================================================================
# TRANSITIONS
# =====================================================================
@router.post("/{reservation_id}/approve", response_model=ReservationOut)
def approve(
    reservation_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    sender: NotificationSender = Depends(get_notification_sender),
):
    return reservations.approve(db, reservation_id, user, sender)


@router.post("/{reservation_id}/reject", response_model=ReservationOut)
def reject(
    reservation_id: int,
    body: Optional[RejectBody] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return reservations.reject(db, reservation_id, user, body.reason if body else None)


@router.post("/{reservation_id}/cancel", response_model=ReservationOut)
def cancel(
    reservation_id: int,
    body: Optional[CancelBody] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return reservations.cancel(db, reservation_id, user, body.reason if body else None)


@router.post("/{reservation_id}/check-in", response_model=ReservationOut)
def check_in(
    reservation_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return reservations.check_in(db, reservation_id, user)


@router.post("/{reservation_id}/check-out", response_model=ReservationOut)
def check_out(
    reservation_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return reservations.check_out(db, reservation_id, user)


@router.post("/{reservation_id}/no-show", response_model=ReservationOut)
def no_show(
    reservation_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return reservations.mark_no_show(db, reservation_id, user)
