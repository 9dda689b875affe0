from datetime import date, datetime, time, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.enums import BLOCKING_STATUSES
from app.models.reservation import Reservation
from app.schemas.pricing import PricingRules
from app.schemas.space import SlotOut
from app.utils.pricing import calculate_price
from app.utils.timeutils import now_local, to_local_naive


# ---------------------------------------------------------------------
# OVERLAP CHECK
# ---------------------------------------------------------------------
def find_conflicts(
    db: Session,
    space_id: int,
    start: datetime,
    end: datetime,
) -> List[Reservation]:
    """Reservations holding any part of [start, end) on this space."""
    start = to_local_naive(start)
    end = to_local_naive(end)

    return (
        db.query(Reservation)
        .filter(
            Reservation.space_id == space_id,
            Reservation.status.in_(BLOCKING_STATUSES),
            Reservation.start_time < end,
            Reservation.end_time > start,
        )
        .order_by(Reservation.start_time)
        .all()
    )


def list_availability(
    db: Session, space_id: int, range_start: datetime, range_end: datetime
) -> List[Reservation]:
    return find_conflicts(db, space_id, range_start, range_end)


# ---------------------------------------------------------------------
# SLOT GENERATION
# ---------------------------------------------------------------------
def _overlaps(busy: List[Reservation], start: datetime, end: datetime) -> bool:
    return any(r.start_time < end and r.end_time > start for r in busy)


def generate_slots(
    db: Session, space, day: date, now: Optional[datetime] = None
) -> List[SlotOut]:
    """
    Candidate start slots for one day inside the operating window.

    Each active time block contributes hourly-spaced slots of its own length;
    without time blocks the slot length is the minimum booking duration
    (at least one hour). Slots in the past, slots overlapping a blocking
    reservation and blocks that reached max_bookings are left out.
    """
    now = to_local_naive(now) if now else now_local()
    window_start = datetime.combine(day, time(settings.operating_start_hour))
    window_end = datetime.combine(day, time(settings.operating_end_hour))

    busy = find_conflicts(db, space.id, window_start, window_end)
    rules = PricingRules.from_space(space)

    candidates = []
    blocks = [b for b in space.time_blocks if b.is_active]
    if blocks:
        for block in blocks:
            if block.max_bookings and block.current_bookings >= block.max_bookings:
                continue
            candidates.append((block.hours, block.id, block.description))
    else:
        candidates.append((max(space.minimum_booking_hours or 0, 1), None, None))

    slots = []
    for hours, block_id, description in candidates:
        length = timedelta(hours=hours)
        start = window_start
        while start + length <= window_end:
            end = start + length
            if start >= now and not _overlaps(busy, start, end):
                price = calculate_price(rules, start, end, time_block_id=block_id, now=now)
                slots.append(
                    SlotOut(
                        start_time=start,
                        end_time=end,
                        hours=hours,
                        price=price.total_price,
                        time_block_id=block_id,
                        description=description,
                    )
                )
            start += timedelta(hours=1)

    return slots
