from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from app.schemas.pricing import BreakdownItem


class ReservationCreate(BaseModel):
    space_id: int
    start_time: datetime
    end_time: datetime
    promo_code: Optional[str] = None
    bundle_id: Optional[int] = None
    time_block_id: Optional[int] = None
    notes: Optional[str] = Field(None, max_length=500)


class RejectBody(BaseModel):
    reason: Optional[str] = None


class CancelBody(BaseModel):
    reason: Optional[str] = None


class ReservationOut(BaseModel):
    id: int
    booking_code: str
    space_id: int
    user_id: int
    start_time: datetime
    end_time: datetime
    status: str
    payment_status: str

    total_amount: float
    original_amount: float
    discount_amount: float
    duration_hours: float
    pricing_breakdown: List[BreakdownItem] = []
    promo_code: Optional[str] = None
    bundle_id: Optional[int] = None

    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None

    notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None

    created_at: datetime
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    check_in_time: Optional[datetime] = None
    check_out_time: Optional[datetime] = None

    model_config = {"from_attributes": True}


class BusyInterval(BaseModel):
    reservation_id: int
    start_time: datetime
    end_time: datetime
    status: str

    model_config = {"from_attributes": True}
