from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class PaymentInitialize(BaseModel):
    reservation_id: int
    amount: Optional[float] = Field(None, ge=0)


class PaymentOrderOut(BaseModel):
    reservation_id: int
    order_id: str
    amount: float
    currency: str
    key_id: str


class PaymentVerify(BaseModel):
    reservation_id: int
    razorpay_payment_id: str
    razorpay_order_id: str
    razorpay_signature: str


class RefundRequest(BaseModel):
    amount: Optional[float] = Field(None, gt=0)
    reason: Optional[str] = None


class RefundResult(BaseModel):
    reservation_id: int
    payment_id: int
    refund_id: str
    refund_amount: float
    status: str


class PaymentOut(BaseModel):
    id: int
    reservation_id: int
    order_id: str
    payment_id: Optional[str] = None
    amount: float
    currency: str
    status: str
    failure_reason: Optional[str] = None
    refund_id: Optional[str] = None
    refund_amount: Optional[float] = None
    refund_reason: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
