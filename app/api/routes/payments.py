from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.dependencies import get_current_user
from app.db.session import get_db
from app.models.user import User
from app.schemas.payment import (
    PaymentInitialize,
    PaymentOrderOut,
    PaymentOut,
    PaymentVerify,
    RefundRequest,
    RefundResult,
)
from app.schemas.reservation import ReservationOut
from app.services import payments
from app.services.notifications import NotificationSender, get_notification_sender
from app.utils.razorpay_client import RazorpayGateway, get_payment_gateway

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/initialize", response_model=PaymentOrderOut)
def initialize(
    data: PaymentInitialize,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_payment_gateway),
):
    return payments.initialize_payment(db, user, data, gateway)


@router.post("/verify", response_model=ReservationOut)
def verify(
    data: PaymentVerify,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_payment_gateway),
    sender: NotificationSender = Depends(get_notification_sender),
):
    return payments.verify_payment(db, user, data, gateway, sender)


@router.post("/refund/{reservation_id}", response_model=RefundResult)
def refund(
    reservation_id: int,
    body: Optional[RefundRequest] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_payment_gateway),
    sender: NotificationSender = Depends(get_notification_sender),
):
    return payments.refund_reservation(
        db, reservation_id, user, body or RefundRequest(), gateway, sender
    )


@router.get("/history/{reservation_id}", response_model=List[PaymentOut])
def history(
    reservation_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return payments.payment_history(db, reservation_id, user)
