from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from app.db.session import Base
from app.models.enums import ReservationPaymentStatus, ReservationStatus


class Reservation(Base):
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, index=True)
    booking_code = Column(String, unique=True, index=True, nullable=False)

    space_id = Column(Integer, ForeignKey("spaces.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Stored naive, in the business timezone
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False, index=True)

    status = Column(String, nullable=False, default=ReservationStatus.PENDING_PAYMENT.value)
    payment_status = Column(
        String, nullable=False, default=ReservationPaymentStatus.PENDING.value
    )

    # PRICING SNAPSHOT (immutable after creation)
    total_amount = Column(Float, nullable=False)
    original_amount = Column(Float, nullable=False, default=0.0)
    discount_amount = Column(Float, nullable=False, default=0.0)
    duration_hours = Column(Float, nullable=False)
    pricing_breakdown = Column(JSON, nullable=False, default=list)
    promo_code = Column(String, nullable=True)
    bundle_id = Column(Integer, nullable=True)

    # PAYMENT REFERENCES
    razorpay_order_id = Column(String, nullable=True, index=True)
    razorpay_payment_id = Column(String, nullable=True, index=True)

    notes = Column(String, nullable=True)
    rejection_reason = Column(String, nullable=True)
    cancellation_reason = Column(String, nullable=True)
    cancelled_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    confirmed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    check_in_time = Column(DateTime, nullable=True)
    check_out_time = Column(DateTime, nullable=True)

    user = relationship("User", foreign_keys=[user_id])
    space = relationship("Space", back_populates="reservations")
    payments = relationship(
        "Payment", back_populates="reservation", order_by="Payment.id"
    )
