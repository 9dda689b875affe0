from datetime import datetime

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from app.db.session import Base
from app.models.enums import PaymentStatus


class Payment(Base):
    """One row per payment attempt (a Razorpay order)."""

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    reservation_id = Column(Integer, ForeignKey("reservations.id"), nullable=False, index=True)

    order_id = Column(String, nullable=False, index=True)
    payment_id = Column(String, nullable=True, index=True)  # set on capture

    amount = Column(Float, nullable=False)
    currency = Column(String, nullable=False, default="INR")
    status = Column(String, nullable=False, default=PaymentStatus.PENDING.value)
    payment_method = Column(String, nullable=False, default="razorpay")

    failure_reason = Column(String, nullable=True)

    refund_id = Column(String, nullable=True)
    refund_amount = Column(Float, nullable=True)
    refund_reason = Column(String, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
    failed_at = Column(DateTime, nullable=True)
    authorized_at = Column(DateTime, nullable=True)
    refunded_at = Column(DateTime, nullable=True)

    reservation = relationship("Reservation", back_populates="payments")
