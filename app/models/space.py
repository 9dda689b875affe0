from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.db.session import Base
from app.models.enums import PricingType


class Space(Base):
    __tablename__ = "spaces"

    id = Column(Integer, primary_key=True, index=True)

    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    name = Column(String, nullable=False)
    description = Column(String)
    address = Column(String, nullable=False)
    capacity = Column(Integer, nullable=False, default=1)

    # Pricing configuration (children below complete it)
    pricing_type = Column(String, nullable=False, default=PricingType.HOURLY.value)
    base_price = Column(Float, nullable=False, default=0.0)
    monthly_price = Column(Float, nullable=True)
    currency = Column(String, nullable=False, default="INR")
    minimum_booking_hours = Column(Float, nullable=False, default=0.0)
    maximum_booking_hours = Column(Float, nullable=False, default=0.0)
    allow_partial_bookings = Column(Boolean, nullable=False, default=False)

    deleted = Column(Boolean, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # RELATIONSHIPS -------------------------------------

    owner = relationship("User", back_populates="spaces")

    peak_hours = relationship(
        "PeakHour", cascade="all, delete-orphan", order_by="PeakHour.position"
    )
    time_blocks = relationship(
        "TimeBlock", cascade="all, delete-orphan", order_by="TimeBlock.position"
    )
    promo_codes = relationship(
        "PromoCode", cascade="all, delete-orphan", order_by="PromoCode.id"
    )
    bundles = relationship("Bundle", cascade="all, delete-orphan", order_by="Bundle.id")

    reservations = relationship("Reservation", back_populates="space")


class PeakHour(Base):
    __tablename__ = "peak_hours"

    id = Column(Integer, primary_key=True, index=True)
    space_id = Column(Integer, ForeignKey("spaces.id", ondelete="CASCADE"), nullable=False)

    day = Column(String, nullable=False)  # monday ... sunday
    start_time = Column(String, nullable=False)  # "HH:MM"
    end_time = Column(String, nullable=False)
    multiplier = Column(Float, nullable=False, default=1.0)
    is_active = Column(Boolean, nullable=False, default=True)
    position = Column(Integer, nullable=False, default=0)


class TimeBlock(Base):
    __tablename__ = "time_blocks"

    id = Column(Integer, primary_key=True, index=True)
    space_id = Column(Integer, ForeignKey("spaces.id", ondelete="CASCADE"), nullable=False)

    hours = Column(Float, nullable=False)
    price = Column(Float, nullable=False)
    description = Column(String)
    is_active = Column(Boolean, nullable=False, default=True)
    max_bookings = Column(Integer, nullable=False, default=0)  # 0 = unlimited
    current_bookings = Column(Integer, nullable=False, default=0)
    position = Column(Integer, nullable=False, default=0)


class PromoCode(Base):
    __tablename__ = "promo_codes"

    id = Column(Integer, primary_key=True, index=True)
    space_id = Column(Integer, ForeignKey("spaces.id", ondelete="CASCADE"), nullable=False)

    code = Column(String, nullable=False)
    type = Column(String, nullable=False)
    value = Column(Float, nullable=False)
    description = Column(String)

    valid_from = Column(DateTime, nullable=False)
    valid_until = Column(DateTime, nullable=False)

    max_uses = Column(Integer, nullable=False, default=0)  # 0 = unlimited
    used_count = Column(Integer, nullable=False, default=0)

    minimum_booking_amount = Column(Float, nullable=False, default=0.0)
    maximum_discount_amount = Column(Float, nullable=False, default=0.0)  # 0 = no cap
    first_time_user_only = Column(Boolean, nullable=False, default=False)
    new_user_only = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (UniqueConstraint("space_id", "code", name="uq_space_promo_code"),)


class Bundle(Base):
    __tablename__ = "bundles"

    id = Column(Integer, primary_key=True, index=True)
    space_id = Column(Integer, ForeignKey("spaces.id", ondelete="CASCADE"), nullable=False)

    name = Column(String, nullable=False)
    description = Column(String)
    price = Column(Float, nullable=False)
    value = Column(Float, nullable=False)  # hours granted

    valid_from = Column(DateTime, nullable=False)
    valid_until = Column(DateTime, nullable=False)

    max_purchases = Column(Integer, nullable=False, default=0)  # 0 = unlimited
    current_purchases = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
