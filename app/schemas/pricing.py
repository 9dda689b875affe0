import re
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from app.models.enums import DayOfWeek, PricingType, PromoCodeType

HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


# ---------------------------------------------------------------------
# OWNER INPUT (counters are server-owned and never accepted)
# ---------------------------------------------------------------------
class PeakHourIn(BaseModel):
    id: Optional[int] = None
    day: DayOfWeek
    start_time: str
    end_time: str
    multiplier: float = Field(1.0, ge=1)
    is_active: bool = True

    model_config = {"from_attributes": True}

    @field_validator("start_time", "end_time")
    @classmethod
    def check_hhmm(cls, v):
        if not HHMM.match(v):
            raise ValueError("time must be HH:MM")
        return v

    @model_validator(mode="after")
    def check_window(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class TimeBlockIn(BaseModel):
    id: Optional[int] = None
    hours: float = Field(..., gt=0)
    price: float = Field(..., ge=0)
    description: Optional[str] = None
    is_active: bool = True
    max_bookings: int = Field(0, ge=0)

    model_config = {"from_attributes": True}


class PromoCodeIn(BaseModel):
    id: Optional[int] = None
    code: str = Field(..., min_length=1)
    type: PromoCodeType
    value: float = Field(..., ge=0)
    description: Optional[str] = None
    valid_from: datetime
    valid_until: datetime
    max_uses: int = Field(0, ge=0)
    minimum_booking_amount: float = Field(0, ge=0)
    maximum_discount_amount: float = Field(0, ge=0)
    first_time_user_only: bool = False
    new_user_only: bool = False
    is_active: bool = True

    model_config = {"from_attributes": True}

    @field_validator("code")
    @classmethod
    def strip_code(cls, v):
        return v.strip()

    @model_validator(mode="after")
    def check_window(self):
        if self.valid_until <= self.valid_from:
            raise ValueError("valid_until must be after valid_from")
        return self


class BundleIn(BaseModel):
    id: Optional[int] = None
    name: str
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    value: float = Field(..., gt=0)
    valid_from: datetime
    valid_until: datetime
    max_purchases: int = Field(0, ge=0)
    is_active: bool = True

    model_config = {"from_attributes": True}

    @model_validator(mode="after")
    def check_window(self):
        if self.valid_until <= self.valid_from:
            raise ValueError("valid_until must be after valid_from")
        return self


class PricingConfigIn(BaseModel):
    type: PricingType = PricingType.HOURLY
    base_price: float = Field(0, ge=0)
    monthly_price: Optional[float] = Field(None, ge=0)
    currency: str = "INR"
    minimum_booking_hours: float = Field(0, ge=0)
    maximum_booking_hours: float = Field(0, ge=0)
    allow_partial_bookings: bool = False
    peak_hours: List[PeakHourIn] = []
    time_blocks: List[TimeBlockIn] = []
    promo_codes: List[PromoCodeIn] = []
    bundles: List[BundleIn] = []


# ---------------------------------------------------------------------
# RULE SNAPSHOT (what the calculator reads)
# ---------------------------------------------------------------------
class TimeBlockRule(TimeBlockIn):
    current_bookings: int = 0


class PromoCodeRule(PromoCodeIn):
    used_count: int = 0


class BundleRule(BundleIn):
    current_purchases: int = 0


class PricingRules(BaseModel):
    """Consistent, read-only view of one space's pricing configuration."""

    type: PricingType = PricingType.HOURLY
    base_price: float = 0
    monthly_price: Optional[float] = None
    currency: str = "INR"
    minimum_booking_hours: float = 0
    maximum_booking_hours: float = 0
    allow_partial_bookings: bool = False
    peak_hours: List[PeakHourIn] = []
    time_blocks: List[TimeBlockRule] = []
    promo_codes: List[PromoCodeRule] = []
    bundles: List[BundleRule] = []

    @classmethod
    def from_space(cls, space) -> "PricingRules":
        return cls(
            type=space.pricing_type,
            base_price=space.base_price or 0,
            monthly_price=space.monthly_price,
            currency=space.currency,
            minimum_booking_hours=space.minimum_booking_hours or 0,
            maximum_booking_hours=space.maximum_booking_hours or 0,
            allow_partial_bookings=space.allow_partial_bookings,
            peak_hours=[PeakHourIn.model_validate(p) for p in space.peak_hours],
            time_blocks=[TimeBlockRule.model_validate(t) for t in space.time_blocks],
            promo_codes=[PromoCodeRule.model_validate(p) for p in space.promo_codes],
            bundles=[BundleRule.model_validate(b) for b in space.bundles],
        )


class PromoUserContext(BaseModel):
    has_previous_bookings: bool = False
    registered_at: Optional[datetime] = None


# ---------------------------------------------------------------------
# CALCULATION OUTPUT
# ---------------------------------------------------------------------
class BreakdownItem(BaseModel):
    type: str
    description: str
    amount: float


class PriceCalculation(BaseModel):
    original_price: float
    base_price: float
    total_price: float
    discount_amount: float
    duration_hours: float
    breakdown: List[BreakdownItem]
    applied_promo_code: Optional[str] = None
    applied_bundle_name: Optional[str] = None
    applied_promo_code_id: Optional[int] = None
    applied_bundle_id: Optional[int] = None
    applied_time_block_id: Optional[int] = None
    promo_error: Optional[str] = None
    bundle_error: Optional[str] = None


class PromoValidation(BaseModel):
    is_valid: bool
    error: Optional[str] = None
    promo_code: Optional[PromoCodeRule] = None


class BundleValidation(BaseModel):
    is_valid: bool
    error: Optional[str] = None
    bundle: Optional[BundleRule] = None


# ---------------------------------------------------------------------
# API BODIES
# ---------------------------------------------------------------------
class PriceQuoteRequest(BaseModel):
    space_id: int
    start_time: datetime
    end_time: datetime
    promo_code: Optional[str] = None
    bundle_id: Optional[int] = None
    time_block_id: Optional[int] = None


class PromoValidateRequest(BaseModel):
    code: str
    booking_amount: float = Field(..., ge=0)
