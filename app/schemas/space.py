from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from app.schemas.pricing import (
    BundleRule,
    PeakHourIn,
    PricingConfigIn,
    PromoCodeRule,
    TimeBlockRule,
)


class SpaceBase(BaseModel):
    name: str
    description: Optional[str] = None
    address: str
    capacity: int = Field(1, ge=1)


class SpaceCreate(SpaceBase):
    pricing: PricingConfigIn = PricingConfigIn()


class PricingOut(BaseModel):
    type: str
    base_price: float
    monthly_price: Optional[float] = None
    currency: str
    minimum_booking_hours: float
    maximum_booking_hours: float
    allow_partial_bookings: bool
    peak_hours: List[PeakHourIn] = []
    time_blocks: List[TimeBlockRule] = []
    promo_codes: List[PromoCodeRule] = []
    bundles: List[BundleRule] = []


class SpaceOut(SpaceBase):
    id: int
    owner_id: int
    created_at: datetime
    pricing: PricingOut

    model_config = {"from_attributes": True}

    @classmethod
    def from_space(cls, space) -> "SpaceOut":
        return cls(
            id=space.id,
            owner_id=space.owner_id,
            name=space.name,
            description=space.description,
            address=space.address,
            capacity=space.capacity,
            created_at=space.created_at,
            pricing=PricingOut(
                type=space.pricing_type,
                base_price=space.base_price,
                monthly_price=space.monthly_price,
                currency=space.currency,
                minimum_booking_hours=space.minimum_booking_hours,
                maximum_booking_hours=space.maximum_booking_hours,
                allow_partial_bookings=space.allow_partial_bookings,
                peak_hours=[PeakHourIn.model_validate(p) for p in space.peak_hours],
                time_blocks=[TimeBlockRule.model_validate(t) for t in space.time_blocks],
                promo_codes=[PromoCodeRule.model_validate(p) for p in space.promo_codes],
                bundles=[BundleRule.model_validate(b) for b in space.bundles],
            ),
        )


class SlotOut(BaseModel):
    start_time: datetime
    end_time: datetime
    hours: float
    price: float
    time_block_id: Optional[int] = None
    description: Optional[str] = None
