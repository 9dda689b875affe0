from datetime import date
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.dependencies import get_current_user, require_roles
from app.db.session import get_db
from app.models.enums import UserRole
from app.models.user import User
from app.schemas.pricing import (
    BundleRule,
    PricingConfigIn,
    PricingRules,
    PromoCodeRule,
    PromoValidateRequest,
    PromoValidation,
)
from app.schemas.space import SlotOut, SpaceCreate, SpaceOut
from app.services import availability, reservations, spaces
from app.utils.pricing import validate_promo_code

router = APIRouter(prefix="/spaces", tags=["Spaces"])

owner_only = require_roles(UserRole.BRAND_OWNER)


# =====================================================================
# CREATE SPACE  (Brand owners)
# =====================================================================
@router.post("/", response_model=SpaceOut, status_code=201)
def create_space(
    data: SpaceCreate,
    owner: User = Depends(owner_only),
    db: Session = Depends(get_db),
):
    return SpaceOut.from_space(spaces.create_space(db, owner, data))


# =====================================================================
# LISTINGS
# =====================================================================
@router.get("/", response_model=List[SpaceOut])
def list_spaces(db: Session = Depends(get_db)):
    return [SpaceOut.from_space(s) for s in spaces.list_spaces(db)]


@router.get("/mine", response_model=List[SpaceOut])
def my_spaces(owner: User = Depends(owner_only), db: Session = Depends(get_db)):
    return [SpaceOut.from_space(s) for s in spaces.list_spaces(db, owner_id=owner.id)]


@router.get("/{space_id}", response_model=SpaceOut)
def get_space(space_id: int, db: Session = Depends(get_db)):
    return SpaceOut.from_space(reservations.get_space(db, space_id))


# =====================================================================
# PRICING
# =====================================================================
@router.put("/{space_id}/pricing", response_model=SpaceOut)
def replace_pricing(
    space_id: int,
    pricing: PricingConfigIn,
    owner: User = Depends(owner_only),
    db: Session = Depends(get_db),
):
    return SpaceOut.from_space(spaces.replace_pricing(db, space_id, owner, pricing))


@router.delete("/{space_id}")
def delete_space(
    space_id: int,
    owner: User = Depends(owner_only),
    db: Session = Depends(get_db),
):
    spaces.delete_space(db, space_id, owner)
    return {"message": "Space deleted successfully"}


@router.get("/{space_id}/promo-codes", response_model=List[PromoCodeRule])
def list_promo_codes(space_id: int, db: Session = Depends(get_db)):
    return spaces.available_promo_codes(reservations.get_space(db, space_id))


@router.get("/{space_id}/bundles", response_model=List[BundleRule])
def list_bundles(space_id: int, db: Session = Depends(get_db)):
    return spaces.available_bundles(reservations.get_space(db, space_id))


@router.post("/{space_id}/promo-codes/validate", response_model=PromoValidation)
def validate_promo(
    space_id: int,
    data: PromoValidateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    space = reservations.get_space(db, space_id)
    result = validate_promo_code(
        PricingRules.from_space(space),
        data.code,
        data.booking_amount,
        user_context=reservations.user_context(db, user),
    )
    return PromoValidation(is_valid=result.is_valid, error=result.error)


@router.get("/{space_id}/time-blocks", response_model=List[SlotOut])
def time_blocks(space_id: int, date: date, db: Session = Depends(get_db)):
    space = reservations.get_space(db, space_id)
    return availability.generate_slots(db, space, date)
