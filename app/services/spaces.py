from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy.orm import Session

from app.core.exceptions import PermissionDenied, ValidationFailed
from app.core.logging_config import get_logger
from app.models.space import Bundle, PeakHour, PromoCode, Space, TimeBlock
from app.models.user import User
from app.schemas.pricing import BundleRule, PricingConfigIn, PromoCodeRule
from app.schemas.space import SpaceCreate
from app.services.reservations import get_space
from app.utils.timeutils import now_local, to_local_naive

logger = get_logger()


def _plain(data: dict) -> dict:
    """Enum members become their values, aware datetimes become local naive."""
    out = {}
    for key, value in data.items():
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, datetime):
            value = to_local_naive(value)
        out[key] = value
    return out


def _sync_children(space, attr: str, model, incoming, ordered: bool):
    """
    Replace one child collection. Entries with a known id are updated in
    place (server counters untouched), unknown ids are rejected, entries
    without id are inserted, and everything left out is deleted.
    """
    current = {child.id: child for child in getattr(space, attr)}
    kept = []
    for position, item in enumerate(incoming):
        values = _plain(item.model_dump(exclude={"id"}))
        if item.id is not None:
            child = current.get(item.id)
            if child is None:
                raise ValidationFailed(
                    f"Unknown {attr} entry {item.id}",
                    {attr: f"id {item.id} does not belong to this space"},
                )
            for key, value in values.items():
                setattr(child, key, value)
        else:
            child = model(**values)
        if ordered:
            child.position = position
        kept.append(child)
    setattr(space, attr, kept)


def apply_pricing(space: Space, pricing: PricingConfigIn):
    codes = [p.code for p in pricing.promo_codes]
    if len(codes) != len(set(codes)):
        raise ValidationFailed(
            "Promo codes must be unique per space", {"promo_codes": "duplicate code"}
        )

    space.pricing_type = pricing.type.value
    space.base_price = pricing.base_price
    space.monthly_price = pricing.monthly_price
    space.currency = pricing.currency
    space.minimum_booking_hours = pricing.minimum_booking_hours
    space.maximum_booking_hours = pricing.maximum_booking_hours
    space.allow_partial_bookings = pricing.allow_partial_bookings

    _sync_children(space, "peak_hours", PeakHour, pricing.peak_hours, ordered=True)
    _sync_children(space, "time_blocks", TimeBlock, pricing.time_blocks, ordered=True)
    _sync_children(space, "promo_codes", PromoCode, pricing.promo_codes, ordered=False)
    _sync_children(space, "bundles", Bundle, pricing.bundles, ordered=False)


# ---------------------------------------------------------------------
# WRITES
# ---------------------------------------------------------------------
def create_space(db: Session, owner: User, data: SpaceCreate) -> Space:
    space = Space(
        owner_id=owner.id,
        name=data.name,
        description=data.description,
        address=data.address,
        capacity=data.capacity,
        deleted=False,
    )
    apply_pricing(space, data.pricing)
    db.add(space)
    db.commit()
    db.refresh(space)

    logger.info(f"Space Created | Id={space.id} | Owner={owner.email}")
    return space


def _owned_space(db: Session, space_id: int, owner: User) -> Space:
    space = get_space(db, space_id)
    if space.owner_id != owner.id:
        raise PermissionDenied("Only the space owner can change this space")
    return space


def replace_pricing(db: Session, space_id: int, owner: User, pricing: PricingConfigIn) -> Space:
    space = _owned_space(db, space_id, owner)
    try:
        apply_pricing(space, pricing)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(space)

    logger.info(f"Pricing Replaced | Space={space.id} | Owner={owner.email}")
    return space


def delete_space(db: Session, space_id: int, owner: User):
    space = _owned_space(db, space_id, owner)
    space.deleted = True
    db.commit()
    logger.info(f"Space Deleted | Id={space.id} | Owner={owner.email}")


# ---------------------------------------------------------------------
# READS
# ---------------------------------------------------------------------
def list_spaces(db: Session, owner_id: Optional[int] = None) -> List[Space]:
    query = db.query(Space).filter(Space.deleted == False)  # noqa: E712
    if owner_id is not None:
        query = query.filter(Space.owner_id == owner_id)
    return query.order_by(Space.id).all()


def available_promo_codes(space: Space, now: Optional[datetime] = None) -> List[PromoCodeRule]:
    now = to_local_naive(now) if now else now_local()
    return [
        PromoCodeRule.model_validate(p)
        for p in space.promo_codes
        if p.is_active
        and p.valid_from <= now <= p.valid_until
        and (p.max_uses == 0 or p.used_count < p.max_uses)
    ]


def available_bundles(space: Space, now: Optional[datetime] = None) -> List[BundleRule]:
    now = to_local_naive(now) if now else now_local()
    return [
        BundleRule.model_validate(b)
        for b in space.bundles
        if b.is_active
        and b.valid_from <= now <= b.valid_until
        and (b.max_purchases == 0 or b.current_purchases < b.max_purchases)
    ]
