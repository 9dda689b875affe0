import math
from datetime import datetime, timedelta
from typing import List, Optional

from app.core.exceptions import InvalidInterval, ValidationFailed
from app.models.enums import PricingType, PromoCodeType
from app.schemas.pricing import (
    BreakdownItem,
    BundleValidation,
    PriceCalculation,
    PricingRules,
    PromoUserContext,
    PromoValidation,
)
from app.utils.timeutils import hhmm, now_local, to_local_naive, weekday_name

NEW_USER_WINDOW = timedelta(days=30)


def _money(value: float) -> float:
    return round(value, 2)


def _within(now: datetime, valid_from: datetime, valid_until: datetime) -> bool:
    return to_local_naive(valid_from) <= now <= to_local_naive(valid_until)


# ---------------------------------------------------------
# VALIDATION (results, never exceptions)
# ---------------------------------------------------------
def validate_promo_code(
    rules: PricingRules,
    code: str,
    booking_amount: float,
    now: Optional[datetime] = None,
    user_context: Optional[PromoUserContext] = None,
) -> PromoValidation:
    now = to_local_naive(now) if now else now_local()
    code = (code or "").strip()

    promo = next((p for p in rules.promo_codes if p.code == code and p.is_active), None)
    if not promo:
        return PromoValidation(is_valid=False, error="Invalid or inactive promo code")

    if not _within(now, promo.valid_from, promo.valid_until):
        return PromoValidation(is_valid=False, error="Promo code has expired or not yet valid")

    if promo.max_uses > 0 and promo.used_count >= promo.max_uses:
        return PromoValidation(is_valid=False, error="Promo code usage limit exceeded")

    if promo.minimum_booking_amount and booking_amount < promo.minimum_booking_amount:
        return PromoValidation(
            is_valid=False,
            error=f"Minimum booking amount of {promo.minimum_booking_amount:g} required",
        )

    if promo.first_time_user_only or promo.new_user_only:
        if user_context is None:
            return PromoValidation(is_valid=False, error="Sign in to use this promo code")

        if promo.first_time_user_only and user_context.has_previous_bookings:
            return PromoValidation(
                is_valid=False, error="Promo code is for first-time users only"
            )

        if promo.new_user_only:
            registered = user_context.registered_at
            if registered is None or now - to_local_naive(registered) > NEW_USER_WINDOW:
                return PromoValidation(
                    is_valid=False,
                    error="Promo code is for new users only (registered within 30 days)",
                )

    return PromoValidation(is_valid=True, promo_code=promo)


def validate_bundle(
    rules: PricingRules, bundle_id: int, now: Optional[datetime] = None
) -> BundleValidation:
    now = to_local_naive(now) if now else now_local()

    bundle = next((b for b in rules.bundles if b.id == bundle_id and b.is_active), None)
    if not bundle:
        return BundleValidation(is_valid=False, error="Invalid or inactive bundle")

    if not _within(now, bundle.valid_from, bundle.valid_until):
        return BundleValidation(is_valid=False, error="Bundle has expired or not yet valid")

    if bundle.max_purchases > 0 and bundle.current_purchases >= bundle.max_purchases:
        return BundleValidation(is_valid=False, error="Bundle purchase limit exceeded")

    return BundleValidation(is_valid=True, bundle=bundle)


# ---------------------------------------------------------
# PRICE STEPS
# ---------------------------------------------------------
def _hourly_line(rate: float, hours: float) -> BreakdownItem:
    return BreakdownItem(
        type="hourly_rate",
        description=f"Hourly rate ({hours:.1f} hours x {rate:g})",
        amount=_money(rate * hours),
    )


def _package_block(rules: PricingRules, hours: float, time_block_id: Optional[int]):
    """First active block long enough, or the pinned one when it qualifies."""
    usable = [b for b in rules.time_blocks if b.is_active and b.hours >= hours]
    if time_block_id is None:
        return usable[0] if usable else None

    block = next((b for b in usable if b.id == time_block_id), None)
    if block is None:
        raise ValidationFailed(
            "Time block is inactive or shorter than the booking",
            {"time_block_id": "not usable for this booking"},
        )
    return block


def _base_line(rules: PricingRules, hours: float, time_block_id: Optional[int] = None):
    """Returns (breakdown line, time block id or None)."""
    rate = rules.base_price
    kind = PricingType(rules.type)

    if kind == PricingType.FREE:
        return BreakdownItem(type="free", description="Free space", amount=0), None

    if kind == PricingType.DAILY:
        days = math.ceil(hours / 24)
        return (
            BreakdownItem(
                type="daily_rate",
                description=f"Daily rate ({days} days x {rate:g})",
                amount=_money(rate * days),
            ),
            None,
        )

    if kind == PricingType.MONTHLY:
        months = math.ceil(hours / (24 * 30))
        monthly = rules.monthly_price if rules.monthly_price is not None else rate
        return (
            BreakdownItem(
                type="monthly_rate",
                description=f"Monthly rate ({months} months x {monthly:g})",
                amount=_money(monthly * months),
            ),
            None,
        )

    if kind == PricingType.PACKAGE:
        block = _package_block(rules, hours, time_block_id)
        if block:
            return (
                BreakdownItem(
                    type="package",
                    description=f"Package ({block.hours:g} hours)",
                    amount=_money(block.price),
                ),
                block.id,
            )

    return _hourly_line(rate, hours), None


def _matching_peak(rules: PricingRules, start: datetime):
    day = weekday_name(start)
    at = hhmm(start)
    best = None
    for rule in rules.peak_hours:
        if not rule.is_active or rule.day != day:
            continue
        if not (rule.start_time <= at < rule.end_time):
            continue
        # highest multiplier wins, earlier rule on ties
        if best is None or rule.multiplier > best.multiplier:
            best = rule
    return best


def _discount_for(promo, running: float, rate: float) -> float:
    kind = PromoCodeType(promo.type)
    if kind == PromoCodeType.PERCENTAGE:
        amount = running * promo.value / 100
        if promo.maximum_discount_amount and amount > promo.maximum_discount_amount:
            amount = promo.maximum_discount_amount
    elif kind == PromoCodeType.FIXED_AMOUNT:
        amount = promo.value
    else:
        amount = promo.value * rate
    return _money(min(amount, running))


def _discount_label(promo) -> str:
    kind = PromoCodeType(promo.type)
    if kind == PromoCodeType.PERCENTAGE:
        return f"Promo code: {promo.code} ({promo.value:g}% off)"
    if kind == PromoCodeType.FIXED_AMOUNT:
        return f"Promo code: {promo.code} ({promo.value:g} off)"
    return f"Promo code: {promo.code} ({promo.value:g} free hours)"


# ---------------------------------------------------------
# CALCULATOR
# ---------------------------------------------------------
def calculate_price(
    rules: PricingRules,
    start: datetime,
    end: datetime,
    promo_code: Optional[str] = None,
    bundle_id: Optional[int] = None,
    time_block_id: Optional[int] = None,
    now: Optional[datetime] = None,
    user_context: Optional[PromoUserContext] = None,
) -> PriceCalculation:
    """
    Resolve a space's pricing rules into an itemised price.

    Order: base price by type, peak multiplier, bundle override (which
    suppresses any promo code), promo discount, minimum-hours top-up.
    Same inputs and the same `now` always give the same result.
    """
    start = to_local_naive(start)
    end = to_local_naive(end)
    if end <= start:
        raise InvalidInterval(
            "end_time must be after start_time", {"end_time": "must be after start_time"}
        )
    now = to_local_naive(now) if now else now_local()

    hours = (end - start).total_seconds() / 3600
    breakdown: List[BreakdownItem] = []

    base_line, applied_block_id = _base_line(rules, hours, time_block_id)
    breakdown.append(base_line)
    base_price = base_line.amount
    running = base_price

    # Peak multiplier
    if rules.peak_hours and running > 0:
        peak = _matching_peak(rules, start)
        if peak and peak.multiplier != 1:
            adjusted = _money(running * peak.multiplier)
            breakdown.append(
                BreakdownItem(
                    type="peak_multiplier",
                    description=f"Peak hours multiplier ({peak.multiplier:g}x)",
                    amount=_money(adjusted - running),
                )
            )
            running = adjusted

    result = PriceCalculation(
        original_price=0,
        base_price=base_price,
        total_price=0,
        discount_amount=0,
        duration_hours=hours,
        breakdown=[],
        applied_time_block_id=applied_block_id,
    )

    # Bundle overrides the running price; promo codes never stack on it
    discount = 0.0
    applied_promo = None
    if bundle_id is not None:
        check = validate_bundle(rules, bundle_id, now)
        if check.is_valid:
            bundle = check.bundle
            breakdown.append(
                BreakdownItem(
                    type="bundle",
                    description=f"Bundle: {bundle.name} ({bundle.value:g} hours)",
                    amount=_money(bundle.price - running),
                )
            )
            running = _money(bundle.price)
            result.applied_bundle_id = bundle.id
            result.applied_bundle_name = bundle.name
            result.applied_time_block_id = None
        else:
            result.bundle_error = check.error

    elif promo_code:
        check = validate_promo_code(rules, promo_code, running, now, user_context)
        if check.is_valid:
            applied_promo = check.promo_code
            discount = _discount_for(applied_promo, running, rules.base_price)
            result.applied_promo_code = applied_promo.code
            result.applied_promo_code_id = applied_promo.id
        else:
            result.promo_error = check.error

    # Minimum booking top-up, charged at the base rate
    topup = 0.0
    if (
        PricingType(rules.type) != PricingType.FREE
        and not rules.allow_partial_bookings
        and rules.minimum_booking_hours > hours
    ):
        topup = _money((rules.minimum_booking_hours - hours) * rules.base_price)
        result.duration_hours = rules.minimum_booking_hours
        if topup > 0:
            breakdown.append(
                BreakdownItem(
                    type="minimum_booking",
                    description=f"Minimum booking ({rules.minimum_booking_hours:g} hours)",
                    amount=topup,
                )
            )

    if applied_promo and discount > 0:
        breakdown.append(
            BreakdownItem(
                type="promo_discount",
                description=_discount_label(applied_promo),
                amount=-discount,
            )
        )

    original = _money(running + topup)
    result.original_price = original
    result.discount_amount = discount
    result.total_price = max(0.0, _money(original - discount))
    result.breakdown = breakdown
    return result
