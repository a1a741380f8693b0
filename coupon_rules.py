"""
Coupon status derivation and discount arithmetic.
Shared by the API (status badge, redemption) and the admin client.
"""

from datetime import datetime, timezone
from typing import Optional, Union

from errors import ValidationFailed

ACTIVE = "ACTIVE"
INACTIVE = "INACTIVE"
EXPIRED = "EXPIRED"
LIMIT_REACHED = "LIMIT REACHED"


def _as_datetime(value: Union[datetime, str, None]) -> Optional[datetime]:
    """Naive UTC datetime; offsets are converted, not dropped."""
    if value is None:
        return None
    parsed = value if isinstance(value, datetime) else datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def is_expired(expiry_date, now: Optional[datetime] = None) -> bool:
    expiry = _as_datetime(expiry_date)
    if expiry is None:
        return False
    return expiry < (now or datetime.utcnow())


def is_exhausted(usage_limit: Optional[int], used_count: int) -> bool:
    # None means unlimited
    return usage_limit is not None and used_count >= usage_limit


def coupon_display_status(is_active: bool, expiry_date, usage_limit: Optional[int], used_count: int,
                          now: Optional[datetime] = None) -> str:
    """Badge shown for a coupon. Precedence: inactive, expired, limit reached, active."""
    if not is_active:
        return INACTIVE
    if is_expired(expiry_date, now):
        return EXPIRED
    if is_exhausted(usage_limit, used_count or 0):
        return LIMIT_REACHED
    return ACTIVE


def compute_discount(discount_type: str, discount_value: float, amount: float,
                     max_discount_amount: Optional[float] = None) -> float:
    if discount_type == "percentage":
        discount = amount * discount_value / 100
        if max_discount_amount is not None:
            discount = min(discount, max_discount_amount)
    else:
        discount = min(discount_value, amount)
    return round(discount, 2)


def check_redeemable(coupon, amount: float, campaign_id: Optional[int] = None,
                     now: Optional[datetime] = None) -> float:
    """Return the discount the coupon grants for this purchase, or raise ValidationFailed."""
    status = coupon_display_status(coupon.is_active, coupon.expiry_date, coupon.usage_limit,
                                   coupon.used_count, now)
    if status == INACTIVE:
        raise ValidationFailed("This coupon is no longer active")
    if status == EXPIRED:
        raise ValidationFailed("This coupon has expired")
    if status == LIMIT_REACHED:
        raise ValidationFailed("This coupon has reached its usage limit")

    applicable = [c.id for c in coupon.applicable_campaigns]
    if applicable and campaign_id not in applicable:
        raise ValidationFailed("This coupon is not valid for this campaign")

    if amount < (coupon.min_purchase_amount or 0):
        raise ValidationFailed(f"Minimum purchase of ₹{coupon.min_purchase_amount:g} required for this coupon")

    return compute_discount(coupon.discount_type, coupon.discount_value, amount, coupon.max_discount_amount)
