from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import and_, case, or_

from .config import BUYER_FEE_RATE, FEATURE_PLANS, SELLER_COMMISSION_RATE
from .models import FeaturedLevel

FEATURED_RANK = {
    FeaturedLevel.NONE: 0,
    FeaturedLevel.FEATURED: 1,
    FeaturedLevel.PREMIUM: 2,
    FeaturedLevel.SPOTLIGHT: 3,
}


def round_currency(amount: float) -> float:
    return round(amount + 1e-9, 2)


@dataclass
class Pricing:
    """Fee breakdown for one agreed price."""

    price: float
    buyer_fee: float
    seller_commission: float
    total_charged: float
    freelancer_receives: float
    platform_total: float


def calculate_pricing(price: float) -> Pricing:
    # 2.5% paid by the buyer on top, 12.5% taken from the seller
    buyer_fee = round_currency(price * BUYER_FEE_RATE)
    seller_commission = round_currency(price * SELLER_COMMISSION_RATE)
    return Pricing(
        price=round_currency(price),
        buyer_fee=buyer_fee,
        seller_commission=seller_commission,
        total_charged=round_currency(price + buyer_fee),
        freelancer_receives=round_currency(price - seller_commission),
        platform_total=round_currency(buyer_fee + seller_commission),
    )


def feature_plan(level: FeaturedLevel, now: datetime = None):
    """Return (price, featured_until) for a paid visibility upgrade."""
    price, days = FEATURE_PLANS[level.value]
    now = now or datetime.now()
    return price, now + timedelta(days=days)


def effective_featured_level(listing, now: datetime = None) -> FeaturedLevel:
    now = now or datetime.now()
    if listing.featured_level == FeaturedLevel.NONE:
        return FeaturedLevel.NONE
    if listing.featured_until and listing.featured_until < now:
        return FeaturedLevel.NONE
    return listing.featured_level


def featured_order(model, now: datetime = None):
    """ORDER BY clauses putting unexpired paid tiers first, newest next."""
    now = now or datetime.now()
    active = or_(model.featured_until.is_(None), model.featured_until >= now)
    rank = case(
        *[(and_(model.featured_level == level, active), r) for level, r in FEATURED_RANK.items() if r],
        else_=0,
    )
    return [rank.desc(), model.created_at.desc()]
