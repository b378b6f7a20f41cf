"""
Fare engine - Pure fare computation

Everything the calculation depends on (tiers, city route, coupon) is passed
in, so identical inputs always produce identical breakdowns.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from ...config import DEFAULT_GST_PERCENT, MINIMUM_FARE
from ...shared.clock import utcnow

# Parcels up to this weight use a city route's base fare, heavier ones its heavy fare
CITY_ROUTE_BASE_WEIGHT_KG = 3

EARTH_RADIUS_KM = 6371

PRICING_SOURCE_CITY_ROUTE = "city_route"
PRICING_SOURCE_DISTANCE = "distance"


def round_amount(value: float) -> int:
    """Round a currency amount to the nearest whole unit, halves away from zero"""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def round_distance(value: float) -> float:
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points, rounded to 2 decimals"""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return round_distance(EARTH_RADIUS_KM * c)


@dataclass(frozen=True)
class PricingTier:
    min_km: float
    max_km: float
    max_weight: float
    fare: int
    apply_gst: bool = True

    def matches(self, distance_km: float, weight_kg: float) -> bool:
        return self.min_km <= distance_km <= self.max_km and weight_kg <= self.max_weight

    @classmethod
    def from_dict(cls, data: dict) -> "PricingTier":
        return cls(
            min_km=data["minKm"],
            max_km=data["maxKm"],
            max_weight=data["maxWeight"],
            fare=data["fare"],
            apply_gst=data.get("applyGst", True),
        )

    def to_dict(self) -> dict:
        return {
            "minKm": self.min_km,
            "maxKm": self.max_km,
            "maxWeight": self.max_weight,
            "fare": self.fare,
            "applyGst": self.apply_gst,
        }


@dataclass(frozen=True)
class PricingRuleSet:
    tiers: tuple = ()
    gst_percent: float = DEFAULT_GST_PERCENT
    minimum_fare: int = MINIMUM_FARE

    def select_tier(self, distance_km: float, weight_kg: float) -> Optional[PricingTier]:
        """First matching tier, else the most expensive one, else None"""
        for tier in self.tiers:
            if tier.matches(distance_km, weight_kg):
                return tier
        if self.tiers:
            return max(self.tiers, key=lambda tier: tier.fare)
        return None


# Tier 1: 0-40 km up to 3 kg, no GST. Tier 2: 41-60 km up to 5 kg, GST applies.
DEFAULT_PRICING = PricingRuleSet(
    tiers=(
        PricingTier(min_km=0, max_km=40, max_weight=3, fare=50, apply_gst=False),
        PricingTier(min_km=41, max_km=60, max_weight=5, fare=70, apply_gst=True),
    ),
    gst_percent=18,
)


@dataclass(frozen=True)
class CityRouteFare:
    from_city: str
    to_city: str
    base_fare: int
    heavy_fare: int
    gst_percent: float = DEFAULT_GST_PERCENT

    def fare_for(self, weight_kg: float) -> int:
        return self.base_fare if weight_kg <= CITY_ROUTE_BASE_WEIGHT_KG else self.heavy_fare


@dataclass(frozen=True)
class CouponRule:
    code: str
    discount_type: str  # percentage, fixed
    discount_value: float
    valid_from: datetime
    valid_until: datetime
    is_active: bool = True
    min_order_amount: Optional[float] = None
    max_discount_amount: Optional[float] = None
    max_usage: Optional[int] = None
    current_usage: int = 0


@dataclass(frozen=True)
class CouponCheck:
    is_valid: bool
    discount_amount: int = 0
    message: Optional[str] = None


def evaluate_coupon(coupon: Optional[CouponRule], order_amount: float, now: datetime) -> CouponCheck:
    """
    Decide whether a coupon applies to an order and how much it takes off.

    The discount never exceeds the coupon's cap or the order amount.
    """
    if coupon is None:
        return CouponCheck(False, message="Invalid coupon code")
    if not coupon.is_active:
        return CouponCheck(False, message="Coupon is not active")
    if now < coupon.valid_from:
        return CouponCheck(False, message="Coupon is not yet valid")
    if now > coupon.valid_until:
        return CouponCheck(False, message="Coupon has expired")
    if coupon.min_order_amount and order_amount < coupon.min_order_amount:
        return CouponCheck(False, message=f"Minimum order amount of ₹{coupon.min_order_amount:g} required")
    if coupon.max_usage and coupon.current_usage >= coupon.max_usage:
        return CouponCheck(False, message="Coupon usage limit reached")

    if coupon.discount_type == "percentage":
        discount = order_amount * coupon.discount_value / 100
        if coupon.max_discount_amount and discount > coupon.max_discount_amount:
            discount = coupon.max_discount_amount
    else:
        discount = coupon.discount_value

    discount = min(round_amount(discount), round_amount(order_amount))
    return CouponCheck(True, discount_amount=max(discount, 0))


@dataclass(frozen=True)
class FareBreakdown:
    distance_km: float
    base_fare: int
    gst: int
    total_fare: int
    pricing_source: str
    discount: int = 0
    coupon_code: Optional[str] = None
    coupon_message: Optional[str] = None
    route: Optional[CityRouteFare] = field(default=None, compare=False)

    @property
    def coupon_applied(self) -> bool:
        return self.coupon_code is not None and self.coupon_message is None

    @property
    def final_fare(self) -> int:
        return self.total_fare - self.discount


def calculate_fare(
    distance_km: float,
    weight_kg: float,
    rules: PricingRuleSet = DEFAULT_PRICING,
    route: Optional[CityRouteFare] = None,
    coupon_code: Optional[str] = None,
    coupon: Optional[CouponRule] = None,
    now: Optional[datetime] = None,
) -> FareBreakdown:
    """
    Compute the fare for a parcel.

    A matching city route overrides distance pricing entirely. A coupon that
    fails validation is ignored rather than reported as an error; the reason
    is carried on the breakdown for callers that want to show it.
    """
    if route is not None:
        base_fare = route.fare_for(weight_kg)
        gst = round_amount(base_fare * route.gst_percent / 100)
        source = PRICING_SOURCE_CITY_ROUTE
    else:
        tier = rules.select_tier(distance_km, weight_kg)
        base_fare = tier.fare if tier else 0
        apply_gst = tier.apply_gst if tier else False
        if base_fare <= 0:
            base_fare = rules.minimum_fare
            apply_gst = False
        gst = round_amount(base_fare * rules.gst_percent / 100) if apply_gst else 0
        source = PRICING_SOURCE_DISTANCE

    total = base_fare + gst

    discount = 0
    message = None
    if coupon_code:
        check = evaluate_coupon(coupon, total, now or utcnow())
        if check.is_valid:
            discount = check.discount_amount
        else:
            message = check.message

    return FareBreakdown(
        distance_km=round_distance(distance_km),
        base_fare=base_fare,
        gst=gst,
        total_fare=total,
        pricing_source=source,
        discount=discount,
        coupon_code=coupon_code if coupon_code else None,
        coupon_message=message,
        route=route,
    )
