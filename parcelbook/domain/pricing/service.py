"""Pricing service - Fare quotes, pricing administration, city routes and coupons"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ...errors import InvalidArgument, NotFound
from ...models import CityRoute, Coupon
from ...shared.clock import ensure_utc, utcnow
from ...shared.validators import normalize_coupon_code
from .fare_engine import (
    CouponCheck,
    FareBreakdown,
    PricingRuleSet,
    calculate_fare,
    evaluate_coupon,
    haversine_km,
)
from .repository import CityRouteRepository, CouponRepository, PricingSettingsRepository
from .schemas import CityRouteUpsert, CouponCreate, CouponUpdate, FareRequest, PricingSettingsUpdate

logger = logging.getLogger(__name__)


class PricingService:
    """Service layer for fare computation and pricing lookups"""

    def __init__(self, db: Session, rules: Optional[PricingRuleSet] = None):
        self.db = db
        self.settings_repo = PricingSettingsRepository()
        self.route_repo = CityRouteRepository()
        self.coupon_repo = CouponRepository()
        self._rules = rules

    # ------------------------------------------------------------------
    # Fares
    # ------------------------------------------------------------------

    def get_rule_set(self) -> PricingRuleSet:
        if self._rules is None:
            self._rules = self.settings_repo.get_rule_set(self.db)
        return self._rules

    def quote(
        self,
        distance_km: float,
        weight_kg: float,
        from_city: Optional[str] = None,
        to_city: Optional[str] = None,
        coupon_code: Optional[str] = None,
    ) -> FareBreakdown:
        """Look up the inputs the fare engine needs and run it"""
        if distance_km < 0:
            raise InvalidArgument("Distance cannot be negative")
        if weight_kg <= 0:
            raise InvalidArgument("Weight must be a positive number")

        route = None
        if from_city and to_city:
            row = self.route_repo.find_route(self.db, from_city, to_city)
            if row is not None:
                route = self.route_repo.to_fare(row)

        code = normalize_coupon_code(coupon_code) or None
        coupon = None
        if code:
            row = self.coupon_repo.get_coupon_by_code(self.db, code)
            coupon = self.coupon_repo.to_rule(row) if row else None

        breakdown = calculate_fare(
            distance_km,
            weight_kg,
            rules=self.get_rule_set(),
            route=route,
            coupon_code=code,
            coupon=coupon,
            now=utcnow(),
        )
        if breakdown.coupon_message:
            logger.info(f"Coupon {code} ignored for fare quote: {breakdown.coupon_message}")
        return breakdown

    def quote_request(self, data: FareRequest) -> FareBreakdown:
        distance = data.distanceKm
        if distance is None:
            distance = haversine_km(data.pickup.lat, data.pickup.lon, data.drop.lat, data.drop.lon)
        return self.quote(distance, data.weight, data.from_city, data.to_city, data.couponCode)

    # ------------------------------------------------------------------
    # Pricing settings
    # ------------------------------------------------------------------

    def get_pricing_settings(self) -> dict:
        rules = self.settings_repo.get_rule_set(self.db)
        settings = self.settings_repo.get_settings(self.db)
        return {
            "baseRates": [tier.to_dict() for tier in rules.tiers],
            "gstPercent": rules.gst_percent,
            "updatedAt": settings.updated_at if settings else None,
        }

    def update_pricing_settings(self, data: PricingSettingsUpdate, updated_by: str) -> dict:
        if data.baseRates is None and data.gstPercent is None:
            raise InvalidArgument("Nothing to update: provide baseRates or gstPercent")

        base_rates = [rate.model_dump() for rate in data.baseRates] if data.baseRates is not None else None
        self.settings_repo.save_settings(self.db, base_rates, data.gstPercent, updated_by)
        self._rules = None
        logger.info(f"✅ Pricing settings updated by {updated_by}")
        return self.get_pricing_settings()

    # ------------------------------------------------------------------
    # City routes
    # ------------------------------------------------------------------

    def get_city_routes(self, include_inactive: bool = False) -> list[CityRoute]:
        return self.route_repo.get_routes(self.db, include_inactive)

    def upsert_city_route(self, data: CityRouteUpsert) -> CityRoute:
        route = self.route_repo.upsert_route(
            self.db, data.fromCity, data.toCity, data.baseFare, data.heavyFare, data.gstPercent
        )
        logger.info(f"✅ City route {route.from_city} <-> {route.to_city} saved")
        return route

    def deactivate_city_route(self, route_id: int) -> CityRoute:
        route = self.route_repo.get_route_by_id(self.db, route_id)
        if not route:
            raise NotFound("City route not found")
        return self.route_repo.deactivate_route(self.db, route)

    # ------------------------------------------------------------------
    # Coupons
    # ------------------------------------------------------------------

    def validate_coupon(self, code: str, order_amount: float) -> CouponCheck:
        normalized = normalize_coupon_code(code)
        row = self.coupon_repo.get_coupon_by_code(self.db, normalized) if normalized else None
        return evaluate_coupon(self.coupon_repo.to_rule(row) if row else None, order_amount, utcnow())

    def applicable_coupon(self, code: Optional[str], order_amount: Optional[float]) -> Optional[str]:
        """Normalized code when the coupon applies to an order of this amount, otherwise None"""
        normalized = normalize_coupon_code(code)
        if not normalized:
            return None
        check = self.validate_coupon(normalized, order_amount or 0)
        if not check.is_valid:
            logger.warning(f"⚠️ Coupon {normalized} dropped from booking: {check.message}")
            return None
        return normalized

    def redeem_coupon(self, code: Optional[str]) -> bool:
        """Count a coupon use on the current transaction; never raises for a lost race"""
        normalized = normalize_coupon_code(code)
        if not normalized:
            return False
        redeemed = self.coupon_repo.increment_usage(self.db, normalized)
        if not redeemed:
            logger.warning(f"⚠️ Coupon {normalized} was not counted (unknown code or usage limit reached)")
        return redeemed

    def get_coupon(self, coupon_id: int) -> Coupon:
        coupon = self.coupon_repo.get_coupon_by_id(self.db, coupon_id)
        if not coupon:
            raise NotFound("Coupon not found")
        return coupon

    def get_coupons(self, limit: int = 20, offset: int = 0) -> tuple[list[Coupon], bool]:
        return self.coupon_repo.get_coupons(self.db, limit, offset)

    def create_coupon(self, data: CouponCreate) -> Coupon:
        if self.coupon_repo.get_coupon_by_code(self.db, data.code):
            raise InvalidArgument("Coupon code already exists")

        coupon = self.coupon_repo.create_coupon(
            self.db,
            code=data.code,
            description=data.description,
            discount_type=data.discountType,
            discount_value=data.discountValue,
            min_order_amount=data.minOrderAmount,
            max_discount_amount=data.maxDiscountAmount,
            max_usage=data.maxUsage,
            valid_from=data.validFrom,
            valid_until=data.validUntil,
        )
        logger.info(f"✅ Coupon {coupon.code} created")
        return coupon

    def update_coupon(self, coupon_id: int, data: CouponUpdate) -> Coupon:
        coupon = self.get_coupon(coupon_id)

        field_map = {
            "description": "description",
            "discountType": "discount_type",
            "discountValue": "discount_value",
            "minOrderAmount": "min_order_amount",
            "maxDiscountAmount": "max_discount_amount",
            "maxUsage": "max_usage",
            "validFrom": "valid_from",
            "validUntil": "valid_until",
            "isActive": "is_active",
        }
        updates = {}
        for field, column in field_map.items():
            value = getattr(data, field)
            if value is not None:
                updates[column] = value

        discount_type = updates.get("discount_type", coupon.discount_type)
        discount_value = updates.get("discount_value", coupon.discount_value)
        if discount_type == "percentage" and not 1 <= discount_value <= 100:
            raise InvalidArgument("Percentage discount must be between 1 and 100")
        if discount_type == "fixed" and discount_value <= 0:
            raise InvalidArgument("Fixed discount must be greater than 0")

        valid_from = updates.get("valid_from", coupon.valid_from)
        valid_until = updates.get("valid_until", coupon.valid_until)
        if ensure_utc(valid_until) <= ensure_utc(valid_from):
            raise InvalidArgument("Valid until date must be after valid from date")

        return self.coupon_repo.update_coupon(self.db, coupon, **updates)

    def delete_coupon(self, coupon_id: int) -> None:
        coupon = self.get_coupon(coupon_id)
        self.coupon_repo.delete_coupon(self.db, coupon)
        logger.info(f"🗑️ Coupon {coupon.code} deleted")
