"""Pricing repository - Database operations for pricing settings, city routes and coupons"""

import logging
from typing import Optional

from sqlalchemy import and_, or_, update
from sqlalchemy.orm import Session

from ...models import CityRoute, Coupon, PricingSettings
from ...shared.clock import ensure_utc, utcnow
from ...shared.validators import normalize_city
from .fare_engine import DEFAULT_PRICING, CityRouteFare, CouponRule, PricingRuleSet, PricingTier

logger = logging.getLogger(__name__)

PRICING_SETTINGS_ID = 1


class PricingSettingsRepository:
    """Single-row pricing configuration"""

    @staticmethod
    def get_settings(db: Session) -> Optional[PricingSettings]:
        return db.query(PricingSettings).filter(PricingSettings.id == PRICING_SETTINGS_ID).first()

    @staticmethod
    def get_rule_set(db: Session) -> PricingRuleSet:
        """Current rule set, falling back to the defaults when none is stored"""
        settings = PricingSettingsRepository.get_settings(db)
        if settings is None:
            return DEFAULT_PRICING

        tiers = settings.base_rates or [tier.to_dict() for tier in DEFAULT_PRICING.tiers]
        gst_percent = settings.gst_percent if settings.gst_percent is not None else DEFAULT_PRICING.gst_percent
        return PricingRuleSet(
            tiers=tuple(PricingTier.from_dict(tier) for tier in tiers),
            gst_percent=gst_percent,
        )

    @staticmethod
    def save_settings(
        db: Session, base_rates: Optional[list[dict]], gst_percent: Optional[float], updated_by: str
    ) -> PricingSettings:
        settings = PricingSettingsRepository.get_settings(db)
        if settings is None:
            settings = PricingSettings(
                id=PRICING_SETTINGS_ID,
                base_rates=[tier.to_dict() for tier in DEFAULT_PRICING.tiers],
                gst_percent=DEFAULT_PRICING.gst_percent,
            )
            db.add(settings)

        if base_rates is not None:
            settings.base_rates = base_rates
        if gst_percent is not None:
            settings.gst_percent = gst_percent
        settings.updated_by = updated_by
        settings.updated_at = utcnow()

        db.commit()
        db.refresh(settings)
        return settings


class CityRouteRepository:
    """Repository for fixed-price city routes"""

    @staticmethod
    def find_route(db: Session, from_city: str, to_city: str) -> Optional[CityRoute]:
        """Active route for a city pair in either direction"""
        from_key = normalize_city(from_city)
        to_key = normalize_city(to_city)
        if not from_key or not to_key:
            return None

        return (
            db.query(CityRoute)
            .filter(
                CityRoute.is_active.is_(True),
                or_(
                    and_(CityRoute.from_key == from_key, CityRoute.to_key == to_key),
                    and_(CityRoute.from_key == to_key, CityRoute.to_key == from_key),
                ),
            )
            .first()
        )

    @staticmethod
    def get_route_by_id(db: Session, route_id: int) -> Optional[CityRoute]:
        return db.query(CityRoute).filter(CityRoute.id == route_id).first()

    @staticmethod
    def get_routes(db: Session, include_inactive: bool = False) -> list[CityRoute]:
        query = db.query(CityRoute)
        if not include_inactive:
            query = query.filter(CityRoute.is_active.is_(True))
        return query.order_by(CityRoute.from_key, CityRoute.to_key).all()

    @staticmethod
    def upsert_route(
        db: Session, from_city: str, to_city: str, base_fare: int, heavy_fare: int, gst_percent: float
    ) -> CityRoute:
        """Create or replace the route for a city pair (either direction)"""
        from_key = normalize_city(from_city)
        to_key = normalize_city(to_city)
        route = (
            db.query(CityRoute)
            .filter(
                or_(
                    and_(CityRoute.from_key == from_key, CityRoute.to_key == to_key),
                    and_(CityRoute.from_key == to_key, CityRoute.to_key == from_key),
                )
            )
            .first()
        )
        if route is None:
            route = CityRoute(from_key=from_key, to_key=to_key)
            db.add(route)

        route.from_city = from_city.strip()
        route.to_city = to_city.strip()
        route.from_key = from_key
        route.to_key = to_key
        route.base_fare = base_fare
        route.heavy_fare = heavy_fare
        route.gst_percent = gst_percent
        route.is_active = True
        route.updated_at = utcnow()

        db.commit()
        db.refresh(route)
        return route

    @staticmethod
    def deactivate_route(db: Session, route: CityRoute) -> CityRoute:
        route.is_active = False
        route.updated_at = utcnow()
        db.commit()
        db.refresh(route)
        return route

    @staticmethod
    def to_fare(route: CityRoute) -> CityRouteFare:
        return CityRouteFare(
            from_city=route.from_city,
            to_city=route.to_city,
            base_fare=route.base_fare,
            heavy_fare=route.heavy_fare,
            gst_percent=route.gst_percent,
        )


class CouponRepository:
    """Repository for coupon database operations"""

    @staticmethod
    def get_coupon_by_code(db: Session, code: str) -> Optional[Coupon]:
        return db.query(Coupon).filter(Coupon.code == code).first()

    @staticmethod
    def get_coupon_by_id(db: Session, coupon_id: int) -> Optional[Coupon]:
        return db.query(Coupon).filter(Coupon.id == coupon_id).first()

    @staticmethod
    def get_coupons(db: Session, limit: int = 20, offset: int = 0) -> tuple[list[Coupon], bool]:
        rows = db.query(Coupon).order_by(Coupon.created_at.desc(), Coupon.id.desc()).offset(offset).limit(limit + 1).all()
        return rows[:limit], len(rows) > limit

    @staticmethod
    def create_coupon(db: Session, **coupon_data) -> Coupon:
        now = utcnow()
        coupon = Coupon(current_usage=0, is_active=True, created_at=now, updated_at=now, **coupon_data)
        db.add(coupon)
        db.commit()
        db.refresh(coupon)
        return coupon

    @staticmethod
    def update_coupon(db: Session, coupon: Coupon, **updates) -> Coupon:
        for key, value in updates.items():
            if hasattr(coupon, key):
                setattr(coupon, key, value)
        coupon.updated_at = utcnow()
        db.commit()
        db.refresh(coupon)
        return coupon

    @staticmethod
    def delete_coupon(db: Session, coupon: Coupon) -> None:
        db.delete(coupon)
        db.commit()

    @staticmethod
    def increment_usage(db: Session, code: str) -> bool:
        """
        Count one use of a coupon without committing.

        The increment only applies while usage is below the cap, so concurrent
        redemptions can never push current_usage past max_usage.
        """
        result = db.execute(
            update(Coupon)
            .where(
                Coupon.code == code,
                or_(Coupon.max_usage.is_(None), Coupon.current_usage < Coupon.max_usage),
            )
            .values(current_usage=Coupon.current_usage + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def to_rule(coupon: Coupon) -> CouponRule:
        return CouponRule(
            code=coupon.code,
            discount_type=coupon.discount_type,
            discount_value=coupon.discount_value,
            valid_from=ensure_utc(coupon.valid_from),
            valid_until=ensure_utc(coupon.valid_until),
            is_active=coupon.is_active,
            min_order_amount=coupon.min_order_amount,
            max_discount_amount=coupon.max_discount_amount,
            max_usage=coupon.max_usage,
            current_usage=coupon.current_usage or 0,
        )
