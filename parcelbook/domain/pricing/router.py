"""Pricing router - Fare quotes, pricing administration, city routes and coupons"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import CurrentUser, require_admin
from ...database import get_db
from ...models import CityRoute, Coupon
from .fare_engine import FareBreakdown
from .schemas import (
    CityRouteResponse,
    CityRouteUpsert,
    CouponCreate,
    CouponResponse,
    CouponUpdate,
    CouponValidateRequest,
    CouponValidateResponse,
    FareRequest,
    FareResponse,
    PricingSettingsResponse,
    PricingSettingsUpdate,
)
from .service import PricingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/map", tags=["Pricing"])
coupons_router = APIRouter(prefix="/coupons", tags=["Coupons"])


def get_pricing_service(db: Session = Depends(get_db)) -> PricingService:
    """Dependency injection for PricingService"""
    return PricingService(db)


def fare_response(breakdown: FareBreakdown) -> FareResponse:
    return FareResponse(
        distanceInKm=breakdown.distance_km,
        baseFare=breakdown.base_fare,
        gst=breakdown.gst,
        totalFare=breakdown.total_fare,
        discount=breakdown.discount,
        finalFare=breakdown.final_fare,
        couponCode=breakdown.coupon_code,
        couponApplied=breakdown.coupon_applied,
        couponMessage=breakdown.coupon_message,
        pricingSource=breakdown.pricing_source,
    )


def city_route_response(route: CityRoute) -> CityRouteResponse:
    return CityRouteResponse(
        id=route.id,
        fromCity=route.from_city,
        toCity=route.to_city,
        baseFare=route.base_fare,
        heavyFare=route.heavy_fare,
        gstPercent=route.gst_percent,
        isActive=route.is_active,
    )


def coupon_response(coupon: Coupon) -> CouponResponse:
    return CouponResponse(
        id=coupon.id,
        code=coupon.code,
        description=coupon.description,
        discountType=coupon.discount_type,
        discountValue=coupon.discount_value,
        minOrderAmount=coupon.min_order_amount,
        maxDiscountAmount=coupon.max_discount_amount,
        maxUsage=coupon.max_usage,
        currentUsage=coupon.current_usage,
        validFrom=coupon.valid_from,
        validUntil=coupon.valid_until,
        isActive=coupon.is_active,
    )


# ============================================================================
# FARE QUOTES
# ============================================================================


@router.post("/fare")
async def calculate_booking_fare(
    data: FareRequest,
    service: PricingService = Depends(get_pricing_service),
):
    """Quote a fare from pickup/drop coordinates (or an explicit distance) and weight"""
    breakdown = service.quote_request(data)
    return {"success": True, "data": fare_response(breakdown).model_dump()}


@router.get("/cities")
async def get_route_cities(service: PricingService = Depends(get_pricing_service)):
    """Cities served by a fixed-price route"""
    cities = set()
    for route in service.get_city_routes():
        cities.add(route.from_city)
        cities.add(route.to_city)
    return {"success": True, "data": {"cities": sorted(cities, key=str.lower)}}


# ============================================================================
# ADMIN - PRICING SETTINGS
# ============================================================================


@router.get("/admin/pricing")
async def get_pricing(
    _admin: CurrentUser = Depends(require_admin),
    service: PricingService = Depends(get_pricing_service),
):
    settings = PricingSettingsResponse(**service.get_pricing_settings())
    return {"success": True, "data": settings.model_dump()}


@router.put("/admin/pricing")
async def update_pricing(
    data: PricingSettingsUpdate,
    admin: CurrentUser = Depends(require_admin),
    service: PricingService = Depends(get_pricing_service),
):
    settings = PricingSettingsResponse(**service.update_pricing_settings(data, admin.uid))
    return {"success": True, "message": "Pricing settings updated", "data": settings.model_dump()}


# ============================================================================
# ADMIN - CITY ROUTES
# ============================================================================


@router.get("/admin/city-routes")
async def get_city_routes(
    includeInactive: bool = Query(False),
    _admin: CurrentUser = Depends(require_admin),
    service: PricingService = Depends(get_pricing_service),
):
    routes = service.get_city_routes(include_inactive=includeInactive)
    return {"success": True, "data": {"routes": [city_route_response(r).model_dump() for r in routes]}}


@router.put("/admin/city-routes")
async def upsert_city_route(
    data: CityRouteUpsert,
    _admin: CurrentUser = Depends(require_admin),
    service: PricingService = Depends(get_pricing_service),
):
    route = service.upsert_city_route(data)
    return {"success": True, "data": {"route": city_route_response(route).model_dump()}}


@router.delete("/admin/city-routes/{route_id}")
async def delete_city_route(
    route_id: int,
    _admin: CurrentUser = Depends(require_admin),
    service: PricingService = Depends(get_pricing_service),
):
    """Soft delete: the route is kept but no longer used for pricing"""
    route = service.deactivate_city_route(route_id)
    return {"success": True, "data": {"route": city_route_response(route).model_dump()}}


# ============================================================================
# COUPONS
# ============================================================================


@coupons_router.post("/validate")
async def validate_coupon(
    data: CouponValidateRequest,
    service: PricingService = Depends(get_pricing_service),
):
    """Public coupon check used by the checkout screen"""
    check = service.validate_coupon(data.code, data.orderAmount)
    result = CouponValidateResponse(
        isValid=check.is_valid, discountAmount=check.discount_amount, message=check.message
    )
    return {"success": True, "data": result.model_dump()}


@coupons_router.post("", status_code=201)
async def create_coupon(
    data: CouponCreate,
    _admin: CurrentUser = Depends(require_admin),
    service: PricingService = Depends(get_pricing_service),
):
    coupon = service.create_coupon(data)
    return {"success": True, "data": {"coupon": coupon_response(coupon).model_dump()}}


@coupons_router.get("")
async def get_coupons(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    _admin: CurrentUser = Depends(require_admin),
    service: PricingService = Depends(get_pricing_service),
):
    coupons, has_more = service.get_coupons(limit, offset)
    return {
        "success": True,
        "data": {"coupons": [coupon_response(c).model_dump() for c in coupons], "hasMore": has_more},
    }


@coupons_router.get("/{coupon_id}")
async def get_coupon(
    coupon_id: int,
    _admin: CurrentUser = Depends(require_admin),
    service: PricingService = Depends(get_pricing_service),
):
    coupon = service.get_coupon(coupon_id)
    return {"success": True, "data": {"coupon": coupon_response(coupon).model_dump()}}


@coupons_router.put("/{coupon_id}")
async def update_coupon(
    coupon_id: int,
    data: CouponUpdate,
    _admin: CurrentUser = Depends(require_admin),
    service: PricingService = Depends(get_pricing_service),
):
    coupon = service.update_coupon(coupon_id, data)
    return {"success": True, "data": {"coupon": coupon_response(coupon).model_dump()}}


@coupons_router.delete("/{coupon_id}")
async def delete_coupon(
    coupon_id: int,
    _admin: CurrentUser = Depends(require_admin),
    service: PricingService = Depends(get_pricing_service),
):
    service.delete_coupon(coupon_id)
    return {"success": True, "message": "Coupon deleted"}
