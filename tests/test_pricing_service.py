from datetime import timedelta

import pytest

from parcelbook.domain.pricing.schemas import (
    CityRouteUpsert,
    CouponCreate,
    CouponUpdate,
    PricingSettingsUpdate,
)
from parcelbook.domain.pricing.service import PricingService
from parcelbook.errors import InvalidArgument, NotFound
from parcelbook.models import Coupon
from parcelbook.shared.clock import utcnow


def create_coupon(service, code="SAVE10", **overrides):
    values = {
        "code": code,
        "discountType": "percentage",
        "discountValue": 10,
        "validFrom": utcnow() - timedelta(days=1),
        "validUntil": utcnow() + timedelta(days=30),
    }
    values.update(overrides)
    return service.create_coupon(CouponCreate(**values))


class TestQuotes:
    def test_defaults_without_stored_settings(self, db):
        fare = PricingService(db).quote(10, 2)
        assert fare.total_fare == 50

    def test_stored_settings_replace_defaults(self, db):
        service = PricingService(db)
        service.update_pricing_settings(
            PricingSettingsUpdate(
                baseRates=[{"minKm": 0, "maxKm": 100, "maxWeight": 10, "fare": 120, "applyGst": True}],
                gstPercent=5,
            ),
            "admin-1",
        )
        fare = PricingService(db).quote(30, 2)
        assert (fare.base_fare, fare.gst, fare.total_fare) == (120, 6, 126)

    def test_city_route_matches_either_direction(self, db):
        service = PricingService(db)
        service.upsert_city_route(CityRouteUpsert(fromCity="Mumbai", toCity="Pune", baseFare=800, heavyFare=1200))

        forward = service.quote(150, 2, "mumbai", " PUNE ")
        reverse = service.quote(150, 2, "Pune", "Mumbai")
        assert forward.total_fare == reverse.total_fare == 944
        assert forward.pricing_source == "city_route"

    def test_inactive_route_is_ignored(self, db):
        service = PricingService(db)
        route = service.upsert_city_route(
            CityRouteUpsert(fromCity="Mumbai", toCity="Pune", baseFare=800, heavyFare=1200)
        )
        service.deactivate_city_route(route.id)
        assert service.quote(10, 2, "Mumbai", "Pune").pricing_source == "distance"

    def test_coupon_applies_to_quote(self, db):
        service = PricingService(db)
        service.upsert_city_route(CityRouteUpsert(fromCity="Mumbai", toCity="Pune", baseFare=800, heavyFare=1200))
        create_coupon(service)

        fare = service.quote(150, 2, "Mumbai", "Pune", coupon_code=" save10 ")
        assert fare.discount == 94
        assert fare.final_fare == 850

    def test_rejects_bad_inputs(self, db):
        service = PricingService(db)
        with pytest.raises(InvalidArgument):
            service.quote(-1, 2)
        with pytest.raises(InvalidArgument):
            service.quote(10, 0)

    def test_settings_update_needs_a_field(self, db):
        with pytest.raises(InvalidArgument):
            PricingService(db).update_pricing_settings(PricingSettingsUpdate(), "admin-1")


class TestCoupons:
    def test_duplicate_code_rejected(self, db):
        service = PricingService(db)
        create_coupon(service)
        with pytest.raises(InvalidArgument, match="already exists"):
            create_coupon(service, code="save10")

    def test_validate_coupon(self, db):
        service = PricingService(db)
        create_coupon(service, maxDiscountAmount=50)
        check = service.validate_coupon("save10", 944)
        assert check.is_valid
        assert check.discount_amount == 50

    def test_validate_unknown_coupon(self, db):
        check = PricingService(db).validate_coupon("NOPE", 100)
        assert not check.is_valid
        assert check.message == "Invalid coupon code"

    def test_redeem_stops_at_usage_limit(self, db):
        service = PricingService(db)
        create_coupon(service, maxUsage=2)

        assert service.redeem_coupon("SAVE10") is True
        assert service.redeem_coupon("SAVE10") is True
        assert service.redeem_coupon("SAVE10") is False
        db.commit()

        db.expire_all()
        assert db.query(Coupon).filter(Coupon.code == "SAVE10").one().current_usage == 2

    def test_update_revalidates_discount(self, db):
        service = PricingService(db)
        coupon = create_coupon(service)
        with pytest.raises(InvalidArgument):
            service.update_coupon(coupon.id, CouponUpdate(discountValue=150))

        updated = service.update_coupon(coupon.id, CouponUpdate(discountValue=20, isActive=False))
        assert updated.discount_value == 20
        assert updated.is_active is False

    def test_update_rejects_inverted_dates(self, db):
        service = PricingService(db)
        coupon = create_coupon(service)
        with pytest.raises(InvalidArgument):
            service.update_coupon(coupon.id, CouponUpdate(validUntil=utcnow() - timedelta(days=5)))

    def test_delete_coupon(self, db):
        service = PricingService(db)
        coupon = create_coupon(service)
        service.delete_coupon(coupon.id)
        with pytest.raises(NotFound):
            service.get_coupon(coupon.id)
