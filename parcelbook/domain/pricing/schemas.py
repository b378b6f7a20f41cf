"""Pricing domain schemas - Pydantic models for fares, pricing settings, city routes and coupons"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ...shared.clock import ensure_utc
from ...shared.validators import COUPON_CODE_PATTERN, normalize_coupon_code


class Location(BaseModel):
    """Schema for a map point"""

    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)
    city: Optional[str] = None


class FareRequest(BaseModel):
    """Schema for a fare quote request"""

    pickup: Optional[Location] = None
    drop: Optional[Location] = None
    distanceKm: Optional[float] = Field(default=None, ge=0)
    weight: float = Field(gt=0)
    pickupCity: Optional[str] = None
    dropCity: Optional[str] = None
    couponCode: Optional[str] = None

    @model_validator(mode="after")
    def require_distance_source(self):
        if self.distanceKm is None and (self.pickup is None or self.drop is None):
            raise ValueError("Pickup and drop coordinates (lat, lon) are required")
        return self

    @property
    def from_city(self) -> Optional[str]:
        return self.pickupCity or (self.pickup.city if self.pickup else None)

    @property
    def to_city(self) -> Optional[str]:
        return self.dropCity or (self.drop.city if self.drop else None)


class FareResponse(BaseModel):
    """Schema for a fare breakdown"""

    distanceInKm: float
    baseFare: int
    gst: int
    totalFare: int
    discount: int = 0
    finalFare: int
    couponCode: Optional[str] = None
    couponApplied: bool = False
    couponMessage: Optional[str] = None
    pricingSource: str


class PricingTierSchema(BaseModel):
    """Schema for one distance/weight pricing tier"""

    minKm: float = Field(ge=0)
    maxKm: float
    maxWeight: float = Field(gt=0)
    fare: int = Field(ge=0)
    applyGst: bool = True

    @model_validator(mode="after")
    def check_range(self):
        if self.maxKm < self.minKm:
            raise ValueError("maxKm must be greater than or equal to minKm")
        return self


class PricingSettingsUpdate(BaseModel):
    """Schema for updating pricing settings"""

    baseRates: Optional[list[PricingTierSchema]] = None
    gstPercent: Optional[float] = Field(default=None, ge=0, le=100)

    @field_validator("baseRates")
    @classmethod
    def validate_rates(cls, v):
        if v is not None and len(v) == 0:
            raise ValueError("baseRates must contain at least one tier")
        return v


class PricingSettingsResponse(BaseModel):
    """Schema for pricing settings response"""

    baseRates: list[PricingTierSchema]
    gstPercent: float
    updatedAt: Optional[datetime] = None


class CityRouteUpsert(BaseModel):
    """Schema for creating or replacing a city route"""

    fromCity: str = Field(min_length=1, max_length=100)
    toCity: str = Field(min_length=1, max_length=100)
    baseFare: int = Field(ge=0)
    heavyFare: int = Field(ge=0)
    gstPercent: float = Field(default=18, ge=0, le=100)

    @model_validator(mode="after")
    def check_cities(self):
        if not self.fromCity.strip() or not self.toCity.strip():
            raise ValueError("fromCity and toCity are required")
        if self.fromCity.strip().lower() == self.toCity.strip().lower():
            raise ValueError("fromCity and toCity must be different")
        return self


class CityRouteResponse(BaseModel):
    """Schema for city route response"""

    id: int
    fromCity: str
    toCity: str
    baseFare: int
    heavyFare: int
    gstPercent: float
    isActive: bool


class CouponValidateRequest(BaseModel):
    """Schema for validating a coupon against an order amount"""

    code: str = Field(min_length=1)
    orderAmount: float = Field(ge=0)


class CouponValidateResponse(BaseModel):
    """Schema for coupon validation result"""

    isValid: bool
    discountAmount: int
    message: Optional[str] = None


class CouponCreate(BaseModel):
    """Schema for creating a coupon"""

    code: str
    description: Optional[str] = None
    discountType: Literal["percentage", "fixed"]
    discountValue: float
    minOrderAmount: Optional[float] = Field(default=None, ge=0)
    maxDiscountAmount: Optional[float] = Field(default=None, gt=0)
    maxUsage: Optional[int] = Field(default=None, ge=1)
    validFrom: datetime
    validUntil: datetime

    @field_validator("code")
    @classmethod
    def validate_code(cls, v):
        code = normalize_coupon_code(v)
        if not COUPON_CODE_PATTERN.match(code):
            raise ValueError("Coupon code must be uppercase alphanumeric")
        return code

    @field_validator("validFrom", "validUntil")
    @classmethod
    def normalize_dates(cls, v):
        return ensure_utc(v)

    @model_validator(mode="after")
    def check_discount(self):
        if self.discountType == "percentage" and not 1 <= self.discountValue <= 100:
            raise ValueError("Percentage discount must be between 1 and 100")
        if self.discountType == "fixed" and self.discountValue <= 0:
            raise ValueError("Fixed discount must be greater than 0")
        if self.validUntil <= self.validFrom:
            raise ValueError("Valid until date must be after valid from date")
        return self


class CouponUpdate(BaseModel):
    """Schema for updating a coupon"""

    description: Optional[str] = None
    discountType: Optional[Literal["percentage", "fixed"]] = None
    discountValue: Optional[float] = None
    minOrderAmount: Optional[float] = Field(default=None, ge=0)
    maxDiscountAmount: Optional[float] = Field(default=None, gt=0)
    maxUsage: Optional[int] = Field(default=None, ge=1)
    validFrom: Optional[datetime] = None
    validUntil: Optional[datetime] = None
    isActive: Optional[bool] = None

    @field_validator("validFrom", "validUntil")
    @classmethod
    def normalize_dates(cls, v):
        return ensure_utc(v)


class CouponResponse(BaseModel):
    """Schema for coupon response"""

    id: int
    code: str
    description: Optional[str] = None
    discountType: str
    discountValue: float
    minOrderAmount: Optional[float] = None
    maxDiscountAmount: Optional[float] = None
    maxUsage: Optional[int] = None
    currentUsage: int
    validFrom: datetime
    validUntil: datetime
    isActive: bool
