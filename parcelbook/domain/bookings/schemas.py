"""Booking domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from ...models import Booking
from ...shared.validators import normalize_coupon_code, validate_indian_phone, validate_pincode


class Address(BaseModel):
    """Schema for a pickup or drop address"""

    name: str = Field(min_length=1, max_length=255)
    phone: str
    houseNumber: Optional[str] = None
    street: Optional[str] = None
    address: str = Field(min_length=1)
    city: str = Field(min_length=1, max_length=100)
    state: str = Field(min_length=1, max_length=100)
    pincode: str
    landmark: Optional[str] = None

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        return validate_indian_phone(v)

    @field_validator("pincode")
    @classmethod
    def check_pincode(cls, v):
        return validate_pincode(v)

    @field_validator("name", "address", "city", "state")
    @classmethod
    def strip_required(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class Dimensions(BaseModel):
    length: float = Field(gt=0)
    width: float = Field(gt=0)
    height: float = Field(gt=0)


class ParcelDetails(BaseModel):
    """Schema for the parcel being shipped"""

    type: str = Field(min_length=1, max_length=50)
    weight: float = Field(gt=0)
    dimensions: Optional[Dimensions] = None
    description: Optional[str] = None
    value: Optional[float] = Field(default=None, ge=0)


class BookingCreate(BaseModel):
    """Schema for creating a booking (also the payload staged for online payments)"""

    pickup: Address
    drop: Address
    parcelDetails: ParcelDetails
    fare: Optional[int] = Field(default=None, ge=0)
    paymentMethod: Literal["cod", "online"] = "cod"
    couponCode: Optional[str] = None

    @field_validator("couponCode")
    @classmethod
    def normalize_coupon(cls, v):
        return normalize_coupon_code(v) or None

    def payload(self) -> dict:
        """Document stored on a staged booking"""
        return {
            "pickup": self.pickup.model_dump(exclude_none=True),
            "drop": self.drop.model_dump(exclude_none=True),
            "parcelDetails": self.parcelDetails.model_dump(exclude_none=True),
            "paymentMethod": self.paymentMethod,
        }


class BookingStatusUpdate(BaseModel):
    """Schema for changing a booking's status"""

    status: str
    returnReason: Optional[str] = None


class PaymentStatusUpdate(BaseModel):
    """Schema for changing a booking's payment status"""

    paymentStatus: str


class FareUpdate(BaseModel):
    fare: int


class ProofOfDeliveryCreate(BaseModel):
    """Schema for capturing a delivery signature"""

    signature: str = Field(min_length=1)
    signedBy: str = Field(min_length=1, max_length=255)


class BookingResponse(BaseModel):
    """Schema for booking response"""

    id: str
    trackingNumber: str
    userId: str
    pickup: dict
    drop: dict
    parcelDetails: dict
    status: str
    paymentStatus: str
    paymentMethod: str
    fare: Optional[int] = None
    couponCode: Optional[str] = None
    podSignedBy: Optional[str] = None
    podCapturedAt: Optional[datetime] = None
    returnReason: Optional[str] = None
    returnedAt: Optional[datetime] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingResponse":
        return cls(
            id=booking.id,
            trackingNumber=booking.tracking_number,
            userId=booking.user_id,
            pickup=booking.pickup,
            drop=booking.drop,
            parcelDetails=booking.parcel_details,
            status=booking.status,
            paymentStatus=booking.payment_status,
            paymentMethod=booking.payment_method,
            fare=booking.fare,
            couponCode=booking.coupon_code,
            podSignedBy=booking.pod_signed_by,
            podCapturedAt=booking.pod_captured_at,
            returnReason=booking.return_reason,
            returnedAt=booking.returned_at,
            createdAt=booking.created_at,
            updatedAt=booking.updated_at,
        )


class TrackingResponse(BaseModel):
    """Public tracking view - no addresses or contact details"""

    trackingNumber: str
    status: str
    pickupCity: Optional[str] = None
    dropCity: Optional[str] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None

    @classmethod
    def from_booking(cls, booking: Booking) -> "TrackingResponse":
        return cls(
            trackingNumber=booking.tracking_number,
            status=booking.status,
            pickupCity=(booking.pickup or {}).get("city"),
            dropCity=(booking.drop or {}).get("city"),
            createdAt=booking.created_at,
            updatedAt=booking.updated_at,
        )
