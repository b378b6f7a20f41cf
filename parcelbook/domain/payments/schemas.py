"""Payment domain schemas - Pydantic models for validation"""

from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from ...shared.validators import validate_indian_phone
from ..bookings.schemas import BookingCreate


class PaymentCreateRequest(BaseModel):
    """Schema for requesting a payment page for an existing booking or new booking data"""

    bookingId: Optional[str] = None
    bookingData: Optional[BookingCreate] = None
    customerName: str = Field(min_length=1, max_length=255)
    customerEmail: EmailStr
    customerMobile: str

    @field_validator("customerMobile")
    @classmethod
    def validate_mobile(cls, v):
        # Paygic expects the bare 10 digit number
        return validate_indian_phone(v)[-10:]

    @model_validator(mode="after")
    def require_booking_source(self):
        if not self.bookingId and self.bookingData is None:
            raise ValueError("Either bookingId or bookingData is required")
        if self.bookingId and self.bookingData is not None:
            raise ValueError("Provide either bookingId or bookingData, not both")
        return self


class PaymentStatusRequest(BaseModel):
    """Schema for polling the status of a payment"""

    merchantReferenceId: str = Field(min_length=1)
