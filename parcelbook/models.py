from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Integer,
    String,
    Text,
)
from sqlalchemy.sql import func

from .database import Base


class Booking(Base):
    __tablename__ = "bookings"

    # PREFIX-DD-MM-YYYY-NNN, also used as the tracking number
    id = Column(String(40), primary_key=True)
    user_id = Column(String(128), index=True, nullable=False)
    pickup = Column(JSON, nullable=False)  # Address document
    drop = Column(JSON, nullable=False)  # Address document
    parcel_details = Column(JSON, nullable=False)
    status = Column(String(20), nullable=False, index=True)  # PendingPayment, Created, Picked, ...
    payment_status = Column(String(20), nullable=False, index=True)  # pending, paid, failed, refunded
    payment_method = Column(String(10), nullable=False, default="cod")  # cod, online
    fare = Column(Integer, nullable=True)
    coupon_code = Column(String(50), nullable=True)

    # Proof of delivery
    pod_signature = Column(Text, nullable=True)
    pod_signed_by = Column(String(255), nullable=True)
    pod_captured_at = Column(DateTime(timezone=True), nullable=True)

    return_reason = Column(Text, nullable=True)
    returned_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def tracking_number(self) -> str:
        return self.id


class BookingSequence(Base):
    """Last booking number issued per calendar day"""

    __tablename__ = "booking_sequences"

    day = Column(Date, primary_key=True)
    value = Column(Integer, nullable=False, default=0)


class StagedBooking(Base):
    """Booking data held until the online payment for it settles"""

    __tablename__ = "staged_bookings"

    # Derived from the merchant reference id
    id = Column(String(160), primary_key=True)
    merchant_reference_id = Column(String(150), unique=True, nullable=False)
    user_id = Column(String(128), index=True, nullable=False)
    payload = Column(JSON, nullable=False)  # pickup, drop, parcelDetails, paymentMethod
    fare = Column(Integer, nullable=False)
    coupon_code = Column(String(50), nullable=True)
    booking_id = Column(String(40), nullable=True)  # Set once the permanent booking exists
    claimed_at = Column(DateTime(timezone=True), nullable=True)  # Set by the materializing path
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class PaymentAttempt(Base):
    """One row per merchant reference id handed to the gateway"""

    __tablename__ = "payment_attempts"

    merchant_reference_id = Column(String(150), primary_key=True)
    kind = Column(String(10), nullable=False)  # staged, booking
    booking_id = Column(String(40), nullable=True, index=True)
    staged_booking_id = Column(String(160), nullable=True)
    user_id = Column(String(128), index=True, nullable=False)
    amount = Column(Integer, nullable=False)
    status = Column(String(10), nullable=False, default="INITIATED")  # INITIATED, PENDING, SUCCESS, FAILED
    gateway_reference_id = Column(String(150), nullable=True)
    pay_page_url = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class PaymentOutbox(Base):
    """Confirmed payment outcomes whose booking write failed and must be replayed"""

    __tablename__ = "payment_outbox"

    id = Column(Integer, primary_key=True, autoincrement=True)
    merchant_reference_id = Column(String(150), index=True, nullable=False)
    outcome = Column(String(10), nullable=False)
    last_error = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime(timezone=True), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(50), unique=True, index=True, nullable=False)  # Stored uppercase
    description = Column(Text, nullable=True)
    discount_type = Column(String(20), nullable=False)  # percentage, fixed
    discount_value = Column(Float, nullable=False)
    min_order_amount = Column(Float, nullable=True)
    max_discount_amount = Column(Float, nullable=True)
    max_usage = Column(Integer, nullable=True)
    current_usage = Column(Integer, nullable=False, default=0)
    valid_from = Column(DateTime(timezone=True), nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class PricingSettings(Base):
    __tablename__ = "pricing_settings"

    id = Column(Integer, primary_key=True, default=1)
    # [{"minKm", "maxKm", "maxWeight", "fare", "applyGst"}, ...] in evaluation order
    base_rates = Column(JSON, nullable=False)
    gst_percent = Column(Float, nullable=False, default=18)
    updated_by = Column(String(128), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class CityRoute(Base):
    __tablename__ = "city_routes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    from_city = Column(String(100), nullable=False)
    to_city = Column(String(100), nullable=False)
    # Lowercased, trimmed names used for lookups
    from_key = Column(String(100), index=True, nullable=False)
    to_key = Column(String(100), index=True, nullable=False)
    base_fare = Column(Integer, nullable=False)  # up to 3kg
    heavy_fare = Column(Integer, nullable=False)  # above 3kg
    gst_percent = Column(Float, nullable=False, default=18)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
