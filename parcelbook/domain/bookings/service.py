"""Booking service - Business logic for the booking lifecycle"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...auth import CurrentUser, ensure_owner_or_admin
from ...errors import Forbidden, InternalError, InvalidArgument, NotFound
from ...models import Booking, StagedBooking
from ...services.notification_service import notify_booking_status, notify_payment_status
from ...shared.clock import utcnow
from ..pricing.service import PricingService
from . import state_machine as sm
from .repository import BookingRepository, BookingSequenceRepository
from .schemas import BookingCreate

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class BookingService:
    """Service layer for booking business logic"""

    def __init__(self, db: Session, notifier=None):
        self.db = db
        self.notifier = notifier
        self.repo = BookingRepository()
        self.sequence = BookingSequenceRepository()
        self.pricing = PricingService(db)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def notify_transition(self, booking: Booking, transition: sm.Transition) -> None:
        """Fire-and-forget notifications for whichever fields actually changed"""
        if self.notifier is None:
            return
        if transition.status_changed:
            notify_booking_status(self.notifier, booking, transition.old_status, transition.new_status)
        if transition.payment_status_changed:
            notify_payment_status(
                self.notifier, booking, transition.old_payment_status, transition.new_payment_status
            )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.repo.get_booking_by_id(self.db, booking_id)
        if not booking:
            raise NotFound("Booking not found")
        return booking

    def get_booking_for_user(self, booking_id: str, user: CurrentUser) -> Booking:
        booking = self.get_booking(booking_id)
        ensure_owner_or_admin(booking.user_id, user, "You do not have access to this booking")
        return booking

    def get_booking_by_tracking_number(self, tracking_number: str) -> Booking:
        booking = self.repo.get_booking_by_tracking_number(self.db, tracking_number)
        if not booking:
            raise NotFound("Booking not found")
        return booking

    def get_user_bookings(self, user_id: str, limit: int = 20, cursor: Optional[str] = None) -> dict:
        if not user_id or not user_id.strip():
            raise InvalidArgument("Invalid user ID")
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        bookings, has_more = self.repo.get_user_bookings(self.db, user_id, limit, cursor)
        return self._page(bookings, has_more)

    def get_all_bookings(
        self,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> dict:
        self._check_filters(status, payment_status)
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        bookings, has_more = self.repo.get_all_bookings(self.db, status, payment_status, limit, cursor)
        return self._page(bookings, has_more)

    def search_bookings(
        self, query: str, status: Optional[str] = None, payment_status: Optional[str] = None
    ) -> list[Booking]:
        if not query or not query.strip():
            raise InvalidArgument("Search query is required")
        self._check_filters(status, payment_status)
        return self.repo.search_bookings(self.db, query, status, payment_status)

    def get_booking_statistics(self) -> dict:
        return self.repo.get_booking_statistics(self.db)

    @staticmethod
    def _page(bookings: list[Booking], has_more: bool) -> dict:
        return {
            "bookings": bookings,
            "hasMore": has_more,
            "lastDocId": bookings[-1].id if bookings else None,
        }

    @staticmethod
    def _check_filters(status: Optional[str], payment_status: Optional[str]) -> None:
        if status and status not in sm.BOOKING_STATUSES:
            raise InvalidArgument(f"Invalid status filter: {status}")
        if payment_status and payment_status not in sm.PAYMENT_STATUSES:
            raise InvalidArgument(f"Invalid payment status filter: {payment_status}")

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_booking(self, data: BookingCreate, user: CurrentUser) -> Booking:
        """
        Create a cash-on-delivery booking.

        Online bookings only come into existence once their payment settles,
        through the payments flow.
        """
        if data.paymentMethod == sm.METHOD_ONLINE:
            raise InvalidArgument("Online bookings must be created through /payments/create")

        logger.info(f"📥 Creating COD booking for user {user.uid}")
        status, payment_status = sm.initial_state(sm.METHOD_COD)
        coupon_code = self.pricing.applicable_coupon(data.couponCode, data.fare)

        try:
            booking_id = self.sequence.next_booking_id(self.db)
            booking = self.repo.add_booking(
                self.db,
                id=booking_id,
                user_id=user.uid,
                pickup=data.pickup.model_dump(exclude_none=True),
                drop=data.drop.model_dump(exclude_none=True),
                parcel_details=data.parcelDetails.model_dump(exclude_none=True),
                status=status,
                payment_status=payment_status,
                payment_method=sm.METHOD_COD,
                fare=data.fare,
                coupon_code=coupon_code,
            )
            if coupon_code:
                self.pricing.redeem_coupon(coupon_code)
            self.db.commit()
            self.db.refresh(booking)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to create booking for user {user.uid}: {e}")
            raise InternalError("Failed to create booking") from e

        logger.info(f"✅ Booking {booking.id} created ({status}/{payment_status})")
        if self.notifier is not None:
            notify_booking_status(self.notifier, booking, None, status)
        return booking

    def add_paid_online_booking(self, booking_id: str, staged: StagedBooking) -> tuple[Booking, sm.Transition]:
        """
        Add the permanent booking for a staged record whose payment succeeded.

        The booking is written directly in its post-payment state. Nothing is
        committed; the caller owns the transaction.
        """
        status, payment_status = sm.initial_state(sm.METHOD_ONLINE)
        transition = sm.apply_payment_outcome(status, payment_status, sm.OUTCOME_SUCCESS)

        payload = staged.payload or {}
        coupon_code = self.pricing.applicable_coupon(staged.coupon_code, staged.fare)
        booking = self.repo.add_booking(
            self.db,
            id=booking_id,
            user_id=staged.user_id,
            pickup=payload["pickup"],
            drop=payload["drop"],
            parcel_details=payload["parcelDetails"],
            status=transition.new_status,
            payment_status=transition.new_payment_status,
            payment_method=sm.METHOD_ONLINE,
            fare=staged.fare,
            coupon_code=coupon_code,
        )
        if coupon_code:
            self.pricing.redeem_coupon(coupon_code)
        return booking, transition

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def update_status(
        self,
        booking_id: str,
        new_status: str,
        user: CurrentUser,
        return_reason: Optional[str] = None,
    ) -> Booking:
        booking = self.get_booking(booking_id)

        # Customers may only confirm their own booking; everything else is operator work
        if not user.is_admin and (booking.user_id != user.uid or new_status != sm.CREATED):
            raise Forbidden("Unauthorized to update booking status")

        transition = sm.apply_status(booking.status, booking.payment_status, new_status, return_reason)
        if not transition.changed:
            return booking

        extra = {}
        if transition.new_status == sm.RETURNED:
            extra = {"return_reason": return_reason.strip(), "returned_at": utcnow()}

        booking = self.repo.apply_transition(self.db, booking, transition, **extra)
        logger.info(f"✅ Booking {booking.id} status {transition.old_status} → {transition.new_status}")
        self.notify_transition(booking, transition)
        return booking

    def update_payment_status(self, booking_id: str, new_payment_status: str) -> Booking:
        """Operator-driven payment status change (e.g. COD collected, refunds)"""
        booking = self.get_booking(booking_id)
        transition = sm.apply_payment_status(booking.status, booking.payment_status, new_payment_status)
        if not transition.changed:
            return booking

        booking = self.repo.apply_transition(self.db, booking, transition)
        logger.info(
            f"✅ Booking {booking.id} payment {transition.old_payment_status} → {transition.new_payment_status}"
        )
        self.notify_transition(booking, transition)
        return booking

    def apply_payment_outcome(self, booking_id: str, outcome: str) -> tuple[Booking, sm.Transition]:
        """Apply a verified gateway outcome to an existing booking"""
        booking = self.get_booking(booking_id)

        if outcome == sm.OUTCOME_FAILED and booking.payment_status == sm.PAYMENT_PAID:
            logger.warning(f"⚠️ Ignoring FAILED outcome for already paid booking {booking.id}")

        transition = sm.apply_payment_outcome(booking.status, booking.payment_status, outcome)
        if not transition.changed:
            return booking, transition

        booking = self.repo.apply_transition(self.db, booking, transition)
        logger.info(
            f"✅ Booking {booking.id} payment {transition.old_payment_status} → {transition.new_payment_status}"
            f" (status {transition.new_status})"
        )
        self.notify_transition(booking, transition)
        return booking, transition

    def update_fare(self, booking_id: str, fare: int) -> Booking:
        if fare is None or fare < 0:
            raise InvalidArgument("Fare must be a non-negative number")
        booking = self.get_booking(booking_id)
        if booking.payment_status == sm.PAYMENT_PAID:
            raise InvalidArgument("Cannot change the fare of a paid booking")
        return self.repo.update_booking(self.db, booking, fare=fare)

    def record_proof_of_delivery(self, booking_id: str, signature: str, signed_by: str) -> Booking:
        """Store the delivery signature, completing a Shipped booking"""
        booking = self.get_booking(booking_id)
        if booking.status not in (sm.SHIPPED, sm.DELIVERED):
            raise InvalidArgument("Proof of delivery can only be captured for shipped or delivered bookings")

        transition = sm.apply_status(booking.status, booking.payment_status, sm.DELIVERED)
        booking = self.repo.apply_transition(
            self.db,
            booking,
            transition,
            pod_signature=signature,
            pod_signed_by=signed_by.strip(),
            pod_captured_at=utcnow(),
        )
        logger.info(f"✅ Proof of delivery captured for booking {booking.id}")
        self.notify_transition(booking, transition)
        return booking
