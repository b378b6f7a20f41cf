"""Booking repository - Database operations for bookings"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...config import BOOKING_ID_PREFIX, BOOKING_UTC_OFFSET_MINUTES
from ...models import Booking, BookingSequence
from ...shared.clock import utcnow
from .state_machine import BOOKING_STATUSES, PAYMENT_STATUSES, Transition

logger = logging.getLogger(__name__)

BOOKING_TZ = timezone(timedelta(minutes=BOOKING_UTC_OFFSET_MINUTES))

# Rows scanned by free-text search before filtering in memory
SEARCH_SCAN_LIMIT = 1000


def format_booking_id(day: date, number: int, prefix: str = BOOKING_ID_PREFIX) -> str:
    return f"{prefix}-{day.strftime('%d-%m-%Y')}-{number:03d}"


def business_day(now: Optional[datetime] = None) -> date:
    """Calendar day a booking id is dated with"""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(BOOKING_TZ).date()


class BookingSequenceRepository:
    """Per-day counters backing the human readable booking ids"""

    @staticmethod
    def next_value(db: Session, day: date, max_retries: int = 3) -> int:
        """
        Atomically reserve the next number for a day and commit the reservation.

        Must be called before any other pending work on the session; a lost
        insert race rolls the session back and retries the increment.
        """
        for _ in range(max_retries):
            result = db.execute(
                update(BookingSequence)
                .where(BookingSequence.day == day)
                .values(value=BookingSequence.value + 1)
            )
            if result.rowcount:
                value = db.execute(
                    select(BookingSequence.value).where(BookingSequence.day == day)
                ).scalar_one()
                db.commit()
                return value

            db.add(BookingSequence(day=day, value=1))
            try:
                db.commit()
                return 1
            except IntegrityError:
                # Another request created today's row first
                db.rollback()
                logger.debug(f"Booking sequence row for {day} created concurrently, retrying")

        raise RuntimeError(f"Could not reserve a booking number for {day}")

    @classmethod
    def next_booking_id(cls, db: Session, now: Optional[datetime] = None) -> str:
        day = business_day(now)
        return format_booking_id(day, cls.next_value(db, day))


class BookingRepository:
    """Repository for booking database operations"""

    @staticmethod
    def get_booking_by_id(db: Session, booking_id: str) -> Optional[Booking]:
        return db.query(Booking).filter(Booking.id == booking_id).first()

    @staticmethod
    def get_booking_by_tracking_number(db: Session, tracking_number: str) -> Optional[Booking]:
        """Tracking numbers are the booking ids"""
        return db.query(Booking).filter(Booking.id == tracking_number.strip().upper()).first()

    @staticmethod
    def add_booking(db: Session, **booking_data) -> Booking:
        """Stage a new booking on the session without committing"""
        now = utcnow()
        booking_data.setdefault("created_at", now)
        booking_data.setdefault("updated_at", now)
        booking = Booking(**booking_data)
        db.add(booking)
        db.flush()
        return booking

    @staticmethod
    def apply_transition(db: Session, booking: Booking, transition: Transition, **extra) -> Booking:
        """Write both state fields (and any extra columns) in one commit"""
        booking.status = transition.new_status
        booking.payment_status = transition.new_payment_status
        for key, value in extra.items():
            setattr(booking, key, value)
        booking.updated_at = utcnow()
        db.commit()
        db.refresh(booking)
        return booking

    @staticmethod
    def update_booking(db: Session, booking: Booking, **updates) -> Booking:
        for key, value in updates.items():
            if hasattr(booking, key):
                setattr(booking, key, value)
        booking.updated_at = utcnow()
        db.commit()
        db.refresh(booking)
        return booking

    @staticmethod
    def _paginate(db: Session, query, limit: int, cursor: Optional[str]) -> tuple[list[Booking], bool]:
        """Newest-first keyset pagination, fetching one extra row to detect more pages"""
        if cursor:
            anchor = db.query(Booking).filter(Booking.id == cursor).first()
            if anchor is not None:
                query = query.filter(
                    or_(
                        Booking.created_at < anchor.created_at,
                        and_(Booking.created_at == anchor.created_at, Booking.id < anchor.id),
                    )
                )

        rows = query.order_by(Booking.created_at.desc(), Booking.id.desc()).limit(limit + 1).all()
        has_more = len(rows) > limit
        return rows[:limit], has_more

    @staticmethod
    def get_user_bookings(
        db: Session, user_id: str, limit: int = 20, cursor: Optional[str] = None
    ) -> tuple[list[Booking], bool]:
        query = db.query(Booking).filter(Booking.user_id == user_id)
        return BookingRepository._paginate(db, query, limit, cursor)

    @staticmethod
    def get_all_bookings(
        db: Session,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> tuple[list[Booking], bool]:
        query = db.query(Booking)
        if status:
            query = query.filter(Booking.status == status)
        if payment_status:
            query = query.filter(Booking.payment_status == payment_status)
        return BookingRepository._paginate(db, query, limit, cursor)

    @staticmethod
    def search_bookings(
        db: Session,
        search_query: str,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
    ) -> list[Booking]:
        """Match id/tracking number, pickup/drop city and pickup/drop name"""
        query = db.query(Booking)
        if status:
            query = query.filter(Booking.status == status)
        if payment_status:
            query = query.filter(Booking.payment_status == payment_status)

        candidates = (
            query.order_by(Booking.created_at.desc(), Booking.id.desc()).limit(SEARCH_SCAN_LIMIT).all()
        )

        needle = search_query.strip().lower()
        if not needle:
            return candidates

        def matches(booking: Booking) -> bool:
            fields = [
                booking.id,
                (booking.pickup or {}).get("city"),
                (booking.drop or {}).get("city"),
                (booking.pickup or {}).get("name"),
                (booking.drop or {}).get("name"),
            ]
            return any(needle in str(value).lower() for value in fields if value)

        return [booking for booking in candidates if matches(booking)]

    @staticmethod
    def get_booking_statistics(db: Session) -> dict:
        by_status = dict.fromkeys(BOOKING_STATUSES, 0)
        for status, count in db.query(Booking.status, func.count(Booking.id)).group_by(Booking.status):
            by_status[status] = count

        by_payment_status = dict.fromkeys(PAYMENT_STATUSES, 0)
        for payment_status, count in db.query(Booking.payment_status, func.count(Booking.id)).group_by(
            Booking.payment_status
        ):
            by_payment_status[payment_status] = count

        recent = db.query(Booking).order_by(Booking.created_at.desc(), Booking.id.desc()).limit(10).all()

        return {
            "total": sum(by_status.values()),
            "byStatus": by_status,
            "byPaymentStatus": by_payment_status,
            "recentBookings": recent,
        }
