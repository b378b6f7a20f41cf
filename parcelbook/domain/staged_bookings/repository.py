"""
Staged booking store - Booking data held until an online payment settles

Records are keyed by an id derived from the merchant reference id, so any
callback that carries the reference can find the record again without a
lookup table. Expired records are treated as absent by every reader.
"""

import logging
import re
from datetime import timedelta
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from ...config import STAGED_BOOKING_TTL_SECONDS
from ...errors import InvalidArgument
from ...models import StagedBooking
from ...shared.clock import ensure_utc, utcnow

logger = logging.getLogger(__name__)

STAGED_ID_PREFIX = "stg_"

REQUIRED_PAYLOAD_KEYS = ("pickup", "drop", "parcelDetails")


def staged_id_for(merchant_reference_id: str) -> str:
    """Deterministic, storage-safe key for a merchant reference id"""
    safe = re.sub(r"[^A-Za-z0-9_-]", "_", merchant_reference_id.strip())
    return f"{STAGED_ID_PREFIX}{safe}"


def is_expired(staged: StagedBooking, now=None) -> bool:
    return ensure_utc(staged.expires_at) <= (now or utcnow())


class StagedBookingRepository:
    """Repository for staged booking records"""

    @staticmethod
    def stage(
        db: Session,
        user_id: str,
        payload: dict,
        fare: Optional[int],
        merchant_reference_id: str,
        coupon_code: Optional[str] = None,
        ttl_seconds: int = STAGED_BOOKING_TTL_SECONDS,
    ) -> str:
        """Store booking data for a pending payment and return the staged id"""
        missing = [key for key in REQUIRED_PAYLOAD_KEYS if not payload.get(key)]
        if missing:
            raise InvalidArgument(f"Missing booking details: {', '.join(missing)}")
        if fare is None or fare <= 0:
            raise InvalidArgument("Fare must be greater than zero")

        staged_id = staged_id_for(merchant_reference_id)
        now = utcnow()
        staged = StagedBooking(
            id=staged_id,
            merchant_reference_id=merchant_reference_id,
            user_id=user_id,
            payload=payload,
            fare=fare,
            coupon_code=coupon_code,
            expires_at=now + timedelta(seconds=ttl_seconds),
            created_at=now,
        )
        db.add(staged)
        db.commit()
        logger.info(f"✅ Staged booking {staged_id} for user {user_id} (fare {fare})")
        return staged_id

    @staticmethod
    def get(db: Session, merchant_reference_id: str) -> Optional[StagedBooking]:
        """Return the live staged record for a merchant reference id, if any"""
        return StagedBookingRepository.get_by_id(db, staged_id_for(merchant_reference_id))

    @staticmethod
    def get_by_id(db: Session, staged_id: str) -> Optional[StagedBooking]:
        staged = db.query(StagedBooking).filter(StagedBooking.id == staged_id).first()
        if staged is None:
            return None
        if is_expired(staged):
            logger.warning(f"⚠️ Staged booking {staged_id} has expired")
            return None
        return staged

    @staticmethod
    def claim(db: Session, staged_id: str) -> bool:
        """
        Mark the record as being materialized.

        Returns False when another path already claimed it. Not committed, so
        the claim lands together with the booking it guards.
        """
        result = db.execute(
            update(StagedBooking)
            .where(StagedBooking.id == staged_id, StagedBooking.claimed_at.is_(None))
            .values(claimed_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def attach_booking_id(db: Session, staged_id: str, booking_id: str, commit: bool = True) -> None:
        db.execute(
            update(StagedBooking)
            .where(StagedBooking.id == staged_id)
            .values(booking_id=booking_id)
            .execution_options(synchronize_session=False)
        )
        if commit:
            db.commit()

    @staticmethod
    def delete(db: Session, staged_id: str) -> bool:
        deleted = db.query(StagedBooking).filter(StagedBooking.id == staged_id).delete(
            synchronize_session=False
        )
        db.commit()
        if deleted:
            logger.info(f"🗑️ Deleted staged booking {staged_id}")
        return bool(deleted)

    @staticmethod
    def purge_expired(db: Session) -> int:
        """Physically remove expired records, including materialized ones whose delayed delete never ran"""
        deleted = (
            db.query(StagedBooking)
            .filter(StagedBooking.expires_at <= utcnow())
            .delete(synchronize_session=False)
        )
        db.commit()
        return deleted
