"""Payment repository - Database operations for payment attempts and the reconciliation outbox"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ...models import PaymentAttempt, PaymentOutbox
from ...shared.clock import utcnow

logger = logging.getLogger(__name__)


class PaymentAttemptRepository:
    """Ledger of merchant reference ids handed to the gateway"""

    @staticmethod
    def create_attempt(
        db: Session,
        merchant_reference_id: str,
        kind: str,
        user_id: str,
        amount: int,
        booking_id: Optional[str] = None,
        staged_booking_id: Optional[str] = None,
    ) -> PaymentAttempt:
        now = utcnow()
        attempt = PaymentAttempt(
            merchant_reference_id=merchant_reference_id,
            kind=kind,
            user_id=user_id,
            amount=amount,
            booking_id=booking_id,
            staged_booking_id=staged_booking_id,
            status="INITIATED",
            created_at=now,
            updated_at=now,
        )
        db.add(attempt)
        db.commit()
        db.refresh(attempt)
        return attempt

    @staticmethod
    def get_attempt(db: Session, merchant_reference_id: str) -> Optional[PaymentAttempt]:
        return (
            db.query(PaymentAttempt)
            .filter(PaymentAttempt.merchant_reference_id == merchant_reference_id)
            .first()
        )

    @staticmethod
    def record_page(db: Session, attempt: PaymentAttempt, gateway_reference_id: Optional[str], pay_page_url: str) -> None:
        attempt.gateway_reference_id = gateway_reference_id
        attempt.pay_page_url = pay_page_url
        attempt.status = "PENDING"
        attempt.updated_at = utcnow()
        db.commit()

    @staticmethod
    def record_outcome(
        db: Session,
        attempt: PaymentAttempt,
        status: str,
        booking_id: Optional[str] = None,
        gateway_reference_id: Optional[str] = None,
        commit: bool = True,
    ) -> PaymentAttempt:
        """Store the settled outcome; a SUCCESS is never overwritten by a later FAILED"""
        if attempt.status == "SUCCESS" and status != "SUCCESS":
            logger.warning(
                f"⚠️ Not downgrading payment attempt {attempt.merchant_reference_id} from SUCCESS to {status}"
            )
        else:
            attempt.status = status
        if booking_id:
            attempt.booking_id = booking_id
        if gateway_reference_id:
            attempt.gateway_reference_id = gateway_reference_id
        attempt.updated_at = utcnow()
        if commit:
            db.commit()
        return attempt


class PaymentOutboxRepository:
    """Confirmed outcomes waiting to be re-applied after a failed write"""

    @staticmethod
    def add_entry(db: Session, merchant_reference_id: str, outcome: str, error: str) -> PaymentOutbox:
        entry = PaymentOutbox(
            merchant_reference_id=merchant_reference_id,
            outcome=outcome,
            last_error=error[:2000],
            attempts=0,
            next_attempt_at=utcnow(),
            created_at=utcnow(),
        )
        db.add(entry)
        db.commit()
        db.refresh(entry)
        return entry

    @staticmethod
    def get_due_entries(db: Session, max_attempts: int, limit: int = 50) -> list[PaymentOutbox]:
        now = utcnow()
        return (
            db.query(PaymentOutbox)
            .filter(
                PaymentOutbox.resolved_at.is_(None),
                PaymentOutbox.attempts < max_attempts,
                or_(PaymentOutbox.next_attempt_at.is_(None), PaymentOutbox.next_attempt_at <= now),
            )
            .order_by(PaymentOutbox.id)
            .limit(limit)
            .all()
        )

    @staticmethod
    def mark_resolved(db: Session, entry: PaymentOutbox) -> None:
        entry.attempts = (entry.attempts or 0) + 1
        entry.resolved_at = utcnow()
        db.commit()

    @staticmethod
    def mark_failed(db: Session, entry: PaymentOutbox, error: str, retry_delay_seconds: int) -> None:
        entry.attempts = (entry.attempts or 0) + 1
        entry.last_error = error[:2000]
        entry.next_attempt_at = utcnow() + timedelta(seconds=retry_delay_seconds * entry.attempts)
        db.commit()
