"""
Payment reconciliation

Webhooks, redirects and status polls all land here with a verified gateway
outcome for a merchant reference id. Any of them may arrive more than once or
at the same time as another, so every step is idempotent:

- a staged booking is materialized at most once, guarded by an atomic claim
  on the staged record that commits together with the new booking;
- once an attempt has succeeded its booking id is returned for any repeat;
- a FAILED outcome never undoes a SUCCESS.

When a write fails after the gateway confirmed payment, the outcome goes to
the payment outbox so the worker can re-apply it.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...config import STAGED_BOOKING_DELETE_GRACE_SECONDS
from ...database import SessionLocal
from ...errors import InternalError, NotFound
from ...models import PaymentAttempt
from ...shared.background import spawn
from ..bookings import state_machine as sm
from ..bookings.repository import BookingSequenceRepository
from ..bookings.service import BookingService
from ..staged_bookings.repository import StagedBookingRepository, staged_id_for
from .merchant_reference import KIND_STAGED
from .repository import PaymentAttemptRepository, PaymentOutboxRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconciliationResult:
    merchant_reference_id: str
    kind: str
    outcome: str
    booking_id: Optional[str] = None
    booking_status: Optional[str] = None
    payment_status: Optional[str] = None
    created: bool = False
    message: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "merchantReferenceId": self.merchant_reference_id,
            "status": self.outcome,
            "bookingId": self.booking_id,
            "bookingStatus": self.booking_status,
            "paymentStatus": self.payment_status,
            "message": self.message,
        }


class PaymentReconciler:
    """Applies gateway outcomes to bookings and staged bookings"""

    def __init__(
        self,
        db: Session,
        notifier=None,
        session_factory=SessionLocal,
        delete_grace_seconds: float = STAGED_BOOKING_DELETE_GRACE_SECONDS,
    ):
        self.db = db
        self.session_factory = session_factory
        self.delete_grace_seconds = delete_grace_seconds
        self.attempts = PaymentAttemptRepository()
        self.outbox = PaymentOutboxRepository()
        self.staged = StagedBookingRepository()
        self.sequence = BookingSequenceRepository()
        self.bookings = BookingService(db, notifier)

    async def reconcile(
        self,
        merchant_reference_id: str,
        outcome: str,
        gateway_reference_id: Optional[str] = None,
        amount: Optional[float] = None,
        record_failures: bool = True,
    ) -> ReconciliationResult:
        """
        Apply a verified outcome for a merchant reference id.

        Raises NotFound for unknown references and for staged payments whose
        staged record has expired. Store failures after a SUCCESS are queued
        on the outbox (unless record_failures is False) and raised as
        InternalError.
        """
        attempt = self.attempts.get_attempt(self.db, merchant_reference_id)
        if attempt is None:
            logger.warning(f"⚠️ Reconciliation for unknown merchant reference {merchant_reference_id}")
            raise NotFound("Unknown merchant reference id")

        if amount is not None and attempt.amount is not None and round(amount) != attempt.amount:
            logger.warning(
                f"⚠️ Amount mismatch for {merchant_reference_id}: gateway {amount}, expected {attempt.amount}"
            )

        if outcome == sm.OUTCOME_PENDING:
            return ReconciliationResult(
                merchant_reference_id,
                attempt.kind,
                outcome,
                booking_id=attempt.booking_id,
                message="Payment is still pending",
            )

        if outcome not in (sm.OUTCOME_SUCCESS, sm.OUTCOME_FAILED):
            raise InternalError(f"Unsupported payment outcome: {outcome}")

        try:
            if attempt.kind == KIND_STAGED:
                if outcome == sm.OUTCOME_SUCCESS:
                    return self._settle_staged_success(attempt, gateway_reference_id)
                return self._settle_staged_failure(attempt, gateway_reference_id)
            return self._settle_booking(attempt, outcome, gateway_reference_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to apply {outcome} for {merchant_reference_id}: {e}")
            if outcome == sm.OUTCOME_SUCCESS and record_failures:
                self._enqueue_retry(merchant_reference_id, outcome, str(e))
            raise InternalError("Failed to record payment outcome") from e

    # ------------------------------------------------------------------
    # Staged bookings
    # ------------------------------------------------------------------

    def _settle_staged_success(
        self, attempt: PaymentAttempt, gateway_reference_id: Optional[str]
    ) -> ReconciliationResult:
        ref = attempt.merchant_reference_id

        if attempt.status == sm.OUTCOME_SUCCESS and attempt.booking_id:
            logger.info(f"Payment {ref} already reconciled to booking {attempt.booking_id}")
            return self._booking_result(attempt, attempt.booking_id, created=False)

        staged_id = attempt.staged_booking_id or staged_id_for(ref)
        staged = self.staged.get_by_id(self.db, staged_id)
        if staged is None:
            logger.warning(f"⚠️ Payment {ref} succeeded but staged booking {staged_id} is missing or expired")
            raise NotFound("Staged booking not found or expired")

        if staged.booking_id:
            self.attempts.record_outcome(
                self.db, attempt, sm.OUTCOME_SUCCESS, staged.booking_id, gateway_reference_id
            )
            return self._booking_result(attempt, staged.booking_id, created=False)

        booking_id = self.sequence.next_booking_id(self.db)

        if not self.staged.claim(self.db, staged_id):
            # Another callback is materializing (or has materialized) this booking
            self.db.rollback()
            self.db.expire_all()
            staged = self.staged.get_by_id(self.db, staged_id)
            if staged is not None and staged.booking_id:
                return self._booking_result(attempt, staged.booking_id, created=False)
            logger.info(f"Payment {ref} is being reconciled by another request")
            return ReconciliationResult(
                ref, attempt.kind, sm.OUTCOME_SUCCESS, message="Booking is being created"
            )

        booking, transition = self.bookings.add_paid_online_booking(booking_id, staged)
        self.staged.attach_booking_id(self.db, staged_id, booking.id, commit=False)
        self.attempts.record_outcome(
            self.db, attempt, sm.OUTCOME_SUCCESS, booking.id, gateway_reference_id, commit=False
        )
        self.db.commit()
        self.db.refresh(booking)

        logger.info(f"✅ Payment {ref} confirmed, created booking {booking.id} for user {booking.user_id}")
        self._schedule_staged_delete(staged_id)
        self.bookings.notify_transition(booking, transition)

        return ReconciliationResult(
            ref,
            attempt.kind,
            sm.OUTCOME_SUCCESS,
            booking_id=booking.id,
            booking_status=booking.status,
            payment_status=booking.payment_status,
            created=True,
        )

    def _settle_staged_failure(
        self, attempt: PaymentAttempt, gateway_reference_id: Optional[str]
    ) -> ReconciliationResult:
        ref = attempt.merchant_reference_id

        if attempt.status == sm.OUTCOME_SUCCESS:
            logger.warning(f"⚠️ Ignoring FAILED outcome for already successful payment {ref}")
            return self._booking_result(attempt, attempt.booking_id, created=False)

        staged_id = attempt.staged_booking_id or staged_id_for(ref)
        staged = self.staged.get_by_id(self.db, staged_id)
        if staged is not None and staged.booking_id:
            logger.warning(f"⚠️ Ignoring FAILED outcome for {ref}: booking {staged.booking_id} already exists")
            return self._booking_result(attempt, staged.booking_id, created=False)

        self.attempts.record_outcome(self.db, attempt, sm.OUTCOME_FAILED, gateway_reference_id=gateway_reference_id)
        self.staged.delete(self.db, staged_id)
        logger.info(f"Payment {ref} failed, staged booking {staged_id} discarded")

        return ReconciliationResult(ref, attempt.kind, sm.OUTCOME_FAILED, message="Payment failed")

    def _schedule_staged_delete(self, staged_id: str) -> None:
        """Remove the staged record after a grace period so concurrent readers still see its booking id"""
        spawn(self._delete_staged_later(staged_id), name=f"staged-delete:{staged_id}")

    async def _delete_staged_later(self, staged_id: str) -> None:
        if self.delete_grace_seconds > 0:
            await asyncio.sleep(self.delete_grace_seconds)

        db = self.session_factory()
        try:
            self.staged.delete(db, staged_id)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"❌ Failed to delete staged booking {staged_id}: {e}")
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Existing bookings
    # ------------------------------------------------------------------

    def _settle_booking(
        self, attempt: PaymentAttempt, outcome: str, gateway_reference_id: Optional[str]
    ) -> ReconciliationResult:
        booking, _transition = self.bookings.apply_payment_outcome(attempt.booking_id, outcome)
        self.attempts.record_outcome(self.db, attempt, outcome, booking.id, gateway_reference_id)
        return ReconciliationResult(
            attempt.merchant_reference_id,
            attempt.kind,
            outcome,
            booking_id=booking.id,
            booking_status=booking.status,
            payment_status=booking.payment_status,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _booking_result(
        self, attempt: PaymentAttempt, booking_id: Optional[str], created: bool
    ) -> ReconciliationResult:
        booking = self.bookings.repo.get_booking_by_id(self.db, booking_id) if booking_id else None
        return ReconciliationResult(
            attempt.merchant_reference_id,
            attempt.kind,
            sm.OUTCOME_SUCCESS,
            booking_id=booking_id,
            booking_status=booking.status if booking else None,
            payment_status=booking.payment_status if booking else None,
            created=created,
        )

    def _enqueue_retry(self, merchant_reference_id: str, outcome: str, error: str) -> None:
        db = self.session_factory()
        try:
            self.outbox.add_entry(db, merchant_reference_id, outcome, error)
            logger.warning(f"⚠️ Queued {outcome} for {merchant_reference_id} on the payment outbox")
        except SQLAlchemyError as e:
            db.rollback()
            logger.critical(
                f"❌ Could not queue {outcome} for {merchant_reference_id}; manual reconciliation required: {e}"
            )
        finally:
            db.close()
