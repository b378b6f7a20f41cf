"""Payment service - Payment pages, status checks, webhooks and redirects"""

import logging
from dataclasses import replace
from typing import Any, Optional
from urllib.parse import urlencode

from sqlalchemy.orm import Session

from ...auth import CurrentUser, ensure_owner_or_admin
from ...config import PAYGIC_FAILED_URL, PAYGIC_SUCCESS_URL, PAYGIC_WEBHOOK_VERIFY_STATUS
from ...errors import AppError, Forbidden, GatewayError, InvalidArgument, NotFound
from ...models import PaymentAttempt
from ..bookings import state_machine as sm
from ..bookings.repository import BookingRepository
from ..staged_bookings.repository import StagedBookingRepository
from .gateway import PaygicClient, validate_webhook_payload
from .merchant_reference import (
    KIND_BOOKING,
    KIND_STAGED,
    MerchantReference,
    new_booking_reference,
    new_staged_reference,
)
from .reconciliation import PaymentReconciler, ReconciliationResult
from .repository import PaymentAttemptRepository
from .schemas import PaymentCreateRequest

logger = logging.getLogger(__name__)


def is_not_successful_error(error: GatewayError) -> bool:
    """Paygic reports unfinished transactions on status checks as an error envelope"""
    return "not successful" in (error.message or "").lower()


def redirect_url(base: str, reference: MerchantReference, booking_id: Optional[str]) -> str:
    params = {"merchantRefId": reference.value}
    if booking_id:
        params["bookingId"] = booking_id
    separator = "&" if "?" in base else "?"
    return f"{base}{separator}{urlencode(params)}"


class PaymentService:
    """Service layer for the payment flow"""

    def __init__(
        self,
        db: Session,
        gateway: PaygicClient,
        notifier=None,
        reconciler: Optional[PaymentReconciler] = None,
        verify_webhooks: bool = PAYGIC_WEBHOOK_VERIFY_STATUS,
    ):
        self.db = db
        self.gateway = gateway
        self.attempts = PaymentAttemptRepository()
        self.bookings = BookingRepository()
        self.staged = StagedBookingRepository()
        self.reconciler = reconciler or PaymentReconciler(db, notifier)
        self.verify_webhooks = verify_webhooks

    # ------------------------------------------------------------------
    # Initiate
    # ------------------------------------------------------------------

    async def create_payment_page(self, data: PaymentCreateRequest, user: CurrentUser) -> dict:
        """
        Request a hosted payment page.

        For an existing booking the booking's own fare is charged. For new
        booking data the data is staged under a fresh merchant reference and
        only becomes a booking once the payment succeeds.
        """
        if data.bookingId:
            booking = self.bookings.get_booking_by_id(self.db, data.bookingId)
            if not booking:
                raise NotFound("Booking not found")
            if booking.user_id != user.uid:
                raise Forbidden("Booking does not belong to user")
            if booking.payment_status == sm.PAYMENT_PAID:
                raise InvalidArgument("Booking is already paid")
            if not booking.fare:
                raise InvalidArgument("Booking fare not found")

            reference = new_booking_reference(booking.id)
            amount = booking.fare
            attempt = self.attempts.create_attempt(
                self.db, reference.value, KIND_BOOKING, user.uid, amount, booking_id=booking.id
            )
            booking_id = booking.id
        else:
            booking_data = data.bookingData
            if not booking_data.fare or booking_data.fare <= 0:
                raise InvalidArgument("Fare must be greater than zero")

            reference = new_staged_reference(user.uid)
            payload = booking_data.payload()
            payload["paymentMethod"] = sm.METHOD_ONLINE
            staged_id = self.staged.stage(
                self.db, user.uid, payload, booking_data.fare, reference.value, booking_data.couponCode
            )
            amount = booking_data.fare
            attempt = self.attempts.create_attempt(
                self.db, reference.value, KIND_STAGED, user.uid, amount, staged_booking_id=staged_id
            )
            booking_id = None

        try:
            page = await self.gateway.create_payment_page(
                merchant_reference_id=reference.value,
                amount=amount,
                customer_mobile=data.customerMobile,
                customer_name=data.customerName,
                customer_email=str(data.customerEmail),
                success_url=redirect_url(PAYGIC_SUCCESS_URL, reference, booking_id),
                failed_url=redirect_url(PAYGIC_FAILED_URL, reference, booking_id),
            )
        except GatewayError:
            self._discard_attempt(attempt)
            raise

        self.attempts.record_page(self.db, attempt, page.gateway_reference_id, page.pay_page_url)
        logger.info(f"✅ Payment page created for {reference.value} ({reference.kind}, amount {amount})")

        return {
            "paymentUrl": page.pay_page_url,
            "merchantReferenceId": reference.value,
            "paygicReferenceId": page.gateway_reference_id,
            "expiry": page.expiry,
            "amount": page.amount or str(amount),
            "bookingId": booking_id,
        }

    def _discard_attempt(self, attempt: PaymentAttempt) -> None:
        """Undo the local records of an attempt the gateway never accepted"""
        if attempt.kind == KIND_STAGED and attempt.staged_booking_id:
            self.staged.delete(self.db, attempt.staged_booking_id)
        self.attempts.record_outcome(self.db, attempt, sm.OUTCOME_FAILED)

    # ------------------------------------------------------------------
    # Status checks and redirects
    # ------------------------------------------------------------------

    def get_attempt(self, merchant_reference_id: str, user: Optional[CurrentUser] = None) -> PaymentAttempt:
        attempt = self.attempts.get_attempt(self.db, merchant_reference_id)
        if attempt is None:
            raise NotFound("Payment not found")
        if user is not None:
            ensure_owner_or_admin(attempt.user_id, user, "Payment does not belong to user")
        return attempt

    async def verify_and_reconcile(self, merchant_reference_id: str) -> ReconciliationResult:
        """
        Ask the gateway for the outcome and apply it.

        Unfinished transactions come back as a PENDING result rather than an
        error.
        """
        attempt = self.get_attempt(merchant_reference_id)
        try:
            status = await self.gateway.check_status(merchant_reference_id)
        except GatewayError as e:
            if is_not_successful_error(e):
                return ReconciliationResult(
                    merchant_reference_id,
                    attempt.kind,
                    sm.OUTCOME_PENDING,
                    booking_id=attempt.booking_id,
                    message=e.message,
                )
            raise

        result = await self.reconciler.reconcile(
            merchant_reference_id,
            status.txn_status,
            gateway_reference_id=status.gateway_reference_id,
            amount=status.amount,
        )
        if status.message and not result.message:
            result = replace(result, message=status.message)
        return result

    async def check_payment_status(self, merchant_reference_id: str, user: CurrentUser) -> dict:
        self.get_attempt(merchant_reference_id, user)
        result = await self.verify_and_reconcile(merchant_reference_id)
        return result.to_dict()

    # ------------------------------------------------------------------
    # Webhook
    # ------------------------------------------------------------------

    async def handle_webhook(self, raw: Any) -> dict:
        """
        Process a gateway push. Never raises: the gateway always gets an
        acknowledgement, and problems are only logged.
        """
        try:
            payload = validate_webhook_payload(raw)
            ref = payload.data.merchantReferenceId
            outcome = payload.txnStatus
            logger.info(f"📥 Paygic webhook for {ref}: {outcome}")

            if self.verify_webhooks:
                result = await self.verify_and_reconcile(ref)
                if outcome == sm.OUTCOME_FAILED and result.outcome == sm.OUTCOME_PENDING:
                    # A reported failure is applied even when the status check is inconclusive
                    logger.info(f"Gateway status for {ref} is still pending, applying reported FAILED outcome")
                    result = await self.reconciler.reconcile(
                        ref,
                        sm.OUTCOME_FAILED,
                        gateway_reference_id=payload.data.paygicReferenceId,
                    )
                elif result.outcome != outcome:
                    logger.warning(f"⚠️ Webhook for {ref} reported {outcome}, gateway status is {result.outcome}")
            else:
                amount = None
                try:
                    amount = float(payload.data.amount) if payload.data.amount is not None else None
                except (TypeError, ValueError):
                    amount = None
                result = await self.reconciler.reconcile(
                    ref,
                    outcome,
                    gateway_reference_id=payload.data.paygicReferenceId,
                    amount=amount,
                )

            return {"success": True, "message": "Webhook received", "data": result.to_dict()}
        except AppError as e:
            logger.error(f"❌ Webhook processing failed: {e.message}")
            return {"success": False, "message": e.message}
        except Exception as e:
            logger.exception(f"❌ Unexpected error processing webhook: {e}")
            return {"success": False, "message": "Webhook processing failed"}
