"""Payment router - FastAPI endpoints for the Paygic payment flow"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from ...auth import CurrentUser, get_current_user
from ...database import get_db
from ...errors import InvalidArgument
from ...services.notification_service import get_notification_dispatcher
from ..bookings import state_machine as sm
from .gateway import PaygicClient, get_payment_gateway
from .schemas import PaymentCreateRequest, PaymentStatusRequest
from .service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


def get_payment_service(
    db: Session = Depends(get_db),
    gateway: PaygicClient = Depends(get_payment_gateway),
    notifier=Depends(get_notification_dispatcher),
) -> PaymentService:
    """Dependency injection for PaymentService"""
    return PaymentService(db, gateway, notifier)


# ============================================================================
# AUTHENTICATED
# ============================================================================


@router.post("/create")
async def create_payment_page(
    data: PaymentCreateRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    """Create a Paygic payment page for an existing booking or new booking data"""
    result = await service.create_payment_page(data, current_user)
    return {"success": True, "data": result}


@router.post("/status")
async def check_payment_status(
    data: PaymentStatusRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    """Verify a payment with the gateway; unfinished payments report PENDING"""
    result = await service.check_payment_status(data.merchantReferenceId, current_user)
    return {"success": True, "data": result}


@router.get("/attempts/{merchant_reference_id}")
async def get_payment_attempt(
    merchant_reference_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    """Local view of a payment attempt, including the booking it produced"""
    attempt = service.get_attempt(merchant_reference_id, current_user)
    return {
        "success": True,
        "data": {
            "merchantReferenceId": attempt.merchant_reference_id,
            "kind": attempt.kind,
            "status": attempt.status,
            "amount": attempt.amount,
            "bookingId": attempt.booking_id,
            "paygicReferenceId": attempt.gateway_reference_id,
            "createdAt": attempt.created_at,
            "updatedAt": attempt.updated_at,
        },
    }


# ============================================================================
# GATEWAY CALLBACKS (PUBLIC)
# ============================================================================


@router.post("/webhook")
async def handle_paygic_webhook(
    request: Request,
    service: PaymentService = Depends(get_payment_service),
):
    """
    Paygic transaction webhook.

    Always answers 200 so the gateway does not retry; processing problems
    are reported in the body and logged.
    """
    try:
        payload = await request.json()
    except ValueError:
        logger.error("❌ Invalid JSON in Paygic webhook")
        return {"success": False, "message": "Invalid webhook payload"}

    return await service.handle_webhook(payload)


@router.get("/success")
async def payment_success(
    request: Request,
    merchantRefId: Optional[str] = Query(None),
    bookingId: Optional[str] = Query(None),
    service: PaymentService = Depends(get_payment_service),
):
    """Success redirect target; the outcome is re-verified with the gateway before use"""
    if not merchantRefId:
        raise InvalidArgument("Missing required parameters")

    result = await service.verify_and_reconcile(merchantRefId)
    if result.outcome != sm.OUTCOME_SUCCESS:
        logger.info(f"Success redirect for {merchantRefId} but gateway reports {result.outcome}")
        return RedirectResponse(url=f"{router.prefix}/failed?{request.url.query}", status_code=302)

    return {
        "success": True,
        "message": "Payment successful",
        "data": {**result.to_dict(), "bookingId": result.booking_id or bookingId},
    }


@router.get("/failed")
async def payment_failed(
    merchantRefId: Optional[str] = Query(None),
    bookingId: Optional[str] = Query(None),
    service: PaymentService = Depends(get_payment_service),
):
    """Failure redirect target; the outcome is re-verified with the gateway before use"""
    if not merchantRefId:
        return {"success": False, "message": "Payment failed", "data": {"bookingId": bookingId}}

    result = await service.verify_and_reconcile(merchantRefId)
    if result.outcome == sm.OUTCOME_SUCCESS:
        return {"success": True, "message": "Payment successful", "data": result.to_dict()}
    if result.outcome == sm.OUTCOME_PENDING:
        return {"success": False, "message": "Payment not completed", "data": result.to_dict()}
    return {"success": False, "message": "Payment failed", "data": result.to_dict()}
