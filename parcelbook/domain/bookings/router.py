"""Booking router - FastAPI endpoints for booking operations"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import CurrentUser, get_current_user, require_admin
from ...database import get_db
from ...services.notification_service import get_notification_dispatcher
from .schemas import (
    BookingCreate,
    BookingResponse,
    BookingStatusUpdate,
    FareUpdate,
    PaymentStatusUpdate,
    ProofOfDeliveryCreate,
    TrackingResponse,
)
from .service import BookingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


def get_booking_service(
    db: Session = Depends(get_db),
    notifier=Depends(get_notification_dispatcher),
) -> BookingService:
    """Dependency injection for BookingService"""
    return BookingService(db, notifier)


def booking_data(booking) -> dict:
    return BookingResponse.from_booking(booking).model_dump()


def page_data(page: dict) -> dict:
    return {
        "bookings": [booking_data(b) for b in page["bookings"]],
        "hasMore": page["hasMore"],
        "lastDocId": page["lastDocId"],
    }


# ============================================================================
# PUBLIC
# ============================================================================


@router.get("/track/{tracking_number}")
async def track_booking(
    tracking_number: str,
    service: BookingService = Depends(get_booking_service),
):
    """Public parcel tracking by tracking number"""
    booking = service.get_booking_by_tracking_number(tracking_number)
    return {"success": True, "data": TrackingResponse.from_booking(booking).model_dump()}


# ============================================================================
# ADMIN
# ============================================================================


@router.get("/admin/all")
async def get_all_bookings(
    status: Optional[str] = Query(None),
    paymentStatus: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    lastDocId: Optional[str] = Query(None),
    _admin: CurrentUser = Depends(require_admin),
    service: BookingService = Depends(get_booking_service),
):
    page = service.get_all_bookings(status, paymentStatus, limit, lastDocId)
    return {"success": True, "data": page_data(page)}


@router.get("/admin/search")
async def search_bookings(
    q: str = Query(..., min_length=1),
    status: Optional[str] = Query(None),
    paymentStatus: Optional[str] = Query(None),
    _admin: CurrentUser = Depends(require_admin),
    service: BookingService = Depends(get_booking_service),
):
    bookings = service.search_bookings(q, status, paymentStatus)
    return {"success": True, "data": {"bookings": [booking_data(b) for b in bookings], "count": len(bookings)}}


@router.get("/admin/statistics")
async def get_booking_statistics(
    _admin: CurrentUser = Depends(require_admin),
    service: BookingService = Depends(get_booking_service),
):
    stats = service.get_booking_statistics()
    stats["recentBookings"] = [booking_data(b) for b in stats["recentBookings"]]
    return {"success": True, "data": stats}


@router.patch("/{booking_id}/payment-status")
async def update_payment_status(
    booking_id: str,
    data: PaymentStatusUpdate,
    _admin: CurrentUser = Depends(require_admin),
    service: BookingService = Depends(get_booking_service),
):
    booking = service.update_payment_status(booking_id, data.paymentStatus)
    return {"success": True, "data": {"booking": booking_data(booking)}}


@router.patch("/{booking_id}/fare")
async def update_fare(
    booking_id: str,
    data: FareUpdate,
    _admin: CurrentUser = Depends(require_admin),
    service: BookingService = Depends(get_booking_service),
):
    booking = service.update_fare(booking_id, data.fare)
    return {"success": True, "data": {"booking": booking_data(booking)}}


@router.post("/{booking_id}/pod")
async def record_proof_of_delivery(
    booking_id: str,
    data: ProofOfDeliveryCreate,
    _admin: CurrentUser = Depends(require_admin),
    service: BookingService = Depends(get_booking_service),
):
    booking = service.record_proof_of_delivery(booking_id, data.signature, data.signedBy)
    return {"success": True, "data": {"booking": booking_data(booking)}}


# ============================================================================
# CUSTOMER
# ============================================================================


@router.post("", status_code=201)
async def create_booking(
    data: BookingCreate,
    current_user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    """Create a cash-on-delivery booking"""
    booking = service.create_booking(data, current_user)
    return {"success": True, "data": {"booking": booking_data(booking)}}


@router.get("")
async def get_my_bookings(
    limit: int = Query(20, ge=1, le=100),
    lastDocId: Optional[str] = Query(None),
    current_user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    page = service.get_user_bookings(current_user.uid, limit, lastDocId)
    return {"success": True, "data": page_data(page)}


@router.get("/{booking_id}")
async def get_booking(
    booking_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    booking = service.get_booking_for_user(booking_id, current_user)
    return {"success": True, "data": {"booking": booking_data(booking)}}


@router.patch("/{booking_id}/status")
async def update_booking_status(
    booking_id: str,
    data: BookingStatusUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    booking = service.update_status(booking_id, data.status, current_user, data.returnReason)
    return {"success": True, "data": {"booking": booking_data(booking)}}
