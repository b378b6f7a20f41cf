"""
Booking state machine

Two fields move independently except for one coupling: a payment that lands
while the booking is still PendingPayment confirms the booking. Every change
to either field goes through this module so both are computed together and
persisted in a single write.
"""

from dataclasses import dataclass
from typing import Optional

from ...errors import InvalidArgument

PENDING_PAYMENT = "PendingPayment"
CREATED = "Created"
PICKED = "Picked"
SHIPPED = "Shipped"
DELIVERED = "Delivered"
RETURNED = "Returned"

BOOKING_STATUSES = (PENDING_PAYMENT, CREATED, PICKED, SHIPPED, DELIVERED, RETURNED)

PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_FAILED = "failed"
PAYMENT_REFUNDED = "refunded"

PAYMENT_STATUSES = (PAYMENT_PENDING, PAYMENT_PAID, PAYMENT_FAILED, PAYMENT_REFUNDED)

METHOD_COD = "cod"
METHOD_ONLINE = "online"

PAYMENT_METHODS = (METHOD_COD, METHOD_ONLINE)

# Gateway transaction outcomes
OUTCOME_SUCCESS = "SUCCESS"
OUTCOME_FAILED = "FAILED"
OUTCOME_PENDING = "PENDING"

STATUS_TRANSITIONS = {
    PENDING_PAYMENT: {CREATED},
    CREATED: {PICKED, RETURNED},
    PICKED: {SHIPPED},
    SHIPPED: {DELIVERED},
    DELIVERED: set(),
    RETURNED: set(),
}

PAYMENT_TRANSITIONS = {
    PAYMENT_PENDING: {PAYMENT_PAID, PAYMENT_FAILED},
    # A later attempt for the same booking may still succeed
    PAYMENT_FAILED: {PAYMENT_PAID},
    PAYMENT_PAID: {PAYMENT_REFUNDED},
    PAYMENT_REFUNDED: set(),
}


@dataclass(frozen=True)
class Transition:
    """Result of applying a change to a booking's (status, payment_status) pair"""

    old_status: str
    new_status: str
    old_payment_status: str
    new_payment_status: str

    @property
    def status_changed(self) -> bool:
        return self.old_status != self.new_status

    @property
    def payment_status_changed(self) -> bool:
        return self.old_payment_status != self.new_payment_status

    @property
    def changed(self) -> bool:
        return self.status_changed or self.payment_status_changed


def initial_state(payment_method: str) -> tuple[str, str]:
    """Starting (status, payment_status) for a new booking"""
    if payment_method not in PAYMENT_METHODS:
        raise InvalidArgument(f"Invalid payment method: {payment_method}")
    if payment_method == METHOD_ONLINE:
        return PENDING_PAYMENT, PAYMENT_PENDING
    return CREATED, PAYMENT_PENDING


def apply_payment_status(status: str, payment_status: str, new_payment_status: str) -> Transition:
    """
    Move payment_status, advancing PendingPayment to Created when it becomes paid.

    Re-applying the current value is a no-op.
    """
    if new_payment_status not in PAYMENT_STATUSES:
        raise InvalidArgument(f"Invalid payment status: {new_payment_status}")

    if new_payment_status == payment_status:
        return Transition(status, status, payment_status, payment_status)

    if new_payment_status not in PAYMENT_TRANSITIONS.get(payment_status, set()):
        raise InvalidArgument(f"Cannot change payment status from {payment_status} to {new_payment_status}")

    new_status = status
    if new_payment_status == PAYMENT_PAID and status == PENDING_PAYMENT:
        new_status = CREATED

    return Transition(status, new_status, payment_status, new_payment_status)


def apply_payment_outcome(status: str, payment_status: str, outcome: str) -> Transition:
    """
    Map a gateway outcome onto the booking.

    SUCCESS settles the booking as paid; FAILED marks it failed unless it is
    already paid, in which case the late failure is ignored. PENDING changes
    nothing.
    """
    if outcome == OUTCOME_SUCCESS:
        if payment_status == PAYMENT_REFUNDED:
            return Transition(status, status, payment_status, payment_status)
        return apply_payment_status(status, payment_status, PAYMENT_PAID)
    if outcome == OUTCOME_FAILED:
        if payment_status in (PAYMENT_PAID, PAYMENT_REFUNDED):
            return Transition(status, status, payment_status, payment_status)
        return apply_payment_status(status, payment_status, PAYMENT_FAILED)
    if outcome == OUTCOME_PENDING:
        return Transition(status, status, payment_status, payment_status)
    raise InvalidArgument(f"Unknown payment outcome: {outcome}")


def apply_status(
    status: str, payment_status: str, new_status: str, return_reason: Optional[str] = None
) -> Transition:
    """Validate a manual (admin/operator) booking status change"""
    if new_status not in BOOKING_STATUSES:
        raise InvalidArgument(f"Invalid booking status: {new_status}")

    if new_status == RETURNED and not (return_reason or "").strip():
        raise InvalidArgument("Return reason is required when marking a booking as Returned")

    if new_status == status:
        return Transition(status, status, payment_status, payment_status)

    if status == PENDING_PAYMENT:
        raise InvalidArgument("Booking is awaiting payment and cannot change status until payment is received")

    if new_status not in STATUS_TRANSITIONS.get(status, set()):
        raise InvalidArgument(f"Cannot change booking status from {status} to {new_status}")

    return Transition(status, new_status, payment_status, payment_status)
