"""
Merchant reference ids

Every payment attempt gets a fresh reference. Whether it pays for a staged
booking or an existing one is fixed here, when the reference is minted, and
recorded on the payment attempt row; later callbacks look the kind up rather
than parsing it back out of the string.
"""

import re
import secrets
import time
from dataclasses import dataclass

KIND_STAGED = "staged"
KIND_BOOKING = "booking"

STAGED_PREFIX = "TMP"
BOOKING_PREFIX = "BKG"

_UNSAFE = re.compile(r"[^A-Za-z0-9]")


@dataclass(frozen=True)
class MerchantReference:
    value: str
    kind: str


def _millis() -> int:
    return int(time.time() * 1000)


def new_staged_reference(user_id: str) -> MerchantReference:
    """Reference for a payment that will create its booking on success"""
    safe_user = _UNSAFE.sub("", user_id)[:12] or "user"
    return MerchantReference(f"{STAGED_PREFIX}-{safe_user}-{_millis()}-{secrets.token_hex(3)}", KIND_STAGED)


def new_booking_reference(booking_id: str) -> MerchantReference:
    """Reference for paying an existing booking"""
    return MerchantReference(f"{BOOKING_PREFIX}-{booking_id}-{_millis()}", KIND_BOOKING)
