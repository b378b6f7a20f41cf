"""Shared validation utilities"""

import re
from typing import Optional

COUPON_CODE_PATTERN = re.compile(r"^[A-Z0-9]+$")


def validate_indian_phone(phone: Optional[str]) -> Optional[str]:
    """
    Validate and normalize an Indian mobile number to E.164 format.

    Args:
        phone: Phone number string in various formats

    Returns:
        Normalized phone number in E.164 format (+91XXXXXXXXXX)

    Raises:
        ValueError: If phone number is invalid
    """
    if not phone:
        return phone

    # Remove all non-digit characters
    digits = re.sub(r"\D", "", phone)

    # Handle 91 / 0 prefixes
    if digits.startswith("91") and len(digits) == 12:
        digits = digits[2:]
    elif digits.startswith("0") and len(digits) == 11:
        digits = digits[1:]

    if len(digits) != 10 or digits[0] not in "6789":
        raise ValueError("Phone number must be a valid 10 digit Indian mobile number")

    return f"+91{digits}"


def validate_pincode(pincode: str) -> str:
    """Validate a 6 digit Indian postal code"""
    value = (pincode or "").strip()
    if not re.fullmatch(r"[1-9][0-9]{5}", value):
        raise ValueError("Pincode must be 6 digits")
    return value


def normalize_coupon_code(code: Optional[str]) -> str:
    """Coupon codes are matched trimmed and uppercase"""
    return (code or "").strip().upper()


def normalize_city(name: Optional[str]) -> str:
    """City names are matched trimmed and case-insensitively"""
    return " ".join((name or "").split()).lower()


def require_text(value: Optional[str], field: str) -> str:
    """Strip a required string field, rejecting blanks"""
    stripped = (value or "").strip()
    if not stripped:
        raise ValueError(f"{field} is required")
    return stripped
