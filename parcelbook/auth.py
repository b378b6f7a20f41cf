import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError
from jose import jwt as jose_jwt

from .config import JWT_ALGORITHM, JWT_SECRET
from .errors import Forbidden, Unauthorized

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

ROLE_ADMIN = "admin"
ROLE_CUSTOMER = "customer"


@dataclass(frozen=True)
class CurrentUser:
    uid: str
    phone_number: Optional[str]
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def decode_access_token(token: str) -> CurrentUser:
    """Verify an access token and return the user it was issued to"""
    try:
        payload = jose_jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise Unauthorized("Token expired") from None
    except JWTError as e:
        logger.warning(f"⚠️ Invalid access token: {e}")
        raise Unauthorized("Invalid token") from None

    uid = payload.get("uid")
    if not uid:
        raise Unauthorized("Invalid token payload")

    role = payload.get("role") or ROLE_CUSTOMER
    if role not in (ROLE_ADMIN, ROLE_CUSTOMER):
        raise Unauthorized("Invalid token payload")

    return CurrentUser(uid=str(uid), phone_number=payload.get("phoneNumber"), role=role)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    if credentials is None or not credentials.credentials:
        raise Unauthorized("Authentication required")
    return decode_access_token(credentials.credentials)


async def require_admin(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not current_user.is_admin:
        logger.warning(f"⚠️ User {current_user.uid} attempted an admin action")
        raise Forbidden("Admin access required")
    return current_user


def ensure_owner_or_admin(owner_id: str, current_user: CurrentUser, message: str) -> None:
    """Raise Forbidden unless the caller owns the resource or is an admin"""
    if owner_id != current_user.uid and not current_user.is_admin:
        raise Forbidden(message)
