import time

import pytest
from jose import jwt as jose_jwt

from parcelbook.auth import decode_access_token, ensure_owner_or_admin
from parcelbook.config import JWT_ALGORITHM, JWT_SECRET
from parcelbook.errors import Forbidden, Unauthorized


def token(claims, secret=JWT_SECRET):
    return jose_jwt.encode(claims, secret, algorithm=JWT_ALGORITHM)


def test_customer_token():
    user = decode_access_token(token({"uid": "user-1", "phoneNumber": "+919876543210"}))
    assert user.uid == "user-1"
    assert user.role == "customer"
    assert not user.is_admin


def test_admin_token():
    assert decode_access_token(token({"uid": "admin-1", "role": "admin"})).is_admin


def test_expired_token():
    with pytest.raises(Unauthorized, match="Token expired"):
        decode_access_token(token({"uid": "user-1", "exp": int(time.time()) - 60}))


@pytest.mark.parametrize(
    "claims,secret",
    [
        ({"uid": "user-1"}, "some-other-secret"),
        ({"sub": "user-1"}, JWT_SECRET),
        ({"uid": "user-1", "role": "superuser"}, JWT_SECRET),
    ],
)
def test_rejected_tokens(claims, secret):
    with pytest.raises(Unauthorized):
        decode_access_token(token(claims, secret))


def test_owner_or_admin(customer, other_customer, admin):
    ensure_owner_or_admin("user-1", customer, "nope")
    ensure_owner_or_admin("user-1", admin, "nope")
    with pytest.raises(Forbidden):
        ensure_owner_or_admin("user-1", other_customer, "nope")
