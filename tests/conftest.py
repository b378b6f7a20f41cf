import os

# Configure before the application modules read their settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["DB_LOG_SLOW_QUERIES"] = "false"
for key in ("PAYGIC_MID", "PAYGIC_TOKEN", "ONESIGNAL_APP_ID", "ONESIGNAL_REST_API_KEY"):
    os.environ.pop(key, None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from jose import jwt as jose_jwt  # noqa: E402

from parcelbook.auth import CurrentUser  # noqa: E402
from parcelbook.config import JWT_ALGORITHM, JWT_SECRET  # noqa: E402
from parcelbook.database import Base, SessionLocal, engine  # noqa: E402
from parcelbook.domain.payments.gateway import PaymentPage, PaymentStatus, get_payment_gateway  # noqa: E402
from parcelbook.main import app  # noqa: E402
from parcelbook.services.notification_service import get_notification_dispatcher  # noqa: E402


class FakeNotifier:
    """Records notifications instead of sending them"""

    def __init__(self):
        self.sent = []

    def is_available(self):
        return True

    def notify(self, user_id, title, body, data=None):
        self.sent.append({"user_id": user_id, "title": title, "body": body, "data": data or {}})

    @property
    def titles(self):
        return [n["title"] for n in self.sent]


class FakeGateway:
    """In-memory stand-in for the Paygic client"""

    def __init__(self):
        self.pages = []
        self.status_checks = []
        self.statuses = {}
        self.default_status = "SUCCESS"
        self.create_error = None

    def is_available(self):
        return True

    async def create_payment_page(self, merchant_reference_id, amount, **kwargs):
        if self.create_error is not None:
            raise self.create_error
        self.pages.append({"merchant_reference_id": merchant_reference_id, "amount": amount, **kwargs})
        return PaymentPage(
            pay_page_url=f"https://pay.paygic.test/{merchant_reference_id}",
            merchant_reference_id=merchant_reference_id,
            gateway_reference_id=f"PG-{merchant_reference_id}",
            expiry="2026-10-16T12:00:00Z",
            amount=str(amount),
        )

    async def check_status(self, merchant_reference_id):
        self.status_checks.append(merchant_reference_id)
        status = self.statuses.get(merchant_reference_id, self.default_status)
        if isinstance(status, Exception):
            raise status
        return PaymentStatus(
            txn_status=status,
            merchant_reference_id=merchant_reference_id,
            message="Status fetched",
            gateway_reference_id=f"PG-{merchant_reference_id}",
        )


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def customer():
    return CurrentUser(uid="user-1", phone_number="+919876543210", role="customer")


@pytest.fixture
def other_customer():
    return CurrentUser(uid="user-2", phone_number="+919812345678", role="customer")


@pytest.fixture
def admin():
    return CurrentUser(uid="admin-1", phone_number=None, role="admin")


def make_token(uid, role="customer"):
    return jose_jwt.encode({"uid": uid, "role": role}, JWT_SECRET, algorithm=JWT_ALGORITHM)


@pytest.fixture
def user_headers():
    return {"Authorization": f"Bearer {make_token('user-1')}"}


@pytest.fixture
def other_user_headers():
    return {"Authorization": f"Bearer {make_token('user-2')}"}


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {make_token('admin-1', 'admin')}"}


@pytest.fixture
def client(gateway, notifier):
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_notification_dispatcher] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def booking_data():
    """Valid booking request body"""
    return {
        "pickup": {
            "name": "Asha Rao",
            "phone": "9876543210",
            "address": "12 MG Road",
            "city": "Bengaluru",
            "state": "Karnataka",
            "pincode": "560001",
        },
        "drop": {
            "name": "Vikram Shah",
            "phone": "+91 98123 45678",
            "address": "4 Marine Drive",
            "city": "Mumbai",
            "state": "Maharashtra",
            "pincode": "400002",
        },
        "parcelDetails": {"type": "document", "weight": 1.5, "description": "Contracts"},
        "fare": 944,
        "paymentMethod": "cod",
    }


@pytest.fixture
def payment_request(booking_data):
    """Valid /payments/create body for new booking data"""
    return {
        "bookingData": {**booking_data, "paymentMethod": "online"},
        "customerName": "Asha Rao",
        "customerEmail": "asha.rao@gmail.com",
        "customerMobile": "+91 98765 43210",
    }
