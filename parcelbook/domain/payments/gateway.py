"""Paygic service - Integration with the Paygic payment gateway API"""

import logging
from dataclasses import dataclass, field
from typing import Any, Literal, Optional, Union

import httpx
from pydantic import BaseModel, ConfigDict, Field, StrictBool, ValidationError

from ...config import PAYGIC_BASE_URL, PAYGIC_MID, PAYGIC_TIMEOUT_SECONDS, PAYGIC_TOKEN
from ...errors import GatewayError, InvalidArgument

logger = logging.getLogger(__name__)

TxnStatus = Literal["SUCCESS", "FAILED", "PENDING"]


class WebhookData(BaseModel):
    model_config = ConfigDict(extra="allow")

    merchantReferenceId: str = Field(min_length=1)
    paygicReferenceId: Optional[str] = None
    paymentType: Optional[str] = None
    amount: Optional[Union[float, str]] = None
    mid: Optional[str] = None
    successDate: Optional[Union[int, str]] = None
    UTR: Optional[str] = None
    payerName: Optional[str] = None
    payeeUPI: Optional[str] = None


class WebhookPayload(BaseModel):
    """Transaction outcome pushed by Paygic"""

    model_config = ConfigDict(extra="allow")

    status: StrictBool
    statusCode: Optional[int] = None
    txnStatus: TxnStatus
    msg: Optional[str] = None
    data: WebhookData


@dataclass(frozen=True)
class PaymentPage:
    pay_page_url: str
    merchant_reference_id: str
    gateway_reference_id: Optional[str] = None
    expiry: Optional[str] = None
    amount: Optional[str] = None


@dataclass(frozen=True)
class PaymentStatus:
    txn_status: str
    merchant_reference_id: str
    message: Optional[str] = None
    amount: Optional[float] = None
    gateway_reference_id: Optional[str] = None
    data: dict = field(default_factory=dict)


def validate_webhook_payload(raw: Any) -> WebhookPayload:
    """Parse a webhook body, raising InvalidArgument when it is not a Paygic outcome"""
    if not isinstance(raw, dict):
        raise InvalidArgument("Invalid webhook payload")
    try:
        return WebhookPayload.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"⚠️ Invalid Paygic webhook payload: {e.error_count()} validation error(s)")
        raise InvalidArgument("Invalid webhook payload") from None


class PaygicClient:
    """Client for the Paygic payment page and status APIs"""

    def __init__(
        self,
        mid: Optional[str] = PAYGIC_MID,
        token: Optional[str] = PAYGIC_TOKEN,
        base_url: str = PAYGIC_BASE_URL,
        timeout: float = PAYGIC_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.mid = (mid or "").strip()
        self.token = (token or "").strip()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

        if not self.is_available():
            logger.warning("PAYGIC_MID/PAYGIC_TOKEN not set; payment endpoints will fail until configured")

    def is_available(self) -> bool:
        return bool(self.mid and self.token)

    def _require_credentials(self) -> None:
        if self.is_available():
            return
        missing = [name for name, value in (("PAYGIC_MID", self.mid), ("PAYGIC_TOKEN", self.token)) if not value]
        logger.error(f"❌ Paygic credentials not configured. Missing: {', '.join(missing)}")
        raise GatewayError("Payment gateway is not configured")

    async def _post(self, path: str, payload: dict, action: str) -> dict:
        """POST to Paygic and return the body once its envelope reports success"""
        self._require_credentials()
        url = f"{self.base_url}/{path}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url, json=payload, headers={"token": self.token})
        except httpx.TimeoutException:
            logger.error(f"❌ Paygic {path} timed out after {self.timeout}s")
            raise GatewayError(f"Payment gateway timed out while trying to {action}") from None
        except httpx.HTTPError as e:
            logger.error(f"❌ Paygic {path} request failed: {e}")
            raise GatewayError(f"Failed to {action}") from None

        try:
            body = response.json()
        except ValueError:
            logger.error(f"❌ Paygic {path} returned non-JSON response (HTTP {response.status_code})")
            raise GatewayError(f"Failed to {action}", response.status_code) from None

        if not isinstance(body, dict):
            raise GatewayError(f"Failed to {action}", response.status_code)

        if response.status_code >= 400 or body.get("status") is not True or body.get("statusCode") != 200:
            message = body.get("msg") or f"Failed to {action}"
            gateway_status = body.get("statusCode") or response.status_code
            logger.error(f"❌ Paygic {path} rejected request: {message} (status {gateway_status})")
            raise GatewayError(message, gateway_status)

        return body

    async def create_payment_page(
        self,
        merchant_reference_id: str,
        amount: int,
        customer_mobile: str,
        customer_name: str,
        customer_email: str,
        success_url: str,
        failed_url: str,
    ) -> PaymentPage:
        """Create a hosted payment page for an amount"""
        logger.info(f"💳 Creating Paygic payment page for {merchant_reference_id} (amount {amount})")
        body = await self._post(
            "createPaymentPage",
            {
                "mid": self.mid,
                "merchantReferenceId": merchant_reference_id,
                "amount": str(amount),
                "customer_mobile": customer_mobile,
                "customer_name": customer_name,
                "customer_email": customer_email,
                "redirect_URL": success_url,
                "failed_URL": failed_url,
            },
            "create payment page",
        )

        data = body.get("data") or {}
        if not data.get("payPageUrl"):
            logger.error(f"❌ Paygic createPaymentPage response missing payPageUrl for {merchant_reference_id}")
            raise GatewayError("Invalid response from payment gateway: missing payPageUrl")

        return PaymentPage(
            pay_page_url=data["payPageUrl"],
            merchant_reference_id=data.get("merchantReferenceId") or merchant_reference_id,
            gateway_reference_id=data.get("paygicReferenceId"),
            expiry=data.get("expiry"),
            amount=data.get("amount"),
        )

    async def check_status(self, merchant_reference_id: str) -> PaymentStatus:
        """Ask Paygic for the current state of a transaction"""
        body = await self._post(
            "checkPaymentStatus",
            {"mid": self.mid, "merchantReferenceId": merchant_reference_id},
            "check payment status",
        )

        txn_status = body.get("txnStatus")
        if txn_status not in ("SUCCESS", "FAILED", "PENDING"):
            logger.error(f"❌ Paygic returned unknown txnStatus {txn_status!r} for {merchant_reference_id}")
            raise GatewayError("Invalid response from payment gateway: unknown transaction status")

        data = body.get("data") or {}
        amount = data.get("amount")
        try:
            amount = float(amount) if amount is not None else None
        except (TypeError, ValueError):
            amount = None

        logger.info(f"🔎 Paygic status for {merchant_reference_id}: {txn_status}")
        return PaymentStatus(
            txn_status=txn_status,
            merchant_reference_id=merchant_reference_id,
            message=body.get("msg"),
            amount=amount,
            gateway_reference_id=data.get("paygicReferenceId"),
            data=data,
        )


paygic_client = PaygicClient()


def get_payment_gateway() -> PaygicClient:
    """Dependency injection for the payment gateway client"""
    return paygic_client
